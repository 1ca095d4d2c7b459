# Copyright (c) 2024-2026 Christian Moeller
# Email: c.moeller.ffo@gmail.com, brianmayclone@googlemail.com
#
# This project is open source and community-driven.
# Contributions are welcome! See README.md for details.
#
# SPDX-License-Identifier: MIT

"""
mkfwimage - Create a flat firmware image from a layout config

Usage:
    mkfwimage config.ini output_image.bin [--flavor debug] [--manifest-out image_version]
              [--map-out layout.map] [--archive-dir releases] [--verify] [--quiet]
"""

import argparse
import shutil
import sys
from datetime import datetime
from pathlib import Path

from .composer import build
from .config import FS_BUILDERS, load_config
from .errors import BuildError, ImageIOError
from .layout import layout_map
from .verify import verify_image


def archive(paths, archive_dir, when=None) -> Path:
    """Move finished artifacts into <archive_dir>/<YYYYmmdd-HHMMSS>/."""
    stamp = (when or datetime.now()).strftime("%Y%m%d-%H%M%S")
    dest = Path(archive_dir) / stamp
    try:
        dest.mkdir(parents=True, exist_ok=True)
        for p in paths:
            shutil.move(str(p), str(dest / Path(p).name))
    except OSError as exc:
        raise ImageIOError(f"cannot archive into '{dest}': {exc.strerror}", dest) from exc
    return dest


def _write_text(path: Path, text: str) -> None:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
    except OSError as exc:
        raise ImageIOError(f"cannot write '{path}': {exc.strerror}", path) from exc


def run(args) -> int:
    config = load_config(
        args.config,
        flavor=args.flavor,
        fs_builder=args.fs_builder,
        mkfs_jffs2=args.mkfs_jffs2,
    )
    output = Path(args.output)

    result = build(config, output, quiet=args.quiet)
    artifacts = [output]

    if args.manifest_out:
        _write_text(Path(args.manifest_out), result.manifest_text)
        artifacts.append(Path(args.manifest_out))
    if args.map_out:
        layout = config.region_set().with_region(config.manifest_region())
        _write_text(Path(args.map_out), "\n".join(layout_map(layout)) + "\n")
        artifacts.append(Path(args.map_out))

    if args.verify:
        problems = verify_image(config, output)
        for problem in problems:
            print(f"VERIFY: {problem}", file=sys.stderr)
        if problems:
            return 1
        if not args.quiet:
            print(f"Verified {len(result.manifest.entries)} manifest entries")

    if args.archive_dir:
        dest = archive(artifacts, args.archive_dir)
        if not args.quiet:
            print(f"Archived to {dest}")

    if not args.quiet:
        print(f"\nEmbedded firmware image created successfully: {output}")
    return 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        prog="mkfwimage",
        description="Create a fixed-size firmware image with an embedded checksum manifest",
    )
    parser.add_argument("config", help="Layout config file (KEY=VALUE lines)")
    parser.add_argument("output", help="Output image path")
    parser.add_argument("--flavor", default=None, help="Build flavor recorded in the manifest")
    parser.add_argument("--manifest-out", default=None,
                        help="Also write the manifest text to this file")
    parser.add_argument("--map-out", default=None, help="Write a region/gap map to this file")
    parser.add_argument("--archive-dir", default=None,
                        help="Move the finished artifacts into a dated directory below this one")
    parser.add_argument("--fs-builder", choices=FS_BUILDERS, default=None,
                        help="Manifest filesystem builder (default: from config, else internal)")
    parser.add_argument("--mkfs-jffs2", default=None, help="Path to the mkfs.jffs2 tool")
    parser.add_argument("--verify", action="store_true",
                        help="Re-read the image and check it against its manifest")
    parser.add_argument("--quiet", action="store_true", help="Only report errors")
    args = parser.parse_args(argv)

    try:
        return run(args)
    except BuildError as exc:
        print(f"mkfwimage: ERROR: {exc}", file=sys.stderr)
        return 1
