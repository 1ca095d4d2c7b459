# Copyright (c) 2024-2026 Christian Moeller
# Email: c.moeller.ffo@gmail.com, brianmayclone@googlemail.com
#
# This project is open source and community-driven.
# Contributions are welcome! See README.md for details.
#
# SPDX-License-Identifier: MIT

"""Check a finished image against the manifest embedded in it."""

from typing import List

from .buffer import ImageBuffer
from .checksum import crc32
from .config import Config
from .errors import ConfigError, FilesystemBuildError
from .jffs2 import read_jffs2
from .manifest import Manifest, parse_manifest


def read_embedded_manifest(image: ImageBuffer, config: Config) -> Manifest:
    blob = image.read_range(config.manifest_offset, config.manifest_size)
    files = read_jffs2(blob)
    if config.manifest_name not in files:
        raise KeyError(config.manifest_name)
    try:
        text = files[config.manifest_name].decode("utf-8")
    except UnicodeDecodeError as exc:
        raise ConfigError(f"manifest file '{config.manifest_name}' is not UTF-8 text") from exc
    return parse_manifest(text)


def verify_image(config: Config, path, crc=crc32) -> List[str]:
    """Return a list of problems, empty when the image matches its manifest."""
    problems = []
    with ImageBuffer.open(path) as image:
        if image.total_size != config.total_size:
            return [f"image is {image.total_size} bytes, expected {config.total_size}"]
        try:
            manifest = read_embedded_manifest(image, config)
        except KeyError:
            return [f"manifest partition has no '{config.manifest_name}' file"]
        except (ConfigError, FilesystemBuildError) as exc:
            return [f"manifest partition is unreadable: {exc}"]

        expected = {}
        for r in config.sub_images + config.custom_inserts:
            length = min(r.source.length(), r.size)
            expected[r.name] = crc(image.read_range(r.offset, length))
        for rng in (config.prefix_range,) + config.checksum_ranges:
            expected[rng.label] = crc(image.read_range(rng.start, rng.end - rng.start))

    for label, actual in expected.items():
        try:
            recorded = manifest.get(label)
        except KeyError:
            problems.append(f"{label}: missing from manifest")
            continue
        if recorded != actual:
            problems.append(f"{label}: manifest {recorded:08x}, image {actual:08x}")
    for label in manifest.labels:
        if label not in expected:
            problems.append(f"{label}: not declared in config")
    return problems
