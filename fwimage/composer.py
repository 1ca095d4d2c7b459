# Copyright (c) 2024-2026 Christian Moeller
# Email: c.moeller.ffo@gmail.com, brianmayclone@googlemail.com
#
# This project is open source and community-driven.
# Contributions are welcome! See README.md for details.
#
# SPDX-License-Identifier: MIT

"""
composer.py - Two-pass firmware image build

The manifest partition lists checksums of the image it lives in, including
one over [0, MANIFEST_OFFSET) of the finished image, so the build runs as
a small state machine:

  Init           validate caller regions and config preconditions
  Pass1Layout    add the reserved manifest partition, validate again
  Pass1Write     allocate the image, write regions, zero-fill the gaps
  ManifestDraft  write a manifest holding the region checksums only
  Pass2Checksum  read back the checksum ranges and rebuild the manifest
  Pass2Rewrite   rewrite the manifest partition in place
  Done           hand the image over to the caller

Any BuildError moves the composer to Failed and the partial output is
removed.
"""

import enum
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from .buffer import ImageBuffer
from .checksum import crc32
from .config import Config
from .errors import AllocationError, BuildError, FilesystemBuildError, ImageIOError
from .jffs2 import make_fs_builder
from .layout import fill_gaps, validate
from .manifest import Manifest, build_manifest, format_timestamp, serialize
from .regions import RegionSet


class ComposerState(enum.Enum):
    INIT = "Init"
    PASS1_LAYOUT = "Pass1Layout"
    PASS1_WRITE = "Pass1Write"
    MANIFEST_DRAFT = "ManifestDraft"
    PASS2_CHECKSUM = "Pass2Checksum"
    PASS2_REWRITE = "Pass2Rewrite"
    DONE = "Done"
    FAILED = "Failed"


@dataclass
class BuildResult:
    manifest: Manifest
    manifest_text: str
    history: List[ComposerState] = field(default_factory=list)
    image: Optional[bytes] = None
    path: Optional[Path] = None


class Composer:
    """Runs one build of `config`; create a new Composer per build."""

    def __init__(self, config: Config, crc=crc32, build_fs=None,
                 timestamp: Optional[str] = None, quiet: bool = False):
        self.config = config
        self.crc = crc
        self.build_fs = build_fs
        self.timestamp = timestamp
        self.quiet = quiet

        self.state = ComposerState.INIT
        self.history = [ComposerState.INIT]
        self.failure = None

        self.regions: Optional[RegionSet] = None
        self.layout: Optional[RegionSet] = None
        self.buffer: Optional[ImageBuffer] = None
        self.manifest: Optional[Manifest] = None
        self.manifest_text = ""
        self._configuration: List[str] = []

    def _log(self, msg: str = "") -> None:
        if not self.quiet:
            print(msg)

    def _enter(self, state: ComposerState) -> None:
        self.state = state
        self.history.append(state)
        if state is not ComposerState.FAILED:
            self._log(f"\n[{state.value}]")

    # -----------------------------------------------------------------

    def build(self, output=None) -> BuildResult:
        if self.history != [ComposerState.INIT]:
            raise RuntimeError("Composer.build() can only run once")

        output = Path(output) if output is not None else None
        partial = output.with_name(output.name + ".partial") if output is not None else None
        try:
            self._init()
            self._pass1_layout()
            self._pass1_write(partial)
            self._manifest_draft()
            self._pass2_checksum()
            self._pass2_rewrite()
            return self._done(output, partial)
        except BuildError as exc:
            self.failure = (self.state, str(exc))
            self._enter(ComposerState.FAILED)
            raise
        finally:
            if self.state is not ComposerState.DONE:
                self._discard(partial)

    def _discard(self, partial: Optional[Path]) -> None:
        if self.buffer is not None:
            try:
                self.buffer.close()
            except BuildError as exc:
                print(f"Warning: {exc}", file=sys.stderr)
            self.buffer = None
        if partial is not None and partial.exists():
            partial.unlink()

    # -----------------------------------------------------------------

    def _init(self) -> None:
        config = self.config
        self._log(f"Image size: 0x{config.total_size:X} ({config.total_size} bytes)")
        config.check()
        if self.timestamp is None:
            self.timestamp = format_timestamp()
        if self.build_fs is None:
            self.build_fs = make_fs_builder(config.fs_builder, config.manifest_size,
                                            config.fs_erase_block, config.mkfs_jffs2)
        self._configuration = config.configuration_lines()

        self.regions = config.region_set()
        validate(self.regions)
        for r in self.regions:
            self._log(f"  {r.name:<12} 0x{r.offset:08X} size 0x{r.size:X}")

    def _pass1_layout(self) -> None:
        self._enter(ComposerState.PASS1_LAYOUT)
        self.layout = self.regions.with_region(self.config.manifest_region())
        validate(self.layout)
        self._log(f"  Manifest partition reserved at 0x{self.config.manifest_offset:X} "
                  f"size 0x{self.config.manifest_size:X}")

    def _pass1_write(self, partial: Optional[Path]) -> None:
        self._enter(ComposerState.PASS1_WRITE)
        if partial is not None:
            try:
                partial.parent.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                raise AllocationError(f"cannot create '{partial.parent}': {exc.strerror}") from exc
        self.buffer = ImageBuffer.create(self.config.total_size, partial)

        for r in self.regions.fixed + self.regions.custom:
            data = r.read()
            source_len = r.source.length()
            where = getattr(r.source, "path", "<memory>")
            self._log(f"Writing {r.name} from {where} to offset 0x{r.offset:X} "
                      f"({len(data)} of 0x{r.size:X} bytes)")
            if source_len > r.size:
                self._log(f"  Warning: {r.name} source is {source_len} bytes, "
                          f"truncated to 0x{r.size:X}")
            self.buffer.write_at(r.offset, data)
            if len(data) < r.size:
                self.buffer.zero_fill(r.offset + len(data), r.size - len(data))

        # Gaps are taken without the manifest partition: its range is zeroed
        # here and written in full by the draft.
        fill_gaps(self.buffer, self.regions, self.quiet)

    def _manifest_draft(self) -> None:
        self._enter(ComposerState.MANIFEST_DRAFT)
        draft = build_manifest(self.regions.fixed, self.regions.custom, crc=self.crc,
                               timestamp=self.timestamp, flavor=self.config.flavor,
                               configuration=self._configuration)
        self._write_manifest(draft)

    def _pass2_checksum(self) -> None:
        self._enter(ComposerState.PASS2_CHECKSUM)
        ranges = [self.config.prefix_range] + list(self.config.checksum_ranges)
        self.manifest = build_manifest(self.regions.fixed, self.regions.custom, ranges,
                                       self.buffer, crc=self.crc, timestamp=self.timestamp,
                                       flavor=self.config.flavor,
                                       configuration=self._configuration)
        for rng in ranges:
            self._log(f"  {rng.label} 0x{rng.start:X}..0x{rng.end:X} "
                      f"crc32={self.manifest.get(rng.label):08x}")

    def _pass2_rewrite(self) -> None:
        self._enter(ComposerState.PASS2_REWRITE)
        self._write_manifest(self.manifest)

    def _done(self, output: Optional[Path], partial: Optional[Path]) -> BuildResult:
        image = None
        if output is None:
            image = self.buffer.getvalue()
        self.buffer.close()
        self.buffer = None
        if output is not None:
            try:
                os.replace(partial, output)
            except OSError as exc:
                raise ImageIOError(f"cannot move image to '{output}': {exc.strerror}", output) from exc

        self._enter(ComposerState.DONE)
        self._log(f"Image created: {output if output is not None else '<memory>'} "
                  f"(0x{self.config.total_size:X} bytes)")
        return BuildResult(self.manifest, self.manifest_text, list(self.history), image, output)

    # -----------------------------------------------------------------

    def _write_manifest(self, manifest: Manifest) -> None:
        text = serialize(manifest)
        files = {self.config.manifest_name: text.encode("utf-8")}
        try:
            blob = self.build_fs(files)
        except BuildError:
            raise
        except Exception as exc:
            raise FilesystemBuildError(f"manifest filesystem build failed: {exc}") from exc
        if len(blob) != self.config.manifest_size:
            raise FilesystemBuildError(
                f"manifest filesystem is {len(blob)} bytes, "
                f"partition is 0x{self.config.manifest_size:X}"
            )

        self.buffer.write_at(self.config.manifest_offset, blob)
        self.manifest_text = text
        self._log(f"Writing {self.config.manifest_name} ({len(text)} bytes, "
                  f"{len(manifest.entries)} entries) to offset 0x{self.config.manifest_offset:X}")


def build(config: Config, output=None, **kwargs) -> BuildResult:
    """Build the image described by `config`.

    With `output` the image is written to that path; otherwise the result
    carries the image bytes.
    """
    return Composer(config, **kwargs).build(output)
