# Copyright (c) 2024-2026 Christian Moeller
# Email: c.moeller.ffo@gmail.com, brianmayclone@googlemail.com
#
# This project is open source and community-driven.
# Contributions are welcome! See README.md for details.
#
# SPDX-License-Identifier: MIT

"""
manifest.py - Checksum manifest embedded in the image

Text layout:

    Generated on: 2026-01-31 12:00:00 UTC
    Flavor: release

    BL2=1c291ca3
    ...
    IMAGE_PREFIX=8b1a9953

    Image Configuration:
    <lines of the optional version config>
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from .checksum import crc32
from .errors import BuildError, ChecksumError, ConfigError

PREFIX_LABEL = "IMAGE_PREFIX"
TIMESTAMP_PREFIX = "Generated on: "
FLAVOR_PREFIX = "Flavor: "
CONFIG_HEADING = "Image Configuration:"

# A label must survive the "label=hexcrc" line format
LABEL_RE = re.compile(r"^[^\s=]+\Z")


def valid_label(label: str) -> bool:
    return bool(LABEL_RE.match(label))


@dataclass(frozen=True)
class ChecksumRange:
    """Checksum over image bytes [start, end) as written so far."""

    label: str
    start: int
    end: int


@dataclass(frozen=True)
class ManifestEntry:
    label: str
    crc32: int


@dataclass
class Manifest:
    timestamp: str
    flavor: str
    entries: List[ManifestEntry] = field(default_factory=list)
    configuration: List[str] = field(default_factory=list)

    def add(self, label: str, value: int) -> None:
        self.entries.append(ManifestEntry(label, value))

    def get(self, label: str) -> int:
        for e in self.entries:
            if e.label == label:
                return e.crc32
        raise KeyError(label)

    @property
    def labels(self) -> List[str]:
        return [e.label for e in self.entries]


def format_timestamp(when: Optional[datetime] = None) -> str:
    if when is None:
        when = datetime.now(timezone.utc)
    return when.astimezone(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")


def _checksum(crc, data: bytes, label: str) -> int:
    try:
        value = crc(data)
    except BuildError:
        raise
    except Exception as exc:
        raise ChecksumError(f"checksum of {label} failed: {exc}") from exc
    if not isinstance(value, int) or not 0 <= value <= 0xFFFFFFFF:
        raise ChecksumError(f"checksum of {label} returned {value!r}, expected a 32-bit value")
    return value


def build_manifest(fixed_regions, custom_inserts, extra_entries: Iterable[ChecksumRange] = (),
                   buffer=None, crc=crc32, timestamp: str = "", flavor: str = "release",
                   configuration: Iterable[str] = ()) -> Manifest:
    """Compute a fresh manifest.

    Region entries are checksums of the bytes each region copies from its
    source, so they do not depend on the image. Extra entries are computed
    from `buffer`, whose range must already be fully written.
    """
    manifest = Manifest(timestamp, flavor, configuration=list(configuration))
    for region in list(fixed_regions) + list(custom_inserts):
        manifest.add(region.name, _checksum(crc, region.read(), region.name))

    for rng in extra_entries:
        if buffer is None:
            raise ValueError(f"range checksum '{rng.label}' needs an image buffer")
        data = buffer.read_range(rng.start, rng.end - rng.start)
        manifest.add(rng.label, _checksum(crc, data, rng.label))
    return manifest


def serialize(manifest: Manifest) -> str:
    lines = [
        TIMESTAMP_PREFIX + manifest.timestamp,
        FLAVOR_PREFIX + manifest.flavor,
        "",
    ]
    lines += [f"{e.label}={e.crc32:08x}" for e in manifest.entries]
    if manifest.configuration:
        lines += ["", CONFIG_HEADING]
        lines += manifest.configuration
    return "\n".join(lines) + "\n"


def parse_manifest(text: str) -> Manifest:
    lines = text.splitlines()
    if len(lines) < 2 or not lines[0].startswith(TIMESTAMP_PREFIX) \
            or not lines[1].startswith(FLAVOR_PREFIX):
        raise ConfigError("manifest is missing its header lines")
    manifest = Manifest(lines[0][len(TIMESTAMP_PREFIX):], lines[1][len(FLAVOR_PREFIX):])

    body = lines[2:]
    for i, line in enumerate(body):
        if line == CONFIG_HEADING:
            manifest.configuration = [l for l in body[i + 1:] if l]
            break
        if not line.strip():
            continue
        label, sep, value = line.partition("=")
        if not sep:
            raise ConfigError(f"bad manifest line: {line}")
        try:
            manifest.add(label, int(value, 16))
        except ValueError:
            raise ConfigError(f"bad checksum in manifest line: {line}") from None
    return manifest
