# Copyright (c) 2024-2026 Christian Moeller
# Email: c.moeller.ffo@gmail.com, brianmayclone@googlemail.com
#
# This project is open source and community-driven.
# Contributions are welcome! See README.md for details.
#
# SPDX-License-Identifier: MIT

"""
config.py - Build configuration

The config file is a list of shell-style assignments:

    TOTAL_SIZE=0x10000000
    BL2_OFFSET=0x0
    BL2_SIZE=0x100000
    BL2_PATH=out/bl2.bin
    ...
    CUSTOM_INSERTS=logo:0x5000:logo.bin:0x1000,env:0x6000:env.bin:0x2000
    MANIFEST_OFFSET=0xFF00000
    MANIFEST_SIZE=0x100000
    CHECKSUM_RANGES=boot:0x0:0x400000

Relative paths are resolved against the directory of the config file.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from .errors import ConfigError, ImageIOError
from .layout import parse_hex, parse_inserts
from .manifest import PREFIX_LABEL, ChecksumRange, valid_label
from .regions import (MANIFEST_REGION, FileSource, MemorySource, Region, RegionClass,
                      RegionKind, RegionSet)

FS_BUILDERS = ("internal", "mkfs.jffs2")


def fixed_region(kind: RegionKind, offset: int, size: int, path) -> Region:
    return Region(kind.value, offset, size, FileSource(Path(path)), RegionClass.FIXED, kind)


def custom_insert(name: str, offset: int, size: int, source) -> Region:
    if isinstance(source, (bytes, bytearray)):
        source = MemorySource(source)
    elif not isinstance(source, (FileSource, MemorySource)):
        source = FileSource(Path(source))
    return Region(name, offset, size, source, RegionClass.CUSTOM)


@dataclass(frozen=True)
class Config:
    total_size: int
    sub_images: Tuple[Region, ...]
    custom_inserts: Tuple[Region, ...]
    manifest_offset: int
    manifest_size: int
    checksum_ranges: Tuple[ChecksumRange, ...] = ()
    flavor: str = "release"
    manifest_name: str = "image_version"
    fs_erase_block: int = 0x1000
    fs_builder: str = "internal"
    mkfs_jffs2: str = "mkfs.jffs2"
    version_config: Optional[Path] = None

    def region_set(self) -> RegionSet:
        """Caller-declared regions: fixed sub-images and custom inserts."""
        return RegionSet(self.total_size, self.sub_images + self.custom_inserts)

    def manifest_region(self, data: bytes = b"") -> Region:
        return Region(MANIFEST_REGION, self.manifest_offset, self.manifest_size,
                      MemorySource(data), RegionClass.MANIFEST)

    @property
    def prefix_range(self) -> ChecksumRange:
        return ChecksumRange(PREFIX_LABEL, 0, self.manifest_offset)

    def check(self) -> None:
        """Configuration-level preconditions not covered by layout validation."""
        if self.total_size <= 0:
            raise ConfigError("TOTAL_SIZE must be positive")
        if self.manifest_size <= 0:
            raise ConfigError("MANIFEST_SIZE must be positive")
        if self.fs_builder not in FS_BUILDERS:
            raise ConfigError(f"FS_BUILDER must be one of {', '.join(FS_BUILDERS)}")

        reserved = {PREFIX_LABEL, MANIFEST_REGION}
        for r in self.sub_images + self.custom_inserts:
            if r.name in reserved:
                raise ConfigError(f"region name '{r.name}' is reserved")

        names = {r.name for r in self.sub_images + self.custom_inserts} | reserved
        manifest_end = self.manifest_offset + self.manifest_size
        for rng in self.checksum_ranges:
            if not valid_label(rng.label):
                raise ConfigError(f"checksum range label '{rng.label}' must not contain '=' or whitespace")
            if rng.label in names:
                raise ConfigError(f"checksum range label '{rng.label}' is already in use")
            names.add(rng.label)
            if not 0 <= rng.start < rng.end <= self.total_size:
                raise ConfigError(
                    f"checksum range '{rng.label}' 0x{rng.start:X}..0x{rng.end:X} "
                    f"is outside the image (0x{self.total_size:X})"
                )
            if rng.start < manifest_end and self.manifest_offset < rng.end:
                raise ConfigError(
                    f"checksum range '{rng.label}' 0x{rng.start:X}..0x{rng.end:X} "
                    f"covers the manifest partition"
                )

    def configuration_lines(self) -> List[str]:
        if self.version_config is None:
            return []
        try:
            text = Path(self.version_config).read_text(encoding="utf-8")
        except OSError as exc:
            raise ImageIOError(
                f"cannot read version config '{self.version_config}': {exc.strerror}",
                self.version_config,
            ) from exc
        return [line.rstrip() for line in text.splitlines() if line.strip()]


# =====================================================================
# Config file loading
# =====================================================================

def _unquote(value: str) -> str:
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in "'\"":
        return value[1:-1]
    if " #" in value:
        value = value.split(" #", 1)[0].rstrip()
    return value


def parse_assignments(text: str) -> Dict[str, str]:
    values = {}
    for lineno, raw in enumerate(text.splitlines(), 1):
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("export "):
            line = line[len("export "):].lstrip()
        key, sep, value = line.partition("=")
        key = key.strip()
        if not sep or not key.isidentifier():
            raise ConfigError(f"line {lineno}: expected KEY=VALUE, got '{raw}'")
        values[key] = _unquote(value)
    return values


def _require(values: Dict[str, str], key: str) -> str:
    value = values.get(key, "")
    if not value:
        raise ConfigError(f"missing variable '{key}' in config file")
    return value


def _hex(values: Dict[str, str], key: str, default: Optional[int] = None) -> int:
    if default is not None and not values.get(key):
        return default
    text = _require(values, key)
    number = parse_hex(text)
    if number is None:
        raise ConfigError(f"{key} ('{text}') must be a valid hexadecimal number (e.g., 0x1000)")
    return number


def _path(text: str, base_dir: Optional[Path]) -> Path:
    path = Path(text)
    if base_dir is not None and not path.is_absolute():
        path = base_dir / path
    return path


def _parse_ranges(value: str) -> Tuple[ChecksumRange, ...]:
    ranges = []
    for item in value.split(","):
        if not item.strip():
            continue
        parts = [p.strip() for p in item.split(":")]
        if len(parts) != 3 or not all(parts):
            raise ConfigError(f"invalid CHECKSUM_RANGES entry '{item}'. Expected: label:start:end")
        start, end = parse_hex(parts[1]), parse_hex(parts[2])
        if start is None or end is None:
            raise ConfigError(f"start and end in '{item}' must be valid hexadecimal numbers")
        ranges.append(ChecksumRange(parts[0], start, end))
    return tuple(ranges)


def config_from_values(values: Dict[str, str], base_dir: Optional[Path] = None,
                       **overrides) -> Config:
    total_size = _hex(values, "TOTAL_SIZE")

    sub_images = []
    for kind in RegionKind:
        keys = [f"{kind.value}_OFFSET", f"{kind.value}_SIZE", f"{kind.value}_PATH"]
        present = [k for k in keys if values.get(k)]
        if not kind.required and not present:
            continue
        for key in keys:
            _require(values, key)
        sub_images.append(fixed_region(
            kind,
            _hex(values, keys[0]),
            _hex(values, keys[1]),
            _path(values[keys[2]], base_dir),
        ))

    custom = tuple(parse_inserts(values.get("CUSTOM_INSERTS", ""), base_dir))

    version_config = values.get("VERSION_CONFIG")
    kwargs = dict(
        total_size=total_size,
        sub_images=tuple(sub_images),
        custom_inserts=custom,
        manifest_offset=_hex(values, "MANIFEST_OFFSET"),
        manifest_size=_hex(values, "MANIFEST_SIZE"),
        checksum_ranges=_parse_ranges(values.get("CHECKSUM_RANGES", "")),
        flavor=values.get("BUILD_FLAVOR") or "release",
        manifest_name=values.get("MANIFEST_NAME") or "image_version",
        fs_erase_block=_hex(values, "FS_ERASE_BLOCK", 0x1000),
        fs_builder=values.get("FS_BUILDER") or "internal",
        mkfs_jffs2=values.get("MKFS_JFFS2") or "mkfs.jffs2",
        version_config=_path(version_config, base_dir) if version_config else None,
    )
    kwargs.update({k: v for k, v in overrides.items() if v is not None})
    config = Config(**kwargs)
    config.check()
    return config


def load_config(path, **overrides) -> Config:
    path = Path(path)
    if not path.is_file():
        raise ConfigError(f"config file '{path}' not found")
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ImageIOError(f"cannot read config file '{path}': {exc.strerror}", path) from exc
    return config_from_values(parse_assignments(text), path.parent, **overrides)
