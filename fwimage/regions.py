# Copyright (c) 2024-2026 Christian Moeller
# Email: c.moeller.ffo@gmail.com, brianmayclone@googlemail.com
#
# This project is open source and community-driven.
# Contributions are welcome! See README.md for details.
#
# SPDX-License-Identifier: MIT

"""Region data model: named byte ranges placed at absolute image offsets."""

import enum
import os
from dataclasses import dataclass
from typing import Iterable, Iterator, List, Optional, Tuple

from .errors import ImageIOError, SourceNotFound

MANIFEST_REGION = "MANIFEST"


class RegionKind(enum.Enum):
    """Fixed sub-image kinds, in the order they are written and checksummed."""

    BL2 = "BL2"
    FIP = "FIP"
    UBOOT = "UBOOT"
    KERNEL = "KERNEL"
    DTB = "DTB"
    ROOTFS = "ROOTFS"
    WORK = "WORK"

    @property
    def required(self) -> bool:
        return self is not RegionKind.WORK


class RegionClass(enum.Enum):
    FIXED = "fixed"
    CUSTOM = "custom"
    MANIFEST = "manifest"


# =====================================================================
# Byte sources
# =====================================================================

class FileSource:
    """Reads at most `size` bytes from a file on disk."""

    def __init__(self, path):
        self.path = path

    def exists(self) -> bool:
        return os.path.isfile(self.path) and os.access(self.path, os.R_OK)

    def length(self) -> int:
        try:
            return os.path.getsize(self.path)
        except OSError as exc:
            raise ImageIOError(f"cannot stat '{self.path}': {exc.strerror}", self.path) from exc

    def read(self, size: int) -> bytes:
        try:
            with open(self.path, "rb") as f:
                return f.read(size)
        except FileNotFoundError as exc:
            raise ImageIOError(f"source file '{self.path}' not found", self.path) from exc
        except OSError as exc:
            raise ImageIOError(f"cannot read '{self.path}': {exc.strerror}", self.path) from exc

    def __repr__(self):
        return f"FileSource({str(self.path)!r})"


class MemorySource:
    """In-memory bytes, used for the manifest filesystem blob."""

    def __init__(self, data: bytes = b""):
        self.data = bytes(data)

    def exists(self) -> bool:
        return True

    def length(self) -> int:
        return len(self.data)

    def read(self, size: int) -> bytes:
        return self.data[:size]

    def __repr__(self):
        return f"MemorySource({len(self.data)} bytes)"


# =====================================================================
# Regions
# =====================================================================

@dataclass(frozen=True)
class Region:
    name: str
    offset: int
    size: int
    source: object
    region_class: RegionClass = RegionClass.CUSTOM
    kind: Optional[RegionKind] = None

    @property
    def end(self) -> int:
        return self.offset + self.size

    def read(self) -> bytes:
        """Return the bytes that land in the image (at most `size`)."""
        return self.source.read(self.size)

    def check_source(self) -> None:
        if not self.source.exists():
            raise SourceNotFound(self.name, getattr(self.source, "path", "<memory>"))


@dataclass(frozen=True)
class Gap:
    offset: int
    size: int

    @property
    def end(self) -> int:
        return self.offset + self.size


class RegionSet:
    """Regions of one image, kept ordered by offset."""

    def __init__(self, total_size: int, regions: Iterable[Region] = ()):
        self.total_size = total_size
        self._declared: Tuple[Region, ...] = tuple(regions)
        # sorted() is stable, so equal offsets keep declaration order
        self._regions: Tuple[Region, ...] = tuple(sorted(self._declared, key=lambda r: r.offset))

    def __iter__(self) -> Iterator[Region]:
        return iter(self._regions)

    def __len__(self) -> int:
        return len(self._regions)

    @property
    def fixed(self) -> List[Region]:
        """Fixed sub-images in RegionKind order."""
        order = list(RegionKind)
        fixed = [r for r in self._regions if r.region_class is RegionClass.FIXED]
        return sorted(fixed, key=lambda r: order.index(r.kind) if r.kind else len(order))

    @property
    def custom(self) -> List[Region]:
        return [r for r in self._declared if r.region_class is RegionClass.CUSTOM]

    def with_region(self, region: Region) -> "RegionSet":
        return RegionSet(self.total_size, self._declared + (region,))

    def __repr__(self):
        return f"RegionSet(0x{self.total_size:X}, {[r.name for r in self._regions]})"
