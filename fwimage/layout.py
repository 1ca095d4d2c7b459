# Copyright (c) 2024-2026 Christian Moeller
# Email: c.moeller.ffo@gmail.com, brianmayclone@googlemail.com
#
# This project is open source and community-driven.
# Contributions are welcome! See README.md for details.
#
# SPDX-License-Identifier: MIT

"""
layout.py - Region layout checks and gap computation

  validate()      bounds, overlap and source checks for a RegionSet
  parse_insert()  decode one "name:offset:path:size" custom insert
  gaps()          zero-filled complement of a RegionSet within the image
  fill_gaps()     zero every gap in an ImageBuffer
  layout_map()    human-readable listing of regions and gaps
"""

import re
from pathlib import Path
from typing import Iterator, List, Optional

from .errors import DuplicateRegion, InvalidRegion, MalformedInsert, OutOfBounds, Overlap
from .manifest import valid_label
from .regions import FileSource, Gap, Region, RegionClass, RegionSet

HEX_RE = re.compile(r"^0x[0-9a-fA-F]+$")


def parse_hex(text: str) -> Optional[int]:
    """Parse a strict 0x-prefixed hex number, None if it isn't one."""
    text = text.strip()
    if not HEX_RE.match(text):
        return None
    return int(text, 16)


# =====================================================================
# Custom inserts
# =====================================================================

def parse_insert(raw: str, base_dir: Optional[Path] = None) -> Region:
    """Turn a 'name:offset:path:size' declaration into a custom Region."""
    parts = raw.strip().split(":")
    if len(parts) != 4:
        raise MalformedInsert(raw)
    name, offset_text, path_text, size_text = (p.strip() for p in parts)
    if not name or not offset_text or not path_text or not size_text:
        raise MalformedInsert(raw)
    if not valid_label(name):
        raise MalformedInsert(raw, "name must not contain '=' or whitespace")

    offset = parse_hex(offset_text)
    size = parse_hex(size_text)
    if offset is None or size is None:
        raise MalformedInsert(raw, "offset and size must be hexadecimal numbers (e.g. 0x1000)")

    path = Path(path_text)
    if base_dir is not None and not path.is_absolute():
        path = base_dir / path
    return Region(name, offset, size, FileSource(path), RegionClass.CUSTOM)


def parse_inserts(value: str, base_dir: Optional[Path] = None) -> List[Region]:
    if not value.strip():
        return []
    return [parse_insert(item, base_dir) for item in value.split(",")]


# =====================================================================
# Validation
# =====================================================================

def validate(regions: RegionSet, check_sources: bool = True) -> None:
    """Raise a LayoutError (or SourceNotFound) for the first problem found.

    Checks run in order: well-formed name/offset/size, unique names, bounds,
    pairwise overlap across every region, then source readability. The
    source length is not compared to the declared size.
    """
    seen = set()
    for r in regions:
        if not isinstance(r.name, str) or not valid_label(r.name):
            raise InvalidRegion(r.name, "name must be non-empty without '=' or whitespace")
        if not isinstance(r.offset, int) or r.offset < 0:
            raise InvalidRegion(r.name, f"offset {r.offset!r} must be a non-negative integer")
        if not isinstance(r.size, int) or r.size <= 0:
            raise InvalidRegion(r.name, f"size {r.size!r} must be a positive integer")
        if r.name in seen:
            raise DuplicateRegion(r.name)
        seen.add(r.name)

    for r in regions:
        if r.offset + r.size > regions.total_size:
            raise OutOfBounds(r.name, r.offset, r.size, regions.total_size)

    # Sorted by offset: a region overlaps something iff it starts before
    # the furthest end seen so far.
    furthest = None
    for r in regions:
        if furthest is not None and r.offset < furthest.end:
            raise Overlap(furthest.name, r.name, r.offset, min(furthest.end, r.end))
        if furthest is None or r.end > furthest.end:
            furthest = r

    if check_sources:
        for r in regions:
            r.check_source()


# =====================================================================
# Gaps
# =====================================================================

def gaps(regions: RegionSet, total_size: Optional[int] = None) -> Iterator[Gap]:
    """Yield the unassigned byte ranges of [0, total_size), left to right."""
    if total_size is None:
        total_size = regions.total_size
    cursor = 0
    for r in regions:
        if cursor < r.offset:
            yield Gap(cursor, r.offset - cursor)
        cursor = max(cursor, r.end)
    if cursor < total_size:
        yield Gap(cursor, total_size - cursor)


def fill_gaps(buffer, regions: RegionSet, quiet: bool = False) -> List[Gap]:
    filled = []
    for gap in gaps(regions, buffer.total_size):
        buffer.zero_fill(gap.offset, gap.size)
        if not quiet:
            print(f"  Gap 0x{gap.offset:X}-0x{gap.end:X} zero-filled ({gap.size} bytes)")
        filled.append(gap)
    return filled


def layout_map(regions: RegionSet) -> List[str]:
    """One line per region or gap, in address order."""
    items = [(r.offset, r.end, f"{r.region_class.value:<8} {r.name}") for r in regions]
    items += [(g.offset, g.end, "gap      (zero)") for g in gaps(regions)]
    items.sort()
    return [f"0x{start:08X}..0x{end:08X} {label}" for start, end, label in items]
