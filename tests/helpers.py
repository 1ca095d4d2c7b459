# Copyright (c) 2024-2026 Christian Moeller
# Email: c.moeller.ffo@gmail.com, brianmayclone@googlemail.com
#
# This project is open source and community-driven.
# Contributions are welcome! See README.md for details.
#
# SPDX-License-Identifier: MIT

from pathlib import Path

from fwimage.regions import RegionKind

TIMESTAMP = "2026-01-31 12:00:00 UTC"

# (offset, size, fill byte, source length) per fixed kind, all inside 0x10000
FIXED_LAYOUT = {
    RegionKind.BL2: (0x0000, 0x0400, 0x11, 0x0300),
    RegionKind.FIP: (0x0400, 0x0400, 0x22, 0x0400),
    RegionKind.UBOOT: (0x0800, 0x0800, 0x33, 0x0500),
    RegionKind.KERNEL: (0x1000, 0x4000, 0x44, 0x3000),
    RegionKind.DTB: (0x5000, 0x0400, 0x55, 0x0100),
    RegionKind.ROOTFS: (0x6000, 0x8000, 0x66, 0x6000),
}


def write_file(path: Path, data: bytes) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
    return path


def write_config(root: Path, extra_lines=(), skip=()) -> Path:
    """Write sub-image files and a config for a 0x10000 byte image."""
    lines = ["# test layout", "TOTAL_SIZE=0x10000"]
    for kind, (offset, size, fill, length) in FIXED_LAYOUT.items():
        name = kind.value
        write_file(root / "images" / f"{name.lower()}.bin", bytes([fill]) * length)
        for key, value in (("OFFSET", f"0x{offset:X}"), ("SIZE", f"0x{size:X}"),
                           ("PATH", f"images/{name.lower()}.bin")):
            if f"{name}_{key}" not in skip:
                lines.append(f"{name}_{key}={value}")
    write_file(root / "images" / "logo.bin", b"\x77" * 0x80)
    lines.append("CUSTOM_INSERTS=logo:0xE000:images/logo.bin:0x100")
    lines.append("MANIFEST_OFFSET=0xF000")
    lines.append("MANIFEST_SIZE=0x1000")
    lines.extend(extra_lines)
    path = root / "layout.config"
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path
