# Copyright (c) 2024-2026 Christian Moeller
# Email: c.moeller.ffo@gmail.com, brianmayclone@googlemail.com
#
# This project is open source and community-driven.
# Contributions are welcome! See README.md for details.
#
# SPDX-License-Identifier: MIT

"""CRC-32 helpers."""

import zlib


def crc32(data: bytes) -> int:
    """Standard CRC-32 (IEEE 802.3), same as the `crc32` command line tool."""
    return zlib.crc32(data) & 0xFFFFFFFF


def jffs2_crc32(data: bytes) -> int:
    """CRC-32 as JFFS2 computes it: seed 0, no final inversion."""
    return zlib.crc32(data, 0xFFFFFFFF) ^ 0xFFFFFFFF
