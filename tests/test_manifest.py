# Copyright (c) 2024-2026 Christian Moeller
# Email: c.moeller.ffo@gmail.com, brianmayclone@googlemail.com
#
# This project is open source and community-driven.
# Contributions are welcome! See README.md for details.
#
# SPDX-License-Identifier: MIT

import tempfile
import unittest
import zlib
from datetime import datetime, timezone
from pathlib import Path

from fwimage.buffer import ImageBuffer
from fwimage.config import custom_insert, fixed_region
from fwimage.errors import ChecksumError, ConfigError
from fwimage.manifest import (PREFIX_LABEL, ChecksumRange, Manifest, build_manifest,
                              format_timestamp, parse_manifest, serialize)
from fwimage.regions import RegionKind

from helpers import TIMESTAMP


class TestBuildManifest(unittest.TestCase):
    def setUp(self):
        self._td = tempfile.TemporaryDirectory()
        root = Path(self._td.name)
        (root / "kernel.bin").write_bytes(b"\x44" * 0x300)
        (root / "bl2.bin").write_bytes(b"\x11" * 0x80)
        self.fixed = [
            fixed_region(RegionKind.BL2, 0x0, 0x100, root / "bl2.bin"),
            fixed_region(RegionKind.KERNEL, 0x1000, 0x200, root / "kernel.bin"),
        ]
        self.custom = [custom_insert("logo", 0x800, 0x10, b"\x77" * 0x10)]

    def tearDown(self):
        self._td.cleanup()

    def test_region_entries_use_copied_source_bytes(self):
        manifest = build_manifest(self.fixed, self.custom, timestamp=TIMESTAMP)
        self.assertEqual(manifest.labels, ["BL2", "KERNEL", "logo"])
        self.assertEqual(manifest.get("BL2"), zlib.crc32(b"\x11" * 0x80))
        # the kernel file is longer than its region; only 0x200 bytes are copied
        self.assertEqual(manifest.get("KERNEL"), zlib.crc32(b"\x44" * 0x200))
        self.assertEqual(manifest.get("logo"), zlib.crc32(b"\x77" * 0x10))

    def test_range_entries_read_the_image(self):
        buf = ImageBuffer.create(0x2000)
        buf.write_at(0x10, b"payload")
        ranges = [ChecksumRange(PREFIX_LABEL, 0, 0x1800), ChecksumRange("head", 0, 0x20)]
        manifest = build_manifest(self.fixed, [], ranges, buf, timestamp=TIMESTAMP)
        self.assertEqual(manifest.labels, ["BL2", "KERNEL", PREFIX_LABEL, "head"])
        self.assertEqual(manifest.get(PREFIX_LABEL), zlib.crc32(buf.read_range(0, 0x1800)))
        self.assertEqual(manifest.get("head"), zlib.crc32(buf.read_range(0, 0x20)))

    def test_range_entries_need_a_buffer(self):
        with self.assertRaises(ValueError):
            build_manifest([], [], [ChecksumRange("x", 0, 1)])

    def test_failing_checksum_collaborator(self):
        def broken(data):
            raise RuntimeError("crc32: not found")

        with self.assertRaises(ChecksumError):
            build_manifest(self.fixed, [], crc=broken)

    def test_checksum_collaborator_returning_garbage(self):
        with self.assertRaises(ChecksumError):
            build_manifest(self.fixed, [], crc=lambda data: "cafebabe")


class TestSerialize(unittest.TestCase):
    def test_text_layout(self):
        manifest = Manifest(TIMESTAMP, "debug")
        manifest.add("BL2", 0x1C291CA3)
        manifest.add(PREFIX_LABEL, 0x0000ABCD)
        lines = serialize(manifest).splitlines()
        self.assertEqual(lines, [
            "Generated on: " + TIMESTAMP,
            "Flavor: debug",
            "",
            "BL2=1c291ca3",
            "IMAGE_PREFIX=0000abcd",
        ])

    def test_parse_round_trip_with_configuration(self):
        manifest = Manifest(TIMESTAMP, "release", configuration=["BOARD=evb", "REV=2"])
        manifest.add("KERNEL", 0xDEADBEEF)
        parsed = parse_manifest(serialize(manifest))
        self.assertEqual(parsed, manifest)

    def test_same_input_same_text(self):
        a = Manifest(TIMESTAMP, "release")
        b = Manifest(TIMESTAMP, "release")
        for m in (a, b):
            m.add("A", 1)
        self.assertEqual(serialize(a), serialize(b))

    def test_parse_rejects_missing_header(self):
        with self.assertRaises(ConfigError):
            parse_manifest("BL2=00000000\n")

    def test_parse_rejects_bad_entry(self):
        with self.assertRaises(ConfigError):
            parse_manifest(f"Generated on: {TIMESTAMP}\nFlavor: x\n\nBL2=zz\n")

    def test_format_timestamp(self):
        when = datetime(2026, 1, 31, 12, 0, 0, tzinfo=timezone.utc)
        self.assertEqual(format_timestamp(when), TIMESTAMP)


if __name__ == "__main__":
    unittest.main()
