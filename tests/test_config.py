# Copyright (c) 2024-2026 Christian Moeller
# Email: c.moeller.ffo@gmail.com, brianmayclone@googlemail.com
#
# This project is open source and community-driven.
# Contributions are welcome! See README.md for details.
#
# SPDX-License-Identifier: MIT

import tempfile
import unittest
from pathlib import Path

from fwimage.config import load_config, parse_assignments
from fwimage.errors import ConfigError, MalformedInsert
from fwimage.manifest import ChecksumRange
from fwimage.regions import RegionClass, RegionKind

from helpers import FIXED_LAYOUT, write_config, write_file


class TestParseAssignments(unittest.TestCase):
    def test_shell_style_lines(self):
        values = parse_assignments(
            "# comment\n"
            "\n"
            "TOTAL_SIZE=0x1000\n"
            "export BL2_PATH='out/bl2 image.bin'\n"
            'BUILD_FLAVOR="debug"\n'
            "KERNEL_SIZE=0x200 # kernel\n"
        )
        self.assertEqual(values, {
            "TOTAL_SIZE": "0x1000",
            "BL2_PATH": "out/bl2 image.bin",
            "BUILD_FLAVOR": "debug",
            "KERNEL_SIZE": "0x200",
        })

    def test_line_without_assignment(self):
        with self.assertRaises(ConfigError):
            parse_assignments("TOTAL_SIZE 0x1000\n")


class TestLoadConfig(unittest.TestCase):
    def setUp(self):
        self._td = tempfile.TemporaryDirectory()
        self.root = Path(self._td.name)

    def tearDown(self):
        self._td.cleanup()

    def test_full_config(self):
        config = load_config(write_config(self.root))
        self.assertEqual(config.total_size, 0x10000)
        self.assertEqual([r.kind for r in config.sub_images], list(FIXED_LAYOUT))
        kernel = config.sub_images[3]
        self.assertEqual((kernel.name, kernel.offset, kernel.size), ("KERNEL", 0x1000, 0x4000))
        self.assertEqual(kernel.region_class, RegionClass.FIXED)
        self.assertEqual(kernel.source.path, self.root / "images" / "kernel.bin")

        self.assertEqual(len(config.custom_inserts), 1)
        logo = config.custom_inserts[0]
        self.assertEqual((logo.name, logo.offset, logo.size), ("logo", 0xE000, 0x100))
        self.assertEqual((config.manifest_offset, config.manifest_size), (0xF000, 0x1000))
        self.assertEqual(config.flavor, "release")
        self.assertEqual(config.manifest_name, "image_version")
        self.assertEqual(config.prefix_range, ChecksumRange("IMAGE_PREFIX", 0, 0xF000))

    def test_missing_variable(self):
        with self.assertRaises(ConfigError) as cm:
            load_config(write_config(self.root, skip=("KERNEL_PATH",)))
        self.assertIn("KERNEL_PATH", str(cm.exception))

    def test_size_must_be_hex(self):
        path = write_config(self.root, ["DTB_SIZE=1024"])
        with self.assertRaises(ConfigError) as cm:
            load_config(path)
        self.assertIn("DTB_SIZE", str(cm.exception))

    def test_malformed_custom_insert(self):
        path = write_config(self.root, ["CUSTOM_INSERTS=logo:0xE000::0x100"])
        with self.assertRaises(MalformedInsert):
            load_config(path)

    def test_optional_work_area(self):
        write_file(self.root / "work.bin", b"\x00" * 16)
        config = load_config(write_config(self.root, [
            "WORK_OFFSET=0xE800", "WORK_SIZE=0x800", "WORK_PATH=work.bin",
        ]))
        self.assertEqual(config.sub_images[-1].kind, RegionKind.WORK)

    def test_partial_work_area(self):
        with self.assertRaises(ConfigError):
            load_config(write_config(self.root, ["WORK_OFFSET=0xE800"]))

    def test_checksum_ranges(self):
        config = load_config(write_config(self.root, ["CHECKSUM_RANGES=boot:0x0:0x1000,fs:0x6000:0xE000"]))
        self.assertEqual(config.checksum_ranges, (
            ChecksumRange("boot", 0x0, 0x1000),
            ChecksumRange("fs", 0x6000, 0xE000),
        ))

    def test_checksum_range_over_manifest(self):
        with self.assertRaises(ConfigError):
            load_config(write_config(self.root, ["CHECKSUM_RANGES=all:0x0:0x10000"]))

    def test_checksum_range_outside_image(self):
        with self.assertRaises(ConfigError):
            load_config(write_config(self.root, ["CHECKSUM_RANGES=tail:0xF000:0x20000"]))

    def test_checksum_label_clashing_with_region(self):
        with self.assertRaises(ConfigError):
            load_config(write_config(self.root, ["CHECKSUM_RANGES=KERNEL:0x1000:0x5000"]))

    def test_region_named_like_prefix_entry(self):
        path = write_config(self.root, ["CUSTOM_INSERTS=IMAGE_PREFIX:0xE000:images/logo.bin:0x100"])
        with self.assertRaises(ConfigError) as cm:
            load_config(path)
        self.assertIn("IMAGE_PREFIX", str(cm.exception))

    def test_region_named_like_manifest_partition(self):
        path = write_config(self.root, ["CUSTOM_INSERTS=MANIFEST:0xE000:images/logo.bin:0x100"])
        with self.assertRaises(ConfigError):
            load_config(path)

    def test_insert_name_with_equals_sign(self):
        path = write_config(self.root, ["CUSTOM_INSERTS=x=y:0xE000:images/logo.bin:0x100"])
        with self.assertRaises(MalformedInsert):
            load_config(path)

    def test_checksum_label_must_fit_manifest_line(self):
        for label in ("a=b", "two words"):
            with self.subTest(label=label):
                path = write_config(self.root, [f"CHECKSUM_RANGES={label}:0x0:0x1000"])
                with self.assertRaises(ConfigError):
                    load_config(path)

    def test_unknown_fs_builder(self):
        with self.assertRaises(ConfigError):
            load_config(write_config(self.root, ["FS_BUILDER=ubifs"]))

    def test_overrides(self):
        config = load_config(write_config(self.root, ["BUILD_FLAVOR=debug"]), flavor="factory")
        self.assertEqual(config.flavor, "factory")

    def test_version_config_lines(self):
        (self.root / "version.config").write_text("BOARD=evb\n\nREV=2\n", encoding="utf-8")
        config = load_config(write_config(self.root, ["VERSION_CONFIG=version.config"]))
        self.assertEqual(config.configuration_lines(), ["BOARD=evb", "REV=2"])

    def test_missing_config_file(self):
        with self.assertRaises(ConfigError):
            load_config(self.root / "nope.config")


if __name__ == "__main__":
    unittest.main()
