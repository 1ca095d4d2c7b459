# Copyright (c) 2024-2026 Christian Moeller
# Email: c.moeller.ffo@gmail.com, brianmayclone@googlemail.com
#
# This project is open source and community-driven.
# Contributions are welcome! See README.md for details.
#
# SPDX-License-Identifier: MIT

"""Flat firmware image builder with an embedded checksum manifest."""

from .composer import BuildResult, Composer, ComposerState, build
from .config import Config, custom_insert, fixed_region, load_config
from .errors import BuildError
from .manifest import ChecksumRange, Manifest
from .regions import Region, RegionKind, RegionSet

__version__ = "0.1.0"
