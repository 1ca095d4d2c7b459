# Copyright (c) 2024-2026 Christian Moeller
# Email: c.moeller.ffo@gmail.com, brianmayclone@googlemail.com
#
# This project is open source and community-driven.
# Contributions are welcome! See README.md for details.
#
# SPDX-License-Identifier: MIT

"""Exception hierarchy for firmware image builds.

Every error is fatal to a build. The CLI catches BuildError and reports
its message; everything else is a bug.
"""


class BuildError(Exception):
    """Base class for all build failures."""


class ConfigError(BuildError):
    """Missing or malformed configuration value."""


# =====================================================================
# Layout errors
# =====================================================================

class LayoutError(BuildError):
    """Region declarations that cannot be laid out."""


class InvalidRegion(LayoutError):
    def __init__(self, name: str, reason: str):
        self.name = name
        self.reason = reason
        super().__init__(f"region '{name}': {reason}")


class OutOfBounds(LayoutError):
    def __init__(self, name: str, offset: int, size: int, total_size: int):
        self.name = name
        self.offset = offset
        self.size = size
        self.total_size = total_size
        super().__init__(
            f"region '{name}' (0x{offset:X}..0x{offset + size:X}) "
            f"exceeds image size 0x{total_size:X}"
        )


class Overlap(LayoutError):
    def __init__(self, first: str, second: str, start: int, end: int):
        self.first = first
        self.second = second
        self.start = start
        self.end = end
        super().__init__(
            f"regions '{first}' and '{second}' overlap at 0x{start:X}..0x{end:X}"
        )


class MalformedInsert(LayoutError):
    def __init__(self, raw: str, reason: str = "expected name:offset:path:size"):
        self.raw = raw
        self.reason = reason
        super().__init__(f"invalid custom insert '{raw}': {reason}")


class DuplicateRegion(LayoutError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"region name '{name}' is declared more than once")


# =====================================================================
# I/O and buffer errors
# =====================================================================

class ImageIOError(BuildError):
    def __init__(self, message: str, path=None):
        self.path = path
        super().__init__(message)


class SourceNotFound(ImageIOError):
    def __init__(self, name: str, path):
        self.name = name
        super().__init__(f"source file '{path}' for {name} not found or not readable", path)


class ImageBufferError(BuildError):
    """Access outside the addressable range of an image buffer."""

    def __init__(self, offset: int, length: int, total_size: int, action: str):
        self.offset = offset
        self.length = length
        self.total_size = total_size
        super().__init__(
            f"{action} of {length} bytes at 0x{offset:X} exceeds image size 0x{total_size:X}"
        )


class WriteOutOfBounds(ImageBufferError):
    def __init__(self, offset: int, length: int, total_size: int):
        super().__init__(offset, length, total_size, "write")


class ReadOutOfBounds(ImageBufferError):
    def __init__(self, offset: int, length: int, total_size: int):
        super().__init__(offset, length, total_size, "read")


class AllocationError(BuildError):
    """The output image could not be reserved."""


# =====================================================================
# External collaborators
# =====================================================================

class ExternalToolError(BuildError):
    """A checksum or filesystem collaborator failed."""


class ChecksumError(ExternalToolError):
    pass


class FilesystemBuildError(ExternalToolError):
    pass
