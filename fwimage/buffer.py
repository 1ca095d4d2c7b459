# Copyright (c) 2024-2026 Christian Moeller
# Email: c.moeller.ffo@gmail.com, brianmayclone@googlemail.com
#
# This project is open source and community-driven.
# Contributions are welcome! See README.md for details.
#
# SPDX-License-Identifier: MIT

"""Fixed-size byte sink for the output image.

The buffer is either a bytearray or a pre-sized file. A pre-sized file is
created with truncate(), so every byte that is never written reads back
as zero. Writes never extend the image.
"""

import os

from .errors import AllocationError, ImageIOError, ReadOutOfBounds, WriteOutOfBounds

CHUNK_SIZE = 64 * 1024


class ImageBuffer:
    def __init__(self, total_size: int, f=None, path=None):
        self.total_size = total_size
        self.path = path
        self._file = f
        self._data = bytearray(total_size) if f is None else None

    @classmethod
    def create(cls, total_size: int, path=None) -> "ImageBuffer":
        """Allocate `total_size` zero bytes, in memory or in a file at `path`."""
        if total_size <= 0:
            raise AllocationError(f"image size must be positive, got {total_size}")
        if path is None:
            try:
                return cls(total_size)
            except MemoryError as exc:
                raise AllocationError(f"cannot allocate 0x{total_size:X} bytes in memory") from exc

        try:
            f = open(path, "w+b")
        except OSError as exc:
            raise AllocationError(f"cannot create image '{path}': {exc.strerror}") from exc
        try:
            f.truncate(total_size)
        except OSError as exc:
            f.close()
            raise AllocationError(
                f"cannot reserve 0x{total_size:X} bytes for '{path}': {exc.strerror}"
            ) from exc
        return cls(total_size, f, path)

    @classmethod
    def open(cls, path) -> "ImageBuffer":
        """Open an existing image read-only."""
        try:
            f = open(path, "rb")
        except OSError as exc:
            raise ImageIOError(f"cannot open image '{path}': {exc.strerror}", path) from exc
        return cls(os.fstat(f.fileno()).st_size, f, path)

    # -----------------------------------------------------------------

    def _check(self, offset: int, length: int, error) -> None:
        if offset < 0 or length < 0 or offset + length > self.total_size:
            raise error(offset, length, self.total_size)

    def write_at(self, offset: int, data: bytes) -> None:
        self._check(offset, len(data), WriteOutOfBounds)
        if self._data is not None:
            self._data[offset:offset + len(data)] = data
            return
        try:
            self._file.seek(offset, os.SEEK_SET)
            self._file.write(data)
        except OSError as exc:
            raise ImageIOError(
                f"cannot write {len(data)} bytes at 0x{offset:X} to '{self.path}': {exc.strerror}",
                self.path,
            ) from exc

    def read_range(self, offset: int, length: int) -> bytes:
        self._check(offset, length, ReadOutOfBounds)
        if self._data is not None:
            return bytes(self._data[offset:offset + length])
        try:
            self._file.flush()
            self._file.seek(offset, os.SEEK_SET)
            data = self._file.read(length)
        except OSError as exc:
            raise ImageIOError(
                f"cannot read {length} bytes at 0x{offset:X} from '{self.path}': {exc.strerror}",
                self.path,
            ) from exc
        if len(data) != length:
            raise ImageIOError(f"short read at 0x{offset:X} from '{self.path}'", self.path)
        return data

    def zero_fill(self, offset: int, length: int) -> None:
        self._check(offset, length, WriteOutOfBounds)
        if self._data is not None:
            self._data[offset:offset + length] = bytes(length)
            return
        chunk = bytes(min(length, CHUNK_SIZE))
        remaining = length
        while remaining > 0:
            n = min(remaining, len(chunk))
            self.write_at(offset, chunk[:n])
            offset += n
            remaining -= n

    def getvalue(self) -> bytes:
        """Whole image contents (reads the file back when file-backed)."""
        return self.read_range(0, self.total_size)

    def close(self) -> None:
        if self._file is not None and not self._file.closed:
            try:
                if self._file.writable():
                    self._file.flush()
                    os.fsync(self._file.fileno())
            except OSError as exc:
                raise ImageIOError(f"cannot flush '{self.path}': {exc.strerror}", self.path) from exc
            finally:
                self._file.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False
