# Copyright (c) 2024-2026 Christian Moeller
# Email: c.moeller.ffo@gmail.com, brianmayclone@googlemail.com
#
# This project is open source and community-driven.
# Contributions are welcome! See README.md for details.
#
# SPDX-License-Identifier: MIT

"""
jffs2.py - Flat JFFS2 images for the manifest partition

Two builders share one interface, builder(files) -> bytes, where `files`
maps file names to contents and the result is padded to the partition size:

  Jffs2Builder      writes the image in-process (uncompressed nodes)
  MkfsJffs2Builder  stages the files and runs the external mkfs.jffs2 tool

read_jffs2() parses a flat image back into {name: bytes}.

Node layout (little-endian, all nodes 4-byte aligned):
  header:  magic(2) nodetype(2) totlen(4) hdr_crc(4)
  dirent:  header + pino ino version mctime nsize type node_crc name_crc name
  inode:   header + ino version mode uid gid isize atime mtime ctime
           offset csize dsize compr usercompr flags data_crc node_crc data
"""

import os
import struct
import subprocess
import tempfile
import zlib
from typing import Dict

from .checksum import jffs2_crc32
from .errors import FilesystemBuildError

JFFS2_MAGIC = 0x1985
NODETYPE_DIRENT = 0xE001
NODETYPE_INODE = 0xE002
NODETYPE_CLEANMARKER = 0x2003

COMPR_NONE = 0x00
COMPR_ZERO = 0x01
COMPR_RTIME = 0x02
COMPR_ZLIB = 0x06

DT_REG = 8
S_IFDIR = 0o040000
S_IFREG = 0o100000

ROOT_INO = 1
PAGE_SIZE = 4096
MAX_NAME_LEN = 254

HEADER = struct.Struct("<HHII")
DIRENT = struct.Struct("<HHIIIIIIBB2xII")
INODE = struct.Struct("<HHIIIIIHHIIIIIIIBBHII")


def pad4(n: int) -> int:
    return (n + 3) & ~3


def _header_crc(nodetype: int, totlen: int) -> int:
    return jffs2_crc32(struct.pack("<HHI", JFFS2_MAGIC, nodetype, totlen))


def make_cleanmarker() -> bytes:
    return HEADER.pack(JFFS2_MAGIC, NODETYPE_CLEANMARKER, HEADER.size,
                       _header_crc(NODETYPE_CLEANMARKER, HEADER.size))


def make_dirent(pino: int, version: int, ino: int, name: bytes, mctime: int,
                dtype: int = DT_REG) -> bytes:
    totlen = DIRENT.size + len(name)
    fields = (JFFS2_MAGIC, NODETYPE_DIRENT, totlen, _header_crc(NODETYPE_DIRENT, totlen),
              pino, version, ino, mctime, len(name), dtype)
    node_crc = jffs2_crc32(DIRENT.pack(*fields, 0, 0)[:DIRENT.size - 8])
    return DIRENT.pack(*fields, node_crc, jffs2_crc32(name)) + name


def make_inode(ino: int, version: int, mode: int, isize: int, offset: int,
               data: bytes, mtime: int) -> bytes:
    totlen = INODE.size + len(data)
    fields = (JFFS2_MAGIC, NODETYPE_INODE, totlen, _header_crc(NODETYPE_INODE, totlen),
              ino, version, mode, 0, 0, isize, mtime, mtime, mtime,
              offset, len(data), len(data), COMPR_NONE, 0, 0, jffs2_crc32(data))
    node_crc = jffs2_crc32(INODE.pack(*fields, 0)[:INODE.size - 8])
    return INODE.pack(*fields, node_crc) + data


# =====================================================================
# In-process builder
# =====================================================================

class Jffs2Builder:
    """Build a flat, uncompressed JFFS2 image padded to `pad_to` bytes."""

    def __init__(self, pad_to: int, erase_block: int = 0x1000, cleanmarkers: bool = True,
                 timestamp: int = 0):
        if erase_block < 256 or erase_block % 4:
            raise FilesystemBuildError(f"invalid erase block size 0x{erase_block:X}")
        self.pad_to = pad_to
        self.erase_block = erase_block
        self.cleanmarkers = cleanmarkers
        self.timestamp = timestamp
        marker = HEADER.size if cleanmarkers else 0
        self.max_chunk = min(PAGE_SIZE, (erase_block - marker - INODE.size) & ~3)

    def _append(self, out: bytearray, node: bytes) -> None:
        size = pad4(len(node))
        room = self.erase_block - (HEADER.size if self.cleanmarkers else 0)
        if size > room:
            raise FilesystemBuildError(
                f"node of {size} bytes does not fit erase block 0x{self.erase_block:X}"
            )
        used = len(out) % self.erase_block
        if used and used + size > self.erase_block:
            out += b"\xFF" * (self.erase_block - used)
            used = 0
        if used == 0 and self.cleanmarkers:
            out += make_cleanmarker()
        out += node
        out += b"\xFF" * (size - len(node))

    def __call__(self, files: Dict[str, bytes]) -> bytes:
        out = bytearray()
        ts = self.timestamp

        self._append(out, make_inode(ROOT_INO, 1, S_IFDIR | 0o755, 0, 0, b"", ts))
        dir_version = 1
        ino = ROOT_INO
        for name in sorted(files):
            encoded = name.encode("utf-8")
            if not encoded or len(encoded) > MAX_NAME_LEN or "/" in name:
                raise FilesystemBuildError(f"invalid file name '{name}'")
            data = bytes(files[name])
            ino += 1
            dir_version += 1
            self._append(out, make_dirent(ROOT_INO, dir_version, ino, encoded, ts))

            version = 0
            offset = 0
            while True:
                chunk = data[offset:offset + self.max_chunk]
                version += 1
                self._append(out, make_inode(ino, version, S_IFREG | 0o644, len(data),
                                             offset, chunk, ts))
                offset += len(chunk)
                if offset >= len(data):
                    break

        if len(out) > self.pad_to:
            raise FilesystemBuildError(
                f"filesystem needs {len(out)} bytes, partition holds {self.pad_to}"
            )
        out += b"\xFF" * (self.pad_to - len(out))
        return bytes(out)


# =====================================================================
# External mkfs.jffs2
# =====================================================================

class MkfsJffs2Builder:
    """Build the image with the mtd-utils mkfs.jffs2 tool."""

    def __init__(self, pad_to: int, erase_block: int = 0x1000, tool: str = "mkfs.jffs2"):
        self.pad_to = pad_to
        self.erase_block = erase_block
        self.tool = tool

    def __call__(self, files: Dict[str, bytes]) -> bytes:
        with tempfile.TemporaryDirectory() as tmpdir:
            root = os.path.join(tmpdir, "root")
            os.mkdir(root)
            for name, data in files.items():
                with open(os.path.join(root, name), "wb") as f:
                    f.write(data)

            output = os.path.join(tmpdir, "manifest.jffs2")
            cmd = [
                self.tool,
                "--root", root,
                "--output", output,
                "--little-endian",
                "--squash",
                f"--eraseblock=0x{self.erase_block:X}",
                f"--pad=0x{self.pad_to:X}",
            ]
            try:
                result = subprocess.run(cmd, capture_output=True)
            except OSError as exc:
                raise FilesystemBuildError(f"cannot run {self.tool}: {exc.strerror}") from exc
            if result.returncode != 0:
                raise FilesystemBuildError(
                    f"{self.tool} failed:\n{result.stderr.decode(errors='replace')}"
                )

            with open(output, "rb") as f:
                blob = f.read()

        if len(blob) != self.pad_to:
            raise FilesystemBuildError(
                f"{self.tool} produced {len(blob)} bytes, partition holds {self.pad_to}"
            )
        return blob


def make_fs_builder(kind: str, pad_to: int, erase_block: int = 0x1000,
                    tool: str = "mkfs.jffs2"):
    if kind == "internal":
        return Jffs2Builder(pad_to, erase_block)
    if kind == "mkfs.jffs2":
        return MkfsJffs2Builder(pad_to, erase_block, tool)
    raise FilesystemBuildError(f"unknown filesystem builder '{kind}'")


# =====================================================================
# Reader
# =====================================================================

def rtime_decompress(src: bytes, dest_len: int) -> bytes:
    out = bytearray()
    positions = [0] * 256
    pos = 0
    while len(out) < dest_len:
        value = src[pos]
        repeat = src[pos + 1]
        pos += 2
        out.append(value)
        backoffs = positions[value]
        positions[value] = len(out)
        # Byte at a time: the source range may overlap what is being written
        for _ in range(repeat):
            out.append(out[backoffs])
            backoffs += 1
    return bytes(out[:dest_len])


def _inode_data(compr: int, payload: bytes, dsize: int, where: int) -> bytes:
    if compr == COMPR_NONE:
        return payload
    if compr == COMPR_ZERO:
        return bytes(dsize)
    if compr == COMPR_ZLIB:
        try:
            return zlib.decompress(payload)
        except zlib.error as exc:
            raise FilesystemBuildError(f"bad zlib data in node at 0x{where:X}") from exc
    if compr == COMPR_RTIME:
        return rtime_decompress(payload, dsize)
    raise FilesystemBuildError(f"unsupported compression 0x{compr:02X} in node at 0x{where:X}")


def read_jffs2(blob: bytes) -> Dict[str, bytes]:
    """Return the files in the root directory of a JFFS2 image."""
    dirents = {}
    nodes = {}
    pos = 0
    while pos + HEADER.size <= len(blob):
        magic, nodetype, totlen, hdr_crc = HEADER.unpack_from(blob, pos)
        if magic != JFFS2_MAGIC:
            pos += 4
            continue
        if jffs2_crc32(blob[pos:pos + 8]) != hdr_crc:
            raise FilesystemBuildError(f"bad node header CRC at 0x{pos:X}")
        if totlen < HEADER.size or pos + totlen > len(blob):
            raise FilesystemBuildError(f"bad node length {totlen} at 0x{pos:X}")

        if nodetype == NODETYPE_DIRENT:
            if totlen < DIRENT.size:
                raise FilesystemBuildError(f"dirent node too short ({totlen}) at 0x{pos:X}")
            (_, _, _, _, pino, version, ino, _, nsize, _,
             node_crc, name_crc) = DIRENT.unpack_from(blob, pos)
            if jffs2_crc32(blob[pos:pos + DIRENT.size - 8]) != node_crc:
                raise FilesystemBuildError(f"bad dirent CRC at 0x{pos:X}")
            if DIRENT.size + nsize > totlen:
                raise FilesystemBuildError(f"dirent name overruns node at 0x{pos:X}")
            raw = blob[pos + DIRENT.size:pos + DIRENT.size + nsize]
            if jffs2_crc32(raw) != name_crc:
                raise FilesystemBuildError(f"bad name CRC in dirent at 0x{pos:X}")
            try:
                name = raw.decode("utf-8")
            except UnicodeDecodeError as exc:
                raise FilesystemBuildError(f"undecodable name in dirent at 0x{pos:X}") from exc
            if pino == ROOT_INO and version >= dirents.get(name, (-1, 0))[0]:
                dirents[name] = (version, ino)
        elif nodetype == NODETYPE_INODE:
            if totlen < INODE.size:
                raise FilesystemBuildError(f"inode node too short ({totlen}) at 0x{pos:X}")
            fields = INODE.unpack_from(blob, pos)
            ino, version = fields[4], fields[5]
            isize, offset, csize, dsize, compr, data_crc, node_crc = (
                fields[9], fields[13], fields[14], fields[15], fields[16], fields[19], fields[20]
            )
            if jffs2_crc32(blob[pos:pos + INODE.size - 8]) != node_crc:
                raise FilesystemBuildError(f"bad inode CRC at 0x{pos:X}")
            if INODE.size + csize > totlen:
                raise FilesystemBuildError(f"inode data overruns node at 0x{pos:X}")
            payload = blob[pos + INODE.size:pos + INODE.size + csize]
            if jffs2_crc32(payload) != data_crc:
                raise FilesystemBuildError(f"bad data CRC in node at 0x{pos:X}")
            data = _inode_data(compr, payload, dsize, pos)
            nodes.setdefault(ino, []).append((version, offset, data, isize))

        pos += pad4(totlen)

    files = {}
    for name, (_, ino) in dirents.items():
        if ino == 0:
            continue  # unlinked
        chunks = sorted(nodes.get(ino, []), key=lambda n: n[0])
        isize = chunks[-1][3] if chunks else 0
        content = bytearray(isize)
        for _, offset, data, _ in chunks:
            end = min(offset + len(data), isize)
            content[offset:end] = data[:end - offset]
        files[name] = bytes(content)
    return files
