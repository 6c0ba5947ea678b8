"""On-disk layout of the file system: limits, record formats and formatting."""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from enum import IntEnum

# System limits.
NOFILE = 16  # open files per process
NFILE = 100  # open files per system
NINODE = 50  # maximum number of active in-memory inodes
NDEV = 10  # maximum major device number
ROOTDEV = 1  # device number of the file system root disk
MAXARG = 32  # max exec arguments
MAXOPBLOCKS = 10  # max number of blocks any file system operation writes
LOGSIZE = MAXOPBLOCKS * 3  # max data blocks in the on-disk log
NBUF = MAXOPBLOCKS * 3  # size of the disk block cache
FSSIZE = 2000  # size of the file system in blocks
MAXPATH = 128  # maximum file path name

# On-disk format.
ROOTINO = 1  # root i-number
BSIZE = 1024  # block size
FSMAGIC = 0x10203040
NDIRECT = 12
NINDIRECT = BSIZE // 4
MAXFILE = NDIRECT + NINDIRECT
DIRSIZ = 14
BPB = BSIZE * 8  # bitmap bits per block

_SUPERBLOCK = struct.Struct("<8I")
_DINODE = struct.Struct(f"<4hI{NDIRECT + 1}I")
_DIRENT = struct.Struct(f"<H{DIRSIZ}s")

SUPERBLOCK_SIZE = _SUPERBLOCK.size
DINODE_SIZE = _DINODE.size
DIRENT_SIZE = _DIRENT.size
IPB = BSIZE // DINODE_SIZE  # inodes per block


class FsError(Exception):
    """A file system invariant was violated or a resource ran out."""


class InodeType(IntEnum):
    """Type stored in an on-disk inode; FREE marks an unallocated inode."""

    FREE = 0
    DIR = 1
    FILE = 2
    DEVICE = 3


@dataclass
class Superblock:
    """Describes the disk layout."""

    magic: int
    size: int  # size of the image in blocks
    nblocks: int  # number of data blocks
    ninodes: int
    nlog: int  # number of log blocks
    logstart: int
    inodestart: int
    bmapstart: int

    def pack(self) -> bytes:
        return _SUPERBLOCK.pack(
            self.magic,
            self.size,
            self.nblocks,
            self.ninodes,
            self.nlog,
            self.logstart,
            self.inodestart,
            self.bmapstart,
        )

    @classmethod
    def unpack(cls, data) -> "Superblock":
        return cls(*_SUPERBLOCK.unpack_from(data))


def _zero_addrs() -> list:
    return [0] * (NDIRECT + 1)


@dataclass
class DiskInode:
    """An inode as stored on disk."""

    type: int = InodeType.FREE
    major: int = 0
    minor: int = 0
    nlink: int = 0
    size: int = 0
    addrs: list = field(default_factory=_zero_addrs)

    def pack(self) -> bytes:
        if len(self.addrs) != NDIRECT + 1:
            raise ValueError(f"an inode holds exactly {NDIRECT + 1} block addresses")
        return _DINODE.pack(
            int(self.type), self.major, self.minor, self.nlink, self.size, *self.addrs
        )

    @classmethod
    def unpack(cls, data) -> "DiskInode":
        itype, major, minor, nlink, size, *addrs = _DINODE.unpack_from(data)
        return cls(itype, major, minor, nlink, size, list(addrs))


def encode_name(name: str) -> bytes:
    """Encode a directory entry name, cut to DIRSIZ bytes."""
    return name.encode("utf-8", "surrogateescape")[:DIRSIZ]


@dataclass
class Dirent:
    """A directory entry; inum 0 marks a free slot."""

    inum: int = 0
    name: str = ""

    def pack(self) -> bytes:
        return _DIRENT.pack(self.inum, encode_name(self.name))

    @classmethod
    def unpack(cls, data) -> "Dirent":
        inum, raw = _DIRENT.unpack_from(data)
        return cls(inum, raw.split(b"\0", 1)[0].decode("utf-8", "surrogateescape"))


def inode_block(inum: int, sb: Superblock) -> int:
    """Block holding inode inum."""
    return inum // IPB + sb.inodestart


def bitmap_block(b: int, sb: Superblock) -> int:
    """Block of the free map holding the bit for block b."""
    return b // BPB + sb.bmapstart


def format_device(disk, ninodes: int = 200, nlog: int = LOGSIZE) -> Superblock:
    """Write an empty file system holding only the root directory.

    Layout: boot block, super block, log, inode blocks, free bitmap, data.
    """
    if ninodes <= ROOTINO:
        raise FsError("need room for at least the root inode")
    if not 2 <= nlog <= LOGSIZE + 1:
        raise FsError(f"log size must be between 2 and {LOGSIZE + 1} blocks")
    size = disk.nblocks
    ninodeblocks = ninodes // IPB + 1
    nbitmap = size // BPB + 1
    nmeta = 2 + nlog + ninodeblocks + nbitmap
    if nmeta + 1 > size:
        raise FsError("device too small for the file system")

    sb = Superblock(
        magic=FSMAGIC,
        size=size,
        nblocks=size - nmeta,
        ninodes=ninodes,
        nlog=nlog,
        logstart=2,
        inodestart=2 + nlog,
        bmapstart=2 + nlog + ninodeblocks,
    )

    zero = bytes(BSIZE)
    for blockno in range(size):
        disk.write_block(blockno, zero)
    disk.write_block(1, sb.pack().ljust(BSIZE, b"\0"))

    root_block = nmeta
    root = DiskInode(
        type=InodeType.DIR,
        nlink=1,
        size=2 * DIRENT_SIZE,
        addrs=[root_block] + [0] * NDIRECT,
    )
    iblock = inode_block(ROOTINO, sb)
    data = bytearray(disk.read_block(iblock))
    off = (ROOTINO % IPB) * DINODE_SIZE
    data[off : off + DINODE_SIZE] = root.pack()
    disk.write_block(iblock, bytes(data))

    entries = Dirent(ROOTINO, ".").pack() + Dirent(ROOTINO, "..").pack()
    disk.write_block(root_block, entries.ljust(BSIZE, b"\0"))

    bitmap = bytearray(nbitmap * BSIZE)
    for b in range(nmeta + 1):
        bitmap[b // 8] |= 1 << (b % 8)
    for i in range(nbitmap):
        disk.write_block(sb.bmapstart + i, bytes(bitmap[i * BSIZE : (i + 1) * BSIZE]))
    return sb