"""Inodes, file contents, directories and path names.

The file system sits on a buffer cache and a write-ahead log. Every call
that may modify the disk must run inside a log transaction
(``fs.log.transaction()``).
"""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from typing import Iterator, Optional

from .bio import BufferCache
from .layout import (
    BPB,
    BSIZE,
    DINODE_SIZE,
    DIRENT_SIZE,
    DIRSIZ,
    FSMAGIC,
    IPB,
    MAXFILE,
    NDIRECT,
    NINDIRECT,
    NINODE,
    ROOTDEV,
    ROOTINO,
    DiskInode,
    Dirent,
    FsError,
    InodeType,
    Superblock,
    bitmap_block,
    encode_name,
    inode_block,
)
from .log import Log

_ADDR = struct.Struct("<I")


@dataclass
class Stat:
    """Metadata about a file."""

    dev: int
    ino: int
    type: int
    nlink: int
    size: int


def _zero_addrs() -> list:
    return [0] * (NDIRECT + 1)


@dataclass(eq=False)
class Inode:
    """In-memory copy of an inode, with reference count and lock state."""

    inum: int = 0
    ref: int = 0
    locked: bool = False
    valid: bool = False  # has the inode been read from disk?
    type: int = InodeType.FREE
    major: int = 0
    minor: int = 0
    nlink: int = 0
    size: int = 0
    addrs: list = field(default_factory=_zero_addrs)

    def _load(self, d: DiskInode) -> None:
        self.type = d.type
        self.major = d.major
        self.minor = d.minor
        self.nlink = d.nlink
        self.size = d.size
        self.addrs = list(d.addrs)

    def _to_disk(self) -> DiskInode:
        return DiskInode(
            type=self.type,
            major=self.major,
            minor=self.minor,
            nlink=self.nlink,
            size=self.size,
            addrs=list(self.addrs),
        )


def skip_element(path: str) -> Optional[tuple]:
    """Split off the first element of a path.

    Returns (name, rest) where rest has no leading slashes, or None when
    the path holds no element. Names are cut to DIRSIZ bytes.
    """
    path = path.lstrip("/")
    if not path:
        return None
    elem, _, rest = path.partition("/")
    name = encode_name(elem).decode("utf-8", "surrogateescape")
    return name, rest.lstrip("/")


def namecmp(s: str, t: str) -> int:
    """Compare two directory entry names over at most DIRSIZ bytes."""
    a = encode_name(s).ljust(DIRSIZ, b"\0")
    b = encode_name(t).ljust(DIRSIZ, b"\0")
    for x, y in zip(a, b):
        if x != y:
            return x - y
        if x == 0:
            return 0
    return 0


class FileSystem:
    """A file system on one block device."""

    def __init__(self, disk):
        self.disk = disk
        self.cache = BufferCache(disk)
        with self.cache.block(1) as buf:
            self.sb = Superblock.unpack(buf.data)
        if self.sb.magic != FSMAGIC:
            raise FsError("invalid file system")
        self.log = Log(self.cache, self.sb)
        self._inodes = [Inode() for _ in range(NINODE)]

    # Blocks.

    def _bzero(self, blockno: int) -> None:
        with self.cache.block(blockno) as buf:
            buf.data[:] = bytes(BSIZE)
            self.log.log_write(buf)

    def _balloc(self) -> Optional[int]:
        """Allocate a zeroed block; None when the disk is full."""
        for base in range(0, self.sb.size, BPB):
            found = None
            with self.cache.block(bitmap_block(base, self.sb)) as buf:
                for bi in range(min(BPB, self.sb.size - base)):
                    mask = 1 << (bi % 8)
                    if not buf.data[bi // 8] & mask:
                        buf.data[bi // 8] |= mask
                        self.log.log_write(buf)
                        found = base + bi
                        break
            if found is not None:
                self._bzero(found)
                return found
        return None

    def _bfree(self, b: int) -> None:
        with self.cache.block(bitmap_block(b, self.sb)) as buf:
            bi = b % BPB
            mask = 1 << (bi % 8)
            if not buf.data[bi // 8] & mask:
                raise FsError("freeing free block")
            buf.data[bi // 8] &= ~mask & 0xFF
            self.log.log_write(buf)

    # Inodes.

    def _locate(self, inum: int) -> tuple:
        return inode_block(inum, self.sb), (inum % IPB) * DINODE_SIZE

    def ialloc(self, itype) -> Inode:
        """Allocate an inode of the given type; returned unlocked and referenced."""
        for inum in range(1, self.sb.ninodes):
            blockno, off = self._locate(inum)
            found = False
            with self.cache.block(blockno) as buf:
                d = DiskInode.unpack(bytes(buf.data[off : off + DINODE_SIZE]))
                if d.type == InodeType.FREE:
                    buf.data[off : off + DINODE_SIZE] = DiskInode(type=itype).pack()
                    self.log.log_write(buf)
                    found = True
            if found:
                return self.iget(inum)
        raise FsError("ialloc: no inodes")

    def iupdate(self, ip: Inode) -> None:
        """Copy a modified in-memory inode to disk."""
        blockno, off = self._locate(ip.inum)
        with self.cache.block(blockno) as buf:
            buf.data[off : off + DINODE_SIZE] = ip._to_disk().pack()
            self.log.log_write(buf)

    def iget(self, inum: int) -> Inode:
        """Find or make the in-memory inode for inum, without locking or reading it."""
        empty = None
        for ip in self._inodes:
            if ip.ref > 0 and ip.inum == inum:
                ip.ref += 1
                return ip
            if empty is None and ip.ref == 0:
                empty = ip
        if empty is None:
            raise FsError("iget: no inodes")
        empty.inum = inum
        empty.ref = 1
        empty.valid = False
        empty.locked = False
        return empty

    def idup(self, ip: Inode) -> Inode:
        ip.ref += 1
        return ip

    def ilock(self, ip: Inode) -> None:
        """Lock an inode, reading it from disk if needed."""
        if ip is None or ip.ref < 1:
            raise FsError("ilock")
        if ip.locked:
            raise FsError("ilock: inode already locked")
        ip.locked = True
        if not ip.valid:
            blockno, off = self._locate(ip.inum)
            with self.cache.block(blockno) as buf:
                ip._load(DiskInode.unpack(bytes(buf.data[off : off + DINODE_SIZE])))
            ip.valid = True
            if ip.type == InodeType.FREE:
                ip.locked = False
                raise FsError("ilock: no type")

    def iunlock(self, ip: Inode) -> None:
        if ip is None or not ip.locked or ip.ref < 1:
            raise FsError("iunlock")
        ip.locked = False

    def iput(self, ip: Inode) -> None:
        """Drop a reference; free the inode on disk if it was the last one and unlinked."""
        if ip.ref < 1:
            raise FsError("iput")
        if ip.ref == 1 and ip.valid and ip.nlink == 0:
            if ip.locked:
                raise FsError("iput: inode is locked")
            ip.locked = True
            try:
                self.itrunc(ip)
                ip.type = InodeType.FREE
                self.iupdate(ip)
                ip.valid = False
            finally:
                ip.locked = False
        ip.ref -= 1

    def iunlockput(self, ip: Inode) -> None:
        self.iunlock(ip)
        self.iput(ip)

    def root(self) -> Inode:
        """A new reference to the root directory."""
        return self.iget(ROOTINO)

    # Inode content.

    def _bmap(self, ip: Inode, bn: int) -> Optional[int]:
        """Disk block holding block bn of the inode, allocated if missing."""
        if bn < NDIRECT:
            if ip.addrs[bn] == 0:
                addr = self._balloc()
                if addr is None:
                    return None
                ip.addrs[bn] = addr
            return ip.addrs[bn]
        bn -= NDIRECT
        if bn < NINDIRECT:
            if ip.addrs[NDIRECT] == 0:
                addr = self._balloc()
                if addr is None:
                    return None
                ip.addrs[NDIRECT] = addr
            with self.cache.block(ip.addrs[NDIRECT]) as buf:
                (addr,) = _ADDR.unpack_from(buf.data, bn * _ADDR.size)
                if addr == 0:
                    addr = self._balloc()
                    if addr is None:
                        return None
                    _ADDR.pack_into(buf.data, bn * _ADDR.size, addr)
                    self.log.log_write(buf)
            return addr
        raise FsError("bmap: out of range")

    def itrunc(self, ip: Inode) -> None:
        """Discard the inode's contents."""
        for i in range(NDIRECT):
            if ip.addrs[i]:
                self._bfree(ip.addrs[i])
                ip.addrs[i] = 0
        if ip.addrs[NDIRECT]:
            with self.cache.block(ip.addrs[NDIRECT]) as buf:
                entries = struct.unpack_from(f"<{NINDIRECT}I", buf.data)
                for addr in entries:
                    if addr:
                        self._bfree(addr)
            self._bfree(ip.addrs[NDIRECT])
            ip.addrs[NDIRECT] = 0
        ip.size = 0
        self.iupdate(ip)

    def stati(self, ip: Inode) -> Stat:
        return Stat(dev=ROOTDEV, ino=ip.inum, type=ip.type, nlink=ip.nlink, size=ip.size)

    def readi(self, ip: Inode, off: int, n: int) -> bytes:
        """Read up to n bytes at off; stops at the end of the file."""
        if off < 0 or n < 0 or off > ip.size:
            return b""
        n = min(n, ip.size - off)
        out = bytearray()
        while len(out) < n:
            addr = self._bmap(ip, off // BSIZE)
            if addr is None:
                break
            start = off % BSIZE
            m = min(n - len(out), BSIZE - start)
            with self.cache.block(addr) as buf:
                out += buf.data[start : start + m]
            off += m
        return bytes(out)

    def writei(self, ip: Inode, off: int, data) -> int:
        """Write data at off; returns the bytes written, fewer if the disk fills."""
        view = memoryview(bytes(data))
        n = len(view)
        if off < 0 or off > ip.size:
            raise FsError("writei: offset past end of file")
        if off + n > MAXFILE * BSIZE:
            raise FsError("writei: file too large")
        tot = 0
        while tot < n:
            addr = self._bmap(ip, off // BSIZE)
            if addr is None:
                break
            start = off % BSIZE
            m = min(n - tot, BSIZE - start)
            with self.cache.block(addr) as buf:
                buf.data[start : start + m] = view[tot : tot + m]
                self.log.log_write(buf)
            tot += m
            off += m
        if off > ip.size:
            ip.size = off
        # The inode goes back to disk even if the size is unchanged,
        # since _bmap may have added blocks.
        self.iupdate(ip)
        return tot

    # Directories.

    def _entries(self, dp: Inode) -> Iterator[tuple]:
        for off in range(0, dp.size, DIRENT_SIZE):
            raw = self.readi(dp, off, DIRENT_SIZE)
            if len(raw) != DIRENT_SIZE:
                raise FsError("directory read")
            yield off, Dirent.unpack(raw)

    def dirlookup(self, dp: Inode, name: str) -> Optional[tuple]:
        """Find name in directory dp; returns (inode, byte offset) or None."""
        if dp.type != InodeType.DIR:
            raise FsError("dirlookup not DIR")
        for off, de in self._entries(dp):
            if de.inum != 0 and namecmp(name, de.name) == 0:
                return self.iget(de.inum), off
        return None

    def dirlink(self, dp: Inode, name: str, inum: int) -> None:
        """Add the entry (name, inum) to directory dp."""
        existing = self.dirlookup(dp, name)
        if existing is not None:
            self.iput(existing[0])
            raise FsError(f"{name!r} already exists")
        off = next((o for o, de in self._entries(dp) if de.inum == 0), dp.size)
        if self.writei(dp, off, Dirent(inum, name).pack()) != DIRENT_SIZE:
            raise FsError("dirlink: out of disk blocks")

    # Paths.

    def _namex(self, path: str, parent: bool, cwd: Optional[Inode]):
        if path.startswith("/") or cwd is None:
            ip = self.root()
        else:
            ip = self.idup(cwd)
        rest = path
        while (elem := skip_element(rest)) is not None:
            name, rest = elem
            self.ilock(ip)
            if ip.type != InodeType.DIR:
                self.iunlockput(ip)
                return None
            if parent and rest == "":
                self.iunlock(ip)
                return ip, name
            found = self.dirlookup(ip, name)
            if found is None:
                self.iunlockput(ip)
                return None
            self.iunlockput(ip)
            ip = found[0]
        if parent:
            self.iput(ip)
            return None
        return ip

    def namei(self, path: str, cwd: Optional[Inode] = None) -> Optional[Inode]:
        """The inode named by path, relative to cwd unless absolute, or None."""
        return self._namex(path, False, cwd)

    def nameiparent(self, path: str, cwd: Optional[Inode] = None) -> Optional[tuple]:
        """(parent directory inode, final element) for path, or None."""
        return self._namex(path, True, cwd)