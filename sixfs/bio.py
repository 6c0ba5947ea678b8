"""Buffer cache: locked, reference-counted copies of disk blocks in LRU order."""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Iterator

from .layout import BSIZE, NBUF, FsError


def _empty_block() -> bytearray:
    return bytearray(BSIZE)


@dataclass(eq=False)
class Buf:
    """A cached disk block."""

    blockno: int = -1
    data: bytearray = field(default_factory=_empty_block)
    valid: bool = False  # has data been read from disk?
    refcnt: int = 0
    locked: bool = False


class BufferCache:
    """A fixed set of buffers, most recently used first."""

    def __init__(self, disk, nbuf: int = NBUF):
        if nbuf < 1:
            raise ValueError("the cache needs at least one buffer")
        self.disk = disk
        self._bufs = [Buf() for _ in range(nbuf)]

    def _get(self, blockno: int) -> Buf:
        for b in self._bufs:
            if b.blockno == blockno:
                if b.locked:
                    raise FsError(f"block {blockno} is already locked")
                b.refcnt += 1
                b.locked = True
                return b
        for b in reversed(self._bufs):
            if b.refcnt == 0:
                b.blockno = blockno
                b.valid = False
                b.refcnt = 1
                b.locked = True
                return b
        raise FsError("bget: no buffers")

    def read(self, blockno: int) -> Buf:
        """Return a locked buffer with the contents of the block."""
        b = self._get(blockno)
        if not b.valid:
            b.data[:] = self.disk.read_block(blockno)
            b.valid = True
        return b

    def write(self, buf: Buf) -> None:
        """Write a locked buffer's contents to disk."""
        if not buf.locked:
            raise FsError("bwrite")
        self.disk.write_block(buf.blockno, bytes(buf.data))

    def release(self, buf: Buf) -> None:
        """Unlock a buffer; when unreferenced it becomes most recently used."""
        if not buf.locked:
            raise FsError("brelse")
        buf.locked = False
        buf.refcnt -= 1
        if buf.refcnt == 0:
            self._bufs.remove(buf)
            self._bufs.insert(0, buf)

    def pin(self, buf: Buf) -> None:
        buf.refcnt += 1

    def unpin(self, buf: Buf) -> None:
        if buf.refcnt < 1:
            raise FsError("bunpin")
        buf.refcnt -= 1

    @contextmanager
    def block(self, blockno: int) -> Iterator[Buf]:
        """Read a block and release it when the block exits."""
        b = self.read(blockno)
        try:
            yield b
        finally:
            self.release(b)

    def cached_blocks(self) -> list:
        """Block numbers held by the cache, most recently used first."""
        return [b.blockno for b in self._bufs if b.blockno >= 0]