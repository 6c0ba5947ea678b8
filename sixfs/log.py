"""Write-ahead redo log giving crash-safe multi-block file system operations.

A transaction groups the block writes of one or more operations. The log
commits only when no operation is in progress: modified blocks are copied
to the log area, the header is written (the commit point), the blocks are
installed at their home locations and the header is cleared.
"""

from __future__ import annotations

import struct
from contextlib import contextmanager
from typing import Iterator

from .bio import Buf, BufferCache
from .layout import BSIZE, LOGSIZE, MAXOPBLOCKS, FsError, Superblock

_COUNT = struct.Struct("<i")


class Log:
    """The on-disk log of one file system."""

    def __init__(self, cache: BufferCache, superblock: Superblock):
        if _COUNT.size * (1 + LOGSIZE) >= BSIZE:
            raise FsError("initlog: too big logheader")
        self.cache = cache
        self.start = superblock.logstart
        self.size = superblock.nlog
        self.outstanding = 0
        self.committing = False
        self._blocks: list = []
        self._recover()

    def _read_head(self) -> None:
        with self.cache.block(self.start) as buf:
            (n,) = _COUNT.unpack_from(buf.data)
            if not 0 <= n <= LOGSIZE:
                raise FsError("corrupt log header")
            self._blocks = list(struct.unpack_from(f"<{n}i", buf.data, _COUNT.size))

    def _write_head(self) -> None:
        with self.cache.block(self.start) as buf:
            n = len(self._blocks)
            _COUNT.pack_into(buf.data, 0, n)
            struct.pack_into(f"<{n}i", buf.data, _COUNT.size, *self._blocks)
            self.cache.write(buf)

    def _install(self, recovering: bool) -> None:
        for tail, home in enumerate(self._blocks):
            lbuf = self.cache.read(self.start + tail + 1)
            dbuf = self.cache.read(home)
            dbuf.data[:] = lbuf.data
            self.cache.write(dbuf)
            if not recovering:
                self.cache.unpin(dbuf)
            self.cache.release(lbuf)
            self.cache.release(dbuf)

    def _recover(self) -> None:
        self._read_head()
        self._install(recovering=True)
        self._blocks = []
        self._write_head()

    def _write_log(self) -> None:
        for tail, home in enumerate(self._blocks):
            to = self.cache.read(self.start + tail + 1)
            src = self.cache.read(home)
            to.data[:] = src.data
            self.cache.write(to)
            self.cache.release(src)
            self.cache.release(to)

    def _commit(self) -> None:
        if self._blocks:
            self._write_log()
            self._write_head()
            self._install(recovering=False)
            self._blocks = []
            self._write_head()

    def begin_op(self) -> None:
        """Start a file system operation, reserving log space for it."""
        if self.committing:
            raise FsError("log is committing")
        if len(self._blocks) + (self.outstanding + 1) * MAXOPBLOCKS > LOGSIZE:
            raise FsError("log space exhausted")
        self.outstanding += 1

    def end_op(self) -> None:
        """End an operation; commit if it was the last one outstanding."""
        if self.outstanding < 1:
            raise FsError("end_op without begin_op")
        self.outstanding -= 1
        if self.committing:
            raise FsError("log.committing")
        if self.outstanding == 0:
            self.committing = True
            try:
                self._commit()
            finally:
                self.committing = False

    def log_write(self, buf: Buf) -> None:
        """Record a modified buffer in the log and pin it in the cache."""
        if len(self._blocks) >= LOGSIZE or len(self._blocks) >= self.size - 1:
            raise FsError("too big a transaction")
        if self.outstanding < 1:
            raise FsError("log_write outside of trans")
        if buf.blockno not in self._blocks:
            self.cache.pin(buf)
            self._blocks.append(buf.blockno)

    @contextmanager
    def transaction(self) -> Iterator["Log"]:
        """Wrap a block in begin_op and end_op."""
        self.begin_op()
        try:
            yield self
        finally:
            self.end_op()

    def pending(self) -> list:
        """Block numbers logged in the current transaction."""
        return list(self._blocks)