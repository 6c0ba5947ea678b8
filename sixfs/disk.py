"""Block devices backed by memory or by an image file."""

from __future__ import annotations

import os

from .layout import BSIZE, FSSIZE, FsError


class _BlockDevice:
    nblocks: int

    def _check(self, blockno: int) -> None:
        if not 0 <= blockno < self.nblocks:
            raise FsError(f"block number {blockno} out of range")

    @staticmethod
    def _check_data(data) -> None:
        if len(data) != BSIZE:
            raise ValueError(f"a block is {BSIZE} bytes, got {len(data)}")


class MemoryDisk(_BlockDevice):
    """A disk held entirely in memory."""

    def __init__(self, nblocks: int = FSSIZE):
        if nblocks < 1:
            raise ValueError("a disk needs at least one block")
        self.nblocks = nblocks
        self._data = bytearray(nblocks * BSIZE)

    def read_block(self, blockno: int) -> bytes:
        self._check(blockno)
        start = blockno * BSIZE
        return bytes(self._data[start : start + BSIZE])

    def write_block(self, blockno: int, data) -> None:
        self._check(blockno)
        self._check_data(data)
        start = blockno * BSIZE
        self._data[start : start + BSIZE] = data


class FileDisk(_BlockDevice):
    """A disk stored in an image file, created or extended as needed."""

    def __init__(self, path, nblocks: int | None = None):
        exists = os.path.exists(path)
        if not exists and nblocks is None:
            raise ValueError("nblocks is required to create a new disk image")
        self._file = open(path, "r+b" if exists else "w+b")
        current = self._file.seek(0, os.SEEK_END)
        if nblocks is None:
            nblocks = current // BSIZE
        if nblocks < 1:
            self._file.close()
            raise ValueError("a disk needs at least one block")
        if current < nblocks * BSIZE:
            self._file.truncate(nblocks * BSIZE)
        self.nblocks = nblocks

    def read_block(self, blockno: int) -> bytes:
        self._check(blockno)
        self._file.seek(blockno * BSIZE)
        return self._file.read(BSIZE).ljust(BSIZE, b"\0")

    def write_block(self, blockno: int, data) -> None:
        self._check(blockno)
        self._check_data(data)
        self._file.seek(blockno * BSIZE)
        self._file.write(bytes(data))
        self._file.flush()

    def close(self) -> None:
        self._file.close()

    def __enter__(self) -> "FileDisk":
        return self

    def __exit__(self, *args) -> None:
        self.close()