"""Open files: reference-counted handles on inodes, devices and pipes."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto
from typing import Callable, Mapping, Optional

from .fs import FileSystem, Inode, Stat
from .layout import BSIZE, MAXOPBLOCKS, NDEV, NFILE, FsError

PIPESIZE = 512

# Write a few blocks per transaction so one write never exceeds the log:
# inode, indirect block, allocation blocks and two blocks of slop for
# unaligned writes.
_MAX_WRITE = ((MAXOPBLOCKS - 1 - 1 - 2) // 2) * BSIZE


class FileType(Enum):
    NONE = auto()
    PIPE = auto()
    INODE = auto()
    DEVICE = auto()


@dataclass
class Device:
    """Functions serving reads and writes of one major device number."""

    read: Optional[Callable[[int], bytes]] = None
    write: Optional[Callable[[bytes], int]] = None


class Pipe:
    """A bounded byte channel with a read end and a write end."""

    def __init__(self, capacity: int = PIPESIZE):
        if capacity < 1:
            raise ValueError("a pipe needs room for at least one byte")
        self.capacity = capacity
        self._buf = bytearray()
        self.readopen = True
        self.writeopen = True

    def read(self, n: int) -> bytes:
        """Take up to n bytes.

        Returns b"" once the write end is closed and the pipe is drained;
        raises BlockingIOError when empty while the write end is open.
        """
        if not self._buf and self.writeopen:
            raise BlockingIOError("pipe is empty")
        n = max(n, 0)
        out = bytes(self._buf[:n])
        del self._buf[:n]
        return out

    def write(self, data) -> int:
        """Add as much of data as fits; returns how many bytes were taken."""
        data = bytes(data)
        if not data:
            return 0
        if not self.readopen:
            raise BrokenPipeError("read end of pipe is closed")
        room = self.capacity - len(self._buf)
        if room == 0:
            raise BlockingIOError("pipe is full")
        chunk = data[:room]
        self._buf += chunk
        return len(chunk)

    def close(self, writable: bool) -> None:
        """Close the write end if writable, else the read end."""
        if writable:
            self.writeopen = False
        else:
            self.readopen = False


@dataclass(eq=False)
class OpenFile:
    """An entry of the open file table."""

    type: FileType = FileType.NONE
    ref: int = 0
    readable: bool = False
    writable: bool = False
    pipe: Optional[Pipe] = None
    ip: Optional[Inode] = None  # INODE and DEVICE
    off: int = 0  # INODE
    major: int = 0  # DEVICE


class FileTable:
    """The system-wide table of open files."""

    def __init__(
        self,
        fs: FileSystem,
        devices: Optional[Mapping[int, Device]] = None,
        nfile: int = NFILE,
    ):
        self.fs = fs
        self.devices = dict(devices or {})
        self._files = [OpenFile() for _ in range(nfile)]

    def alloc(self) -> OpenFile:
        """Take a free entry with one reference."""
        for f in self._files:
            if f.ref == 0:
                f.ref = 1
                f.type = FileType.NONE
                f.readable = f.writable = False
                f.pipe = None
                f.ip = None
                f.off = 0
                f.major = 0
                return f
        raise FsError("file table full")

    def dup(self, f: OpenFile) -> OpenFile:
        if f.ref < 1:
            raise FsError("filedup")
        f.ref += 1
        return f

    def close(self, f: OpenFile) -> None:
        """Drop a reference; release what the file holds on the last one."""
        if f.ref < 1:
            raise FsError("fileclose")
        f.ref -= 1
        if f.ref > 0:
            return
        ftype, pipe, writable, ip = f.type, f.pipe, f.writable, f.ip
        f.type = FileType.NONE
        f.pipe = None
        f.ip = None
        if ftype is FileType.PIPE:
            pipe.close(writable)
        elif ftype in (FileType.INODE, FileType.DEVICE):
            with self.fs.log.transaction():
                self.fs.iput(ip)

    def stat(self, f: OpenFile) -> Stat:
        if f.type not in (FileType.INODE, FileType.DEVICE):
            raise FsError("fstat: not an inode")
        self.fs.ilock(f.ip)
        try:
            return self.fs.stati(f.ip)
        finally:
            self.fs.iunlock(f.ip)

    def _device_op(self, f: OpenFile, op: str) -> Callable:
        if not 0 <= f.major < NDEV:
            raise FsError(f"bad major device number {f.major}")
        dev = self.devices.get(f.major)
        fn = getattr(dev, op) if dev is not None else None
        if fn is None:
            raise FsError(f"device {f.major} has no {op}")
        return fn

    def read(self, f: OpenFile, n: int) -> bytes:
        if not f.readable:
            raise FsError("file not open for reading")
        if f.type is FileType.PIPE:
            return f.pipe.read(n)
        if f.type is FileType.DEVICE:
            return bytes(self._device_op(f, "read")(n))
        if f.type is FileType.INODE:
            self.fs.ilock(f.ip)
            try:
                data = self.fs.readi(f.ip, f.off, n)
                f.off += len(data)
            finally:
                self.fs.iunlock(f.ip)
            return data
        raise FsError("fileread")

    def write(self, f: OpenFile, data) -> int:
        if not f.writable:
            raise FsError("file not open for writing")
        data = bytes(data)
        if f.type is FileType.PIPE:
            return f.pipe.write(data)
        if f.type is FileType.DEVICE:
            return self._device_op(f, "write")(data)
        if f.type is FileType.INODE:
            i = 0
            while i < len(data):
                chunk = data[i : i + _MAX_WRITE]
                with self.fs.log.transaction():
                    self.fs.ilock(f.ip)
                    try:
                        r = self.fs.writei(f.ip, f.off, chunk)
                        if r > 0:
                            f.off += r
                    finally:
                        self.fs.iunlock(f.ip)
                if r != len(chunk):
                    raise FsError("filewrite: short write")
                i += r
            return len(data)
        raise FsError("filewrite")

    def open_pipe(self) -> tuple:
        """Make a pipe; returns (read end, write end)."""
        rf = self.alloc()
        try:
            wf = self.alloc()
        except FsError:
            self.close(rf)
            raise
        pipe = Pipe()
        rf.type = wf.type = FileType.PIPE
        rf.pipe = wf.pipe = pipe
        rf.readable, rf.writable = True, False
        wf.readable, wf.writable = False, True
        return rf, wf