"""File system calls for one process: descriptors, paths and argument checks."""

from __future__ import annotations

from contextlib import contextmanager
from enum import IntFlag
from typing import Iterator, Optional

from .file import FileTable, FileType, OpenFile
from .fs import FileSystem, Inode, Stat, namecmp
from .layout import (
    DIRENT_SIZE,
    MAXPATH,
    NDEV,
    NOFILE,
    Dirent,
    FsError,
    InodeType,
)


class OpenFlag(IntFlag):
    RDONLY = 0x000
    WRONLY = 0x001
    RDWR = 0x002
    CREATE = 0x200
    TRUNC = 0x400


class SyscallError(Exception):
    """A system call failed."""


@contextmanager
def _fs_errors() -> Iterator[None]:
    try:
        yield
    except FsError as exc:
        raise SyscallError(str(exc)) from exc


def _check_path(path: str) -> str:
    if len(path.encode("utf-8", "surrogateescape")) >= MAXPATH:
        raise SyscallError("path too long")
    return path


class Session:
    """The file descriptors and working directory of one process."""

    def __init__(self, fs: FileSystem, table: FileTable):
        self.fs = fs
        self.table = table
        self.ofile: list = [None] * NOFILE
        self.cwd: Inode = fs.root()

    def _argfd(self, fd: int) -> OpenFile:
        if not 0 <= fd < NOFILE or self.ofile[fd] is None:
            raise SyscallError(f"bad file descriptor {fd}")
        return self.ofile[fd]

    def _fdalloc(self, f: OpenFile) -> int:
        for fd, slot in enumerate(self.ofile):
            if slot is None:
                self.ofile[fd] = f
                return fd
        raise SyscallError("too many open files")

    def dup(self, fd: int) -> int:
        f = self._argfd(fd)
        new = self._fdalloc(f)
        self.table.dup(f)
        return new

    def read(self, fd: int, n: int) -> bytes:
        f = self._argfd(fd)
        with _fs_errors():
            return self.table.read(f, n)

    def write(self, fd: int, data) -> int:
        f = self._argfd(fd)
        with _fs_errors():
            return self.table.write(f, data)

    def close(self, fd: int) -> None:
        f = self._argfd(fd)
        self.ofile[fd] = None
        with _fs_errors():
            self.table.close(f)

    def fstat(self, fd: int) -> Stat:
        f = self._argfd(fd)
        with _fs_errors():
            return self.table.stat(f)

    def link(self, old: str, new: str) -> None:
        """Make new name the same inode as old."""
        _check_path(old)
        _check_path(new)
        fs = self.fs
        with _fs_errors(), fs.log.transaction():
            ip = fs.namei(old, self.cwd)
            if ip is None:
                raise SyscallError(f"{old}: no such file")
            fs.ilock(ip)
            if ip.type == InodeType.DIR:
                fs.iunlockput(ip)
                raise SyscallError(f"{old}: is a directory")
            ip.nlink += 1
            fs.iupdate(ip)
            fs.iunlock(ip)

            parent = fs.nameiparent(new, self.cwd)
            if parent is not None:
                dp, name = parent
                fs.ilock(dp)
                try:
                    fs.dirlink(dp, name, ip.inum)
                except FsError:
                    fs.iunlockput(dp)
                else:
                    fs.iunlockput(dp)
                    fs.iput(ip)
                    return
            fs.ilock(ip)
            ip.nlink -= 1
            fs.iupdate(ip)
            fs.iunlockput(ip)
            raise SyscallError(f"cannot link {new}")

    def _isdirempty(self, dp: Inode) -> bool:
        """Is the directory empty except for "." and ".."?"""
        for off in range(2 * DIRENT_SIZE, dp.size, DIRENT_SIZE):
            raw = self.fs.readi(dp, off, DIRENT_SIZE)
            if len(raw) != DIRENT_SIZE:
                raise FsError("isdirempty: readi")
            if Dirent.unpack(raw).inum != 0:
                return False
        return True

    def unlink(self, path: str) -> None:
        _check_path(path)
        fs = self.fs
        with _fs_errors(), fs.log.transaction():
            parent = fs.nameiparent(path, self.cwd)
            if parent is None:
                raise SyscallError(f"{path}: no such file")
            dp, name = parent
            fs.ilock(dp)
            if namecmp(name, ".") == 0 or namecmp(name, "..") == 0:
                fs.iunlockput(dp)
                raise SyscallError(f"cannot unlink {name}")
            found = fs.dirlookup(dp, name)
            if found is None:
                fs.iunlockput(dp)
                raise SyscallError(f"{path}: no such file")
            ip, off = found
            fs.ilock(ip)
            if ip.nlink < 1:
                raise FsError("unlink: nlink < 1")
            if ip.type == InodeType.DIR and not self._isdirempty(ip):
                fs.iunlockput(ip)
                fs.iunlockput(dp)
                raise SyscallError(f"{path}: directory not empty")

            if fs.writei(dp, off, bytes(DIRENT_SIZE)) != DIRENT_SIZE:
                raise FsError("unlink: writei")
            if ip.type == InodeType.DIR:
                dp.nlink -= 1
                fs.iupdate(dp)
            fs.iunlockput(dp)

            ip.nlink -= 1
            fs.iupdate(ip)
            fs.iunlockput(ip)

    def _create(self, path: str, itype: InodeType, major: int, minor: int) -> Inode:
        """Create path, or open it if it is an existing file; returns it locked."""
        fs = self.fs
        parent = fs.nameiparent(path, self.cwd)
        if parent is None:
            raise SyscallError(f"{path}: no such directory")
        dp, name = parent
        fs.ilock(dp)

        found = fs.dirlookup(dp, name)
        if found is not None:
            ip = found[0]
            fs.iunlockput(dp)
            fs.ilock(ip)
            if itype == InodeType.FILE and ip.type in (InodeType.FILE, InodeType.DEVICE):
                return ip
            fs.iunlockput(ip)
            raise SyscallError(f"{path}: already exists")

        try:
            ip = fs.ialloc(itype)
        except FsError:
            fs.iunlockput(dp)
            raise

        fs.ilock(ip)
        ip.major = major
        ip.minor = minor
        ip.nlink = 1
        fs.iupdate(ip)

        try:
            if itype == InodeType.DIR:
                # No nlink increment for ".": avoid a cyclic reference count.
                fs.dirlink(ip, ".", ip.inum)
                fs.dirlink(ip, "..", dp.inum)
            fs.dirlink(dp, name, ip.inum)
        except FsError:
            ip.nlink = 0
            fs.iupdate(ip)
            fs.iunlockput(ip)
            fs.iunlockput(dp)
            raise

        if itype == InodeType.DIR:
            dp.nlink += 1  # for ".."
            fs.iupdate(dp)
        fs.iunlockput(dp)
        return ip

    def open(self, path: str, flags: int = OpenFlag.RDONLY) -> int:
        _check_path(path)
        fs = self.fs
        with _fs_errors(), fs.log.transaction():
            if flags & OpenFlag.CREATE:
                ip = self._create(path, InodeType.FILE, 0, 0)
            else:
                ip = fs.namei(path, self.cwd)
                if ip is None:
                    raise SyscallError(f"{path}: no such file")
                fs.ilock(ip)
                if ip.type == InodeType.DIR and flags != OpenFlag.RDONLY:
                    fs.iunlockput(ip)
                    raise SyscallError(f"{path}: is a directory")

            if ip.type == InodeType.DEVICE and not 0 <= ip.major < NDEV:
                fs.iunlockput(ip)
                raise SyscallError(f"{path}: bad device")

            f: Optional[OpenFile] = None
            try:
                f = self.table.alloc()
                fd = self._fdalloc(f)
            except (FsError, SyscallError):
                if f is not None:
                    self.table.close(f)
                fs.iunlockput(ip)
                raise

            if ip.type == InodeType.DEVICE:
                f.type = FileType.DEVICE
                f.major = ip.major
            else:
                f.type = FileType.INODE
                f.off = 0
            f.ip = ip
            f.readable = not flags & OpenFlag.WRONLY
            f.writable = bool(flags & (OpenFlag.WRONLY | OpenFlag.RDWR))

            if flags & OpenFlag.TRUNC and ip.type == InodeType.FILE:
                fs.itrunc(ip)
            fs.iunlock(ip)
            return fd

    def mkdir(self, path: str) -> None:
        _check_path(path)
        with _fs_errors(), self.fs.log.transaction():
            self.fs.iunlockput(self._create(path, InodeType.DIR, 0, 0))

    def mknod(self, path: str, major: int, minor: int) -> None:
        _check_path(path)
        with _fs_errors(), self.fs.log.transaction():
            self.fs.iunlockput(self._create(path, InodeType.DEVICE, major, minor))

    def chdir(self, path: str) -> None:
        _check_path(path)
        fs = self.fs
        with _fs_errors(), fs.log.transaction():
            ip = fs.namei(path, self.cwd)
            if ip is None:
                raise SyscallError(f"{path}: no such directory")
            fs.ilock(ip)
            if ip.type != InodeType.DIR:
                fs.iunlockput(ip)
                raise SyscallError(f"{path}: not a directory")
            fs.iunlock(ip)
            fs.iput(self.cwd)
        self.cwd = ip

    def pipe(self) -> tuple:
        """Make a pipe; returns (read descriptor, write descriptor)."""
        with _fs_errors():
            rf, wf = self.table.open_pipe()
        fd0 = None
        try:
            fd0 = self._fdalloc(rf)
            fd1 = self._fdalloc(wf)
        except SyscallError:
            if fd0 is not None:
                self.ofile[fd0] = None
            self.table.close(rf)
            self.table.close(wf)
            raise
        return fd0, fd1