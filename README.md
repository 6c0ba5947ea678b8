# sixfs

A compact Unix-style file system that lives on a block device of your
choosing: an in-memory disk or a plain image file. Blocks are 1024 bytes.
The package is built in layers:

- `sixfs.disk`: block devices `MemoryDisk` and `FileDisk`, each with
  `read_block` and `write_block`.
- `sixfs.layout`: limits and the on-disk format (`Superblock`, `DiskInode`,
  `Dirent`, `InodeType`), the helpers `inode_block` and `bitmap_block`, and
  `format_device`, which lays out a blank file system holding only the root
  directory.
- `sixfs.bio`: `BufferCache`, an LRU cache of locked, reference-counted
  block buffers (`Buf`). `cache.block(n)` is a context manager that reads a
  block and releases it afterwards.
- `sixfs.log`: `Log`, a redo log that makes multi-block updates crash-safe.
  `log.transaction()` wraps `begin_op`/`end_op`; the log commits when the
  last outstanding operation ends. Opening a `FileSystem` replays any
  committed transaction found in the log.
- `sixfs.fs`: `FileSystem`, covering inode allocation and locking, reading
  and writing file contents (`readi`, `writei`), truncation, directories
  (`dirlookup`, `dirlink`) and path lookup (`namei`, `nameiparent`), plus
  `Stat`, `Inode`, `skip_element` and `namecmp`.
- `sixfs.file`: `FileTable`, `OpenFile`, `FileType`, `Device` and `Pipe`, the
  open-file layer.
- `sixfs.syscalls`: `Session`, a per-process view with file descriptors and a
  working directory, offering `open`, `read`, `write`, `close`, `dup`,
  `fstat`, `link`, `unlink`, `mkdir`, `mknod`, `chdir` and `pipe`, with
  `OpenFlag` for open modes.
- `sixfs.console`: `Console`, line-editing console input (backspace/delete,
  Ctrl-U to kill a line, Ctrl-D for end of file, Ctrl-P calls an optional
  callback) with echo to a text stream, and `kformat`, a printf-style
  formatter that understands only `%d`, `%x`, `%p`, `%s` and `%%`.

## Installing

```
pip install .
```

## Example

```python
from sixfs.disk import MemoryDisk
from sixfs.layout import format_device
from sixfs.fs import FileSystem
from sixfs.file import FileTable
from sixfs.syscalls import Session, OpenFlag

disk = MemoryDisk(2000)
format_device(disk, ninodes=200, nlog=30)

fs = FileSystem(disk)
table = FileTable(fs, devices={}, nfile=100)
session = Session(fs, table)

session.mkdir("/docs")
fd = session.open("/docs/hello.txt", OpenFlag.CREATE | OpenFlag.RDWR)
session.write(fd, b"hello, world\n")
session.close(fd)

fd = session.open("/docs/hello.txt", OpenFlag.RDONLY)
print(session.read(fd, 100))   # b'hello, world\n'
print(session.fstat(fd))       # Stat(dev=1, ino=..., type=2, nlink=1, size=13)
session.close(fd)
```

Device files: register a `Device(read=..., write=...)` under a major number
in the `devices` mapping given to `FileTable`, create the node with
`session.mknod(path, major, minor)`, and open it like any file. Reads call
`read(n)` and must return bytes; writes call `write(data)` and return a
count.

Pipes: `rfd, wfd = session.pipe()` gives a read and a write descriptor on a
512-byte `Pipe`.

To keep an image on disk, use `FileDisk` as a context manager:

```python
from sixfs.disk import FileDisk

with FileDisk("fs.img", 2000) as disk:
    format_device(disk, ninodes=200, nlog=30)
```

An existing image can be reopened with `FileDisk("fs.img")`; its size is
taken from the file.

## Errors

Failed system calls raise `SyscallError`. Broken invariants and exhausted
resources inside the file system, such as freeing a free block, running out
of in-memory inodes or overfilling a transaction, raise `FsError`.

## What it does not do

- Everything runs in one thread and nothing ever waits. Where a process
  would sleep, the package raises instead: reading an empty pipe whose write
  end is open, writing a full pipe, or reading the console with no completed
  line raises `BlockingIOError`; writing a pipe whose read end is closed
  raises `BrokenPipeError`; starting an operation while the log has no room
  for it raises `FsError`.
- There are no processes, no program loading and no scheduler; a `Session`
  stands in for one process's descriptors and working directory.
- There is no command-line tool, and nothing copies host files into an
  image: `format_device` only writes an empty file system.
- The `Console` is not wired to any terminal or device entry by itself.

## Running the tests

```
pip install .[test]
pytest
```