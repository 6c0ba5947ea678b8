import pytest

from sixfs.disk import MemoryDisk
from sixfs.file import Device, FileTable, FileType, Pipe
from sixfs.fs import FileSystem
from sixfs.layout import FsError, InodeType, format_device


@pytest.fixture
def fs():
    disk = MemoryDisk()
    format_device(disk)
    return FileSystem(disk)


def make_inode(fs, nlink=1):
    with fs.log.transaction():
        ip = fs.ialloc(InodeType.FILE)
        fs.ilock(ip)
        ip.nlink = nlink
        fs.iupdate(ip)
        fs.iunlock(ip)
    return ip


def inode_file(table, ip):
    f = table.alloc()
    f.type = FileType.INODE
    f.ip = ip
    f.readable = f.writable = True
    return f


def test_pipe_round_trip():
    p = Pipe()
    assert p.write(b"hello") == 5
    assert p.read(3) == b"hel"
    assert p.read(10) == b"lo"


def test_pipe_empty_blocks_until_writer_closes():
    p = Pipe()
    with pytest.raises(BlockingIOError):
        p.read(1)
    p.close(True)
    assert p.read(1) == b""


def test_pipe_broken():
    p = Pipe()
    p.close(False)
    with pytest.raises(BrokenPipeError):
        p.write(b"x")


def test_pipe_capacity():
    p = Pipe()
    assert p.write(b"a" * 600) == 512
    with pytest.raises(BlockingIOError):
        p.write(b"b")
    assert len(p.read(1000)) == 512


def test_alloc_exhaustion(fs):
    table = FileTable(fs, nfile=2)
    table.alloc()
    table.alloc()
    with pytest.raises(FsError):
        table.alloc()


def test_dup_and_close(fs):
    table = FileTable(fs)
    f = table.alloc()
    table.dup(f)
    assert f.ref == 2
    table.close(f)
    table.close(f)
    assert f.ref == 0
    with pytest.raises(FsError):
        table.close(f)
    with pytest.raises(FsError):
        table.dup(f)


def test_inode_write_read(fs):
    table = FileTable(fs)
    f = inode_file(table, make_inode(fs))
    assert table.write(f, b"hello") == 5
    assert f.off == 5
    f.off = 0
    assert table.read(f, 100) == b"hello"
    assert table.stat(f).size == 5


def test_large_write_round_trip(fs):
    table = FileTable(fs)
    f = inode_file(table, make_inode(fs))
    payload = bytes(range(256)) * 80
    assert table.write(f, payload) == len(payload)
    f.off = 0
    assert table.read(f, len(payload) + 10) == payload
    assert table.stat(f).size == len(payload)


def test_permissions(fs):
    table = FileTable(fs)
    f = inode_file(table, make_inode(fs))
    f.readable = False
    with pytest.raises(FsError):
        table.read(f, 1)
    f.writable = False
    with pytest.raises(FsError):
        table.write(f, b"x")


def test_device_dispatch(fs):
    written = []
    dev = Device(read=lambda n: b"x" * n, write=lambda d: written.append(d) or len(d))
    table = FileTable(fs, devices={1: dev})
    f = table.alloc()
    f.type = FileType.DEVICE
    f.major = 1
    f.readable = f.writable = True
    assert table.read(f, 3) == b"xxx"
    assert table.write(f, b"abc") == 3
    assert written == [b"abc"]
    f.major = 2
    with pytest.raises(FsError):
        table.read(f, 1)


def test_open_pipe(fs):
    table = FileTable(fs)
    rf, wf = table.open_pipe()
    assert rf.readable and not rf.writable
    assert wf.writable and not wf.readable
    assert table.write(wf, b"data") == 4
    assert table.read(rf, 10) == b"data"
    with pytest.raises(FsError):
        table.stat(rf)
    table.close(wf)
    assert table.read(rf, 10) == b""


def test_close_frees_unlinked_inode(fs):
    table = FileTable(fs)
    ip = make_inode(fs, nlink=0)
    inum = ip.inum
    f = inode_file(table, ip)
    table.close(f)
    with fs.log.transaction():
        again = fs.ialloc(InodeType.FILE)
    assert again.inum == inum