import pytest

from sixfs.disk import MemoryDisk
from sixfs.fs import FileSystem, Inode, namecmp, skip_element
from sixfs.layout import (
    BSIZE,
    DIRENT_SIZE,
    DIRSIZ,
    MAXFILE,
    NDIRECT,
    NINODE,
    ROOTDEV,
    ROOTINO,
    FsError,
    InodeType,
    format_device,
)


@pytest.fixture
def disk():
    d = MemoryDisk(300)
    format_device(d, ninodes=50)
    return d


@pytest.fixture
def fs(disk):
    return FileSystem(disk)


def make_file(fs, name, data=b""):
    with fs.log.transaction():
        ip = fs.ialloc(InodeType.FILE)
        fs.ilock(ip)
        ip.nlink = 1
        fs.iupdate(ip)
        if data:
            fs.writei(ip, 0, data)
        fs.iunlock(ip)
        root = fs.root()
        fs.ilock(root)
        fs.dirlink(root, name, ip.inum)
        fs.iunlockput(root)
    return ip


def make_dir(fs, parent, name):
    with fs.log.transaction():
        ip = fs.ialloc(InodeType.DIR)
        fs.ilock(ip)
        ip.nlink = 1
        fs.iupdate(ip)
        fs.dirlink(ip, ".", ip.inum)
        fs.dirlink(ip, "..", parent.inum)
        fs.ilock(parent)
        fs.dirlink(parent, name, ip.inum)
        fs.iunlock(parent)
        fs.iunlock(ip)
    return ip


def test_skip_element_examples():
    assert skip_element("a/bb/c") == ("a", "bb/c")
    assert skip_element("///a//bb") == ("a", "bb")
    assert skip_element("a") == ("a", "")
    assert skip_element("") is None
    assert skip_element("////") is None


def test_skip_element_truncates_long_names():
    long = "abcdefghijklmnopq"
    assert skip_element(long + "/x") == (long[:DIRSIZ], "x")


def test_namecmp():
    assert namecmp("same", "same") == 0
    assert namecmp("a" * 20, "a" * DIRSIZ) == 0
    assert namecmp("a", "b") < 0
    assert namecmp("b", "a") > 0
    assert namecmp("ab", "a") > 0


def test_blank_disk_is_rejected():
    with pytest.raises(FsError):
        FileSystem(MemoryDisk(64))


def test_root_directory(fs):
    root = fs.root()
    fs.ilock(root)
    assert root.type == InodeType.DIR
    dot, off = fs.dirlookup(root, ".")
    assert (dot.inum, off) == (ROOTINO, 0)
    dotdot, off2 = fs.dirlookup(root, "..")
    assert (dotdot.inum, off2) == (ROOTINO, DIRENT_SIZE)
    assert fs.dirlookup(root, "missing") is None
    fs.iunlock(root)
    for ip in (dot, dotdot, root):
        fs.iput(ip)
    assert root.ref == 0


def test_ialloc_takes_first_free_inode(fs):
    with fs.log.transaction():
        ip = fs.ialloc(InodeType.FILE)
    assert ip.inum == ROOTINO + 1
    assert ip.ref == 1
    fs.ilock(ip)
    assert ip.type == InodeType.FILE
    fs.iunlock(ip)


def test_ialloc_runs_out():
    d = MemoryDisk(100)
    format_device(d, ninodes=4)
    fs = FileSystem(d)
    with fs.log.transaction():
        got = [fs.ialloc(InodeType.FILE).inum for _ in range(2)]
        with pytest.raises(FsError):
            fs.ialloc(InodeType.FILE)
    assert got == [2, 3]


def test_write_read_round_trip(fs):
    data = b"hello, file system"
    ip = make_file(fs, "f", data)
    fs.ilock(ip)
    assert fs.readi(ip, 0, 100) == data
    assert fs.readi(ip, 7, 4) == data[7:11]
    assert fs.readi(ip, len(data) + 1, 10) == b""
    assert ip.size == len(data)
    fs.iunlock(ip)


def test_data_persists_across_mount(disk, fs):
    data = bytes(range(256)) * 5
    make_file(fs, "keep", data)
    fs2 = FileSystem(disk)
    ip = fs2.namei("/keep")
    fs2.ilock(ip)
    assert fs2.readi(ip, 0, len(data)) == data
    fs2.iunlock(ip)
    assert fs.log.pending() == []


def test_large_file_uses_indirect_block(fs):
    total = (NDIRECT + 3) * BSIZE
    data = bytes((i * 7) % 251 for i in range(total))
    ip = make_file(fs, "big")
    chunk = 3 * BSIZE
    fs.ilock(ip)
    for start in range(0, total, chunk):
        with fs.log.transaction():
            n = fs.writei(ip, start, data[start : start + chunk])
        assert n == len(data[start : start + chunk])
    assert fs.readi(ip, 0, total) == data
    assert ip.size == total
    assert ip.addrs[NDIRECT] > 0
    fs.iunlock(ip)


def test_writei_limits(fs):
    ip = make_file(fs, "f", b"abc")
    fs.ilock(ip)
    with fs.log.transaction():
        with pytest.raises(FsError):
            fs.writei(ip, 10, b"x")
        with pytest.raises(FsError):
            fs.writei(ip, 0, bytes(MAXFILE * BSIZE + 1))
    assert fs.readi(ip, 0, 10) == b"abc"
    fs.iunlock(ip)


def test_itrunc_frees_blocks_for_reuse(fs):
    ip = make_file(fs, "f", b"x" * 10)
    fs.ilock(ip)
    first = ip.addrs[0]
    with fs.log.transaction():
        fs.itrunc(ip)
    assert ip.size == 0
    assert ip.addrs == [0] * (NDIRECT + 1)
    with fs.log.transaction():
        fs.writei(ip, 0, b"y")
    assert ip.addrs[0] == first
    assert fs.readi(ip, 0, 5) == b"y"
    fs.iunlock(ip)


def test_iput_frees_unlinked_inode(fs):
    with fs.log.transaction():
        ip = fs.ialloc(InodeType.FILE)
        fs.ilock(ip)
        fs.writei(ip, 0, b"data")
        fs.iunlock(ip)
        inum = ip.inum
        fs.iput(ip)
    with fs.log.transaction():
        again = fs.ialloc(InodeType.FILE)
    assert again.inum == inum
    fs.ilock(again)
    assert again.size == 0
    fs.iunlock(again)


def test_iget_shares_entries_and_counts_refs(fs):
    a = fs.iget(5)
    b = fs.iget(5)
    assert a is b
    assert a.ref == 2
    assert fs.idup(a).ref == 3
    for _ in range(3):
        fs.iput(a)
    assert a.ref == 0


def test_iget_table_exhaustion(fs):
    held = [fs.iget(i) for i in range(1, NINODE + 1)]
    with pytest.raises(FsError):
        fs.iget(NINODE + 1)
    for ip in held:
        fs.iput(ip)
    assert fs.iget(NINODE + 1).inum == NINODE + 1


def test_stati(fs):
    ip = make_file(fs, "f", b"12345")
    fs.ilock(ip)
    st = fs.stati(ip)
    fs.iunlock(ip)
    assert (st.dev, st.ino, st.type, st.nlink, st.size) == (
        ROOTDEV,
        ip.inum,
        InodeType.FILE,
        1,
        5,
    )


def test_dirlink_rejects_duplicates(fs):
    ip = make_file(fs, "f")
    root = fs.root()
    fs.ilock(root)
    with fs.log.transaction():
        with pytest.raises(FsError):
            fs.dirlink(root, "f", ip.inum)
    found, _ = fs.dirlookup(root, "f")
    assert found is ip
    fs.iput(found)
    fs.iunlockput(root)
    assert ip.ref == 1


def test_dirlookup_requires_directory(fs):
    ip = make_file(fs, "f")
    fs.ilock(ip)
    with pytest.raises(FsError):
        fs.dirlookup(ip, "x")
    fs.iunlock(ip)


def test_path_lookup(fs):
    root = fs.root()
    d = make_dir(fs, root, "d")
    f = make_file(fs, "top")
    with fs.log.transaction():
        fs.ilock(d)
        fs.dirlink(d, "f", f.inum)
        fs.iunlock(d)
        assert fs.namei("/d/f").inum == f.inum
        assert fs.namei("f", cwd=d).inum == f.inum
        assert fs.namei("d/../d/f", cwd=root).inum == f.inum
        assert fs.namei("//d//f//").inum == f.inum
        assert fs.namei("/d/missing") is None
        assert fs.namei("/top/x") is None
        assert fs.namei("/").inum == ROOTINO


def test_nameiparent(fs):
    root = fs.root()
    d = make_dir(fs, root, "d")
    with fs.log.transaction():
        parent, name = fs.nameiparent("/d/newfile")
        assert (parent.inum, name) == (d.inum, "newfile")
        assert parent.locked is False
        fs.iput(parent)
        assert fs.nameiparent("/") is None
        assert fs.nameiparent("/nodir/x") is None
        parent2, name2 = fs.nameiparent("x", cwd=d)
        assert (parent2.inum, name2) == (d.inum, "x")
        fs.iput(parent2)