import pytest

from sixfs.disk import FileDisk, MemoryDisk
from sixfs.layout import BSIZE, FsError


def test_memory_disk_starts_zeroed():
    disk = MemoryDisk(4)
    assert disk.read_block(3) == bytes(BSIZE)


def test_memory_disk_round_trip():
    disk = MemoryDisk(4)
    payload = bytes(range(256)) * (BSIZE // 256)
    disk.write_block(2, payload)
    assert disk.read_block(2) == payload
    assert disk.read_block(1) == bytes(BSIZE)


def test_memory_disk_out_of_range():
    disk = MemoryDisk(4)
    with pytest.raises(FsError):
        disk.read_block(4)
    with pytest.raises(FsError):
        disk.write_block(-1, bytes(BSIZE))


def test_memory_disk_rejects_wrong_size():
    disk = MemoryDisk(4)
    with pytest.raises(ValueError):
        disk.write_block(0, b"short")


def test_file_disk_persists(tmp_path):
    path = tmp_path / "fs.img"
    payload = b"\xab" * BSIZE
    with FileDisk(path, 8) as disk:
        disk.write_block(5, payload)
    assert path.stat().st_size == 8 * BSIZE
    with FileDisk(path) as disk:
        assert disk.nblocks == 8
        assert disk.read_block(5) == payload
        assert disk.read_block(4) == bytes(BSIZE)


def test_file_disk_needs_size_for_new_image(tmp_path):
    with pytest.raises(ValueError):
        FileDisk(tmp_path / "missing.img")


def test_file_disk_out_of_range(tmp_path):
    with FileDisk(tmp_path / "fs.img", 2) as disk:
        with pytest.raises(FsError):
            disk.read_block(2)


def test_file_disk_closed_after_context(tmp_path):
    with FileDisk(tmp_path / "fs.img", 2) as disk:
        pass
    with pytest.raises(ValueError):
        disk.read_block(0)