import os

import pytest

from wingsd.filesystem.disk_space import DiskUsage
from wingsd.filesystem.errors import ErrorCode, FilesystemError, is_error_code
from wingsd.filesystem.paths import PathResolver


@pytest.fixture
def root(tmp_path):
    server = tmp_path / "server"
    server.mkdir()
    return server


def _usage(root, limit=0, interval=150):
    usage = DiskUsage(PathResolver(str(root)), limit, interval)
    usage.refresh_on_add = False
    return usage


def test_zero_interval_disables_lookups(root):
    (root / "a.txt").write_bytes(b"hello")
    usage = _usage(root, interval=0)
    assert usage.disk_usage(False) == 0


def test_directory_size_counts_nested_files(root):
    first = b"hello"
    second = b"test file content"
    (root / "nested" / "deeper").mkdir(parents=True)
    (root / "a.txt").write_bytes(first)
    (root / "nested" / "deeper" / "b.txt").write_bytes(second)
    usage = _usage(root)
    assert usage.directory_size("/") == len(first) + len(second)
    assert usage.directory_size("nested") == len(second)


def test_directory_size_skips_symlinks_outside_root(root, tmp_path):
    inside = b"inside"
    (root / "a.txt").write_bytes(inside)
    outside = tmp_path / "outside.txt"
    outside.write_bytes(b"x" * 4096)
    os.symlink(str(outside), str(root / "link.txt"))
    usage = _usage(root)
    assert usage.directory_size("/") == len(inside)


def test_directory_size_outside_root_raises(root):
    usage = _usage(root)
    with pytest.raises(FilesystemError) as info:
        usage.directory_size("../")
    assert is_error_code(info.value, ErrorCode.PATH_RESOLUTION)


def test_disk_usage_fresh_lookup_is_cached(root):
    data = b"test file content"
    (root / "a.txt").write_bytes(data)
    usage = _usage(root)
    assert usage.disk_usage(False) == len(data)
    (root / "b.txt").write_bytes(data)
    assert usage.disk_usage(False) == len(data)
    assert usage.used == len(data)


def test_has_space_for_unlimited(root):
    (root / "a.txt").write_bytes(b"hello")
    usage = _usage(root, limit=0)
    usage.has_space_for(10**12)
    assert usage.has_space_available(False) is True


def test_has_space_for_raises_when_over_limit(root):
    usage = _usage(root, limit=1024)
    usage.disk_usage(False)
    with pytest.raises(FilesystemError) as info:
        usage.has_space_for(1025)
    assert info.value.code is ErrorCode.DISK_SPACE


def test_has_space_available_against_limit(root):
    data = b"x" * 100
    (root / "a.txt").write_bytes(data)
    usage = _usage(root, limit=len(data) - 1)
    assert usage.has_space_available(False) is False
    usage.limit = len(data)
    assert usage.has_space_available(False) is True


def test_has_space_err(root):
    (root / "a.txt").write_bytes(b"x" * 100)
    usage = _usage(root, limit=1)
    with pytest.raises(FilesystemError) as info:
        usage.has_space_err(False)
    assert str(info.value) == "filesystem: not enough disk space"


def test_add_accumulates_and_caps_at_zero(root):
    usage = _usage(root)
    assert usage.add(12) == 12
    assert usage.add(12) == 24
    assert usage.add(-100) == 0
    assert usage.used == 0


def test_reset_clears_usage(root):
    usage = _usage(root)
    usage.used = 42
    usage.reset()
    assert usage.used == 0