import gzip
import io
import os
import tarfile

import pytest

from wingsd.filesystem.archive import Archive, CompressionLevel

CONTENT = b"hello, world!\n"


@pytest.fixture
def server(tmp_path):
    root = tmp_path / "server"
    (root / "test").mkdir(parents=True)
    (root / "test2").mkdir()
    (root / "test" / "file.txt").write_bytes(CONTENT)
    (root / "test2" / "file.txt").write_bytes(CONTENT)
    (root / "test_file.txt").write_bytes(CONTENT)
    (root / "test_file.txt.old").write_bytes(CONTENT)
    return root


def _names(path):
    with tarfile.open(path, "r:gz") as tar:
        return sorted(tar.getnames())


def test_invalid_file_paths_raise(server, tmp_path):
    a = Archive(base_path=str(server), files=["yeet"])
    with pytest.raises(ValueError):
        a.create(str(tmp_path / "archive.tar.gz"))
    assert not (tmp_path / "archive.tar.gz").exists()


def test_creates_archive_with_intended_files(server, tmp_path):
    a = Archive(
        base_path=str(server),
        files=[os.path.join(str(server), "test"), os.path.join(str(server), "test_file.txt")],
    )
    dst = tmp_path / "archive.tar.gz"
    a.create(str(dst))
    assert dst.exists()
    assert _names(dst) == sorted(["test_file.txt", "test/file.txt"])


def test_archive_without_filters_contains_everything(server, tmp_path):
    dst = tmp_path / "archive.tar.gz"
    Archive(base_path=str(server)).create(str(dst))
    assert _names(dst) == sorted(
        ["test/file.txt", "test2/file.txt", "test_file.txt", "test_file.txt.old"]
    )


def test_ignore_patterns_exclude_files(server, tmp_path):
    dst = tmp_path / "archive.tar.gz"
    Archive(base_path=str(server), ignore="*.old\ntest2/").create(str(dst))
    assert _names(dst) == sorted(["test/file.txt", "test_file.txt"])


def test_file_contents_round_trip(server, tmp_path):
    dst = tmp_path / "archive.tar.gz"
    Archive(base_path=str(server), compression_level=CompressionLevel.NONE).create(str(dst))
    with tarfile.open(dst, "r:gz") as tar:
        member = tar.extractfile("test/file.txt")
        assert member.read() == CONTENT


def test_stream_to_memory_with_progress(server):
    seen = []
    buf = io.BytesIO()
    Archive(
        base_path=str(server),
        files=[os.path.join(str(server), "test_file.txt")],
        progress=seen.append,
    ).stream(buf)
    assert sum(seen) == len(CONTENT)
    data = gzip.decompress(buf.getvalue())
    with tarfile.open(fileobj=io.BytesIO(data)) as tar:
        assert tar.getnames() == ["test_file.txt"]


def test_write_limit_still_produces_valid_archive(server, tmp_path):
    dst = tmp_path / "archive.tar.gz"
    Archive(base_path=str(server), write_limit=1).create(str(dst))
    assert "test_file.txt" in _names(dst)


def test_partial_name_does_not_match_files_entry(server, tmp_path):
    dst = tmp_path / "archive.tar.gz"
    Archive(base_path=str(server), files=[os.path.join(str(server), "test")]).create(str(dst))
    assert _names(dst) == ["test/file.txt"]


@pytest.mark.parametrize(
    "name,expected",
    [
        ("none", CompressionLevel.NONE),
        ("best_compression", CompressionLevel.BEST_COMPRESSION),
        ("best_speed", CompressionLevel.BEST_SPEED),
        ("anything", CompressionLevel.BEST_SPEED),
    ],
)
def test_compression_level_from_name(name, expected):
    assert CompressionLevel.from_name(name) is expected