import os
from datetime import datetime

import pytest

from wingsd.filesystem.stat import Stat, detect_mimetype


def test_text_file(tmp_path):
    p = tmp_path / "foo.txt"
    p.write_text("hello world")
    st = Stat.from_path(str(p))
    assert st.name == "foo.txt"
    assert st.size == len("hello world")
    assert not st.is_dir
    assert st.is_regular
    assert st.mimetype.startswith("text/plain")


def test_directory(tmp_path):
    d = tmp_path / "dir"
    d.mkdir()
    st = Stat.from_path(str(d))
    assert st.mimetype == "inode/directory"
    data = st.to_dict()
    assert data["directory"] is True
    assert data["file"] is False
    assert data["mode"].startswith("d")


def test_png_detection(tmp_path):
    p = tmp_path / "image.bin"
    p.write_bytes(b"\x89PNG\r\n\x1a\n" + b"\x00" * 32)
    assert detect_mimetype(str(p)) == "image/png"


def test_binary_detection(tmp_path):
    p = tmp_path / "blob"
    p.write_bytes(b"\x01\x00\x02\x03\xfe")
    assert detect_mimetype(str(p)) == "application/octet-stream"


def test_to_dict_fields(tmp_path):
    p = tmp_path / "data.txt"
    p.write_text("content")
    os.chmod(p, 0o644)
    os.utime(p, (1600000000, 1600000000))
    data = Stat.from_path(str(p)).to_dict()
    assert set(data) == {
        "name", "created", "modified", "mode", "mode_bits",
        "size", "directory", "file", "symlink", "mime",
    }
    assert data["name"] == "data.txt"
    assert data["mode_bits"] == format(0o644, "o")
    assert data["mode"] == "-rw-r--r--"
    assert data["size"] == len("content")
    assert data["file"] is True
    assert data["symlink"] is False
    modified = datetime.fromisoformat(data["modified"].replace("Z", "+00:00"))
    assert modified.timestamp() == 1600000000


def test_follows_symlinks(tmp_path):
    target = tmp_path / "target.txt"
    target.write_text("abc")
    link = tmp_path / "link.txt"
    os.symlink(target, link)
    st = Stat.from_path(str(link))
    assert st.name == "link.txt"
    assert st.size == len("abc")
    assert not st.is_symlink


def test_from_stat_result_keeps_given_mimetype(tmp_path):
    p = tmp_path / "f"
    p.write_text("x")
    st = Stat.from_stat_result("f", os.lstat(p), "application/octet-stream")
    assert st.mimetype == "application/octet-stream"
    assert st.to_dict()["mime"] == "application/octet-stream"


def test_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        Stat.from_path(str(tmp_path / "missing"))