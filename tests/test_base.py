import os

import pytest

from wingsd.backup.base import AdapterType, ArchiveDetails, LocalBackup, locate_local


@pytest.fixture
def backups(tmp_path):
    path = tmp_path / "backups"
    path.mkdir()
    return str(path)


@pytest.fixture
def data(tmp_path):
    path = tmp_path / "data"
    (path / "nested").mkdir(parents=True)
    (path / "a.txt").write_bytes(b"alpha")
    (path / "nested" / "b.txt").write_bytes(b"beta")
    return str(path)


def _collect(backup):
    restored = {}

    def callback(name, info, reader):
        restored[name] = reader.read()

    backup.restore(None, callback)
    return restored


def test_path_is_named_after_uuid(backups):
    backup = LocalBackup("abc-uuid", "", backups)
    assert backup.path == os.path.join(backups, "abc-uuid.tar.gz")
    assert backup.identifier == "abc-uuid"
    assert backup.adapter is AdapterType.LOCAL


def test_checksum_and_size_of_known_content(backups):
    backup = LocalBackup("abc", "", backups)
    with open(backup.path, "wb") as fh:
        fh.write(b"abc")

    assert backup.checksum().hex() == "a9993e364706816aba3e25717850c26c9cd0d89d"
    assert backup.size() == 3


def test_details_reports_checksum_size_and_parts(backups):
    backup = LocalBackup("abc", "", backups)
    with open(backup.path, "wb") as fh:
        fh.write(b"abc")
    parts = [{"etag": "etag-1", "part_number": 1}]

    details = backup.details(parts)

    assert details.checksum == backup.checksum().hex()
    assert details.checksum_type == "sha1"
    assert details.size == 3
    assert details.parts == parts


def test_missing_archive_raises(backups):
    backup = LocalBackup("missing", "", backups)
    with pytest.raises(FileNotFoundError):
        backup.size()
    with pytest.raises(FileNotFoundError):
        backup.checksum()


def test_to_request_carries_fields():
    details = ArchiveDetails(checksum="cafe", checksum_type="sha1", size=5, parts=None)
    assert details.to_request(True) == {
        "checksum": "cafe",
        "checksum_type": "sha1",
        "size": 5,
        "successful": True,
        "parts": None,
    }
    assert details.to_request(False)["successful"] is False


def test_generate_and_restore_round_trip(backups, data):
    backup = LocalBackup("round", "", backups)

    details = backup.generate(data, "")

    assert os.path.isfile(backup.path)
    assert details.size == os.path.getsize(backup.path)
    assert details.checksum == backup.checksum().hex()
    assert details.parts is None
    assert _collect(backup) == {"a.txt": b"alpha", "nested/b.txt": b"beta"}


def test_generate_honours_ignore(backups, data):
    with open(os.path.join(data, "debug.log"), "wb") as fh:
        fh.write(b"noise")
    backup = LocalBackup("ignore", "*.log", backups)

    backup.generate(data, backup.ignored)

    assert set(_collect(backup)) == {"a.txt", "nested/b.txt"}


def test_restore_with_write_limit(backups, data):
    backup = LocalBackup("limited", "", backups, write_limit=1)
    backup.generate(data, "")

    assert _collect(backup) == {"a.txt": b"alpha", "nested/b.txt": b"beta"}


def test_restore_passes_entry_info(backups, data):
    os.chmod(os.path.join(data, "a.txt"), 0o640)
    backup = LocalBackup("info", "", backups)
    backup.generate(data, "")
    modes = {}

    backup.restore(None, lambda name, info, reader: modes.__setitem__(name, info.mode & 0o777))

    assert modes["a.txt"] == 0o640


def test_restore_propagates_callback_errors(backups, data):
    backup = LocalBackup("fail", "", backups)
    backup.generate(data, "")

    def callback(name, info, reader):
        raise ValueError(name)

    with pytest.raises(ValueError):
        backup.restore(None, callback)


def test_remove_deletes_archive(backups, data):
    backup = LocalBackup("gone", "", backups)
    backup.generate(data, "")
    assert backup.size() > 0

    backup.remove()

    with pytest.raises(FileNotFoundError):
        backup.size()
    with pytest.raises(FileNotFoundError):
        locate_local(backups, "gone")


def test_locate_local(backups, data):
    with pytest.raises(FileNotFoundError):
        locate_local(backups, "nothing")

    os.mkdir(os.path.join(backups, "dir.tar.gz"))
    with pytest.raises(IsADirectoryError):
        locate_local(backups, "dir")

    LocalBackup("found", "", backups).generate(data, "")
    backup, st = locate_local(backups, "found")
    assert backup.identifier == "found"
    assert st.st_size == backup.size()


def test_with_log_context_replaces_context(backups):
    backup = LocalBackup("ctx", "", backups)
    backup.with_log_context({"server": "one"})
    backup.with_log_context({"server": "two"})
    assert backup.log_context == {"server": "two"}