import pytest

from wingsd.filesystem.errors import (
    ErrorCode,
    FilesystemError,
    is_error_code,
    is_filesystem_error,
    new_bad_path_resolution,
    wrap_error,
)


def test_properly_wraps_the_underlying_cause():
    underlying = EOFError("EOF")
    err = FilesystemError(ErrorCode.UNKNOWN_ERROR, underlying)
    assert err.cause is underlying
    assert err.__cause__ is underlying
    assert str(err) == "filesystem: an error occurred: EOF"


def test_bad_path_resolution_detects_itself():
    err = new_bad_path_resolution("foo", "bar")
    assert is_error_code(err, ErrorCode.PATH_RESOLUTION)
    assert str(err) == (
        "filesystem: server path [foo] resolves to a location outside the server root: bar"
    )
    assert not is_error_code(FilesystemError(ErrorCode.IS_DIRECTORY), ErrorCode.PATH_RESOLUTION)


def test_bad_path_resolution_empty_destination():
    err = new_bad_path_resolution("foo", "")
    assert str(err) == (
        "filesystem: server path [foo] resolves to a location outside the server root: <empty>"
    )


@pytest.mark.parametrize(
    "code, resolved, message",
    [
        (ErrorCode.IS_DIRECTORY, "/srv/x", "filesystem: cannot perform action: [/srv/x] is a directory"),
        (ErrorCode.DISK_SPACE, "", "filesystem: not enough disk space"),
        (ErrorCode.UNKNOWN_ARCHIVE, "", "filesystem: unknown archive format"),
        (ErrorCode.DENYLIST_FILE, "", "filesystem: file access prohibited: [<empty>] is on the denylist"),
        (ErrorCode.DENYLIST_FILE, "/srv/a", "filesystem: file access prohibited: [/srv/a] is on the denylist"),
        (ErrorCode.NOT_EXIST, "", "filesystem: does not exist"),
    ],
)
def test_messages(code, resolved, message):
    assert str(FilesystemError(code, resolved=resolved)) == message


def test_error_code_values():
    err = new_bad_path_resolution("a", "b")
    assert err.code.value == "E_BADPATH"
    assert FilesystemError(ErrorCode.NOT_EXIST).code.value == "E_NOTEXIST"


def test_is_filesystem_error_follows_cause_chain():
    inner = FilesystemError(ErrorCode.DISK_SPACE)
    try:
        try:
            raise inner
        except FilesystemError as exc:
            raise RuntimeError("outer") from exc
    except RuntimeError as outer:
        assert is_filesystem_error(outer)
        assert is_error_code(outer, ErrorCode.DISK_SPACE)
        assert not is_error_code(outer, ErrorCode.NOT_EXIST)


def test_is_filesystem_error_on_plain_errors():
    assert not is_filesystem_error(ValueError("x"))
    assert not is_filesystem_error(None)
    assert not is_error_code(None, ErrorCode.DISK_SPACE)


def test_wrap_error_leaves_filesystem_errors_alone():
    err = FilesystemError(ErrorCode.DISK_SPACE)
    assert wrap_error(err, "file.tar") is err
    assert wrap_error(None, "file.tar") is None


def test_wrap_error_wraps_other_errors():
    cause = OSError("boom")
    wrapped = wrap_error(cause, "file.tar")
    assert isinstance(wrapped, FilesystemError)
    assert wrapped.code is ErrorCode.UNKNOWN_ERROR
    assert wrapped.resolved == "file.tar"
    assert wrapped.cause is cause