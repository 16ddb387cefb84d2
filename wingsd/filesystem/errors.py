"""Errors raised by filesystem operations on a server's data directory."""

from __future__ import annotations

import enum
from typing import Optional


class ErrorCode(str, enum.Enum):
    IS_DIRECTORY = "E_ISDIR"
    DISK_SPACE = "E_NODISK"
    UNKNOWN_ARCHIVE = "E_UNKNFMT"
    PATH_RESOLUTION = "E_BADPATH"
    DENYLIST_FILE = "E_DENYLIST"
    UNKNOWN_ERROR = "E_UNKNOWN"
    NOT_EXIST = "E_NOTEXIST"


class FilesystemError(Exception):
    """An error with a code describing what went wrong on the filesystem."""

    def __init__(
        self,
        code: ErrorCode,
        cause: Optional[BaseException] = None,
        resolved: str = "",
        path: str = "",
    ) -> None:
        self.code = code
        self.cause = cause
        self.resolved = resolved
        self.path = path
        super().__init__(self._message())
        if cause is not None:
            self.__cause__ = cause

    def _message(self) -> str:
        code = self.code
        if code is ErrorCode.IS_DIRECTORY:
            return f"filesystem: cannot perform action: [{self.resolved}] is a directory"
        if code is ErrorCode.DISK_SPACE:
            return "filesystem: not enough disk space"
        if code is ErrorCode.UNKNOWN_ARCHIVE:
            return "filesystem: unknown archive format"
        if code is ErrorCode.DENYLIST_FILE:
            resolved = self.resolved or "<empty>"
            return f"filesystem: file access prohibited: [{resolved}] is on the denylist"
        if code is ErrorCode.PATH_RESOLUTION:
            resolved = self.resolved or "<empty>"
            return (
                f"filesystem: server path [{self.path}] resolves to a location "
                f"outside the server root: {resolved}"
            )
        if code is ErrorCode.NOT_EXIST:
            return "filesystem: does not exist"
        return f"filesystem: an error occurred: {self.cause}"

    def __str__(self) -> str:
        return self._message()


def _find_filesystem_error(err: Optional[BaseException]) -> Optional[FilesystemError]:
    seen = set()
    while err is not None and id(err) not in seen:
        if isinstance(err, FilesystemError):
            return err
        seen.add(id(err))
        err = err.__cause__
    return None


def is_filesystem_error(err: Optional[BaseException]) -> bool:
    """Return True if err, or anything in its cause chain, is a FilesystemError."""
    return _find_filesystem_error(err) is not None


def is_error_code(err: Optional[BaseException], code: ErrorCode) -> bool:
    """Return True if err is a FilesystemError (or caused by one) with the given code."""
    found = _find_filesystem_error(err)
    return found is not None and found.code == code


def new_bad_path_resolution(path: str, resolved: str) -> FilesystemError:
    """Build the error for a path that resolves outside the server root."""
    return FilesystemError(ErrorCode.PATH_RESOLUTION, path=path, resolved=resolved)


def wrap_error(err: Optional[BaseException], resolved: str) -> Optional[BaseException]:
    """Wrap err as an unknown filesystem error unless it already is one."""
    if err is None or is_filesystem_error(err):
        return err
    return FilesystemError(ErrorCode.UNKNOWN_ERROR, cause=err, resolved=resolved)