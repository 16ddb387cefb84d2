"""File information with MIME type detection."""

from __future__ import annotations

import codecs
import os
import stat as stat_mod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict

DIRECTORY_MIMETYPE = "inode/directory"
OCTET_STREAM = "application/octet-stream"
_SNIFF_LENGTH = 3072

_MAGIC = (
    (b"\x89PNG\r\n\x1a\n", "image/png"),
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"GIF87a", "image/gif"),
    (b"GIF89a", "image/gif"),
    (b"%PDF-", "application/pdf"),
    (b"PK\x03\x04", "application/zip"),
    (b"\x1f\x8b", "application/gzip"),
    (b"BZh", "application/x-bzip2"),
    (b"\xfd7zXZ\x00", "application/x-xz"),
    (b"7z\xbc\xaf\x27\x1c", "application/x-7z-compressed"),
    (b"Rar!\x1a\x07", "application/x-rar-compressed"),
    (b"\x28\xb5\x2f\xfd", "application/zstd"),
    (b"\x7fELF", "application/x-elf"),
)


def detect_mimetype(path: str) -> str:
    """Detect the MIME type of a file from its leading bytes."""
    with open(path, "rb") as fh:
        head = fh.read(_SNIFF_LENGTH)
    for magic, mime in _MAGIC:
        if head.startswith(magic):
            return mime
    if len(head) >= 262 and head[257:262] == b"ustar":
        return "application/x-tar"
    if not head:
        return "text/plain"
    if b"\x00" in head:
        return OCTET_STREAM
    decoder = codecs.getincrementaldecoder("utf-8")()
    try:
        decoder.decode(head, final=len(head) < _SNIFF_LENGTH)
    except UnicodeDecodeError:
        return OCTET_STREAM
    return "text/plain; charset=utf-8"


def _go_mode_string(mode: int) -> str:
    kinds = []
    if stat_mod.S_ISDIR(mode):
        kinds.append("d")
    if stat_mod.S_ISLNK(mode):
        kinds.append("L")
    if stat_mod.S_ISBLK(mode) or stat_mod.S_ISCHR(mode):
        kinds.append("D")
    if stat_mod.S_ISFIFO(mode):
        kinds.append("p")
    if stat_mod.S_ISSOCK(mode):
        kinds.append("S")
    if mode & stat_mod.S_ISUID:
        kinds.append("u")
    if mode & stat_mod.S_ISGID:
        kinds.append("g")
    if stat_mod.S_ISCHR(mode):
        kinds.append("c")
    if mode & stat_mod.S_ISVTX:
        kinds.append("t")
    prefix = "".join(kinds) or "-"
    perm = "".join(
        ch if mode & bit else "-"
        for ch, bit in zip(
            "rwxrwxrwx",
            (0o400, 0o200, 0o100, 0o040, 0o020, 0o010, 0o004, 0o002, 0o001),
        )
    )
    return prefix + perm


def _rfc3339(moment: datetime) -> str:
    text = moment.replace(microsecond=0).isoformat()
    if text.endswith("+00:00"):
        text = text[: -len("+00:00")] + "Z"
    return text


def _local_time(timestamp: float) -> datetime:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).astimezone()


@dataclass(frozen=True)
class Stat:
    """Information about a file or directory plus its MIME type."""

    name: str
    mode: int
    size: int
    modified: datetime
    created: datetime
    mimetype: str

    @classmethod
    def from_stat_result(cls, name: str, st: os.stat_result, mimetype: str) -> "Stat":
        created = st.st_mtime if os.name == "nt" else st.st_ctime
        return cls(
            name=name,
            mode=st.st_mode,
            size=st.st_size,
            modified=_local_time(st.st_mtime),
            created=_local_time(created),
            mimetype=mimetype,
        )

    @classmethod
    def from_path(cls, path: str) -> "Stat":
        """Stat path, following symlinks, and detect its MIME type."""
        st = os.stat(path)
        if stat_mod.S_ISDIR(st.st_mode):
            mimetype = DIRECTORY_MIMETYPE
        else:
            mimetype = detect_mimetype(path)
        return cls.from_stat_result(os.path.basename(path), st, mimetype)

    @property
    def is_dir(self) -> bool:
        return stat_mod.S_ISDIR(self.mode)

    @property
    def is_symlink(self) -> bool:
        return stat_mod.S_ISLNK(self.mode)

    @property
    def is_regular(self) -> bool:
        return stat_mod.S_ISREG(self.mode)

    @property
    def mode_string(self) -> str:
        return _go_mode_string(self.mode)

    @property
    def mode_bits(self) -> str:
        return format(self.mode & 0o777, "o")

    def to_dict(self) -> Dict[str, Any]:
        """Return the JSON representation sent to the panel."""
        return {
            "name": self.name,
            "created": _rfc3339(self.created),
            "modified": _rfc3339(self.modified),
            "mode": self.mode_string,
            "mode_bits": self.mode_bits,
            "size": self.size,
            "directory": self.is_dir,
            "file": not self.is_dir,
            # Permission bits never carry the symlink type bit.
            "symlink": bool(stat_mod.S_IMODE(self.mode) & stat_mod.S_IFLNK),
            "mime": self.mimetype,
        }