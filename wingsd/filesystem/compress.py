"""Compression and extraction of archives inside a server's data directory."""

from __future__ import annotations

import contextlib
import functools
import io
import os
import posixpath
import shutil
import tarfile
import tempfile
import time
import zipfile
from dataclasses import dataclass
from datetime import datetime
from typing import BinaryIO, Callable, Iterable, Iterator, List

from .archive import Archive
from .errors import ErrorCode, FilesystemError, wrap_error
from .filesystem import Filesystem
from .stat import Stat

_ZIP = "zip"
_TAR = "tar"
# A compressed stream that holds no archive: it is recognised but has
# nothing to extract.
_COMPRESSED = "compressed"

_COMPRESSION_MAGIC = (
    b"\x1f\x8b",
    b"BZh",
    b"\xfd7zXZ\x00",
    b"\x28\xb5\x2f\xfd",
    b"\x04\x22\x4d\x18",
)


@dataclass(frozen=True)
class _Entry:
    name: str
    is_dir: bool
    mode: int
    mtime: float
    size: int
    open: Callable[[], BinaryIO]


def _identify(fh: BinaryIO) -> str:
    start = fh.tell()
    head = fh.read(512)
    fh.seek(start)
    try:
        if zipfile.is_zipfile(fh):
            return _ZIP
    finally:
        fh.seek(start)
    try:
        with tarfile.open(fileobj=fh, mode="r:*"):
            return _TAR
    except (tarfile.TarError, OSError, EOFError):
        pass
    finally:
        fh.seek(start)
    if head.startswith(_COMPRESSION_MAGIC):
        return _COMPRESSED
    raise FilesystemError(ErrorCode.UNKNOWN_ARCHIVE, cause=ValueError("no formats matched"))


def _zip_mode(info: zipfile.ZipInfo) -> int:
    mode = info.external_attr >> 16
    if mode:
        return mode
    return 0o444 if info.external_attr & 0x01 else 0o666


def _open_tar_member(tar: tarfile.TarFile, member: tarfile.TarInfo) -> BinaryIO:
    if member.isreg() or member.islnk():
        try:
            fh = tar.extractfile(member)
        except KeyError:
            fh = None
        if fh is not None:
            return fh
    return io.BytesIO(b"")


def _entries(fh: BinaryIO, kind: str) -> Iterator[_Entry]:
    if kind == _ZIP:
        with zipfile.ZipFile(fh) as zf:
            for info in zf.infolist():
                yield _Entry(
                    name=info.filename,
                    is_dir=info.is_dir(),
                    mode=_zip_mode(info),
                    mtime=time.mktime(info.date_time + (0, 0, -1)),
                    size=info.file_size,
                    open=functools.partial(zf.open, info),
                )
    elif kind == _TAR:
        with tarfile.open(fileobj=fh, mode="r:*") as tar:
            for member in tar:
                yield _Entry(
                    name=member.name,
                    is_dir=member.isdir(),
                    mode=member.mode,
                    mtime=float(member.mtime),
                    size=member.size,
                    open=functools.partial(_open_tar_member, tar, member),
                )


def _extract(fs: Filesystem, directory: str, fh: BinaryIO, kind: str) -> None:
    for entry in _entries(fh, kind):
        if entry.is_dir:
            continue
        p = posixpath.normpath(posixpath.join(directory, entry.name))
        # Ignored or unresolvable entries are skipped without complaint.
        try:
            fs.is_ignored(p)
        except (FilesystemError, OSError):
            continue
        try:
            with entry.open() as reader:
                fs.writefile(p, reader)
            fs.chmod(p, entry.mode)
            fs.chtimes(p, entry.mtime, entry.mtime)
        except Exception as exc:  # noqa: BLE001 - every failure is reported as a filesystem error
            wrapped = wrap_error(exc, "")
            if wrapped is exc:
                raise
            raise wrapped from exc


def _timestamp() -> str:
    text = datetime.now().astimezone().replace(microsecond=0).isoformat()
    if text.endswith("+00:00"):
        text = text[: -len("+00:00")] + "Z"
    return text.replace(":", "")


def compress_files(fs: Filesystem, directory: str, paths: Iterable[str]) -> Stat:
    """Archive the given paths (relative to ``directory``) into a tar.gz in that directory.

    Returns the stat of the new ``archive-<date>.tar.gz`` file.
    """
    root = fs.safe_path(directory)
    joined: List[str] = [posixpath.normpath(root + "/" + p) for p in paths]
    cleaned = fs.parallel_safe_path(joined)

    dst = posixpath.join(root, f"archive-{_timestamp()}.tar.gz")
    Archive(base_path=root, files=cleaned).create(dst)

    try:
        st = Stat.from_path(dst)
        fs.has_space_for(st.size)
    except BaseException:
        with contextlib.suppress(OSError):
            os.remove(dst)
        raise

    fs.disk.add(st.size)
    return st


def space_available_for_decompression(fs: Filesystem, directory: str, file: str) -> None:
    """Raise a disk space error if extracting the archive would exceed the limit."""
    if fs.max_disk <= 0:
        return

    source = fs.safe_path(posixpath.join(directory, file))
    try:
        dir_size = fs.disk.disk_usage(False)
    except Exception:  # noqa: BLE001 - the cached value is used instead
        dir_size = fs.disk.used

    with open(source, "rb") as fh:
        kind = _identify(fh)
        if kind == _COMPRESSED:
            sizes: Iterable[int] = [os.fstat(fh.fileno()).st_size]
        else:
            sizes = (entry.size for entry in _entries(fh, kind))
        total = 0
        for size in sizes:
            total += size
            if total + dir_size > fs.max_disk:
                raise FilesystemError(ErrorCode.DISK_SPACE)


def decompress_file(fs: Filesystem, directory: str, file: str) -> None:
    """Extract an archive inside the server root into ``directory``."""
    source = fs.safe_path(posixpath.join(directory, file))
    decompress_file_unsafe(fs, directory, source)


def decompress_file_unsafe(fs: Filesystem, directory: str, file: str) -> None:
    """Extract any archive on disk into ``directory`` of the server root.

    The archive itself is not checked to belong to the server, but every
    extracted entry is confined to the server root.
    """
    os.stat(file)
    with open(file, "rb") as fh:
        kind = _identify(fh)
        _extract(fs, directory, fh, kind)


def extract_stream_unsafe(fs: Filesystem, directory: str, stream: BinaryIO) -> None:
    """Extract an archive read from a binary stream into ``directory``."""
    with tempfile.TemporaryFile() as spool:
        shutil.copyfileobj(stream, spool)
        spool.seek(0)
        kind = _identify(spool)
        _extract(fs, directory, spool, kind)