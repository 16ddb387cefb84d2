"""Backups of a server's data directory stored as tar.gz archives."""

from __future__ import annotations

import enum
import hashlib
import io
import logging
import os
import posixpath
import tarfile
import threading
import time
from dataclasses import dataclass
from typing import Any, BinaryIO, Callable, Dict, List, Mapping, Optional, Tuple

from ..filesystem.archive import Archive, CompressionLevel

log = logging.getLogger(__name__)

_MIB = 1024 * 1024
_CHUNK = 4 * 1024

RestoreCallback = Callable[[str, tarfile.TarInfo, BinaryIO], None]


class AdapterType(str, enum.Enum):
    LOCAL = "wings"
    S3 = "s3"


@dataclass
class ArchiveDetails:
    """Checksum, size and uploaded parts of a generated backup."""

    checksum: str = ""
    checksum_type: str = ""
    size: int = 0
    parts: Optional[List[Dict[str, Any]]] = None

    def to_request(self, successful: bool) -> Dict[str, Any]:
        """Return the body reported to the panel for this backup."""
        return {
            "checksum": self.checksum,
            "checksum_type": self.checksum_type,
            "size": self.size,
            "successful": successful,
            "parts": None if self.parts is None else list(self.parts),
        }


class _RateLimitedReader:
    """A token bucket reader allowing ``rate`` bytes per second."""

    def __init__(self, fileobj: BinaryIO, rate: int) -> None:
        self._fileobj = fileobj
        self._rate = rate
        self._tokens = float(rate)
        self._stamp = time.monotonic()
        self._lock = threading.Lock()

    def _refill(self) -> None:
        now = time.monotonic()
        self._tokens = min(float(self._rate), self._tokens + (now - self._stamp) * self._rate)
        self._stamp = now

    def _read_some(self, size: int) -> bytes:
        size = max(1, min(size, self._rate))
        with self._lock:
            self._refill()
            if self._tokens < size:
                time.sleep((size - self._tokens) / self._rate)
                self._refill()
            data = self._fileobj.read(size)
            self._tokens -= len(data)
            return data

    def read(self, size: Optional[int] = -1) -> bytes:
        if size is not None and size >= 0:
            return self._read_some(size) if size else b""
        chunks = []
        while chunk := self._read_some(self._rate):
            chunks.append(chunk)
        return b"".join(chunks)


class Backup:
    """A backup archive tracked by the panel under ``uuid``.

    ``ignore`` is gitignore text of files to leave out. ``write_limit`` caps
    disk throughput in MiB per second when above 0.
    """

    adapter: AdapterType = AdapterType.LOCAL

    def __init__(self, uuid: str, ignore: str, backup_directory: str, write_limit: float = 0) -> None:
        self.uuid = uuid
        self.ignore = ignore
        self.backup_directory = backup_directory
        self.write_limit = write_limit
        self.compression_level = CompressionLevel.BEST_SPEED
        self.log_context: Dict[str, Any] = {}

    @property
    def identifier(self) -> str:
        return self.uuid

    @property
    def ignored(self) -> str:
        return self.ignore

    @property
    def path(self) -> str:
        """Where the archive is kept on this machine."""
        return posixpath.join(self.backup_directory, self.uuid + ".tar.gz")

    def with_log_context(self, context: Mapping[str, Any]) -> None:
        """Attach extra fields to this backup's log output."""
        self.log_context = dict(context)

    def _log(self) -> logging.LoggerAdapter:
        extra = {"backup": self.identifier, "adapter": self.adapter.value, **self.log_context}
        return logging.LoggerAdapter(log, extra)

    def size(self) -> int:
        """Return the size of the archive in bytes."""
        return os.stat(self.path).st_size

    def checksum(self) -> bytes:
        """Return the SHA1 digest of the archive."""
        digest = hashlib.sha1()
        with open(self.path, "rb") as fh:
            while chunk := fh.read(_CHUNK):
                digest.update(chunk)
        return digest.digest()

    def details(self, parts: Optional[List[Dict[str, Any]]]) -> ArchiveDetails:
        """Return the checksum and size of the archive on disk."""
        return ArchiveDetails(
            checksum=self.checksum().hex(),
            checksum_type="sha1",
            size=self.size(),
            parts=parts,
        )

    def remove(self) -> None:
        """Delete the archive from disk."""
        os.remove(self.path)

    def _create_archive(self, base_path: str, ignore: str) -> None:
        self._log().info("creating backup for server (path=%s)", self.path)
        Archive(
            base_path=base_path,
            ignore=ignore,
            compression_level=self.compression_level,
            write_limit=self.write_limit,
        ).create(self.path)
        self._log().info("created backup successfully")

    def _extract(self, fileobj: BinaryIO, callback: RestoreCallback) -> None:
        reader: Any = fileobj
        limit = int(self.write_limit * _MIB)
        if limit > 0:
            reader = _RateLimitedReader(fileobj, limit)
        with tarfile.open(fileobj=reader, mode="r|gz") as tar:
            for member in tar:
                fh = tar.extractfile(member) if member.isreg() else None
                with fh if fh is not None else io.BytesIO(b"") as entry:
                    callback(member.name, member, entry)


class LocalBackup(Backup):
    """A backup kept in the local backup directory."""

    adapter = AdapterType.LOCAL

    def generate(self, base_path: str, ignore: str) -> ArchiveDetails:
        """Archive ``base_path`` to this backup's path and return its details."""
        self._create_archive(base_path, ignore)
        try:
            return self.details(None)
        except OSError as exc:
            raise OSError(f"backup: failed to get archive details for local backup: {exc}") from exc

    def restore(self, reader: Optional[BinaryIO], callback: RestoreCallback) -> None:
        """Call ``callback(name, info, fileobj)`` for every entry of the archive.

        ``reader`` is not used: the archive is read from disk.
        """
        with open(self.path, "rb") as fh:
            self._extract(fh, callback)


def locate_local(backup_directory: str, uuid: str) -> Tuple[LocalBackup, os.stat_result]:
    """Find an existing local backup and return it with its stat."""
    backup = LocalBackup(uuid, "", backup_directory)
    st = os.stat(backup.path)
    if os.path.isdir(backup.path):
        raise IsADirectoryError("invalid archive, is directory")
    return backup, st