"""Creation of gzipped tar archives from a server's data directory."""

from __future__ import annotations

import enum
import gzip
import logging
import os
import stat as stat_mod
import tarfile
import threading
import time
from dataclasses import dataclass, field
from typing import BinaryIO, Callable, Iterator, List, Optional

from .gitignore import GitIgnore

log = logging.getLogger(__name__)

_MIB = 1024 * 1024


class CompressionLevel(enum.IntEnum):
    NONE = 0
    BEST_SPEED = 1
    BEST_COMPRESSION = 9

    @classmethod
    def from_name(cls, name: str) -> "CompressionLevel":
        """Map a configuration name to a level; unknown names mean best speed."""
        return {"none": cls.NONE, "best_compression": cls.BEST_COMPRESSION}.get(name, cls.BEST_SPEED)


class _RateLimitedWriter:
    """A token bucket writer allowing ``rate`` bytes per second."""

    def __init__(self, fileobj: BinaryIO, rate: int) -> None:
        self._fileobj = fileobj
        self._rate = rate
        self._capacity = rate
        self._tokens = float(rate)
        self._stamp = time.monotonic()
        self._lock = threading.Lock()

    def _refill(self) -> None:
        now = time.monotonic()
        self._tokens = min(self._capacity, self._tokens + (now - self._stamp) * self._rate)
        self._stamp = now

    def write(self, data) -> int:
        view = memoryview(data)
        total = len(view)
        with self._lock:
            while view:
                self._refill()
                if self._tokens < 1:
                    time.sleep((1 - self._tokens) / self._rate)
                    continue
                n = min(len(view), int(self._tokens))
                self._fileobj.write(view[:n])
                self._tokens -= n
                view = view[n:]
        return total

    def flush(self) -> None:
        self._fileobj.flush()


class _ProgressReader:
    def __init__(self, fileobj: BinaryIO, callback: Callable[[int], None]) -> None:
        self._fileobj = fileobj
        self._callback = callback

    def read(self, size: int = -1) -> bytes:
        data = self._fileobj.read(size)
        if data:
            self._callback(len(data))
        return data


def _walk_files(base: str) -> Iterator[str]:
    pending = [base]
    while pending:
        current = pending.pop()
        with os.scandir(current) as entries:
            for entry in entries:
                if entry.is_dir(follow_symlinks=False):
                    pending.append(entry.path)
                else:
                    yield entry.path


@dataclass
class Archive:
    """A tar.gz archive of files below ``base_path``.

    ``files`` restricts the archive to those absolute paths (and what lies
    below them) and takes priority over ``ignore``, a gitignore text.
    ``progress`` is called with the number of content bytes as they are
    archived. ``write_limit`` caps writes in MiB per second when above 0.
    """

    base_path: str
    ignore: str = ""
    files: List[str] = field(default_factory=list)
    progress: Optional[Callable[[int], None]] = None
    compression_level: CompressionLevel = CompressionLevel.BEST_SPEED
    write_limit: float = 0

    def _validate(self) -> None:
        for f in self.files:
            if not f.startswith(self.base_path):
                raise ValueError(f"archive: all entries in Files must be absolute and within BasePath: {f}")

    def create(self, dst: str) -> None:
        """Write the archive to the file at ``dst``."""
        self._validate()
        fd = os.open(dst, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "wb") as fh:
            limit = int(self.write_limit * _MIB)
            self.stream(_RateLimitedWriter(fh, limit) if limit > 0 else fh)

    def _selector(self) -> Callable[[str, str], bool]:
        if self.files:
            prefixes = [(f, f.removesuffix("/") + "/") for f in self.files]

            def in_files(path: str, _relative: str) -> bool:
                probe = path.removesuffix("/") + "/"
                return any(f == path or probe.startswith(prefix) for f, prefix in prefixes)

            return in_files
        if self.ignore:
            matcher = GitIgnore.from_string(self.ignore)
            return lambda _path, relative: not matcher.matches_path(relative)
        return lambda _path, _relative: True

    def stream(self, fileobj) -> None:
        """Write the archive to a writable binary file object."""
        self._validate()
        include = self._selector()
        prefix = self.base_path + os.sep
        with gzip.GzipFile(
            filename="",
            mode="wb",
            fileobj=fileobj,
            compresslevel=int(self.compression_level),
            mtime=0,
        ) as gz:
            with tarfile.open(fileobj=gz, mode="w|", format=tarfile.PAX_FORMAT) as tar:
                for path in _walk_files(self.base_path):
                    relative = path[len(prefix):] if path.startswith(prefix) else path
                    relative = relative.replace(os.sep, "/")
                    if include(path, relative):
                        self._add(tar, path, relative)

    def _add(self, tar: tarfile.TarFile, path: str, relative: str) -> None:
        try:
            st = os.lstat(path)
        except FileNotFoundError:
            return
        except OSError as exc:
            raise OSError(f"failed executing lstat on '{relative}': {exc}") from exc

        # Sockets cannot be stored in a tar archive.
        if stat_mod.S_ISSOCK(st.st_mode):
            return

        if stat_mod.S_ISLNK(st.st_mode):
            try:
                os.readlink(path)
            except FileNotFoundError:
                return
            except OSError as exc:
                log.warning("failed reading symlink for target path %s; skipping: %s", relative, exc)
                return

        try:
            info = tar.gettarinfo(path, arcname=relative)
        except FileNotFoundError:
            return
        except OSError as exc:
            raise OSError(f"failed to get tar header for '{relative}': {exc}") from exc
        if info is None:
            return

        if not info.isreg() or info.size < 1:
            tar.addfile(info)
            return

        try:
            fh = open(path, "rb")
        except FileNotFoundError:
            return
        except OSError as exc:
            raise OSError(f"failed to open '{relative}' for copying: {exc}") from exc
        with fh:
            source = _ProgressReader(fh, self.progress) if self.progress is not None else fh
            try:
                tar.addfile(info, source)
            except OSError as exc:
                raise OSError(f"failed to copy '{relative}' to archive: {exc}") from exc