"""Operations on files inside a server's data directory."""

from __future__ import annotations

import errno
import logging
import os
import posixpath
import shutil
import stat as stat_mod
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import BinaryIO, Iterable, List, Optional, Tuple, Union

from .disk_space import DiskUsage
from .errors import ErrorCode, FilesystemError, new_bad_path_resolution
from .gitignore import GitIgnore
from .paths import PathResolver, eval_symlinks
from .stat import DIRECTORY_MIMETYPE, OCTET_STREAM, Stat, detect_mimetype

log = logging.getLogger(__name__)

_BUFFER_SIZE = 4 * 1024
_MAX_COPY_ATTEMPTS = 50
_BUSY_RETRIES = 3

Data = Union[bytes, bytearray, memoryview, BinaryIO]


def _rfc3339_now() -> str:
    text = datetime.now().astimezone().replace(microsecond=0).isoformat()
    if text.endswith("+00:00"):
        text = text[: -len("+00:00")] + "Z"
    return text


def _extension(base: str) -> str:
    idx = base.rfind(".")
    return base[idx:] if idx >= 0 else ""


def _incoming_size(data: Data) -> int:
    if isinstance(data, (bytes, bytearray, memoryview)):
        return len(data)
    seekable = getattr(data, "seekable", None)
    if seekable is not None and seekable():
        pos = data.tell()
        end = data.seek(0, os.SEEK_END)
        data.seek(pos)
        return end - pos
    return _BUFFER_SIZE


def _is_text_busy(exc: OSError) -> bool:
    busy = getattr(errno, "ETXTBSY", None)
    return (busy is not None and exc.errno == busy) or "text file busy" in str(exc).lower()


def _timestamp(value: Union[datetime, float, int]) -> float:
    return value.timestamp() if isinstance(value, datetime) else float(value)


class Filesystem:
    """A server's data directory, with every access confined to its root.

    ``disk_limit`` is in bytes (0 means unlimited). With ``manage_ownership``
    off, ownership of written files is left alone and the disk usage is
    adjusted from the cached value without refreshing it first.
    """

    def __init__(
        self,
        root: str,
        disk_limit: int = 0,
        denylist: Iterable[str] = (),
        disk_check_interval: float = 150,
        uid: Optional[int] = None,
        gid: Optional[int] = None,
        manage_ownership: bool = True,
    ) -> None:
        self._resolver = PathResolver(root)
        self.disk = DiskUsage(self._resolver, disk_limit, disk_check_interval)
        self.disk.refresh_on_add = manage_ownership
        self.denylist = GitIgnore(denylist)
        self.uid = uid if uid is not None else getattr(os, "getuid", lambda: -1)()
        self.gid = gid if gid is not None else getattr(os, "getgid", lambda: -1)()
        self.manage_ownership = manage_ownership

    @property
    def path(self) -> str:
        """The root directory of this filesystem."""
        return self._resolver.root

    @property
    def max_disk(self) -> int:
        return self.disk.limit

    def safe_path(self, p: str) -> str:
        """Return the cleaned absolute path for p, raising if it escapes the root."""
        return self._resolver.safe_path(p)

    def parallel_safe_path(self, paths: Iterable[str]) -> List[str]:
        return self._resolver.parallel_safe_path(paths)

    def is_ignored(self, *args: str) -> None:
        """Raise a denylist error if any of the paths is on the denylist."""
        for p in args:
            resolved = self.safe_path(p)
            if self.denylist.matches_path(resolved):
                raise FilesystemError(ErrorCode.DENYLIST_FILE, path=p, resolved=resolved)

    def has_space_for(self, size: int) -> None:
        self.disk.has_space_for(size)

    def has_space_available(self, allow_stale: bool) -> bool:
        return self.disk.has_space_available(allow_stale)

    def stat(self, p: str) -> Stat:
        """Stat a file or directory inside the root, with its MIME type."""
        return Stat.from_path(self.safe_path(p))

    def file(self, p: str) -> Tuple[BinaryIO, Stat]:
        """Open a regular file for reading and return it with its stat."""
        cleaned = self.safe_path(p)
        try:
            st = self.stat(cleaned)
        except FileNotFoundError as exc:
            raise FilesystemError(ErrorCode.NOT_EXIST, cause=exc) from exc
        if st.is_dir:
            raise FilesystemError(ErrorCode.IS_DIRECTORY, resolved=cleaned)
        return open(cleaned, "rb"), st

    def _open(self, path: str, mode: str) -> BinaryIO:
        busy = 0
        while True:
            try:
                return open(path, mode, opener=lambda name, flags: os.open(name, flags, 0o644))
            except OSError as exc:
                if busy < _BUSY_RETRIES and _is_text_busy(exc):
                    time.sleep(0.1 * (1 << busy))
                    busy += 1
                    continue
                raise

    def touch(self, p: str, mode: str = "w+b") -> BinaryIO:
        """Open p with the given mode, creating missing parent directories."""
        cleaned = self.safe_path(p)
        try:
            return open(cleaned, mode, opener=lambda name, flags: os.open(name, flags, 0o644))
        except FileNotFoundError:
            pass
        parent = os.path.dirname(cleaned)
        if not os.path.exists(parent):
            os.makedirs(parent, 0o755, exist_ok=True)
            self.chown(parent)
        fh = self._open(cleaned, mode)
        try:
            self._unsafe_chown(cleaned)
        except OSError:
            pass
        return fh

    def writefile(self, p: str, data: Data) -> None:
        """Write bytes or a binary stream to p, replacing what was there."""
        cleaned = self.safe_path(p)
        current = 0
        try:
            st = os.stat(cleaned)
        except FileNotFoundError:
            pass
        else:
            if stat_mod.S_ISDIR(st.st_mode):
                raise FilesystemError(ErrorCode.IS_DIRECTORY, resolved=cleaned)
            current = st.st_size

        self.has_space_for(_incoming_size(data) - current)

        written = 0
        try:
            with self.touch(cleaned, "w+b") as fh:
                if isinstance(data, (bytes, bytearray, memoryview)):
                    written = fh.write(data)
                else:
                    while chunk := data.read(_BUFFER_SIZE):
                        fh.write(chunk)
                        written += len(chunk)
        finally:
            self.disk.add(written - current)
        self._unsafe_chown(cleaned)

    def create_directory(self, name: str, p: str) -> None:
        """Create the directory ``name`` below ``p``, with any missing parents."""
        cleaned = self.safe_path("/".join(part for part in (p, name) if part))
        os.makedirs(cleaned, 0o755, exist_ok=True)

    def rename(self, src: str, dst: str) -> None:
        """Move a file or directory, creating the destination's parents."""
        cleaned_from = self.safe_path(src)
        cleaned_to = self.safe_path(dst)
        if os.path.exists(cleaned_to):
            raise FileExistsError(errno.EEXIST, os.strerror(errno.EEXIST), cleaned_to)
        if cleaned_to == self.path:
            raise OSError("attempting to rename into an invalid directory space")
        parent = os.path.dirname(cleaned_to)
        if parent != self.path:
            os.makedirs(parent, 0o755, exist_ok=True)
        os.rename(cleaned_from, cleaned_to)

    def chown(self, p: str) -> None:
        """Give p, and everything below it, to the configured user."""
        self._unsafe_chown(self.safe_path(p))

    def _unsafe_chown(self, path: str) -> None:
        if not self.manage_ownership:
            return
        os.chown(path, self.uid, self.gid)
        if not os.path.isdir(path):
            return
        # Symlinks are never chowned: that would touch their targets.
        for current, dirnames, filenames in os.walk(path, followlinks=False):
            for name in dirnames + filenames:
                full = os.path.join(current, name)
                if not os.path.islink(full):
                    os.chown(full, self.uid, self.gid)

    def chmod(self, p: str, mode: int) -> None:
        os.chmod(self.safe_path(p), stat_mod.S_IMODE(mode))

    def chtimes(self, p: str, atime: Union[datetime, float], mtime: Union[datetime, float]) -> None:
        os.utime(self.safe_path(p), (_timestamp(atime), _timestamp(mtime)))

    def _find_copy_suffix(self, directory: str, name: str, extension: str) -> str:
        suffix = " copy"
        for i in range(_MAX_COPY_ATTEMPTS + 1):
            if i > 0:
                suffix = f" copy {i}"
            try:
                self.stat(posixpath.join(directory, name + suffix + extension))
            except FileNotFoundError:
                break
            if i == _MAX_COPY_ATTEMPTS:
                suffix = "copy." + _rfc3339_now()
        return name + suffix + extension

    def copy(self, p: str) -> None:
        """Copy a regular file next to itself under a " copy" name."""
        cleaned = self.safe_path(p)
        st = os.stat(cleaned)
        if not stat_mod.S_ISREG(st.st_mode):
            raise FileNotFoundError(errno.ENOENT, os.strerror(errno.ENOENT), cleaned)
        self.has_space_for(st.st_size)

        base = os.path.basename(cleaned)
        relative = cleaned.removeprefix(self.path).removesuffix(base)
        extension = _extension(base)
        name = base.removesuffix(extension)
        if name.endswith(".tar"):
            extension = ".tar" + extension
            name = name.removesuffix(".tar")

        with open(cleaned, "rb") as source:
            target = self._find_copy_suffix(relative, name, extension)
            self.writefile(posixpath.join(relative, target), source)

    def truncate_root_directory(self) -> None:
        """Remove everything in the root and reset the used disk space."""
        shutil.rmtree(self.path, ignore_errors=not os.path.exists(self.path))
        os.mkdir(self.path, 0o755)
        self.disk.reset()

    def delete(self, p: str) -> None:
        """Remove a file, symlink or directory; symlinks are not followed."""
        resolved = self._resolver.unsafe_file_path(p)
        if not self._resolver.is_in_data_directory(resolved):
            raise new_bad_path_resolution(p, resolved)
        if resolved == self.path:
            raise PermissionError("cannot delete root server directory")

        try:
            st = os.lstat(resolved)
        except FileNotFoundError:
            # Do not reveal whether a file exists behind a directory symlink
            # that leads outside the root.
            parts = os.path.dirname(resolved).split("/")
            for k in range(len(parts)):
                attempt = "/".join(parts[: len(parts) - k])
                if not self._resolver.is_in_data_directory(attempt):
                    break
                target, found = eval_symlinks(attempt)
                if found:
                    if not self._resolver.is_in_data_directory(target):
                        raise new_bad_path_resolution(p, target)
                    break
            return
        except OSError as exc:
            log.warning("error while attempting to stat file before deletion (root=%s): %s", self.path, exc)
            raise

        is_link = stat_mod.S_ISLNK(st.st_mode)
        if not is_link:
            target, found = eval_symlinks(resolved)
            if found and not self._resolver.is_in_data_directory(target):
                raise new_bad_path_resolution(p, target)

        if stat_mod.S_ISDIR(st.st_mode):
            try:
                self.disk.add(-self.disk.directory_size(resolved))
            except (OSError, FilesystemError):
                pass
            shutil.rmtree(resolved)
        else:
            self.disk.add(-st.st_size)
            os.remove(resolved)

    def _describe(self, directory: str, name: str) -> Optional[Stat]:
        full = os.path.join(directory, name)
        try:
            st = os.lstat(full)
        except FileNotFoundError:
            return None
        mimetype = DIRECTORY_MIMETYPE
        if not stat_mod.S_ISDIR(st.st_mode):
            checked = full
            if stat_mod.S_ISLNK(st.st_mode):
                try:
                    checked = self.safe_path(full)
                except FilesystemError:
                    checked = ""
            # Reading from a pipe would block forever.
            if checked and not stat_mod.S_ISFIFO(st.st_mode):
                try:
                    mimetype = detect_mimetype(full)
                except OSError:
                    pass
            else:
                mimetype = OCTET_STREAM
        return Stat.from_stat_result(name, st, mimetype)

    def list_directory(self, p: str) -> List[Stat]:
        """List a directory: directories first, each part in descending name order."""
        cleaned = self.safe_path(p)
        names = os.listdir(cleaned)
        with ThreadPoolExecutor() as pool:
            found = [s for s in pool.map(lambda n: self._describe(cleaned, n), names) if s is not None]
        found.sort(key=lambda s: s.name, reverse=True)
        found.sort(key=lambda s: not s.is_dir)
        return found