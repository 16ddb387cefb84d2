"""Tracking of the disk space used by a server's data directory."""

from __future__ import annotations

import logging
import os
import threading
import time
from typing import List, Optional, Tuple

from .errors import ErrorCode, FilesystemError, is_error_code
from .paths import PathResolver

log = logging.getLogger(__name__)


class DiskUsage:
    """Caches the size of a data directory and checks it against a limit.

    ``limit`` is in bytes; a limit of 0 means unlimited. ``check_interval``
    is the number of seconds a computed size stays fresh; an interval of 0
    disables size lookups entirely.
    """

    def __init__(self, resolver: PathResolver, limit: int = 0, check_interval: float = 150) -> None:
        self._resolver = resolver
        self._limit = limit
        self.check_interval = check_interval
        # When True, adding to the usage first refreshes a stale cached value.
        self.refresh_on_add = True
        self._used = 0
        self._state_lock = threading.Lock()
        self._update_lock = threading.Lock()
        self._in_progress = threading.Event()
        self._last_lookup: Optional[float] = None

    @property
    def limit(self) -> int:
        """The maximum number of bytes the directory may use."""
        with self._state_lock:
            return self._limit

    @limit.setter
    def limit(self, value: int) -> None:
        with self._state_lock:
            self._limit = value

    @property
    def used(self) -> int:
        """The cached number of bytes in use; never triggers a lookup."""
        with self._state_lock:
            return self._used

    @used.setter
    def used(self, value: int) -> None:
        with self._state_lock:
            self._used = value

    def has_space_available(self, allow_stale: bool) -> bool:
        """Return True if the directory is within its limit."""
        try:
            size = self.disk_usage(allow_stale)
        except Exception as exc:  # noqa: BLE001 - logged, cached value used instead
            log.warning("failed to determine root fs directory size (root=%s): %s", self._resolver.root, exc)
            size = self.used
        limit = self.limit
        if limit == 0:
            return True
        return size <= limit

    def has_space_err(self, allow_stale: bool) -> None:
        """Raise a disk space error if the directory is over its limit."""
        if not self.has_space_available(allow_stale):
            raise FilesystemError(ErrorCode.DISK_SPACE)

    def disk_usage(self, allow_stale: bool) -> int:
        """Return the used space, computing it when the cached value is stale.

        With ``allow_stale`` a stale value is returned at once and a refresh
        runs in the background, unless one is already running.
        """
        if self.check_interval == 0:
            return 0
        last = self._last_lookup
        if last is None or last <= time.monotonic() - self.check_interval:
            if not allow_stale:
                return self._update()
            if not self._in_progress.is_set():
                threading.Thread(target=self._background_update, daemon=True).start()
        return self.used

    def _background_update(self) -> None:
        try:
            self._update()
        except Exception as exc:  # noqa: BLE001 - background task, only logged
            log.warning("failed to update fs disk usage (root=%s): %s", self._resolver.root, exc)

    def _update(self) -> int:
        with self._update_lock:
            self._in_progress.set()
            try:
                size, error = self._measure("/")
                # The size is cached even on failure so a temporary error does
                # not cause lookups over and over.
                self._last_lookup = time.monotonic()
                self.used = size
            finally:
                self._in_progress.clear()
        if error is not None:
            raise error
        return size

    def _measure(self, directory: str) -> Tuple[int, Optional[BaseException]]:
        try:
            start = self._resolver.safe_path(directory)
        except Exception as exc:  # noqa: BLE001 - handed back to the caller
            return 0, exc
        size = 0
        pending: List[str] = [start]
        try:
            while pending:
                current = pending.pop()
                with os.scandir(current) as entries:
                    for entry in entries:
                        if entry.is_symlink():
                            try:
                                self._resolver.safe_path(entry.path)
                            except FilesystemError as exc:
                                if is_error_code(exc, ErrorCode.PATH_RESOLUTION):
                                    continue
                                raise
                        if entry.is_dir(follow_symlinks=False):
                            pending.append(entry.path)
                            continue
                        try:
                            size += entry.stat(follow_symlinks=False).st_size
                        except OSError:
                            pass
        except (OSError, FilesystemError) as exc:
            return size, exc
        return size, None

    def directory_size(self, directory: str) -> int:
        """Walk a directory inside the root and return the bytes it holds.

        Symlinks that resolve outside the root are not counted.
        """
        size, error = self._measure(directory)
        if error is not None:
            raise error
        return size

    def has_space_for(self, size: int) -> None:
        """Raise a disk space error if ``size`` more bytes would not fit."""
        limit = self.limit
        if limit == 0:
            return
        if self.disk_usage(True) + size > limit:
            raise FilesystemError(ErrorCode.DISK_SPACE)

    def add(self, delta: int) -> int:
        """Adjust the cached usage by ``delta`` bytes, never going below zero."""
        size = self.used
        if self.refresh_on_add:
            try:
                size = self.disk_usage(True)
            except Exception:  # noqa: BLE001 - the cached value is good enough here
                size = self.used
        with self._state_lock:
            if size + delta < 0:
                self._used = 0
            else:
                self._used += delta
            return self._used

    def reset(self) -> None:
        """Set the cached usage to zero."""
        self.used = 0