"""Resolution of user supplied paths inside a server's data directory."""

from __future__ import annotations

import errno
import os
import posixpath
import stat as stat_mod
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from typing import Iterable, List, Tuple

from .errors import new_bad_path_resolution

_MAX_LINKS = 255


def _clean(p: str) -> str:
    cleaned = posixpath.normpath(p)
    if cleaned.startswith("//"):
        cleaned = "/" + cleaned.lstrip("/")
    return cleaned


def eval_symlinks(path: str) -> Tuple[str, bool]:
    """Resolve every symlink in path.

    Returns the resolved path and True, or, when a component does not
    exist, the partially resolved path up to that component and False.
    """
    parts = deque(c for c in path.split("/") if c)
    dest = "/" if path.startswith("/") else ""
    links = 0
    while parts:
        comp = parts.popleft()
        if comp == ".":
            continue
        if comp == "..":
            if dest == "/":
                continue
            if dest == "" or posixpath.basename(dest) == "..":
                dest = posixpath.join(dest, "..") if dest else ".."
            else:
                dest = posixpath.dirname(dest)
            continue
        dest = posixpath.join(dest, comp) if dest else comp
        try:
            st = os.lstat(dest)
        except FileNotFoundError:
            return _clean(dest), False
        if not stat_mod.S_ISLNK(st.st_mode):
            if not stat_mod.S_ISDIR(st.st_mode) and parts:
                raise NotADirectoryError(errno.ENOTDIR, os.strerror(errno.ENOTDIR), dest)
            continue
        links += 1
        if links > _MAX_LINKS:
            raise OSError(errno.ELOOP, "too many links", path)
        link = os.readlink(dest)
        parts.extendleft(reversed([c for c in link.split("/") if c]))
        dest = "/" if link.startswith("/") else posixpath.dirname(dest)
    return _clean(dest), True


class PathResolver:
    """Keeps paths confined to a root directory."""

    def __init__(self, root: str) -> None:
        self.root = root

    def unsafe_file_path(self, p: str) -> str:
        """Join p onto the root and clean it, without checking where it resolves."""
        if p.startswith(self.root):
            p = p[len(self.root):]
        joined = self.root + "/" + p if p else self.root
        return _clean(joined)

    def is_in_data_directory(self, p: str) -> bool:
        """Return True if p lies lexically inside the root."""
        return (p.removesuffix("/") + "/").startswith(self.root.removesuffix("/") + "/")

    def safe_path(self, p: str) -> str:
        """Return the cleaned path for p, raising if it resolves outside the root."""
        resolved = self.unsafe_file_path(p)
        target, _ = eval_symlinks(resolved)
        if self.is_in_data_directory(target):
            return resolved
        raise new_bad_path_resolution(p, resolved)

    def parallel_safe_path(self, paths: Iterable[str]) -> List[str]:
        """Run safe_path over all paths concurrently; the first failure is raised."""
        paths = list(paths)
        if not paths:
            return []
        with ThreadPoolExecutor() as pool:
            return list(pool.map(self.safe_path, paths))