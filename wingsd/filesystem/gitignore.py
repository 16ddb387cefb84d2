"""Matching of paths against gitignore-style pattern lines."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

_MAGIC_STAR = "#$~"
_SLASH_GLOB_EXT = re.compile(r"([^/+])/.*\*\.")


@dataclass(frozen=True)
class _Pattern:
    regex: "re.Pattern[str]"
    negate: bool


def _compile_line(line: str) -> Tuple[Optional["re.Pattern[str]"], bool]:
    line = line.rstrip("\r")
    if line.startswith("#"):
        return None, False
    line = line.strip(" ")
    if not line:
        return None, False

    negate = False
    if line[0] == "!":
        negate = True
        line = line[1:]
    if line.startswith(("#", "!")):
        line = line[1:]

    if _SLASH_GLOB_EXT.search(line) and not line.startswith("/"):
        line = "/" + line

    line = line.replace(".", r"\.")
    if line.startswith("/**/"):
        line = line[1:]
    line = line.replace("/**/", "(/|/.+/)")
    line = line.replace("**/", "(|." + _MAGIC_STAR + "/)")
    line = line.replace("/**", "(|/." + _MAGIC_STAR + ")")
    line = line.replace("\\*", "\\" + _MAGIC_STAR)
    line = line.replace("*", "([^/]*)")
    line = line.replace("?", r"\?")
    line = line.replace(_MAGIC_STAR, "*")

    expr = line + ("(|.*)\\Z" if line.endswith("/") else "(|/.*)\\Z")
    expr = "^(|/)" + expr[1:] if expr.startswith("/") else "^(|.*/)" + expr
    try:
        return re.compile(expr), negate
    except re.error:
        return None, False


class GitIgnore:
    """A compiled set of gitignore lines."""

    def __init__(self, lines: Iterable[str]) -> None:
        patterns: List[_Pattern] = []
        for line in lines:
            regex, negate = _compile_line(line)
            if regex is not None:
                patterns.append(_Pattern(regex, negate))
        self._patterns = patterns

    @classmethod
    def from_string(cls, text: str) -> "GitIgnore":
        return cls(text.split("\n"))

    def matches_path(self, path: str) -> bool:
        """Return True if path is ignored by these patterns."""
        path = path.replace("\\", "/")
        matched = False
        for pattern in self._patterns:
            if pattern.regex.search(path):
                matched = not pattern.negate
        return matched