"""Include/exclude file masks."""

import fnmatch
import re
from typing import List, Tuple


def _split_patterns(text: str) -> List[str]:
    return [p.strip() for p in re.split(r"[;,]", text) if p.strip()]


class FileMask:
    """Selects which relative paths take part in a synchronization.

    Syntax is ``includes|excludes`` where each side is a ``;`` or ``,``
    separated list of glob patterns. A pattern ending in ``/`` only matches
    directories. A pattern containing ``/`` is matched against the whole
    relative path, otherwise against the last path component. An empty
    include side selects everything.

    Examples:
        ``*.html;*.css``             only html and css files
        ``|.git/;*.tmp``             everything but .git and temp files
        ``src/*|*.pyc``              files under src, minus .pyc
    """

    def __init__(self, expression: str = ""):
        self.expression = expression or ""
        include_text, _, exclude_text = self.expression.partition("|")
        self.includes = _split_patterns(include_text)
        self.excludes = _split_patterns(exclude_text)

    def __repr__(self) -> str:
        return f"FileMask({self.expression!r})"

    @staticmethod
    def _parse(pattern: str) -> Tuple[str, bool]:
        if pattern.endswith("/"):
            return pattern.rstrip("/"), True
        return pattern, False

    def _matches(self, pattern: str, rel_path: str, is_dir: bool) -> bool:
        pattern, dir_only = self._parse(pattern)
        if dir_only and not is_dir:
            return False
        if "/" in pattern:
            return fnmatch.fnmatchcase(rel_path, pattern.lstrip("/"))
        return fnmatch.fnmatchcase(rel_path.rsplit("/", 1)[-1], pattern)

    def is_excluded(self, rel_path: str, is_dir: bool = False) -> bool:
        rel_path = rel_path.replace("\\", "/").strip("/")
        return any(self._matches(p, rel_path, is_dir) for p in self.excludes)

    def includes_file(self, rel_path: str) -> bool:
        """True if the file at ``rel_path`` takes part in synchronization."""
        rel_path = rel_path.replace("\\", "/").strip("/")
        if self.is_excluded(rel_path):
            return False
        # A file under an excluded directory is excluded as well
        parts = rel_path.split("/")
        for i in range(1, len(parts)):
            if self.is_excluded("/".join(parts[:i]), is_dir=True):
                return False
        file_includes = [p for p in self.includes if not p.endswith("/")]
        if not file_includes:
            return True
        return any(self._matches(p, rel_path, False) for p in file_includes)

    def includes_dir(self, rel_path: str) -> bool:
        """True if the walk should descend into the directory at ``rel_path``."""
        return not self.is_excluded(rel_path, is_dir=True)
