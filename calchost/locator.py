"""Candidate discovery for plugin module files.

The plugin root holds one subdirectory per plugin package. Inside each
subdirectory, files whose name follows the ``Calculator.Plugin.<Name>``
convention and carries a module extension are candidates:

    plugins/
        add/Calculator.Plugin.Add.py
        mul/Calculator.Plugin.Mul.py

Only immediate subdirectories are searched. Files placed directly in the
root are ignored.
"""

import importlib.machinery
import logging
import re
from pathlib import Path
from typing import Iterator, List, Optional, Pattern, Sequence, Union

from .errors import DirectoryAccessError, DirectoryNotFoundError

logger = logging.getLogger(__name__)

PLUGIN_FILE_PREFIX = r"Calculator\.Plugin\..+"
DEFAULT_EXTENSIONS = tuple(importlib.machinery.SOURCE_SUFFIXES)


def build_file_pattern(
    prefix: str = PLUGIN_FILE_PREFIX,
    extensions: Sequence[str] = DEFAULT_EXTENSIONS
) -> Pattern[str]:
    """Compile the file name pattern for a prefix and extension list.

    Args:
        prefix: Regex matching the name before the extension.
        extensions: Accepted extensions, including the leading dot.

    Returns:
        Compiled regex matched against bare file names.
    """
    suffixes = "|".join(re.escape(ext) for ext in extensions)
    return re.compile(rf"^(?:{prefix})(?:{suffixes})$")


PLUGIN_FILE_PATTERN = build_file_pattern()


def _is_skipped_dir(path: Path) -> bool:
    return path.name.startswith(".") or path.name == "__pycache__"


class CandidatePaths:
    """Lazy, restartable sequence of candidate plugin file paths.

    Each iteration walks the filesystem again, so a new pass sees files
    added since the previous one. Subdirectories are visited in sorted
    name order and files within a subdirectory in sorted name order.

    Usage:
        candidates = CandidatePaths(Path("plugins"))
        for path in candidates:
            ...
    """

    def __init__(
        self,
        root: Union[str, Path],
        pattern: Optional[Union[str, Pattern[str]]] = None
    ):
        self.root = Path(root)
        if pattern is None:
            pattern = PLUGIN_FILE_PATTERN
        elif isinstance(pattern, str):
            pattern = re.compile(pattern)
        self.pattern = pattern

    def __iter__(self) -> Iterator[Path]:
        return self._walk()

    def __repr__(self) -> str:
        return f"CandidatePaths({str(self.root)!r}, pattern={self.pattern.pattern!r})"

    def directories(self) -> List[Path]:
        """List the plugin package directories under root, sorted by name.

        Raises:
            DirectoryNotFoundError: If root does not exist or is not a directory.
            DirectoryAccessError: If root exists but cannot be listed.
        """
        if not self.root.is_dir():
            raise DirectoryNotFoundError(self.root)
        try:
            return sorted(
                (p for p in self.root.iterdir() if p.is_dir() and not _is_skipped_dir(p)),
                key=lambda p: p.name,
            )
        except OSError as exc:
            raise DirectoryAccessError(self.root, exc.strerror or str(exc)) from exc

    def files_in(self, directory: Path) -> Iterator[Path]:
        """Yield matching files of one plugin package directory, sorted by name."""
        try:
            entries = sorted(directory.iterdir(), key=lambda p: p.name)
        except OSError as exc:
            logger.warning("Cannot read plugin directory %s: %s", directory, exc)
            return
        for entry in entries:
            if entry.is_file() and self.pattern.search(entry.name):
                yield entry

    def _walk(self) -> Iterator[Path]:
        for directory in self.directories():
            yield from self.files_in(directory)


def iter_candidate_paths(
    root: Union[str, Path],
    pattern: Optional[Union[str, Pattern[str]]] = None
) -> Iterator[Path]:
    """Iterate candidate plugin files under root.

    The root check happens on the first ``next()`` call, not when this
    function is called.
    """
    return iter(CandidatePaths(root, pattern))
