"""Directory walking and filter normalization."""

from __future__ import annotations

import os
from fnmatch import fnmatchcase
from pathlib import Path
from typing import Iterable, Iterator, List, Optional

from .logging import get_logger
from .metadata import extract_record
from .models import FileMetadataRecord

logger = get_logger("scanner")

MODULE_EXTENSION = ".dll"
DEFAULT_FILTER = f"*{MODULE_EXTENSION}"

_WILDCARD_CHARS = ("*", "?", "[")


def normalize_filter(name_filter: Optional[str]) -> str:
    """Return the effective file-name pattern for ``name_filter``.

    Blank filters select every module. Bare names get the module extension
    appended; patterns with wildcards or an explicit extension are kept as-is.
    """
    if name_filter is None or not name_filter.strip():
        return DEFAULT_FILTER

    pattern = name_filter.strip()
    if any(char in pattern for char in _WILDCARD_CHARS):
        return pattern
    if pattern.lower().endswith(MODULE_EXTENSION):
        return pattern
    return f"{pattern}{MODULE_EXTENSION}"


def resolve_root(path: Optional[str] = None) -> Path:
    """Return the absolute, normalized scan root."""
    root_path = Path(path or os.getcwd()).expanduser().resolve()
    if not root_path.exists():
        raise FileNotFoundError(f"Scan path not found: {path}")
    if not root_path.is_dir():
        raise NotADirectoryError(f"Scan path is not a directory: {path}")
    return root_path


def _raise_walk_error(error: OSError) -> None:
    raise error


def iter_matching_files(
    root: Path, pattern: str, exclude_dirs: Iterable[str] = ()
) -> Iterator[Path]:
    """Yield files under ``root`` whose name matches ``pattern`` (case-insensitive)."""
    pattern_key = pattern.lower()
    excluded = {name.lower() for name in exclude_dirs}

    for dirpath, dirnames, filenames in os.walk(root, onerror=_raise_walk_error):
        dirnames[:] = sorted(name for name in dirnames if name.lower() not in excluded)

        current_dir = Path(dirpath)
        for filename in sorted(filenames):
            if not fnmatchcase(filename.lower(), pattern_key):
                continue
            candidate = current_dir / filename
            if candidate.is_file():
                yield candidate


def scan_directory(
    path: Optional[str] = None,
    name_filter: Optional[str] = None,
    *,
    exclude_dirs: Iterable[str] = (),
) -> List[FileMetadataRecord]:
    """Scan ``path`` and return one record per matching file."""
    root = resolve_root(path)
    pattern = normalize_filter(name_filter)
    logger.debug("Scanning %s for %s", root, pattern)

    return [
        extract_record(file_path, root)
        for file_path in iter_matching_files(root, pattern, exclude_dirs)
    ]
