"""Folder scanner that snapshots a submission's output directory."""

import os
from collections.abc import Iterable
from pathlib import Path

from desktop_upload.services.utils import get_extension, normalize_relative_path

SUPPORTED_UPLOAD_EXTENSIONS: frozenset[str] = frozenset({".mp4", ".json", ".csv"})


def is_supported(normalized_path: str, extensions: Iterable[str] = SUPPORTED_UPLOAD_EXTENSIONS) -> bool:
    """Check whether a normalized path has an allow-listed extension."""
    return f".{get_extension(normalized_path)}" in set(extensions)


def scan_folder(
    root: str | Path,
    extensions: Iterable[str] = SUPPORTED_UPLOAD_EXTENSIONS,
) -> dict[str, int]:
    """Recursively map every eligible file under ``root`` to its size.

    Directories are walked in sorted order so the returned mapping (and
    therefore the upload order) is stable between runs.

    Args:
        root: Directory to scan
        extensions: Allow-listed extensions including the dot

    Returns:
        Mapping of normalized relative path to byte size. Empty if ``root``
        does not exist.
    """
    root_path = Path(root)
    if not root_path.is_dir():
        return {}

    allowed = {ext.lower() for ext in extensions}
    file_sizes: dict[str, int] = {}

    for directory, subdirs, filenames in os.walk(root_path):
        subdirs.sort()
        for filename in sorted(filenames):
            entry_path = Path(directory) / filename
            if not entry_path.is_file():
                continue
            relative = entry_path.relative_to(root_path).as_posix()
            normalized = normalize_relative_path(relative)
            if not normalized or not is_supported(normalized, allowed):
                continue
            file_sizes[normalized] = entry_path.stat().st_size

    return file_sizes


def summarize_snapshot(file_sizes: dict[str, int]) -> tuple[int, int]:
    """Return ``(total_bytes, total_files)`` for a snapshot."""
    return sum(file_sizes.values()), len(file_sizes)
