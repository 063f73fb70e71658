"""File helpers — atomic writes and filesystem discovery."""

from __future__ import annotations

import os
import tempfile
from pathlib import Path

import yaml


def atomic_write_text(path: str | Path, content: str, encoding: str = "utf-8") -> None:
    """Write ``content`` to ``path`` via a temp file in the same directory + rename.

    Readers see either the old file or the new one, never a partial write.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    tmp_path: Path | None = None
    try:
        with tempfile.NamedTemporaryFile(
            "w",
            encoding=encoding,
            dir=str(path.parent),
            prefix=f".{path.name}.",
            delete=False,
            newline="",
        ) as f:
            tmp_path = Path(f.name)
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        if path.exists():
            os.chmod(tmp_path, path.stat().st_mode & 0o7777)
        os.replace(tmp_path, path)
        tmp_path = None
    finally:
        if tmp_path is not None and tmp_path.exists():
            tmp_path.unlink()


def atomic_write_yaml(path: str | Path, data) -> None:
    """Serialise ``data`` as YAML and write it atomically."""
    atomic_write_text(path, yaml.safe_dump(data, sort_keys=False, default_flow_style=False))


def find_dir_upwards(start: str | Path, dir_name: str) -> Path | None:
    """Search ``start`` and its parents for a directory called ``dir_name``.

    The search stops at a filesystem boundary.
    """
    start = Path(start).resolve()
    if not start.is_dir():
        raise NotADirectoryError(str(start))
    device = start.stat().st_dev

    for root in (start, *start.parents):
        if root.stat().st_dev != device:
            return None
        candidate = root / dir_name
        if candidate.is_dir():
            return candidate
    return None


def normalize_path(path: str | Path) -> str:
    """Fold ``.``/``..`` components without touching the filesystem."""
    return os.path.normpath(str(path))


def list_subdirectories(directory: str | Path) -> list[Path]:
    """Sorted non-hidden subdirectories of ``directory`` (empty if it doesn't exist)."""
    directory = Path(directory)
    if not directory.is_dir():
        return []
    return sorted(p for p in directory.iterdir() if p.is_dir() and not p.name.startswith("."))
