"""Filesystem helpers for Kiln.

Key functions:
    ensure_clean_dir: Ensure a directory exists and is empty.
    mirror_path: Map a path in the source tree to the output tree.
    copy_file: Copy one file, creating parent directories.
    copy_tree: Recursively copy a directory, overwriting existing files.
    is_within: Check whether a path lies inside another.
"""

from __future__ import annotations

import shutil
from pathlib import Path


def ensure_clean_dir(path: Path) -> None:
    """Ensure a directory exists and is empty.

    Args:
        path: Directory path to clean or create.

    Raises:
        OSError: If the old tree cannot be removed.
    """
    if path.exists():
        shutil.rmtree(path)
    path.mkdir(parents=True, exist_ok=True)


def mirror_path(path: Path, source_dir: Path, output_dir: Path) -> Path:
    """Map a file under ``source_dir`` to the same relative place in ``output_dir``.

    Examples:
        >>> mirror_path(Path("src/styles/a/b.css"), Path("src"), Path("dist"))
        PosixPath('dist/styles/a/b.css')
    """
    return output_dir / path.relative_to(source_dir)


def copy_file(source: Path, dest: Path) -> None:
    dest.parent.mkdir(parents=True, exist_ok=True)
    shutil.copy2(source, dest)


def copy_tree(source: Path, dest: Path) -> None:
    """Recursively copy ``source`` into ``dest``, overwriting existing files."""
    shutil.copytree(source, dest, dirs_exist_ok=True)


def is_within(path: Path, parent: Path) -> bool:
    """Check if ``path`` is ``parent`` or lies below it."""
    try:
        path.relative_to(parent)
    except ValueError:
        return False
    return True
