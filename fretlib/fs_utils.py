from __future__ import annotations

import errno
import os
from pathlib import Path
from typing import Iterable, Optional


def path_exists(path: Path | str) -> Optional[bool]:
    """Return True/False for existence, None when the parent itself is gone.

    Names too long for ``stat`` are looked up by listing the parent instead.
    """
    path = Path(path)
    try:
        path.stat()
        return True
    except FileNotFoundError:
        return False
    except OSError as exc:
        if exc.errno != errno.ENAMETOOLONG:
            raise
        parent = path.parent
        try:
            with os.scandir(parent) as it:
                for entry in it:
                    if entry.name == path.name:
                        return True
        except FileNotFoundError:
            return None
        return False


def file_exists(path: Path | str) -> bool:
    try:
        return bool(path_exists(path))
    except OSError:
        return False


def directory_exists(path: Path | str) -> bool:
    try:
        return Path(path).is_dir()
    except OSError:
        return False


def is_readable(path: Path | str) -> bool:
    return os.access(path, os.R_OK)


def normalize(path: Path | str) -> str:
    return os.path.normcase(os.path.normpath(str(path)))


def is_under(path: Path | str, prefix: Path | str) -> bool:
    """True when ``path`` equals ``prefix`` or lies below it, by whole components."""
    target = normalize(path)
    base = normalize(prefix)
    if target == base:
        return True
    if not base.endswith(os.sep):
        base = base + os.sep
    return target.startswith(base)


def is_under_any(path: Path | str, prefixes: Iterable[Path | str]) -> bool:
    return any(is_under(path, prefix) for prefix in prefixes)
