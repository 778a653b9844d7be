from __future__ import annotations

import os
from collections.abc import Iterable

from .config import DEFAULT_FORMATS

NOISE_DIRECTORIES = (
    "System Volume Information",
    "$RECYCLE.BIN",
    "Windows",
    "Program Files",
    "Program Files (x86)",
    "ProgramData",
    "Recovery",
    "System32",
    "node_modules",
    ".git",
    ".vs",
    "Temp",
    "tmp",
)


class PathClassifier:
    """Decides which entries the walker collects and which directories it skips.

    Noise matching is a case-insensitive substring test, so "My node_modules
    Archive" is skipped as well. Files are judged by extension only.
    """

    def __init__(
        self,
        supported_formats: Iterable[str] | None = None,
        noise_directories: Iterable[str] | None = None,
    ) -> None:
        formats = supported_formats if supported_formats is not None else DEFAULT_FORMATS
        self._exts = {self._normalize_ext(ext) for ext in formats if ext}
        names = noise_directories if noise_directories is not None else NOISE_DIRECTORIES
        self._noise = tuple(name.lower() for name in names if name)

    @property
    def supported_formats(self) -> frozenset[str]:
        return frozenset(self._exts)

    def is_candidate_file(self, name: str) -> bool:
        _, ext = os.path.splitext(name)
        return ext.lower() in self._exts

    def is_noise_directory(self, name: str) -> bool:
        lowered = name.lower()
        return any(noise in lowered for noise in self._noise)

    @staticmethod
    def _normalize_ext(ext: str) -> str:
        ext = ext.strip().lower()
        return ext if ext.startswith(".") else f".{ext}"
