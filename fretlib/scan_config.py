from __future__ import annotations

import logging
from collections.abc import Iterable
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError

from .config import LibrarySettings, Settings
from .fs_utils import directory_exists, is_under_any
from .models import InvalidScanRequest

logger = logging.getLogger(__name__)

LOCKED_KEY = "locked"


class ScanConfiguration:
    """Enabled, custom and excluded roots plus the persisted lock flag.

    Path lists live in ``Settings.library``; the lock flag lives in the
    catalog settings table so it survives config rewrites.
    """

    def __init__(self, settings: Settings, catalog, config_path: Optional[Path] = None) -> None:
        self.settings = settings
        self.catalog = catalog
        self.config_path = config_path

    @property
    def library(self) -> LibrarySettings:
        return self.settings.library

    def enabled_paths(self) -> List[Path]:
        paths: list[Path] = []
        for path in [*self.library.enabled_paths, *self.library.custom_paths]:
            if path not in paths:
                paths.append(path)
        return paths

    def excluded_paths(self) -> List[Path]:
        return list(self.library.excluded_paths)

    def scan_directories(self) -> List[Path]:
        excluded = set(self.library.excluded_paths)
        return [
            path
            for path in self.enabled_paths()
            if path not in excluded and directory_exists(path)
        ]

    def is_path_excluded(self, path: Path | str) -> bool:
        excluded = self.library.excluded_paths
        return bool(excluded) and is_under_any(path, excluded)

    def is_locked(self) -> bool:
        return bool(self.catalog.get_setting(LOCKED_KEY, False))

    def lock(self) -> None:
        if not self.is_locked():
            logger.info("Locking scan configuration")
        self.catalog.set_setting(LOCKED_KEY, True)

    def unlock(self) -> None:
        logger.info("Unlocking scan configuration")
        self.catalog.set_setting(LOCKED_KEY, False)

    def add_enabled_path(self, path: Path | str) -> Path:
        resolved = self._resolve(path)
        if resolved in self.library.excluded_paths:
            raise InvalidScanRequest(f"{resolved} is excluded; remove the exclusion first")
        if resolved not in self.library.enabled_paths:
            self.library.enabled_paths.append(resolved)
        self.save()
        return resolved

    def remove_enabled_path(self, path: Path | str) -> bool:
        resolved = self._resolve(path)
        removed = False
        for bucket in (self.library.enabled_paths, self.library.custom_paths):
            if resolved in bucket:
                bucket.remove(resolved)
                removed = True
        if removed:
            self.save()
        return removed

    def add_excluded_path(self, path: Path | str) -> Path:
        resolved = self._resolve(path)
        if resolved not in self.library.excluded_paths:
            self.library.excluded_paths.append(resolved)
            self.save()
        return resolved

    def remove_excluded_path(self, path: Path | str) -> bool:
        resolved = self._resolve(path)
        if resolved not in self.library.excluded_paths:
            return False
        self.library.excluded_paths.remove(resolved)
        self.save()
        return True

    def set_paths(
        self,
        enabled: Iterable[Path | str] = (),
        custom: Iterable[Path | str] = (),
        excluded: Iterable[Path | str] = (),
    ) -> None:
        payload = {
            "enabled_paths": self._path_list("enabled", enabled),
            "custom_paths": self._path_list("custom", custom),
            "excluded_paths": self._path_list("excluded", excluded),
            "supported_formats": self.library.supported_formats,
        }
        try:
            library = LibrarySettings.model_validate(payload)
        except ValidationError as exc:
            raise InvalidScanRequest(f"Invalid scan paths: {exc}") from exc
        self.settings.library = library
        self.save()

    def save(self) -> None:
        if self.config_path is None:
            return
        self.settings.save(self.config_path)
        logger.debug("Saved scan configuration to %s", self.config_path)

    @staticmethod
    def _resolve(path: Path | str) -> Path:
        if path is None or not str(path).strip():
            raise InvalidScanRequest("Path must not be empty")
        return Path(path).expanduser().resolve()

    @staticmethod
    def _path_list(label: str, values: Iterable[Path | str]) -> List[str]:
        if isinstance(values, (str, bytes)) or not isinstance(values, Iterable):
            raise InvalidScanRequest(f"{label} paths must be a list")
        entries = list(values)
        if any(value is None or not str(value).strip() for value in entries):
            raise InvalidScanRequest(f"{label} paths contain an empty entry")
        return [str(value) for value in entries]
