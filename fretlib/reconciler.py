from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, Protocol

from .fs_utils import file_exists, is_under_any
from .models import SongRecord

logger = logging.getLogger(__name__)

DEFAULT_MAX_NEW_FILES = 1000


class CatalogView(Protocol):
    def find_by_path(self, path: str) -> Optional[SongRecord]: ...

    def iter_entries(self) -> Iterable[SongRecord]: ...


@dataclass
class ScanPlan:
    """Actions computed by one reconciliation pass. Nothing here is applied yet."""

    discovered: int = 0
    new_files: List[str] = field(default_factory=list)
    to_process: List[str] = field(default_factory=list)
    restored_ids: List[int] = field(default_factory=list)
    existing_count: int = 0
    retired_excluded_ids: List[int] = field(default_factory=list)
    retired_missing_ids: List[int] = field(default_factory=list)
    excluded_discovered_count: int = 0

    @property
    def new_count(self) -> int:
        return len(self.new_files)

    @property
    def restored_count(self) -> int:
        return len(self.restored_ids)

    @property
    def processed(self) -> int:
        return len(self.to_process)

    @property
    def pending(self) -> List[str]:
        return self.new_files[len(self.to_process) :]

    @property
    def remaining_count(self) -> int:
        return self.new_count - self.processed

    @property
    def truncated(self) -> bool:
        return self.remaining_count > 0

    @property
    def removed_excluded_count(self) -> int:
        return len(self.retired_excluded_ids)

    @property
    def removed_missing_count(self) -> int:
        return len(self.retired_missing_ids)

    @property
    def retired_ids(self) -> List[int]:
        return self.retired_excluded_ids + self.retired_missing_ids

    @property
    def has_actions(self) -> bool:
        return bool(self.new_files or self.restored_ids or self.retired_ids)


class ScanReconciler:
    """Diffs a freshly discovered path set against the catalog.

    Exclusion always wins: catalog entries under an excluded path are retired
    and discovered paths under one are never added or restored. Catalog
    errors are not caught here.
    """

    def __init__(self, file_exists: Callable[[str], bool] = file_exists) -> None:
        self._file_exists = file_exists

    def reconcile(
        self,
        discovered_paths: Iterable[str | Path],
        catalog: CatalogView,
        excluded_paths: Iterable[str | Path],
        max_new_files: int = DEFAULT_MAX_NEW_FILES,
    ) -> ScanPlan:
        if max_new_files < 0:
            raise ValueError("max_new_files must not be negative")
        excluded = [str(path) for path in excluded_paths]
        plan = ScanPlan()
        retired: set[int] = set()

        for entry in catalog.iter_entries():
            if entry.id is None or not entry.file_path:
                continue
            if excluded and is_under_any(entry.file_path, excluded):
                plan.retired_excluded_ids.append(entry.id)
                retired.add(entry.id)
            elif not self._file_exists(entry.file_path):
                plan.retired_missing_ids.append(entry.id)
                retired.add(entry.id)

        seen: set[str] = set()
        for raw in discovered_paths:
            path = str(raw)
            if path in seen:
                continue
            seen.add(path)
            if excluded and is_under_any(path, excluded):
                plan.excluded_discovered_count += 1
                continue
            plan.discovered += 1
            existing = catalog.find_by_path(path)
            if existing is None or existing.id in retired:
                plan.new_files.append(path)
            elif existing.is_removed:
                plan.restored_ids.append(existing.id)
            else:
                plan.existing_count += 1

        plan.to_process = plan.new_files[:max_new_files]
        logger.debug(
            "Reconciled %d discovered path(s): %d new, %d restored, %d existing, "
            "%d retired (excluded), %d retired (missing)",
            plan.discovered,
            plan.new_count,
            plan.restored_count,
            plan.existing_count,
            plan.removed_excluded_count,
            plan.removed_missing_count,
        )
        return plan
