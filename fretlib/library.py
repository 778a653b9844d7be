from __future__ import annotations

import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence

from .catalog import SongCatalog
from .discovery import DiscoveryPlanner, DiscoveryResult
from .fs_utils import directory_exists
from .metadata import MetadataExtractor
from .models import InvalidScanRequest, ScanFailed, ScanProgress, SongRecord, utc_now
from .reconciler import DEFAULT_MAX_NEW_FILES, ScanPlan, ScanReconciler
from .scan_config import ScanConfiguration
from .session import ScanSession
from .walker import DEFAULT_MAX_DEPTH, DirectoryWalker

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ScanProgress], None]

LAST_SCAN_KEY = "last_scan"


@dataclass
class ScanRunResult:
    discovered: int = 0
    processed: int = 0
    new: int = 0
    new_found: int = 0
    existing: int = 0
    restored: int = 0
    removed_missing: int = 0
    removed_excluded: int = 0
    remaining: int = 0
    new_files: List[str] = field(default_factory=list)
    restored_ids: List[int] = field(default_factory=list)
    songs: List[SongRecord] = field(default_factory=list)
    truncated: bool = False
    locked: bool = False
    cancelled: bool = False
    message: Optional[str] = None

    @property
    def removed(self) -> int:
        return self.removed_missing + self.removed_excluded

    def summary(self) -> Dict[str, Any]:
        return {
            "discovered": self.discovered,
            "processed": self.processed,
            "new": self.new,
            "new_found": self.new_found,
            "existing": self.existing,
            "restored": self.restored,
            "removed": self.removed,
            "removed_missing": self.removed_missing,
            "removed_excluded": self.removed_excluded,
            "remaining": self.remaining,
            "truncated": self.truncated,
            "locked": self.locked,
            "cancelled": self.cancelled,
            "message": self.message,
        }

    def to_record(self) -> Dict[str, Any]:
        record = self.summary()
        record["new_files"] = list(self.new_files)
        record["restored_ids"] = list(self.restored_ids)
        record["songs"] = [song.to_record() for song in self.songs]
        return record


class LibraryScanService:
    """Discovers roots, walks them and applies reconciliation plans to the catalog.

    Discovery and processing share one ``ScanSession``, so only one of them
    runs at a time. Validation problems raise ``InvalidScanRequest`` before the
    session is taken; anything failing mid-run surfaces as ``ScanFailed``.
    """

    def __init__(
        self,
        catalog: SongCatalog,
        configuration: ScanConfiguration,
        planner: DiscoveryPlanner,
        walker: DirectoryWalker,
        extractor: MetadataExtractor,
        session: ScanSession,
        *,
        reconciler: Optional[ScanReconciler] = None,
        max_depth: int = DEFAULT_MAX_DEPTH,
        max_new_files: int = DEFAULT_MAX_NEW_FILES,
    ) -> None:
        self.catalog = catalog
        self.configuration = configuration
        self.planner = planner
        self.walker = walker
        self.extractor = extractor
        self.session = session
        self.reconciler = reconciler or ScanReconciler()
        self.max_depth = max_depth
        self.max_new_files = max_new_files
        self._attempted: list[Path] = []
        self._walked_roots: list[tuple[Path, int]] = []

    @property
    def is_running(self) -> bool:
        return self.session.is_running

    def stop(self) -> None:
        self.session.stop()

    def discover(self, progress: ProgressCallback | None = None) -> DiscoveryResult:
        locked = self.configuration.is_locked()
        if locked:
            logger.info("Configuration is locked; discovering configured directories only")
        return self.planner.discover_all(progress, configured_only=locked)

    def process(
        self,
        directories: Sequence[Any],
        progress: ProgressCallback | None = None,
    ) -> ScanRunResult:
        roots = self._validate(directories)
        with self.session.running("scan"):
            self._attempted = []
            self._walked_roots = []
            try:
                return self._process(roots, progress)
            except Exception as exc:
                diagnostics = self.diagnostics()
                logger.error("Failed to process scan: %s (%s)", exc, diagnostics)
                raise ScanFailed(f"Failed to process scan: {exc}", diagnostics) from exc

    def _process(self, roots: List[Path], progress: ProgressCallback | None) -> ScanRunResult:
        discovered = self._collect_files(roots, progress)
        if self.session.should_stop:
            logger.info("Scan cancelled after walking %d root(s)", len(self._attempted))
            return ScanRunResult(
                cancelled=True,
                locked=self.configuration.is_locked(),
                message="Scan cancelled; no changes were applied.",
            )

        plan = self.reconciler.reconcile(
            discovered,
            self.catalog,
            self.configuration.excluded_paths(),
            max_new_files=self.max_new_files,
        )
        return self._apply(plan, progress)

    def _collect_files(self, roots: List[Path], progress: ProgressCallback | None) -> List[str]:
        files: list[str] = []
        for root in roots:
            if self.session.should_stop:
                break
            if self.configuration.is_path_excluded(root):
                logger.info("Skipping excluded directory %s", root)
                continue
            self._attempted.append(root)
            try:
                walked = self.walker.walk(root, max_depth=self.max_depth, progress=progress)
            except OSError as exc:
                logger.warning("Error scanning directory %s: %s", root, exc)
                continue
            if walked.cancelled:
                break
            kept = [
                str(path)
                for path in walked.file_paths()
                if not self.configuration.is_path_excluded(path)
            ]
            if len(kept) != walked.file_count:
                logger.debug(
                    "Dropped %d excluded file(s) under %s", walked.file_count - len(kept), root
                )
            if directory_exists(root):
                self._walked_roots.append((root, len(kept)))
            files.extend(kept)
        return files

    def _apply(self, plan: ScanPlan, progress: ProgressCallback | None) -> ScanRunResult:
        records: list[SongRecord] = []
        if plan.to_process:
            records = self.extractor.extract_batch(plan.to_process, progress)

        changes = self.catalog.apply_plan(
            excluded_ids=plan.retired_excluded_ids,
            missing_ids=plan.retired_missing_ids,
            restored_ids=plan.restored_ids,
            records=records,
        )
        if changes.removed_excluded:
            logger.info("Removed %d song(s) from excluded paths", changes.removed_excluded)
        if changes.removed_missing:
            logger.info("Removed %d song(s) with missing files", changes.removed_missing)
        songs = changes.inserted
        if songs and not self.configuration.is_locked():
            self.configuration.lock()
        for root, file_count in self._walked_roots:
            self.catalog.record_scan_directory(root, file_count)

        result = ScanRunResult(
            discovered=plan.discovered,
            processed=plan.processed,
            new=len(songs),
            new_found=plan.new_count,
            existing=plan.existing_count,
            restored=changes.restored,
            removed_missing=changes.removed_missing,
            removed_excluded=changes.removed_excluded,
            remaining=plan.remaining_count,
            new_files=list(plan.new_files),
            restored_ids=list(plan.restored_ids),
            songs=songs,
            truncated=plan.truncated,
            locked=self.configuration.is_locked(),
        )
        result.message = self._message(plan)
        summary = result.summary()
        summary["completed_at"] = utc_now().isoformat()
        self.catalog.set_setting(LAST_SCAN_KEY, summary)
        logger.info(
            "Scan complete: %d discovered, %d new, %d existing, %d restored, %d removed",
            result.discovered,
            result.new,
            result.existing,
            result.restored,
            result.removed,
        )
        return result

    @staticmethod
    def _message(plan: ScanPlan) -> str:
        if plan.truncated:
            return (
                f"{plan.new_count} unprocessed files found. Processed {plan.processed} files. "
                f"Run scan again to process remaining {plan.remaining_count} files."
            )
        if plan.new_count == 0:
            return "All files have been processed."
        return f"Processed {plan.processed} new files."

    def last_scan(self) -> Optional[Dict[str, Any]]:
        return self.catalog.get_setting(LAST_SCAN_KEY)

    def exclude_path(self, path: Path | str) -> int:
        """Exclude ``path`` and drop catalog songs under it right away."""
        excluded = self.configuration.add_excluded_path(path)
        removed = self.catalog.delete_under_paths([excluded])
        logger.info("Excluded %s; removed %d song(s)", excluded, removed)
        return removed

    def drop_enabled_path(self, path: Path | str) -> int:
        """Stop scanning ``path`` and drop songs not covered by another enabled root."""
        resolved = Path(path).expanduser().resolve()
        if not self.configuration.remove_enabled_path(resolved):
            return 0
        removed = self.catalog.delete_under_paths(
            [resolved], keep_under=self.configuration.enabled_paths()
        )
        logger.info("Dropped %s; removed %d song(s)", resolved, removed)
        return removed

    def diagnostics(self) -> Dict[str, Any]:
        info: Dict[str, Any] = {
            "platform": sys.platform,
            "attempted_paths": [str(path) for path in self._attempted],
            "timestamp": utc_now().isoformat(),
        }
        try:
            info["locked"] = self.configuration.is_locked()
        except Exception as exc:
            info["locked_error"] = str(exc)
        return info

    @staticmethod
    def _validate(directories: Sequence[Any]) -> List[Path]:
        if isinstance(directories, (str, bytes, Path)) or not isinstance(
            directories, (list, tuple)
        ):
            raise InvalidScanRequest("Directories must be a list")
        roots: list[Path] = []
        for entry in directories:
            raw = entry.get("path") if isinstance(entry, dict) else getattr(entry, "path", entry)
            if raw is None or not str(raw).strip():
                raise InvalidScanRequest(f"Directory entry without a path: {entry!r}")
            root = Path(raw).expanduser().resolve()
            if root not in roots:
                roots.append(root)
        return roots
