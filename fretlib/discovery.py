from __future__ import annotations

import getpass
import logging
import os
import sys
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional

from .classifier import PathClassifier
from .config import DiscoverySettings
from .fs_utils import directory_exists, is_readable
from .models import (
    DiscoveredDirectory,
    DiscoveryError,
    RootOrigin,
    ScanProgress,
    ScanRoot,
    Suggestion,
    utc_now,
)
from .scan_config import ScanConfiguration
from .session import ScanSession
from .walker import DEFAULT_MAX_DEPTH, DirectoryWalker

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ScanProgress], None]

RECENT_CONFIDENCE = 0.8
EMPTY_NAME_CONFIDENCE = 0.6


@dataclass
class DiscoveryResult:
    standard_directories: List[DiscoveredDirectory] = field(default_factory=list)
    discovered_directories: List[DiscoveredDirectory] = field(default_factory=list)
    suggested_directories: List[Suggestion] = field(default_factory=list)
    total_files: int = 0
    summary: Dict[str, Any] = field(default_factory=dict)
    standard_origin: RootOrigin = RootOrigin.STANDARD

    def roots(self) -> List[ScanRoot]:
        roots = [ScanRoot(d.path, self.standard_origin) for d in self.standard_directories]
        roots.extend(ScanRoot(d.path, RootOrigin.DISCOVERED) for d in self.discovered_directories)
        roots.extend(ScanRoot(s.path, RootOrigin.SUGGESTED) for s in self.suggested_directories)
        return roots


class DiscoveryPlanner:
    """Finds directories worth scanning: configured or standard roots,
    keyword-driven heuristic candidates, and suggestions for the user.

    One discovery runs at a time per session; a concurrent call raises
    ``ScannerBusy``. Failures surface as ``DiscoveryError`` with diagnostics.
    """

    def __init__(
        self,
        settings: DiscoverySettings,
        classifier: PathClassifier,
        session: ScanSession,
        configuration: Optional[ScanConfiguration] = None,
        *,
        max_depth: int = DEFAULT_MAX_DEPTH,
        home: Optional[Path] = None,
        platform: Optional[str] = None,
    ) -> None:
        self.settings = settings
        self.classifier = classifier
        self.session = session
        self.configuration = configuration
        self.max_depth = max_depth
        self.home = Path(home) if home else Path.home()
        self.platform = platform or sys.platform
        self.walker = DirectoryWalker(classifier, stop_event=session.stop_event)
        self._keywords = [k.lower() for k in settings.music_keywords if k]
        self._attempted: list[Path] = []

    @property
    def should_stop(self) -> bool:
        return self.session.should_stop

    def stop(self) -> None:
        self.session.stop()

    def discover_all(
        self,
        progress: ProgressCallback | None = None,
        *,
        configured_only: bool = False,
    ) -> DiscoveryResult:
        """Run the discovery phases; ``configured_only`` skips the heuristic and suggestion phases."""
        with self.session.running("discovery"):
            self._attempted = []
            try:
                return self._discover_all(progress, configured_only)
            except Exception as exc:
                diagnostics = self.diagnostics()
                logger.error("Music directory discovery failed: %s (%s)", exc, diagnostics)
                raise DiscoveryError(
                    f"Music directory discovery failed: {exc}. "
                    f"Platform: {self.platform}, Home: {self.home}",
                    diagnostics,
                ) from exc

    def _discover_all(
        self, progress: ProgressCallback | None, configured_only: bool
    ) -> DiscoveryResult:
        result = DiscoveryResult()
        self._emit(progress, "initializing", "Initializing directory discovery...", 0)

        if configured_only:
            standard_paths = self.configuration.scan_directories() if self.configuration else []
            result.standard_origin = RootOrigin.CONFIGURED
        else:
            standard_paths, result.standard_origin = self._standard_paths()
        logger.debug("Standard paths: %s", standard_paths)
        self._emit(progress, "standard", "Scanning standard music directories...", 10)
        result.standard_directories = self.discover_directories(
            standard_paths, progress, phase="standard"
        )
        seen = {d.path for d in result.standard_directories}

        if not configured_only:
            self._emit(progress, "discovery", "Discovering additional music directories...", 50)
            candidates = self.intelligent_directory_discovery(progress)
            discovered = self.discover_directories(candidates, progress, phase="discovery")
            result.discovered_directories = [d for d in discovered if d.path not in seen]

            self._emit(progress, "suggestions", "Generating directory suggestions...", 90)
            result.suggested_directories = self.generate_suggestions()

        result.total_files = sum(
            d.file_count
            for d in result.standard_directories + result.discovered_directories
        )
        result.summary = {
            "standard_dirs_found": len(result.standard_directories),
            "discovered_dirs_found": len(result.discovered_directories),
            "suggested_dirs_count": len(result.suggested_directories),
            "total_music_files": result.total_files,
            "cancelled": self.should_stop,
            "configured_only": configured_only,
            "scan_completed_at": utc_now().isoformat(),
        }
        directory_total = len(result.standard_directories) + len(result.discovered_directories)
        self._emit(
            progress,
            "complete",
            f"Discovery complete: Found {result.total_files} music files in {directory_total} directories",
            100,
        )
        return result

    def _standard_paths(self) -> tuple[list[Path], RootOrigin]:
        if self.configuration is not None:
            try:
                configured = self.configuration.scan_directories()
            except Exception as exc:
                logger.warning("Falling back to standard directories: %s", exc)
                configured = []
            if configured:
                return configured, RootOrigin.CONFIGURED
        return self.standard_music_directories(), RootOrigin.STANDARD

    def discover_directories(
        self,
        search_paths: Iterable[Path],
        progress: ProgressCallback | None = None,
        *,
        phase: str = "scanning",
    ) -> List[DiscoveredDirectory]:
        found: dict[Path, DiscoveredDirectory] = {}
        total = 0
        for search_path in search_paths:
            if self.should_stop:
                break
            self._attempted.append(Path(search_path))
            self._emit(
                progress,
                phase,
                f"Scanning: {search_path}",
                None,
                current_path=Path(search_path),
                directories_found=len(found),
                files_found=total,
            )
            walked = self.walker.walk(search_path, max_depth=self.max_depth)
            for directory in walked.directories:
                if directory.path not in found:
                    total += directory.file_count
                found[directory.path] = directory
        return list(found.values())

    def standard_music_directories(self) -> List[Path]:
        home = self.home
        dirs = [home / "Music", home / "Downloads", home / "Documents", home / "Desktop"]
        if self.platform == "win32":
            dirs.extend([Path("C:\\Music"), Path("D:\\Music"), Path("C:\\Users\\Public\\Music")])
        elif self.platform == "darwin":
            dirs.append(Path("/Users/Shared/Music"))
        else:
            dirs.extend([Path("/home/music"), Path("/usr/share/music")])
        return [d for d in dirs if directory_exists(d)]

    def available_drives(self) -> List[Path]:
        if self.platform != "win32":
            return []
        drives = []
        for letter in "ABCDEFGHIJKLMNOPQRSTUVWXYZ":
            drive = Path(f"{letter}:\\")
            if directory_exists(drive):
                drives.append(drive)
        return drives

    def intelligent_search_locations(self) -> List[Path]:
        home = self.home
        locations = [home, home / "Desktop"]
        if self.platform == "win32":
            locations.extend([home / "OneDrive", home / "Google Drive", home / "Dropbox"])
            if self.settings.include_system_locations:
                locations.extend([Path("C:\\"), Path("D:\\"), Path("E:\\")])
                locations.extend(d for d in self.available_drives() if str(d) != "C:\\")
        elif self.platform == "darwin":
            locations.extend([home / "iCloud Drive", home / "Google Drive", home / "Dropbox"])
            if self.settings.include_system_locations:
                locations.extend([Path("/Users"), Path("/Volumes")])
        else:
            if self.settings.include_system_locations:
                locations.extend([Path("/home"), Path("/mnt"), Path("/media")])
        locations.extend(self.settings.extra_locations)
        unique: list[Path] = []
        for location in locations:
            if location not in unique and directory_exists(location):
                unique.append(location)
        return unique

    def intelligent_directory_discovery(
        self, progress: ProgressCallback | None = None
    ) -> List[Path]:
        discovered: list[Path] = []
        locations = self.intelligent_search_locations()
        for index, location in enumerate(locations):
            if self.should_stop:
                break
            self._attempted.append(location)
            self._emit(
                progress,
                "discovery",
                f"Analyzing: {location}",
                50 + (index / len(locations)) * 30,
                current_path=location,
            )
            for directory in self.analyze_location(location):
                if directory not in discovered:
                    discovered.append(directory)
        return discovered

    def matches_keyword(self, name: str) -> bool:
        lowered = name.lower()
        return any(keyword in lowered for keyword in self._keywords)

    def analyze_location(self, location: Path, max_depth: Optional[int] = None) -> List[Path]:
        """Shallow keyword-guided search for directories holding candidate files.

        Non-matching subdirectories are only entered while depth < 2.
        """
        limit = self.settings.analysis_depth if max_depth is None else max_depth
        music_dirs: list[Path] = []
        stack: list[tuple[Path, int]] = [(Path(location), 0)]
        while stack:
            if self.should_stop:
                break
            current, depth = stack.pop()
            if depth > limit:
                continue
            try:
                with os.scandir(current) as it:
                    entries = list(it)
            except OSError as exc:
                logger.debug("Skipping unreadable location %s: %s", current, exc)
                continue
            music_count = 0
            subdirs: list[os.DirEntry] = []
            for entry in entries:
                if self.should_stop:
                    break
                try:
                    if entry.is_file() and self.classifier.is_candidate_file(entry.name):
                        music_count += 1
                    elif entry.is_dir() and not self.classifier.is_noise_directory(entry.name):
                        subdirs.append(entry)
                except OSError:
                    continue
            if music_count:
                music_dirs.append(current)
            for entry in reversed(subdirs):
                if self.matches_keyword(entry.name) or depth < 2:
                    stack.append((Path(entry.path), depth + 1))
        return music_dirs

    def generate_suggestions(self) -> List[Suggestion]:
        suggestions = [
            Suggestion(
                path=path,
                reason="Recently accessed directory with music files",
                confidence=RECENT_CONFIDENCE,
                file_count=count,
                last_modified=modified,
            )
            for path, count, modified in self.find_recent_music_directories()
        ]
        suggestions.extend(
            Suggestion(
                path=path,
                reason="Directory with music-related name",
                confidence=EMPTY_NAME_CONFIDENCE,
            )
            for path in self.find_empty_music_directories()
        )
        return suggestions[: self.settings.suggestion_limit]

    def find_recent_music_directories(self) -> List[tuple[Path, int, datetime]]:
        found = []
        for directory in (self.home / "Downloads", self.home / "Desktop", self.home / "Documents"):
            if not directory_exists(directory):
                continue
            try:
                with os.scandir(directory) as it:
                    count = sum(
                        1
                        for entry in it
                        if self._is_candidate_entry(entry)
                    )
                if count:
                    modified = datetime.fromtimestamp(directory.stat().st_mtime, tz=timezone.utc)
                    found.append((directory, count, modified))
            except OSError as exc:
                logger.debug("Skipping recent directory %s: %s", directory, exc)
        return found

    def _is_candidate_entry(self, entry: os.DirEntry) -> bool:
        try:
            return entry.is_file() and self.classifier.is_candidate_file(entry.name)
        except OSError:
            return False

    def find_empty_music_directories(self) -> List[Path]:
        names = set(self.settings.empty_directory_names)
        empty = []
        try:
            with os.scandir(self.home) as it:
                entries = [entry for entry in it if entry.name in names]
        except OSError as exc:
            logger.debug("Cannot list home directory %s: %s", self.home, exc)
            return empty
        for entry in entries:
            try:
                if not entry.is_dir():
                    continue
                with os.scandir(entry.path) as inner:
                    if next(inner, None) is None:
                        empty.append(Path(entry.path))
            except OSError:
                continue
        return empty

    def check_permissions(self) -> Dict[str, Any]:
        home = self.home
        music = home / "Music"
        report: Dict[str, Any] = {
            "home_dir": str(home),
            "home_dir_accessible": is_readable(home),
            "music_dir_accessible": is_readable(music),
            "platform": self.platform,
        }
        try:
            report["user"] = getpass.getuser()
        except (KeyError, OSError) as exc:
            report["user_error"] = str(exc)
        report["standard_dirs"] = [
            {"path": str(path), "exists": directory_exists(path), "accessible": is_readable(path)}
            for path in self.standard_music_directories()
        ]
        return report

    def diagnostics(self) -> Dict[str, Any]:
        info: Dict[str, Any] = {
            "platform": self.platform,
            "home_directory": str(self.home),
            "attempted_paths": [str(path) for path in self._attempted],
            "timestamp": utc_now().isoformat(),
        }
        if self.configuration is not None:
            try:
                info["locked"] = self.configuration.is_locked()
            except Exception as exc:
                info["locked_error"] = str(exc)
        try:
            info["permissions"] = self.check_permissions()
        except OSError as exc:
            info["permissions_error"] = str(exc)
        return info

    @staticmethod
    def _emit(
        progress: ProgressCallback | None,
        phase: str,
        message: str,
        percent: Optional[float],
        *,
        current_path: Optional[Path] = None,
        directories_found: int = 0,
        files_found: int = 0,
    ) -> None:
        if not progress:
            return
        progress(
            ScanProgress(
                phase=phase,
                message=message,
                current_path=current_path,
                directories_found=directories_found,
                files_found=files_found,
                progress=percent,
            )
        )
