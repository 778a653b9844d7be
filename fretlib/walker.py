from __future__ import annotations

import logging
import os
import stat
from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from threading import Event
from typing import Callable, List, Optional, Union

from .classifier import PathClassifier
from .models import DiscoveredDirectory, DiscoveredFile, ScanProgress

logger = logging.getLogger(__name__)

DEFAULT_MAX_DEPTH = 10


@dataclass(frozen=True, slots=True)
class DirectoryVisited:
    path: Path
    depth: int


@dataclass(frozen=True, slots=True)
class DirectoryDiscovered:
    directory: DiscoveredDirectory
    files_found: int
    directories_found: int


WalkEvent = Union[DirectoryVisited, DirectoryDiscovered]


@dataclass
class WalkResult:
    directories: List[DiscoveredDirectory] = field(default_factory=list)
    file_count: int = 0
    cancelled: bool = False

    def file_paths(self) -> List[Path]:
        return [item.path for directory in self.directories for item in directory.files]


class DirectoryWalker:
    """Depth-first, depth-bounded, cancellable walk collecting music directories."""

    def __init__(
        self,
        classifier: PathClassifier,
        stop_event: Optional[Event] = None,
    ) -> None:
        self.classifier = classifier
        self.stop_event = stop_event or Event()

    @property
    def should_stop(self) -> bool:
        return self.stop_event.is_set()

    def walk(
        self,
        root: Path | str,
        max_depth: int = DEFAULT_MAX_DEPTH,
        progress: Callable[[ScanProgress], None] | None = None,
    ) -> WalkResult:
        result = WalkResult()
        for event in self.iter_events(root, max_depth=max_depth):
            if isinstance(event, DirectoryDiscovered):
                result.directories.append(event.directory)
                result.file_count = event.files_found
                if progress:
                    progress(
                        ScanProgress(
                            phase="scanning",
                            message=f"Scanning: {event.directory.path}",
                            current_path=event.directory.path,
                            directories_found=event.directories_found,
                            files_found=event.files_found,
                        )
                    )
            elif progress:
                progress(
                    ScanProgress(
                        phase="visiting",
                        message=f"Visiting: {event.path}",
                        current_path=event.path,
                        directories_found=len(result.directories),
                        files_found=result.file_count,
                    )
                )
        result.cancelled = self.should_stop
        return result

    def iter_events(
        self, root: Path | str, max_depth: int = DEFAULT_MAX_DEPTH
    ) -> Iterator[WalkEvent]:
        """Yield a visit event per directory and a discovery event per music directory.

        Subdirectories are pushed unconditionally; the depth bound is applied
        when a directory is taken off the stack.
        """
        stack: list[tuple[Path, int]] = [(Path(root), 0)]
        seen: set[tuple[int, int]] = set()
        files_found = 0
        directories_found = 0
        while stack:
            if self.should_stop:
                return
            current, depth = stack.pop()
            if depth > max_depth:
                continue
            identity = self._identity(current)
            if identity is not None:
                if identity in seen:
                    logger.debug("Skipping already visited directory %s", current)
                    continue
                seen.add(identity)
            yield DirectoryVisited(path=current, depth=depth)
            listing = self._scan_directory(current)
            if listing is None:
                continue
            music_files, subdirectories = listing
            if music_files:
                files_found += len(music_files)
                directories_found += 1
                yield DirectoryDiscovered(
                    directory=DiscoveredDirectory(path=current, files=music_files),
                    files_found=files_found,
                    directories_found=directories_found,
                )
            for subdirectory in reversed(subdirectories):
                stack.append((subdirectory, depth + 1))

    @staticmethod
    def _identity(directory: Path) -> Optional[tuple[int, int]]:
        try:
            info = os.stat(directory)
        except OSError:
            return None
        return info.st_dev, info.st_ino

    def _scan_directory(
        self, directory: Path
    ) -> Optional[tuple[list[DiscoveredFile], list[Path]]]:
        music_files: list[DiscoveredFile] = []
        subdirectories: list[Path] = []
        try:
            with os.scandir(directory) as it:
                entries = list(it)
        except OSError as exc:
            logger.warning("Cannot access directory %s: %s", directory, exc)
            return None
        for entry in entries:
            if self.should_stop:
                break
            try:
                info = entry.stat()
            except OSError as exc:
                logger.debug("Skipping unreadable entry %s: %s", entry.path, exc)
                continue
            if stat.S_ISREG(info.st_mode):
                if self.classifier.is_candidate_file(entry.name):
                    music_files.append(
                        DiscoveredFile(
                            name=entry.name,
                            path=Path(entry.path),
                            size=info.st_size,
                            modified=datetime.fromtimestamp(info.st_mtime, tz=timezone.utc),
                        )
                    )
            elif stat.S_ISDIR(info.st_mode):
                if not self.classifier.is_noise_directory(entry.name):
                    subdirectories.append(Path(entry.path))
        return music_files, subdirectories
