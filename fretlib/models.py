from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum, unique
from pathlib import Path
from typing import Any, Dict, List, Optional


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@unique
class RootOrigin(str, Enum):
    CONFIGURED = "configured"
    STANDARD = "standard"
    DISCOVERED = "discovered"
    SUGGESTED = "suggested"


@dataclass(frozen=True, slots=True)
class ScanRoot:
    path: Path
    origin: RootOrigin


@dataclass(frozen=True, slots=True)
class DiscoveredFile:
    name: str
    path: Path
    size: int
    modified: datetime


@dataclass(slots=True)
class DiscoveredDirectory:
    """A directory holding at least one candidate audio file of its own."""

    path: Path
    files: List[DiscoveredFile]
    discovered_at: datetime = field(default_factory=utc_now)

    def __post_init__(self) -> None:
        if not self.files:
            raise ValueError(f"Discovered directory {self.path} has no files")

    @property
    def name(self) -> str:
        return self.path.name

    @property
    def file_count(self) -> int:
        return len(self.files)

    @property
    def total_size(self) -> int:
        return sum(item.size for item in self.files)


@dataclass(frozen=True, slots=True)
class Suggestion:
    path: Path
    reason: str
    confidence: float
    file_count: int = 0
    last_modified: Optional[datetime] = None


@dataclass(frozen=True, slots=True)
class ScanProgress:
    phase: str
    message: str
    current_path: Optional[Path] = None
    directories_found: int = 0
    files_found: int = 0
    progress: Optional[float] = None


@dataclass(slots=True)
class SongRecord:
    """A catalog row. Identity is the database id; ``file_path`` is the natural key."""

    id: Optional[int]
    file_path: Optional[str]
    title: str = ""
    artist: str = ""
    album: str = ""
    file_name: Optional[str] = None
    extracted_title: str = ""
    extracted_artist: str = ""
    metadata_source: str = "manual"
    file_size: Optional[int] = None
    duration: Optional[int] = None
    format: Optional[str] = None
    bitrate: Optional[int] = None
    sample_rate: Optional[int] = None
    added_at: Optional[str] = None
    last_scanned: Optional[str] = None
    is_removed: bool = False

    def to_record(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "file_path": self.file_path,
            "file_name": self.file_name,
            "title": self.title,
            "artist": self.artist,
            "album": self.album,
            "extracted_title": self.extracted_title,
            "extracted_artist": self.extracted_artist,
            "metadata_source": self.metadata_source,
            "file_size": self.file_size,
            "duration": self.duration,
            "format": self.format,
            "bitrate": self.bitrate,
            "sample_rate": self.sample_rate,
            "added_at": self.added_at,
            "last_scanned": self.last_scanned,
            "is_removed": self.is_removed,
        }


class FretlibError(Exception):
    """Base class for errors surfaced to callers."""


class ScannerBusy(FretlibError):
    """Raised when a scan or discovery run is already in flight."""


class InvalidScanRequest(FretlibError):
    """Raised for malformed directory payloads or configuration changes."""


class RunFailed(FretlibError):
    """A whole run failed; ``diagnostics`` carries triage context."""

    def __init__(self, message: str, diagnostics: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.diagnostics: Dict[str, Any] = dict(diagnostics or {})


class DiscoveryError(RunFailed):
    pass


class ScanFailed(RunFailed):
    pass
