from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import Callable, Iterable, List, Optional

from mutagen import File as MutagenFile

from .classifier import PathClassifier
from .models import ScanProgress, SongRecord, utc_now

logger = logging.getLogger(__name__)

TRACK_PREFIX = re.compile(r"^\d+[\s\-_.]*")
ARTIST_DASH_TITLE = re.compile(r"^(?P<artist>.+?)\s*[-–]\s*(?P<title>.+)$")
TITLE_BY_ARTIST = re.compile(r"^(?P<title>.+?)\s+by\s+(?P<artist>.+)$", re.IGNORECASE)
ARTIST_UNDERSCORE_TITLE = re.compile(r"^(?P<artist>.+?)_(?P<title>.+)$")
ARTIST_COMMA_TITLE = re.compile(r"^(?P<artist>.+?),\s*(?P<title>.+)$")
FILENAME_PATTERNS = (
    ARTIST_DASH_TITLE,
    TITLE_BY_ARTIST,
    ARTIST_UNDERSCORE_TITLE,
    ARTIST_COMMA_TITLE,
)
LEADING_ARTICLE = re.compile(r"^the\s+", re.IGNORECASE)


def parse_filename(file_name: str) -> tuple[str, str]:
    """Best-effort ``(artist, title)`` guess from a bare file name."""
    stem = os.path.splitext(file_name)[0]
    name = TRACK_PREFIX.sub("", stem)
    artist = ""
    title = ""
    for pattern in FILENAME_PATTERNS:
        match = pattern.match(name)
        if match:
            artist = match.group("artist").strip()
            title = match.group("title").strip()
            break
    if not title:
        title = name
    return clean_string(artist), clean_string(title)


def clean_string(value: Optional[str]) -> str:
    if not value:
        return ""
    cleaned = re.sub(r"_+", " ", value.strip())
    cleaned = re.sub(r"\s+", " ", cleaned)
    cleaned = LEADING_ARTICLE.sub("", cleaned)
    return cleaned.strip()


class MetadataExtractor:
    """Reads tags and stream info with mutagen, falling back to the file name.

    ``extract`` never raises for a single file; anything mutagen cannot read
    yields a record with ``metadata_source == "fallback"``.
    """

    def __init__(self, classifier: Optional[PathClassifier] = None) -> None:
        self.classifier = classifier or PathClassifier()

    def extract(self, path: Path | str) -> SongRecord:
        file_path = Path(path)
        if not self.classifier.is_candidate_file(file_path.name):
            logger.warning("Unsupported format %s for %s", file_path.suffix, file_path)
            return self.fallback(file_path)
        try:
            audio = MutagenFile(file_path, easy=True)
            size = file_path.stat().st_size
        except Exception as exc:  # mutagen raises format-specific errors
            logger.warning("Failed to extract metadata from %s: %s", file_path, exc)
            return self.fallback(file_path)
        if audio is None:
            logger.debug("No recognised audio stream in %s", file_path)
            return self.fallback(file_path)

        tags = audio.tags or {}
        title = _first_tag(tags, "title")
        artist = _first_tag(tags, "artist")
        album = _first_tag(tags, "album")
        source = "tags"
        if not title or not artist:
            guessed_artist, guessed_title = parse_filename(file_path.name)
            title = title or guessed_title
            artist = artist or guessed_artist
            source = "filename" if (title or artist) else "fallback"

        info = getattr(audio, "info", None)
        length = getattr(info, "length", None)
        now = utc_now().isoformat()
        return SongRecord(
            id=None,
            file_path=str(file_path),
            file_name=file_path.name,
            title=title or file_path.stem,
            artist=artist,
            album=album,
            extracted_title=title,
            extracted_artist=artist,
            metadata_source=source,
            file_size=size,
            duration=round(length) if length else None,
            format=_format_name(file_path),
            bitrate=getattr(info, "bitrate", None) or None,
            sample_rate=getattr(info, "sample_rate", None) or None,
            added_at=now,
            last_scanned=now,
        )

    def fallback(self, path: Path | str) -> SongRecord:
        file_path = Path(path)
        try:
            size = file_path.stat().st_size
        except OSError:
            size = 0
        artist, title = parse_filename(file_path.name)
        now = utc_now().isoformat()
        return SongRecord(
            id=None,
            file_path=str(file_path),
            file_name=file_path.name,
            title=title or file_path.stem,
            artist=artist,
            album="",
            extracted_title=title,
            extracted_artist=artist,
            metadata_source="fallback",
            file_size=size,
            format=_format_name(file_path),
            added_at=now,
            last_scanned=now,
        )

    def extract_batch(
        self,
        paths: Iterable[Path | str],
        progress: Callable[[ScanProgress], None] | None = None,
    ) -> List[SongRecord]:
        items = list(paths)
        total = len(items)
        results: List[SongRecord] = []
        for index, path in enumerate(items, start=1):
            results.append(self.extract(path))
            if progress:
                progress(
                    ScanProgress(
                        phase="metadata",
                        message=f"Extracting metadata {index}/{total}",
                        current_path=Path(path),
                        files_found=index,
                        progress=round(index / total * 100),
                    )
                )
        return results


def _first_tag(tags, key: str) -> str:
    values = tags.get(key) if hasattr(tags, "get") else None
    if not values:
        return ""
    value = values[0] if isinstance(values, list) else values
    return str(value).strip()


def _format_name(path: Path) -> str:
    return path.suffix.lower().lstrip(".")
