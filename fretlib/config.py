from __future__ import annotations

from pathlib import Path
from typing import List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

DEFAULT_FORMATS = [".mp3", ".m4a", ".wav", ".flac", ".ogg", ".wma"]

DEFAULT_MUSIC_KEYWORDS = [
    "music",
    "audio",
    "songs",
    "mp3",
    "media",
    "sound",
    "itunes",
    "spotify",
    "amazon music",
    "apple music",
    "my music",
    "collection",
]

DEFAULT_EMPTY_DIRECTORY_NAMES = ["Music", "Audio", "Songs", "MP3", "Media"]


def _expand(value: str | Path) -> Path:
    return Path(value).expanduser().resolve()


class LibrarySettings(BaseModel):
    enabled_paths: List[Path] = Field(default_factory=list)
    custom_paths: List[Path] = Field(default_factory=list)
    excluded_paths: List[Path] = Field(default_factory=list)
    supported_formats: List[str] = Field(default_factory=lambda: list(DEFAULT_FORMATS))

    @field_validator("enabled_paths", "custom_paths", "excluded_paths", mode="before")
    @classmethod
    def _expand_paths(cls, values: Optional[List[str]]) -> List[Path]:
        return [_expand(v) for v in values or []]

    @field_validator("supported_formats", mode="before")
    @classmethod
    def _normalize_formats(cls, values: Optional[List[str]]) -> List[str]:
        if not values:
            return list(DEFAULT_FORMATS)
        normalized = []
        for value in values:
            ext = str(value).strip().lower()
            if not ext:
                continue
            if not ext.startswith("."):
                ext = f".{ext}"
            normalized.append(ext)
        return normalized


class ScanningSettings(BaseModel):
    max_depth: int = Field(default=10, ge=0)
    max_new_files: int = Field(default=1000, ge=1)


class DiscoverySettings(BaseModel):
    music_keywords: List[str] = Field(default_factory=lambda: list(DEFAULT_MUSIC_KEYWORDS))
    empty_directory_names: List[str] = Field(
        default_factory=lambda: list(DEFAULT_EMPTY_DIRECTORY_NAMES)
    )
    analysis_depth: int = Field(default=3, ge=0)
    suggestion_limit: int = Field(default=10, ge=0)
    include_system_locations: bool = True
    extra_locations: List[Path] = Field(default_factory=list)

    @field_validator("extra_locations", mode="before")
    @classmethod
    def _expand_locations(cls, values: Optional[List[str]]) -> List[Path]:
        return [_expand(v) for v in values or []]


class CatalogSettings(BaseModel):
    path: Path = Field(default=Path("./data/library.sqlite3"), validate_default=True)

    @field_validator("path", mode="before")
    @classmethod
    def _expand_path(cls, value: str | Path) -> Path:
        return _expand(value)


class Settings(BaseModel):
    library: LibrarySettings = Field(default_factory=LibrarySettings)
    scanning: ScanningSettings = Field(default_factory=ScanningSettings)
    discovery: DiscoverySettings = Field(default_factory=DiscoverySettings)
    catalog: CatalogSettings = Field(default_factory=CatalogSettings)

    @classmethod
    def load(cls, path: Path) -> "Settings":
        with path.open("r", encoding="utf-8") as fh:
            raw = yaml.safe_load(fh)
        return cls.model_validate(raw or {})

    def save(self, path: Path) -> None:
        payload = self.model_dump(mode="json")
        with path.open("w", encoding="utf-8") as fh:
            yaml.safe_dump(payload, fh, sort_keys=False)


def find_config(explicit_path: Optional[Path]) -> Path:
    if explicit_path:
        return explicit_path
    cwd = Path.cwd()
    for candidate in (cwd / "config.yaml", cwd / "config.yml"):
        if candidate.exists():
            return candidate
    raise FileNotFoundError("Could not find config.yaml – pass --config explicitly.")
