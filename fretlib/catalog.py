from __future__ import annotations

import json
import sqlite3
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from threading import Lock
from typing import Any, Optional

from .fs_utils import is_under_any
from .models import SongRecord

SONG_COLUMNS = (
    "file_path",
    "file_name",
    "title",
    "artist",
    "album",
    "extracted_title",
    "extracted_artist",
    "metadata_source",
    "file_size",
    "duration",
    "format",
    "bitrate",
    "sample_rate",
    "added_at",
    "last_scanned",
    "is_removed",
)


@dataclass(slots=True)
class AppliedChanges:
    removed_excluded: int = 0
    removed_missing: int = 0
    restored: int = 0
    inserted: list[SongRecord] = field(default_factory=list)


class SongCatalog:
    """SQLite-backed catalog of known songs, keyed by absolute file path."""

    def __init__(self, path: Path | str) -> None:
        self.path = path
        if str(path) != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        self._lock = Lock()
        self._conn = sqlite3.connect(str(path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS songs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                file_path TEXT UNIQUE,
                file_name TEXT,
                title TEXT NOT NULL DEFAULT '',
                artist TEXT NOT NULL DEFAULT '',
                album TEXT NOT NULL DEFAULT '',
                extracted_title TEXT NOT NULL DEFAULT '',
                extracted_artist TEXT NOT NULL DEFAULT '',
                metadata_source TEXT NOT NULL DEFAULT 'manual',
                file_size INTEGER,
                duration INTEGER,
                format TEXT,
                bitrate INTEGER,
                sample_rate INTEGER,
                added_at TEXT,
                last_scanned TEXT
            )
            """
        )
        try:
            self._conn.execute("ALTER TABLE songs ADD COLUMN is_removed INTEGER NOT NULL DEFAULT 0")
        except sqlite3.OperationalError:
            pass
        self._conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_songs_is_removed ON songs(is_removed)"
        )
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS scan_directories (
                path TEXT PRIMARY KEY,
                file_count INTEGER NOT NULL DEFAULT 0,
                last_scanned TEXT NOT NULL
            )
            """
        )
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS app_settings (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
            """
        )
        self._conn.commit()

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def find_by_path(self, path: Path | str) -> Optional[SongRecord]:
        with self._lock:
            cursor = self._conn.execute(
                "SELECT * FROM songs WHERE file_path = ?",
                (str(path),),
            )
            row = cursor.fetchone()
        return self._to_record(row) if row else None

    def get(self, song_id: int) -> Optional[SongRecord]:
        with self._lock:
            cursor = self._conn.execute("SELECT * FROM songs WHERE id = ?", (song_id,))
            row = cursor.fetchone()
        return self._to_record(row) if row else None

    def iter_entries(self) -> list[SongRecord]:
        with self._lock:
            cursor = self._conn.execute("SELECT * FROM songs ORDER BY id")
            rows = cursor.fetchall()
        return [self._to_record(row) for row in rows]

    def count(self, *, include_removed: bool = False) -> int:
        query = "SELECT COUNT(*) FROM songs"
        if not include_removed:
            query += " WHERE is_removed = 0"
        with self._lock:
            row = self._conn.execute(query).fetchone()
        return int(row[0])

    def insert_batch(self, records: Sequence[SongRecord]) -> list[SongRecord]:
        """Insert all records in one transaction; nothing is kept if any row fails."""
        if not records:
            return []
        with self._lock:
            try:
                inserted = self._insert_rows(records)
                self._conn.commit()
            except Exception:
                self._conn.rollback()
                raise
        return inserted

    def add_song(self, record: SongRecord) -> SongRecord:
        return self.insert_batch([record])[0]

    def apply_plan(
        self,
        *,
        excluded_ids: Sequence[int] = (),
        missing_ids: Sequence[int] = (),
        restored_ids: Sequence[int] = (),
        records: Sequence[SongRecord] = (),
    ) -> AppliedChanges:
        """Delete, restore and insert in one transaction; a failure rolls back all of it."""
        changes = AppliedChanges()
        with self._lock:
            try:
                changes.removed_excluded = self._delete_rows(excluded_ids)
                changes.removed_missing = self._delete_rows(missing_ids)
                for song_id in restored_ids:
                    cursor = self._conn.execute(
                        "UPDATE songs SET is_removed = 0 WHERE id = ? AND is_removed = 1",
                        (song_id,),
                    )
                    changes.restored += cursor.rowcount
                changes.inserted = self._insert_rows(records)
                self._conn.commit()
            except Exception:
                self._conn.rollback()
                raise
        return changes

    def _insert_rows(self, records: Sequence[SongRecord]) -> list[SongRecord]:
        placeholders = ", ".join("?" for _ in SONG_COLUMNS)
        statement = f"INSERT INTO songs ({', '.join(SONG_COLUMNS)}) VALUES ({placeholders})"
        inserted: list[SongRecord] = []
        for record in records:
            cursor = self._conn.execute(statement, self._row_values(record))
            inserted.append(self._copy_with_id(record, int(cursor.lastrowid)))
        return inserted

    def _delete_rows(self, ids: Iterable[int]) -> int:
        removed = 0
        for song_id in ids:
            cursor = self._conn.execute("DELETE FROM songs WHERE id = ?", (song_id,))
            removed += cursor.rowcount
        return removed

    def mark_removed(self, ids: Iterable[int]) -> int:
        id_list = list(ids)
        if not id_list:
            return 0
        with self._lock:
            cursor = self._conn.executemany(
                "UPDATE songs SET is_removed = 1 WHERE id = ?",
                [(song_id,) for song_id in id_list],
            )
            self._conn.commit()
        return cursor.rowcount

    def unmark_removed(self, song_id: int) -> bool:
        with self._lock:
            cursor = self._conn.execute(
                "UPDATE songs SET is_removed = 0 WHERE id = ? AND is_removed = 1",
                (song_id,),
            )
            self._conn.commit()
        return cursor.rowcount > 0

    def delete_entries(self, ids: Iterable[int]) -> int:
        id_list = list(ids)
        if not id_list:
            return 0
        with self._lock:
            try:
                removed = self._delete_rows(id_list)
                self._conn.commit()
            except Exception:
                self._conn.rollback()
                raise
        return removed

    def delete_under_paths(
        self,
        prefixes: Iterable[Path | str],
        *,
        keep_under: Iterable[Path | str] = (),
    ) -> int:
        """Delete songs whose file lies under any prefix, unless also under ``keep_under``."""
        prefix_list = [str(p) for p in prefixes]
        if not prefix_list:
            return 0
        keep = [str(p) for p in keep_under]
        doomed = [
            entry.id
            for entry in self.iter_entries()
            if entry.id is not None
            and entry.file_path
            and is_under_any(entry.file_path, prefix_list)
            and not (keep and is_under_any(entry.file_path, keep))
        ]
        return self.delete_entries(doomed)

    def record_scan_directory(self, path: Path | str, file_count: int) -> None:
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO scan_directories(path, file_count, last_scanned)
                VALUES(?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(path) DO UPDATE SET file_count=excluded.file_count, last_scanned=excluded.last_scanned
                """,
                (str(path), int(file_count)),
            )
            self._conn.commit()

    def list_scan_directories(self) -> list[tuple[str, int, str]]:
        with self._lock:
            cursor = self._conn.execute(
                "SELECT path, file_count, last_scanned FROM scan_directories ORDER BY path"
            )
            rows = cursor.fetchall()
        return [(row[0], int(row[1]), row[2]) for row in rows]

    def get_setting(self, key: str, default: Any = None) -> Any:
        with self._lock:
            cursor = self._conn.execute("SELECT value FROM app_settings WHERE key = ?", (key,))
            row = cursor.fetchone()
        if not row:
            return default
        try:
            return json.loads(row[0])
        except json.JSONDecodeError:
            return row[0]

    def set_setting(self, key: str, value: Any) -> None:
        payload = json.dumps(value)
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO app_settings(key, value, updated_at)
                VALUES(?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(key) DO UPDATE SET value=excluded.value, updated_at=excluded.updated_at
                """,
                (key, payload),
            )
            self._conn.commit()

    @staticmethod
    def _row_values(record: SongRecord) -> tuple:
        values = []
        for column in SONG_COLUMNS:
            value = getattr(record, column)
            if column == "is_removed":
                value = 1 if value else 0
            values.append(value)
        return tuple(values)

    @staticmethod
    def _copy_with_id(record: SongRecord, song_id: int) -> SongRecord:
        payload = record.to_record()
        payload["id"] = song_id
        return SongRecord(**payload)

    @staticmethod
    def _to_record(row: sqlite3.Row) -> SongRecord:
        payload = {key: row[key] for key in row.keys()}
        payload["is_removed"] = bool(payload.get("is_removed"))
        return SongRecord(**payload)
