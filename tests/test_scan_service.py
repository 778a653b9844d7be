import tempfile
import unittest
from pathlib import Path
from unittest import mock

from fretlib.app import FretlibApp
from fretlib.config import CatalogSettings, DiscoverySettings, LibrarySettings, ScanningSettings, Settings
from fretlib.models import InvalidScanRequest, ScanFailed, ScannerBusy, SongRecord


def _touch(path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"not really audio")
    return path


class TestLibraryScanService(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.tmp = Path(self._tmp.name).resolve()
        self.library = self.tmp / "Library"
        self.a = _touch(self.library / "Rock" / "01 - Ramones - Blitzkrieg Bop.mp3")
        self.b = _touch(self.library / "Rock" / "Nirvana_Lithium.mp3")
        self.c = _touch(self.library / "Jazz" / "So What by Miles Davis.flac")
        _touch(self.library / "Jazz" / "liner notes.txt")
        self.app = self._create_app()

    def tearDown(self) -> None:
        self.app.close()
        self._tmp.cleanup()

    def _create_app(self, max_new_files: int = 1000) -> FretlibApp:
        settings = Settings(
            library=LibrarySettings(enabled_paths=[self.library]),
            scanning=ScanningSettings(max_new_files=max_new_files),
            discovery=DiscoverySettings(include_system_locations=False),
            catalog=CatalogSettings(path=self.tmp / "data" / "catalog.sqlite3"),
        )
        return FretlibApp.create(settings, config_path=self.tmp / "config.yaml", home=self.tmp)

    def test_first_scan_adds_songs_and_locks(self) -> None:
        self.assertFalse(self.app.configuration.is_locked())

        result = self.app.service.process([self.library])

        self.assertEqual(result.discovered, 3)
        self.assertEqual(result.new, 3)
        self.assertEqual(result.processed, 3)
        self.assertEqual(result.existing, 0)
        self.assertFalse(result.truncated)
        self.assertTrue(result.locked)
        self.assertTrue(self.app.configuration.is_locked())
        self.assertEqual(len(result.songs), 3)
        by_path = {song.file_path: song for song in result.songs}
        self.assertEqual(by_path[str(self.a)].artist, "Ramones")
        self.assertEqual(by_path[str(self.c)].title, "So What")
        self.assertEqual(self.app.catalog.count(), 3)
        self.assertEqual(self.app.service.last_scan()["new"], 3)
        self.assertEqual(
            [path for path, _, _ in self.app.catalog.list_scan_directories()], [str(self.library)]
        )

    def test_rescan_is_idempotent(self) -> None:
        self.app.service.process([self.library])

        result = self.app.service.process([{"path": str(self.library)}])

        self.assertEqual(result.new, 0)
        self.assertEqual(result.existing, 3)
        self.assertEqual(result.removed, 0)
        self.assertEqual(result.message, "All files have been processed.")

    def test_deleted_files_are_removed_and_removed_songs_restored(self) -> None:
        first = self.app.service.process([self.library])
        self.b.unlink()
        song_a = next(song for song in first.songs if song.file_path == str(self.a))
        self.app.catalog.mark_removed([song_a.id])

        result = self.app.service.process([self.library])

        self.assertEqual(result.removed_missing, 1)
        self.assertEqual(result.restored, 1)
        self.assertEqual(result.existing, 1)
        self.assertEqual(result.discovered, 2)
        self.assertIsNone(self.app.catalog.find_by_path(str(self.b)))
        self.assertFalse(self.app.catalog.find_by_path(str(self.a)).is_removed)
        self.assertEqual(result.restored_ids, [song_a.id])
        self.assertEqual(result.new_files, [])

    def test_exclusion_removes_songs_and_keeps_them_out(self) -> None:
        self.app.service.process([self.library])

        removed = self.app.service.exclude_path(self.library / "Jazz")
        result = self.app.service.process([self.library])

        self.assertEqual(removed, 1)
        self.assertIsNone(self.app.catalog.find_by_path(str(self.c)))
        self.assertEqual(result.discovered, 2)
        self.assertEqual(result.new, 0)
        self.assertEqual(result.removed_excluded, 0)

    def test_excluded_paths_from_config_are_cleaned_during_scan(self) -> None:
        self.app.service.process([self.library])
        self.app.settings.library.excluded_paths.append(self.library / "Rock")

        result = self.app.service.process([self.library])

        self.assertEqual(result.removed_excluded, 2)
        self.assertEqual(result.discovered, 1)
        self.assertEqual(self.app.catalog.count(), 1)

    def test_excluded_root_is_skipped(self) -> None:
        self.app.configuration.add_excluded_path(self.library / "Rock")

        result = self.app.service.process([self.library / "Rock", self.library / "Jazz"])

        self.assertEqual(result.discovered, 1)
        self.assertEqual([song.file_path for song in result.songs], [str(self.c)])

    def test_cap_defers_remaining_files_to_next_run(self) -> None:
        self.app.close()
        self.app = self._create_app(max_new_files=2)

        first = self.app.service.process([self.library])
        second = self.app.service.process([self.library])

        self.assertTrue(first.truncated)
        self.assertEqual((first.new, first.remaining), (2, 1))
        self.assertIn("Run scan again", first.message)
        self.assertFalse(second.truncated)
        self.assertEqual((second.new, second.existing, second.remaining), (1, 2, 0))

    def test_truncated_run_reports_found_and_processed_counts(self) -> None:
        self.app.close()
        self.app = self._create_app(max_new_files=2)

        result = self.app.service.process([self.library])

        self.assertEqual((result.new_found, result.processed, result.new), (3, 2, 2))
        self.assertEqual(
            sorted(result.new_files), sorted(str(path) for path in (self.a, self.b, self.c))
        )
        self.assertEqual(
            result.discovered, result.existing + result.new_found + result.restored
        )
        self.assertEqual(result.remaining, result.new_found - result.processed)
        self.assertEqual(self.app.service.last_scan()["new_found"], 3)

    def test_concurrent_runs_are_rejected(self) -> None:
        with self.app.session.running("discovery"):
            with self.assertRaises(ScannerBusy):
                self.app.service.process([self.library])

    def test_failure_releases_session_and_inserts_nothing(self) -> None:
        with mock.patch.object(
            self.app.service.extractor, "extract_batch", side_effect=RuntimeError("boom")
        ):
            with self.assertRaises(ScanFailed) as ctx:
                self.app.service.process([self.library])

        self.assertIsInstance(ctx.exception.__cause__, RuntimeError)
        self.assertEqual(ctx.exception.diagnostics["attempted_paths"], [str(self.library)])
        self.assertFalse(ctx.exception.diagnostics["locked"])
        self.assertFalse(self.app.service.is_running)
        self.assertEqual(self.app.catalog.count(), 0)
        self.assertFalse(self.app.configuration.is_locked())

        self.assertEqual(self.app.service.process([self.library]).new, 3)

    def _seed_removed_and_missing(self) -> Path:
        first = self.app.service.process([self.library])
        song_a = next(song for song in first.songs if song.file_path == str(self.a))
        self.app.catalog.mark_removed([song_a.id])
        self.b.unlink()
        return _touch(self.library / "Blues" / "Hound Dog.mp3")

    def _assert_catalog_untouched(self, fresh: Path) -> None:
        self.assertTrue(self.app.catalog.find_by_path(str(self.a)).is_removed)
        self.assertIsNotNone(self.app.catalog.find_by_path(str(self.b)))
        self.assertIsNone(self.app.catalog.find_by_path(str(fresh)))
        self.assertEqual(self.app.catalog.count(include_removed=True), 3)
        self.assertEqual(self.app.service.last_scan()["new"], 3)
        self.assertFalse(self.app.service.is_running)

    def test_failed_extraction_leaves_catalog_unchanged(self) -> None:
        fresh = self._seed_removed_and_missing()

        with mock.patch.object(
            self.app.service.extractor, "extract_batch", side_effect=RuntimeError("boom")
        ):
            with self.assertRaises(ScanFailed):
                self.app.service.process([self.library])

        self._assert_catalog_untouched(fresh)

    def test_failed_insert_rolls_back_removals_and_restores(self) -> None:
        fresh = self._seed_removed_and_missing()
        clashing = [SongRecord(id=None, file_path=str(self.c))]

        with mock.patch.object(
            self.app.service.extractor, "extract_batch", return_value=clashing
        ):
            with self.assertRaises(ScanFailed):
                self.app.service.process([self.library])

        self._assert_catalog_untouched(fresh)

    def test_missing_roots_are_not_recorded(self) -> None:
        self.app.service.process([self.library, self.tmp / "nowhere"])

        self.assertEqual(
            [path for path, _, _ in self.app.catalog.list_scan_directories()], [str(self.library)]
        )

    def test_invalid_payloads_are_rejected_before_running(self) -> None:
        with self.assertRaises(InvalidScanRequest):
            self.app.service.process(str(self.library))
        with self.assertRaises(InvalidScanRequest):
            self.app.service.process([{"name": "Library"}])
        with self.assertRaises(InvalidScanRequest):
            self.app.service.process([""])
        self.assertFalse(self.app.service.is_running)

    def test_stop_during_walk_applies_nothing(self) -> None:
        def progress(_update) -> None:
            self.app.service.stop()

        result = self.app.service.process([self.library], progress)

        self.assertTrue(result.cancelled)
        self.assertEqual(self.app.catalog.count(), 0)
        self.assertFalse(self.app.service.is_running)

    def test_locked_discovery_uses_configured_roots_only(self) -> None:
        with mock.patch.object(self.app.planner, "discover_all") as discover_all:
            self.app.service.discover()
            discover_all.assert_called_once_with(None, configured_only=False)

        self.app.configuration.lock()
        result = self.app.service.discover()

        self.assertTrue(result.summary["configured_only"])
        self.assertEqual(
            {d.path for d in result.standard_directories},
            {self.library / "Rock", self.library / "Jazz"},
        )
        self.assertEqual(result.suggested_directories, [])

    def test_drop_enabled_path_removes_its_songs(self) -> None:
        self.app.service.process([self.library])

        removed = self.app.service.drop_enabled_path(self.library)

        self.assertEqual(removed, 3)
        self.assertEqual(self.app.configuration.enabled_paths(), [])
        self.assertEqual(self.app.service.drop_enabled_path(self.library), 0)


if __name__ == "__main__":
    unittest.main()
