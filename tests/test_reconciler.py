import tempfile
import unittest
from pathlib import Path

from fretlib.catalog import SongCatalog
from fretlib.models import SongRecord
from fretlib.reconciler import ScanReconciler


class _MemoryCatalog:
    def __init__(self, entries: list[SongRecord]) -> None:
        self.entries = entries

    def find_by_path(self, path: str):
        for entry in self.entries:
            if entry.file_path == path:
                return entry
        return None

    def iter_entries(self):
        return list(self.entries)


class _BrokenCatalog(_MemoryCatalog):
    def iter_entries(self):
        raise RuntimeError("catalog offline")


def _song(song_id: int, path: str | None, removed: bool = False) -> SongRecord:
    return SongRecord(id=song_id, file_path=path, is_removed=removed)


class TestScanReconciler(unittest.TestCase):
    def test_classifies_new_restored_and_existing(self) -> None:
        catalog = _MemoryCatalog(
            [_song(1, "/m/a.mp3"), _song(2, "/m/b.mp3", removed=True)]
        )
        reconciler = ScanReconciler(file_exists=lambda _p: True)

        plan = reconciler.reconcile(["/m/a.mp3", "/m/b.mp3", "/m/c.mp3"], catalog, [])

        self.assertEqual(plan.discovered, 3)
        self.assertEqual(plan.existing_count, 1)
        self.assertEqual(plan.restored_ids, [2])
        self.assertEqual(plan.new_files, ["/m/c.mp3"])
        self.assertEqual(plan.to_process, ["/m/c.mp3"])
        self.assertEqual(plan.retired_ids, [])
        self.assertFalse(plan.truncated)

    def test_exclusion_wins_over_rediscovery(self) -> None:
        catalog = _MemoryCatalog(
            [_song(1, "/m/x/a.mp3"), _song(2, "/m/x/b.mp3", removed=True)]
        )
        reconciler = ScanReconciler(file_exists=lambda _p: True)

        plan = reconciler.reconcile(
            ["/m/x/a.mp3", "/m/x/b.mp3", "/m/x/c.mp3"], catalog, ["/m/x"]
        )

        self.assertEqual(sorted(plan.retired_excluded_ids), [1, 2])
        self.assertEqual(plan.removed_excluded_count, 2)
        self.assertEqual(plan.new_files, [])
        self.assertEqual(plan.restored_ids, [])
        self.assertEqual(plan.excluded_discovered_count, 3)
        self.assertEqual(plan.discovered, 0)

    def test_exclusion_matches_whole_path_components(self) -> None:
        catalog = _MemoryCatalog([_song(1, "/m/xylophone/a.mp3")])
        reconciler = ScanReconciler(file_exists=lambda _p: True)

        plan = reconciler.reconcile(["/m/xylophone/a.mp3"], catalog, ["/m/x"])

        self.assertEqual(plan.retired_excluded_ids, [])
        self.assertEqual(plan.existing_count, 1)

    def test_missing_files_are_retired_but_pathless_entries_are_kept(self) -> None:
        catalog = _MemoryCatalog(
            [_song(1, "/m/gone.mp3"), _song(2, None), _song(3, ""), _song(4, "/m/here.mp3")]
        )
        reconciler = ScanReconciler(file_exists=lambda p: p != "/m/gone.mp3")

        plan = reconciler.reconcile(["/m/here.mp3"], catalog, [])

        self.assertEqual(plan.retired_missing_ids, [1])
        self.assertEqual(plan.removed_missing_count, 1)
        self.assertEqual(plan.existing_count, 1)

    def test_cap_limits_processing_and_reports_remaining(self) -> None:
        paths = [f"/m/{idx:04d}.mp3" for idx in range(2500)]
        reconciler = ScanReconciler(file_exists=lambda _p: True)

        plan = reconciler.reconcile(paths, _MemoryCatalog([]), [], max_new_files=1000)

        self.assertEqual(plan.new_count, 2500)
        self.assertEqual(plan.processed, 1000)
        self.assertEqual(plan.remaining_count, 1500)
        self.assertTrue(plan.truncated)
        self.assertEqual(plan.to_process, paths[:1000])
        self.assertEqual(plan.pending[0], paths[1000])

    def test_duplicates_are_counted_once(self) -> None:
        reconciler = ScanReconciler(file_exists=lambda _p: True)
        plan = reconciler.reconcile(
            ["/m/a.mp3", "/m/a.mp3", "/m/b.mp3"], _MemoryCatalog([]), []
        )
        self.assertEqual(plan.discovered, 2)
        self.assertEqual(plan.new_files, ["/m/a.mp3", "/m/b.mp3"])

    def test_counts_are_conserved(self) -> None:
        catalog = _MemoryCatalog(
            [
                _song(1, "/m/a.mp3"),
                _song(2, "/m/b.mp3", removed=True),
                _song(3, "/m/ex/c.mp3"),
                _song(4, "/m/gone.mp3"),
            ]
        )
        reconciler = ScanReconciler(file_exists=lambda p: p != "/m/gone.mp3")

        plan = reconciler.reconcile(
            ["/m/a.mp3", "/m/b.mp3", "/m/ex/c.mp3", "/m/d.mp3", "/m/e.mp3"],
            catalog,
            ["/m/ex"],
            max_new_files=1,
        )

        self.assertEqual(
            plan.discovered, plan.existing_count + plan.new_count + plan.restored_count
        )
        self.assertEqual(plan.processed + plan.remaining_count, plan.new_count)
        self.assertEqual(plan.retired_excluded_ids, [3])
        self.assertEqual(plan.retired_missing_ids, [4])

    def test_negative_cap_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            ScanReconciler().reconcile([], _MemoryCatalog([]), [], max_new_files=-1)

    def test_catalog_errors_propagate(self) -> None:
        with self.assertRaises(RuntimeError):
            ScanReconciler().reconcile(["/m/a.mp3"], _BrokenCatalog([]), [])


class TestReconcilerAgainstCatalog(unittest.TestCase):
    def _apply(self, catalog: SongCatalog, plan) -> None:
        catalog.delete_entries(plan.retired_ids)
        for song_id in plan.restored_ids:
            catalog.unmark_removed(song_id)
        catalog.insert_batch(
            [SongRecord(id=None, file_path=path, title=Path(path).stem) for path in plan.to_process]
        )

    def test_second_pass_after_applying_is_a_no_op(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            tmp = Path(tmpdir)
            files = []
            for name in ("a.mp3", "b.mp3", "c.mp3"):
                path = tmp / name
                path.write_bytes(b"x")
                files.append(str(path))
            catalog = SongCatalog(tmp / "catalog.sqlite3")
            try:
                catalog.insert_batch(
                    [
                        SongRecord(id=None, file_path=files[0], is_removed=True),
                        SongRecord(id=None, file_path=str(tmp / "gone.mp3")),
                    ]
                )
                reconciler = ScanReconciler()

                first = reconciler.reconcile(files, catalog, [])
                self.assertTrue(first.has_actions)
                self.assertEqual(first.restored_count, 1)
                self.assertEqual(first.removed_missing_count, 1)
                self._apply(catalog, first)

                second = reconciler.reconcile(files, catalog, [])
                self.assertFalse(second.has_actions)
                self.assertEqual(second.existing_count, 3)
            finally:
                catalog.close()

    def test_capped_runs_drain_the_backlog(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            tmp = Path(tmpdir)
            files = []
            for idx in range(5):
                path = tmp / f"{idx}.mp3"
                path.write_bytes(b"x")
                files.append(str(path))
            catalog = SongCatalog(tmp / "catalog.sqlite3")
            try:
                reconciler = ScanReconciler()
                remaining = []
                for _ in range(3):
                    plan = reconciler.reconcile(files, catalog, [], max_new_files=2)
                    remaining.append(plan.remaining_count)
                    self._apply(catalog, plan)
                self.assertEqual(remaining, [3, 1, 0])
                self.assertEqual(catalog.count(), 5)
            finally:
                catalog.close()


if __name__ == "__main__":
    unittest.main()
