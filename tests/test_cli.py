import io
import logging
import tempfile
import unittest
from contextlib import redirect_stdout
from pathlib import Path
from unittest import mock

from fretlib import cli
from fretlib.config import CatalogSettings, LibrarySettings, Settings


class TestShortPathFormatter(unittest.TestCase):
    def test_strips_library_roots(self) -> None:
        formatter = cli.ShortPathFormatter("%(message)s", [Path("/m"), Path("/m/rock")])
        record = logging.LogRecord("x", logging.WARNING, __file__, 1, "Cannot read /m/rock/a.mp3", None, None)
        self.assertEqual(formatter.format(record), "Cannot read a.mp3")

    def test_color_formatter_wraps_level_color(self) -> None:
        formatter = cli.ColorFormatter(cli.LOG_FORMAT, [])
        record = logging.LogRecord("fretlib.walker", logging.ERROR, __file__, 1, "boom", None, None)
        rendered = formatter.format(record)
        self.assertTrue(rendered.startswith(cli.LEVEL_COLORS[logging.ERROR]))
        self.assertIn("E | fretlib.walker | boom", rendered)


class TestMain(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.tmp = Path(self._tmp.name).resolve()
        self.root = self.tmp / "music"
        (self.root / "Album").mkdir(parents=True)
        (self.root / "Album" / "Band - Tune.mp3").write_bytes(b"junk")
        self.config_path = self.tmp / "config.yaml"
        Settings(
            library=LibrarySettings(enabled_paths=[self.root]),
            catalog=CatalogSettings(path=self.tmp / "catalog.sqlite3"),
        ).save(self.config_path)
        root_logger = logging.getLogger()
        self._handlers = list(root_logger.handlers)
        self._level = root_logger.level

    def tearDown(self) -> None:
        root_logger = logging.getLogger()
        for handler in root_logger.handlers:
            if handler not in self._handlers:
                handler.close()
        root_logger.handlers[:] = self._handlers
        root_logger.setLevel(self._level)
        self._tmp.cleanup()

    def _main(self, *args: str) -> str:
        argv = ["fretlib", "--config", str(self.config_path), *args]
        out = io.StringIO()
        with mock.patch("sys.argv", argv), mock.patch.object(cli.Path, "cwd", return_value=self.tmp):
            with redirect_stdout(out):
                cli.main()
        return out.getvalue()

    def test_scan_then_status_and_unlock(self) -> None:
        scanned = self._main("scan")
        self.assertIn("new 1", scanned)
        self.assertIn("Configuration locked", scanned)

        status = self._main("status")
        self.assertIn("Songs: 1 active, 0 removed", status)

        self.assertIn("Configuration unlocked.", self._main("unlock"))
        self.assertIn("Configuration: unlocked", self._main("status"))
        self.assertTrue((self.tmp / "fretlib-warnings.log").exists())

    def test_exclude_updates_config_file(self) -> None:
        self._main("scan")

        output = self._main("exclude", str(self.root / "Album"))

        self.assertIn("removed 1 song(s)", output)
        saved = Settings.load(self.config_path)
        self.assertEqual(saved.library.excluded_paths, [self.root / "Album"])


if __name__ == "__main__":
    unittest.main()
