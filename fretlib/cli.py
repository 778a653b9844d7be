from __future__ import annotations

import argparse
import logging
from pathlib import Path

from .app import FretlibApp
from .commands import doctor as cmd_doctor
from .commands import status as cmd_status
from .commands.output import format_size
from .config import Settings, find_config
from .discovery import DiscoveryResult
from .library import ScanRunResult
from .models import FretlibError, RunFailed, ScanProgress

LOG_FORMAT = "%(levelname).1s | %(name)s | %(message)s"

C_RESET = "\033[0m"
LEVEL_COLORS = {
    logging.DEBUG: "\033[36m",
    logging.INFO: "\033[37m",
    logging.WARNING: "\033[33m",
    logging.ERROR: "\033[31m",
    logging.CRITICAL: "\033[35m",
}

logger = logging.getLogger(__name__)


class ShortPathFormatter(logging.Formatter):
    """Strips configured library roots from messages so paths stay readable."""

    def __init__(self, fmt: str, roots: list[Path]) -> None:
        super().__init__(fmt)
        self.roots = sorted((str(root) for root in roots if root), key=len, reverse=True)

    def _shorten(self, message: str) -> str:
        for root in self.roots:
            if not message:
                break
            message = message.replace(f"{root}/", "")
        return message

    def format(self, record: logging.LogRecord) -> str:
        return self._shorten(super().format(record))


class ColorFormatter(ShortPathFormatter):
    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        color = LEVEL_COLORS.get(record.levelno)
        if not color:
            return message
        return f"{color}{message}{C_RESET}"


class WarningBufferHandler(logging.Handler):
    def __init__(self) -> None:
        super().__init__(level=logging.WARNING)
        self.records: list[str] = []

    def emit(self, record: logging.LogRecord) -> None:
        try:
            msg = self.format(record)
        except Exception:  # pragma: no cover
            msg = record.getMessage()
        self.records.append(msg)


def configure_logging(level: str, roots: list[Path], warn_log_path: Path) -> WarningBufferHandler:
    log_level = getattr(logging, level.upper(), logging.INFO)
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(log_level)

    color_handler = logging.StreamHandler()
    color_handler.setFormatter(ColorFormatter(LOG_FORMAT, roots))
    root_logger.addHandler(color_handler)

    warn_buffer = WarningBufferHandler()
    warn_buffer.setFormatter(ShortPathFormatter(LOG_FORMAT, roots))
    root_logger.addHandler(warn_buffer)

    file_handler = logging.FileHandler(warn_log_path, mode="w", encoding="utf-8")
    file_handler.setLevel(logging.WARNING)
    file_handler.setFormatter(ShortPathFormatter(LOG_FORMAT, roots))
    root_logger.addHandler(file_handler)

    logging.getLogger("mutagen").setLevel(logging.WARNING)
    return warn_buffer


def print_progress(update: ScanProgress) -> None:
    if update.phase == "metadata":
        if update.files_found % 100 == 0 or update.progress == 100:
            print(f"  {update.message}")
    elif update.progress is not None:
        print(f"[{update.progress:5.1f}%] {update.message}")


def print_discovery(result: DiscoveryResult) -> None:
    sections = (
        ("Standard directories", result.standard_directories),
        ("Discovered directories", result.discovered_directories),
    )
    for title, directories in sections:
        print(f"\n{title} ({len(directories)}):")
        for directory in directories:
            print(
                f"  {directory.path}  {directory.file_count} file(s), "
                f"{format_size(directory.total_size)}"
            )
    if result.suggested_directories:
        print(f"\nSuggestions ({len(result.suggested_directories)}):")
        for suggestion in result.suggested_directories:
            print(f"  {suggestion.path}  {suggestion.reason} ({suggestion.confidence:.0%})")
    print(f"\nTotal music files: {result.total_files}")


def print_scan(result: ScanRunResult) -> None:
    print(
        f"\nDiscovered {result.discovered}, found {result.new_found} new, "
        f"processed {result.processed}, new {result.new}, "
        f"existing {result.existing}, restored {result.restored}"
    )
    print(
        f"Removed {result.removed} (missing {result.removed_missing}, "
        f"excluded {result.removed_excluded}); remaining {result.remaining}"
    )
    if result.message:
        print(result.message)
    print(f"Configuration {'locked' if result.locked else 'unlocked'}")


def _scan_roots(app: FretlibApp, directories: list[Path]) -> list[Path]:
    if directories:
        return directories
    configured = app.configuration.scan_directories()
    if configured:
        return configured
    logger.info("No configured directories; running discovery first")
    found = app.service.discover(print_progress)
    return [directory.path for directory in found.standard_directories + found.discovered_directories]


def main() -> None:
    parser = argparse.ArgumentParser(description="Music library scanner")
    parser.add_argument("--config", type=Path, help="Path to config.yaml")
    parser.add_argument("--log-level", default="INFO", help="Python logging level")

    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("discover", help="Find directories that hold music files")
    scan_parser = subparsers.add_parser(
        "scan", help="Scan directories and update the song catalog"
    )
    scan_parser.add_argument(
        "directories",
        nargs="*",
        type=Path,
        help="Directories to scan (defaults to the configured paths)",
    )
    subparsers.add_parser("status", help="Show catalog and configuration state")
    subparsers.add_parser(
        "unlock", help="Allow full discovery again after the first scan locked it"
    )
    exclude_parser = subparsers.add_parser(
        "exclude", help="Exclude a path and drop its songs from the catalog"
    )
    exclude_parser.add_argument("path", type=Path)
    subparsers.add_parser("doctor", help="Run basic config/catalog checks")
    args = parser.parse_args()

    config_path = find_config(args.config)
    settings = Settings.load(config_path)

    display_roots = [*settings.library.enabled_paths, *settings.library.custom_paths]
    warn_log_path = Path.cwd() / "fretlib-warnings.log"
    warn_buffer = configure_logging(args.log_level, display_roots, warn_log_path)

    if args.command == "doctor":
        report = cmd_doctor.run(settings)
        for line in report.checks:
            print(line)
        if not report.ok:
            raise SystemExit(1)
        return

    app = FretlibApp.create(settings, config_path=config_path)
    try:
        match args.command:
            case "discover":
                print_discovery(app.service.discover(print_progress))
            case "scan":
                roots = _scan_roots(app, list(args.directories))
                print_scan(app.service.process(roots, print_progress))
            case "status":
                for line in cmd_status.run(app):
                    print(line)
            case "unlock":
                app.configuration.unlock()
                print("Configuration unlocked.")
            case "exclude":
                removed = app.service.exclude_path(args.path)
                print(f"Excluded {args.path.expanduser().resolve()}; removed {removed} song(s).")
            case _:
                parser.error("Unknown command")
    except RunFailed as exc:
        for key, value in exc.diagnostics.items():
            logger.debug("%s: %s", key, value)
        raise SystemExit(f"{exc}") from exc
    except FretlibError as exc:
        raise SystemExit(str(exc)) from exc
    finally:
        app.close()
        if warn_buffer.records:
            print("\n\033[33mWarnings/Errors summary:\033[0m")
            for line in warn_buffer.records:
                print(f" - {line}")
            print(f"\nFull warning log: {warn_log_path}")


if __name__ == "__main__":
    main()
