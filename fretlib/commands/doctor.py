from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from typing import Optional

import mutagen

from ..app import FretlibApp
from ..config import Settings
from .output import error, locked, ok as ok_line, unlocked, warning


@dataclass(slots=True)
class DoctorReport:
    ok: bool
    checks: list[str]


def run(settings: Settings, *, app: Optional[FretlibApp] = None) -> DoctorReport:
    checks: list[str] = []
    ok = True

    owns_app = app is None
    if app is None:
        try:
            app = FretlibApp.create(settings)
        except sqlite3.Error as exc:
            return DoctorReport(ok=False, checks=[error("Catalog", f"{settings.catalog.path}: {exc}")])
    try:
        try:
            songs = app.catalog.count()
            checks.append(ok_line("Catalog", f"{settings.catalog.path} ({songs} song(s))"))
        except sqlite3.Error as exc:
            ok = False
            checks.append(error("Catalog", str(exc)))

        configured = app.configuration.enabled_paths()
        missing = [str(path) for path in configured if not path.exists()]
        if missing:
            ok = False
            checks.append(error("Enabled paths", f"missing: {', '.join(missing)}"))
        elif configured:
            checks.append(ok_line("Enabled paths", f"{len(configured)} path(s)"))
        else:
            checks.append(warning("Enabled paths", "none configured; discovery uses standard locations"))

        overlap = [
            str(path) for path in configured if app.configuration.is_path_excluded(path)
        ]
        if overlap:
            checks.append(warning("Excluded paths", f"cover enabled path(s): {', '.join(overlap)}"))
        else:
            checks.append(
                ok_line("Excluded paths", f"{len(app.configuration.excluded_paths())} path(s)")
            )

        formats = sorted(app.planner.classifier.supported_formats)
        checks.append(ok_line("Formats", " ".join(formats)))

        if app.configuration.is_locked():
            checks.append(locked("Configuration", "run `fretlib unlock` to allow full discovery"))
        else:
            checks.append(unlocked("Configuration"))

        permissions = app.planner.check_permissions()
        if permissions.get("home_dir_accessible"):
            checks.append(ok_line("Home directory", permissions["home_dir"]))
        else:
            ok = False
            checks.append(error("Home directory", f"not readable: {permissions['home_dir']}"))
        if not permissions.get("music_dir_accessible"):
            checks.append(warning("Music directory", "missing or not readable"))

        checks.append(ok_line("mutagen", mutagen.version_string))
    finally:
        if owns_app:
            app.close()

    return DoctorReport(ok=ok, checks=checks)
