from __future__ import annotations

from ..app import FretlibApp
from .output import format_size


def run(app: FretlibApp) -> list[str]:
    lines: list[str] = []
    catalog = app.catalog
    active = catalog.count()
    total = catalog.count(include_removed=True)
    lines.append(f"Songs: {active} active, {total - active} removed")
    lines.append(
        "Configuration: " + ("locked" if app.configuration.is_locked() else "unlocked")
    )

    enabled = app.configuration.enabled_paths()
    lines.append(f"Enabled paths ({len(enabled)}):")
    lines.extend(f"  {path}" for path in enabled)
    excluded = app.configuration.excluded_paths()
    if excluded:
        lines.append(f"Excluded paths ({len(excluded)}):")
        lines.extend(f"  {path}" for path in excluded)

    scanned = catalog.list_scan_directories()
    if scanned:
        lines.append("Scanned directories:")
        for path, file_count, last_scanned in scanned:
            lines.append(f"  {path}: {file_count} file(s), last scanned {last_scanned}")

    last = app.service.last_scan()
    if last:
        lines.append(
            "Last scan: {discovered} discovered, {new} new, {existing} existing, "
            "{restored} restored, {removed} removed".format(**last)
        )
        if last.get("message"):
            lines.append(f"  {last['message']}")
    else:
        lines.append("Last scan: never")

    size = sum(song.file_size or 0 for song in catalog.iter_entries() if not song.is_removed)
    lines.append(f"Library size: {format_size(size)}")
    return lines
