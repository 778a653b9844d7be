from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .catalog import SongCatalog
from .classifier import PathClassifier
from .config import Settings
from .discovery import DiscoveryPlanner
from .library import LibraryScanService
from .metadata import MetadataExtractor
from .scan_config import ScanConfiguration
from .session import ScanSession
from .walker import DirectoryWalker


@dataclass
class FretlibApp:
    settings: Settings
    catalog: SongCatalog
    configuration: ScanConfiguration
    session: ScanSession
    planner: DiscoveryPlanner
    service: LibraryScanService

    @classmethod
    def create(
        cls,
        settings: Settings,
        *,
        config_path: Optional[Path] = None,
        home: Optional[Path] = None,
    ) -> "FretlibApp":
        catalog = SongCatalog(settings.catalog.path)
        configuration = ScanConfiguration(settings, catalog, config_path=config_path)
        classifier = PathClassifier(settings.library.supported_formats)
        session = ScanSession()
        planner = DiscoveryPlanner(
            settings.discovery,
            classifier,
            session,
            configuration,
            max_depth=settings.scanning.max_depth,
            home=home,
        )
        service = LibraryScanService(
            catalog,
            configuration,
            planner,
            DirectoryWalker(classifier, stop_event=session.stop_event),
            MetadataExtractor(classifier),
            session,
            max_depth=settings.scanning.max_depth,
            max_new_files=settings.scanning.max_new_files,
        )
        return cls(
            settings=settings,
            catalog=catalog,
            configuration=configuration,
            session=session,
            planner=planner,
            service=service,
        )

    def close(self) -> None:
        self.catalog.close()
