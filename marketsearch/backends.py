"""Pick and build the configured catalog store."""
from __future__ import annotations

import logging

from .catalog import CatalogError, CatalogStore
from .config import Settings, settings
from .db import create_db_engine, ensure_search_extensions
from .scoring import MatchThresholds
from .snapshot import load_snapshot_catalog
from .sql_catalog import SqlCatalog

logger = logging.getLogger(__name__)


def build_catalog(config: Settings = settings) -> CatalogStore:
    thresholds = MatchThresholds.from_settings(config)
    backend = config.catalog_backend.lower()
    if backend == "snapshot":
        return load_snapshot_catalog(
            config.snapshot_path,
            thresholds,
            source_url=config.snapshot_source_url or None,
            activity_window_days=config.activity_window_days,
        )
    if backend == "postgres":
        engine = create_db_engine(config)
        if config.ensure_extensions_on_startup:
            ensure_search_extensions(engine)
        return SqlCatalog(engine, thresholds)
    raise CatalogError(f"Unknown catalog backend {config.catalog_backend!r}")
