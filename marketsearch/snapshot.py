"""Catalog snapshot loading for the in-memory catalog backend."""
from __future__ import annotations

import json
import logging
import shutil
from pathlib import Path
from typing import Any, Dict
from urllib.error import URLError
from urllib.request import urlopen

from .catalog import CatalogError
from .memory_catalog import MemoryCatalog
from .scoring import MatchThresholds

logger = logging.getLogger(__name__)

SNAPSHOT_SECTIONS = ("brands", "categories", "tags", "categoryTags", "products", "clicks", "views", "searches")


def ensure_snapshot_file(path: str | Path, source_url: str | None = None) -> Path:
    """Make sure the snapshot exists locally, downloading it when a URL is configured."""
    file_path = Path(path)
    if file_path.exists():
        return file_path
    if not source_url:
        raise CatalogError(f"Catalog snapshot missing and no download URL provided: {file_path}")
    logger.info("Downloading catalog snapshot %s from %s", file_path, source_url)
    file_path.parent.mkdir(parents=True, exist_ok=True)
    try:
        with urlopen(source_url) as response, file_path.open("wb") as handle:
            shutil.copyfileobj(response, handle)
    except (OSError, URLError) as exc:
        raise CatalogError(f"Failed to download {source_url} -> {file_path}") from exc
    return file_path


def read_snapshot(path: Path) -> Dict[str, Any]:
    with path.open("r", encoding="utf-8") as fh:
        first_line = fh.readline()
        # Git LFS placeholders are small text files, not JSON.
        if first_line.startswith("version https://git-lfs.github.com/spec/v1"):
            raise CatalogError(f"Catalog snapshot {path} is a Git LFS pointer; real data not downloaded")
        fh.seek(0)
        try:
            payload = json.load(fh)
        except json.JSONDecodeError as exc:
            raise CatalogError(f"Catalog snapshot {path} is not valid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise CatalogError(f"Catalog snapshot {path} must hold a JSON object")
    if "products" not in payload:
        raise CatalogError(f"Catalog snapshot {path} has no products section")
    return {section: payload.get(section) or [] for section in SNAPSHOT_SECTIONS}


def load_snapshot_catalog(
    path: str | Path,
    thresholds: MatchThresholds,
    source_url: str | None = None,
    activity_window_days: int = 30,
) -> MemoryCatalog:
    snapshot = read_snapshot(ensure_snapshot_file(path, source_url))
    catalog = MemoryCatalog(snapshot, thresholds, activity_window_days=activity_window_days)
    logger.info(
        "Loaded catalog snapshot %s: %s products, %s brands, %s categories, %s tags",
        path,
        len(snapshot["products"]),
        len(snapshot["brands"]),
        len(snapshot["categories"]),
        len(snapshot["tags"]),
    )
    return catalog
