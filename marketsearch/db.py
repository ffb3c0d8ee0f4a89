"""PostgreSQL engine factory and search extension setup.

The rest of the code works against a synchronous SQLAlchemy engine. Blocking
calls are wrapped via ``asyncio.to_thread`` by the caller where necessary.
"""
from __future__ import annotations

import logging

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from .catalog import CatalogError
from .config import Settings, settings

logger = logging.getLogger(__name__)

# pg_trgm: similarity/word_similarity; fuzzystrmatch: dmetaphone/dmetaphone_alt.
SEARCH_EXTENSIONS = ("pg_trgm", "fuzzystrmatch")


def create_db_engine(config: Settings = settings) -> Engine:
    engine = create_engine(
        config.database_url,
        pool_size=config.database_pool_size,
        pool_pre_ping=True,
    )
    logger.info("Connecting to PostgreSQL at %s", engine.url.render_as_string(hide_password=True))
    return engine


def ensure_search_extensions(engine: Engine) -> None:
    """Create the extensions the scored query depends on if they are missing."""
    try:
        with engine.begin() as conn:
            for extension in SEARCH_EXTENSIONS:
                conn.execute(text(f"CREATE EXTENSION IF NOT EXISTS {extension}"))
    except SQLAlchemyError as exc:
        logger.exception("Failed to create search extensions: %s", exc)
        raise CatalogError(f"Failed to create search extensions: {exc}") from exc
    logger.info("Search extensions ready: %s", ", ".join(SEARCH_EXTENSIONS))
