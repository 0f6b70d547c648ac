"""
Backend selection. Called once per process; never per request.
"""

from __future__ import annotations

import logging

from services.townintel.config import Settings, settings as default_settings
from services.townintel.storage.base import GraphStore

logger = logging.getLogger(__name__)


def create_store(config: Settings | None = None) -> GraphStore:
    config = config or default_settings
    if config.storage_backend == "sql":
        # Imported lazily so file mode never needs a database driver configured
        from services.townintel.db.engine import create_engine, create_session_factory
        from services.townintel.storage.sql_store import SqlGraphStore

        logger.info("storage: using relational backend")
        engine = create_engine(config.database_url)
        return SqlGraphStore(create_session_factory(engine), engine=engine)

    from services.townintel.storage.file_store import FileGraphStore

    logger.info("storage: using file backend at %s", config.data_dir)
    return FileGraphStore(config.data_dir)
