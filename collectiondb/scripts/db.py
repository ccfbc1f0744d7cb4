"""Database helper (Mongo only).

Requires a real MongoDB reachable via MONGO_URI; connection details come from
Settings, never from literals. One client per process, reused across calls;
close_db() releases it.
"""
import logging
from functools import lru_cache
from typing import Optional

from pymongo import MongoClient
from pymongo.database import Database
from pymongo.errors import ConfigurationError, PyMongoError

from .config import Settings
from .errors import StoreConnectionError

logger = logging.getLogger(__name__)

_last_key = None


def get_db(settings: Settings) -> Database:
    """Connect, ping and return the configured database.

    DB_NAME wins over the database named in the URI. Raises
    StoreConnectionError on any failure.
    """
    global _last_key
    key = (settings.mongo_uri, settings.db_name, settings.timeout_ms)
    if _last_key is not None and key != _last_key:
        close_db()
    db = _connect(*key)
    _last_key = key
    return db


@lru_cache(maxsize=1)
def _connect(uri: str, db_name: Optional[str], timeout_ms: int) -> Database:
    client = None
    try:
        client = MongoClient(uri, serverSelectionTimeoutMS=timeout_ms)
        client.admin.command("ping")
        if db_name:
            db = client[db_name]
        else:
            db = client.get_default_database()
    except ConfigurationError as e:
        _close(client)
        raise StoreConnectionError(f"no database selected (set DB_NAME or put it in the URI): {e}") from e
    except PyMongoError as e:
        _close(client)
        raise StoreConnectionError(f"mongo unreachable: {e}") from e
    logger.info(f"connected db={db.name}")
    return db


def _close(client) -> None:
    if client is not None:
        client.close()


def close_db() -> None:
    """Close the cached client (if any); the next get_db reconnects."""
    global _last_key
    if _last_key is not None and _connect.cache_info().currsize:
        _connect(*_last_key).client.close()
    _last_key = None
    _connect.cache_clear()
