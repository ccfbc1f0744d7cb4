import sys, pathlib
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import mongomock
import pytest

from scripts.db import close_db
from scripts.store import MongoStore


def seed(db, name, n, **extra):
    """Create `name` with n distinct documents (or an empty collection when n == 0)."""
    if n == 0:
        db.create_collection(name)
        return
    db[name].insert_many([{"n": i, "src": name, **extra} for i in range(n)])


@pytest.fixture
def mongo_db():
    return mongomock.MongoClient()["reconcile_test"]


@pytest.fixture
def store(mongo_db):
    return MongoStore(mongo_db)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for k in ("MONGO_URI", "MONGODB_URI", "DATABASE_URL", "DB_NAME", "RECONCILE_THRESHOLD",
              "RECONCILE_PREFIXES", "NAMING_CONVENTION", "STANDARD_NAMES", "API_KEY"):
        monkeypatch.delenv(k, raising=False)


@pytest.fixture(autouse=True)
def _reset_client_cache():
    yield
    close_db()
