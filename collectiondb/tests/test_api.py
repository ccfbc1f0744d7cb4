import sys, pathlib
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from conftest import seed
from scripts import api as api_module
from scripts import db as db_module
from scripts.api import app, get_settings, get_store
from scripts.config import Settings
from scripts.errors import StoreConnectionError


@pytest.fixture
def client(store):
    settings = Settings(mongo_uri="mongodb://localhost:27017/reconcile_test")
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_settings] = lambda: settings
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok"}


def test_ready_reports_db_outage(client, store, monkeypatch):
    def down():
        raise StoreConnectionError("mongo_ping_failed")

    monkeypatch.setattr(store, "ping", down)
    r = client.get("/ready")
    assert r.status_code == 503
    assert "db_not_ready" in r.json()["detail"]


def test_collections_and_plan(client, mongo_db):
    seed(mongo_db, "apirequestlogs", 10)
    seed(mongo_db, "apiRequestLogs", 0)
    r = client.get("/collections")
    assert {"name": "apirequestlogs", "documents": 10} in r.json()["collections"]
    plan = client.get("/plan").json()
    assert plan["groups"][0]["canonical"] == "apirequestlogs"
    assert plan["operations"] == [{"op": "drop", "source": "apiRequestLogs", "target": None, "documents": 0}]


def test_similar_threshold_validation(client, mongo_db):
    seed(mongo_db, "skill", 1)
    seed(mongo_db, "skills", 1)
    assert client.get("/similar").json()["pairs"][0]["a"] == "skill"
    assert client.get("/similar", params={"threshold": 0.9}).json()["pairs"] == []
    assert client.get("/similar", params={"threshold": 2}).status_code == 422


def test_verify(client, mongo_db):
    seed(mongo_db, "UserActivity", 1)
    body = client.get("/verify", params={"prefix": "user_"}).json()
    assert body["ok"] is False
    assert body["suggestions"] == {"UserActivity": "user_activity"}


def test_apply_requires_confirm(client, store, mongo_db):
    seed(mongo_db, "skills", 2)
    seed(mongo_db, "skill", 1)
    r = client.post("/apply", json={})
    assert r.status_code == 400
    assert store.collection_names() == ["skill", "skills"]
    r = client.post("/apply", json={"confirm": True})
    assert r.status_code == 200
    assert r.json()["result"]["ok"] is True
    assert store.collection_names() == ["skills"]


def test_apply_with_mapping_body(client, store, mongo_db):
    seed(mongo_db, "featureLimit", 2)
    r = client.post("/apply", json={"confirm": True, "mapping": {"system_featurelimits": ["featureLimit"]}})
    assert r.status_code == 200
    assert store.collection_names() == ["system_featurelimits"]
    assert client.post("/apply", json={"confirm": True, "mapping": {"x": 1}}).status_code == 400


def test_apply_checks_api_key(store):
    settings = Settings(mongo_uri="mongodb://localhost:27017/reconcile_test", api_key="s3cret")
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_settings] = lambda: settings
    try:
        c = TestClient(app)
        assert c.post("/apply", json={"confirm": True}).status_code == 401
        r = c.post("/apply", json={"confirm": True}, headers={"X-API-Key": "s3cret"})
        assert r.status_code == 200
    finally:
        app.dependency_overrides.clear()


def test_apply_rejects_concurrent_run(client, store, mongo_db):
    seed(mongo_db, "skills", 2)
    seed(mongo_db, "skill", 1)
    assert api_module._apply_lock.acquire(blocking=False)
    try:
        r = client.post("/apply", json={"confirm": True})
        assert r.status_code == 409
        assert r.json()["detail"] == "apply_in_progress"
        assert store.collection_names() == ["skill", "skills"]
    finally:
        api_module._apply_lock.release()
    assert client.post("/apply", json={"confirm": True}).status_code == 200
    assert store.collection_names() == ["skills"]


def test_requests_share_one_client(monkeypatch):
    created = []

    class CountingClient:
        def __init__(self, *a, **kw):
            self.closed = False
            created.append(self)

        @property
        def admin(self):
            return self

        def command(self, *a, **kw):
            return {"ok": 1}

        def __getitem__(self, name):
            db = MagicMock()
            db.name = name
            db.client = self
            db.list_collection_names.return_value = []
            return db

        def close(self):
            self.closed = True

    monkeypatch.setattr(db_module, "MongoClient", CountingClient)
    settings = Settings(mongo_uri="mongodb://localhost:27017", db_name="reconcile_test")
    app.dependency_overrides[get_settings] = lambda: settings
    try:
        c = TestClient(app)
        for _ in range(5):
            assert c.get("/collections").json() == {"collections": []}
    finally:
        app.dependency_overrides.clear()
    assert len(created) == 1
    db_module.close_db()
    assert created[0].closed
