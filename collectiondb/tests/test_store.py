import sys, pathlib
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from unittest.mock import MagicMock

import pytest
from pymongo.errors import AutoReconnect, NetworkTimeout, NotPrimaryError, ServerSelectionTimeoutError

from conftest import seed
from scripts.errors import DocumentCopyError, RenameConflictError, StoreConnectionError
from scripts.store import CollectionInfo, MongoStore


def test_system_collections_are_hidden():
    db = MagicMock()
    db.list_collection_names.return_value = ["users", "system.views", "roles"]
    assert MongoStore(db).collection_names() == ["roles", "users"]


def test_list_collections_counts(store, mongo_db):
    seed(mongo_db, "skills", 3)
    seed(mongo_db, "roles", 0)
    assert store.list_collections() == [CollectionInfo("roles", 0), CollectionInfo("skills", 3)]
    assert store.count_documents("skills") == 3
    assert store.exists("roles") and not store.exists("nope")


def test_insert_strips_identity(store, mongo_db):
    seed(mongo_db, "skills", 1)
    doc = mongo_db["skills"].find_one()
    new_id = store.insert("skills", doc)
    assert new_id != doc["_id"]
    assert store.count_documents("skills") == 2


def test_insert_failure_is_document_copy_error(store, mongo_db):
    mongo_db["users"].create_index("email", unique=True)
    mongo_db["users"].insert_one({"email": "a@x.io"})
    with pytest.raises(DocumentCopyError) as ei:
        store.insert("users", {"_id": "src-1", "email": "a@x.io"})
    assert ei.value.collection == "users"
    assert ei.value.document_id == "src-1"


def test_rename(store, mongo_db):
    seed(mongo_db, "userActivity", 2)
    seed(mongo_db, "roles", 1)
    store.rename("userActivity", "user_activity")
    assert store.collection_names() == ["roles", "user_activity"]
    with pytest.raises(RenameConflictError):
        store.rename("user_activity", "roles")
    assert store.count_documents("user_activity") == 2


def test_drop_and_create(store, mongo_db):
    assert store.create("tests")
    assert not store.create("tests")
    store.drop("tests")
    assert not store.exists("tests")


def test_list_failure_is_connection_error():
    db = MagicMock()
    db.list_collection_names.side_effect = ServerSelectionTimeoutError("down")
    with pytest.raises(StoreConnectionError):
        MongoStore(db).list_collections()


def test_ping_failure():
    db = MagicMock()
    db.command.side_effect = ServerSelectionTimeoutError("down")
    with pytest.raises(StoreConnectionError):
        MongoStore(db).ping()


@pytest.mark.parametrize("exc", [
    AutoReconnect("primary stepped down"),
    NotPrimaryError("not primary"),
    ServerSelectionTimeoutError("no servers"),
])
def test_insert_connection_loss_is_fatal(exc):
    db = MagicMock()
    db.__getitem__.return_value.insert_one.side_effect = exc
    with pytest.raises(StoreConnectionError):
        MongoStore(db).insert("careerpathways", {"_id": 1, "n": 0})


def test_reads_and_drop_translate_driver_errors():
    db = MagicMock()
    coll = db.__getitem__.return_value
    coll.find.side_effect = NetworkTimeout("timed out")
    coll.count_documents.side_effect = AutoReconnect("reset")
    db.drop_collection.side_effect = ServerSelectionTimeoutError("down")
    store = MongoStore(db)
    with pytest.raises(StoreConnectionError):
        list(store.find_all("skills"))
    with pytest.raises(StoreConnectionError):
        store.find_matching("skills", {"n": 1})
    with pytest.raises(StoreConnectionError):
        store.count_documents("skills")
    with pytest.raises(StoreConnectionError):
        store.drop("skills")


def test_cursor_failure_mid_iteration():
    def cursor():
        yield {"_id": 1, "n": 0}
        raise AutoReconnect("connection reset by peer")

    db = MagicMock()
    db.__getitem__.return_value.find.return_value = cursor()
    docs = MongoStore(db).find_all("skills")
    assert next(docs)["n"] == 0
    with pytest.raises(StoreConnectionError):
        next(docs)


def test_find_matching_returns_every_match(store, mongo_db):
    mongo_db["skills"].insert_many([{"name": "sql", "v": 1}, {"name": "sql", "v": 2}, {"name": "go"}])
    assert sorted(d["v"] for d in store.find_matching("skills", {"name": "sql"})) == [1, 2]
