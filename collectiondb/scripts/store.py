"""MongoStore: the narrow document-store surface the reconciler needs.

Wraps a pymongo Database (or anything API-compatible with it) and translates
driver errors into collectiondb errors.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List

from pymongo.errors import CollectionInvalid, ConnectionFailure, OperationFailure, PyMongoError

from .errors import DocumentCopyError, RenameConflictError, StoreConnectionError

logger = logging.getLogger(__name__)

SYSTEM_PREFIX = "system."


@dataclass(frozen=True)
class CollectionInfo:
    name: str
    document_count: int = 0


class MongoStore:
    def __init__(self, db):
        self._db = db

    @property
    def name(self) -> str:
        return getattr(self._db, "name", "")

    def ping(self) -> bool:
        try:
            self._db.command("ping")
        except PyMongoError as e:
            raise StoreConnectionError(f"mongo_ping_failed: {e}") from e
        return True

    def collection_names(self) -> List[str]:
        try:
            names = self._db.list_collection_names()
        except PyMongoError as e:
            raise StoreConnectionError(f"list_collections failed: {e}") from e
        return sorted(n for n in names if not n.startswith(SYSTEM_PREFIX))

    def list_collections(self) -> List[CollectionInfo]:
        """Non-system collections with approximate (metadata) document counts."""
        out = []
        for name in self.collection_names():
            try:
                count = self._db[name].estimated_document_count()
            except PyMongoError as e:
                raise StoreConnectionError(f"count failed for {name}: {e}") from e
            out.append(CollectionInfo(name, int(count)))
        return out

    def exists(self, name: str) -> bool:
        return name in self.collection_names()

    def count_documents(self, name: str) -> int:
        try:
            return int(self._db[name].count_documents({}))
        except PyMongoError as e:
            raise StoreConnectionError(f"count failed for {name}: {e}") from e

    def find_all(self, name: str) -> Iterator[Dict[str, Any]]:
        # new cursor per call, so iteration can restart from the top
        try:
            for doc in self._db[name].find({}):
                yield doc
        except PyMongoError as e:
            raise StoreConnectionError(f"read failed for {name}: {e}") from e

    def find_matching(self, name: str, query: Dict[str, Any]) -> List[Dict[str, Any]]:
        try:
            return list(self._db[name].find(query))
        except PyMongoError as e:
            raise StoreConnectionError(f"lookup failed for {name}: {e}") from e

    def insert(self, name: str, document: Dict[str, Any]) -> Any:
        """Insert one document; the store assigns _id.

        Losing the server is fatal (StoreConnectionError); anything else the
        server rejects is a per-document DocumentCopyError.
        """
        doc = {k: v for k, v in document.items() if k != "_id"}
        try:
            return self._db[name].insert_one(doc).inserted_id
        except ConnectionFailure as e:
            raise StoreConnectionError(f"insert into {name} failed: {e}") from e
        except PyMongoError as e:
            raise DocumentCopyError(name, document.get("_id"), e) from e

    def rename(self, source: str, target: str, overwrite: bool = False) -> None:
        if not overwrite and self.exists(target):
            raise RenameConflictError(source, target)
        try:
            if overwrite:
                self._db[source].rename(target, dropTarget=True)
            else:
                self._db[source].rename(target)
        except OperationFailure as e:
            raise RenameConflictError(source, target, str(e)) from e
        except PyMongoError as e:
            raise StoreConnectionError(f"rename {source} -> {target} failed: {e}") from e
        logger.info(f"renamed {source} -> {target}")

    def drop(self, name: str) -> None:
        try:
            self._db.drop_collection(name)
        except PyMongoError as e:
            raise StoreConnectionError(f"drop {name} failed: {e}") from e
        logger.info(f"dropped {name}")

    def create(self, name: str) -> bool:
        if self.exists(name):
            return False
        try:
            self._db.create_collection(name)
        except CollectionInvalid:
            return False
        except PyMongoError as e:
            raise StoreConnectionError(f"create {name} failed: {e}") from e
        return True
