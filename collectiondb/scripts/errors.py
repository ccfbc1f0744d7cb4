"""Error taxonomy for reconciliation runs.

Fatal errors (config, connection) abort before any mutation. The others are
recovered locally: the affected group is marked unresolved, or the affected
document is skipped.
"""
from typing import Any, Optional


class ReconcileError(Exception):
    """Base class for every error raised by collectiondb."""


class ConfigError(ReconcileError):
    """Missing or invalid configuration."""


class StoreConnectionError(ReconcileError):
    """The document store is unreachable."""


class AmbiguousGroupError(ReconcileError):
    """Canonical selection tied on every criterion."""

    def __init__(self, members, message: str = "ambiguous canonical"):
        self.members = list(members)
        super().__init__(f"{message}: {', '.join(self.members)}")


class DocumentCopyError(ReconcileError):
    """A single document could not be inserted into the canonical collection."""

    def __init__(self, collection: str, document_id: Any = None, cause: Optional[BaseException] = None):
        self.collection = collection
        self.document_id = document_id
        self.cause = cause
        super().__init__(f"copy failed collection={collection} doc={document_id}: {cause}")


class StaleStateError(ReconcileError):
    """The live collections no longer match what the plan was built from."""


class RenameConflictError(ReconcileError):
    """The rename target already exists (or the live state changed under us)."""

    def __init__(self, source: str, target: str, message: str = "target already exists"):
        self.source = source
        self.target = target
        super().__init__(f"rename {source} -> {target}: {message}")
