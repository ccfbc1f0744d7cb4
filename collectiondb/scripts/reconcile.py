"""Apply a MergePlan against a live store.

Preconditions: no application traffic writes to the affected collections
while a run is in progress (maintenance window). Runs are sequential.

Per group:
  1) re-read live names; bail out (unresolved, untouched) on stale state or a
     rename conflict
  2) merge each source into the canonical collection document by document
     (``_id`` stripped, already-present documents skipped, failures logged)
  3) drop the source only after its merge finished
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List

from pymongo.errors import ConnectionFailure

from .errors import DocumentCopyError, ReconcileError, RenameConflictError, StaleStateError, StoreConnectionError
from .planner import DuplicateGroup, MergePlan, OpKind, UnresolvedGroup

logger = logging.getLogger(__name__)


class CollectionState(str, Enum):
    UNTOUCHED = "untouched"
    CANONICAL = "canonical"
    MERGE_SOURCE = "merge_source"
    MERGING = "merging"
    DROPPED = "dropped"
    UNRESOLVED = "unresolved"


_ALLOWED = {
    CollectionState.UNTOUCHED: {CollectionState.CANONICAL, CollectionState.MERGE_SOURCE, CollectionState.UNRESOLVED},
    CollectionState.MERGE_SOURCE: {CollectionState.MERGING},
    CollectionState.MERGING: {CollectionState.DROPPED},
}


class InvalidTransition(ReconcileError):
    pass


class _Interrupted(Exception):
    pass


@dataclass
class ApplyResult:
    resolved: List[str] = field(default_factory=list)
    unresolved: List[UnresolvedGroup] = field(default_factory=list)
    copied: int = 0
    duplicates: int = 0
    failed: List[Dict[str, Any]] = field(default_factory=list)
    interrupted: bool = False
    states: Dict[str, CollectionState] = field(default_factory=dict)

    @property
    def skipped(self) -> int:
        return len(self.failed)

    @property
    def ok(self) -> bool:
        return not (self.unresolved or self.failed or self.interrupted)

    def move(self, name: str, state: CollectionState) -> None:
        cur = self.states.get(name, CollectionState.UNTOUCHED)
        if state not in _ALLOWED.get(cur, set()):
            raise InvalidTransition(f"{name}: {cur.value} -> {state.value}")
        self.states[name] = state

    def summary(self) -> str:
        return (f"{len(self.resolved)} groups resolved, {len(self.unresolved)} groups unresolved, "
                f"{self.skipped} documents skipped")

    def as_dict(self) -> dict:
        return {
            "ok": self.ok,
            "summary": self.summary(),
            "resolved": self.resolved,
            "unresolved": [u.as_dict() for u in self.unresolved],
            "copied": self.copied,
            "duplicates": self.duplicates,
            "failed": self.failed,
            "interrupted": self.interrupted,
            "states": {k: v.value for k, v in sorted(self.states.items())},
        }


class ReconcileExecutor:
    def __init__(self, store, skip_existing: bool = True, stop_event=None):
        self.store = store
        self.skip_existing = skip_existing
        self.stop_event = stop_event

    def _stopped(self) -> bool:
        return self.stop_event is not None and self.stop_event.is_set()

    def apply(self, plan: MergePlan) -> ApplyResult:
        result = ApplyResult()
        for u in plan.unresolved:
            result.unresolved.append(u)
            for m in u.members:
                result.move(m, CollectionState.UNRESOLVED)
        groups = list(plan.groups)
        for i, group in enumerate(groups):
            if self._stopped():
                self._abandon(groups[i:], result)
                break
            try:
                self._apply_group(group, result)
            except StoreConnectionError as e:
                logger.error(f"store failure in group {group.canonical}; aborting run: {e}")
                raise
            except _Interrupted as e:
                logger.warning(f"interrupted while merging {e}; group {group.canonical} left partial")
                result.unresolved.append(UnresolvedGroup(group.members, f"interrupted during {e}"))
                self._abandon(groups[i + 1:], result)
                break
            except (RenameConflictError, StaleStateError) as e:
                logger.warning(f"group {group.members} unresolved: {e}")
                result.unresolved.append(UnresolvedGroup(group.members, str(e)))
                for m in group.members:
                    if result.states.get(m, CollectionState.UNTOUCHED) is CollectionState.UNTOUCHED:
                        result.move(m, CollectionState.UNRESOLVED)
            else:
                result.resolved.append(group.canonical)
        logger.info(result.summary())
        return result

    def _abandon(self, groups: List[DuplicateGroup], result: ApplyResult) -> None:
        result.interrupted = True
        for g in groups:
            result.unresolved.append(UnresolvedGroup(g.members, "interrupted"))
            for m in g.members:
                if result.states.get(m, CollectionState.UNTOUCHED) is CollectionState.UNTOUCHED:
                    result.move(m, CollectionState.UNRESOLVED)

    def _check_live(self, group: DuplicateGroup, live: set) -> None:
        missing = [m for m in group.counts if m not in live]
        if missing:
            raise StaleStateError(f"stale state: missing {', '.join(missing)}")
        renames = [op for op in group.operations if op.kind is OpKind.RENAME]
        for op in renames:
            if op.target in live:
                raise RenameConflictError(op.source, op.target)
        if group.canonical not in live and not renames and not group.create_canonical:
            raise StaleStateError(f"stale state: canonical {group.canonical} missing")

    def _apply_group(self, group: DuplicateGroup, result: ApplyResult) -> None:
        self._check_live(group, set(self.store.collection_names()))
        ops = list(group.operations)
        if ops and ops[0].kind is OpKind.RENAME:
            # nothing has been mutated yet, so a conflict here still leaves the group untouched
            op = ops.pop(0)
            self.store.rename(op.source, op.target)
            result.move(op.source, CollectionState.MERGE_SOURCE)
            result.move(op.source, CollectionState.MERGING)
            result.move(op.source, CollectionState.DROPPED)
        elif group.create_canonical:
            self.store.create(group.canonical)
        result.move(group.canonical, CollectionState.CANONICAL)
        for m in group.sources:
            if result.states.get(m, CollectionState.UNTOUCHED) is CollectionState.UNTOUCHED:
                result.move(m, CollectionState.MERGE_SOURCE)

        for op in ops:
            if op.kind is OpKind.MERGE:
                result.move(op.source, CollectionState.MERGING)
                self._merge(op.source, group.canonical, group.field_map, result)
            elif op.kind is OpKind.DROP:
                if result.states.get(op.source) is CollectionState.MERGE_SOURCE:
                    result.move(op.source, CollectionState.MERGING)
                    if self.store.count_documents(op.source) > 0:
                        logger.info(f"{op.source} gained documents since planning; merging before drop")
                        self._merge(op.source, group.canonical, group.field_map, result)
                if self._stopped():
                    raise _Interrupted(op.source)
                self.store.drop(op.source)
                result.move(op.source, CollectionState.DROPPED)
            else:
                raise StaleStateError(f"unexpected {op.describe()} after the first operation")
        logger.info(f"group resolved canonical={group.canonical} sources={group.sources}")

    def _merge(self, source: str, target: str, field_map: Dict[str, str], result: ApplyResult) -> None:
        copied = 0
        try:
            for doc in self.store.find_all(source):
                if self._stopped():
                    raise _Interrupted(source)
                new_doc = {field_map.get(k, k): v for k, v in doc.items() if k != "_id"}
                if self.skip_existing and self._already_present(target, new_doc):
                    result.duplicates += 1
                    continue
                try:
                    self.store.insert(target, new_doc)
                except DocumentCopyError as e:
                    logger.warning(f"skip doc collection={source} id={doc.get('_id')}: {e.cause}")
                    result.failed.append({"collection": source, "document_id": str(doc.get("_id")),
                                          "error": str(e.cause)})
                    continue
                copied += 1
                result.copied += 1
        except ConnectionFailure as e:
            raise StoreConnectionError(f"lost connection while merging {source}: {e}") from e
        logger.info(f"merged {source} -> {target} copied={copied}")

    def _already_present(self, target: str, doc: Dict[str, Any]) -> bool:
        """True when the target holds a document equal to `doc` on every non-_id field."""
        for candidate in self.store.find_matching(target, doc):
            if {k: v for k, v in candidate.items() if k != "_id"} == doc:
                return True
        return False
