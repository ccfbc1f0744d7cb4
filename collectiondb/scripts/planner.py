"""Reconciliation planning.

Groups near-duplicate collection names transitively (union-find), picks one
canonical survivor per group and emits the ordered operations that converge
the group on it. Planning never touches the store.

    groups   = connected components of the "similar" relation
    canonical = most documents, then prefixed, then lowercase, then shortest
    members  = merge (if they hold documents) then drop
"""
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence

from .errors import AmbiguousGroupError, ConfigError
from .naming import NamingPolicy
from .similarity import SIMILARITY_THRESHOLD, similarity
from .store import CollectionInfo

logger = logging.getLogger(__name__)


class OpKind(str, Enum):
    RENAME = "rename"
    MERGE = "merge"
    DROP = "drop"


@dataclass(frozen=True)
class PlanOperation:
    kind: OpKind
    source: str
    target: Optional[str] = None
    documents: int = 0

    def describe(self) -> str:
        if self.kind is OpKind.RENAME:
            return f"rename {self.source} -> {self.target}"
        if self.kind is OpKind.MERGE:
            return f"merge {self.source} -> {self.target} ({self.documents} docs)"
        return f"drop {self.source}"

    def as_dict(self) -> dict:
        return {"op": self.kind.value, "source": self.source, "target": self.target, "documents": self.documents}


@dataclass
class DuplicateGroup:
    members: List[str]
    counts: Dict[str, int]
    canonical: str
    reason: str
    operations: List[PlanOperation] = field(default_factory=list)
    field_map: Dict[str, str] = field(default_factory=dict)
    # mapping targets that do not exist yet and are not created by a rename
    create_canonical: bool = False

    @property
    def sources(self) -> List[str]:
        return [m for m in self.members if m != self.canonical]

    def as_dict(self) -> dict:
        return {
            "members": self.members,
            "counts": self.counts,
            "canonical": self.canonical,
            "reason": self.reason,
            "operations": [op.as_dict() for op in self.operations],
            "field_map": self.field_map,
        }


@dataclass
class UnresolvedGroup:
    members: List[str]
    reason: str

    def as_dict(self) -> dict:
        return {"members": self.members, "reason": self.reason}


@dataclass
class MergePlan:
    groups: List[DuplicateGroup] = field(default_factory=list)
    unresolved: List[UnresolvedGroup] = field(default_factory=list)
    threshold: float = SIMILARITY_THRESHOLD

    @property
    def operations(self) -> List[PlanOperation]:
        return [op for g in self.groups for op in g.operations]

    @property
    def is_empty(self) -> bool:
        return not self.operations

    def as_dict(self) -> dict:
        return {
            "threshold": self.threshold,
            "groups": [g.as_dict() for g in self.groups],
            "unresolved": [u.as_dict() for u in self.unresolved],
            "operations": [op.as_dict() for op in self.operations],
        }


class UnionFind:
    """Disjoint set with path compression and union by rank."""

    def __init__(self, items: Iterable[str] = ()):
        self._parent: Dict[str, str] = {}
        self._rank: Dict[str, int] = {}
        for x in items:
            self.add(x)

    def add(self, x: str) -> None:
        if x not in self._parent:
            self._parent[x] = x
            self._rank[x] = 0

    def find(self, x: str) -> str:
        self.add(x)
        root = x
        while self._parent[root] != root:
            root = self._parent[root]
        while self._parent[x] != root:
            self._parent[x], x = root, self._parent[x]
        return root

    def union(self, x: str, y: str) -> bool:
        rx, ry = self.find(x), self.find(y)
        if rx == ry:
            return False
        if self._rank[rx] < self._rank[ry]:
            rx, ry = ry, rx
        self._parent[ry] = rx
        if self._rank[rx] == self._rank[ry]:
            self._rank[rx] += 1
        return True

    def groups(self) -> List[List[str]]:
        out: Dict[str, List[str]] = {}
        for x in self._parent:
            out.setdefault(self.find(x), []).append(x)
        return sorted((sorted(g) for g in out.values()), key=lambda g: g[0])


def group_similar(names: Sequence[str], threshold: float = SIMILARITY_THRESHOLD) -> List[List[str]]:
    """Transitive closure of the similar relation; singletons included."""
    names = sorted(set(names))
    uf = UnionFind(names)
    for i, a in enumerate(names):
        for b in names[i + 1:]:
            if similarity(a, b) >= threshold:
                uf.union(a, b)
    return uf.groups()


def choose_canonical(counts: Dict[str, int], policy: NamingPolicy):
    """Return (canonical, reason); raise AmbiguousGroupError on a full tie."""
    ranked = sorted(counts, key=lambda n: (policy.canonical_sort_key(n, counts[n]), n))
    best, runner = ranked[0], ranked[1]
    kb = policy.canonical_sort_key(best, counts[best])
    kr = policy.canonical_sort_key(runner, counts[runner])
    if kb == kr:
        raise AmbiguousGroupError([n for n in ranked if policy.canonical_sort_key(n, counts[n]) == kb])
    labels = ("most documents", "has required prefix", "already lowercase", "shortest name")
    reason = next(label for label, a, b in zip(labels, kb, kr) if a != b)
    return best, f"{reason} ({counts[best]} docs)"


def _member_ops(members: Iterable[str], counts: Dict[str, int], canonical: str) -> List[PlanOperation]:
    ops = []
    for m in members:
        if m == canonical:
            continue
        n = counts.get(m, 0)
        if n > 0:
            ops.append(PlanOperation(OpKind.MERGE, m, canonical, n))
        ops.append(PlanOperation(OpKind.DROP, m))
    return ops


def build_plan(
    collections: Sequence[CollectionInfo],
    policy: Optional[NamingPolicy] = None,
    threshold: float = SIMILARITY_THRESHOLD,
) -> MergePlan:
    policy = policy or NamingPolicy()
    counts = {c.name: c.document_count for c in collections}
    plan = MergePlan(threshold=threshold)
    for members in group_similar(list(counts), threshold):
        if len(members) < 2:
            continue
        group_counts = {m: counts[m] for m in members}
        try:
            canonical, reason = choose_canonical(group_counts, policy)
        except AmbiguousGroupError as e:
            logger.info(f"unresolved group {members}: {e}")
            plan.unresolved.append(UnresolvedGroup(members, str(e)))
            continue
        logger.info(f"group {members} canonical={canonical} ({reason})")
        plan.groups.append(DuplicateGroup(
            members=members,
            counts=group_counts,
            canonical=canonical,
            reason=reason,
            operations=_member_ops(members, group_counts, canonical),
        ))
    return plan


@dataclass
class MappingRule:
    target: str
    sources: List[str]
    field_map: Dict[str, str] = field(default_factory=dict)


def parse_mapping(raw: dict) -> List[MappingRule]:
    """{"target": ["a", "b"]} or {"target": {"sources": [...], "fields": {...}}}."""
    if not isinstance(raw, dict):
        raise ConfigError("mapping must be a JSON object")
    rules = []
    for target, entry in raw.items():
        if isinstance(entry, list):
            rules.append(MappingRule(target, [str(s) for s in entry]))
        elif isinstance(entry, dict):
            rules.append(MappingRule(
                target,
                [str(s) for s in entry.get("sources") or []],
                {str(k): str(v) for k, v in (entry.get("fields") or {}).items()},
            ))
        else:
            raise ConfigError(f"mapping for {target!r} must be a list or an object")
    return rules


def load_mapping(path) -> List[MappingRule]:
    try:
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        raise ConfigError(f"cannot read mapping {path}: {e}") from e
    return parse_mapping(raw)


def plan_from_mapping(collections: Sequence[CollectionInfo], rules: Sequence[MappingRule]) -> MergePlan:
    """Plan for an explicit target <- sources map; the target is always canonical."""
    counts = {c.name: c.document_count for c in collections}
    plan = MergePlan()
    for rule in rules:
        present = [s for s in dict.fromkeys(rule.sources) if s in counts and s != rule.target]
        if not present:
            continue
        group_counts = {s: counts[s] for s in present}
        ops: List[PlanOperation] = []
        create = False
        if rule.target in counts:
            group_counts[rule.target] = counts[rule.target]
            reason = "mapping target"
            remaining = present
        elif not rule.field_map:
            first = sorted(present, key=lambda s: (-counts[s], s))[0]
            ops.append(PlanOperation(OpKind.RENAME, first, rule.target, counts[first]))
            reason = f"mapping target (renamed from {first})"
            remaining = [s for s in present if s != first]
        else:
            create = True
            reason = "mapping target (created)"
            remaining = present
        ops.extend(_member_ops(remaining, group_counts, rule.target))
        plan.groups.append(DuplicateGroup(
            members=sorted(set(group_counts) | {rule.target}),
            counts=group_counts,
            canonical=rule.target,
            reason=reason,
            operations=ops,
            field_map=dict(rule.field_map),
            create_canonical=create,
        ))
    return plan


def format_plan(plan: MergePlan) -> str:
    lines = [f"Duplicate groups: {len(plan.groups)} (threshold {plan.threshold:.2f})"]
    for g in plan.groups:
        members = ", ".join(f"{m} ({g.counts.get(m, 0)})" for m in g.members)
        lines.append(f"\n- {members}")
        lines.append(f"  canonical: {g.canonical} [{g.reason}]")
        for op in g.operations:
            lines.append(f"    {op.describe()}")
    if plan.unresolved:
        lines.append(f"\nUnresolved groups: {len(plan.unresolved)} (need a name decision)")
        for u in plan.unresolved:
            lines.append(f"- {', '.join(u.members)}: {u.reason}")
    if plan.is_empty:
        lines.append("\nNothing to do.")
    else:
        lines.append(f"\nOperations: {len(plan.operations)}")
    return "\n".join(lines)
