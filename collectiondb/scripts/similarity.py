"""Name similarity: normalized Levenshtein score between collection names.

Names are lowercased and stripped of non-alphanumerics before comparison, so
``UserActivity`` and ``user_activity`` are identical. No stemming: ``skill``
and ``skills`` are close only because their edit distance is small.
"""
import re
from dataclasses import dataclass
from itertools import combinations
from typing import Iterable, List

# Pairs scoring at or above this are treated as the same concept.
SIMILARITY_THRESHOLD = 0.49

_NON_ALNUM = re.compile(r"[^a-z0-9]")


@dataclass(frozen=True)
class SimilarityPair:
    a: str
    b: str
    score: float

    def as_dict(self) -> dict:
        return {"a": self.a, "b": self.b, "score": round(self.score, 4)}


def normalize_name(name: str) -> str:
    return _NON_ALNUM.sub("", (name or "").lower())


def levenshtein_distance(a: str, b: str) -> int:
    """Edit distance (insert/delete/substitute, unit cost) with two rolling rows."""
    if len(a) < len(b):
        a, b = b, a
    if not b:
        return len(a)
    prev = list(range(len(b) + 1))
    curr = [0] * (len(b) + 1)
    for i in range(1, len(a) + 1):
        curr[0] = i
        ca = a[i - 1]
        for j in range(1, len(b) + 1):
            cost = 0 if ca == b[j - 1] else 1
            curr[j] = min(prev[j] + 1, curr[j - 1] + 1, prev[j - 1] + cost)
        prev, curr = curr, prev
    return prev[len(b)]


def similarity(a: str, b: str) -> float:
    """Score in [0, 1]; 1.0 means identical after normalization."""
    na, nb = normalize_name(a), normalize_name(b)
    max_len = max(len(na), len(nb))
    if max_len == 0:
        return 1.0
    if not na or not nb:
        return 0.0
    return (max_len - levenshtein_distance(na, nb)) / max_len


def is_similar(a: str, b: str, threshold: float = SIMILARITY_THRESHOLD) -> bool:
    return similarity(a, b) >= threshold


def similar_pairs(names: Iterable[str], threshold: float = SIMILARITY_THRESHOLD) -> List[SimilarityPair]:
    """All unordered pairs at or above threshold, best first."""
    out = []
    for a, b in combinations(sorted(set(names)), 2):
        score = similarity(a, b)
        if score >= threshold:
            out.append(SimilarityPair(a, b, score))
    out.sort(key=lambda p: (-p.score, p.a, p.b))
    return out
