"""Naming policy: domain prefixes, casing and multi-word convention.

Used to break canonical-selection ties, to verify a database against the
standard and to suggest standardized names.
"""
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from rapidfuzz import fuzz, process

from .similarity import SIMILARITY_THRESHOLD, SimilarityPair, normalize_name, similar_pairs

_CONVENTION_RE = {
    "snake": re.compile(r"^[a-z][a-z0-9]*(_[a-z0-9]+)*$"),
    "camel": re.compile(r"^[a-z][a-zA-Z0-9]*$"),
}

# keyword -> domain prefix, first hit wins
DOMAIN_KEYWORDS: List[Tuple[Tuple[str, ...], str]] = [
    (("user", "profile"), "user"),
    (("role",), "role"),
    (("skill",), "skill"),
    (("industr",), "industry"),
    (("system", "error", "limit"), "system"),
    (("career", "pathway"), "career"),
    (("api", "request"), "api"),
    (("learn", "resource"), "learning"),
]

STANDARD_MATCH_MIN = 80


@dataclass
class NamingPolicy:
    prefixes: List[str] = field(default_factory=list)
    convention: str = "snake"
    standard_names: List[str] = field(default_factory=list)

    def has_prefix(self, name: str) -> bool:
        if not self.prefixes:
            return True
        return any(name.startswith(p) for p in self.prefixes)

    @staticmethod
    def is_lowercase(name: str) -> bool:
        return name == name.lower()

    def matches_convention(self, name: str) -> bool:
        return bool(_CONVENTION_RE[self.convention].match(name))

    def canonical_sort_key(self, name: str, count: int) -> tuple:
        """Smallest key wins: most documents, prefixed, lowercase, shortest."""
        return (-count, not self.has_prefix(name), not self.is_lowercase(name), len(name))

    def suggest_name(self, name: str) -> Optional[str]:
        """Standardized name for `name`, or None when it already conforms."""
        if self.standard_names:
            hit = process.extractOne(
                name, self.standard_names,
                scorer=fuzz.ratio, processor=normalize_name, score_cutoff=STANDARD_MATCH_MIN,
            )
            if hit:
                return None if hit[0] == name else hit[0]
        if self.has_prefix(name) and self.is_lowercase(name) and self.matches_convention(name):
            return None
        base = name
        for p in self.prefixes:
            if base.startswith(p):
                base = base[len(p):]
                break
        base = normalize_name(base)
        prefix = self._domain_prefix(name)
        if prefix and base.startswith(prefix):
            rest = base[len(prefix):]
            if len(rest) >= 3:
                base = rest
            elif not self.prefixes:
                # single-word domain name such as "users"
                prefix = None
        if not prefix:
            suggestion = base
        elif self.convention == "camel":
            suggestion = f"{prefix}{base[:1].upper()}{base[1:]}"
        else:
            suggestion = f"{prefix}_{base}"
        return suggestion if suggestion and suggestion != name else None

    def _domain_prefix(self, name: str) -> Optional[str]:
        low = name.lower()
        for keywords, prefix in DOMAIN_KEYWORDS:
            if any(k in low for k in keywords):
                for p in self.prefixes:
                    if p.rstrip("_").startswith(prefix):
                        return p.rstrip("_")
                return prefix
        return None

    def verify(self, names: Sequence[str], threshold: float = SIMILARITY_THRESHOLD) -> "VerificationReport":
        names = sorted(names)
        rep = VerificationReport(
            missing_prefix=[n for n in names if not self.has_prefix(n)],
            uppercase=[n for n in names if not self.is_lowercase(n)],
            bad_convention=[n for n in names if not self.matches_convention(n)],
            similar=similar_pairs(names, threshold),
        )
        for n in sorted(set(rep.missing_prefix) | set(rep.uppercase) | set(rep.bad_convention)):
            s = self.suggest_name(n)
            if s and s != n:
                rep.suggestions[n] = s
        return rep


@dataclass
class VerificationReport:
    missing_prefix: List[str] = field(default_factory=list)
    uppercase: List[str] = field(default_factory=list)
    bad_convention: List[str] = field(default_factory=list)
    similar: List[SimilarityPair] = field(default_factory=list)
    suggestions: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not (self.missing_prefix or self.uppercase or self.bad_convention or self.similar)

    def as_dict(self) -> dict:
        return {
            "ok": self.ok,
            "missing_prefix": self.missing_prefix,
            "uppercase": self.uppercase,
            "bad_convention": self.bad_convention,
            "similar": [p.as_dict() for p in self.similar],
            "suggestions": self.suggestions,
        }
