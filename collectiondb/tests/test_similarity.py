import sys, pathlib
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import pytest

from scripts.similarity import (
    SIMILARITY_THRESHOLD,
    is_similar,
    levenshtein_distance,
    normalize_name,
    similar_pairs,
    similarity,
)

NAMES = ["", "a", "users", "UserActivity", "api_request_logs", "skillgenix_featurelimits"]


@pytest.mark.parametrize("name", NAMES)
def test_identity(name):
    assert similarity(name, name) == 1.0


@pytest.mark.parametrize("a,b", [("users", "roles"), ("skill", "skills"), ("x", ""), ("apiRequestLogs", "apilogs")])
def test_symmetry(a, b):
    assert similarity(a, b) == similarity(b, a)


def test_case_and_punctuation_ignored():
    assert normalize_name("User-Activity_Logs") == "useractivitylogs"
    assert similarity("UserActivity", "user_activity") == 1.0


def test_empty_inputs():
    assert similarity("", "") == 1.0
    assert similarity("x", "") == 0.0
    assert similarity("", "x") == 0.0
    # only punctuation normalizes to empty
    assert similarity("__", "-") == 1.0


def test_levenshtein_known_values():
    assert levenshtein_distance("kitten", "sitting") == 3
    assert levenshtein_distance("flaw", "lawn") == 2
    assert levenshtein_distance("", "abc") == 3
    assert levenshtein_distance("abc", "abc") == 0


def test_plural_is_close_but_not_identical():
    s = similarity("skill", "skills")
    assert s == pytest.approx(5 / 6)
    assert s < 1.0


def test_threshold_is_inclusive():
    assert SIMILARITY_THRESHOLD == 0.49
    # distance 1 over length 2 -> exactly 0.5
    assert similarity("ab", "ac") == 0.5
    assert is_similar("ab", "ac")
    assert not is_similar("ab", "ac", threshold=0.51)


def test_similar_pairs_sorted_best_first():
    pairs = similar_pairs(["skills", "skill", "userActivity", "user_activity", "zzz"])
    assert [(p.a, p.b) for p in pairs[:2]] == [("userActivity", "user_activity"), ("skill", "skills")]
    assert pairs[0].score == 1.0
    assert all("zzz" not in (p.a, p.b) for p in pairs)
