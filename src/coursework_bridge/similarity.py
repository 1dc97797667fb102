from __future__ import annotations

import re

from rapidfuzz.distance import Levenshtein

CONTAINMENT_SCORE = 0.8

_NON_ALNUM = re.compile(r"[^a-z0-9]")


def normalize(value: str) -> str:
    return _NON_ALNUM.sub("", (value or "").lower())


def similarity(a: str, b: str) -> float:
    """Score two names in [0, 1].

    Both sides are lowercased and stripped to ``[a-z0-9]``. Equal strings
    score 1.0 and an empty side scores 0.0. If one string contains the other
    the score is fixed at 0.8 whatever the length ratio, so short course codes
    such as ``cs`` still match ``cs170``. Everything else falls back to
    ``1 - edit_distance / max_len`` with unit-cost insert/delete/substitute.
    """
    left = normalize(a)
    right = normalize(b)

    if left == right:
        return 1.0
    if not left or not right:
        return 0.0
    if left in right or right in left:
        return CONTAINMENT_SCORE

    distance = Levenshtein.distance(left, right)
    return 1.0 - distance / max(len(left), len(right))
