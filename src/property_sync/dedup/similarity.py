"""Text normalization and similarity scores used by the matching strategies.

Every score is a float in ``[0, 1]``. Token-set similarity is always
intersection over union.
"""

from __future__ import annotations

import re
from collections.abc import Iterable

_NON_WORD = re.compile(r"[^\w\s]")
_NON_DIGIT = re.compile(r"\D")

ADDRESS_ABBREVIATIONS: dict[str, str] = {
    "st": "street",
    "ave": "avenue",
    "dr": "drive",
    "rd": "road",
    "blvd": "boulevard",
    "ln": "lane",
    "pkwy": "parkway",
    "hwy": "highway",
    "apt": "apartment",
    "ste": "suite",
}


def tokens(text: str | None) -> list[str]:
    """Lowercase, replace punctuation with spaces, split on whitespace."""

    if not text:
        return []
    return _NON_WORD.sub(" ", text.lower()).split()


def normalize_address(address: str | None) -> str:
    return " ".join(ADDRESS_ABBREVIATIONS.get(t, t) for t in tokens(address))


def normalize_phone(phone: str | None) -> str:
    return _NON_DIGIT.sub("", phone or "")


def normalize_email(email: str | None) -> str:
    return (email or "").strip().lower()


def jaccard(left: Iterable[str], right: Iterable[str]) -> float:
    a, b = set(left), set(right)
    union = a | b
    if not union:
        return 0.0
    return len(a & b) / len(union)


def levenshtein(a: str, b: str) -> int:
    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            current.append(
                min(
                    previous[j] + 1,
                    current[j - 1] + 1,
                    previous[j - 1] + (ca != cb),
                )
            )
        previous = current
    return previous[-1]


def name_similarity(left: str | None, right: str | None) -> float:
    """``1 - distance / max(len)`` on case-folded names. Two empty names are equal."""

    a, b = (left or "").lower(), (right or "").lower()
    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0
    return 1.0 - levenshtein(a, b) / longest


def address_similarity(left: str | None, right: str | None) -> float:
    a, b = normalize_address(left), normalize_address(right)
    if a and a == b:
        return 1.0
    return jaccard(a.split(), b.split())


def description_similarity(left: str | None, right: str | None) -> float:
    return jaccard(tokens(left), tokens(right))
