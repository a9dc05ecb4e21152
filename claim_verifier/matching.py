"""
Fuzzy grantor-name matching.

Grantor names arrive typed by hand, OCR'd from a title document, or both:
"Nii Adjei Onano & Bros." on one claim, "NII ADJEI ONANO AND BROTHERS" on
the next. Exact comparison misses these, so names are normalised first and
then compared with a SequenceMatcher ratio.

Strategy:
  1. Lowercase, strip punctuation, expand common abbreviations, drop honorifics
  2. Substring containment of the normalised forms counts as a match
  3. Otherwise accept a SequenceMatcher ratio at or above MATCH_THRESHOLD
"""

from __future__ import annotations

import re
from difflib import SequenceMatcher

# Minimum fuzzy-match score to accept (0.0 = no match, 1.0 = exact)
MATCH_THRESHOLD = 0.80

# Names shorter than this are too ambiguous to look up
MIN_NAME_LENGTH = 2

_ABBREVIATION_EXPANSIONS: dict[str, str] = {
    "&": "and",
    "bros": "brothers",
    "co": "company",
    "comm": "commission",
    "corp": "corporation",
    "dept": "department",
    "assoc": "association",
    "ltd": "limited",
    "st": "saint",
}

_HONORIFICS = frozenset({"mr", "mrs", "ms", "miss", "dr", "hon", "rev"})


def normalize_name(name: str) -> str:
    """Canonical comparison form of a person or organisation name.

    Example:
        "Dr. Kofi  Mensah & Co." → "kofi mensah and company"
    """
    cleaned = re.sub(r"[^\w&\s]", " ", name.lower())
    tokens = []
    for token in cleaned.split():
        token = _ABBREVIATION_EXPANSIONS.get(token, token)
        if token in _HONORIFICS:
            continue
        tokens.append(token)
    return " ".join(tokens)


def name_similarity(a: str, b: str) -> float:
    return SequenceMatcher(None, normalize_name(a), normalize_name(b)).ratio()


def names_match(a: str | None, b: str | None) -> bool:
    """True when two names plausibly refer to the same grantor."""
    if not a or not b:
        return False
    left, right = normalize_name(a), normalize_name(b)
    if len(left) < MIN_NAME_LENGTH or len(right) < MIN_NAME_LENGTH:
        return False
    if left == right or left in right or right in left:
        return True
    return SequenceMatcher(None, left, right).ratio() >= MATCH_THRESHOLD
