import re
from typing import FrozenSet

_NON_ALNUM = re.compile(r"[^a-z0-9]")


def normalize_name(value: str) -> str:
    """Lowercase and keep only ASCII letters and digits."""
    if not value:
        return ""
    return _NON_ALNUM.sub("", value.lower())


def bigrams(value: str) -> FrozenSet[str]:
    return frozenset(value[i:i + 2] for i in range(len(value) - 1))


def dice_coefficient(a: str, b: str) -> float:
    """
    Sorensen-Dice similarity over the sets of 2-character substrings.

    Case-insensitive. Identical strings score 1.0, empty input or a string
    shorter than two characters scores 0.
    """
    if not a or not b:
        return 0.0
    s1, s2 = a.lower(), b.lower()
    if s1 == s2:
        return 1.0
    if len(s1) < 2 or len(s2) < 2:
        return 0.0
    return dice_from_bigrams(bigrams(s1), bigrams(s2))


def dice_from_bigrams(first: FrozenSet[str], second: FrozenSet[str]) -> float:
    total = len(first) + len(second)
    if total == 0:
        return 0.0
    return 2.0 * len(first & second) / total


def containment_ratio(a: str, b: str, min_length: int = 4) -> float:
    """
    Ratio shorter/longer when one string contains the other, else 0.

    Both strings must be at least `min_length` long.
    """
    if len(a) < min_length or len(b) < min_length:
        return 0.0
    if a not in b and b not in a:
        return 0.0
    shorter, longer = sorted((len(a), len(b)))
    return shorter / longer
