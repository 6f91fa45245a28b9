# src/entity_extraction.py
import re
from typing import Iterable, List

# Facility, provider, demographic and date noise around the medicine lines
NOISE_PATTERNS = [
    re.compile(r"\b(hospital|clinic|medical|center|dr\.|doctor|patient|age|date|address|phone|mobile|email)\b", re.IGNORECASE),
    re.compile(r"\b(name|address|city|state|pin|code|tel|fax)\s*:?\s*[^\n]*", re.IGNORECASE),
    re.compile(r"\b\d{1,2}[/\-]\d{1,2}[/\-]\d{2,4}\b"),
    re.compile(r"\b\d{10}\b"),
    re.compile(r"\b\d{6}\b"),
    re.compile(r"\b(male|female|m/f|age|yrs?|years?)\b", re.IGNORECASE),
    # two capitalized words in a row are most likely the patient's name
    re.compile(r"\b[A-Z][a-z]+ [A-Z][a-z]+\b"),
]

SKIP_LINE = re.compile(
    r"\b(hospital|clinic|patient|doctor|address|phone|date|mobile|email|signature|prescribed|take|times|day"
    r"|morning|evening|night|after|before|food|meal|breakfast|lunch|dinner)\b",
    re.IGNORECASE,
)
NUMERIC_LINE = re.compile(r"^\d+[\s\-/]*\d*[\s\-/]*\d*$")

# [dosage form] name [strength] [frequency] [before/after food]
MEDICINE_LINE = re.compile(
    r"^(?:(?:tablet|capsule|syrup|injection|tab|cap|syp|inj)\b\.?)?\s*"
    r"(?P<name>[A-Za-z][A-Za-z0-9\s\-]*?)"
    r"(?:\s+(?P<strength>\d+(?:/\d+)?(?:mg|mcg|gm|ml)?))?"
    r"(?:\s+[\d\-]+)?"
    r"(?:\s*(?:before|after)\s+food)?$",
    re.IGNORECASE,
)
TRAILING_NUMBER = re.compile(r"\s+\d+$")

WORD_SPLIT = re.compile(r"[\s,;]+")
NON_ALNUM = re.compile(r"[^a-zA-Z0-9]")
EDGE_PUNCT = re.compile(r"^[^A-Za-z0-9]+|[^A-Za-z0-9]+$")

DOSAGE_WORDS = {
    "tablet", "tablets", "capsule", "capsules", "syrup", "take", "daily", "once",
    "twice", "thrice", "morning", "evening", "night", "after", "before",
}

CAPITALIZED = re.compile(r"\b[A-Z][a-z]{3,24}\b")
BOILERPLATE_WORDS = {
    "Hospital", "Clinic", "Doctor", "Patient", "Date", "Name", "Address", "City",
    "State", "Phone", "Mobile", "Email", "Before", "After", "Food", "Meal",
    "Take", "Daily", "Once", "Twice", "Thrice", "Morning", "Evening", "Night",
    "Tablet", "Tablets", "Capsule", "Capsules", "Syrup",
}

MIN_NAME_LENGTH, MAX_NAME_LENGTH = 3, 30
MIN_WORD_LENGTH, MAX_WORD_LENGTH = 4, 25


def clean_text_for_detection(text: str) -> str:
    """Blank out non-medicine noise (boilerplate, dates, codes, names)."""
    cleaned = text or ""
    for pattern in NOISE_PATTERNS:
        cleaned = pattern.sub(" ", cleaned)
    return cleaned


def _line_medicines(line: str) -> List[str]:
    match = MEDICINE_LINE.match(line)
    if not match:
        return []
    name = TRAILING_NUMBER.sub("", match.group("name").strip()).strip()
    if not MIN_NAME_LENGTH <= len(name) <= MAX_NAME_LENGTH:
        return []

    found = []
    strength = match.group("strength")
    if strength:
        with_strength = f"{name} {strength}"
        if len(with_strength) <= MAX_NAME_LENGTH:
            found.append(with_strength)
    found.append(name)
    return found


def _line_words(line: str) -> List[str]:
    words = []
    for raw in WORD_SPLIT.split(line):
        word = EDGE_PUNCT.sub("", raw)
        cleaned = NON_ALNUM.sub("", word)
        if not MIN_WORD_LENGTH <= len(cleaned) <= MAX_WORD_LENGTH:
            continue
        if cleaned.isdigit() or cleaned.lower() in DOSAGE_WORDS:
            continue
        words.append(word)
    return words


def _capitalized_words(text: str) -> List[str]:
    return [w for w in CAPITALIZED.findall(text) if w not in BOILERPLATE_WORDS]


def _unique(items: Iterable[str]) -> List[str]:
    seen = set()
    out = []
    for item in items:
        if item not in seen:
            seen.add(item)
            out.append(item)
    return out


def extract_candidates(text: str) -> List[str]:
    """
    Propose tokens that may name a medicine.

    Three independent passes (line pattern, generic words, capitalized
    words) are unioned on purpose: each one catches a different kind of OCR
    damage. Input should already have gone through clean_text_for_detection.
    """
    candidates: List[str] = []
    for line in (text or "").split("\n"):
        line = line.strip()
        if not line or SKIP_LINE.search(line) or NUMERIC_LINE.match(line):
            continue
        candidates.extend(_line_medicines(line))
        candidates.extend(_line_words(line))

    candidates.extend(_capitalized_words(text or ""))
    return _unique(candidates)


def extract_medicine_candidates(raw_text: str) -> List[str]:
    """Noise filtering followed by candidate extraction."""
    return extract_candidates(clean_text_for_detection(raw_text))
