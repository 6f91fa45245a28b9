# src/enrichment.py
import math
from typing import Iterable, List

from schema import MatchCandidate, MedicineView
from src.utils.similarity import normalize_name

NOT_AVAILABLE = "Not available"
UNKNOWN = "Unknown"
MAX_LISTED_USES = 3


def percent(score: float) -> int:
    """Score in [0, 1] as a whole percentage, halves rounded up."""
    return int(math.floor(score * 100 + 0.5))


def merge_results(
    matches: Iterable[MatchCandidate],
    reconciled: Iterable[MatchCandidate],
    unmatched: Iterable[MatchCandidate],
) -> List[MatchCandidate]:
    """
    Combine matcher, AI fallback and detected-only candidates.

    Catalogue-backed entries come first, one per medicine. A detected-only
    token survives only if nothing kept already accounts for it.
    """
    merged: List[MatchCandidate] = []
    seen_names = set()
    accounted = set()

    for candidate in list(matches) + list(reconciled):
        name_key = normalize_name(candidate.entry.name)
        if name_key in seen_names:
            continue
        seen_names.add(name_key)
        accounted.add(name_key)
        accounted.add(normalize_name(candidate.matched_token))
        merged.append(candidate)

    for candidate in unmatched:
        token_key = normalize_name(candidate.matched_token)
        if not token_key or token_key in accounted:
            continue
        accounted.add(token_key)
        merged.append(candidate)

    return merged


def to_medicine_view(candidate: MatchCandidate) -> MedicineView:
    entry = candidate.entry
    if entry is None:
        return MedicineView(
            name=candidate.matched_token,
            manufacturer=NOT_AVAILABLE,
            price=NOT_AVAILABLE,
            chemical_class=NOT_AVAILABLE,
            habit_forming=UNKNOWN,
            therapeutic_class=NOT_AVAILABLE,
            match_score=0,
            match_type=candidate.match_type,
            detected_as=candidate.matched_token,
            is_basic_info=True,
        )

    return MedicineView(
        name=entry.name,
        manufacturer=entry.manufacturer or NOT_AVAILABLE,
        price=entry.price or NOT_AVAILABLE,
        substitutes=list(entry.substitutes),
        uses=list(entry.uses),
        side_effects=list(entry.side_effects),
        chemical_class=entry.chemical_class or NOT_AVAILABLE,
        habit_forming=entry.habit_forming or UNKNOWN,
        therapeutic_class=entry.therapeutic_class or NOT_AVAILABLE,
        match_score=percent(candidate.match_score),
        match_type=candidate.match_type,
        detected_as=candidate.matched_token,
        is_basic_info=False,
    )


def generate_explanation(candidates: List[MatchCandidate]) -> str:
    if not candidates:
        return "No medicines could be identified from this prescription."

    names = [c.display_name for c in candidates]
    count = len(names)
    explanation = f"This prescription contains {count} medicine{'s' if count > 1 else ''}: {', '.join(names)}.\n\n"
    explanation += "Prescription Summary:\n"

    for index, candidate in enumerate(candidates, start=1):
        explanation += f"\n{index}. {candidate.display_name}\n"
        entry = candidate.entry
        if entry is None:
            continue
        if entry.chemical_class:
            explanation += f"   - Chemical Class: {entry.chemical_class}\n"
        if entry.uses:
            explanation += f"   - Prescribed For: {', '.join(entry.uses[:MAX_LISTED_USES])}"
            if len(entry.uses) > MAX_LISTED_USES:
                explanation += f" and {len(entry.uses) - MAX_LISTED_USES} more uses"
            explanation += "\n"
        if entry.manufacturer:
            explanation += f"   - Manufacturer: {entry.manufacturer}\n"

    return explanation.strip()
