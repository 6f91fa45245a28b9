# src/verification.py
"""
Candidate token -> catalogue entry matching.

Each candidate is tried as a handful of textual variants. Every variant is
scored against every catalogue entry by an ordered list of scorers; the best
entry above threshold wins. The first variant that clears the threshold ends
the search for that token.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence, Tuple

from schema import MatchCandidate, MatchType
from src import config
from src.catalogue import Catalogue, IndexedEntry
from src.utils.similarity import bigrams, containment_ratio, dice_from_bigrams, normalize_name

logger = logging.getLogger(__name__)

MIN_VARIANT_LENGTH = 3
PARTIAL_WEIGHT = 0.85
SUBSTITUTE_SCORE = 0.90
OVERLAP_MIN = 0.60

FORM_PREFIX = re.compile(r"^(tab|cap|syp|inj)\.?\s*", re.IGNORECASE)
TRAILING_DOSAGE = re.compile(r"\s*\d+.*$")
NON_ALNUM = re.compile(r"[^a-zA-Z0-9]")


@dataclass(frozen=True)
class Variant:
    """A candidate rewrite plus its precomputed comparison forms."""
    text: str
    key: str
    bigrams: frozenset


ScoreFn = Callable[[Variant, IndexedEntry], float]


@dataclass(frozen=True)
class Scorer:
    match_type: MatchType
    score: ScoreFn


def score_exact(variant: Variant, item: IndexedEntry) -> float:
    return 1.0 if variant.key == item.key else 0.0


def score_partial(variant: Variant, item: IndexedEntry) -> float:
    ratio = containment_ratio(variant.key, item.key)
    if ratio < OVERLAP_MIN:
        return 0.0
    return PARTIAL_WEIGHT * ratio


def score_fuzzy(variant: Variant, item: IndexedEntry) -> float:
    if variant.key == item.key:
        return 1.0
    if len(variant.key) < 2 or len(item.key) < 2:
        return 0.0
    return dice_from_bigrams(variant.bigrams, item.bigrams)


def score_substitute(variant: Variant, item: IndexedEntry) -> float:
    for sub in item.substitute_keys:
        if len(sub) < MIN_VARIANT_LENGTH:
            continue
        if sub == variant.key or containment_ratio(variant.key, sub) >= OVERLAP_MIN:
            return SUBSTITUTE_SCORE
    return 0.0


DEFAULT_SCORERS: Tuple[Scorer, ...] = (
    Scorer(MatchType.EXACT, score_exact),
    Scorer(MatchType.PARTIAL, score_partial),
    Scorer(MatchType.FUZZY, score_fuzzy),
    Scorer(MatchType.SUBSTITUTE, score_substitute),
)


def token_variants(token: str) -> List[str]:
    """Rewrites of a candidate, in the order they are tried."""
    parts = token.split()
    return [
        token,
        FORM_PREFIX.sub("", token),
        TRAILING_DOSAGE.sub("", token),
        NON_ALNUM.sub("", token),
        parts[0] if parts else "",
    ]


def _make_variant(text: str) -> Variant:
    key = normalize_name(text)
    return Variant(text=text, key=key, bigrams=bigrams(key))


@dataclass
class MatchOutcome:
    matches: List[MatchCandidate] = field(default_factory=list)
    unmatched: List[MatchCandidate] = field(default_factory=list)
    candidate_count: int = 0

    @property
    def coverage(self) -> float:
        if self.candidate_count == 0:
            return 0.0
        return len(self.matches) / self.candidate_count


class MedicineMatcher:
    def __init__(self, scorers: Sequence[Scorer] = DEFAULT_SCORERS, threshold: Optional[float] = None):
        self.scorers = tuple(scorers)
        self.threshold = config.MATCH_THRESHOLD if threshold is None else threshold

    def best_entry(self, variant: Variant, catalogue: Catalogue) -> Tuple[Optional[IndexedEntry], float, Optional[MatchType]]:
        best_item: Optional[IndexedEntry] = None
        best_score = 0.0
        best_type: Optional[MatchType] = None

        # an exact hit is the scan's unique maximum, skip the scan
        if self.scorers and self.scorers[0].match_type == MatchType.EXACT:
            exact = catalogue.index_by_key.get(variant.key)
            if exact is not None and len(exact.key) >= MIN_VARIANT_LENGTH:
                return exact, 1.0, MatchType.EXACT

        for item in catalogue.indexed:
            if len(item.key) < MIN_VARIANT_LENGTH:
                continue
            for scorer in self.scorers:
                score = scorer.score(variant, item)
                if score >= self.threshold and score > best_score:
                    best_item, best_score, best_type = item, score, scorer.match_type
            if best_type == MatchType.EXACT:
                break

        return best_item, best_score, best_type

    def match(self, candidates: Sequence[str], catalogue: Catalogue) -> MatchOutcome:
        outcome = MatchOutcome(candidate_count=len(candidates))
        claimed = set()

        for token in candidates:
            found = None
            for text in token_variants(token):
                variant = _make_variant(text)
                if len(variant.key) < MIN_VARIANT_LENGTH or variant.key in claimed:
                    continue

                item, score, match_type = self.best_entry(variant, catalogue)
                if item is not None:
                    claimed.add(variant.key)
                    found = MatchCandidate(
                        entry=item.entry,
                        match_score=score,
                        matched_token=token,
                        match_type=match_type,
                    )
                    break

            if found is not None:
                outcome.matches.append(found)
            elif len(normalize_name(token)) >= MIN_VARIANT_LENGTH:
                outcome.unmatched.append(MatchCandidate(
                    entry=None,
                    match_score=0.0,
                    matched_token=token,
                    match_type=MatchType.DETECTED_ONLY,
                ))

        outcome.matches.sort(key=lambda m: m.match_score, reverse=True)
        logger.info(
            "Dataset detection complete: candidates=%d matched=%d unmatched=%d",
            outcome.candidate_count, len(outcome.matches), len(outcome.unmatched),
        )
        return outcome
