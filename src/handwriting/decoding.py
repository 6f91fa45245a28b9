import logging
from functools import lru_cache
from typing import List, Sequence, Tuple

import numpy as np

from schema import RecognitionResult

logger = logging.getLogger(__name__)

BASE_CHARACTERS = "()+,-.0123456789ABCDEFGHIKLMNOPRSTVZ_abcdefghiklmnoprstuvxyz"
FALLBACK_CHARACTERS = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789 -/&%$#@!?:;.,'\""

BLANK = ""


@lru_cache(maxsize=8)
def build_symbol_table(num_classes: int) -> Tuple[str, ...]:
    """
    Class index -> character. The last index is the CTC blank.

    The primary character set is extended with the fallback superset,
    deduplicated in order, padded with '?' when the model has more classes.
    """
    roster: List[str] = []
    for ch in BASE_CHARACTERS + FALLBACK_CHARACTERS:
        if ch not in roster:
            roster.append(ch)

    usable = max(num_classes - 1, 0)
    while len(roster) < usable:
        roster.append("?")
    return tuple(roster[:usable]) + (BLANK,)


def greedy_decode(logits: Sequence[Sequence[float]], symbols: Sequence[str],
                  trace: bool = False, engine: str = "handwriting") -> RecognitionResult:
    """
    Greedy CTC collapse of per-timestep class probabilities.

    A symbol is emitted when the argmax class differs from the previous
    timestep's class and is not blank; a blank therefore separates repeated
    characters. Confidence is the mean of the emitted raw probabilities.
    """
    blank_index = len(symbols) - 1 if symbols else 0
    last_index = blank_index
    chars: List[str] = []
    confidences: List[float] = []
    index_trace: List[int] = []
    emitted: List[str] = []

    for timestep in logits:
        row = np.asarray(timestep, dtype=np.float64)
        if row.size == 0:
            continue
        max_index = int(np.argmax(row))
        max_value = float(row[max_index])
        if trace:
            index_trace.append(max_index)

        if max_index != blank_index and max_index != last_index:
            symbol = symbols[max_index] if max_index < len(symbols) else "?"
            chars.append(symbol)
            confidences.append(round(max_value, 3))
            if trace:
                emitted.append(f"{max_index}:{symbol}:{max_value:.3f}")

        last_index = max_index

    confidence = round(sum(confidences) / len(confidences), 3) if confidences else 0.0

    if trace:
        logger.info("Greedy index trace %s", ",".join(str(i) for i in index_trace))
        logger.info("Emitted sequence %s", " ".join(emitted))

    text = "".join(chars).strip()
    if not text:
        return RecognitionResult.empty(engine)

    return RecognitionResult(
        text=text,
        confidence=min(max(confidence, 0.0), 1.0),
        char_confidences=confidences,
        engine=engine,
    )
