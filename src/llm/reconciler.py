# src/llm/reconciler.py
import asyncio
import json
import logging
import re
from typing import Iterable, List, Optional

from schema import MatchCandidate, MatchType
from src import config
from src.catalogue import Catalogue, IndexedEntry
from src.utils.similarity import bigrams, dice_from_bigrams, normalize_name

logger = logging.getLogger(__name__)

AI_SUBSTITUTE_SCORE = 0.95
AI_FUZZY_MIN = 0.60

PROMPT_TEMPLATE = """Extract ONLY the medicine/drug names from this prescription text. Return a JSON array of medicine names.

Prescription text:
{text}

Return format: ["Medicine1", "Medicine2", "Medicine3"]
Return ONLY the JSON array, nothing else."""

_FENCE = re.compile(r"```[a-zA-Z]*\n?")
_ARRAY = re.compile(r"\[.*?\]", re.DOTALL)


# -----------------------------
# Helpers
# -----------------------------

def extract_json_array(text: Optional[str]) -> List[str]:
    """
    Pull the first JSON array of strings out of LLM output.

    Markdown fences are stripped; anything unparseable yields [].
    """
    if not text:
        return []

    cleaned = _FENCE.sub("", text.strip()).replace("```", "")
    match = _ARRAY.search(cleaned)
    if not match:
        return []

    try:
        parsed = json.loads(match.group(0))
    except ValueError:
        return []

    if not isinstance(parsed, list):
        return []
    return [item.strip() for item in parsed if isinstance(item, str) and item.strip()]


def _substitute_hit(key: str, catalogue: Catalogue) -> Optional[IndexedEntry]:
    for item in catalogue.indexed:
        if key in item.substitute_keys:
            return item
    return None


def _best_fuzzy(key: str, catalogue: Catalogue):
    if len(key) < 2:
        return None, 0.0
    grams = bigrams(key)
    best, best_score = None, 0.0
    for item in catalogue.indexed:
        score = dice_from_bigrams(grams, item.bigrams)
        if score >= AI_FUZZY_MIN and score > best_score:
            best, best_score = item, score
    return best, best_score


def match_ai_names(names: Iterable[str], catalogue: Catalogue) -> List[MatchCandidate]:
    """Resolve model-proposed names: exact, then substitute membership, then Dice."""
    matches = []
    for name in names:
        key = normalize_name(name)
        if not key:
            continue

        item = catalogue.index_by_key.get(key)
        if item is not None:
            matches.append(MatchCandidate(
                entry=item.entry, match_score=1.0, matched_token=name, match_type=MatchType.AI_EXACT,
            ))
            continue

        item = _substitute_hit(key, catalogue)
        if item is not None:
            matches.append(MatchCandidate(
                entry=item.entry, match_score=AI_SUBSTITUTE_SCORE, matched_token=name,
                match_type=MatchType.AI_SUBSTITUTE,
            ))
            continue

        item, score = _best_fuzzy(key, catalogue)
        if item is not None:
            matches.append(MatchCandidate(
                entry=item.entry, match_score=score, matched_token=name, match_type=MatchType.AI_FUZZY,
            ))

    return matches


def exclude_known(reconciled: Iterable[MatchCandidate], matches: Iterable[MatchCandidate]) -> List[MatchCandidate]:
    """Keep only reconciled medicines not already found by the matcher."""
    known = {normalize_name(m.entry.name) for m in matches if m.entry is not None}
    return [r for r in reconciled if normalize_name(r.entry.name) not in known]


# -----------------------------
# Reconciler
# -----------------------------

def _create_client():
    if not config.GEMINI_API_KEY:
        return None

    from google import genai
    from google.genai import types

    if config.GEMINI_BASE_URL:
        return genai.Client(
            api_key=config.GEMINI_API_KEY,
            http_options=types.HttpOptions(base_url=config.GEMINI_BASE_URL),
        )
    return genai.Client(api_key=config.GEMINI_API_KEY)


def _generation_config():
    from google.genai import types

    return types.GenerateContentConfig(temperature=0.1, max_output_tokens=500)


class GeminiReconciler:
    """
    Second opinion from a generative model when the matcher covers too little.

    `reconcile` never raises; every failure path returns [].
    """

    def __init__(self, client=None, model: Optional[str] = None, timeout: Optional[float] = None,
                 generation_config=None):
        self._client = client
        self.model = model or config.GEMINI_MODEL
        self.timeout = timeout if timeout is not None else config.AI_FALLBACK_TIMEOUT_SECONDS
        self._generation_config = generation_config

    def _get_client(self):
        if self._client is None:
            self._client = _create_client()
        return self._client

    async def _ask(self, client, raw_text: str) -> Optional[str]:
        if self._generation_config is None:
            self._generation_config = _generation_config()
        response = await client.aio.models.generate_content(
            model=self.model,
            contents=PROMPT_TEMPLATE.format(text=raw_text),
            config=self._generation_config,
        )
        return getattr(response, "text", None)

    async def reconcile(self, raw_text: str, catalogue: Catalogue) -> List[MatchCandidate]:
        try:
            client = self._get_client()
        except Exception as e:
            logger.warning("AI fallback client unavailable: %s", e)
            return []
        if client is None:
            logger.warning("Gemini API key not configured, skipping AI fallback")
            return []

        logger.info("Using AI fallback for medicine detection")
        try:
            reply = await asyncio.wait_for(self._ask(client, raw_text), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning("AI fallback timed out after %.1fs", self.timeout)
            return []
        except Exception as e:
            logger.warning("AI fallback request failed: %s", e)
            return []

        if not reply:
            logger.warning("No AI response received")
            return []

        names = extract_json_array(reply)
        if not names:
            logger.warning("Could not parse AI response")
            return []

        logger.info("AI extracted medicines: count=%d", len(names))
        logger.debug("AI extracted names: %s", names)
        matches = match_ai_names(names, catalogue)
        logger.info("AI matching complete: matches=%d", len(matches))
        return matches


_default_reconciler: Optional[GeminiReconciler] = None


def get_default_reconciler() -> GeminiReconciler:
    global _default_reconciler
    if _default_reconciler is None:
        _default_reconciler = GeminiReconciler()
    return _default_reconciler
