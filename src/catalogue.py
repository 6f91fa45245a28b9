# src/catalogue.py
"""
Reference medicine catalogue.

Loads the bulk medicine dataset once per process and exposes a read-only,
pre-indexed view used by the matcher and the AI fallback reconciler.
"""

import asyncio
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, FrozenSet, Iterable, List, Optional, Tuple

import pandas as pd

from schema import CatalogueEntry
from src import config
from src.utils.similarity import bigrams, normalize_name
from src.utils.single_flight import SingleFlight

logger = logging.getLogger(__name__)

# normalized header -> entry field
COLUMN_ALIASES: Dict[str, str] = {
    "medicinename": "name",
    "name": "name",
    "medicine": "name",
    "manufacturer": "manufacturer",
    "manufacturername": "manufacturer",
    "mrprs": "price",
    "mrp": "price",
    "price": "price",
    "substitutes": "substitutes",
    "substitute": "substitutes",
    "uses": "uses",
    "use": "uses",
    "sideeffects": "side_effects",
    "sideeffect": "side_effects",
    "chemicalclass": "chemical_class",
    "therapeuticclass": "therapeutic_class",
    "actionclass": "action_class",
    "habitforming": "habit_forming",
    "imageurl": "image_url",
}

LIST_FIELDS = ("substitutes", "uses", "side_effects")


def _header_key(column: str) -> str:
    return re.sub(r"[^a-z0-9]", "", str(column).lower())


def _split_list(value: str) -> Tuple[str, ...]:
    return tuple(part.strip() for part in (value or "").split(",") if part.strip())


@dataclass(frozen=True)
class IndexedEntry:
    entry: CatalogueEntry
    key: str
    bigrams: FrozenSet[str]
    substitute_keys: Tuple[str, ...]


class Catalogue:
    """Read-only catalogue with normalized lookup structures."""

    def __init__(self, entries: Iterable[CatalogueEntry]):
        self.entries: Tuple[CatalogueEntry, ...] = tuple(entries)
        indexed = []
        by_key: Dict[str, CatalogueEntry] = {}
        index_by_key: Dict[str, IndexedEntry] = {}
        for entry in self.entries:
            key = normalize_name(entry.name)
            item = IndexedEntry(
                entry=entry,
                key=key,
                bigrams=bigrams(key),
                substitute_keys=tuple(normalize_name(s) for s in entry.substitutes),
            )
            indexed.append(item)
            by_key.setdefault(key, entry)
            index_by_key.setdefault(key, item)
        self.indexed: Tuple[IndexedEntry, ...] = tuple(indexed)
        self.by_key = by_key
        self.index_by_key = index_by_key

    def __len__(self) -> int:
        return len(self.entries)

    def lookup(self, name: str) -> Optional[CatalogueEntry]:
        return self.by_key.get(normalize_name(name))


def map_columns(columns: Iterable[str]) -> Dict[str, str]:
    """Map dataset column names to entry fields, first variant wins."""
    mapping: Dict[str, str] = {}
    claimed = set()
    for column in columns:
        field = COLUMN_ALIASES.get(_header_key(column))
        if field and field not in claimed:
            mapping[column] = field
            claimed.add(field)
    return mapping


def entries_from_frame(df: pd.DataFrame) -> List[CatalogueEntry]:
    mapping = map_columns(df.columns)
    if "name" not in mapping.values():
        logger.warning("Catalogue has no recognizable name column: %s", list(df.columns))
        return []

    renamed = df[list(mapping)].rename(columns=mapping)
    entries = []
    for record in renamed.to_dict(orient="records"):
        name = (record.get("name") or "").strip()
        if not name:
            continue
        fields = {}
        for field, value in record.items():
            value = "" if value is None else str(value).strip()
            fields[field] = _split_list(value) if field in LIST_FIELDS else value
        fields["name"] = name
        entries.append(CatalogueEntry(**fields))
    return entries


def load_catalogue(path) -> Catalogue:
    """
    Read the medicine dataset into a Catalogue.

    Never raises: a missing or unreadable file yields an empty catalogue.
    """
    csv_path = Path(path)
    try:
        df = pd.read_csv(csv_path, dtype=str, keep_default_na=False, skipinitialspace=True)
    except Exception as e:
        logger.error("Failed to load medicine dataset from %s: %s", csv_path, e)
        return Catalogue([])

    df.columns = [str(c).strip() for c in df.columns]
    catalogue = Catalogue(entries_from_frame(df))
    logger.info("Loaded %d medicines from dataset", len(catalogue))
    return catalogue


class CatalogueStore:
    """Process-scoped, lazily loaded catalogue. Read-only after first load."""

    def __init__(self, path=None):
        self.path = path or config.MEDICINE_CATALOGUE_PATH
        self._flight = SingleFlight(self._load, name=f"catalogue:{self.path}")

    async def _load(self) -> Catalogue:
        return await asyncio.to_thread(load_catalogue, self.path)

    async def get(self) -> Catalogue:
        return await self._flight.get()

    def get_sync(self) -> Catalogue:
        if not self._flight.loaded:
            self._flight.set(load_catalogue(self.path))
        return self._flight.peek()

    @classmethod
    def from_entries(cls, entries: Iterable[CatalogueEntry]) -> "CatalogueStore":
        store = cls(path="<memory>")
        store._flight.set(Catalogue(entries))
        return store

    @property
    def load_count(self) -> int:
        return self._flight.load_count


_default_store: Optional[CatalogueStore] = None


def get_default_store() -> CatalogueStore:
    global _default_store
    if _default_store is None:
        _default_store = CatalogueStore()
    return _default_store
