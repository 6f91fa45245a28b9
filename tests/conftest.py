import asyncio
from types import SimpleNamespace

import pytest

from schema import CatalogueEntry, RecognitionResult
from src.catalogue import Catalogue, CatalogueStore

ENTRIES = [
    CatalogueEntry(
        name="Dolo 650",
        manufacturer="Micro Labs Ltd",
        price="30.91",
        substitutes=("Calpol 650", "Pacimol 650"),
        uses=("Pain relief", "Fever", "Headache", "Toothache", "Body ache"),
        side_effects=("Nausea", "Stomach pain"),
        chemical_class="Anilide",
        therapeutic_class="PAIN ANALGESICS",
        action_class="Analgesic",
        habit_forming="No",
    ),
    CatalogueEntry(
        name="Paracetamol",
        manufacturer="Generic Pharma",
        uses=("Fever",),
    ),
    CatalogueEntry(
        name="Azithromycin",
        manufacturer="Cipla Ltd",
        price="71.00",
        uses=("Bacterial infections",),
        chemical_class="Macrolides",
        therapeutic_class="ANTI INFECTIVES",
    ),
    CatalogueEntry(
        name="Pan 40",
        manufacturer="Alkem Laboratories Ltd",
        substitutes=("Pantocid 40",),
        uses=("Acidity",),
    ),
]


@pytest.fixture
def entries():
    return list(ENTRIES)


@pytest.fixture
def catalogue():
    return Catalogue(ENTRIES)


@pytest.fixture
def catalogue_store():
    return CatalogueStore.from_entries(ENTRIES)


class FakeRecognitionBackend:
    def __init__(self, text="", confidence=0.9, delay=0.0, error=None):
        self.text = text
        self.confidence = confidence
        self.delay = delay
        self.error = error
        self.calls = 0

    async def recognize(self, image_path):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        if not self.text:
            return RecognitionResult.empty("fake")
        return RecognitionResult(text=self.text, confidence=self.confidence, engine="fake")


class FakeModels:
    def __init__(self, reply=None, error=None, delay=0.0):
        self.reply = reply
        self.error = error
        self.delay = delay
        self.calls = []

    async def generate_content(self, model, contents, config=None):
        self.calls.append({"model": model, "contents": contents, "config": config})
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return SimpleNamespace(text=self.reply)


class FakeGenaiClient:
    """Mimics the `client.aio.models` surface of google-genai."""

    def __init__(self, reply=None, error=None, delay=0.0):
        self.models = FakeModels(reply=reply, error=error, delay=delay)
        self.aio = SimpleNamespace(models=self.models)


class CountingReconciler:
    def __init__(self, result=None):
        self.result = list(result or [])
        self.calls = 0

    async def reconcile(self, raw_text, catalogue):
        self.calls += 1
        return list(self.result)


@pytest.fixture
def make_backend():
    return FakeRecognitionBackend


@pytest.fixture
def make_genai_client():
    return FakeGenaiClient


@pytest.fixture
def make_counting_reconciler():
    return CountingReconciler
