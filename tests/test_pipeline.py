import asyncio

import pytest

from schema import MatchType
from src.llm.reconciler import GeminiReconciler
from src import pipeline as pipeline_module
from src.pipeline import PrescriptionPipeline, analyze_prescription_image, get_default_pipeline
from src.recognition import TextRecognitionEngine
from src.utils.similarity import normalize_name

JUNK = ["Qqqq", "Wwww", "Xxxx", "Vvvv", "Jjjj", "Kkkk", "Zzzz"]


@pytest.fixture
def build(catalogue_store, make_backend, make_counting_reconciler):
    def _build(text="", extractor=None, reconciler=None, backend=None):
        kwargs = {}
        if extractor is not None:
            kwargs["extractor"] = extractor
        return PrescriptionPipeline(
            recognizer=TextRecognitionEngine(backend="ocr", backends={"ocr": backend or make_backend(text)}),
            catalogue_store=catalogue_store,
            reconciler=reconciler or make_counting_reconciler(),
            **kwargs,
        )
    return _build


def _analyze(pipeline):
    return asyncio.run(pipeline.analyze("prescription.png"))


def test_dosage_line_resolves_to_exact_catalogue_entry(build):
    pipeline = build("Tab. Dolo 650\nTake twice daily")
    result = _analyze(pipeline)

    assert result.message == "Prescription analyzed successfully"
    assert result.extracted_text == "Tab. Dolo 650\nTake twice daily"
    assert len(result.medicines) == 1
    medicine = result.medicines[0]
    assert medicine.name == "Dolo 650"
    assert medicine.match_type == MatchType.EXACT
    assert medicine.match_score == 100
    assert medicine.detected_as == "Dolo 650"
    assert result.explanation.startswith("This prescription contains 1 medicine: Dolo 650.")
    assert pipeline.reconciler.calls == 0


def test_empty_recognition(build):
    result = _analyze(build(""))

    assert result.medicines == []
    assert result.message == "Unable to read prescription"
    assert result.explanation == "No text could be extracted from the image."
    assert result.extracted_text == ""


def test_recognition_failure_reads_as_empty(build, make_backend):
    result = _analyze(build(backend=make_backend(error=RuntimeError("engine crashed"))))
    assert result.message == "Unable to read prescription"


def test_misspelled_medicine_is_fuzzy_matched(build):
    result = _analyze(build("Paracitamol"))

    assert [m.name for m in result.medicines] == ["Paracetamol"]
    assert result.medicines[0].match_type == MatchType.FUZZY
    assert result.medicines[0].match_score == 80
    assert result.medicines[0].detected_as == "Paracitamol"


def test_low_coverage_adds_ai_medicines(build, make_genai_client):
    candidates = ["Dolo 650", "Paracetamol", "Pan 40"] + JUNK
    client = make_genai_client(reply='["Azithromycin"]')
    reconciler = GeminiReconciler(client=client, model="test-model", generation_config={})
    pipeline = build("Dolo 650 Paracetamol Pan 40", extractor=lambda text: list(candidates),
                     reconciler=reconciler)

    result = _analyze(pipeline)

    assert len(client.models.calls) == 1
    by_name = {m.name: m for m in result.medicines}
    assert by_name["Azithromycin"].match_type == MatchType.AI_EXACT
    assert by_name["Azithromycin"].match_score == 100
    assert {m.name for m in result.medicines if m.match_type == MatchType.EXACT} == {
        "Dolo 650", "Paracetamol", "Pan 40",
    }
    detected = [m for m in result.medicines if m.is_basic_info]
    assert [m.name for m in detected] == JUNK
    # catalogue entries precede detected-only ones
    assert [m.is_basic_info for m in result.medicines] == [False] * 4 + [True] * len(JUNK)


def test_reconciler_skipped_at_half_coverage(build, make_counting_reconciler):
    reconciler = make_counting_reconciler()
    _analyze(build("x", extractor=lambda text: ["Dolo 650", "Qqqq"], reconciler=reconciler))
    assert reconciler.calls == 0


def test_reconciler_called_once_below_half_coverage(build, make_counting_reconciler):
    reconciler = make_counting_reconciler()
    result = _analyze(build("x", extractor=lambda text: ["Dolo 650", "Qqqq", "Wwww"], reconciler=reconciler))
    assert reconciler.calls == 1
    assert [m.name for m in result.medicines] == ["Dolo 650", "Qqqq", "Wwww"]


def test_reconciled_duplicates_are_dropped(build, catalogue, make_counting_reconciler):
    from src.llm.reconciler import match_ai_names

    reconciler = make_counting_reconciler(match_ai_names(["Dolo 650", "Azithromycin"], catalogue))
    result = _analyze(build("x", extractor=lambda text: ["Dolo 650", "Qqqq", "Wwww"], reconciler=reconciler))

    assert [m.name for m in result.medicines] == ["Dolo 650", "Azithromycin", "Qqqq", "Wwww"]


def test_no_duplicate_medicines(build):
    text = "Tab. Dolo 650\nDolo 650\nDOLO-650\nparacetamol\nParacetamol 500"
    result = _analyze(build(text))

    keys = [normalize_name(m.name) for m in result.medicines]
    assert len(keys) == len(set(keys))
    assert "dolo650" in keys
    assert "paracetamol" in keys


def test_no_candidates(build):
    result = _analyze(build("1-0-1\nTake after food"))

    assert result.medicines == []
    assert result.message == "No medicines detected"
    assert result.extracted_text == "1-0-1\nTake after food"
    assert result.explanation.startswith("No medicines could be identified from the prescription.")


def test_nothing_left_after_merge(build, make_counting_reconciler):
    reconciler = make_counting_reconciler()
    result = _analyze(build("ab", extractor=lambda text: ["ab"], reconciler=reconciler))

    assert reconciler.calls == 1
    assert result.medicines == []
    assert result.message == "No medicines detected"


def test_unexpected_error_becomes_failure_result(build):
    def broken(text):
        raise RuntimeError("boom")

    result = _analyze(build("Tab. Dolo 650", extractor=broken))

    assert result.to_response() == {
        "explanation": "",
        "medicines": [],
        "extractedText": "",
        "message": "Analysis failed: boom",
    }


def test_module_entry_point_uses_shared_pipeline(build, monkeypatch):
    shared = build("Tab. Dolo 650")
    monkeypatch.setattr(pipeline_module, "_default_pipeline", shared)

    result = asyncio.run(analyze_prescription_image("prescription.png"))

    assert get_default_pipeline() is shared
    assert [m.name for m in result.medicines] == ["Dolo 650"]
