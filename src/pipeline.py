# src/pipeline.py
"""
Prescription image -> structured medicine report.

Stages: recognition -> candidate extraction -> catalogue matching ->
(optional) AI fallback -> merge -> response assembly.
"""

import logging
from typing import Callable, List, Optional

from schema import PrescriptionResult
from src import config
from src.catalogue import CatalogueStore, get_default_store
from src.enrichment import generate_explanation, merge_results, to_medicine_view
from src.entity_extraction import extract_medicine_candidates
from src.llm.reconciler import GeminiReconciler, exclude_known, get_default_reconciler
from src.recognition import TextRecognitionEngine, get_default_engine
from src.verification import MedicineMatcher

logger = logging.getLogger(__name__)

NO_TEXT_EXPLANATION = "No text could be extracted from the image."
NO_TEXT_MESSAGE = "Unable to read prescription"
NO_MEDICINES_EXPLANATION = (
    "No medicines could be identified from the prescription. The handwriting may be "
    "unclear or the medicines may not be in our database."
)
NO_MEDICINES_MESSAGE = "No medicines detected"
SUCCESS_MESSAGE = "Prescription analyzed successfully"


def failure_result(reason: str) -> PrescriptionResult:
    return PrescriptionResult(
        explanation="",
        medicines=[],
        extracted_text="",
        message=f"Analysis failed: {reason}",
    )


class PrescriptionPipeline:
    def __init__(
        self,
        recognizer: Optional[TextRecognitionEngine] = None,
        catalogue_store: Optional[CatalogueStore] = None,
        extractor: Callable[[str], List[str]] = extract_medicine_candidates,
        matcher: Optional[MedicineMatcher] = None,
        reconciler: Optional[GeminiReconciler] = None,
        coverage_threshold: Optional[float] = None,
    ):
        self.recognizer = recognizer or get_default_engine()
        self.catalogue_store = catalogue_store or get_default_store()
        self.extractor = extractor
        self.matcher = matcher or MedicineMatcher()
        self.reconciler = reconciler or get_default_reconciler()
        self.coverage_threshold = (
            config.COVERAGE_THRESHOLD if coverage_threshold is None else coverage_threshold
        )

    async def analyze(self, image_path: str) -> PrescriptionResult:
        """Run every stage. Never raises; failures become a structured result."""
        try:
            return await self._analyze(image_path)
        except Exception as e:
            logger.exception("Prescription analysis failed")
            return failure_result(str(e))

    async def _analyze(self, image_path: str) -> PrescriptionResult:
        logger.info("Starting prescription analysis")
        catalogue = await self.catalogue_store.get()

        recognized = await self.recognizer.recognize(image_path)
        text = recognized.text
        if not text or not text.strip():
            return PrescriptionResult(
                explanation=NO_TEXT_EXPLANATION,
                medicines=[],
                extracted_text="",
                message=NO_TEXT_MESSAGE,
            )
        logger.info("Text extraction complete: length=%d confidence=%.3f engine=%s",
                    len(text), recognized.confidence, recognized.engine)

        candidates = self.extractor(text)
        logger.info("Potential medicines extracted: count=%d", len(candidates))
        logger.debug("Candidate samples: %s", candidates[:10])
        if not candidates:
            return self._nothing_found(text)

        outcome = self.matcher.match(candidates, catalogue)

        reconciled = []
        if outcome.coverage < self.coverage_threshold:
            logger.info("Coverage %.2f below %.2f, trying AI fallback",
                        outcome.coverage, self.coverage_threshold)
            reconciled = exclude_known(
                await self.reconciler.reconcile(text, catalogue), outcome.matches
            )
            logger.info("AI fallback added %d medicines", len(reconciled))

        merged = merge_results(outcome.matches, reconciled, outcome.unmatched)
        if not merged:
            return self._nothing_found(text)

        medicines = [to_medicine_view(c) for c in merged]
        basic = sum(1 for m in medicines if m.is_basic_info)
        logger.info("Analysis complete: medicines=%d full_info=%d detected_only=%d",
                    len(medicines), len(medicines) - basic, basic)

        return PrescriptionResult(
            explanation=generate_explanation(merged),
            medicines=medicines,
            extracted_text=text,
            message=SUCCESS_MESSAGE,
        )

    @staticmethod
    def _nothing_found(text: str) -> PrescriptionResult:
        return PrescriptionResult(
            explanation=NO_MEDICINES_EXPLANATION,
            medicines=[],
            extracted_text=text,
            message=NO_MEDICINES_MESSAGE,
        )


_default_pipeline: Optional[PrescriptionPipeline] = None


def get_default_pipeline() -> PrescriptionPipeline:
    global _default_pipeline
    if _default_pipeline is None:
        _default_pipeline = PrescriptionPipeline()
    return _default_pipeline


async def analyze_prescription_image(image_path: str) -> PrescriptionResult:
    return await get_default_pipeline().analyze(image_path)
