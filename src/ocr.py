# src/ocr.py
import asyncio
import logging
import re
import threading
from typing import Dict, List, Optional

import cv2

from schema import RecognitionResult
from src.utils.single_flight import SingleFlight
from src.vision.preprocessing import preprocess_for_ocr

logging.getLogger("ppocr").setLevel(logging.ERROR)
logger = logging.getLogger(__name__)

ENGINE = "PaddleOCR"

# Alphanumerics, common punctuation, space and newline
_OUTSIDE_WHITELIST = re.compile(r"[^A-Za-z0-9.,()\-/: \n]")


def restrict_charset(text: str) -> str:
    return _OUTSIDE_WHITELIST.sub("", text)


def _create_engine():
    from paddleocr import PaddleOCR

    return PaddleOCR(
        use_angle_cls=True,
        lang="en",
        det_db_thresh=0.1,
        det_db_box_thresh=0.3,
        show_log=False
    )


def parse_ocr_result(result) -> Dict:
    """Flatten PaddleOCR output into per-line tokens and page text."""
    tokens = []

    if result and result[0]:
        for line in result[0]:
            text = restrict_charset(line[1][0])
            if not text.strip():
                continue
            tokens.append({
                "text": text,
                "confidence": float(line[1][1]),
            })

    return {
        "engine": ENGINE,
        # one detected box per line keeps line structure for extraction
        "full_text": "\n".join(t["text"] for t in tokens),
        "tokens": tokens
    }


def to_recognition_result(parsed: Dict) -> RecognitionResult:
    tokens: List[Dict] = parsed.get("tokens") or []
    if not tokens or not parsed.get("full_text", "").strip():
        return RecognitionResult.empty(ENGINE)

    confidences = [min(max(t["confidence"], 0.0), 1.0) for t in tokens]
    confidence = sum(confidences) / len(confidences)
    return RecognitionResult(
        text=parsed["full_text"],
        confidence=confidence,
        char_confidences=confidences,
        engine=ENGINE,
    )


class PaddleOCRBackend:
    """
    Whole-page OCR with automatic text detection.

    Runs on both the original and the enhanced image and keeps whichever
    yields more tokens.
    """

    def __init__(self, engine_factory=None, use_preprocessing: bool = True):
        self._factory = engine_factory or _create_engine
        self.use_preprocessing = use_preprocessing
        self._engine = SingleFlight(self._load_engine, name="paddleocr")
        # PaddleOCR predictors are not thread-safe
        self._lock = threading.Lock()

    def _ocr(self, engine, image):
        with self._lock:
            return engine.ocr(image, cls=True)

    async def _load_engine(self):
        try:
            return await asyncio.to_thread(self._factory)
        except Exception as e:
            logger.warning("OCR engine unavailable: %s", e)
            return None

    def run(self, engine, image_path: str) -> RecognitionResult:
        image = cv2.imread(str(image_path))
        if image is None:
            logger.warning("OCR input not readable")
            return RecognitionResult.empty(ENGINE)

        original: Optional[Dict] = None
        enhanced: Optional[Dict] = None

        try:
            original = parse_ocr_result(self._ocr(engine, image))
        except Exception as e:
            logger.warning("OCR on original image failed: %s", e)

        if self.use_preprocessing:
            processed = None
            try:
                processed = preprocess_for_ocr(image)
                enhanced = parse_ocr_result(self._ocr(engine, processed))
            except Exception as e:
                logger.warning("OCR on preprocessed image failed: %s", e)
            finally:
                del processed

        del image

        orig_tokens = len(original["tokens"]) if original else 0
        prep_tokens = len(enhanced["tokens"]) if enhanced else 0
        best = enhanced if prep_tokens > orig_tokens else original
        logger.info("OCR tokens: original=%d preprocessed=%d", orig_tokens, prep_tokens)

        if best is None:
            return RecognitionResult.empty(ENGINE)

        result = to_recognition_result(best)
        logger.info("OCR extraction complete: length=%d confidence=%.1f%%",
                    len(result.text), result.confidence * 100)
        return result

    async def recognize(self, image_path: str) -> RecognitionResult:
        engine = await self._engine.get()
        if engine is None:
            return RecognitionResult.empty(ENGINE)
        return await asyncio.to_thread(self.run, engine, image_path)
