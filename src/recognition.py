# src/recognition.py
import asyncio
import logging
from typing import Dict, Optional

from schema import RecognitionResult
from src import config

logger = logging.getLogger(__name__)

BACKENDS = ("ocr", "handwriting")


class TextRecognitionEngine:
    """
    Image -> RecognitionResult through the configured backend.

    Only one backend serves requests; the choice is configuration, not a
    per-request fallback chain. `recognize` never raises: failures and
    timeouts come back as an empty result with zero confidence.
    """

    def __init__(self, backend: Optional[str] = None, timeout: Optional[float] = None,
                 backends: Optional[Dict[str, object]] = None):
        self.backend = (backend or config.RECOGNITION_BACKEND).strip().lower()
        if self.backend not in BACKENDS:
            logger.warning("Unknown recognition backend '%s', using 'ocr'", self.backend)
            self.backend = "ocr"
        self.timeout = timeout if timeout is not None else config.RECOGNITION_TIMEOUT_SECONDS
        self._backends = dict(backends or {})

    def _get_backend(self):
        if self.backend not in self._backends:
            if self.backend == "handwriting":
                from src.handwriting.model import HandwritingModel
                self._backends[self.backend] = HandwritingModel()
            else:
                from src.ocr import PaddleOCRBackend
                self._backends[self.backend] = PaddleOCRBackend()
        return self._backends[self.backend]

    async def recognize(self, image_path: str) -> RecognitionResult:
        try:
            backend = self._get_backend()
            result = await asyncio.wait_for(backend.recognize(image_path), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning("Recognition stage timed out after %.1fs (backend=%s)", self.timeout, self.backend)
            return RecognitionResult.empty(self.backend)
        except Exception as e:
            logger.warning("Recognition stage failed (backend=%s): %s", self.backend, e)
            return RecognitionResult.empty(self.backend)

        if result is None:
            return RecognitionResult.empty(self.backend)
        return result


_default_engine: Optional[TextRecognitionEngine] = None


def get_default_engine() -> TextRecognitionEngine:
    global _default_engine
    if _default_engine is None:
        _default_engine = TextRecognitionEngine()
    return _default_engine
