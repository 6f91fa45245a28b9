# src/vision/preprocessing.py
"""
Image preprocessing for prescription photos and scans.

Two consumers:
- the general OCR backend, which benefits from contrast and glare cleanup
- the handwriting model, which needs a fixed single-channel line geometry
"""

import logging
from typing import Optional

import cv2
import numpy as np

logger = logging.getLogger(__name__)

POLARITY_THRESHOLD = 0.6


def preprocess_for_ocr(image: np.ndarray) -> np.ndarray:
    """
    Enhance a photographed prescription before OCR.

    Handles:
    - Small or low-resolution scans
    - Glare from glossy paper
    - Low contrast pen strokes
    """
    if image is None or image.size == 0:
        return image

    # 1. Upscale small images (helps with tiny handwriting)
    h, w = image.shape[:2]
    if h < 200 or w < 200:
        scale = max(200 / h, 200 / w, 2.0)
        image = cv2.resize(image, None, fx=scale, fy=scale, interpolation=cv2.INTER_CUBIC)

    deglared = remove_glare(image)
    gray = cv2.cvtColor(deglared, cv2.COLOR_BGR2GRAY) if deglared.ndim == 3 else deglared.copy()

    denoised = cv2.fastNlMeansDenoising(gray, h=10, templateWindowSize=7, searchWindowSize=21)

    clahe = cv2.createCLAHE(clipLimit=3.0, tileGridSize=(8, 8))
    enhanced = clahe.apply(denoised)

    sharpened = sharpen_image(enhanced, strength=1.5)

    binary = cv2.adaptiveThreshold(
        sharpened, 255, cv2.ADAPTIVE_THRESH_GAUSSIAN_C,
        cv2.THRESH_BINARY, 15, 4
    )

    # PaddleOCR expects three channels
    return cv2.cvtColor(binary, cv2.COLOR_GRAY2BGR)


def sharpen_image(image: np.ndarray, strength: float = 1.5) -> np.ndarray:
    """Unsharp masking."""
    blurred = cv2.GaussianBlur(image, (0, 0), 3)
    sharpened = cv2.addWeighted(image, 1 + strength, blurred, -strength, 0)
    return np.clip(sharpened, 0, 255).astype(np.uint8)


def remove_glare(image: np.ndarray) -> np.ndarray:
    """Inpaint overexposed regions."""
    if image.ndim == 3:
        gray = cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
    else:
        gray = image
        image = cv2.cvtColor(image, cv2.COLOR_GRAY2BGR)

    _, mask = cv2.threshold(gray, 240, 255, cv2.THRESH_BINARY)
    mask = cv2.dilate(mask, np.ones((5, 5), np.uint8), iterations=1)
    return cv2.inpaint(image, mask, inpaintRadius=3, flags=cv2.INPAINT_TELEA)


def should_invert(normalized: np.ndarray, override: Optional[str] = None) -> bool:
    """
    Decide whether ink must be flipped to the high-signal value.

    `override` of "1" forces inversion, "0" disables it; anything else
    inverts when the mean intensity says the background is bright.
    """
    if override == "1":
        return True
    if override == "0":
        return False
    if normalized is None or normalized.size == 0:
        return False
    mean_value = float(np.mean(normalized))
    if not np.isfinite(mean_value):
        return False
    return mean_value > POLARITY_THRESHOLD


def normalize_line(gray: np.ndarray, width: int, height: int, invert: Optional[str] = None) -> np.ndarray:
    """Resize a grayscale line to width x height and scale to [0, 1]."""
    resized = cv2.resize(gray, (width, height), interpolation=cv2.INTER_LINEAR)
    normalized = resized.astype(np.float32) / 255.0
    if should_invert(normalized, invert):
        logger.debug("Inverting line polarity (override=%s)", invert)
        normalized = 1.0 - normalized
    return normalized


def prepare_handwriting_line(image_path: str, width: int, height: int,
                             invert: Optional[str] = None) -> np.ndarray:
    """
    Load an image as a (1, height, width, 1) float32 batch for the
    handwriting model.
    """
    gray = cv2.imread(str(image_path), cv2.IMREAD_GRAYSCALE)
    if gray is None:
        raise ValueError(f"Image not readable: {image_path}")

    normalized = normalize_line(gray, width, height, invert)
    return normalized[np.newaxis, :, :, np.newaxis]
