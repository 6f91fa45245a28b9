import os

from dotenv import load_dotenv

load_dotenv()

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Reference medicine dataset (CSV, one row per medicine)
MEDICINE_CATALOGUE_PATH = os.getenv(
    "MEDICINE_CATALOGUE_PATH",
    "datasets/raw/Extensive_A_Z_medicines_dataset_of_India.csv",
)

# Which text recognition backend serves requests: "ocr" or "handwriting"
RECOGNITION_BACKEND = os.getenv("RECOGNITION_BACKEND", "ocr").strip().lower()

# Handwriting model artifact: JSON topology with an embedded weights manifest
HANDWRITING_MODEL_PATH = os.getenv(
    "HANDWRITING_MODEL_PATH",
    "datasets/models/prescription_handwriting/model.json",
)
HANDWRITING_ARTIFACT_READER = os.getenv("HANDWRITING_ARTIFACT_READER", "filesystem")
HANDWRITING_IMAGE_WIDTH = int(os.getenv("HANDWRITING_IMAGE_WIDTH", "200"))
HANDWRITING_IMAGE_HEIGHT = int(os.getenv("HANDWRITING_IMAGE_HEIGHT", "64"))

# "1" forces inversion, "0" disables it, anything else auto-detects polarity
PRESCRIPTION_INVERT = os.getenv("PRESCRIPTION_INVERT", "auto")
# "1" or "indexes" logs greedy decode traces
PRESCRIPTION_DEBUG = os.getenv("PRESCRIPTION_DEBUG", "")

GEMINI_API_KEY = os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY")
GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-2.0-flash")
GEMINI_BASE_URL = os.getenv("GEMINI_BASE_URL")

RECOGNITION_TIMEOUT_SECONDS = float(os.getenv("RECOGNITION_TIMEOUT_SECONDS", "60"))
AI_FALLBACK_TIMEOUT_SECONDS = float(os.getenv("AI_FALLBACK_TIMEOUT_SECONDS", "20"))

MATCH_THRESHOLD = 0.60
COVERAGE_THRESHOLD = 0.5

MAX_IMAGE_BYTES = 5 * 1024 * 1024
ALLOWED_IMAGE_EXTENSIONS = {".jpeg", ".jpg", ".png", ".gif", ".webp"}


def debug_trace_enabled() -> bool:
    return PRESCRIPTION_DEBUG in ("1", "indexes")
