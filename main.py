#!/usr/bin/env python3
"""
Prescription Context Engine
End-to-end pipeline: Image → Text Recognition → Candidate Extraction → Catalogue Matching → AI Fallback → JSON Output
"""

import sys
import json
import asyncio
import logging
import argparse
from pathlib import Path

from schema import PrescriptionResult
from src import config
from src.catalogue import CatalogueStore
from src.pipeline import PrescriptionPipeline, analyze_prescription_image
from src.recognition import TextRecognitionEngine

logger = logging.getLogger(__name__)


class InputRejected(ValueError):
    """The uploaded file is not an acceptable prescription image."""


def validate_image_path(image_path: str) -> Path:
    path = Path(image_path)
    if path.suffix.lower() not in config.ALLOWED_IMAGE_EXTENSIONS:
        allowed = ", ".join(sorted(config.ALLOWED_IMAGE_EXTENSIONS))
        raise InputRejected(f"Unsupported image type '{path.suffix}'. Allowed: {allowed}")
    if not path.is_file():
        raise InputRejected(f"Image not found: {image_path}")
    size = path.stat().st_size
    if size > config.MAX_IMAGE_BYTES:
        raise InputRejected(
            f"Image is {size} bytes, limit is {config.MAX_IMAGE_BYTES} bytes"
        )
    return path


def build_pipeline(backend: str = None, catalogue_path: str = None) -> PrescriptionPipeline:
    return PrescriptionPipeline(
        recognizer=TextRecognitionEngine(backend=backend),
        catalogue_store=CatalogueStore(catalogue_path),
    )


def print_summary(result: PrescriptionResult) -> None:
    print("\n[STAGE 1] Text recognition...")
    text = result.extracted_text
    if text:
        print(f"  Extracted {len(text)} characters")
    else:
        print("  ✗ No text extracted.")

    print("\n[STAGE 2] Medicine detection...")
    if result.medicines:
        for med in result.medicines:
            if med.is_basic_info:
                print(f"  ? {med.name} (detected only)")
            else:
                print(f"  ✓ {med.name} (score: {med.match_score}, {med.match_type.value}, as '{med.detected_as}')")
    else:
        print("  ✗ No medicines identified.")

    print(f"\n  {result.message}")


def run_pipeline(image_path: str, backend: str = None, catalogue_path: str = None,
                 output_json: bool = True) -> PrescriptionResult:
    """
    Execute the full pipeline on a single prescription image.

    Args:
        image_path: Path to the prescription photo or scan.
        backend: "ocr" or "handwriting"; defaults to RECOGNITION_BACKEND.
        catalogue_path: Medicine dataset CSV; defaults to MEDICINE_CATALOGUE_PATH.
        output_json: If True, print final JSON to stdout.
    """
    print(f"\n{'='*60}")
    print(f"Processing: {image_path}")
    print('='*60)

    if backend is None and catalogue_path is None:
        result = asyncio.run(analyze_prescription_image(image_path))
    else:
        pipeline = build_pipeline(backend, catalogue_path)
        result = asyncio.run(pipeline.analyze(image_path))
    print_summary(result)

    if output_json:
        print("\n" + "="*60)
        print("FINAL JSON OUTPUT")
        print("="*60)
        print(json.dumps(result.to_response(), indent=2))

    return result


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Prescription Context Engine",
        epilog="Example: python main.py images/prescription1.jpg --backend ocr"
    )
    parser.add_argument("image", help="Path to the prescription image")
    parser.add_argument(
        "--backend",
        choices=["ocr", "handwriting"],
        default=None,
        help="Text recognition backend (default: RECOGNITION_BACKEND or ocr)"
    )
    parser.add_argument(
        "--catalogue",
        default=None,
        help="Path to the medicine dataset CSV (default: MEDICINE_CATALOGUE_PATH)"
    )
    parser.add_argument(
        "--no-json",
        action="store_true",
        help="Suppress JSON output"
    )

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=config.LOG_LEVEL,
        format="%(asctime)s - %(levelname)s - %(message)s"
    )

    try:
        validate_image_path(args.image)
    except InputRejected as e:
        print(f"[ERROR] {e}", file=sys.stderr)
        return 2

    try:
        run_pipeline(args.image, backend=args.backend, catalogue_path=args.catalogue,
                     output_json=not args.no_json)
        return 0
    except Exception as e:
        logger.exception("Pipeline failed")
        print(f"\n[ERROR] Pipeline failed: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
