#!/usr/bin/env python3
"""
Evaluation for prescription analysis responses.

Scores a saved response (the JSON printed by main.py) against a ground
truth record:
  - CER, character error rate of extractedText
  - WER, the same over whitespace-separated words
  - medicine match rate, fraction of expected medicines identified

Error rate = (S + D + I) / N, with N the ground-truth length.
"""

import sys
import json
import argparse
from pathlib import Path
from typing import Dict, List, Sequence, Tuple, Union
from rapidfuzz import distance as rd

FUZZY_THRESHOLD = 0.85

Tokens = Union[str, Sequence[str]]


def edit_breakdown(predicted: Tokens, ground_truth: Tokens) -> Dict[str, int]:
    ops = rd.Levenshtein.editops(predicted, ground_truth)
    return {
        "S": sum(1 for op in ops if op.tag == "replace"),
        "D": sum(1 for op in ops if op.tag == "delete"),
        "I": sum(1 for op in ops if op.tag == "insert"),
        "N": len(ground_truth),
    }


def _error_rate(predicted: Tokens, ground_truth: Tokens) -> Tuple[float, Dict]:
    if not ground_truth:
        return (0.0 if not predicted else 1.0), {"S": 0, "D": 0, "I": len(predicted), "N": 0}
    counts = edit_breakdown(predicted, ground_truth)
    return (counts["S"] + counts["D"] + counts["I"]) / counts["N"], counts


def calculate_cer(predicted: str, ground_truth: str) -> Tuple[float, Dict]:
    """Character error rate plus its S/D/I/N breakdown."""
    return _error_rate(predicted or "", ground_truth or "")


def calculate_wer(predicted: str, ground_truth: str) -> Tuple[float, Dict]:
    return _error_rate((predicted or "").split(), (ground_truth or "").split())


def _best_prediction(name: str, predicted: List[str]) -> Tuple[str, float]:
    best, best_similarity = None, 0.0
    for candidate in predicted:
        similarity = rd.Levenshtein.normalized_similarity(candidate, name)
        if similarity > best_similarity:
            best, best_similarity = candidate, similarity
    return best, best_similarity


def calculate_medicine_match_rate(
    predicted_names: List[str],
    ground_truth_names: List[str],
    fuzzy_threshold: float = FUZZY_THRESHOLD
) -> Tuple[float, Dict]:
    """
    Fraction of ground-truth medicines found among the predictions.

    A medicine is found on an exact (case-insensitive) match, or when the
    closest prediction's normalized Levenshtein similarity reaches
    `fuzzy_threshold`.
    """
    predicted = [str(p).lower().strip() for p in predicted_names if p]
    found = 0
    details = {}

    for gt_name in ground_truth_names:
        expected = str(gt_name).lower().strip()
        if expected in predicted:
            found += 1
            details[gt_name] = {"status": "EXACT_MATCH", "pred": gt_name}
            continue

        best, similarity = _best_prediction(expected, predicted)
        status = "FUZZY_MATCH" if best is not None and similarity >= fuzzy_threshold else "MISSED"
        if status == "FUZZY_MATCH":
            found += 1
        details[gt_name] = {"status": status, "pred": best, "similarity": round(similarity, 4)}

    rate = found / len(ground_truth_names) if ground_truth_names else 0.0
    return rate, details


def identified_names(response: Dict) -> List[str]:
    """Catalogue-backed medicine names; detected-only rows do not count."""
    return [m.get("name") for m in response.get("medicines", []) if not m.get("isBasicInfo")]


def evaluate_single(prediction_json: Dict, ground_truth_json: Dict) -> Dict:
    """
    Evaluate one analysis response against ground truth.

    Ground truth format: {"extractedText": "...", "medicines": ["Dolo 650", ...]}
    """
    pred_text = prediction_json.get("extractedText") or ""
    gt_text = ground_truth_json.get("extractedText") or ""

    cer, cer_details = calculate_cer(pred_text, gt_text)
    wer, wer_details = calculate_wer(pred_text, gt_text)
    rate, rate_details = calculate_medicine_match_rate(
        identified_names(prediction_json), ground_truth_json.get("medicines", [])
    )

    return {
        "cer": {"value": round(cer, 4), "details": cer_details},
        "wer": {"value": round(wer, 4), "details": wer_details},
        "medicine_match_rate": {"value": round(rate, 4), "details": rate_details},
    }


def _load_json(path: Path) -> Dict:
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def evaluate_batch(predictions_dir: Path, ground_truth_file: Path) -> Dict:
    """
    Evaluate `<image stem>_prediction.json` files against one ground truth file.

    Expected ground truth format:
    {
        "image_name.jpeg": {"extractedText": "...", "medicines": [...]},
        ...
    }
    """
    ground_truths = _load_json(ground_truth_file)

    results = {}
    for gt_name, gt_data in ground_truths.items():
        pred_file = predictions_dir / f"{Path(gt_name).stem}_prediction.json"
        if not pred_file.exists():
            print(f"[WARN] Prediction not found for {gt_name}", file=sys.stderr)
            continue
        results[gt_name] = evaluate_single(_load_json(pred_file), gt_data)

    def average(metric: str) -> float:
        if not results:
            return 0.0
        return round(sum(r[metric]["value"] for r in results.values()) / len(results), 4)

    return {
        "total_samples": len(results),
        "average_cer": average("cer"),
        "average_wer": average("wer"),
        "average_medicine_match_rate": average("medicine_match_rate"),
        "individual_results": results,
    }


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Evaluate prescription analysis responses",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python evaluation.py single --prediction rx1_prediction.json --ground-truth rx1_gt.json
  python evaluation.py batch --predictions-dir ./outputs --ground-truth-file gt_all.json
        """
    )
    subparsers = parser.add_subparsers(dest="mode", help="Evaluation mode")

    single = subparsers.add_parser("single", help="Evaluate one response")
    single.add_argument("--prediction", "-p", required=True, help="Path to response JSON")
    single.add_argument("--ground-truth", "-g", required=True, help="Path to ground truth JSON")

    batch = subparsers.add_parser("batch", help="Evaluate a directory of responses")
    batch.add_argument("--predictions-dir", "-p", required=True, help="Directory containing response JSONs")
    batch.add_argument("--ground-truth-file", "-g", required=True, help="Path to ground truth file")
    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.mode == "single":
        results = evaluate_single(_load_json(Path(args.prediction)), _load_json(Path(args.ground_truth)))
    elif args.mode == "batch":
        results = evaluate_batch(Path(args.predictions_dir), Path(args.ground_truth_file))
    else:
        parser.print_help()
        return 2

    print(json.dumps(results, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
