import json

import pytest

from evaluation import (
    calculate_cer,
    calculate_medicine_match_rate,
    calculate_wer,
    evaluate_batch,
    evaluate_single,
    main,
)


def test_cer_counts_edit_operations():
    cer, details = calculate_cer("Dolo 65O", "Dolo 650")
    assert cer == pytest.approx(1 / 8)
    assert details["S"] == 1
    assert details["N"] == 8


def test_cer_perfect_and_empty():
    assert calculate_cer("Paracetamol", "Paracetamol")[0] == 0.0
    assert calculate_cer("", "")[0] == 0.0
    assert calculate_cer("noise", "")[0] == 1.0


def test_medicine_match_rate():
    rate, details = calculate_medicine_match_rate(
        ["Dolo 650", "Paracetamol"],
        ["dolo 650", "Paracetamo", "Azithromycin"],
    )
    assert rate == pytest.approx(2 / 3)
    assert details["dolo 650"]["status"] == "EXACT_MATCH"
    assert details["Paracetamo"]["status"] == "FUZZY_MATCH"
    assert details["Azithromycin"]["status"] == "MISSED"


def test_medicine_match_rate_without_ground_truth():
    assert calculate_medicine_match_rate(["Dolo 650"], [])[0] == 0.0


def test_evaluate_single_ignores_detected_only_rows():
    prediction = {
        "extractedText": "Tab. Dolo 650",
        "medicines": [
            {"name": "Dolo 650", "isBasicInfo": False},
            {"name": "Azithromycin", "isBasicInfo": True},
        ],
    }
    ground_truth = {"extractedText": "Tab. Dolo 650", "medicines": ["Dolo 650", "Azithromycin"]}

    results = evaluate_single(prediction, ground_truth)

    assert results["cer"]["value"] == 0.0
    assert results["medicine_match_rate"]["value"] == 0.5


def test_evaluate_batch(tmp_path):
    (tmp_path / "rx1_prediction.json").write_text(json.dumps({
        "extractedText": "Pan 40",
        "medicines": [{"name": "Pan 40", "isBasicInfo": False}],
    }))
    ground_truth = tmp_path / "gt.json"
    ground_truth.write_text(json.dumps({
        "rx1.jpg": {"extractedText": "Pan 40", "medicines": ["Pan 40"]},
        "rx2.jpg": {"extractedText": "Dolo 650", "medicines": ["Dolo 650"]},
    }))

    summary = evaluate_batch(tmp_path, ground_truth)

    assert summary["total_samples"] == 1
    assert summary["average_cer"] == 0.0
    assert summary["average_medicine_match_rate"] == 1.0
    assert list(summary["individual_results"]) == ["rx1.jpg"]


def test_wer_counts_words():
    wer, details = calculate_wer("Tab Dolo 65O twice", "Tab Dolo 650")
    assert details == {"S": 1, "D": 1, "I": 0, "N": 3}
    assert wer == pytest.approx(2 / 3)


def test_cli_single(tmp_path, capsys):
    prediction = tmp_path / "pred.json"
    prediction.write_text(json.dumps({"extractedText": "Pan 40", "medicines": [{"name": "Pan 40"}]}))
    ground_truth = tmp_path / "gt.json"
    ground_truth.write_text(json.dumps({"extractedText": "Pan 40", "medicines": ["Pan 40"]}))

    assert main(["single", "-p", str(prediction), "-g", str(ground_truth)]) == 0
    results = json.loads(capsys.readouterr().out)
    assert results["medicine_match_rate"]["value"] == 1.0
    assert results["wer"]["value"] == 0.0


def test_cli_without_mode():
    assert main([]) == 2
