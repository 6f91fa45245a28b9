import asyncio

import cv2
import numpy as np
import pytest

from src.handwriting.artifacts import FileSystemReader
from src.handwriting.decoding import build_symbol_table
from src.handwriting.model import HandwritingModel, InferenceEnvironment


@pytest.fixture
def line_image(tmp_path):
    image = np.full((32, 128), 255, dtype=np.uint8)
    cv2.putText(image, "Dolo", (5, 24), cv2.FONT_HERSHEY_SIMPLEX, 0.8, 0, 2)
    path = tmp_path / "line.png"
    cv2.imwrite(str(path), image)
    return str(path)


def _logits(classes, num_classes=8):
    logits = np.full((1, len(classes), num_classes), 0.01, dtype=np.float32)
    for t, c in enumerate(classes):
        logits[0, t, c] = 0.93
    return logits


class FakeEnvironmentLoader:
    def __init__(self, classes=(1, 1, 7, 2), input_size=(200, 64)):
        self.calls = 0
        self.batches = []
        self.classes = classes
        self.input_size = input_size

    def __call__(self):
        self.calls += 1

        def predict(batch):
            self.batches.append(batch.shape)
            return _logits(self.classes)

        return InferenceEnvironment(predict=predict, input_size=self.input_size, runtime="fake")


def test_recognize_decodes_model_output(line_image):
    loader = FakeEnvironmentLoader()
    model = HandwritingModel(environment_loader=loader, invert="auto", debug=False)

    result = asyncio.run(model.recognize(line_image))

    symbols = build_symbol_table(8)
    assert result.text == symbols[1] + symbols[2]
    assert result.engine == "handwriting"
    assert 0.0 <= result.confidence <= 1.0
    assert loader.batches == [(1, 64, 200, 1)]


def test_environment_is_loaded_once(line_image):
    loader = FakeEnvironmentLoader()
    model = HandwritingModel(environment_loader=loader, debug=False)

    async def run():
        return await asyncio.gather(*(model.recognize(line_image) for _ in range(5)))

    results = asyncio.run(run())

    assert loader.calls == 1
    assert model.load_count == 1
    assert len({r.text for r in results}) == 1


def test_model_input_size_drives_preprocessing(line_image):
    loader = FakeEnvironmentLoader(input_size=(128, 32))
    model = HandwritingModel(environment_loader=loader, debug=False)
    asyncio.run(model.recognize(line_image))
    assert loader.batches == [(1, 32, 128, 1)]


def test_unavailable_environment_degrades_to_empty(line_image):
    model = HandwritingModel(environment_loader=lambda: None)
    result = asyncio.run(model.recognize(line_image))

    assert result.text == ""
    assert result.confidence == 0.0


def test_missing_artifact_degrades_to_empty(tmp_path, line_image):
    model = HandwritingModel(model_path=tmp_path / "absent" / "model.json", reader=FileSystemReader())
    result = asyncio.run(model.recognize(line_image))

    assert result.text == ""
    assert result.confidence == 0.0


def test_unreadable_image_degrades_to_empty(tmp_path):
    model = HandwritingModel(environment_loader=FakeEnvironmentLoader(), debug=False)
    result = asyncio.run(model.recognize(str(tmp_path / "missing.png")))
    assert result.text == ""


def test_malformed_model_output_is_empty(line_image):
    env = InferenceEnvironment(predict=lambda batch: np.zeros((1, 0, 8), dtype=np.float32), input_size=(200, 64))
    model = HandwritingModel(environment_loader=lambda: env)
    result = asyncio.run(model.recognize(line_image))
    assert result.text == ""
