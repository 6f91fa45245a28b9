# src/handwriting/model.py
"""
Handwriting recognition model: CNN + bidirectional LSTM emitting per-timestep
character probabilities, decoded with greedy CTC.

Loading order:
1. a Keras-native file next to the topology (model.keras / model.h5)
2. manual reconstruction from the pruned JSON topology and weight shards

Any failure (no TensorFlow, missing artifact, bad weights) disables the
backend for the process and recognition returns an empty result.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

import numpy as np

from schema import RecognitionResult
from src import config
from src.handwriting.artifacts import (
    ArtifactError,
    ArtifactReader,
    FileSystemReader,
    get_reader,
    load_weight_shards,
    read_model_artifact,
)
from src.handwriting.decoding import build_symbol_table, greedy_decode
from src.handwriting.topology import CHAR_PROBS_OUTPUT, IMAGE_INPUT, prune_for_inference
from src.utils.single_flight import SingleFlight
from src.vision.preprocessing import prepare_handwriting_line

logger = logging.getLogger(__name__)

ENGINE = "handwriting"
NATIVE_SUFFIXES = (".keras", ".h5")


@dataclass
class InferenceEnvironment:
    predict: Callable[[np.ndarray], np.ndarray]
    input_size: Tuple[int, int]  # (width, height)
    runtime: str = "tensorflow"


def _resolve_tensorflow():
    try:
        import tensorflow as tf
    except ImportError:
        logger.warning("TensorFlow runtime unavailable, handwriting backend disabled")
        return None
    logger.info("TensorFlow runtime: %s", tf.__version__)
    return tf


def _custom_objects(tf) -> Dict[str, type]:
    class CTCLossLayer(tf.keras.layers.Layer):
        """Training-time loss node; passes its first input through at inference."""

        def call(self, inputs):
            if isinstance(inputs, (list, tuple)) and inputs:
                return inputs[0]
            return inputs

    return {"CTCLossLayer": CTCLossLayer}


def _variable_keys(variable) -> List[str]:
    keys = []
    for attr in ("path", "name"):
        value = getattr(variable, attr, None)
        if isinstance(value, str):
            keys.append(value.split(":")[0])
    return keys


def assign_weights(model, weights: Dict[str, np.ndarray], manifest_order: List[str]) -> None:
    """
    Assign shard weights by name, falling back to manifest order when the
    graph's variable names differ but the counts agree.
    """
    variables = list(model.weights)
    resolved = []
    for variable in variables:
        key = next((k for k in _variable_keys(variable) if k in weights), None)
        if key is None:
            break
        resolved.append((variable, weights[key]))

    if len(resolved) == len(variables):
        for variable, value in resolved:
            variable.assign(value)
        return

    if len(manifest_order) == len(variables):
        logger.info("Weight names differ from graph, assigning %d weights by manifest order", len(variables))
        model.set_weights([weights[name] for name in manifest_order])
        return

    raise ArtifactError(
        f"Cannot map {len(weights)} manifest weights onto {len(variables)} model variables"
    )


class HandwritingModel:
    def __init__(self, model_path: Optional[str] = None, reader: Optional[ArtifactReader] = None,
                 invert: Optional[str] = None, debug: Optional[bool] = None,
                 environment_loader: Optional[Callable[[], Optional[InferenceEnvironment]]] = None):
        self.model_path = str(model_path or config.HANDWRITING_MODEL_PATH)
        self.reader = reader
        self.invert = invert
        self.debug = debug
        self._environment_loader = environment_loader or self.load_environment
        self._flight = SingleFlight(self._load_async, name=f"handwriting:{self.model_path}")

    async def _load_async(self) -> Optional[InferenceEnvironment]:
        return await asyncio.to_thread(self._environment_loader)

    async def environment(self) -> Optional[InferenceEnvironment]:
        return await self._flight.get()

    @property
    def load_count(self) -> int:
        return self._flight.load_count

    def _invert_flag(self) -> str:
        return self.invert if self.invert is not None else config.PRESCRIPTION_INVERT

    def _trace(self) -> bool:
        return self.debug if self.debug is not None else config.debug_trace_enabled()

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def load_environment(self) -> Optional[InferenceEnvironment]:
        tf = _resolve_tensorflow()
        if tf is None:
            return None

        try:
            reader = self.reader or get_reader(config.HANDWRITING_ARTIFACT_READER)
            model = self._load_native(tf, reader)
            if model is None:
                if not reader.exists(self.model_path):
                    logger.warning("Handwriting model not found at %s", self.model_path)
                    return None
                model = self._load_manual(tf, reader)
            return self._build_environment(tf, model)
        except Exception as e:
            logger.warning("Handwriting model load failed: %s", e)
            return None

    def _load_native(self, tf, reader: ArtifactReader):
        if not isinstance(reader, FileSystemReader):
            return None
        base = Path(self.model_path)
        for suffix in NATIVE_SUFFIXES:
            candidate = base.with_suffix(suffix)
            if not candidate.is_file():
                continue
            try:
                model = tf.keras.models.load_model(
                    str(candidate), compile=False, custom_objects=_custom_objects(tf)
                )
                logger.info("Loaded handwriting model from %s", candidate)
                return model
            except Exception as e:
                logger.warning("Native load of %s failed, attempting manual load: %s", candidate, e)
        return None

    def _load_manual(self, tf, reader: ArtifactReader):
        artifact = read_model_artifact(self.model_path, reader)
        pruned, report = prune_for_inference(artifact)
        logger.info(
            "Topology pruned (v%d): removed %s, %d weight names normalized",
            report.version, report.removed_layers or "nothing", len(report.renamed_weights),
        )

        model = tf.keras.models.model_from_json(
            json.dumps(pruned.topology.model_config()),
            custom_objects=_custom_objects(tf),
        )
        weights = load_weight_shards(pruned, self.model_path, reader)
        assign_weights(model, weights, [spec.name for spec in pruned.weight_specs()])
        logger.info("Reconstructed handwriting model from %d weight arrays", len(weights))
        return model

    def _build_environment(self, tf, model) -> InferenceEnvironment:
        try:
            image_input = model.get_layer(IMAGE_INPUT).output
        except ValueError:
            image_input = model.inputs[0]
        char_output = model.get_layer(CHAR_PROBS_OUTPUT).output
        inference = tf.keras.Model(inputs=image_input, outputs=char_output)

        width, height = config.HANDWRITING_IMAGE_WIDTH, config.HANDWRITING_IMAGE_HEIGHT
        shape = getattr(inference, "input_shape", None)
        if isinstance(shape, tuple) and len(shape) == 4 and shape[1] and shape[2]:
            height, width = int(shape[1]), int(shape[2])

        def predict(batch: np.ndarray) -> np.ndarray:
            output = inference(batch, training=False)
            try:
                return np.asarray(output)
            finally:
                del output

        return InferenceEnvironment(predict=predict, input_size=(width, height))

    # ------------------------------------------------------------------
    # Inference
    # ------------------------------------------------------------------

    def infer(self, environment: InferenceEnvironment, image_path: str) -> RecognitionResult:
        batch = None
        logits = None
        try:
            width, height = environment.input_size
            batch = prepare_handwriting_line(image_path, width, height, self._invert_flag())
            logits = environment.predict(batch)
            if logits is None or logits.ndim != 3 or logits.shape[1] == 0 or logits.shape[2] == 0:
                return RecognitionResult.empty(ENGINE)

            sequence = logits[0]
            symbols = build_symbol_table(int(sequence.shape[-1]))
            return greedy_decode(sequence, symbols, trace=self._trace(), engine=ENGINE)
        finally:
            del batch, logits

    async def recognize(self, image_path: str) -> RecognitionResult:
        try:
            environment = await self.environment()
            if environment is None:
                return RecognitionResult.empty(ENGINE)
            return await asyncio.to_thread(self.infer, environment, image_path)
        except Exception as e:
            logger.warning("Handwriting inference failed: %s", e)
            return RecognitionResult.empty(ENGINE)
