# src/handwriting/topology.py
"""
Typed view of a layers-model artifact (JSON topology + weights manifest)
and the transform that turns a training graph into an inference graph.

The training export carries nodes that inference does not need: label
inputs, the CTC loss layer, training config and signatures. Recurrent
weights may also use the training-side name prefixes. `prune_for_inference`
repairs all of this on the typed representation before any runtime sees it.
"""

import copy
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

TRANSFORM_VERSION = 1

IMAGE_INPUT = "image"
CHAR_PROBS_OUTPUT = "char_probs"

# Training-only layers the transform knows how to drop
REMOVABLE_LAYERS = frozenset({"label", "label_length", "ctc_loss"})

# Names carrying these markers look like training bookkeeping
BOOKKEEPING_MARKERS = ("label", "loss", "ctc")

KNOWN_LAYER_CLASSES = frozenset({
    "InputLayer", "Conv2D", "Conv1D", "SeparableConv2D", "MaxPooling2D",
    "AveragePooling2D", "BatchNormalization", "LayerNormalization", "Dropout",
    "SpatialDropout2D", "Activation", "ReLU", "LeakyReLU", "Reshape",
    "Permute", "Flatten", "Dense", "TimeDistributed", "Bidirectional", "LSTM",
    "GRU", "SimpleRNN", "Add", "Concatenate", "Multiply", "Rescaling",
    "ZeroPadding2D", "Softmax", "CTCLossLayer",
})

INPUT_SHAPE_ALIASES = ("batch_input_shape", "batchInputShape", "batch_shape", "batchShape")

DROPPED_ARTIFACT_KEYS = (
    "training_config", "modelInitializer", "initializerSignature",
    "signature", "inputSignature",
)

WEIGHT_PREFIX_RENAMES: Tuple[Tuple[str, str], ...] = (
    ("forward_lstm/lstm_cell/", "bidirectional/forward_forward_lstm/"),
    ("backward_lstm/lstm_cell/", "bidirectional/backward_forward_lstm/"),
    ("forward_lstm/", "bidirectional/forward_forward_lstm/"),
    ("backward_lstm/", "bidirectional/backward_forward_lstm/"),
)


class LayerDisposition(str, Enum):
    KEEP = "keep"
    UNSUPPORTED = "unsupported"


@dataclass
class LayerSpec:
    name: str
    class_name: str
    config: Dict[str, Any] = field(default_factory=dict)
    inbound_nodes: List[Any] = field(default_factory=list)
    disposition: LayerDisposition = LayerDisposition.KEEP
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "LayerSpec":
        known = {"name", "class_name", "config", "inbound_nodes"}
        config = raw.get("config") or {}
        return cls(
            name=raw.get("name") or config.get("name", ""),
            class_name=raw.get("class_name", ""),
            config=dict(config),
            inbound_nodes=list(raw.get("inbound_nodes") or []),
            extra={k: v for k, v in raw.items() if k not in known},
        )

    def to_dict(self) -> Dict[str, Any]:
        out = dict(self.extra)
        out.update({
            "class_name": self.class_name,
            "name": self.name,
            "config": self.config,
            "inbound_nodes": self.inbound_nodes,
        })
        return out


@dataclass
class ModelTopology:
    class_name: str
    name: str
    layers: List[LayerSpec]
    input_layers: List[List[Any]]
    output_layers: List[List[Any]]
    keras_version: Optional[str] = None
    backend: Optional[str] = None
    extra_config: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "ModelTopology":
        model_config = raw.get("model_config") or raw
        config = model_config.get("config") or {}
        known = {"name", "layers", "input_layers", "output_layers"}
        return cls(
            class_name=model_config.get("class_name", "Functional"),
            name=config.get("name", "model"),
            layers=[LayerSpec.from_dict(layer) for layer in config.get("layers") or []],
            input_layers=[list(x) for x in config.get("input_layers") or []],
            output_layers=[list(x) for x in config.get("output_layers") or []],
            keras_version=raw.get("keras_version"),
            backend=raw.get("backend"),
            extra_config={k: v for k, v in config.items() if k not in known},
        )

    def layer_names(self) -> List[str]:
        return [layer.name for layer in self.layers]

    def model_config(self) -> Dict[str, Any]:
        """Keras `model_from_json` compatible config."""
        config = dict(self.extra_config)
        config.update({
            "name": self.name,
            "layers": [layer.to_dict() for layer in self.layers],
            "input_layers": self.input_layers,
            "output_layers": self.output_layers,
        })
        return {"class_name": self.class_name, "config": config}

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"model_config": self.model_config()}
        if self.keras_version:
            out["keras_version"] = self.keras_version
        if self.backend:
            out["backend"] = self.backend
        return out


@dataclass
class WeightSpec:
    name: str
    shape: Tuple[int, ...]
    dtype: str = "float32"
    quantization: Optional[Dict[str, Any]] = None

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "WeightSpec":
        return cls(
            name=raw["name"],
            shape=tuple(int(d) for d in raw.get("shape") or ()),
            dtype=raw.get("dtype", "float32"),
            quantization=raw.get("quantization"),
        )


@dataclass
class WeightGroup:
    paths: List[str]
    weights: List[WeightSpec]


@dataclass
class ModelArtifact:
    topology: ModelTopology
    weights_manifest: List[WeightGroup]
    format: Optional[str] = None
    generated_by: Optional[str] = None
    converted_by: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_json(cls, model_json: Dict[str, Any]) -> "ModelArtifact":
        topology_raw = model_json.get("modelTopology")
        if not isinstance(topology_raw, dict):
            raise ValueError("model.json has no modelTopology")
        manifest = [
            WeightGroup(
                paths=list(group.get("paths") or []),
                weights=[WeightSpec.from_dict(w) for w in group.get("weights") or []],
            )
            for group in model_json.get("weightsManifest") or []
        ]
        metadata = {
            k: v for k, v in model_json.items()
            if k not in ("modelTopology", "weightsManifest", "format", "generatedBy", "convertedBy")
        }
        return cls(
            topology=ModelTopology.from_dict(topology_raw),
            weights_manifest=manifest,
            format=model_json.get("format"),
            generated_by=model_json.get("generatedBy"),
            converted_by=model_json.get("convertedBy"),
            metadata=metadata,
        )

    def weight_specs(self) -> List[WeightSpec]:
        return [spec for group in self.weights_manifest for spec in group.weights]


@dataclass
class PruneReport:
    version: int = TRANSFORM_VERSION
    removed_layers: List[str] = field(default_factory=list)
    unsupported_layers: List[Tuple[str, str]] = field(default_factory=list)
    renamed_weights: Dict[str, str] = field(default_factory=dict)
    dropped_metadata: List[str] = field(default_factory=list)


def normalize_weight_name(name: str) -> str:
    """Map training-side recurrent weight prefixes to the inference graph's."""
    if not isinstance(name, str):
        return name
    for prefix, replacement in WEIGHT_PREFIX_RENAMES:
        if name.startswith(prefix):
            return replacement + name[len(prefix):]
    return name


def classify_layer(layer: LayerSpec) -> LayerDisposition:
    lowered = layer.name.lower()
    if layer.class_name not in KNOWN_LAYER_CLASSES:
        return LayerDisposition.UNSUPPORTED
    if layer.name != CHAR_PROBS_OUTPUT and any(m in lowered for m in BOOKKEEPING_MARKERS):
        return LayerDisposition.UNSUPPORTED
    return LayerDisposition.KEEP


def _normalize_input_layer(layer: LayerSpec) -> None:
    cfg = layer.config
    shape = next((cfg[k] for k in INPUT_SHAPE_ALIASES if cfg.get(k)), None)
    if shape is None:
        return
    # camelCase spellings come from the JS converter and are not Keras kwargs
    for alias in ("batchInputShape", "batchShape"):
        cfg.pop(alias, None)
    if not cfg.get("batch_shape") and not cfg.get("batch_input_shape"):
        cfg["batch_input_shape"] = shape
    if not cfg.get("dtype"):
        cfg["dtype"] = "float32"


def _positional_inbound_nodes(nodes: List[Any]) -> List[Any]:
    """Convert keyword-style inbound nodes ({args, kwargs}) to list form."""
    if not nodes or all(isinstance(node, list) for node in nodes):
        return nodes

    converted = []
    for node in nodes:
        if isinstance(node, list):
            converted.append(node)
            continue
        if not isinstance(node, dict):
            continue
        kwargs = node.get("kwargs") or {}
        args = node.get("args")
        entries = []
        for arg in _flatten_args(args or []):
            history = (arg.get("config") or {}).get("keras_history") if isinstance(arg, dict) else None
            if isinstance(history, list) and len(history) >= 3:
                entries.append([history[0], history[1], history[2], kwargs])
        if entries:
            converted.append(entries)
    return converted


def _flatten_args(args: List[Any]) -> List[Any]:
    flat = []
    for arg in args:
        if isinstance(arg, list):
            flat.extend(_flatten_args(arg))
        else:
            flat.append(arg)
    return flat


def prune_for_inference(artifact: ModelArtifact) -> Tuple[ModelArtifact, PruneReport]:
    """
    Versioned training-graph -> inference-graph transform.

    Returns a new artifact; the input is not modified. Layers that cannot be
    classified are kept and listed in `PruneReport.unsupported_layers`.
    """
    pruned = copy.deepcopy(artifact)
    report = PruneReport()
    topology = pruned.topology

    kept: List[LayerSpec] = []
    for layer in topology.layers:
        if layer.name in REMOVABLE_LAYERS:
            report.removed_layers.append(layer.name)
            continue
        if layer.class_name == "InputLayer":
            _normalize_input_layer(layer)
        layer.inbound_nodes = _positional_inbound_nodes(layer.inbound_nodes)
        layer.disposition = classify_layer(layer)
        if layer.disposition == LayerDisposition.UNSUPPORTED:
            report.unsupported_layers.append((layer.name, layer.class_name))
        kept.append(layer)
    topology.layers = kept

    names = set(topology.layer_names())
    image_inputs = [entry for entry in topology.input_layers if entry and entry[0] == IMAGE_INPUT]
    if image_inputs:
        topology.input_layers = image_inputs
    else:
        topology.input_layers = [entry for entry in topology.input_layers if entry and entry[0] in names]

    if CHAR_PROBS_OUTPUT in names:
        topology.output_layers = [[CHAR_PROBS_OUTPUT, 0, 0]]
    else:
        topology.output_layers = [entry for entry in topology.output_layers if entry and entry[0] in names]

    for key in DROPPED_ARTIFACT_KEYS:
        if key in pruned.metadata:
            pruned.metadata.pop(key)
            report.dropped_metadata.append(key)

    for group in pruned.weights_manifest:
        for spec in group.weights:
            renamed = normalize_weight_name(spec.name)
            if renamed != spec.name:
                report.renamed_weights[spec.name] = renamed
                spec.name = renamed

    if report.unsupported_layers:
        logger.warning(
            "Topology transform v%d kept %d unsupported layer(s): %s",
            TRANSFORM_VERSION, len(report.unsupported_layers),
            ", ".join(f"{n} ({c})" for n, c in report.unsupported_layers),
        )
    logger.debug(
        "Pruned topology: removed=%s renamed=%d weights",
        report.removed_layers, len(report.renamed_weights),
    )
    return pruned, report
