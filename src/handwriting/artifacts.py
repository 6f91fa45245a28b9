# src/handwriting/artifacts.py
"""
Artifact I/O for the handwriting model.

Reading goes through an explicit `ArtifactReader` chosen by configuration,
so the same loader works for files on disk and artifacts served over HTTP.
"""

import json
import logging
from pathlib import Path
from typing import Dict, List, Protocol
from urllib.parse import urljoin

import numpy as np
import requests

from src.handwriting.topology import ModelArtifact, WeightSpec

logger = logging.getLogger(__name__)

DTYPES = {
    "float32": np.float32,
    "int32": np.int32,
    "uint8": np.uint8,
    "bool": np.bool_,
}


class ArtifactError(Exception):
    """Model artifact missing, unreadable or inconsistent."""


class ArtifactReader(Protocol):
    def load(self, location: str) -> bytes:
        ...

    def resolve(self, base: str, relative: str) -> str:
        ...

    def exists(self, location: str) -> bool:
        ...


class FileSystemReader:
    def load(self, location: str) -> bytes:
        try:
            return Path(location).read_bytes()
        except OSError as e:
            raise ArtifactError(f"Cannot read {location}: {e}") from e

    def resolve(self, base: str, relative: str) -> str:
        return str(Path(base).parent / relative)

    def exists(self, location: str) -> bool:
        return Path(location).is_file()


class HttpReader:
    def __init__(self, timeout: float = 30.0, session=None):
        self.timeout = timeout
        self.session = session or requests.Session()

    def load(self, location: str) -> bytes:
        try:
            r = self.session.get(location, timeout=self.timeout)
            r.raise_for_status()
            return r.content
        except requests.RequestException as e:
            raise ArtifactError(f"Cannot fetch {location}: {e}") from e

    def resolve(self, base: str, relative: str) -> str:
        return urljoin(base, relative)

    def exists(self, location: str) -> bool:
        try:
            r = self.session.head(location, timeout=self.timeout, allow_redirects=True)
            return r.ok
        except requests.RequestException:
            return False


READERS = {
    "filesystem": FileSystemReader,
    "http": HttpReader,
}


def get_reader(kind: str) -> ArtifactReader:
    try:
        return READERS[kind.strip().lower()]()
    except KeyError:
        raise ArtifactError(f"Unknown artifact reader '{kind}', expected one of {sorted(READERS)}")


def read_model_artifact(location: str, reader: ArtifactReader) -> ModelArtifact:
    raw = reader.load(location)
    try:
        model_json = json.loads(raw.decode("utf-8"))
        return ModelArtifact.from_json(model_json)
    except (UnicodeDecodeError, json.JSONDecodeError, ValueError, KeyError) as e:
        raise ArtifactError(f"Invalid model topology at {location}: {e}") from e


def _spec_nbytes(spec: WeightSpec, dtype) -> int:
    count = int(np.prod(spec.shape)) if spec.shape else 1
    return count * np.dtype(dtype).itemsize


def load_weight_shards(artifact: ModelArtifact, location: str,
                       reader: ArtifactReader) -> Dict[str, np.ndarray]:
    """
    Rebuild named weight arrays from the binary shards in the manifest.

    Shards of a group are concatenated in manifest order and sliced by each
    weight spec's shape and dtype.
    """
    weights: Dict[str, np.ndarray] = {}
    for group in artifact.weights_manifest:
        buffers: List[bytes] = [reader.load(reader.resolve(location, p)) for p in group.paths]
        blob = b"".join(buffers)

        offset = 0
        for spec in group.weights:
            if spec.quantization:
                raise ArtifactError(f"Quantized weight {spec.name} is not supported")
            dtype = DTYPES.get(spec.dtype)
            if dtype is None:
                raise ArtifactError(f"Unsupported dtype {spec.dtype} for weight {spec.name}")
            nbytes = _spec_nbytes(spec, dtype)
            if offset + nbytes > len(blob):
                raise ArtifactError(
                    f"Weight shards too short for {spec.name}: need {offset + nbytes} bytes, have {len(blob)}"
                )
            array = np.frombuffer(blob, dtype=dtype, count=nbytes // np.dtype(dtype).itemsize, offset=offset)
            weights[spec.name] = array.reshape(spec.shape).copy()
            offset += nbytes

        if offset != len(blob):
            logger.warning("Weight group has %d trailing bytes after %d specs", len(blob) - offset, len(group.weights))

    return weights
