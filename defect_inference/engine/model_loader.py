"""
Model Loader
============
Deserializes Keras model graphs that embed custom layers.

Supported artifacts:

* ``model.json`` + binary weight shards (graph description and a weight
  manifest that binds weights to layers by name), in either the Keras 3
  serialization format or the legacy pre-Keras-3 topology converters emit
* native ``.keras`` archives
* legacy ``.h5`` files

Custom layer types are resolved through an explicit ``LayerRegistry``.
"""

import copy
import json
import logging
import shutil
import tempfile
import time
import zipfile
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple, Union

import h5py
import numpy as np
from keras.src.legacy.saving import saving_utils as legacy_saving_utils
from tensorflow import keras

from .. import __version__
from ..layers import LayerRegistry, Normalization
from ..errors import ModelLoadError

logger = logging.getLogger(__name__)

# Weight dtypes the manifest may declare (little-endian on disk)
WEIGHT_DTYPES = {
    "float32": np.dtype("<f4"),
    "int32": np.dtype("<i4"),
    "uint8": np.dtype("u1"),
    "bool": np.dtype("?"),
}

DEFAULT_SHARD_NAME = "group1-shard1of1.bin"
KERAS_CONFIG_NAME = "config.json"


class ModelFormat(Enum):
    """Supported model formats."""
    LAYERS_JSON = "layers_json"
    KERAS = "keras"
    H5 = "h5"

    @classmethod
    def from_extension(cls, ext: str) -> Optional["ModelFormat"]:
        """Get format from file extension."""
        ext = ext.lower().lstrip(".")
        mapping = {
            "json": cls.LAYERS_JSON,
            "keras": cls.KERAS,
            "h5": cls.H5,
            "hdf5": cls.H5,
        }
        return mapping.get(ext)


@dataclass
class ModelInfo:
    """Information about a loaded model."""
    name: str
    format: ModelFormat
    path: Path
    input_shape: Optional[Tuple[Optional[int], ...]] = None
    output_shape: Optional[Tuple[Optional[int], ...]] = None
    normalization_layers: int = 0
    load_time_ms: float = 0.0
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "format": self.format.value,
            "path": str(self.path),
            "input_shape": list(self.input_shape) if self.input_shape else None,
            "output_shape": list(self.output_shape) if self.output_shape else None,
            "normalization_layers": self.normalization_layers,
            "load_time_ms": round(self.load_time_ms, 2),
            "metadata": dict(self.metadata),
        }


class ModelLoader:
    """
    Loads model artifacts, resolving custom layers through a registry.

    Detects the format from the file extension and refuses graphs that
    reference a required layer type the registry does not know.
    """

    def __init__(
        self,
        registry: LayerRegistry,
        required_layer_types: Sequence[str] = ("Normalization",),
    ):
        """
        Initialize model loader.

        Args:
            registry: Registry of custom layer classes
            required_layer_types: Type names that must be registered before
                a graph referencing them may be loaded
        """
        self.registry = registry
        self.required_layer_types = tuple(required_layer_types)

    def load(self, model_path: Union[str, Path]) -> Tuple[Any, ModelInfo]:
        """
        Load a model from file.

        Args:
            model_path: Path to ``model.json``, ``.keras`` or ``.h5``

        Returns:
            Tuple of (model, ModelInfo)
        """
        path = Path(model_path)
        if not path.exists():
            raise ModelLoadError(f"Model not found: {path}")

        fmt = ModelFormat.from_extension(path.suffix)
        if fmt is None:
            raise ModelLoadError(f"Unsupported model format: {path.suffix}")

        logger.info(f"Loading {fmt.value} model: {path}")
        start_time = time.time()
        metadata: Dict[str, Any] = {}

        try:
            if fmt == ModelFormat.LAYERS_JSON:
                model = self._load_layers_json(path, metadata)
            else:
                model = self._load_archive(path, fmt, metadata)
        except ModelLoadError:
            raise
        except Exception as e:
            raise ModelLoadError(f"Failed to deserialize {path.name}: {e}") from e

        self._check_resolved_layers(model)
        load_time = (time.time() - start_time) * 1000

        info = ModelInfo(
            name=path.parent.name if fmt == ModelFormat.LAYERS_JSON else path.stem,
            format=fmt,
            path=path,
            input_shape=_first_shape(model, "inputs"),
            output_shape=_first_shape(model, "outputs"),
            normalization_layers=sum(
                1 for layer in iter_layers(model) if isinstance(layer, Normalization)
            ),
            load_time_ms=load_time,
            metadata=metadata,
        )

        logger.info(f"Model '{info.name}' loaded in {load_time:.2f}ms")
        return model, info

    # ------------------------------------------------------------------
    # Graph description + weight manifest
    # ------------------------------------------------------------------

    def _load_layers_json(self, path: Path, metadata: Dict[str, Any]) -> Any:
        try:
            document = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise ModelLoadError(f"Malformed model description {path}: {e}") from e

        topology = document.get("modelTopology")
        if not isinstance(topology, dict):
            raise ModelLoadError(f"{path.name} has no modelTopology")
        model_config = topology.get("model_config", topology)
        if not isinstance(model_config, dict) or "class_name" not in model_config:
            raise ModelLoadError(f"{path.name} has no model class in its topology")

        self._check_layer_types(model_config)

        legacy = is_legacy_config(model_config)
        metadata["legacy_config"] = legacy
        if "generatedBy" in document:
            metadata["generated_by"] = document["generatedBy"]
        keras_version = topology.get("keras_version")
        if keras_version:
            metadata["keras_version"] = keras_version

        if legacy:
            model = legacy_saving_utils.model_from_config(
                upgrade_legacy_config(model_config),
                custom_objects=self.registry.custom_objects(),
            )
        else:
            self._bind_registered_types(model_config)
            model = keras.models.model_from_json(
                json.dumps(model_config),
                custom_objects=self.registry.custom_objects(),
            )

        weights = read_weight_manifest(path.parent, document.get("weightsManifest") or [])
        bind_weights(model, weights)
        return model

    # ------------------------------------------------------------------
    # Native archives
    # ------------------------------------------------------------------

    def _load_archive(self, path: Path, fmt: ModelFormat, metadata: Dict[str, Any]) -> Any:
        config = self._read_archive_config(path, fmt)
        self._check_layer_types(config)
        metadata["legacy_config"] = is_legacy_config(config)

        rebound = self._bind_registered_types(config)
        if not rebound:
            return self._keras_load(path)

        # Saved under another class for a registered type name: load a copy
        # whose config points at the registered class
        logger.info(f"Rebinding {rebound} layer(s) in {path.name} to registered classes")
        metadata["rebound_layers"] = rebound
        with tempfile.TemporaryDirectory(prefix="defect_model_") as tmp:
            patched = Path(tmp) / path.name
            _write_archive_config(path, patched, fmt, config)
            return self._keras_load(patched)

    def _keras_load(self, path: Path) -> Any:
        return keras.models.load_model(
            str(path),
            custom_objects=self.registry.custom_objects(),
            compile=False,
        )

    def _read_archive_config(self, path: Path, fmt: ModelFormat) -> Dict[str, Any]:
        """Read the graph config embedded in a ``.keras`` or ``.h5`` file."""
        if fmt == ModelFormat.KERAS:
            with zipfile.ZipFile(path) as archive:
                return json.loads(archive.read(KERAS_CONFIG_NAME))

        with h5py.File(path, "r") as handle:
            raw = handle.attrs.get("model_config")
        if raw is None:
            raise ModelLoadError(f"{path.name} has no model_config attribute")
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        return json.loads(raw)

    def _check_layer_types(self, config: Dict[str, Any]):
        referenced = set(iter_class_names(config))
        missing = [
            name for name in self.required_layer_types
            if name in referenced and name not in self.registry
        ]
        if missing:
            raise ModelLoadError(
                f"Graph references unregistered layer type(s): {', '.join(missing)}"
            )

    def _bind_registered_types(self, config: Dict[str, Any]) -> int:
        """
        Point serialized entries of registered type names at the registered
        class. Legacy entries carry no ``module`` and already resolve through
        ``custom_objects``.

        Returns:
            Number of entries rewritten
        """
        rewritten = 0
        for node in list(iter_class_nodes(config)):
            name = node["class_name"]
            if "module" not in node or name not in self.registry:
                continue
            layer_cls = self.registry.get(name)
            if node.get("module") == layer_cls.__module__ and node.get("registered_name") == name:
                continue
            node["module"] = layer_cls.__module__
            node["registered_name"] = name
            rewritten += 1
        return rewritten

    def _check_resolved_layers(self, model: Any):
        for layer in iter_layers(model):
            name = type(layer).__name__
            if name in self.registry and not isinstance(layer, self.registry.get(name)):
                raise ModelLoadError(
                    f"Layer '{layer.name}' resolved to {type(layer).__module__}.{name}, "
                    f"not the registered class"
                )


def is_legacy_config(config: Dict[str, Any]) -> bool:
    """Configs written before Keras 3 carry no ``module`` keys."""
    return isinstance(config, dict) and "module" not in config


def upgrade_legacy_config(config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Normalize a legacy Sequential topology for the Keras 3 deserializer.

    Keras 3 turns ``batch_input_shape`` on a non-input layer into an
    ``input_shape`` that still includes the batch axis, so the first layer's
    ``batch_input_shape`` is moved onto an explicit ``InputLayer``. Bare layer
    lists (oldest Sequential format) are wrapped with a name.
    """
    config = copy.deepcopy(config)
    if config.get("class_name") != "Sequential":
        return config

    inner = config.get("config")
    if isinstance(inner, list):
        inner = {"layers": inner}
    inner.setdefault("name", "sequential")
    layers = inner.get("layers") or []

    if layers and layers[0].get("class_name") != "InputLayer":
        first = layers[0].setdefault("config", {})
        batch_shape = first.pop("batch_input_shape", None)
        if batch_shape is not None:
            dtype = first.get("dtype")
            layers.insert(0, {
                "class_name": "InputLayer",
                "config": {
                    "batch_input_shape": batch_shape,
                    "dtype": dtype if isinstance(dtype, str) else "float32",
                    "name": f"{first.get('name', 'input')}_input",
                },
            })

    inner["layers"] = layers
    config["config"] = inner
    return config


def iter_class_nodes(node: Any) -> Iterator[Dict[str, Any]]:
    """Yield every dict in a serialized Keras config that has a ``class_name``."""
    if isinstance(node, dict):
        if isinstance(node.get("class_name"), str):
            yield node
        for value in node.values():
            yield from iter_class_nodes(value)
    elif isinstance(node, list):
        for value in node:
            yield from iter_class_nodes(value)


def iter_class_names(node: Any) -> Iterator[str]:
    """Yield every ``class_name`` found in a serialized Keras config."""
    for class_node in iter_class_nodes(node):
        yield class_node["class_name"]


def iter_layers(model: Any) -> Iterator[Any]:
    """Yield the leaf layers of a model, descending into nested models."""
    for layer in getattr(model, "layers", []):
        if getattr(layer, "layers", None):
            yield from iter_layers(layer)
        else:
            yield layer


def weight_key(layer: Any, variable: Any) -> str:
    """Manifest name of a layer variable, e.g. ``normalization/mean``."""
    short_name = variable.name.split("/")[-1].split(":")[0]
    return f"{layer.name}/{short_name}"


def _manifest_key(layer: Any, variable: Any, weights: Dict[str, np.ndarray]) -> str:
    """
    Manifest entry for a variable: ``layer/weight`` first, then the full
    variable path (``sequential/normalization/mean``) some converters write.
    """
    key = weight_key(layer, variable)
    if key in weights:
        return key
    path = getattr(variable, "path", None)
    if path:
        path = path.split(":")[0]
        if path in weights:
            return path
    return key


def read_weight_manifest(base_dir: Path, manifest: Iterable[Dict[str, Any]]) -> Dict[str, np.ndarray]:
    """
    Read binary weight shards described by a weight manifest.

    Each manifest group lists shard ``paths`` (concatenated in order) and
    the ``weights`` packed into them.

    Args:
        base_dir: Directory the shard paths are relative to
        manifest: Manifest groups

    Returns:
        Mapping of weight name to array
    """
    weights: Dict[str, np.ndarray] = {}

    for group in manifest:
        try:
            buffer = b"".join((base_dir / shard).read_bytes() for shard in group["paths"])
        except OSError as e:
            raise ModelLoadError(f"Cannot read weight shard: {e}") from e

        offset = 0
        for spec in group.get("weights", []):
            name = spec["name"]
            if "quantization" in spec:
                raise ModelLoadError(f"Quantized weight '{name}' is not supported")

            dtype = WEIGHT_DTYPES.get(spec.get("dtype", "float32"))
            if dtype is None:
                raise ModelLoadError(f"Unsupported dtype '{spec.get('dtype')}' for weight '{name}'")

            shape = tuple(int(dim) for dim in spec["shape"])
            count = int(np.prod(shape, dtype=np.int64))
            size = count * dtype.itemsize
            if offset + size > len(buffer):
                raise ModelLoadError(f"Weight shard too short for '{name}'")

            if name in weights:
                raise ModelLoadError(f"Duplicate weight '{name}' in manifest")
            weights[name] = np.frombuffer(buffer, dtype=dtype, count=count, offset=offset).reshape(shape).copy()
            offset += size

    return weights


def bind_weights(model: Any, weights: Dict[str, np.ndarray]):
    """
    Assign manifest weights to model layers by name.

    Every variable the graph allocates must be present in the manifest and
    every manifest entry must be claimed by a layer.
    """
    missing: List[str] = []
    mismatched: List[str] = []
    claimed = set()
    assignments = []

    for layer in iter_layers(model):
        variables = layer.weights
        if not variables:
            continue

        values = []
        for variable in variables:
            key = _manifest_key(layer, variable, weights)
            if key not in weights:
                missing.append(key)
                continue
            value = weights[key]
            if tuple(value.shape) != tuple(variable.shape):
                mismatched.append(f"{key} expected {tuple(variable.shape)} got {tuple(value.shape)}")
                continue
            values.append(value.astype(variable.dtype))
            claimed.add(key)
        assignments.append((layer, values))

    unclaimed = sorted(set(weights) - claimed)
    if missing or mismatched or unclaimed:
        problems = []
        if missing:
            problems.append(f"missing weights: {', '.join(missing)}")
        if mismatched:
            problems.append(f"shape mismatch: {'; '.join(mismatched)}")
        if unclaimed:
            problems.append(f"unexpected weights: {', '.join(unclaimed)}")
        raise ModelLoadError("Weight manifest does not match graph (" + " | ".join(problems) + ")")

    for layer, values in assignments:
        layer.set_weights(values)

    logger.debug(f"Bound {len(claimed)} weights to {len(assignments)} layers")


def export_layers_model(
    model: Any,
    directory: Union[str, Path],
    shard_name: str = DEFAULT_SHARD_NAME,
) -> Path:
    """
    Write a model as ``model.json`` plus one binary weight shard.

    Args:
        model: Built Keras model
        directory: Output directory (created if needed)
        shard_name: File name of the weight shard

    Returns:
        Path to the written ``model.json``
    """
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)

    entries = []
    chunks = []
    for layer in iter_layers(model):
        for variable in layer.weights:
            array = np.asarray(keras.ops.convert_to_numpy(variable))
            dtype_name = str(array.dtype)
            if dtype_name not in WEIGHT_DTYPES:
                raise ValueError(f"Cannot export weight of dtype {dtype_name}")
            entries.append({
                "name": weight_key(layer, variable),
                "shape": list(array.shape),
                "dtype": dtype_name,
            })
            chunks.append(np.ascontiguousarray(array, dtype=WEIGHT_DTYPES[dtype_name]).tobytes())

    (directory / shard_name).write_bytes(b"".join(chunks))

    document = {
        "format": "layers-model",
        "generatedBy": f"keras v{keras.version()}",
        "convertedBy": f"defect-inference v{__version__}",
        "modelTopology": {
            "keras_version": keras.version(),
            "backend": keras.backend.backend(),
            "model_config": json.loads(model.to_json()),
        },
        "weightsManifest": [{"paths": [shard_name], "weights": entries}],
    }

    model_json = directory / "model.json"
    model_json.write_text(json.dumps(document, indent=2), encoding="utf-8")
    logger.info(f"Exported {len(entries)} weights to {directory}")
    return model_json


def _first_shape(model: Any, attr: str) -> Optional[Tuple[Optional[int], ...]]:
    try:
        tensors = getattr(model, attr)
    except (AttributeError, ValueError):
        return None
    if not tensors:
        return None
    return tuple(tensors[0].shape)


def _write_archive_config(source: Path, target: Path, fmt: ModelFormat, config: Dict[str, Any]):
    """Copy a ``.keras`` / ``.h5`` file to ``target`` with ``config`` as its graph config."""
    payload = json.dumps(config)
    if fmt == ModelFormat.KERAS:
        with zipfile.ZipFile(source) as src, zipfile.ZipFile(target, "w", zipfile.ZIP_DEFLATED) as dst:
            for item in src.infolist():
                data = payload.encode("utf-8") if item.filename == KERAS_CONFIG_NAME else src.read(item)
                dst.writestr(item, data)
        return

    shutil.copyfile(source, target)
    with h5py.File(target, "r+") as handle:
        handle.attrs["model_config"] = payload
