"""Shared fixtures for the test suite."""

import json
import time
from pathlib import Path

import cv2
import numpy as np
from tensorflow import keras

from defect_inference.engine.model_loader import (
    DEFAULT_SHARD_NAME,
    WEIGHT_DTYPES,
    ModelFormat,
    ModelInfo,
)
from defect_inference.errors import ModelLoadError
from defect_inference.layers import Normalization

MEAN = [100.0, 100.0, 100.0]
VARIANCE = [2500.0, 2500.0, 2500.0]


def build_classifier(size=224, mean=MEAN, variance=VARIANCE):
    """
    Tiny model with the serving contract: (size, size, 3) -> 2 scores.

    The dense head copies the normalized R and G channel means to the
    defective and good scores, so a solid-colour image scores
    ``[(r - m0) / s0, (g - m1) / s1]``.
    """
    inputs = keras.Input(shape=(size, size, 3), name="image")
    x = Normalization(mean=mean, variance=variance, name="normalization")(inputs)
    x = keras.layers.GlobalAveragePooling2D(name="pool")(x)
    outputs = keras.layers.Dense(2, name="scores")(x)
    model = keras.Model(inputs, outputs, name="defect_classifier")

    kernel = np.zeros((3, 2), dtype=np.float32)
    kernel[0, 0] = 1.0
    kernel[1, 1] = 1.0
    model.get_layer("scores").set_weights([kernel, np.zeros(2, dtype=np.float32)])
    return model


def expected_scores(rgb, mean=MEAN, variance=VARIANCE):
    r, g, _ = rgb
    return np.array([
        (r - mean[0]) / np.sqrt(variance[0] + 1e-7),
        (g - mean[1]) / np.sqrt(variance[1] + 1e-7),
    ])


def solid_image(rgb, size=224):
    image = np.zeros((size, size, 3), dtype=np.uint8)
    image[:, :] = rgb
    return image


def encode_image(rgb_image, ext=".png"):
    """Encode an RGB (or grayscale / RGBA) array to image bytes."""
    if rgb_image.ndim == 3 and rgb_image.shape[-1] == 3:
        rgb_image = cv2.cvtColor(rgb_image, cv2.COLOR_RGB2BGR)
    elif rgb_image.ndim == 3 and rgb_image.shape[-1] == 4:
        rgb_image = cv2.cvtColor(rgb_image, cv2.COLOR_RGBA2BGRA)
    ok, buffer = cv2.imencode(ext, rgb_image)
    assert ok, "encoding failed"
    return buffer.tobytes()


def write_manifest(model_dir, weights):
    """Replace an exported model's weight shard with ``weights`` (name -> array)."""
    model_dir = Path(model_dir)
    model_json = model_dir / "model.json"
    document = json.loads(model_json.read_text(encoding="utf-8"))

    entries = []
    chunks = []
    for name, array in weights.items():
        array = np.asarray(array)
        dtype_name = str(array.dtype)
        entries.append({"name": name, "shape": list(array.shape), "dtype": dtype_name})
        chunks.append(np.ascontiguousarray(array, dtype=WEIGHT_DTYPES[dtype_name]).tobytes())

    (model_dir / DEFAULT_SHARD_NAME).write_bytes(b"".join(chunks))
    document["weightsManifest"] = [{"paths": [DEFAULT_SHARD_NAME], "weights": entries}]
    model_json.write_text(json.dumps(document), encoding="utf-8")


class StubModel:
    """Callable standing in for a Keras model."""

    def __init__(self, scores=(0.7, 0.3)):
        self.scores = np.array([scores], dtype=np.float32)
        self.calls = 0

    def __call__(self, batch, training=False):
        self.calls += 1
        return self.scores


class SlowModel(StubModel):
    """Model whose forward pass outlasts short inference timeouts."""

    def __init__(self, delay=0.5, scores=(0.7, 0.3)):
        super().__init__(scores)
        self.delay = delay

    def __call__(self, batch, training=False):
        time.sleep(self.delay)
        return super().__call__(batch, training=training)


class StubLoader:
    """Loader returning a fixed model."""

    def __init__(self, model=None, info=None):
        self.model = model if model is not None else StubModel()
        self.info = info or ModelInfo(name="stub", format=ModelFormat.LAYERS_JSON, path=Path("model.json"))
        self.calls = 0

    def load(self, model_path):
        self.calls += 1
        return self.model, self.info


class FailingLoader:
    """Loader that always fails like a missing artifact."""

    def __init__(self, message="Model not found: model.json"):
        self.message = message
        self.calls = 0

    def load(self, model_path):
        self.calls += 1
        raise ModelLoadError(self.message)
