"""Model loading and the inference pipeline."""
from .model_loader import (
    ModelFormat,
    ModelInfo,
    ModelLoader,
    export_layers_model,
    read_weight_manifest,
    bind_weights,
)
from .pipeline import InferencePipeline, ModelState

__all__ = [
    "ModelFormat",
    "ModelInfo",
    "ModelLoader",
    "export_layers_model",
    "read_weight_manifest",
    "bind_weights",
    "InferencePipeline",
    "ModelState",
]
