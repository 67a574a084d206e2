"""Custom Keras layers and the registry used to deserialize them."""
from .normalization import Normalization, EPSILON, WEIGHT_NAMES
from .registry import LayerRegistry, build_layer_registry

__all__ = [
    "Normalization",
    "EPSILON",
    "WEIGHT_NAMES",
    "LayerRegistry",
    "build_layer_registry",
]
