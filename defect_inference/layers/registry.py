"""
Layer Registry
==============
Maps serialized layer type identifiers to the classes that rebuild them.

The registry is created once at startup and handed to the model loader,
which passes it to Keras as ``custom_objects`` when deserializing a graph.
"""

import logging
from typing import Dict, List, Optional, Type

from tensorflow import keras

from .normalization import Normalization

logger = logging.getLogger(__name__)


class LayerRegistry:
    """
    Explicit type-name -> layer class table used during graph deserialization.
    """

    def __init__(self):
        self._layers: Dict[str, Type[keras.layers.Layer]] = {}

    def register(self, layer_cls: Type[keras.layers.Layer], name: Optional[str] = None) -> str:
        """
        Register a layer class.

        Args:
            layer_cls: Layer class to register
            name: Type identifier (defaults to the class name)

        Returns:
            The identifier the class was registered under
        """
        if not (isinstance(layer_cls, type) and issubclass(layer_cls, keras.layers.Layer)):
            raise TypeError(f"{layer_cls!r} is not a Keras layer class")

        name = name or layer_cls.__name__
        existing = self._layers.get(name)
        if existing is not None and existing is not layer_cls:
            raise ValueError(
                f"Layer type '{name}' is already registered to {existing.__module__}.{existing.__name__}"
            )

        self._layers[name] = layer_cls
        logger.debug(f"Registered layer type: {name}")
        return name

    def get(self, name: str) -> Type[keras.layers.Layer]:
        """Get the class registered under ``name``."""
        try:
            return self._layers[name]
        except KeyError:
            raise KeyError(f"Layer type '{name}' is not registered") from None

    def names(self) -> List[str]:
        """List registered type identifiers."""
        return sorted(self._layers)

    def custom_objects(self) -> Dict[str, Type[keras.layers.Layer]]:
        """Mapping suitable for Keras ``custom_objects``."""
        return dict(self._layers)

    def __contains__(self, name: str) -> bool:
        return name in self._layers

    def __len__(self) -> int:
        return len(self._layers)


def build_layer_registry() -> LayerRegistry:
    """Create a registry with every custom layer the served models reference."""
    registry = LayerRegistry()
    registry.register(Normalization, "Normalization")
    return registry
