"""
Normalization Layer
===================
Inference-only replay of a feature-wise standard-score transform.

The layer holds the statistics learned during training (``mean``,
``variance`` and the observation ``count``) and applies
``(x - mean) / sqrt(variance + epsilon)`` along the channel axis.
Statistics are never computed here: they arrive through the model's
weight manifest when the graph is deserialized.
"""

import logging
from typing import Any, Dict, Optional, Sequence

import numpy as np
from tensorflow import keras

logger = logging.getLogger(__name__)

ops = keras.ops

EPSILON = 1e-7

# Names the persisted weight manifest binds to this layer type. ``count`` is
# unused by the forward pass but must be allocated or binding fails.
WEIGHT_NAMES = ("mean", "variance", "count")


class Normalization(keras.layers.Layer):
    """
    Feature-wise normalization with persisted statistics.

    The class name doubles as the serialized type identifier
    ``"Normalization"`` referenced by saved model graphs.
    """

    def __init__(
        self,
        axis: int = -1,
        mean: Optional[Sequence[float]] = None,
        variance: Optional[Sequence[float]] = None,
        invert: bool = False,
        **kwargs,
    ):
        """
        Initialize the layer.

        Args:
            axis: Channel axis the statistics are laid out along
            mean: Optional initial mean (defaults to zeros)
            variance: Optional initial variance (defaults to ones)
            invert: Accepted for config compatibility; must be False
        """
        super().__init__(**kwargs)
        if isinstance(axis, (list, tuple)) and len(axis) == 1:
            # Stock Keras configs serialize a single axis as a one-element list
            axis = axis[0]
        if axis is None or isinstance(axis, (list, tuple)):
            raise ValueError(f"Normalization axis must be a single int, got {axis!r}")
        if invert:
            raise ValueError("Inverse normalization is not supported at inference time")

        self.axis = int(axis)
        self._initial_mean = mean
        self._initial_variance = variance

        self.mean = None
        self.variance = None
        self.count = None

    def build(self, input_shape):
        input_shape = _single_shape(input_shape)
        ndim = len(input_shape)
        if not -ndim <= self.axis < ndim:
            raise ValueError(
                f"Axis {self.axis} is out of range for input of rank {ndim}"
            )
        channels = input_shape[self.axis]
        if channels is None:
            raise ValueError(
                f"Normalization needs a known size on axis {self.axis}, got shape {input_shape}"
            )

        self.mean = self.add_weight(
            name="mean",
            shape=(channels,),
            dtype="float32",
            initializer="zeros",
            trainable=False,
        )
        self.variance = self.add_weight(
            name="variance",
            shape=(channels,),
            dtype="float32",
            initializer="ones",
            trainable=False,
        )
        self.count = self.add_weight(
            name="count",
            shape=(),
            dtype="int32",
            initializer="zeros",
            trainable=False,
        )

        if self._initial_mean is not None:
            self.mean.assign(_broadcast_stat(self._initial_mean, channels, "mean"))
        if self._initial_variance is not None:
            self.variance.assign(_broadcast_stat(self._initial_variance, channels, "variance"))

        self.input_spec = keras.layers.InputSpec(ndim=ndim, axes={self.axis: channels})
        self.built = True
        logger.debug(f"Built {self.name} with {channels} channels on axis {self.axis}")

    def call(self, inputs):
        x = self._single_input(inputs)

        channels = self.mean.shape[0]
        ndim = len(x.shape)
        axis = self.axis % ndim
        if x.shape[axis] is not None and x.shape[axis] != channels:
            raise ValueError(
                f"Expected {channels} channels on axis {self.axis}, got shape {tuple(x.shape)}"
            )

        broadcast_shape = [1] * ndim
        broadcast_shape[axis] = channels
        mean = ops.reshape(self.mean, broadcast_shape)
        variance = ops.reshape(self.variance, broadcast_shape)

        return ops.divide(
            ops.subtract(x, mean),
            ops.sqrt(ops.add(variance, EPSILON)),
        )

    @staticmethod
    def _single_input(inputs):
        """Unwrap a one-element list/tuple so either calling convention works."""
        if isinstance(inputs, (list, tuple)):
            if len(inputs) != 1:
                raise ValueError(
                    f"Normalization takes a single input, got {len(inputs)}"
                )
            return inputs[0]
        return inputs

    def compute_output_shape(self, input_shape):
        return tuple(_single_shape(input_shape))

    def get_config(self) -> Dict[str, Any]:
        config = super().get_config()
        config.update({"axis": self.axis})
        return config


def _single_shape(input_shape):
    # A one-element list of shapes comes from the wrapped calling convention
    if isinstance(input_shape, list) and input_shape and isinstance(input_shape[0], (list, tuple)):
        return input_shape[0]
    return input_shape


def _broadcast_stat(value, channels: int, name: str) -> np.ndarray:
    array = np.asarray(value, dtype=np.float32)
    try:
        return np.broadcast_to(array, (channels,)).copy()
    except ValueError:
        raise ValueError(
            f"Initial {name} of shape {array.shape} does not match {channels} channels"
        ) from None
