"""
Image Preprocessing
===================
Turns uploaded image bytes into the model's input tensor.

The output stays in raw 0-255 pixel scale: the served model's first
Normalization layer was fitted on raw pixels, so no ``/255`` and no
mean/std step may be applied here.
"""

import io
import logging
from typing import Tuple

import cv2
import numpy as np
from PIL import Image, UnidentifiedImageError

from ..errors import ImageDecodeError

logger = logging.getLogger(__name__)

CHANNELS = 3


class ImagePreprocessor:
    """
    Image preprocessing for model inference.

    Handles:
    - Decoding bytes to 3-channel RGB (OpenCV or Pillow)
    - Bilinear resize to the model's spatial size
    - Adding the batch dimension
    """

    def __init__(
        self,
        target_size: Tuple[int, int] = (224, 224),
        backend: str = "cv2",
    ):
        """
        Initialize preprocessor.

        Args:
            target_size: Target image size (H, W)
            backend: Decoder to use, ``cv2`` or ``pil``
        """
        backend = backend.lower()
        if backend not in ("cv2", "pil"):
            raise ValueError(f"Unsupported decode backend: {backend}")

        self.target_size = tuple(target_size)
        self.backend = backend

        logger.debug(f"Using {self.backend} backend for decoding")

    def decode(self, data: bytes) -> np.ndarray:
        """
        Decode image bytes.

        Args:
            data: Encoded image (JPEG, PNG, ...)

        Returns:
            Image as uint8 numpy array (H, W, 3) in RGB
        """
        if not data:
            raise ImageDecodeError("Empty image payload")

        if self.backend == "cv2":
            image = self._decode_cv2(data)
        else:
            image = self._decode_pil(data)

        return _to_rgb(image)

    def _decode_cv2(self, data: bytes) -> np.ndarray:
        buffer = np.frombuffer(data, np.uint8)
        try:
            img = cv2.imdecode(buffer, cv2.IMREAD_UNCHANGED)
        except cv2.error as e:
            raise ImageDecodeError(f"Failed to decode image: {e}") from e
        if img is None:
            raise ImageDecodeError("Failed to decode image")

        if img.dtype != np.uint8:
            # 16-bit PNGs decode as uint16
            img = (img / 257).astype(np.uint8)

        if img.ndim == 3 and img.shape[-1] == 4:
            img = cv2.cvtColor(img, cv2.COLOR_BGRA2RGBA)
        elif img.ndim == 3 and img.shape[-1] == 3:
            img = cv2.cvtColor(img, cv2.COLOR_BGR2RGB)
        return img

    def _decode_pil(self, data: bytes) -> np.ndarray:
        try:
            with Image.open(io.BytesIO(data)) as img:
                if img.mode not in ("RGB", "RGBA", "L"):
                    img = img.convert("RGB")
                return np.array(img)
        except (UnidentifiedImageError, OSError, ValueError) as e:
            raise ImageDecodeError(f"Failed to decode image: {e}") from e

    def resize(self, image: np.ndarray) -> np.ndarray:
        """
        Bilinear resize to the target size.

        Interpolation runs on float32 so intermediate values are kept
        instead of being rounded back to integers.

        Args:
            image: Input image (H, W, C)

        Returns:
            float32 image (target_h, target_w, C)
        """
        img = image.astype(np.float32)
        h, w = img.shape[:2]
        target_h, target_w = self.target_size

        if h == target_h and w == target_w:
            return img

        return cv2.resize(img, (target_w, target_h), interpolation=cv2.INTER_LINEAR)

    def preprocess(self, data: bytes) -> np.ndarray:
        """
        Full preprocessing pipeline.

        Args:
            data: Encoded image bytes

        Returns:
            float32 batch of shape (1, H, W, 3), raw pixel scale
        """
        image = self.decode(data)
        resized = self.resize(image)
        return np.expand_dims(resized, axis=0)


def _to_rgb(image: np.ndarray) -> np.ndarray:
    """Force exactly three channels: expand grayscale, drop alpha."""
    if image.ndim == 2:
        image = np.stack([image, image, image], axis=-1)
    elif image.shape[-1] == 1:
        image = np.repeat(image, CHANNELS, axis=-1)
    elif image.shape[-1] == 4:
        image = image[:, :, :CHANNELS]
    elif image.shape[-1] != CHANNELS:
        raise ImageDecodeError(f"Unsupported channel count: {image.shape[-1]}")
    return np.ascontiguousarray(image)
