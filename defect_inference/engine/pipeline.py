"""
Inference Pipeline
==================
Owns the loaded model and turns image bytes into a Defective / Good decision.

Lifecycle::

    NOT_LOADED -> LOADING -> READY
                          -> FAILED   (terminal, no retry)

Requests only read the model, so one pipeline is shared by all handlers.
"""

import logging
import threading
from enum import Enum
from pathlib import Path
from typing import Any, Optional, Union

import numpy as np

from ..errors import AnalysisError, InferenceError, ModelLoadError, ModelNotReadyError
from ..utils.postprocessing import CLASS_NAMES, Decision, decide
from ..utils.preprocessing import ImagePreprocessor
from .model_loader import ModelInfo, ModelLoader

logger = logging.getLogger(__name__)


class ModelState(Enum):
    """Load state of the shared model."""
    NOT_LOADED = "not_loaded"
    LOADING = "loading"
    READY = "ready"
    FAILED = "failed"


class InferencePipeline:
    """
    Preprocess -> forward pass -> decision, over a model loaded once.
    """

    def __init__(
        self,
        model_path: Union[str, Path],
        loader: ModelLoader,
        preprocessor: Optional[ImagePreprocessor] = None,
    ):
        """
        Initialize the pipeline. Nothing is loaded until ``load()``.

        Args:
            model_path: Model artifact to load
            loader: Loader that knows the custom layer registry
            preprocessor: Image preprocessor (defaults to 224x224, OpenCV)
        """
        self.model_path = Path(model_path)
        self.loader = loader
        self.preprocessor = preprocessor or ImagePreprocessor()

        self._lock = threading.Lock()
        self._state = ModelState.NOT_LOADED
        self._model: Any = None
        self._model_info: Optional[ModelInfo] = None
        self._error: Optional[str] = None

    @property
    def state(self) -> ModelState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state is ModelState.READY

    @property
    def model_info(self) -> Optional[ModelInfo]:
        return self._model_info

    @property
    def error(self) -> Optional[str]:
        """Reason the last load failed, if it did."""
        return self._error

    def load(self) -> bool:
        """
        Load the model. Runs at most once per pipeline.

        A failure is logged and leaves the pipeline FAILED for the rest of
        the process lifetime.

        Returns:
            True if the model is ready
        """
        with self._lock:
            if self._state is not ModelState.NOT_LOADED:
                logger.warning(f"Model load already attempted (state={self._state.value})")
                return self._state is ModelState.READY
            self._state = ModelState.LOADING

        logger.info(f"Loading model from {self.model_path}...")
        try:
            model, info = self.loader.load(self.model_path)
        except ModelLoadError as e:
            self._fail(str(e))
            return False
        except Exception as e:
            logger.exception("Unexpected error while loading model")
            self._fail(f"{type(e).__name__}: {e}")
            return False

        with self._lock:
            self._model = model
            self._model_info = info
            self._state = ModelState.READY

        logger.info(
            f"Model ready: {info.name} ({info.normalization_layers} normalization layer(s), "
            f"input={info.input_shape}, output={info.output_shape})"
        )
        return True

    def _fail(self, message: str):
        with self._lock:
            self._error = message
            self._state = ModelState.FAILED
        logger.error(f"Model load failed, inference disabled: {message}")

    def _require_ready(self) -> Any:
        if self._state is not ModelState.READY:
            raise ModelNotReadyError(f"Model is not ready (state={self._state.value})")
        return self._model

    def preprocess(self, image_bytes: bytes) -> np.ndarray:
        """Decode and resize to a ``(1, H, W, 3)`` float32 batch."""
        return self.preprocessor.preprocess(image_bytes)

    def predict(self, batch: np.ndarray) -> np.ndarray:
        """
        Run one forward pass.

        Args:
            batch: Preprocessed batch of one image

        Returns:
            The two raw output scores
        """
        model = self._require_ready()
        return self._forward(model, batch)

    def _forward(self, model: Any, batch: np.ndarray) -> np.ndarray:
        output = None
        try:
            output = model(batch, training=False)
            scores = np.asarray(output).reshape(-1)
        except Exception as e:
            raise InferenceError(f"Forward pass failed: {e}") from e
        finally:
            del output

        if scores.size != len(CLASS_NAMES):
            raise InferenceError(
                f"Model returned {scores.size} scores, expected {len(CLASS_NAMES)}"
            )
        return scores

    def decide(self, scores) -> Decision:
        """Index 0 is defective, index 1 is good; ties go to Good."""
        return decide(scores)

    def analyze(self, image_bytes: bytes) -> Decision:
        """
        Classify one encoded image.

        Readiness is checked before any decoding happens.

        Args:
            image_bytes: Encoded image

        Returns:
            Decision with label and raw confidences
        """
        model = self._require_ready()

        batch = None
        try:
            batch = self.preprocess(image_bytes)
            scores = self._forward(model, batch)
        except AnalysisError:
            raise
        except Exception as e:
            raise AnalysisError(f"Preprocessing failed: {e}") from e
        finally:
            del batch

        return self.decide(scores)
