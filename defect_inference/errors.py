"""Exceptions raised by the loader and the inference pipeline."""


class DefectInferenceError(Exception):
    """Base class for all service errors."""


class ModelLoadError(DefectInferenceError):
    """The model artifact could not be deserialized."""


class ModelNotReadyError(DefectInferenceError):
    """Inference was requested before the model finished loading."""


class AnalysisError(DefectInferenceError):
    """A single request could not be analysed."""


class ImageDecodeError(AnalysisError):
    """The uploaded bytes are not a decodable image."""


class InferenceError(AnalysisError):
    """The forward pass failed or produced an unexpected output."""


class MissingImageError(DefectInferenceError):
    """The request carried no image file."""
