"""
Response Postprocessing
=======================
Interpret the model's two-element output and format API responses.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Sequence

logger = logging.getLogger(__name__)

# Output index -> label. Order fixed by the training label encoding.
CLASS_NAMES = ("Defective", "Good")
DEFECTIVE_INDEX = 0
GOOD_INDEX = 1


@dataclass(frozen=True)
class Decision:
    """Classification returned for one image."""
    label: str
    confidence_defective: float
    confidence_good: float

    @property
    def is_defective(self) -> bool:
        return self.label == CLASS_NAMES[DEFECTIVE_INDEX]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "class": self.label,
            "confidence_defective": self.confidence_defective,
            "confidence_good": self.confidence_good,
        }


def decide(scores: Sequence[float]) -> Decision:
    """
    Map a ``[defective, good]`` score pair to a decision.

    The label is Defective only when its score is strictly greater; ties
    resolve to Good. Scores are passed through unchanged (no softmax), so
    they need not sum to 1.

    Args:
        scores: Two raw scores from the model's final layer

    Returns:
        Decision with label and both confidences
    """
    if len(scores) != len(CLASS_NAMES):
        raise ValueError(f"Expected {len(CLASS_NAMES)} scores, got {len(scores)}")

    defective = float(scores[DEFECTIVE_INDEX])
    good = float(scores[GOOD_INDEX])
    label = CLASS_NAMES[DEFECTIVE_INDEX] if defective > good else CLASS_NAMES[GOOD_INDEX]

    return Decision(label=label, confidence_defective=defective, confidence_good=good)


def format_error(message: str) -> Dict[str, str]:
    """Error body returned to clients."""
    return {"error": message}
