"""Tests for the decision rule"""
# Location: tests/test_postprocessing.py

import sys
import unittest
from pathlib import Path

import numpy as np

PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from defect_inference.utils.postprocessing import CLASS_NAMES, decide, format_error


class TestDecide(unittest.TestCase):
    """Index 0 = Defective, index 1 = Good"""

    def test_defective_when_first_score_wins(self):
        decision = decide([0.7, 0.3])
        self.assertEqual(decision.label, "Defective")
        self.assertTrue(decision.is_defective)
        self.assertAlmostEqual(decision.confidence_defective, 0.7)
        self.assertAlmostEqual(decision.confidence_good, 0.3)

    def test_good_when_second_score_wins(self):
        decision = decide([0.3, 0.7])
        self.assertEqual(decision.label, "Good")
        self.assertFalse(decision.is_defective)

    def test_tie_goes_to_good(self):
        self.assertEqual(decide([0.5, 0.5]).label, "Good")

    def test_raw_scores_are_not_renormalized(self):
        decision = decide(np.array([3.5, -1.25], dtype=np.float32))
        self.assertEqual(decision.label, "Defective")
        self.assertEqual(decision.confidence_defective, 3.5)
        self.assertEqual(decision.confidence_good, -1.25)
        self.assertIsInstance(decision.confidence_defective, float)

    def test_wrong_length_raises(self):
        for scores in ([], [1.0], [0.1, 0.2, 0.7]):
            with self.subTest(scores=scores):
                with self.assertRaises(ValueError):
                    decide(scores)

    def test_to_dict_uses_class_key(self):
        self.assertEqual(
            decide([0.2, 0.8]).to_dict(),
            {"class": "Good", "confidence_defective": 0.2, "confidence_good": 0.8},
        )

    def test_class_names_order(self):
        self.assertEqual(CLASS_NAMES, ("Defective", "Good"))

    def test_format_error(self):
        self.assertEqual(format_error("missing image"), {"error": "missing image"})


if __name__ == "__main__":
    unittest.main()
