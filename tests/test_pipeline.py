"""Tests for the inference pipeline"""
# Location: tests/test_pipeline.py

import sys
import tempfile
import unittest
from pathlib import Path
from unittest import mock

import numpy as np

PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from defect_inference.engine import InferencePipeline, ModelLoader, ModelState, export_layers_model
from defect_inference.errors import (
    AnalysisError,
    ImageDecodeError,
    InferenceError,
    ModelNotReadyError,
)
from defect_inference.layers import build_layer_registry
from defect_inference.utils.preprocessing import ImagePreprocessor
from tests.helpers import (
    FailingLoader,
    StubLoader,
    StubModel,
    build_classifier,
    encode_image,
    expected_scores,
    solid_image,
)


def _pipeline(loader, size=8):
    return InferencePipeline("model.json", loader, ImagePreprocessor(target_size=(size, size)))


class TestLoadLifecycle(unittest.TestCase):
    """NOT_LOADED -> LOADING -> READY / FAILED"""

    def test_starts_not_loaded(self):
        pipeline = _pipeline(StubLoader())
        self.assertEqual(pipeline.state, ModelState.NOT_LOADED)
        self.assertFalse(pipeline.is_ready)
        self.assertIsNone(pipeline.model_info)

    def test_successful_load(self):
        loader = StubLoader()
        pipeline = _pipeline(loader)

        self.assertTrue(pipeline.load())
        self.assertEqual(pipeline.state, ModelState.READY)
        self.assertEqual(pipeline.model_info.name, "stub")
        self.assertIsNone(pipeline.error)

    def test_load_runs_once(self):
        loader = StubLoader()
        pipeline = _pipeline(loader)
        pipeline.load()
        self.assertTrue(pipeline.load())
        self.assertEqual(loader.calls, 1)

    def test_failure_is_terminal(self):
        loader = FailingLoader("Model not found: model.json")
        pipeline = _pipeline(loader)

        self.assertFalse(pipeline.load())
        self.assertEqual(pipeline.state, ModelState.FAILED)
        self.assertIn("Model not found", pipeline.error)

        self.assertFalse(pipeline.load())
        self.assertEqual(loader.calls, 1)
        self.assertEqual(pipeline.state, ModelState.FAILED)

    def test_unexpected_loader_exception_marks_failed(self):
        loader = mock.Mock()
        loader.load.side_effect = RuntimeError("boom")
        pipeline = _pipeline(loader)

        self.assertFalse(pipeline.load())
        self.assertEqual(pipeline.state, ModelState.FAILED)
        self.assertIn("boom", pipeline.error)


class TestNotReady(unittest.TestCase):
    """Requests before the model is ready"""

    def test_analyze_before_load_never_decodes(self):
        preprocessor = mock.Mock(spec=ImagePreprocessor)
        pipeline = InferencePipeline("model.json", StubLoader(), preprocessor)

        with self.assertRaises(ModelNotReadyError):
            pipeline.analyze(b"anything")
        preprocessor.preprocess.assert_not_called()

    def test_analyze_after_failed_load(self):
        pipeline = _pipeline(FailingLoader())
        pipeline.load()

        with self.assertRaises(ModelNotReadyError):
            pipeline.analyze(encode_image(solid_image((1, 2, 3), size=8)))
        self.assertEqual(pipeline.state, ModelState.FAILED)

    def test_predict_before_load(self):
        with self.assertRaises(ModelNotReadyError):
            _pipeline(StubLoader()).predict(np.zeros((1, 8, 8, 3), dtype=np.float32))


class TestAnalyze(unittest.TestCase):
    """Preprocess -> forward -> decide"""

    def setUp(self):
        self.image = encode_image(solid_image((10, 20, 30), size=12))

    def test_stub_scores_pass_through(self):
        model = StubModel(scores=(0.7, 0.3))
        pipeline = _pipeline(StubLoader(model))
        pipeline.load()

        decision = pipeline.analyze(self.image)

        self.assertEqual(decision.label, "Defective")
        self.assertAlmostEqual(decision.confidence_defective, 0.7, places=6)
        self.assertAlmostEqual(decision.confidence_good, 0.3, places=6)
        self.assertEqual(model.calls, 1)

    def test_corrupt_image(self):
        pipeline = _pipeline(StubLoader())
        pipeline.load()
        with self.assertRaises(ImageDecodeError):
            pipeline.analyze(b"\x89PNG broken")

    def test_wrong_output_size(self):
        pipeline = _pipeline(StubLoader(StubModel(scores=(0.1, 0.2, 0.7))))
        pipeline.load()
        with self.assertRaises(InferenceError):
            pipeline.analyze(self.image)

    def test_forward_failure_is_wrapped(self):
        model = mock.Mock(side_effect=RuntimeError("bad shape"))
        pipeline = _pipeline(StubLoader(model))
        pipeline.load()

        with self.assertRaises(InferenceError) as ctx:
            pipeline.analyze(self.image)
        self.assertIn("bad shape", str(ctx.exception))

    def test_unexpected_preprocess_failure_is_analysis_error(self):
        preprocessor = mock.Mock(spec=ImagePreprocessor)
        preprocessor.preprocess.side_effect = MemoryError("too big")
        pipeline = InferencePipeline("model.json", StubLoader(), preprocessor)
        pipeline.load()

        with self.assertRaises(AnalysisError):
            pipeline.analyze(self.image)

    def test_forward_receives_preprocessed_batch(self):
        model = StubModel()
        model_call = mock.Mock(wraps=model)
        pipeline = _pipeline(StubLoader(model_call), size=8)
        pipeline.load()

        pipeline.analyze(self.image)

        batch = model_call.call_args[0][0]
        self.assertEqual(batch.shape, (1, 8, 8, 3))
        self.assertEqual(batch.dtype, np.float32)
        np.testing.assert_allclose(batch[0, 0, 0], [10.0, 20.0, 30.0], atol=1e-3)
        self.assertEqual(model_call.call_args[1], {"training": False})


class TestExportedModel(unittest.TestCase):
    """End-to-end with a real exported model"""

    @classmethod
    def setUpClass(cls):
        cls._tmp = tempfile.TemporaryDirectory()
        cls.model_json = export_layers_model(build_classifier(size=8), Path(cls._tmp.name) / "model_js")

    @classmethod
    def tearDownClass(cls):
        cls._tmp.cleanup()

    def setUp(self):
        self.pipeline = InferencePipeline(
            self.model_json,
            ModelLoader(build_layer_registry()),
            ImagePreprocessor(target_size=(8, 8)),
        )
        self.assertTrue(self.pipeline.load())

    def test_model_info(self):
        info = self.pipeline.model_info
        self.assertEqual(info.name, "model_js")
        self.assertEqual(info.normalization_layers, 1)

    def test_defective_image(self):
        rgb = (220, 40, 90)
        decision = self.pipeline.analyze(encode_image(solid_image(rgb, size=16)))

        expected = expected_scores(rgb)
        self.assertEqual(decision.label, "Defective")
        self.assertAlmostEqual(decision.confidence_defective, expected[0], places=4)
        self.assertAlmostEqual(decision.confidence_good, expected[1], places=4)

    def test_good_image(self):
        rgb = (40, 220, 90)
        decision = self.pipeline.analyze(encode_image(solid_image(rgb, size=16)))
        self.assertEqual(decision.label, "Good")
        self.assertAlmostEqual(decision.confidence_good, expected_scores(rgb)[1], places=4)

    def test_repeated_analysis_is_deterministic(self):
        data = encode_image(solid_image((123, 45, 67), size=8))
        first = self.pipeline.analyze(data)
        second = self.pipeline.analyze(data)
        self.assertEqual(first, second)


if __name__ == "__main__":
    unittest.main()
