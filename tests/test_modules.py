"""
Tests for the inference modules: primary/fallback selection, fallback
estimators and error containment.
"""

import os
import tempfile
import time
import unittest
from unittest import mock

import numpy as np
import torch

from learner_engagement.exceptions import InferenceError, InitializationError
from learner_engagement.modules.base import ModuleInput, select_module
from learner_engagement.modules.cognitive_load import (
    CognitiveEstimate, CognitiveLoadEstimator, EyeSignalCognitiveEstimator
)
from learner_engagement.modules.emotion import (
    EmotionClassifier, EmotionEstimate, HeuristicEmotionEstimator
)
from learner_engagement.modules.engagement import (
    EngagementEstimator, EngagementScores, GatedFusionEstimator
)
from learner_engagement.modules.engagement.models import MODALITY_DIMS, TEMPORAL_FEATURES
from learner_engagement.modules.face import HaarFaceDetector
from learner_engagement.modules.gaze import GazeEstimate, GazeEstimator, PupilGazeEstimator
from learner_engagement.modules.micro_expression import (
    MicroExpressionDetector, MicroExpressionEstimate, SpikeMicroExpressionDetector
)
from learner_engagement.modules.model_store import ModelStore
from learner_engagement.modules.posture import GeometricPostureAnalyzer, PostureAnalyzer
from learner_engagement.modules.resources import ResourceTracker
from learner_engagement.modules.suite import create_inference_suite
from learner_engagement.types import NUM_EMOTIONS, EmotionType, PostureMetrics, emotion_index
from tests.fixtures.fakes import synthetic_face_image, synthetic_region

CPU = torch.device('cpu')

MODULE_PAIRS = [
    (EmotionClassifier, HeuristicEmotionEstimator, EmotionEstimate),
    (GazeEstimator, PupilGazeEstimator, GazeEstimate),
    (PostureAnalyzer, GeometricPostureAnalyzer, PostureMetrics),
    (MicroExpressionDetector, SpikeMicroExpressionDetector, MicroExpressionEstimate),
    (CognitiveLoadEstimator, EyeSignalCognitiveEstimator, CognitiveEstimate),
]


def module_input(module, scope, region=None, history=None):
    if history is None:
        history = np.zeros((module.history_length, module.history_width), dtype=np.float32)
    return ModuleInput(
        frame=synthetic_face_image(),
        region=region,
        history=history,
        scope=scope,
        timestamp=time.time()
    )


def fusion_features(confidence=0.5):
    features = {name: np.full(dim, 0.5, dtype=np.float32) for name, dim in MODALITY_DIMS.items()}
    features['confidences'] = np.full(5, confidence, dtype=np.float32)
    return features


class ModuleSelectionTest(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmpdir.cleanup)
        self.store = ModelStore(self.tmpdir.name, {
            primary.artifact_name: f'{primary.artifact_name}.pth'
            for primary, _, _ in MODULE_PAIRS + [(EngagementEstimator, None, None)]
        })
        self.tracker = ResourceTracker()

    def save_weights(self, primary_cls):
        path = os.path.join(self.tmpdir.name, f'{primary_cls.artifact_name}.pth')
        torch.save({'model_state_dict': primary_cls.build_model().state_dict()}, path)
        return path

    def test_missing_artifact_selects_fallback(self):
        for primary, fallback, _ in MODULE_PAIRS:
            module = select_module(primary, fallback, self.store, CPU)
            self.assertIsInstance(module, fallback)
            self.assertEqual(module.source, 'fallback')

    def test_corrupt_artifact_selects_fallback(self):
        path = os.path.join(self.tmpdir.name, 'emotion.pth')
        with open(path, 'wb') as f:
            f.write(b'not a checkpoint')

        module = select_module(EmotionClassifier, HeuristicEmotionEstimator, self.store, CPU)
        self.assertIsInstance(module, HeuristicEmotionEstimator)

    def test_mismatched_weights_select_fallback(self):
        path = os.path.join(self.tmpdir.name, 'emotion.pth')
        torch.save({'model_state_dict': GazeEstimator.build_model().state_dict()}, path)

        module = select_module(EmotionClassifier, HeuristicEmotionEstimator, self.store, CPU)
        self.assertIsInstance(module, HeuristicEmotionEstimator)

    def test_primary_models_load_and_run(self):
        region = synthetic_region()
        for primary, fallback, metric_type in MODULE_PAIRS:
            self.save_weights(primary)
            module = select_module(primary, fallback, self.store, CPU)
            self.assertIsInstance(module, primary)

            with self.tracker.scope() as scope:
                result = module(module_input(module, scope, region))

            self.assertIsNone(result.error, msg=primary.name)
            self.assertEqual(result.source, 'primary')
            self.assertIsInstance(result.metric, metric_type)
            self.assertGreaterEqual(result.confidence, 0.0)
            self.assertLessEqual(result.confidence, 1.0)

        self.assertEqual(self.tracker.stats()['live_buffers'], 0)

    def test_primary_fusion_model_runs(self):
        self.save_weights(EngagementEstimator)
        module = select_module(EngagementEstimator, GatedFusionEstimator, self.store, CPU)

        with self.tracker.scope() as scope:
            result = module(ModuleInput(
                frame=None, region=None,
                history=np.zeros((20, TEMPORAL_FEATURES), dtype=np.float32),
                scope=scope, timestamp=0.0, features=fusion_features()
            ))

        self.assertIsNone(result.error)
        self.assertIsInstance(result.metric, EngagementScores)
        self.assertAlmostEqual(result.confidence, 0.5, places=5)

    def test_module_kwargs_reach_fallback(self):
        module = select_module(GazeEstimator, PupilGazeEstimator, self.store, CPU, interval_s=0.25)
        self.assertEqual(module.interval_s, 0.25)

    def test_unconstructible_fallback_raises_initialization_error(self):
        broken = mock.Mock(side_effect=RuntimeError('no cascade'))
        broken.name = 'broken'
        with self.assertRaises(InitializationError):
            select_module(EmotionClassifier, broken, self.store, CPU)

    def test_suite_without_artifacts_runs_on_fallbacks(self):
        config = {'models': {'directory': self.tmpdir.name, 'device': 'cpu', 'artifacts': {}}}
        suite = create_inference_suite(config)

        self.assertEqual(set(suite.models_loaded().values()), {'fallback'})
        self.assertEqual(
            set(suite.models_loaded()),
            {'face_detector', 'emotion', 'gaze', 'posture', 'micro_expression',
             'cognitive_load', 'engagement'}
        )
        suite.close()


class FallbackEstimatorTest(unittest.TestCase):

    def setUp(self):
        self.tracker = ResourceTracker()
        self.region = synthetic_region()

    def test_fallbacks_produce_bounded_metrics(self):
        for _, fallback, metric_type in MODULE_PAIRS:
            module = fallback()
            with self.tracker.scope() as scope:
                result = module(module_input(module, scope, self.region))

            self.assertIsNone(result.error, msg=module.name)
            self.assertIsInstance(result.metric, metric_type)
            self.assertGreaterEqual(result.confidence, 0.0)
            self.assertLessEqual(result.confidence, 1.0)

    def test_fallbacks_without_face_have_zero_confidence(self):
        for _, fallback, metric_type in MODULE_PAIRS:
            module = fallback()
            with self.tracker.scope() as scope:
                result = module(module_input(module, scope, region=None))

            self.assertEqual(result.confidence, 0.0, msg=module.name)
            self.assertIsInstance(result.metric, metric_type)

    def test_emotion_distribution_sums_to_one(self):
        module = HeuristicEmotionEstimator()
        with self.tracker.scope() as scope:
            result = module(module_input(module, scope, self.region))

        self.assertEqual(result.metric.distribution.shape, (NUM_EMOTIONS,))
        self.assertAlmostEqual(float(result.metric.distribution.sum()), 1.0, places=4)
        self.assertLessEqual(result.confidence, 0.6)

    def test_spike_detector_reports_sudden_emotion(self):
        history = np.zeros((8, NUM_EMOTIONS), dtype=np.float32)
        history[:, emotion_index(EmotionType.CONCENTRATED)] = 0.8
        history[:, emotion_index(EmotionType.NEUTRAL)] = 0.2
        history[-1] = 0.0
        history[-1, emotion_index(EmotionType.CONCENTRATED)] = 0.6
        history[-1, emotion_index(EmotionType.SURPRISED)] = 0.4

        module = SpikeMicroExpressionDetector()
        with self.tracker.scope() as scope:
            result = module(module_input(module, scope, self.region, history))

        kinds = [e.kind for e in result.metric.expressions]
        self.assertEqual(kinds, [EmotionType.SURPRISED])

    def test_gaze_fallback_looks_at_screen_for_centred_face(self):
        module = PupilGazeEstimator()
        with self.tracker.scope() as scope:
            result = module(module_input(module, scope, self.region))

        estimate = result.metric
        self.assertGreaterEqual(estimate.x, 0.0)
        self.assertLessEqual(estimate.x, 1.0)
        self.assertEqual(len(estimate.head_pose), 3)

    def test_haar_detector_without_face(self):
        module = HaarFaceDetector()
        blank = np.zeros((240, 320, 3), dtype=np.uint8)
        with self.tracker.scope() as scope:
            result = module(ModuleInput(blank, None, np.zeros((0, 0)), scope, 0.0))

        self.assertIsNone(result.metric)
        self.assertEqual(result.confidence, 0.0)

    def test_haar_detector_applies_confidence_threshold(self):
        module = HaarFaceDetector(confidence_threshold=0.5)
        module.face_cascade = mock.Mock()
        module.face_cascade.detectMultiScale3.return_value = (
            np.array([[10, 10, 50, 50], [100, 100, 60, 60]]),
            np.array([1, 1]),
            np.array([[0.5], [4.0]])
        )

        faces = module.detect(np.zeros((240, 320, 3), dtype=np.uint8))

        self.assertEqual(len(faces), 1)
        self.assertEqual(faces[0][0], (100, 100, 160, 160))
        self.assertGreater(faces[0][1], 0.5)

    def test_suite_passes_face_confidence_to_haar_detector(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            suite = create_inference_suite({
                'models': {'directory': tmpdir, 'device': 'cpu', 'artifacts': {}},
                'analysis': {'face_confidence': 0.8}
            })
        self.assertIsInstance(suite.face, HaarFaceDetector)
        self.assertEqual(suite.face.confidence_threshold, 0.8)
        suite.close()


class ErrorContainmentTest(unittest.TestCase):

    def test_exception_in_inference_gives_neutral_metric(self):
        module = HeuristicEmotionEstimator()
        tracker = ResourceTracker()
        with mock.patch.object(module, 'region_features', side_effect=ValueError('bad crop')):
            with self.assertLogs('learner_engagement.modules.base', level='ERROR'):
                with tracker.scope() as scope:
                    result = module(module_input(module, scope, synthetic_region()))

        self.assertEqual(result.source, 'neutral')
        self.assertEqual(result.confidence, 0.0)
        self.assertIsInstance(result.error, InferenceError)
        self.assertEqual(result.error.module_name, 'emotion')
        self.assertEqual(result.metric.state.primary_emotion, EmotionType.NEUTRAL)


class ResourceTrackerTest(unittest.TestCase):

    def test_buffers_released_on_error(self):
        tracker = ResourceTracker()
        with self.assertRaises(RuntimeError):
            with tracker.scope() as scope:
                scope.tensor(np.zeros(10))
                scope.track(np.zeros((480, 640, 3)))
                self.assertEqual(tracker.stats()['live_buffers'], 2)
                raise RuntimeError('tick failed')

        stats = tracker.stats()
        self.assertEqual(stats['live_buffers'], 0)
        self.assertEqual(stats['open_scopes'], 0)
        self.assertEqual(stats['acquired_total'], stats['released_total'])

    def test_released_scope_rejects_new_buffers(self):
        tracker = ResourceTracker()
        with tracker.scope() as scope:
            pass
        with self.assertRaises(RuntimeError):
            scope.track(np.zeros(3))


if __name__ == '__main__':
    unittest.main()
