"""
Tests for the multi-modal fusion engine.
"""

import unittest

import numpy as np

from learner_engagement.integration.feature_store import TemporalFeatureStore
from learner_engagement.integration.fusion_engine import FusionEngine, gaze_features
from learner_engagement.modules.base import ModuleResult
from learner_engagement.modules.cognitive_load import CognitiveEstimate
from learner_engagement.modules.engagement import EngagementScores, GatedFusionEstimator
from learner_engagement.modules.gaze import GazeEstimate
from learner_engagement.modules.micro_expression import MicroExpressionEstimate
from learner_engagement.modules.resources import ResourceTracker
from learner_engagement.types import EmotionType, GazeType, PostureMetrics
from tests.fixtures.fakes import ScriptedModule, emotion_output, make_sample


def scripted_results(emotion=EmotionType.CONCENTRATED, on_screen=True, confidence=0.7):
    gaze = GazeEstimate(x=0.45, y=0.5, gaze_type=GazeType.FIXATION, on_screen=on_screen)
    return {
        'emotion': ModuleResult(emotion_output(emotion), confidence, 'primary'),
        'gaze': ModuleResult(gaze, confidence, 'primary'),
        'posture': ModuleResult(PostureMetrics(), confidence, 'primary'),
        'micro_expression': ModuleResult(MicroExpressionEstimate(), confidence, 'primary'),
        'cognitive_load': ModuleResult(CognitiveEstimate(), confidence, 'primary'),
    }


class FusionEngineTest(unittest.TestCase):

    def setUp(self):
        self.tracker = ResourceTracker()
        self.engine = FusionEngine(GatedFusionEstimator())
        store = TemporalFeatureStore()
        for sequence in range(1, 6):
            store.record(make_sample(sequence=sequence))
        self.windows = store.windows()

    def fuse(self, results, windows=None):
        with self.tracker.scope() as scope:
            return self.engine.fuse(results, windows or self.windows, scope, 1000.0)

    def test_same_inputs_give_same_scores(self):
        results = scripted_results()
        first = self.fuse(results)
        for _ in range(3):
            self.assertEqual(self.fuse(results).metric, first.metric)

    def test_scores_are_bounded(self):
        for emotion in (EmotionType.BORED, EmotionType.EXCITED, EmotionType.CONFUSED):
            for on_screen in (True, False):
                scores = self.fuse(scripted_results(emotion, on_screen)).metric
                self.assertIsInstance(scores, EngagementScores)
                for value in scores.as_array():
                    self.assertGreaterEqual(float(value), 0.0)
                    self.assertLessEqual(float(value), 1.0)

    def test_looking_away_lowers_attention(self):
        on_screen = self.fuse(scripted_results(on_screen=True)).metric
        away = self.fuse(scripted_results(on_screen=False)).metric
        self.assertLess(away.attention_level, on_screen.attention_level)

    def test_feature_widths(self):
        features = self.engine.build_features(scripted_results(), self.windows)

        self.assertEqual(len(features['emotion']), 13)
        self.assertEqual(len(features['gaze']), 10)
        self.assertEqual(len(features['posture']), 8)
        self.assertEqual(len(features['micro_expression']), 6)
        self.assertEqual(len(features['cognitive_load']), 6)
        np.testing.assert_allclose(features['confidences'], [0.7] * 5, rtol=1e-6)

    def test_failing_fusion_module_gives_neutral_scores(self):
        engine = FusionEngine(ScriptedModule('engagement', [], neutral=EngagementScores(), fail_on=[0]))
        with self.tracker.scope() as scope:
            result = engine.fuse(scripted_results(), self.windows, scope, 1000.0)

        np.testing.assert_allclose(result.metric.as_array(), EngagementScores().as_array())
        self.assertEqual(result.confidence, 0.0)
        self.assertEqual(result.error.module_name, 'engagement')

    def test_gaze_features(self):
        estimate = GazeEstimate(x=0.2, y=0.8, gaze_type=GazeType.SACCADE, on_screen=True,
                                head_pose=(9.0, -18.0, 0.0), saccade_speed=1.0)
        window = np.zeros((5, 2), dtype=np.float32)
        features = gaze_features(estimate, window)

        np.testing.assert_allclose(
            features, [0.2, 0.8, 1.0, 0.0, 1.0, 0.0, 0.5, 0.0, -0.2, 0.1], rtol=1e-5, atol=1e-6
        )


if __name__ == '__main__':
    unittest.main()
