"""
Tests for per-tick engagement analysis.
"""

import time
import unittest
from unittest import mock

from learner_engagement.integration.calibration import BUILTIN_PROFILES, cultural_context
from learner_engagement.integration.engagement_analyzer import EngagementAnalyzer, next_gaze_point
from learner_engagement.integration.feature_store import TemporalFeatureStore
from learner_engagement.modules.base import ModuleResult
from learner_engagement.modules.gaze import GazeEstimate, PupilGazeEstimator
from learner_engagement.modules.resources import ResourceTracker
from learner_engagement.real_time.frame_source import Frame
from learner_engagement.types import Calibration, DistractionKind, GazePoint, GazeType
from tests.fixtures.fakes import scripted_suite, synthetic_face_image


def gaze_result(gaze_type=GazeType.FIXATION, confidence=0.8, speed=None):
    estimate = GazeEstimate(x=0.3, y=0.6, gaze_type=gaze_type, on_screen=True, saccade_speed=speed)
    return ModuleResult(estimate, confidence, 'primary')


class NextGazePointTest(unittest.TestCase):

    def test_blink_adds_no_point(self):
        self.assertIsNone(next_gaze_point(gaze_result(GazeType.BLINK), 1.0, None))

    def test_zero_confidence_adds_no_point(self):
        self.assertIsNone(next_gaze_point(gaze_result(confidence=0.0), 1.0, None))

    def test_fixation_duration_accumulates(self):
        first = next_gaze_point(gaze_result(), 10.0, None)
        second = next_gaze_point(gaze_result(), 10.1, first)

        self.assertEqual(first.fixation_duration, 0.0)
        self.assertEqual(first.timestamp_ms, 10000)
        self.assertAlmostEqual(second.fixation_duration, 100.0)
        self.assertIsNone(second.saccade_speed)

    def test_saccade_resets_fixation(self):
        saccade = next_gaze_point(gaze_result(GazeType.SACCADE, speed=1.4), 10.0, None)
        after = next_gaze_point(gaze_result(), 10.1, saccade)

        self.assertIsNone(saccade.fixation_duration)
        self.assertEqual(saccade.saccade_speed, 1.4)
        self.assertEqual(after.fixation_duration, 0.0)

    def test_point_fields(self):
        point = next_gaze_point(gaze_result(confidence=0.65), 2.5, None)
        self.assertEqual(point, GazePoint(0.3, 0.6, 2500, 0.65, fixation_duration=0.0))


class EngagementAnalyzerTest(unittest.TestCase):

    def setUp(self):
        self.store = TemporalFeatureStore()
        self.tracker = ResourceTracker()
        self.context = cultural_context('general', BUILTIN_PROFILES['general'])

    def make_analyzer(self, suite):
        analyzer = EngagementAnalyzer(suite, self.store, tracker=self.tracker, max_workers=3)
        self.addCleanup(analyzer.close)
        return analyzer

    def frame(self, offset=0.0):
        return Frame(synthetic_face_image(), time.time() + offset)

    def test_sample_fields(self):
        analyzer = self.make_analyzer(scripted_suite())
        analysis = analyzer.analyze(self.frame(), 'learner-1', 1, self.context)
        sample = analysis.sample

        self.assertEqual(sample.subject_id, 'learner-1')
        self.assertEqual(sample.sequence, 1)
        self.assertEqual(sample.cultural_context, self.context)
        self.assertEqual(len(sample.gaze_trail), 1)
        self.assertFalse(sample.emotional_state.culturally_adjusted)
        for value in (sample.overall_engagement, sample.attention_level, sample.cognitive_load,
                      sample.fatigue_level, sample.distraction_probability):
            self.assertGreaterEqual(value, 0.0)
            self.assertLessEqual(value, 1.0)
        self.assertEqual(analysis.distribution.shape, (13,))

    def test_modules_see_the_detected_face_and_their_windows(self):
        suite = scripted_suite()
        analyzer = self.make_analyzer(suite)
        analyzer.analyze(self.frame(), 'learner', 1, self.context)

        inputs = suite.gaze.inputs[0]
        self.assertIs(inputs.region, suite.face.outputs[0][0])
        self.assertEqual(inputs.history.shape, (5, 2))
        self.assertEqual(suite.cognitive_load.inputs[0].history.shape, (30, 6))

    def test_gaze_trail_grows_across_ticks(self):
        analyzer = self.make_analyzer(scripted_suite())
        for sequence in range(1, 4):
            sample = analyzer.analyze(self.frame(sequence * 0.1), 'learner', sequence, self.context).sample
            self.store.record(sample)

        self.assertEqual(len(sample.gaze_trail), 3)
        self.assertGreater(sample.gaze_trail[-1].fixation_duration, 0.0)

    def test_calibration_is_applied(self):
        analyzer = self.make_analyzer(scripted_suite())
        calibration = Calibration(cultural_tag='maya', profile=BUILTIN_PROFILES['maya'])
        sample = analyzer.analyze(self.frame(), 'learner', 1, self.context, calibration).sample

        self.assertTrue(sample.emotional_state.culturally_adjusted)

    def test_gaze_away_is_a_distraction(self):
        analyzer = self.make_analyzer(scripted_suite(gaze_on_screen=False))
        sample = analyzer.analyze(self.frame(), 'learner', 1, self.context).sample

        self.assertEqual([e.kind for e in sample.distraction_events], [DistractionKind.GAZE_AWAY])

    def test_module_failure_does_not_abort_the_tick(self):
        analyzer = self.make_analyzer(scripted_suite(fail_emotion_on=[0]))
        with self.assertLogs('learner_engagement.modules.base', level='ERROR'):
            analysis = analyzer.analyze(self.frame(), 'learner', 1, self.context)

        self.assertEqual(analysis.results['emotion'].source, 'neutral')
        self.assertEqual(analyzer.inference_errors, 1)
        self.assertEqual(analysis.sample.sequence, 1)

    def test_gaze_failure_is_not_a_distraction(self):
        analyzer = self.make_analyzer(scripted_suite(fail_gaze_on=[0]))
        with self.assertLogs('learner_engagement.modules.base', level='ERROR'):
            analysis = analyzer.analyze(self.frame(), 'learner', 1, self.context)

        self.assertIsNotNone(analysis.results['gaze'].error)
        self.assertEqual(analysis.sample.distraction_events, ())
        self.assertEqual(analysis.sample.gaze_trail, ())
        self.assertEqual(analyzer.inference_errors, 1)

    def test_failing_pupil_estimator_is_not_a_distraction(self):
        suite = scripted_suite()
        suite.gaze = PupilGazeEstimator()
        analyzer = self.make_analyzer(suite)
        with mock.patch.object(suite.gaze, 'infer', side_effect=RuntimeError('eye crop failed')):
            with self.assertLogs('learner_engagement.modules.base', level='ERROR'):
                sample = analyzer.analyze(self.frame(), 'learner', 1, self.context).sample

        self.assertEqual(sample.distraction_events, ())

    def test_tick_buffers_are_released(self):
        analyzer = self.make_analyzer(scripted_suite())
        for sequence in range(1, 4):
            analyzer.analyze(self.frame(), 'learner', sequence, self.context)

        stats = self.tracker.stats()
        self.assertGreater(stats['acquired_total'], 0)
        self.assertEqual(stats['live_buffers'], 0)
        self.assertEqual(stats['open_scopes'], 0)


if __name__ == '__main__':
    unittest.main()
