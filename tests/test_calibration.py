"""
Tests for cultural profiles, personal baselines and calibration blending.
"""

import os
import tempfile
import unittest
import warnings
from dataclasses import replace

from learner_engagement.exceptions import CalibrationError, CalibrationInsufficientData
from learner_engagement.integration.calibration import (
    BUILTIN_PROFILES, CalibrationCoefficients, CalibrationSession, CalibrationState,
    apply_calibration, average, compute_personal_baseline, cultural_context,
    get_cultural_profile, load_cultural_profiles
)
from learner_engagement.modules.engagement import EngagementScores
from learner_engagement.types import (
    Calibration, EmotionalState, EmotionType, LeaningDirection, PersonalBaseline, PostureMetrics
)
from tests.fixtures.fakes import make_sample


def calibration_for(tag, baseline=None):
    return Calibration(cultural_tag=tag, profile=BUILTIN_PROFILES[tag], baseline=baseline)


class CulturalProfileTest(unittest.TestCase):

    def test_unknown_tag_falls_back_to_general(self):
        tag, profile = get_cultural_profile('atlantis', BUILTIN_PROFILES)
        self.assertEqual(tag, 'general')
        self.assertEqual(profile, BUILTIN_PROFILES['general'])

    def test_lookup_is_case_insensitive(self):
        tag, profile = get_cultural_profile('Maya', BUILTIN_PROFILES)
        self.assertEqual(tag, 'maya')
        self.assertEqual(profile.eye_contact_norm, 0.3)

    def test_profiles_are_read_only(self):
        profiles = load_cultural_profiles()
        with self.assertRaises(TypeError):
            profiles['general'] = BUILTIN_PROFILES['maya']

    def test_profiles_extended_from_yaml(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, 'profiles.yaml')
            with open(path, 'w') as f:
                f.write(
                    "zapoteco:\n"
                    "  eye_contact_norm: 0.35\n"
                    "  expressiveness_baseline: 0.65\n"
                    "  emotional_suppression_tendency: 0.6\n"
                    "  posture_formality: 0.75\n"
                    "  distraction_tolerance: 0.45\n"
                )
            profiles = load_cultural_profiles(path)

        self.assertIn('zapoteco', profiles)
        self.assertEqual(profiles['zapoteco'].eye_contact_norm, 0.35)
        self.assertIn('general', profiles)

    def test_missing_profiles_file_keeps_builtins(self):
        profiles = load_cultural_profiles('/nonexistent/profiles.yaml')
        self.assertEqual(set(profiles), set(BUILTIN_PROFILES))

    def test_cultural_context(self):
        context = cultural_context('maya', BUILTIN_PROFILES['maya'])
        self.assertEqual(context.cultural_background, 'maya')
        self.assertEqual(context.eye_contact_norm, 'low')
        self.assertEqual(context.nonverbal_style, 'indirect')
        self.assertAlmostEqual(context.bias_adjustment, 0.3)
        self.assertAlmostEqual(context.collectivism, 0.2)


class PersonalBaselineTest(unittest.TestCase):

    def test_average_of_empty_sequence(self):
        self.assertEqual(average([]), 0.0)
        self.assertEqual(average([], default=0.5), 0.5)

    def test_no_samples_gives_no_baseline(self):
        self.assertIsNone(compute_personal_baseline([]))

    def test_numeric_fields_are_averaged_categorical_take_first(self):
        first = replace(
            make_sample(sequence=1, overall_engagement=0.2, attention_level=0.4),
            emotional_state=EmotionalState(primary_emotion=EmotionType.BORED, intensity=0.2),
            posture=PostureMetrics(leaning=LeaningDirection.LEFT, posture_changes=1)
        )
        second = replace(
            make_sample(sequence=2, overall_engagement=0.6, attention_level=0.8),
            emotional_state=EmotionalState(primary_emotion=EmotionType.HAPPY, intensity=0.6),
            posture=PostureMetrics(leaning=LeaningDirection.FORWARD, posture_changes=3)
        )
        baseline = compute_personal_baseline([first, second], computed_at=42.0)

        self.assertEqual(baseline.sample_count, 2)
        self.assertEqual(baseline.computed_at, 42.0)
        self.assertAlmostEqual(baseline.sample.overall_engagement, 0.4)
        self.assertAlmostEqual(baseline.sample.attention_level, 0.6)
        self.assertAlmostEqual(baseline.sample.emotional_state.intensity, 0.4)
        self.assertEqual(baseline.sample.emotional_state.primary_emotion, EmotionType.BORED)
        self.assertEqual(baseline.sample.posture.leaning, LeaningDirection.LEFT)
        self.assertEqual(baseline.sample.posture.posture_changes, 2)


class ApplyCalibrationTest(unittest.TestCase):

    def setUp(self):
        self.scores = EngagementScores(
            overall_engagement=0.5,
            attention_level=0.5,
            cognitive_load=0.4,
            fatigue_level=0.2,
            distraction_probability=0.4
        )
        self.state = EmotionalState(intensity=0.6)

    def test_general_profile_is_neutral(self):
        scores, state = apply_calibration(self.scores, self.state, calibration_for('general'))

        self.assertAlmostEqual(scores.overall_engagement, 0.5)
        self.assertAlmostEqual(scores.attention_level, 0.5)
        self.assertAlmostEqual(scores.distraction_probability, 0.4)
        self.assertAlmostEqual(state.intensity, 0.6)
        self.assertTrue(state.culturally_adjusted)

    def test_cultural_scaling(self):
        scores, state = apply_calibration(self.scores, self.state, calibration_for('maya'))

        self.assertAlmostEqual(scores.overall_engagement, 0.45)
        self.assertAlmostEqual(scores.attention_level, 0.35)
        self.assertAlmostEqual(scores.distraction_probability, 0.44)
        self.assertAlmostEqual(state.intensity, 0.72)
        self.assertAlmostEqual(scores.cognitive_load, 0.4)
        self.assertAlmostEqual(scores.fatigue_level, 0.2)

    def test_personal_offset(self):
        reference = make_sample(overall_engagement=0.5, attention_level=0.6)
        baseline = PersonalBaseline(sample=reference, sample_count=10, computed_at=0.0)
        scores, _ = apply_calibration(self.scores, self.state, calibration_for('general', baseline))

        self.assertAlmostEqual(scores.overall_engagement, 0.6)
        self.assertAlmostEqual(scores.attention_level, 0.6)

    def test_results_are_clamped(self):
        high = EngagementScores(1.0, 1.0, 1.0, 1.0, 1.0)
        scores, state = apply_calibration(
            high, EmotionalState(intensity=1.0), calibration_for('afrodescendiente')
        )
        for value in scores.as_array():
            self.assertGreaterEqual(float(value), 0.0)
            self.assertLessEqual(float(value), 1.0)
        self.assertLessEqual(state.intensity, 1.0)

    def test_coefficients_are_configurable(self):
        coefficients = CalibrationCoefficients.from_config({'engagement_pivot': 0.5, 'unknown': 3})
        scores, _ = apply_calibration(self.scores, self.state, calibration_for('general'), coefficients)

        self.assertAlmostEqual(scores.overall_engagement, 0.6)

    def test_inputs_are_not_modified(self):
        apply_calibration(self.scores, self.state, calibration_for('maya'))
        self.assertEqual(self.scores.overall_engagement, 0.5)
        self.assertFalse(self.state.culturally_adjusted)


class CalibrationSessionTest(unittest.TestCase):

    def test_lifecycle(self):
        session = CalibrationSession(duration_ms=1000, profiles=BUILTIN_PROFILES)
        self.assertEqual(session.state, CalibrationState.UNINITIALIZED)

        session.begin('nahuatl', now=10.0)
        self.assertTrue(session.calibrating)
        self.assertFalse(session.is_due(now=10.5))
        self.assertTrue(session.is_due(now=11.0))

        session.add_sample(make_sample(sequence=1, overall_engagement=0.4))
        session.add_sample(make_sample(sequence=2, overall_engagement=0.8))
        calibration = session.complete(computed_at=11.0)

        self.assertEqual(session.state, CalibrationState.CALIBRATED)
        self.assertEqual(calibration.cultural_tag, 'nahuatl')
        self.assertFalse(calibration.insufficient_data)
        self.assertAlmostEqual(calibration.baseline.sample.overall_engagement, 0.6)
        self.assertIs(session.calibration, calibration)

    def test_second_begin_is_rejected(self):
        session = CalibrationSession(profiles=BUILTIN_PROFILES)
        session.begin('general')
        with self.assertRaises(CalibrationError):
            session.begin('maya')

    def test_calibration_is_computed_once(self):
        session = CalibrationSession(profiles=BUILTIN_PROFILES)
        session.begin('general')
        session.add_sample(make_sample())
        with warnings.catch_warnings():
            warnings.simplefilter('ignore')
            session.complete()

        with self.assertRaises(CalibrationError):
            session.complete()
        with self.assertRaises(CalibrationError):
            session.add_sample(make_sample())
        with self.assertRaises(CalibrationError):
            session.begin('general')

    def test_zero_samples_warns_and_uses_cultural_profile_only(self):
        session = CalibrationSession(profiles=BUILTIN_PROFILES)
        session.begin('maya')

        with self.assertWarns(CalibrationInsufficientData):
            calibration = session.complete()

        self.assertIsNone(calibration.baseline)
        self.assertTrue(calibration.insufficient_data)
        self.assertEqual(calibration.profile, BUILTIN_PROFILES['maya'])


if __name__ == '__main__':
    unittest.main()
