"""
Tests for the temporal feature store.
"""

import unittest

import numpy as np

from learner_engagement.integration.feature_store import (
    TEMPORAL_FEATURES, TemporalFeatureStore, pad_window, temporal_row
)
from learner_engagement.types import GazePoint
from tests.fixtures.fakes import make_sample


class PadWindowTest(unittest.TestCase):

    def test_short_history_is_zero_padded_at_the_front(self):
        rows = [np.array([1.0, 2.0]), np.array([3.0, 4.0])]
        window = pad_window(rows, 4, 2)

        self.assertEqual(window.shape, (4, 2))
        np.testing.assert_array_equal(window[:2], np.zeros((2, 2)))
        np.testing.assert_array_equal(window[2:], [[1.0, 2.0], [3.0, 4.0]])

    def test_long_history_keeps_most_recent_rows(self):
        rows = [np.array([float(i)]) for i in range(10)]
        window = pad_window(rows, 3, 1)

        np.testing.assert_array_equal(window[:, 0], [7.0, 8.0, 9.0])

    def test_empty_history(self):
        window = pad_window([], 5, 2)
        self.assertEqual(window.shape, (5, 2))
        self.assertFalse(window.any())


class TemporalFeatureStoreTest(unittest.TestCase):

    def test_history_evicts_oldest_first(self):
        store = TemporalFeatureStore(capacity=3)
        for sequence in range(1, 6):
            store.record(make_sample(sequence=sequence))

        self.assertEqual(len(store), 3)
        self.assertEqual([s.sequence for s in store.history()], [3, 4, 5])
        self.assertEqual(store.latest().sequence, 5)

    def test_capacity_must_be_positive(self):
        with self.assertRaises(ValueError):
            TemporalFeatureStore(capacity=0)

    def test_unpublished_samples_feed_windows_only(self):
        store = TemporalFeatureStore()
        store.record(make_sample(sequence=1, overall_engagement=0.9), publish=False)

        self.assertEqual(len(store), 0)
        self.assertIsNone(store.latest())
        engagement = store.windows()['engagement']
        self.assertAlmostEqual(float(engagement[-1, 0]), 0.9, places=5)

    def test_window_shapes(self):
        store = TemporalFeatureStore()
        store.record(make_sample())
        windows = store.windows()

        self.assertEqual(windows['emotion'].shape, (10, 13))
        self.assertEqual(windows['gaze'].shape, (5, 2))
        self.assertEqual(windows['posture'].shape, (15, 8))
        self.assertEqual(windows['micro_expression'].shape, (8, 13))
        self.assertEqual(windows['cognitive_load'].shape, (30, 6))
        self.assertEqual(windows['engagement'].shape, (20, TEMPORAL_FEATURES))

    def test_gaze_trail_is_capped(self):
        store = TemporalFeatureStore(gaze_trail_limit=3)
        for i in range(5):
            trail = store.add_gaze_point(GazePoint(0.1 * i, 0.5, 1000 + i, 0.8))

        self.assertEqual(len(trail), 3)
        self.assertEqual([p.timestamp_ms for p in trail], [1002, 1003, 1004])
        np.testing.assert_allclose(store.windows()['gaze'][-1], [0.4, 0.5], rtol=1e-6)

    def test_history_snapshot_is_immutable(self):
        store = TemporalFeatureStore()
        store.record(make_sample(sequence=1))
        snapshot = store.history()
        store.record(make_sample(sequence=2))

        self.assertIsInstance(snapshot, tuple)
        self.assertEqual(len(snapshot), 1)

    def test_clear(self):
        store = TemporalFeatureStore()
        store.record(make_sample())
        store.add_gaze_point(GazePoint(0.5, 0.5, 1, 1.0))
        store.clear()

        self.assertEqual(len(store), 0)
        self.assertEqual(store.gaze_trail(), ())
        self.assertFalse(store.windows()['engagement'].any())


class TemporalRowTest(unittest.TestCase):

    def test_row_width_and_headline_values(self):
        row = temporal_row(make_sample(overall_engagement=0.25, fatigue_level=0.75))

        self.assertEqual(row.shape, (TEMPORAL_FEATURES,))
        self.assertAlmostEqual(float(row[0]), 0.25, places=5)
        self.assertAlmostEqual(float(row[3]), 0.75, places=5)


if __name__ == '__main__':
    unittest.main()
