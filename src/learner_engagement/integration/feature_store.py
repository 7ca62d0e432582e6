"""
Temporal Feature Store

Bounded history of published samples plus the short rolling context the
inference modules read their fixed-length windows from. Windows are built
from every produced sample, calibration-phase samples included, while the
published History only holds post-calibration samples.
"""

import threading
from collections import deque
from typing import Dict, Optional, Sequence, Tuple

import numpy as np

from ..modules.posture import posture_row
from ..types import NUM_EMOTIONS, EngagementSample, GazePoint, clamp, emotion_index

TEMPORAL_BASE_FEATURES = 18
TEMPORAL_EXTRA_FEATURES = 6
TEMPORAL_FEATURES = TEMPORAL_BASE_FEATURES + NUM_EMOTIONS + TEMPORAL_EXTRA_FEATURES


def pad_window(rows: Sequence[np.ndarray], length: int, width: int) -> np.ndarray:
    """
    Stack the last ``length`` rows into a window, zero-padded at the front.

    Args:
        rows: Rows oldest first
        length: Window length
        width: Row width

    Returns:
        Array of shape (length, width)
    """
    window = np.zeros((length, width), dtype=np.float32)
    recent = list(rows)[-length:] if length > 0 else []
    if recent:
        window[length - len(recent):] = np.asarray(recent, dtype=np.float32).reshape(len(recent), width)
    return window


def cognitive_row(sample: EngagementSample) -> np.ndarray:
    """Pupil, openness, microsaccade, fixation stability and last gaze point."""
    neuro = sample.neuro_indicators
    last = sample.gaze_trail[-1] if sample.gaze_trail else None
    return np.array([
        neuro.pupil_dilation,
        neuro.eye_openness,
        neuro.microsaccade_rate,
        neuro.fixation_stability,
        last.x if last else 0.0,
        last.y if last else 0.0
    ], dtype=np.float32)


def temporal_row(sample: EngagementSample) -> np.ndarray:
    """
    Encode a sample as one 37-wide row of the fusion temporal window.

    Layout: 18 headline/affect/posture/eye features, the primary emotion
    one-hot scaled by intensity (13), and 6 attention/event summaries.
    """
    emotion = sample.emotional_state
    pose = sample.posture.head_pose
    neuro = sample.neuro_indicators

    base = [
        sample.overall_engagement,
        sample.attention_level,
        sample.cognitive_load,
        sample.fatigue_level,
        sample.distraction_probability,
        emotion.intensity,
        (emotion.valence + 1.0) / 2.0,
        emotion.arousal,
        emotion.confidence,
        pose.pitch / 90.0,
        pose.yaw / 90.0,
        pose.roll / 90.0,
        pose.stability,
        sample.posture.shoulder_alignment,
        sample.posture.spinal_posture,
        sample.posture.ergonomic_score,
        clamp(sample.blink_stats.average_rate / 60.0),
        neuro.mental_fatigue,
    ]
    emotions = np.zeros(NUM_EMOTIONS, dtype=np.float32)
    emotions[emotion_index(emotion.primary_emotion)] = emotion.intensity
    extra = [
        neuro.pupil_dilation,
        neuro.fixation_stability,
        neuro.sustained_attention,
        neuro.working_memory_load,
        clamp(len(sample.distraction_events) / 3.0),
        clamp(len(sample.micro_expressions) / 3.0),
    ]
    return np.concatenate([np.asarray(base, dtype=np.float32), emotions, np.asarray(extra, dtype=np.float32)])


class TemporalFeatureStore:
    """
    Session-owned temporal buffers.

    Only the scheduler thread writes; readers get tuple snapshots taken under
    the lock, never the live deques.
    """

    def __init__(self, capacity: int = 1000, gaze_trail_limit: int = 100, context_length: int = 30):
        """
        Initialize the store.

        Args:
            capacity: Maximum number of published samples kept (oldest evicted)
            gaze_trail_limit: Maximum number of gaze points in the trail
            context_length: Number of recent samples kept for module windows
        """
        if capacity <= 0:
            raise ValueError("History capacity must be positive")
        self.capacity = capacity
        self._lock = threading.Lock()
        self._history = deque(maxlen=capacity)
        self._context = deque(maxlen=context_length)
        self._gaze_trail = deque(maxlen=gaze_trail_limit)

    def __len__(self) -> int:
        with self._lock:
            return len(self._history)

    def add_gaze_point(self, point: GazePoint) -> Tuple[GazePoint, ...]:
        """Append a gaze point and return the trail snapshot including it."""
        with self._lock:
            self._gaze_trail.append(point)
            return tuple(self._gaze_trail)

    def gaze_trail(self) -> Tuple[GazePoint, ...]:
        with self._lock:
            return tuple(self._gaze_trail)

    def record(self, sample: EngagementSample, distribution: Optional[np.ndarray] = None,
               publish: bool = True):
        """
        Record a produced sample.

        Args:
            sample: The sample of the current tick
            distribution: Emotion distribution of the tick (13,)
            publish: Whether the sample also enters the published History
        """
        if distribution is None:
            distribution = np.zeros(NUM_EMOTIONS, dtype=np.float32)
            distribution[emotion_index(sample.emotional_state.primary_emotion)] = 1.0
        with self._lock:
            self._context.append((sample, np.asarray(distribution, dtype=np.float32)))
            if publish:
                self._history.append(sample)

    def latest(self) -> Optional[EngagementSample]:
        with self._lock:
            return self._history[-1] if self._history else None

    def history(self) -> Tuple[EngagementSample, ...]:
        with self._lock:
            return tuple(self._history)

    def windows(self) -> Dict[str, np.ndarray]:
        """
        Fixed-length windows for every module, zero-padded at the front.

        Returns:
            Dictionary with ``emotion`` (10x13), ``gaze`` (5x2),
            ``posture`` (15x8), ``micro_expression`` (8x13),
            ``cognitive_load`` (30x6) and ``engagement`` (20x37)
        """
        with self._lock:
            context = list(self._context)
            trail = list(self._gaze_trail)

        samples = [sample for sample, _ in context]
        distributions = [distribution for _, distribution in context]
        return {
            'emotion': pad_window(distributions, 10, NUM_EMOTIONS),
            'gaze': pad_window([(p.x, p.y) for p in trail], 5, 2),
            'posture': pad_window([posture_row(s.posture) for s in samples], 15, 8),
            'micro_expression': pad_window(distributions, 8, NUM_EMOTIONS),
            'cognitive_load': pad_window([cognitive_row(s) for s in samples], 30, 6),
            'engagement': pad_window([temporal_row(s) for s in samples], 20, TEMPORAL_FEATURES),
        }

    def clear(self):
        with self._lock:
            self._history.clear()
            self._context.clear()
            self._gaze_trail.clear()
