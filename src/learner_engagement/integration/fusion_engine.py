"""
Multi-Modal Fusion Engine

Turns the per-modality results of one tick into fixed-width feature vectors
and runs the engagement module over them and the temporal window. Holds no
state between ticks: the same results and windows always give the same
scores.
"""

import logging
from typing import Dict, Mapping

import numpy as np

from ..modules.base import InferenceModule, ModuleInput, ModuleResult, valid_rows
from ..modules.engagement.engagement_estimator import MODALITIES, EngagementScores
from ..modules.gaze import GazeEstimate
from ..modules.posture import posture_row
from ..modules.resources import BufferScope
from ..types import GazeType, clamp

logger = logging.getLogger(__name__)


def gaze_features(estimate: GazeEstimate, window: np.ndarray) -> np.ndarray:
    """
    Ten gaze features: x, y, on-screen flag, fixation/saccade/blink one-hot,
    normalised speed, dispersion of recent points, head yaw and pitch.
    """
    rows = valid_rows(window)
    dispersion = clamp(5.0 * float(np.mean(np.std(rows, axis=0)))) if len(rows) >= 2 else 0.0
    pitch, yaw, _ = estimate.head_pose
    return np.array([
        estimate.x,
        estimate.y,
        1.0 if estimate.on_screen else 0.0,
        1.0 if estimate.gaze_type == GazeType.FIXATION else 0.0,
        1.0 if estimate.gaze_type == GazeType.SACCADE else 0.0,
        1.0 if estimate.gaze_type == GazeType.BLINK else 0.0,
        clamp((estimate.saccade_speed or 0.0) / 2.0),
        dispersion,
        yaw / 90.0,
        pitch / 90.0
    ], dtype=np.float32)


class FusionEngine:
    """Stateless combiner of modality results into EngagementScores."""

    def __init__(self, module: InferenceModule):
        self.module = module

    def build_features(self, results: Mapping[str, ModuleResult],
                       windows: Mapping[str, np.ndarray]) -> Dict[str, np.ndarray]:
        """
        Feature vectors for every modality plus their confidences.

        Args:
            results: Module results keyed by modality name
            windows: Module windows from the feature store

        Returns:
            Dictionary of modality name to vector, plus ``confidences`` (5,)
        """
        features = {
            'emotion': results['emotion'].metric.distribution,
            'gaze': gaze_features(results['gaze'].metric, windows['gaze']),
            'posture': posture_row(results['posture'].metric),
            'micro_expression': results['micro_expression'].metric.features,
            'cognitive_load': results['cognitive_load'].metric.features,
        }
        features['confidences'] = np.array(
            [results[name].confidence for name in MODALITIES], dtype=np.float32
        )
        return features

    def fuse(self, results: Mapping[str, ModuleResult], windows: Mapping[str, np.ndarray],
             scope: BufferScope, timestamp: float) -> ModuleResult:
        """
        Fuse one tick.

        Returns:
            ModuleResult whose metric is EngagementScores with every field
            in [0, 1]
        """
        inputs = ModuleInput(
            frame=None,
            region=None,
            history=windows['engagement'],
            scope=scope,
            timestamp=timestamp,
            features=self.build_features(results, windows)
        )
        result = self.module(inputs)
        scores = EngagementScores.from_array(result.metric.as_array())
        return ModuleResult(scores, result.confidence, result.source, result.error)
