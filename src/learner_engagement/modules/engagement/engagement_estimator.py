"""
Engagement estimation from fused modality features.

Unlike the other modules this one takes no image: its input is the feature
vector of every modality for the current tick (``ModuleInput.features``)
plus the 20x37 temporal window. Both implementations are stateless.
"""

import logging
from dataclasses import dataclass
from typing import Dict

import numpy as np
import torch.nn as nn

from ...types import clamp
from ..base import InferenceModule, ModuleInput, ModuleResult, TorchModelMixin, valid_rows
from .models import MODALITY_DIMS, NUM_OUTPUTS, TEMPORAL_FEATURES, TEMPORAL_LENGTH, EngagementNet

logger = logging.getLogger(__name__)

MODALITIES = tuple(MODALITY_DIMS)


@dataclass(frozen=True)
class EngagementScores:
    overall_engagement: float = 0.5
    attention_level: float = 0.5
    cognitive_load: float = 0.5
    fatigue_level: float = 0.3
    distraction_probability: float = 0.5

    @classmethod
    def from_array(cls, values) -> 'EngagementScores':
        return cls(*(clamp(v) for v in values))

    def as_array(self) -> np.ndarray:
        return np.array([
            self.overall_engagement,
            self.attention_level,
            self.cognitive_load,
            self.fatigue_level,
            self.distraction_probability
        ], dtype=np.float32)


# Per-emotion contribution to (engagement, attention, cognitive, fatigue, distraction)
EMOTION_SCORES = np.array([
    [0.5, 0.5, 0.4, 0.3, 0.4],  # neutral
    [0.7, 0.6, 0.3, 0.2, 0.3],  # happy
    [0.3, 0.3, 0.4, 0.6, 0.5],  # sad
    [0.4, 0.4, 0.6, 0.4, 0.6],  # angry
    [0.3, 0.4, 0.6, 0.4, 0.6],  # fearful
    [0.3, 0.3, 0.4, 0.4, 0.6],  # disgusted
    [0.6, 0.6, 0.5, 0.2, 0.4],  # surprised
    [0.5, 0.6, 0.8, 0.4, 0.4],  # confused
    [0.4, 0.5, 0.9, 0.6, 0.6],  # frustrated
    [0.8, 0.9, 0.7, 0.3, 0.1],  # concentrated
    [0.9, 0.8, 0.5, 0.2, 0.2],  # interested
    [0.1, 0.2, 0.2, 0.7, 0.8],  # bored
    [0.8, 0.6, 0.4, 0.2, 0.4],  # excited
], dtype=np.float32)

MODALITY_PRIORS = np.array([0.25, 0.3, 0.15, 0.1, 0.2], dtype=np.float32)


def emotion_scores(v: np.ndarray) -> np.ndarray:
    return v @ EMOTION_SCORES


def gaze_scores(v: np.ndarray) -> np.ndarray:
    # x, y, on_screen, fixation, saccade, blink, speed, dispersion, yaw, pitch
    on_screen, fixation, saccade, blink, dispersion = v[2], v[3], v[4], v[5], v[7]
    return np.array([
        0.3 + 0.5 * on_screen + 0.2 * fixation,
        on_screen * (0.6 + 0.4 * fixation) * (1.0 - 0.5 * dispersion),
        0.4 + 0.3 * saccade,
        0.2 + 0.6 * blink,
        0.9 - 0.7 * on_screen + 0.2 * saccade
    ])


def posture_scores(v: np.ndarray) -> np.ndarray:
    # pitch, yaw, roll, stability, shoulder, spine, ergonomic, leaning
    stability, spine, ergonomic = v[3], v[5], v[6]
    return np.array([
        0.3 + 0.4 * ergonomic + 0.3 * stability,
        0.5 * stability + 0.5 * spine,
        0.5,
        0.7 * (1.0 - spine) + 0.3 * (1.0 - stability),
        1.0 - stability
    ])


def micro_scores(v: np.ndarray) -> np.ndarray:
    # peak, intensity, suppression, authenticity, count, confidence
    suppression, count = v[2], v[4]
    return np.array([
        0.5,
        0.5 - 0.2 * count,
        0.4 + 0.4 * suppression,
        0.3,
        0.3 + 0.4 * count
    ])


def cognitive_scores(v: np.ndarray) -> np.ndarray:
    # load, fatigue, openness, pupil, blink rate, fixation
    load, fatigue, openness, fixation = v[0], v[1], v[2], v[5]
    return np.array([
        0.4 * fixation + 0.3 * (1.0 - fatigue) + 0.3 * openness,
        0.6 * fixation + 0.4 * (1.0 - fatigue),
        load,
        fatigue,
        1.0 - fixation
    ])


MODALITY_SCORERS = {
    'emotion': emotion_scores,
    'gaze': gaze_scores,
    'posture': posture_scores,
    'micro_expression': micro_scores,
    'cognitive_load': cognitive_scores,
}


def confidence_weights(confidences: np.ndarray, temperature: float = 4.0) -> np.ndarray:
    """Softmax over modality priors, shifted by each modality's confidence."""
    logits = np.log(MODALITY_PRIORS) + temperature * np.clip(confidences, 0.0, 1.0)
    weights = np.exp(logits - logits.max())
    return weights / weights.sum()


class EngagementModule(InferenceModule):
    """Multimodal fusion into the five headline engagement scalars."""

    name = 'engagement'
    history_length = TEMPORAL_LENGTH
    history_width = TEMPORAL_FEATURES

    def neutral_metric(self) -> EngagementScores:
        return EngagementScores()

    @staticmethod
    def modality_vectors(features: Dict[str, np.ndarray]) -> Dict[str, np.ndarray]:
        return {
            name: np.asarray(features[name], dtype=np.float32).reshape(MODALITY_DIMS[name])
            for name in MODALITIES
        }


class EngagementEstimator(TorchModelMixin, EngagementModule):
    """EngagementNet inference."""

    artifact_name = 'engagement'

    @classmethod
    def build_model(cls) -> nn.Module:
        return EngagementNet()

    def infer(self, inputs: ModuleInput) -> ModuleResult:
        vectors = self.modality_vectors(inputs.features)
        scope = inputs.scope
        batch = [self.to_batch(scope, vectors[name]) for name in MODALITIES]
        temporal = self.to_batch(scope, inputs.history.astype(np.float32))

        outputs = self.run_model(scope, *batch, temporal)
        scores = EngagementScores.from_array(outputs[0].tolist())
        confidence = float(np.mean(inputs.features['confidences']))
        return self.result(scores, confidence)


class GatedFusionEstimator(EngagementModule):
    """
    Confidence-gated blend of per-modality rule scores.

    Each modality maps its feature vector to the five scalars with a fixed
    rule; the modality estimates are averaged with softmax weights driven by
    modality confidence and then blended with the mean of the temporal
    window.
    """

    is_fallback = True

    def __init__(self, temperature: float = 4.0, temporal_weight: float = 0.3):
        self.temperature = temperature
        self.temporal_weight = temporal_weight

    def infer(self, inputs: ModuleInput) -> ModuleResult:
        vectors = self.modality_vectors(inputs.features)
        confidences = np.asarray(inputs.features['confidences'], dtype=np.float32)

        per_modality = np.stack([
            np.clip(MODALITY_SCORERS[name](vectors[name]), 0.0, 1.0) for name in MODALITIES
        ])
        weights = confidence_weights(confidences, self.temperature)
        fused = weights @ per_modality

        rows = valid_rows(inputs.history)
        if len(rows):
            temporal = rows[:, :NUM_OUTPUTS].mean(axis=0)
            fused = (1.0 - self.temporal_weight) * fused + self.temporal_weight * temporal

        return self.result(EngagementScores.from_array(fused), float(weights @ confidences))
