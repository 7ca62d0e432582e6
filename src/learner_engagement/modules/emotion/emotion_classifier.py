"""
Emotion classification.

The primary classifier is EmotionNet; the fallback scores hand-crafted edge
and brightness features of the face regions with a fixed linear model.
Both return an EmotionEstimate carrying the full 13-way distribution, which
the feature store keeps for the emotion and micro-expression windows.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np
import torch.nn as nn

from ...types import EMOTION_LABELS, NUM_EMOTIONS, EmotionalState, EmotionType, clamp
from ..base import InferenceModule, ModuleInput, ModuleResult, TorchModelMixin, valid_rows
from ..image_utils import dark_fraction, edge_density, preprocess_region, to_gray
from .models import EmotionNet

logger = logging.getLogger(__name__)

# (valence, arousal) per emotion, in EMOTION_LABELS order
EMOTION_AFFECT = np.array([
    [0.0, 0.3],    # neutral
    [0.8, 0.6],    # happy
    [-0.6, 0.3],   # sad
    [-0.7, 0.8],   # angry
    [-0.6, 0.8],   # fearful
    [-0.6, 0.5],   # disgusted
    [0.2, 0.8],    # surprised
    [-0.2, 0.5],   # confused
    [-0.5, 0.7],   # frustrated
    [0.2, 0.5],    # concentrated
    [0.5, 0.6],    # interested
    [-0.3, 0.2],   # bored
    [0.8, 0.9],    # excited
], dtype=np.float32)

# Feature order: mouth_h, mouth_v, eye_h, eye_v, brightness, contrast, eye_dark
EMOTION_FEATURE_WEIGHTS = np.array([
    [0.0, 0.0, 0.0, 0.0, 0.0, -1.0, 0.0],   # neutral
    [8.0, 1.0, 0.0, 0.0, 1.0, 0.5, 0.0],    # happy
    [-2.0, 0.0, 0.0, 0.0, -2.0, 0.0, 1.0],  # sad
    [0.0, 2.0, 4.0, 0.0, -1.0, 1.5, 0.0],   # angry
    [0.0, 3.0, 0.0, 3.0, -1.0, 0.5, -2.0],  # fearful
    [1.0, 3.0, 2.0, 0.0, -1.0, 0.5, 0.0],   # disgusted
    [0.0, 5.0, 0.0, 4.0, 0.0, 0.5, -2.0],   # surprised
    [0.0, 0.0, 4.0, 1.0, 0.0, 0.0, 0.0],    # confused
    [0.0, 2.0, 4.0, 0.0, -1.0, 1.0, 0.0],   # frustrated
    [-1.0, 0.0, 2.0, 0.0, 0.0, 0.0, 3.0],   # concentrated
    [2.0, 1.0, 0.0, 2.0, 1.0, 0.0, 1.0],    # interested
    [-2.0, -1.0, 0.0, 0.0, -1.0, -1.0, -2.0],  # bored
    [6.0, 3.0, 0.0, 2.0, 1.0, 1.0, 0.0],    # excited
], dtype=np.float32)
EMOTION_BIAS = np.array(
    [1.0, -0.5, -0.8, -1.2, -1.2, -1.2, -1.0, -0.6, -1.0, -0.2, -0.4, -0.4, -1.0],
    dtype=np.float32
)


@dataclass(frozen=True)
class EmotionEstimate:
    state: EmotionalState
    distribution: np.ndarray  # (13,), sums to 1


def neutral_distribution() -> np.ndarray:
    distribution = np.zeros(NUM_EMOTIONS, dtype=np.float32)
    distribution[0] = 1.0
    return distribution


def softmax(logits: np.ndarray) -> np.ndarray:
    shifted = np.exp(logits - np.max(logits))
    return shifted / np.sum(shifted)


def build_estimate(distribution: np.ndarray, valence: float, arousal: float,
                   intensity: float, confidence: float) -> EmotionEstimate:
    """
    Turn an emotion distribution and affect scores into an EmotionEstimate.

    Args:
        distribution: Non-negative scores over EMOTION_LABELS
        valence: Valence in [-1, 1]
        arousal: Arousal in [0, 1]
        intensity: Intensity in [0, 1]
        confidence: Confidence in [0, 1]

    Returns:
        EmotionEstimate with a normalised distribution
    """
    distribution = np.clip(np.asarray(distribution, dtype=np.float32), 0.0, None)
    total = float(distribution.sum())
    distribution = distribution / total if total > 0 else neutral_distribution()

    order = np.argsort(distribution)[::-1]
    primary = EMOTION_LABELS[int(order[0])]
    secondary: Optional[EmotionType] = None
    if distribution[order[1]] > 0.2:
        secondary = EMOTION_LABELS[int(order[1])]

    state = EmotionalState(
        primary_emotion=primary,
        secondary_emotion=secondary,
        intensity=clamp(intensity),
        valence=clamp(valence, -1.0, 1.0),
        arousal=clamp(arousal),
        confidence=clamp(confidence)
    )
    return EmotionEstimate(state=state, distribution=distribution)


class EmotionModule(InferenceModule):
    """Emotion classification over the face regions and a 10x13 history."""

    name = 'emotion'
    history_length = 10
    history_width = NUM_EMOTIONS

    def neutral_metric(self) -> EmotionEstimate:
        return EmotionEstimate(state=EmotionalState(), distribution=neutral_distribution())


class EmotionClassifier(TorchModelMixin, EmotionModule):
    """EmotionNet inference."""

    artifact_name = 'emotion'

    @classmethod
    def build_model(cls) -> nn.Module:
        return EmotionNet(history_length=cls.history_length)

    def infer(self, inputs: ModuleInput) -> ModuleResult:
        region = inputs.region
        if region is None:
            return self.result(self.neutral_metric(), 0.0)

        scope = inputs.scope
        face = self.to_batch(scope, preprocess_region(region.face, (64, 64)))
        eyes = self.to_batch(scope, preprocess_region(region.eyes, (64, 32)))
        mouth = self.to_batch(scope, preprocess_region(region.mouth, (48, 32)))
        history = self.to_batch(scope, inputs.history.astype(np.float32))

        basic, complex_scores, valence_arousal, intensity = self.run_model(
            scope, face, eyes, mouth, history
        )
        distribution = np.concatenate([basic[0].numpy(), complex_scores[0].numpy()])
        estimate = build_estimate(
            distribution,
            valence=float(valence_arousal[0, 0]),
            arousal=float(valence_arousal[0, 1]),
            intensity=float(intensity[0, 0]),
            confidence=float(np.max(distribution) / max(float(distribution.sum()), 1e-6))
        )
        return self.result(estimate, estimate.state.confidence * region.confidence)


class HeuristicEmotionEstimator(EmotionModule):
    """Linear scoring of edge and brightness features, smoothed over history."""

    is_fallback = True

    def __init__(self, smoothing: float = 0.3):
        self.smoothing = smoothing

    def region_features(self, region) -> np.ndarray:
        mouth_h, mouth_v = edge_density(region.mouth)
        eye_h, eye_v = edge_density(region.eyes)
        gray = to_gray(region.face).astype(np.float32)
        brightness = float(np.mean(gray)) / 255.0 if gray.size else 0.5
        contrast = float(np.std(gray)) / 128.0 if gray.size else 0.0
        eye_dark = dark_fraction(region.eyes)
        return np.array(
            [mouth_h, mouth_v, eye_h, eye_v, brightness - 0.5, contrast, eye_dark],
            dtype=np.float32
        )

    def infer(self, inputs: ModuleInput) -> ModuleResult:
        region = inputs.region
        if region is None:
            return self.result(self.neutral_metric(), 0.0)

        features = self.region_features(region)
        probabilities = softmax(EMOTION_FEATURE_WEIGHTS @ features + EMOTION_BIAS)

        previous = valid_rows(inputs.history)
        if len(previous):
            mean = previous.mean(axis=0)
            if mean.sum() > 0:
                probabilities = (1 - self.smoothing) * probabilities + self.smoothing * mean / mean.sum()

        valence, arousal = (probabilities @ EMOTION_AFFECT).tolist()
        peak = float(np.max(probabilities))
        intensity = (peak - 1.0 / NUM_EMOTIONS) / (1.0 - 1.0 / NUM_EMOTIONS)
        estimate = build_estimate(
            probabilities, valence, arousal,
            intensity=0.3 + 0.7 * intensity,
            confidence=peak
        )
        # Fallback confidence is capped at 0.6
        return self.result(estimate, 0.6 * peak * region.confidence)
