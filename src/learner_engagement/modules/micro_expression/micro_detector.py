"""
Micro-expression detection.

A micro-expression is a brief, low-intensity emotion that surfaces for a
tick or two and is often masked by a neutral or focused expression. The
fallback looks for such spikes in the recent emotion distributions.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Tuple

import numpy as np
import torch.nn as nn

from ...types import EMOTION_LABELS, NUM_EMOTIONS, EmotionType, FacialRegion, MicroExpression, clamp
from ..base import InferenceModule, ModuleInput, ModuleResult, TorchModelMixin, valid_rows
from ..image_utils import preprocess_region
from .models import MicroExpressionNet

logger = logging.getLogger(__name__)

MICRO_FEATURES = 6

EXPRESSION_REGIONS = {
    EmotionType.HAPPY: FacialRegion.MOUTH,
    EmotionType.SAD: FacialRegion.MOUTH,
    EmotionType.DISGUSTED: FacialRegion.MOUTH,
    EmotionType.SURPRISED: FacialRegion.EYES,
    EmotionType.FEARFUL: FacialRegion.EYES,
    EmotionType.ANGRY: FacialRegion.BROWS,
    EmotionType.CONFUSED: FacialRegion.BROWS,
    EmotionType.FRUSTRATED: FacialRegion.BROWS,
    EmotionType.CONCENTRATED: FacialRegion.BROWS,
}

# Expressions that typically mask another emotion
MASKING_EMOTIONS = (EmotionType.NEUTRAL, EmotionType.CONCENTRATED)


@dataclass(frozen=True)
class MicroExpressionEstimate:
    expressions: Tuple[MicroExpression, ...] = ()
    # peak, intensity, suppression, authenticity, count, confidence
    features: np.ndarray = field(default_factory=lambda: np.zeros(MICRO_FEATURES, dtype=np.float32))


def summarize(expressions: List[MicroExpression], suppression: float,
              authenticity: float, peak: float) -> MicroExpressionEstimate:
    """Pack detected expressions and their summary feature vector."""
    if expressions:
        intensity = float(np.mean([e.intensity for e in expressions]))
        confidence = float(np.mean([e.confidence for e in expressions]))
    else:
        intensity = confidence = 0.0

    features = np.array([
        clamp(peak),
        clamp(intensity),
        clamp(suppression),
        clamp(authenticity),
        clamp(len(expressions) / 3.0),
        clamp(confidence)
    ], dtype=np.float32)
    return MicroExpressionEstimate(expressions=tuple(expressions), features=features)


class MicroExpressionModule(InferenceModule):
    """Micro-expression detection over an 8x13 window of emotion distributions."""

    name = 'micro_expression'
    history_length = 8
    history_width = NUM_EMOTIONS

    def __init__(self, duration_ms: int = 200):
        self.duration_ms = duration_ms

    def neutral_metric(self) -> MicroExpressionEstimate:
        return MicroExpressionEstimate()

    def expression(self, emotion: EmotionType, intensity: float, confidence: float,
                   timestamp: float, suppressed: bool) -> MicroExpression:
        return MicroExpression(
            kind=emotion,
            intensity=clamp(intensity),
            duration_ms=self.duration_ms,
            timestamp=timestamp,
            confidence=clamp(confidence),
            facial_region=EXPRESSION_REGIONS.get(emotion, FacialRegion.FULL_FACE),
            suppressed_emotion=emotion if suppressed else None
        )


class MicroExpressionDetector(TorchModelMixin, MicroExpressionModule):
    """MicroExpressionNet inference."""

    artifact_name = 'micro_expression'

    def __init__(self, model: nn.Module, device, detection_threshold: float = 0.5, **kwargs):
        TorchModelMixin.__init__(self, model, device)
        MicroExpressionModule.__init__(self, **kwargs)
        self.detection_threshold = detection_threshold

    @classmethod
    def build_model(cls) -> nn.Module:
        return MicroExpressionNet(history_length=cls.history_length)

    def infer(self, inputs: ModuleInput) -> ModuleResult:
        region = inputs.region
        if region is None:
            return self.result(self.neutral_metric(), 0.0)

        scope = inputs.scope
        face = self.to_batch(scope, preprocess_region(region.face, (64, 64)))
        history = self.to_batch(scope, inputs.history.astype(np.float32))
        scores, intensity, suppression, authenticity = self.run_model(scope, face, history)

        scores = scores[0].numpy()
        suppression = float(suppression[0, 0])
        expressions = [
            self.expression(
                EMOTION_LABELS[i],
                intensity=float(intensity[0, 0]) * float(scores[i]),
                confidence=float(scores[i]),
                timestamp=inputs.timestamp,
                suppressed=suppression > 0.5
            )
            for i in np.argsort(scores)[::-1]
            if scores[i] > self.detection_threshold and EMOTION_LABELS[i] != EmotionType.NEUTRAL
        ]
        estimate = summarize(expressions, suppression, float(authenticity[0, 0]), float(scores.max()))
        return self.result(estimate, float(scores.max()) * region.confidence)


class SpikeMicroExpressionDetector(MicroExpressionModule):
    """
    Detects brief spikes in the emotion-distribution history.

    The newest distribution is compared with the mean of the earlier ones;
    an emotion whose probability jumps by more than ``spike_threshold``
    while staying a minority in the baseline is reported. It counts as
    suppressed when the dominant emotion of that tick is a masking one.
    """

    is_fallback = True

    def __init__(self, spike_threshold: float = 0.15, min_history: int = 3, **kwargs):
        super().__init__(**kwargs)
        self.spike_threshold = spike_threshold
        self.min_history = min_history

    def infer(self, inputs: ModuleInput) -> ModuleResult:
        if inputs.region is None:
            return self.result(self.neutral_metric(), 0.0)

        rows = valid_rows(inputs.history)
        if len(rows) < self.min_history:
            return self.result(self.neutral_metric(), 0.3 * inputs.region.confidence)

        latest = rows[-1]
        baseline = rows[:-1].mean(axis=0)
        deviation = latest - baseline
        dominant = EMOTION_LABELS[int(np.argmax(latest))]
        masked = dominant in MASKING_EMOTIONS

        expressions = []
        for i in np.argsort(deviation)[::-1]:
            emotion = EMOTION_LABELS[int(i)]
            if deviation[i] <= self.spike_threshold:
                break
            if emotion == dominant or baseline[i] >= 0.5:
                continue
            expressions.append(self.expression(
                emotion,
                intensity=2.0 * float(deviation[i]),
                confidence=float(deviation[i]) / (2 * self.spike_threshold),
                timestamp=inputs.timestamp,
                suppressed=masked
            ))

        suppression = 1.0 if expressions and masked else 0.0
        estimate = summarize(
            expressions,
            suppression=suppression,
            authenticity=1.0 - 0.5 * suppression,
            peak=float(max(deviation.max(), 0.0))
        )
        return self.result(estimate, 0.5 * inputs.region.confidence)
