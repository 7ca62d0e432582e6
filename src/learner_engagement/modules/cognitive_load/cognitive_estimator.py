"""
Cognitive Load Estimation

Derives blink statistics, eye openness, pupil dilation and gaze stability
from the eye band and the 30-tick eye-signal window, and turns them into
neurophysiological indicators of cognitive load and mental fatigue.
Implements a PERCLOS-style fatigue measure in the fallback.
"""

import logging
from dataclasses import dataclass, field

import numpy as np
import torch.nn as nn

from ...types import BlinkStats, NeuroIndicators, clamp
from ..base import InferenceModule, ModuleInput, ModuleResult, TorchModelMixin, valid_rows
from ..image_utils import dark_fraction, preprocess_region
from .models import COGNITIVE_FEATURES, CognitiveLoadNet

logger = logging.getLogger(__name__)

# Window columns
PUPIL, OPENNESS, MICROSACCADE, FIXATION, GAZE_X, GAZE_Y = range(COGNITIVE_FEATURES)


@dataclass(frozen=True)
class EyeMeasurements:
    eye_openness: float = 1.0
    pupil_dilation: float = 0.5
    microsaccade_rate: float = 0.5
    fixation_stability: float = 0.8
    perclos: float = 0.0
    blink: BlinkStats = field(default_factory=BlinkStats)

    @property
    def blink_rate(self) -> float:
        """Blink rate normalised so that 40 blinks/min maps to 1."""
        return clamp(self.blink.average_rate / 40.0)


@dataclass(frozen=True)
class CognitiveEstimate:
    neuro: NeuroIndicators = field(default_factory=NeuroIndicators)
    blink: BlinkStats = field(default_factory=BlinkStats)
    cognitive_load: float = 0.5
    mental_fatigue: float = 0.3

    @property
    def features(self) -> np.ndarray:
        """Six fusion features: load, fatigue, openness, pupil, blink rate, fixation."""
        return np.array([
            self.cognitive_load,
            self.mental_fatigue,
            self.neuro.eye_openness,
            self.neuro.pupil_dilation,
            self.neuro.blink_rate,
            self.neuro.fixation_stability
        ], dtype=np.float32)


def blink_statistics(openness: np.ndarray, stability: np.ndarray, interval_s: float,
                     closed_threshold: float = 0.3, micro_sleep_frames: int = 3,
                     min_samples: int = 5) -> BlinkStats:
    """
    Blink statistics over an eye-openness series.

    Args:
        openness: Eye openness per tick, oldest first
        stability: Fixation stability per tick, same length
        interval_s: Time between ticks
        closed_threshold: Openness below which the eye counts as closed
        micro_sleep_frames: Closed run length reported as a micro-sleep
        min_samples: Minimum series length; shorter series give defaults

    Returns:
        BlinkStats; rates are blinks per minute, variability in seconds
    """
    if len(openness) < min_samples:
        return BlinkStats()

    closed = openness < closed_threshold
    onsets = [i for i in range(len(closed)) if closed[i] and (i == 0 or not closed[i - 1])]

    runs, current = [], 0
    for is_closed in closed:
        if is_closed:
            current += 1
        elif current:
            runs.append(current)
            current = 0
    if current:
        runs.append(current)

    duration_min = len(openness) * interval_s / 60.0
    rate = len(onsets) / duration_min if duration_min > 0 else 0.0
    intervals = np.diff(onsets) * interval_s
    variability = float(np.std(intervals)) if len(intervals) >= 2 else 0.0

    return BlinkStats(
        average_rate=float(rate),
        variability=variability,
        micro_sleep_events=float(sum(1 for r in runs if r >= micro_sleep_frames)),
        concentration_blinks=float(sum(1 for i in onsets if stability[i] > 0.7)),
        stress_indicators=clamp((rate - 25.0) / 15.0)
    )


def gaze_dynamics(rows: np.ndarray, min_step: float = 0.002, max_step: float = 0.03):
    """
    Microsaccade rate and fixation stability from recent gaze positions.

    Returns:
        (microsaccade_rate, fixation_stability), defaults (0.5, 0.8) when
        fewer than two gaze positions are known
    """
    if len(rows) < 2:
        return 0.5, 0.8
    points = rows[:, [GAZE_X, GAZE_Y]]
    steps = np.hypot(*np.diff(points, axis=0).T)
    microsaccade = float(np.mean((steps > min_step) & (steps < max_step)))
    stability = clamp(1.0 - 5.0 * float(np.mean(np.std(points[-10:], axis=0))))
    return microsaccade, stability


def neuro_indicators(m: EyeMeasurements, cognitive_load: float, mental_fatigue: float,
                     sustained: float, selective: float, divided: float,
                     flexibility: float, working_memory: float,
                     executive: float) -> NeuroIndicators:
    return NeuroIndicators(
        pupil_dilation=clamp(m.pupil_dilation),
        blink_rate=m.blink_rate,
        microsaccade_rate=clamp(m.microsaccade_rate),
        fixation_stability=clamp(m.fixation_stability),
        sustained_attention=clamp(sustained),
        selective_attention=clamp(selective),
        divided_attention=clamp(divided),
        attentional_flexibility=clamp(flexibility),
        working_memory_load=clamp(working_memory),
        executive_control=clamp(executive),
        mental_fatigue=clamp(mental_fatigue),
        eye_openness=clamp(m.eye_openness)
    )


class CognitiveLoadModule(InferenceModule):
    """Cognitive load estimation over the eye band and a 30x6 signal window."""

    name = 'cognitive_load'
    history_length = 30
    history_width = COGNITIVE_FEATURES

    def __init__(self, interval_s: float = 0.1, open_dark_fraction: float = 0.08,
                 closed_threshold: float = 0.3):
        self.interval_s = interval_s
        self.open_dark_fraction = open_dark_fraction
        self.closed_threshold = closed_threshold

    def neutral_metric(self) -> CognitiveEstimate:
        return CognitiveEstimate()

    def measure(self, inputs: ModuleInput) -> EyeMeasurements:
        """Direct eye measurements for the current tick plus its history."""
        eyes = inputs.region.eyes
        dark = dark_fraction(eyes, 60)
        openness = clamp(dark / self.open_dark_fraction)
        pupil = clamp(dark_fraction(eyes, 35) / dark) if dark > 0 else 0.5

        rows = valid_rows(inputs.history)
        microsaccade, fixation = gaze_dynamics(rows)

        series = np.append(rows[:, OPENNESS], openness) if len(rows) else np.array([openness])
        stability = np.append(rows[:, FIXATION], fixation) if len(rows) else np.array([fixation])
        blink = blink_statistics(series, stability, self.interval_s, self.closed_threshold)
        perclos = float(np.mean(series < self.closed_threshold))

        return EyeMeasurements(
            eye_openness=openness,
            pupil_dilation=pupil,
            microsaccade_rate=microsaccade,
            fixation_stability=fixation,
            perclos=perclos,
            blink=blink
        )


class CognitiveLoadEstimator(TorchModelMixin, CognitiveLoadModule):
    """CognitiveLoadNet inference on top of the direct eye measurements."""

    artifact_name = 'cognitive_load'

    def __init__(self, model: nn.Module, device, **kwargs):
        TorchModelMixin.__init__(self, model, device)
        CognitiveLoadModule.__init__(self, **kwargs)

    @classmethod
    def build_model(cls) -> nn.Module:
        return CognitiveLoadNet(history_length=cls.history_length)

    def infer(self, inputs: ModuleInput) -> ModuleResult:
        region = inputs.region
        if region is None:
            return self.result(self.neutral_metric(), 0.0)

        m = self.measure(inputs)
        b = m.blink
        scope = inputs.scope
        eyes = self.to_batch(scope, preprocess_region(region.eyes, (64, 32)))
        signals = self.to_batch(scope, inputs.history.astype(np.float32))
        blinks = self.to_batch(scope, np.array([
            m.blink_rate, clamp(b.variability), clamp(b.micro_sleep_events / 3.0),
            clamp(b.concentration_blinks / 5.0), b.stress_indicators
        ], dtype=np.float32))

        load, attention, working_memory, executive, fatigue = self.run_model(
            scope, eyes, signals, blinks
        )
        sustained, selective, divided, flexibility = attention[0].tolist()
        cognitive_load = clamp(float(load[0, 0]))
        mental_fatigue = clamp(float(fatigue[0, 0]))

        estimate = CognitiveEstimate(
            neuro=neuro_indicators(
                m, cognitive_load, mental_fatigue, sustained, selective, divided,
                flexibility, float(working_memory[0, 0]), float(executive[0, 0])
            ),
            blink=b,
            cognitive_load=cognitive_load,
            mental_fatigue=mental_fatigue
        )
        return self.result(estimate, region.confidence)


class EyeSignalCognitiveEstimator(CognitiveLoadModule):
    """
    Rule-based cognitive load from eye signals.

    Higher pupil dilation, fewer blinks and more microsaccades read as
    higher load; eyelid closure (PERCLOS), micro-sleeps and low openness
    read as fatigue.
    """

    is_fallback = True

    def infer(self, inputs: ModuleInput) -> ModuleResult:
        region = inputs.region
        if region is None:
            return self.result(self.neutral_metric(), 0.0)

        m = self.measure(inputs)
        cognitive_load = clamp(
            0.5 * m.pupil_dilation + 0.3 * (1.0 - m.blink_rate) + 0.2 * m.microsaccade_rate
        )
        mental_fatigue = clamp(
            0.5 * m.perclos
            + 0.3 * clamp(m.blink.micro_sleep_events / 3.0)
            + 0.2 * (1.0 - m.eye_openness)
        )

        estimate = CognitiveEstimate(
            neuro=neuro_indicators(
                m, cognitive_load, mental_fatigue,
                sustained=m.fixation_stability * (1.0 - 0.5 * mental_fatigue),
                selective=m.fixation_stability,
                divided=1.0 - 0.5 * cognitive_load,
                flexibility=0.5 + 0.5 * m.microsaccade_rate - 0.3 * mental_fatigue,
                working_memory=cognitive_load,
                executive=1.0 - 0.5 * mental_fatigue - 0.3 * abs(cognitive_load - 0.5)
            ),
            blink=m.blink,
            cognitive_load=cognitive_load,
            mental_fatigue=mental_fatigue
        )
        return self.result(estimate, 0.6 * region.confidence)
