"""
Per-tick Engagement Analysis

Runs one frame through the inference suite: face detection first, then the
five modality modules in parallel, fusion, calibration and distraction
detection. Produces the EngagementSample of the tick; publishing and event
evaluation are left to the session.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

import numpy as np

from ..modules.base import ModuleInput, ModuleResult
from ..modules.resources import ResourceTracker
from ..modules.suite import InferenceSuite
from ..real_time.frame_source import Frame
from ..types import (
    Calibration, CulturalContext, EngagementSample, GazePoint, GazeType, clamp
)
from .calibration import CalibrationCoefficients, apply_calibration
from .events import detect_distraction_events
from .feature_store import TemporalFeatureStore
from .fusion_engine import FusionEngine

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TickAnalysis:
    """Everything one tick produced."""
    sample: EngagementSample
    distribution: np.ndarray  # emotion distribution (13,)
    results: Dict[str, ModuleResult]


def next_gaze_point(result: ModuleResult, timestamp: float,
                    previous: Optional[GazePoint]) -> Optional[GazePoint]:
    """
    Gaze point of a tick, or None when the tick has no usable gaze.

    Blinks and zero-confidence estimates add no point. A fixation extends the
    fixation duration (ms) of the previous point when that point was also part
    of a fixation.
    """
    estimate = result.metric
    if result.confidence <= 0.0 or estimate.gaze_type == GazeType.BLINK:
        return None

    timestamp_ms = int(round(timestamp * 1000))
    fixation_duration = None
    saccade_speed = None
    if estimate.gaze_type == GazeType.FIXATION:
        fixation_duration = 0.0
        if previous is not None and previous.fixation_duration is not None:
            fixation_duration = previous.fixation_duration + max(0, timestamp_ms - previous.timestamp_ms)
    elif estimate.gaze_type == GazeType.SACCADE:
        saccade_speed = estimate.saccade_speed

    return GazePoint(
        x=clamp(estimate.x),
        y=clamp(estimate.y),
        timestamp_ms=timestamp_ms,
        confidence=clamp(result.confidence),
        fixation_duration=fixation_duration,
        saccade_speed=saccade_speed
    )


class EngagementAnalyzer:
    """
    Produces one EngagementSample per frame.

    The analyzer holds no per-session state of its own: windows come from the
    feature store, calibration is passed in per call. All buffers created
    during ``analyze`` are registered with a scope of ``tracker`` and are
    released before it returns, whether it succeeds or raises.
    """

    def __init__(self, suite: InferenceSuite, store: TemporalFeatureStore,
                 tracker: Optional[ResourceTracker] = None, max_workers: int = 5,
                 coefficients: Optional[CalibrationCoefficients] = None):
        """
        Initialize the analyzer.

        Args:
            suite: Loaded inference modules
            store: Session feature store (windows and gaze trail)
            tracker: Resource tracker for per-tick buffers
            max_workers: Threads used for the parallel modules
            coefficients: Calibration adjustment coefficients
        """
        self.suite = suite
        self.store = store
        self.tracker = tracker or ResourceTracker()
        self.fusion = FusionEngine(suite.engagement)
        self.coefficients = coefficients or CalibrationCoefficients()
        self.executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix='inference')

        # Statistics
        self.frames_analyzed = 0
        self.inference_errors = 0
        self.faces_missed = 0
        self.last_processing_time = 0.0

    def run_modules(self, frame: Frame, scope) -> Tuple[Dict[str, ModuleResult], Dict[str, np.ndarray]]:
        """
        Face detection, then every modality module on the detected region.

        Returns:
            (module results keyed by module name, windows the modules read)
        """
        image = scope.track(frame.image)
        face = self.suite.face(ModuleInput(
            frame=image,
            region=None,
            history=np.zeros((0, 0), dtype=np.float32),
            scope=scope,
            timestamp=frame.timestamp
        ))
        region = face.metric
        if region is None:
            self.faces_missed += 1

        windows = self.store.windows()
        futures = {}
        for module in self.suite.parallel_modules:
            futures[module.name] = self.executor.submit(module, ModuleInput(
                frame=image,
                region=region,
                history=windows[module.name],
                scope=scope,
                timestamp=frame.timestamp
            ))

        results = {'face_detector': face}
        for name, future in futures.items():
            results[name] = future.result()
        return results, windows

    def analyze(self, frame: Frame, subject_id: str, sequence: int,
                cultural_context: CulturalContext,
                calibration: Optional[Calibration] = None) -> TickAnalysis:
        """
        Analyze a single frame.

        Args:
            frame: Frame of the tick
            subject_id: Learner identifier
            sequence: Sequence number of the sample within the session
            cultural_context: Cultural context stamped on the sample
            calibration: Active calibration; raw scores are kept if None

        Returns:
            TickAnalysis with the sample of the tick
        """
        start_time = time.time()
        timestamp = frame.timestamp

        with self.tracker.scope(f'tick-{sequence}') as scope:
            results, windows = self.run_modules(frame, scope)
            fused = self.fusion.fuse(results, windows, scope, timestamp)
            results['engagement'] = fused

        errors = [r.error for r in results.values() if r.error is not None]
        self.inference_errors += len(errors)

        emotion = results['emotion'].metric
        gaze = results['gaze']
        posture = results['posture'].metric
        micro = results['micro_expression'].metric
        cognitive = results['cognitive_load'].metric

        scores, emotional_state = fused.metric, emotion.state
        if calibration is not None:
            scores, emotional_state = apply_calibration(
                scores, emotional_state, calibration, self.coefficients
            )

        # A failed gaze module says nothing about where the learner looks
        gaze_on_screen = gaze.metric.on_screen or gaze.error is not None

        trail = self.store.gaze_trail()
        point = next_gaze_point(gaze, timestamp, trail[-1] if trail else None)
        if point is not None:
            trail = self.store.add_gaze_point(point)

        sample = EngagementSample(
            subject_id=subject_id,
            timestamp=timestamp,
            sequence=sequence,
            overall_engagement=scores.overall_engagement,
            attention_level=scores.attention_level,
            cognitive_load=scores.cognitive_load,
            fatigue_level=scores.fatigue_level,
            distraction_probability=scores.distraction_probability,
            emotional_state=emotional_state,
            posture=posture,
            blink_stats=cognitive.blink,
            neuro_indicators=cognitive.neuro,
            distraction_events=detect_distraction_events(gaze_on_screen, posture, timestamp),
            gaze_trail=trail,
            micro_expressions=tuple(micro.expressions),
            cultural_context=cultural_context
        )

        self.frames_analyzed += 1
        self.last_processing_time = time.time() - start_time
        return TickAnalysis(sample=sample, distribution=emotion.distribution, results=results)

    def get_statistics(self) -> Dict[str, float]:
        return {
            'frames_analyzed': self.frames_analyzed,
            'inference_errors': self.inference_errors,
            'faces_missed': self.faces_missed,
            'last_processing_time': self.last_processing_time
        }

    def close(self):
        self.executor.shutdown(wait=True)
