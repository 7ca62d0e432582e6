"""
Scripted stand-ins for frame sources and inference modules.
"""

import threading
import time
from typing import Any, List, Optional, Sequence

import numpy as np

from learner_engagement.exceptions import CaptureError
from learner_engagement.modules.base import FaceRegion, InferenceModule, ModuleInput, ModuleResult
from learner_engagement.modules.cognitive_load import CognitiveEstimate
from learner_engagement.modules.emotion.emotion_classifier import EmotionEstimate, build_estimate
from learner_engagement.modules.engagement import GatedFusionEstimator
from learner_engagement.modules.gaze import GazeEstimate
from learner_engagement.modules.micro_expression import MicroExpressionEstimate
from learner_engagement.modules.suite import InferenceSuite
from learner_engagement.real_time.frame_source import Frame, FrameSource
from learner_engagement.types import (
    NUM_EMOTIONS, EmotionalState, EmotionType, EngagementSample, GazePoint, GazeType,
    PostureMetrics, emotion_index
)


def synthetic_face_image(width: int = 640, height: int = 480) -> np.ndarray:
    """Grey frame with a bright face box, dark eyes and a dark mouth."""
    image = np.full((height, width, 3), 90, dtype=np.uint8)
    image[120:360, 220:420] = 200
    image[185:205, 260:290] = 20
    image[185:205, 350:380] = 20
    image[300:315, 280:360] = 40
    return image


def synthetic_region(confidence: float = 0.9) -> FaceRegion:
    image = synthetic_face_image()
    face = image[120:360, 220:420]
    return FaceRegion(
        bbox=(220, 120, 420, 360),
        face=face,
        eyes=face[48:132, :],
        mouth=face[148:228, :],
        frame_size=(640, 480),
        confidence=confidence
    )


def make_sample(sequence: int = 1, subject_id: str = 'learner', timestamp: float = 1000.0,
                gaze_trail: Sequence[GazePoint] = (), **scores) -> EngagementSample:
    values = dict(
        overall_engagement=0.6,
        attention_level=0.6,
        cognitive_load=0.5,
        fatigue_level=0.3,
        distraction_probability=0.4
    )
    values.update(scores)
    return EngagementSample(
        subject_id=subject_id,
        timestamp=timestamp,
        sequence=sequence,
        gaze_trail=tuple(gaze_trail),
        **values
    )


class ScriptedFrameSource(FrameSource):
    """Serves a fixed list of frames, then reports closed."""

    def __init__(self, frames: Optional[List[Optional[np.ndarray]]] = None, count: int = 0,
                 fail_open: bool = False, endless: bool = False, delay: float = 0.0):
        """
        Args:
            frames: Images to serve in order; None entries are served as misses
            count: Number of synthetic face frames when ``frames`` is None
            fail_open: Make ``open`` raise CaptureError
            endless: Keep serving the synthetic frame forever
            delay: Seconds ``read`` sleeps before returning
        """
        self.frames = list(frames) if frames is not None else [synthetic_face_image()] * count
        self.fail_open = fail_open
        self.endless = endless
        self.delay = delay
        self.opened = False
        self.release_count = 0
        self.reads = 0
        self._lock = threading.Lock()

    def open(self):
        if self.fail_open:
            raise CaptureError("scripted open failure")
        self.opened = True

    def read(self, timeout: float = 0.05) -> Optional[Frame]:
        if self.delay:
            time.sleep(self.delay)
        with self._lock:
            self.reads += 1
            if not self.opened:
                return None
            if self.endless:
                return Frame(synthetic_face_image(), time.time())
            if not self.frames:
                return None
            image = self.frames.pop(0)
        if image is None:
            return None
        return Frame(image, time.time())

    @property
    def closed(self) -> bool:
        with self._lock:
            return not self.opened or (not self.endless and not self.frames)

    def release(self):
        with self._lock:
            self.opened = False
            self.release_count += 1


class ScriptedModule(InferenceModule):
    """Returns scripted (metric, confidence) pairs, repeating the last one."""

    def __init__(self, name: str, outputs: Sequence[Any], neutral: Any = None,
                 fail_on: Sequence[int] = ()):
        self.name = name
        self.outputs = list(outputs)
        self.neutral = neutral
        self.fail_on = set(fail_on)
        self.calls = 0
        self.inputs: List[ModuleInput] = []

    def infer(self, inputs: ModuleInput) -> ModuleResult:
        index = self.calls
        self.calls += 1
        self.inputs.append(inputs)
        if index in self.fail_on:
            raise RuntimeError(f"scripted failure in {self.name}")
        inputs.scope.tensor(np.zeros(4, dtype=np.float32))
        metric, confidence = self.outputs[min(index, len(self.outputs) - 1)]
        return self.result(metric, confidence)

    def neutral_metric(self) -> Any:
        return self.neutral


def emotion_output(emotion: EmotionType = EmotionType.CONCENTRATED, peak: float = 0.7):
    distribution = np.full(NUM_EMOTIONS, (1.0 - peak) / (NUM_EMOTIONS - 1), dtype=np.float32)
    distribution[emotion_index(emotion)] = peak
    return build_estimate(distribution, valence=0.2, arousal=0.6, intensity=0.6, confidence=peak)


def scripted_suite(face_confidence: float = 0.9, gaze_on_screen: bool = True,
                   fail_emotion_on: Sequence[int] = (), fail_gaze_on: Sequence[int] = ()) -> InferenceSuite:
    """Suite of scripted modules with the real fallback fusion."""
    region = synthetic_region(face_confidence)
    neutral_emotion = EmotionEstimate(EmotionalState(), np.full(NUM_EMOTIONS, 1.0 / NUM_EMOTIONS))
    gaze = GazeEstimate(
        x=0.4, y=0.55, gaze_type=GazeType.FIXATION, on_screen=gaze_on_screen,
        head_pose=(5.0, -3.0, 0.0)
    )
    neutral_gaze = GazeEstimate(x=0.5, y=0.5, gaze_type=GazeType.FIXATION, on_screen=False)
    return InferenceSuite(
        face=ScriptedModule('face_detector', [(region, face_confidence)]),
        emotion=ScriptedModule(
            'emotion', [(emotion_output(), 0.6)], neutral=neutral_emotion, fail_on=fail_emotion_on
        ),
        gaze=ScriptedModule('gaze', [(gaze, 0.7)], neutral=neutral_gaze, fail_on=fail_gaze_on),
        posture=ScriptedModule('posture', [(PostureMetrics(), 0.8)], neutral=PostureMetrics()),
        micro_expression=ScriptedModule(
            'micro_expression', [(MicroExpressionEstimate(), 0.5)], neutral=MicroExpressionEstimate()
        ),
        cognitive_load=ScriptedModule(
            'cognitive_load', [(CognitiveEstimate(), 0.6)], neutral=CognitiveEstimate()
        ),
        engagement=GatedFusionEstimator()
    )
