"""
Data model for engagement tracking.

All containers published outside the scheduler are frozen dataclasses with
tuple-valued sequences, so subscribers always receive read-only snapshots.
"""

from dataclasses import dataclass, field, fields, is_dataclass
from enum import Enum
from typing import Any, Dict, Optional, Tuple

import numpy as np


class EmotionType(str, Enum):
    NEUTRAL = 'neutral'
    HAPPY = 'happy'
    SAD = 'sad'
    ANGRY = 'angry'
    FEARFUL = 'fearful'
    DISGUSTED = 'disgusted'
    SURPRISED = 'surprised'
    CONFUSED = 'confused'
    FRUSTRATED = 'frustrated'
    CONCENTRATED = 'concentrated'
    INTERESTED = 'interested'
    BORED = 'bored'
    EXCITED = 'excited'


# Model output order: 7 basic emotions followed by 6 complex ones
EMOTION_LABELS: Tuple[EmotionType, ...] = tuple(EmotionType)
NUM_EMOTIONS = len(EMOTION_LABELS)


def emotion_index(emotion: EmotionType) -> int:
    """Position of an emotion in the model output vector."""
    return EMOTION_LABELS.index(EmotionType(emotion))


class GazeType(str, Enum):
    FIXATION = 'fixation'
    SACCADE = 'saccade'
    BLINK = 'blink'


class DistractionKind(str, Enum):
    GAZE_AWAY = 'gaze_away'
    POSTURE_CHANGE = 'posture_change'
    MOVEMENT = 'movement'
    DEVICE_INTERACTION = 'device_interaction'
    EXTERNAL_STIMULUS = 'external_stimulus'


class Severity(str, Enum):
    LOW = 'low'
    MEDIUM = 'medium'
    HIGH = 'high'


class LeaningDirection(str, Enum):
    FORWARD = 'forward'
    BACKWARD = 'backward'
    LEFT = 'left'
    RIGHT = 'right'
    NEUTRAL = 'neutral'


LEANING_LABELS: Tuple[LeaningDirection, ...] = tuple(LeaningDirection)


class FacialRegion(str, Enum):
    EYES = 'eyes'
    MOUTH = 'mouth'
    BROWS = 'brows'
    FULL_FACE = 'full_face'


class CriticalEventKind(str, Enum):
    HIGH_FATIGUE = 'HighFatigue'
    LOW_ATTENTION = 'LowAttention'
    COGNITIVE_OVERLOAD = 'CognitiveOverload'


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    """Clamp a scalar into [low, high]; NaN collapses to low."""
    value = float(value)
    if value != value:
        return low
    return min(high, max(low, value))


@dataclass(frozen=True)
class EmotionalState:
    primary_emotion: EmotionType = EmotionType.NEUTRAL
    intensity: float = 0.5
    valence: float = 0.0
    arousal: float = 0.5
    confidence: float = 0.0
    culturally_adjusted: bool = False
    secondary_emotion: Optional[EmotionType] = None


@dataclass(frozen=True)
class GazePoint:
    x: float
    y: float
    timestamp_ms: int
    confidence: float
    fixation_duration: Optional[float] = None
    saccade_speed: Optional[float] = None


@dataclass(frozen=True)
class DistractionEvent:
    timestamp: float
    kind: DistractionKind
    duration_ms: int
    severity: Severity
    impact: float
    recovery_ms: int


@dataclass(frozen=True)
class HeadPose:
    pitch: float = 0.0
    yaw: float = 0.0
    roll: float = 0.0
    stability: float = 1.0


@dataclass(frozen=True)
class PostureMetrics:
    head_pose: HeadPose = field(default_factory=HeadPose)
    shoulder_alignment: float = 0.8
    spinal_posture: float = 0.8
    leaning: LeaningDirection = LeaningDirection.NEUTRAL
    ergonomic_score: float = 0.8
    posture_changes: int = 0


@dataclass(frozen=True)
class MicroExpression:
    kind: EmotionType
    intensity: float
    duration_ms: int
    timestamp: float
    confidence: float
    facial_region: FacialRegion = FacialRegion.FULL_FACE
    suppressed_emotion: Optional[EmotionType] = None


@dataclass(frozen=True)
class BlinkStats:
    average_rate: float = 15.0  # blinks per minute
    variability: float = 2.0
    micro_sleep_events: float = 0.0
    concentration_blinks: float = 0.0
    stress_indicators: float = 0.0


@dataclass(frozen=True)
class NeuroIndicators:
    """Neurophysiological proxies, every field in [0, 1]."""
    pupil_dilation: float = 0.5
    blink_rate: float = 0.5
    microsaccade_rate: float = 0.5
    fixation_stability: float = 0.8
    sustained_attention: float = 0.7
    selective_attention: float = 0.8
    divided_attention: float = 0.6
    attentional_flexibility: float = 0.7
    working_memory_load: float = 0.5
    executive_control: float = 0.7
    mental_fatigue: float = 0.3
    eye_openness: float = 1.0


@dataclass(frozen=True)
class CulturalCalibrationProfile:
    eye_contact_norm: float
    expressiveness_baseline: float
    emotional_suppression_tendency: float
    posture_formality: float
    distraction_tolerance: float


@dataclass(frozen=True)
class CulturalContext:
    cultural_background: str = 'general'
    nonverbal_style: str = 'indirect'
    eye_contact_norm: str = 'moderate'
    expressiveness: float = 0.7
    collectivism: float = 0.7
    power_distance: float = 0.6
    uncertainty_avoidance: float = 0.5
    bias_adjustment: float = 0.5


@dataclass(frozen=True)
class EngagementSample:
    """One fused, calibrated observation of a learner."""
    subject_id: str
    timestamp: float
    sequence: int
    overall_engagement: float
    attention_level: float
    cognitive_load: float
    fatigue_level: float
    distraction_probability: float
    emotional_state: EmotionalState = field(default_factory=EmotionalState)
    posture: PostureMetrics = field(default_factory=PostureMetrics)
    blink_stats: BlinkStats = field(default_factory=BlinkStats)
    neuro_indicators: NeuroIndicators = field(default_factory=NeuroIndicators)
    distraction_events: Tuple[DistractionEvent, ...] = ()
    gaze_trail: Tuple[GazePoint, ...] = ()
    micro_expressions: Tuple[MicroExpression, ...] = ()
    cultural_context: CulturalContext = field(default_factory=CulturalContext)

    def to_dict(self) -> Dict[str, Any]:
        return _to_plain(self)


@dataclass(frozen=True)
class PersonalBaseline:
    sample: EngagementSample
    sample_count: int
    computed_at: float


@dataclass(frozen=True)
class Calibration:
    """Active calibration of a session; fixed once computed."""
    cultural_tag: str
    profile: CulturalCalibrationProfile
    baseline: Optional[PersonalBaseline] = None
    insufficient_data: bool = False


@dataclass(frozen=True)
class CriticalEvent:
    kind: CriticalEventKind
    severity: Severity
    recommendation: str
    sample: EngagementSample


@dataclass(frozen=True)
class AttentionHeatmap:
    width: int
    height: int
    density: np.ndarray
    window_start_ms: int
    window_end_ms: int
    point_count: int
    generated_at: float

    @property
    def duration_ms(self) -> int:
        return self.window_end_ms - self.window_start_ms


def _to_plain(value: Any) -> Any:
    if is_dataclass(value):
        return {f.name: _to_plain(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (list, tuple)):
        return [_to_plain(v) for v in value]
    if isinstance(value, np.ndarray):
        return value.tolist()
    return value
