"""
Cultural and Personal Calibration

Cultural profiles are a process-wide, read-only table keyed by a
cultural-background tag. A personal baseline is the field-wise mean of the
samples produced during the calibration window. ``apply_calibration`` is a
pure function of the fused scores, the emotional state and the active
Calibration.
"""

import logging
import threading
import time
import warnings
from dataclasses import dataclass, fields, is_dataclass, replace
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import yaml

from ..exceptions import CalibrationError, CalibrationInsufficientData
from ..modules.engagement import EngagementScores
from ..types import (
    Calibration, CulturalCalibrationProfile, CulturalContext, EmotionalState,
    EngagementSample, PersonalBaseline, clamp
)

logger = logging.getLogger(__name__)

DEFAULT_CULTURAL_TAG = 'general'

BUILTIN_PROFILES: Dict[str, CulturalCalibrationProfile] = {
    'maya': CulturalCalibrationProfile(
        eye_contact_norm=0.3,
        expressiveness_baseline=0.6,
        emotional_suppression_tendency=0.7,
        posture_formality=0.8,
        distraction_tolerance=0.4
    ),
    'nahuatl': CulturalCalibrationProfile(
        eye_contact_norm=0.4,
        expressiveness_baseline=0.7,
        emotional_suppression_tendency=0.6,
        posture_formality=0.7,
        distraction_tolerance=0.5
    ),
    'afrodescendiente': CulturalCalibrationProfile(
        eye_contact_norm=0.7,
        expressiveness_baseline=0.8,
        emotional_suppression_tendency=0.4,
        posture_formality=0.5,
        distraction_tolerance=0.6
    ),
    DEFAULT_CULTURAL_TAG: CulturalCalibrationProfile(
        eye_contact_norm=0.6,
        expressiveness_baseline=0.7,
        emotional_suppression_tendency=0.5,
        posture_formality=0.6,
        distraction_tolerance=0.5
    ),
}

# Backgrounds with a collectivist orientation
COLLECTIVIST_TAGS = ('maya', 'nahuatl')

_profiles: Optional[Mapping[str, CulturalCalibrationProfile]] = None
_profiles_lock = threading.Lock()


def load_cultural_profiles(profiles_path: Optional[str] = None) -> Mapping[str, CulturalCalibrationProfile]:
    """
    Build the cultural profile table, optionally extended from a YAML file.

    The file maps tags to the five profile fields; entries override the
    built-in profiles of the same tag. Unreadable files are logged and
    ignored.

    Args:
        profiles_path: Optional YAML file with additional profiles

    Returns:
        Read-only mapping of tag to CulturalCalibrationProfile
    """
    profiles = dict(BUILTIN_PROFILES)
    if profiles_path:
        path = Path(profiles_path)
        try:
            with open(path, 'r') as f:
                loaded = yaml.safe_load(f) or {}
            for tag, values in loaded.items():
                profiles[str(tag).lower()] = CulturalCalibrationProfile(
                    **{k: clamp(v) for k, v in values.items()}
                )
            logger.info(f"Loaded {len(loaded)} cultural profiles from {path}")
        except (OSError, yaml.YAMLError, AttributeError, TypeError) as e:
            logger.error(f"Could not load cultural profiles from {path}: {e}")
    return MappingProxyType(profiles)


def get_cultural_profiles(profiles_path: Optional[str] = None) -> Mapping[str, CulturalCalibrationProfile]:
    """Process-wide profile table, loaded on first use."""
    global _profiles
    with _profiles_lock:
        if _profiles is None:
            _profiles = load_cultural_profiles(profiles_path)
        return _profiles


def get_cultural_profile(cultural_tag: Optional[str],
                         profiles: Optional[Mapping[str, CulturalCalibrationProfile]] = None
                         ) -> Tuple[str, CulturalCalibrationProfile]:
    """
    Look up a profile, falling back to the general one.

    Returns:
        (resolved tag, profile)
    """
    profiles = profiles if profiles is not None else get_cultural_profiles()
    tag = (cultural_tag or DEFAULT_CULTURAL_TAG).strip().lower()
    if tag not in profiles:
        logger.info(f"No cultural profile for '{cultural_tag}', using '{DEFAULT_CULTURAL_TAG}'")
        tag = DEFAULT_CULTURAL_TAG
    return tag, profiles[tag]


def cultural_context(cultural_tag: str, profile: CulturalCalibrationProfile) -> CulturalContext:
    """Describe the learner's cultural engagement context from a profile."""
    if profile.eye_contact_norm > 0.6:
        eye_contact = 'high'
    elif profile.eye_contact_norm > 0.4:
        eye_contact = 'moderate'
    else:
        eye_contact = 'low'

    return CulturalContext(
        cultural_background=cultural_tag,
        nonverbal_style='direct' if profile.expressiveness_baseline > 0.7 else 'indirect',
        eye_contact_norm=eye_contact,
        expressiveness=profile.expressiveness_baseline,
        collectivism=0.2 if cultural_tag in COLLECTIVIST_TAGS else 0.7,
        power_distance=profile.posture_formality,
        uncertainty_avoidance=profile.distraction_tolerance,
        bias_adjustment=1.0 - profile.emotional_suppression_tendency
    )


@dataclass(frozen=True)
class CalibrationCoefficients:
    """Pivots and weights of the calibration adjustment."""
    engagement_pivot: float = 0.7
    attention_pivot: float = 0.6
    suppression_pivot: float = 0.5
    tolerance_pivot: float = 0.5
    personal_weight: float = 0.5
    reference_engagement: float = 0.7
    reference_attention: float = 0.8

    @classmethod
    def from_config(cls, config: Optional[Dict[str, Any]]) -> 'CalibrationCoefficients':
        known = {f.name for f in fields(cls)}
        return cls(**{k: float(v) for k, v in (config or {}).items() if k in known})


def average(values: Sequence[float], default: float = 0.0) -> float:
    """Mean of ``values``; ``default`` for an empty sequence."""
    if not values:
        return default
    return float(np.mean(values))


def _mean_of(values: List[Any]) -> Any:
    """Field-wise mean; categorical and collection values keep the first one."""
    first = values[0]
    if is_dataclass(first):
        return replace(first, **{
            f.name: _mean_of([getattr(v, f.name) for v in values])
            for f in fields(first) if f.init
        })
    if isinstance(first, (bool, Enum, str)) or first is None:
        return first
    if isinstance(first, int):
        return int(round(average(values)))
    if isinstance(first, float):
        return average(values)
    return first


def compute_personal_baseline(samples: Sequence[EngagementSample],
                              computed_at: Optional[float] = None) -> Optional[PersonalBaseline]:
    """
    Average a set of calibration samples.

    Args:
        samples: Samples collected while calibrating
        computed_at: Timestamp of the computation (defaults to now)

    Returns:
        PersonalBaseline, or None for an empty set
    """
    if not samples:
        return None
    return PersonalBaseline(
        sample=_mean_of(list(samples)),
        sample_count=len(samples),
        computed_at=time.time() if computed_at is None else computed_at
    )


def apply_calibration(scores: EngagementScores, emotional_state: EmotionalState,
                      calibration: Calibration,
                      coefficients: Optional[CalibrationCoefficients] = None
                      ) -> Tuple[EngagementScores, EmotionalState]:
    """
    Adjust fused scores for the personal baseline and cultural profile.

    The personal offset moves engagement and attention towards reference
    values by ``personal_weight`` times the baseline's distance from them.
    The cultural step then scales engagement by expressiveness, attention by
    the eye-contact norm, emotion intensity by suppression tendency and
    distraction probability by distraction tolerance, each relative to its
    pivot. Every result is clamped to its range.

    Args:
        scores: Fused scores of the tick
        emotional_state: Emotional state of the tick
        calibration: Active calibration of the session
        coefficients: Adjustment coefficients (defaults if None)

    Returns:
        (adjusted scores, adjusted emotional state)
    """
    c = coefficients or CalibrationCoefficients()
    profile = calibration.profile

    engagement = scores.overall_engagement
    attention = scores.attention_level
    if calibration.baseline is not None:
        baseline = calibration.baseline.sample
        engagement += c.personal_weight * (c.reference_engagement - baseline.overall_engagement)
        attention += c.personal_weight * (c.reference_attention - baseline.attention_level)

    engagement *= 1.0 + profile.expressiveness_baseline - c.engagement_pivot
    attention *= 1.0 + profile.eye_contact_norm - c.attention_pivot
    distraction = scores.distraction_probability * (
        1.0 + c.tolerance_pivot - profile.distraction_tolerance
    )
    intensity = emotional_state.intensity * (
        1.0 + profile.emotional_suppression_tendency - c.suppression_pivot
    )

    adjusted = EngagementScores(
        overall_engagement=clamp(engagement),
        attention_level=clamp(attention),
        cognitive_load=clamp(scores.cognitive_load),
        fatigue_level=clamp(scores.fatigue_level),
        distraction_probability=clamp(distraction)
    )
    state = replace(emotional_state, intensity=clamp(intensity), culturally_adjusted=True)
    return adjusted, state


class CalibrationState(str, Enum):
    UNINITIALIZED = 'uninitialized'
    CALIBRATING = 'calibrating'
    CALIBRATED = 'calibrated'


class CalibrationSession:
    """
    Per-session calibration state machine.

    UNINITIALIZED -> begin() -> CALIBRATING -> complete() -> CALIBRATED.
    The resulting Calibration is fixed for the rest of the session.
    """

    def __init__(self, duration_ms: int = 30000,
                 profiles: Optional[Mapping[str, CulturalCalibrationProfile]] = None):
        self.duration_ms = duration_ms
        self.profiles = profiles
        self.state = CalibrationState.UNINITIALIZED
        self.started_at: Optional[float] = None
        self.cultural_tag: Optional[str] = None
        self.profile: Optional[CulturalCalibrationProfile] = None
        self._samples: List[EngagementSample] = []
        self._calibration: Optional[Calibration] = None

    def begin(self, cultural_tag: Optional[str], now: Optional[float] = None):
        """
        Start calibrating with the profile for ``cultural_tag``.

        Raises:
            CalibrationError: If calibration was already started
        """
        if self.state != CalibrationState.UNINITIALIZED:
            raise CalibrationError(
                f"Calibration already {self.state.value}; start a new session to recalibrate"
            )
        self.cultural_tag, self.profile = get_cultural_profile(cultural_tag, self.profiles)
        self.started_at = time.monotonic() if now is None else now
        self.state = CalibrationState.CALIBRATING
        logger.info(f"Calibration started for '{self.cultural_tag}' ({self.duration_ms} ms)")

    @property
    def calibrating(self) -> bool:
        return self.state == CalibrationState.CALIBRATING

    @property
    def samples_collected(self) -> int:
        return len(self._samples)

    def add_sample(self, sample: EngagementSample):
        if not self.calibrating:
            raise CalibrationError("Samples can only be added while calibrating")
        self._samples.append(sample)

    def is_due(self, now: Optional[float] = None) -> bool:
        """Whether the calibration window has elapsed."""
        if not self.calibrating:
            return False
        now = time.monotonic() if now is None else now
        return (now - self.started_at) * 1000.0 >= self.duration_ms

    def complete(self, computed_at: Optional[float] = None) -> Calibration:
        """
        Compute the personal baseline and fix the session calibration.

        With no collected samples the calibration is cultural-only and a
        CalibrationInsufficientData warning is issued.

        Raises:
            CalibrationError: If not currently calibrating
        """
        if not self.calibrating:
            raise CalibrationError(f"Cannot complete calibration in state {self.state.value}")

        baseline = compute_personal_baseline(self._samples, computed_at)
        if baseline is None:
            message = "No samples collected during calibration; using cultural profile only"
            logger.warning(message)
            warnings.warn(message, CalibrationInsufficientData)

        self._calibration = Calibration(
            cultural_tag=self.cultural_tag,
            profile=self.profile,
            baseline=baseline,
            insufficient_data=baseline is None
        )
        self._samples = []
        self.state = CalibrationState.CALIBRATED
        logger.info(
            f"Calibration complete for '{self.cultural_tag}' "
            f"({baseline.sample_count if baseline else 0} samples)"
        )
        return self._calibration

    @property
    def calibration(self) -> Optional[Calibration]:
        """The fixed calibration once CALIBRATED, else None."""
        return self._calibration

