"""
Critical and Distraction Event Detection

Critical events are threshold rules over published samples. Distraction
events are detected per tick from the gaze and posture results and travel
inside the sample.
"""

import logging
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Dict, List, Tuple

from ..types import (
    CriticalEvent, CriticalEventKind, DistractionEvent, DistractionKind, EngagementSample,
    PostureMetrics, Severity
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CriticalRule:
    kind: CriticalEventKind
    severity: Severity
    recommendation: str


HIGH_FATIGUE_RULE = CriticalRule(
    CriticalEventKind.HIGH_FATIGUE,
    Severity.HIGH,
    "Take an immediate rest break before continuing"
)
LOW_ATTENTION_RULE = CriticalRule(
    CriticalEventKind.LOW_ATTENTION,
    Severity.MEDIUM,
    "Adjust the content or its presentation to recover attention"
)
COGNITIVE_OVERLOAD_RULE = CriticalRule(
    CriticalEventKind.COGNITIVE_OVERLOAD,
    Severity.HIGH,
    "Reduce task complexity or split the material into smaller steps"
)


class CriticalEventDetector:
    """
    Threshold rules evaluated after each published sample.

    All comparisons are strict: fatigue must exceed ``high_fatigue``,
    attention must fall below ``low_attention`` and cognitive load must
    exceed ``cognitive_overload``. A value equal to its threshold does not
    fire. Each (sample, rule) pair fires at most once.
    """

    def __init__(self, high_fatigue: float = 0.8, low_attention: float = 0.3,
                 cognitive_overload: float = 0.9, memory: int = 256):
        """
        Initialize the detector.

        Args:
            high_fatigue: Fatigue level above which HighFatigue fires
            low_attention: Attention level below which LowAttention fires
            cognitive_overload: Cognitive load above which CognitiveOverload fires
            memory: Number of recent (sample, rule) keys kept for de-duplication
        """
        self.high_fatigue = high_fatigue
        self.low_attention = low_attention
        self.cognitive_overload = cognitive_overload
        self.memory = memory
        self._emitted: "OrderedDict[Tuple[str, int, CriticalEventKind], None]" = OrderedDict()

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> 'CriticalEventDetector':
        events = config.get('events', {})
        return cls(
            high_fatigue=events.get('high_fatigue', 0.8),
            low_attention=events.get('low_attention', 0.3),
            cognitive_overload=events.get('cognitive_overload', 0.9)
        )

    def matching_rules(self, sample: EngagementSample) -> List[CriticalRule]:
        rules = []
        if sample.fatigue_level > self.high_fatigue:
            rules.append(HIGH_FATIGUE_RULE)
        if sample.attention_level < self.low_attention:
            rules.append(LOW_ATTENTION_RULE)
        if sample.cognitive_load > self.cognitive_overload:
            rules.append(COGNITIVE_OVERLOAD_RULE)
        return rules

    def evaluate(self, sample: EngagementSample) -> List[CriticalEvent]:
        """
        Evaluate every rule against a sample.

        Returns:
            One CriticalEvent per rule that fires and has not fired for this
            sample before
        """
        events = []
        for rule in self.matching_rules(sample):
            key = (sample.subject_id, sample.sequence, rule.kind)
            if key in self._emitted:
                continue
            self._emitted[key] = None
            if len(self._emitted) > self.memory:
                self._emitted.popitem(last=False)

            events.append(CriticalEvent(
                kind=rule.kind,
                severity=rule.severity,
                recommendation=rule.recommendation,
                sample=sample
            ))
            logger.warning(
                f"{rule.kind.value} for '{sample.subject_id}' at sample {sample.sequence}: "
                f"{rule.recommendation}"
            )
        return events

    def reset(self):
        self._emitted.clear()


def detect_distraction_events(gaze_on_screen: bool, posture: PostureMetrics,
                              timestamp: float, posture_change_limit: int = 2
                              ) -> Tuple[DistractionEvent, ...]:
    """
    Distraction events of one tick.

    Args:
        gaze_on_screen: Whether the gaze estimate of the tick is on screen
        posture: Posture metrics of the tick
        timestamp: Tick timestamp
        posture_change_limit: Posture changes in the window above which a
            posture_change event is raised

    Returns:
        Tuple of DistractionEvent (possibly empty)
    """
    events = []
    if not gaze_on_screen:
        events.append(DistractionEvent(
            timestamp=timestamp,
            kind=DistractionKind.GAZE_AWAY,
            duration_ms=1000,
            severity=Severity.MEDIUM,
            impact=0.6,
            recovery_ms=500
        ))
    if posture.posture_changes > posture_change_limit:
        events.append(DistractionEvent(
            timestamp=timestamp,
            kind=DistractionKind.POSTURE_CHANGE,
            duration_ms=2000,
            severity=Severity.LOW,
            impact=0.3,
            recovery_ms=1000
        ))
    return tuple(events)
