"""
Learner Engagement Tracking

Real-time inference of a learner's engagement, attention, cognitive load and
fatigue from a camera feed, with cultural and personal calibration, critical
event alerts and attention heatmaps.
"""

from .config import get_default_config, load_config, setup_logging
from .exceptions import (
    CalibrationError, CalibrationInsufficientData, CaptureError, EngagementError,
    InferenceError, InitializationError, ModelLoadError, SessionClosedError
)
from .real_time import CameraFrameSource, Frame, FrameSource
from .session import EngagementService, SessionState, TrackingSession, create_engagement_service
from .types import AttentionHeatmap, CriticalEvent, CriticalEventKind, EngagementSample

__version__ = '1.0.0'

__all__ = [
    'get_default_config', 'load_config', 'setup_logging',
    'CalibrationError', 'CalibrationInsufficientData', 'CaptureError', 'EngagementError',
    'InferenceError', 'InitializationError', 'ModelLoadError', 'SessionClosedError',
    'CameraFrameSource', 'Frame', 'FrameSource',
    'EngagementService', 'SessionState', 'TrackingSession', 'create_engagement_service',
    'AttentionHeatmap', 'CriticalEvent', 'CriticalEventKind', 'EngagementSample'
]
