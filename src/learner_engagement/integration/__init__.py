"""
Integration Module

Combines the inference modules into per-tick engagement samples: temporal
feature store, fusion, calibration, event detection and heatmaps.
"""

from .calibration import (
    CalibrationCoefficients, CalibrationSession, CalibrationState, apply_calibration,
    compute_personal_baseline, get_cultural_profile, get_cultural_profiles
)
from .engagement_analyzer import EngagementAnalyzer, TickAnalysis
from .events import CriticalEventDetector, detect_distraction_events
from .feature_store import TemporalFeatureStore
from .fusion_engine import FusionEngine
from .heatmap import AttentionHeatmapGenerator

__all__ = [
    'CalibrationCoefficients', 'CalibrationSession', 'CalibrationState', 'apply_calibration',
    'compute_personal_baseline', 'get_cultural_profile', 'get_cultural_profiles',
    'EngagementAnalyzer', 'TickAnalysis', 'CriticalEventDetector', 'detect_distraction_events',
    'TemporalFeatureStore', 'FusionEngine', 'AttentionHeatmapGenerator'
]
