"""
Engagement Estimation Module

Fuses the per-modality outputs of a tick into overall engagement, attention,
cognitive load, fatigue and distraction probability.
"""

from .engagement_estimator import (
    EngagementEstimator, EngagementModule, EngagementScores, GatedFusionEstimator
)
from .models import EngagementNet

__all__ = [
    'EngagementEstimator', 'EngagementModule', 'EngagementScores',
    'GatedFusionEstimator', 'EngagementNet'
]
