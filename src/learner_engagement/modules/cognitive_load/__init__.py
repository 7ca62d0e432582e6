"""
Cognitive Load Module

Blink analysis, eye openness and neurophysiological indicators of cognitive
load and mental fatigue.
"""

from .cognitive_estimator import (
    CognitiveEstimate, CognitiveLoadEstimator, CognitiveLoadModule,
    EyeSignalCognitiveEstimator, blink_statistics
)
from .models import CognitiveLoadNet

__all__ = [
    'CognitiveEstimate', 'CognitiveLoadEstimator', 'CognitiveLoadModule',
    'CognitiveLoadNet', 'EyeSignalCognitiveEstimator', 'blink_statistics'
]
