"""
Posture Analysis Module

Estimates head pose, shoulder alignment, spinal posture, leaning direction
and an overall ergonomic score.
"""

from .models import PostureNet
from .posture_analyzer import (
    GeometricPostureAnalyzer, PostureAnalyzer, PostureModule, posture_row
)

__all__ = [
    'GeometricPostureAnalyzer', 'PostureAnalyzer', 'PostureModule', 'PostureNet', 'posture_row'
]
