"""
Eye Gaze Estimation Module

Estimates where on the screen the learner is looking and whether the eyes
are fixating, moving or blinking.
"""

from .gaze_estimator import GazeEstimate, GazeEstimator, GazeModule, PupilGazeEstimator
from .models import GazeNet

__all__ = ['GazeEstimate', 'GazeEstimator', 'GazeModule', 'PupilGazeEstimator', 'GazeNet']
