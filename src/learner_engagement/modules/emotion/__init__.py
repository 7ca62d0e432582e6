"""
Emotion Recognition Module

Classifies the learner's emotional state into 7 basic and 6 learning-related
emotions with valence, arousal and intensity.
"""

from .emotion_classifier import (
    EmotionClassifier, EmotionEstimate, EmotionModule, HeuristicEmotionEstimator
)
from .models import EmotionNet

__all__ = [
    'EmotionClassifier', 'EmotionEstimate', 'EmotionModule',
    'HeuristicEmotionEstimator', 'EmotionNet'
]
