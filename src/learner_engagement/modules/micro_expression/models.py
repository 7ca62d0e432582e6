"""
Micro-expression Detection Models
"""

import torch
import torch.nn as nn

from ...types import NUM_EMOTIONS


class MicroExpressionNet(nn.Module):
    """
    Micro-expression detector.

    Combines the current face crop with the short-term trajectory of emotion
    distributions (8 ticks) and scores each of the 13 emotions as a brief
    expression, together with its intensity, the likelihood that it is being
    suppressed and an authenticity score.
    """

    def __init__(self, history_length: int = 8, dropout: float = 0.4):
        super(MicroExpressionNet, self).__init__()

        self.history_length = history_length

        self.face_features = nn.Sequential(
            nn.Conv2d(3, 32, kernel_size=3, padding=1),
            nn.ReLU(inplace=True),
            nn.MaxPool2d(2),
            nn.Conv2d(32, 64, kernel_size=3, padding=1),
            nn.ReLU(inplace=True),
            nn.AdaptiveAvgPool2d(1)
        )
        self.temporal_features = nn.LSTM(NUM_EMOTIONS, 64, batch_first=True)

        self.classifier = nn.Sequential(
            nn.Linear(64 + 64, 256),
            nn.ReLU(inplace=True),
            nn.Dropout(dropout),
            nn.Linear(256, 128),
            nn.ReLU(inplace=True)
        )
        self.emotion_head = nn.Linear(128, NUM_EMOTIONS)
        self.intensity_head = nn.Linear(128, 1)
        self.suppression_head = nn.Linear(128, 1)
        self.authenticity_head = nn.Linear(128, 1)

    def forward(self, face, history):
        _, (hidden, _) = self.temporal_features(history)
        features = self.classifier(torch.cat([self.face_features(face).flatten(1), hidden[-1]], dim=1))

        return (
            torch.sigmoid(self.emotion_head(features)),
            torch.sigmoid(self.intensity_head(features)),
            torch.sigmoid(self.suppression_head(features)),
            torch.sigmoid(self.authenticity_head(features))
        )
