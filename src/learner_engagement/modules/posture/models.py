"""
Posture Analysis Models
"""

import torch
import torch.nn as nn
import torch.nn.functional as F

from ...types import LEANING_LABELS

GEOMETRY_FEATURES = 6
POSTURE_FEATURES = 8


class PostureNet(nn.Module):
    """
    Posture regression from upper-body geometry and posture history.

    Heads: shoulder alignment, spinal posture, head stability, ergonomic
    score (all sigmoid) and leaning direction (softmax over 5 classes).
    """

    def __init__(self, history_length: int = 15):
        super(PostureNet, self).__init__()

        self.geometry_features = nn.Sequential(
            nn.Linear(GEOMETRY_FEATURES, 64),
            nn.ReLU(inplace=True),
            nn.Dropout(0.2)
        )
        self.head_pose_features = nn.Sequential(
            nn.Linear(3, 16),
            nn.ReLU(inplace=True)
        )
        self.history_features = nn.LSTM(POSTURE_FEATURES, 32, batch_first=True)

        self.hidden = nn.Sequential(
            nn.Linear(64 + 16 + 32, 128),
            nn.ReLU(inplace=True)
        )
        self.score_head = nn.Linear(128, 4)
        self.leaning_head = nn.Linear(128, len(LEANING_LABELS))

    def forward(self, geometry, head_pose, history):
        _, (hidden, _) = self.history_features(history)
        features = self.hidden(torch.cat([
            self.geometry_features(geometry),
            self.head_pose_features(head_pose),
            hidden[-1]
        ], dim=1))

        scores = torch.sigmoid(self.score_head(features))
        leaning = F.softmax(self.leaning_head(features), dim=1)
        return scores, leaning
