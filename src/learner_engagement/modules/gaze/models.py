"""
Deep learning models for eye gaze estimation.
"""

import torch
import torch.nn as nn
import torch.nn.functional as F


class GazeNet(nn.Module):
    """
    Screen-gaze estimation model.

    A small CNN encodes the eye band, a dense layer the head pose and an
    LSTM the last gaze points. The fused features feed three heads: screen
    coordinates, confidence, and gaze type (fixation, saccade, blink).
    """

    def __init__(self, history_length: int = 5, dropout: float = 0.3):
        """
        Initialize GazeNet.

        Args:
            history_length: Number of previous gaze points
            dropout: Dropout rate
        """
        super(GazeNet, self).__init__()

        self.history_length = history_length

        self.eye_features = nn.Sequential(
            nn.Conv2d(3, 32, kernel_size=3, padding=1),
            nn.BatchNorm2d(32),
            nn.ReLU(inplace=True),
            nn.MaxPool2d(2),
            nn.Conv2d(32, 64, kernel_size=3, padding=1),
            nn.BatchNorm2d(64),
            nn.ReLU(inplace=True),
            nn.MaxPool2d(2),
            nn.Conv2d(64, 128, kernel_size=3, padding=1),
            nn.ReLU(inplace=True),
            nn.AdaptiveAvgPool2d(1)
        )
        self.head_pose_features = nn.Sequential(
            nn.Linear(3, 32),
            nn.ReLU(inplace=True)
        )
        self.history_features = nn.LSTM(2, 32, batch_first=True)

        self.regressor = nn.Sequential(
            nn.Linear(128 + 32 + 32, 256),
            nn.ReLU(inplace=True),
            nn.Dropout(dropout),
            nn.Linear(256, 128),
            nn.ReLU(inplace=True)
        )
        self.coordinate_head = nn.Linear(128, 2)
        self.confidence_head = nn.Linear(128, 1)
        self.type_head = nn.Linear(128, 3)

        self._initialize_weights()

    def _initialize_weights(self):
        """Initialize model weights."""
        for m in self.modules():
            if isinstance(m, nn.Linear):
                nn.init.xavier_uniform_(m.weight)
                nn.init.constant_(m.bias, 0)
            elif isinstance(m, nn.Conv2d):
                nn.init.kaiming_normal_(m.weight, mode='fan_out', nonlinearity='relu')

    def forward(self, eyes, head_pose, history):
        """
        Forward pass.

        Args:
            eyes: Eye band of shape (batch, 3, 36, 60)
            head_pose: (batch, 3) pitch, yaw, roll scaled to [-1, 1]
            history: (batch, 5, 2) previous gaze points

        Returns:
            Tuple of (coordinates in [0, 1], confidence, gaze type probabilities)
        """
        eye = self.eye_features(eyes).flatten(1)
        pose = self.head_pose_features(head_pose)
        _, (hidden, _) = self.history_features(history)

        features = self.regressor(torch.cat([eye, pose, hidden[-1]], dim=1))
        coordinates = torch.sigmoid(self.coordinate_head(features))
        confidence = torch.sigmoid(self.confidence_head(features))
        gaze_type = F.softmax(self.type_head(features), dim=1)

        return coordinates, confidence, gaze_type
