"""
Emotion Recognition Models

Multi-region CNN with a temporal LSTM over the recent emotion history.
"""

import torch
import torch.nn as nn
import torch.nn.functional as F

from ...types import NUM_EMOTIONS

NUM_BASIC_EMOTIONS = 7
NUM_COMPLEX_EMOTIONS = NUM_EMOTIONS - NUM_BASIC_EMOTIONS


def conv_block(in_channels: int, out_channels: int, pool: bool = True) -> nn.Sequential:
    layers = [
        nn.Conv2d(in_channels, out_channels, kernel_size=3, padding=1),
        nn.BatchNorm2d(out_channels),
        nn.ReLU(inplace=True)
    ]
    if pool:
        layers.append(nn.MaxPool2d(kernel_size=2, stride=2))
    return nn.Sequential(*layers)


class RegionEncoder(nn.Module):
    """Two conv blocks followed by global average pooling."""

    def __init__(self, hidden_channels: int, out_channels: int):
        super(RegionEncoder, self).__init__()
        self.features = nn.Sequential(
            conv_block(3, hidden_channels),
            conv_block(hidden_channels, out_channels, pool=False),
            nn.AdaptiveAvgPool2d(1)
        )

    def forward(self, x):
        return self.features(x).flatten(1)


class EmotionNet(nn.Module):
    """
    Emotion classifier over face, eye and mouth crops.

    Inputs are a 64x64 face, a 32x64 eye band, a 32x48 mouth band (all CHW)
    and a 10x13 window of previous emotion distributions.
    """

    def __init__(self, history_length: int = 10, dropout: float = 0.4):
        """
        Initialize EmotionNet.

        Args:
            history_length: Number of previous emotion distributions
            dropout: Dropout rate of the classifier
        """
        super(EmotionNet, self).__init__()

        self.history_length = history_length

        self.face_encoder = RegionEncoder(64, 128)
        self.eye_encoder = RegionEncoder(32, 64)
        self.mouth_encoder = RegionEncoder(32, 64)
        self.temporal = nn.LSTM(NUM_EMOTIONS, 64, batch_first=True)

        self.classifier = nn.Sequential(
            nn.Linear(128 + 64 + 64 + 64, 256),
            nn.ReLU(inplace=True),
            nn.Dropout(dropout),
            nn.Linear(256, 128),
            nn.ReLU(inplace=True)
        )

        self.basic_head = nn.Linear(128, NUM_BASIC_EMOTIONS)
        self.complex_head = nn.Linear(128, NUM_COMPLEX_EMOTIONS)
        self.valence_arousal_head = nn.Linear(128, 2)
        self.intensity_head = nn.Linear(128, 1)

    def forward(self, face, eyes, mouth, history):
        """
        Forward pass.

        Returns:
            Tuple of (basic emotion probabilities, complex emotion scores,
            valence/arousal, intensity)
        """
        _, (hidden, _) = self.temporal(history)
        features = torch.cat([
            self.face_encoder(face),
            self.eye_encoder(eyes),
            self.mouth_encoder(mouth),
            hidden[-1]
        ], dim=1)
        hidden_features = self.classifier(features)

        basic = F.softmax(self.basic_head(hidden_features), dim=1)
        complex_scores = torch.sigmoid(self.complex_head(hidden_features))
        valence_arousal = self.valence_arousal_head(hidden_features)
        # Valence is signed, arousal is not
        valence_arousal = torch.stack([
            torch.tanh(valence_arousal[:, 0]),
            torch.sigmoid(valence_arousal[:, 1])
        ], dim=1)
        intensity = torch.sigmoid(self.intensity_head(hidden_features))

        return basic, complex_scores, valence_arousal, intensity
