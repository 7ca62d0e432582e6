"""
Cognitive Load Models
"""

import torch
import torch.nn as nn

COGNITIVE_FEATURES = 6
BLINK_FEATURES = 5


class CognitiveLoadNet(nn.Module):
    """
    Cognitive load estimation from neurophysiological eye signals.

    Inputs are the eye band (3x32x64), a 30x6 window of pupil, openness,
    microsaccade, fixation and gaze measurements, and the 5 blink statistics.

    Outputs:
        cognitive load (1), attentional state (4: sustained, selective,
        divided, flexibility), working memory load (1), executive control (1)
        and mental fatigue (1), all in [0, 1]
    """

    def __init__(self, history_length: int = 30):
        super(CognitiveLoadNet, self).__init__()

        self.history_length = history_length

        self.eye_features = nn.Sequential(
            nn.Conv2d(3, 16, kernel_size=3, padding=1),
            nn.ReLU(inplace=True),
            nn.MaxPool2d(2),
            nn.Conv2d(16, 32, kernel_size=3, padding=1),
            nn.ReLU(inplace=True),
            nn.AdaptiveAvgPool2d(1)
        )
        self.signal_features = nn.LSTM(COGNITIVE_FEATURES, 32, batch_first=True)
        self.blink_features = nn.Sequential(
            nn.Linear(BLINK_FEATURES, 16),
            nn.ReLU(inplace=True)
        )

        self.hidden = nn.Sequential(
            nn.Linear(32 + 32 + 16, 128),
            nn.ReLU(inplace=True),
            nn.Dropout(0.3),
            nn.Linear(128, 64),
            nn.ReLU(inplace=True)
        )
        self.load_head = nn.Linear(64, 1)
        self.attention_head = nn.Linear(64, 4)
        self.working_memory_head = nn.Linear(64, 1)
        self.executive_head = nn.Linear(64, 1)
        self.fatigue_head = nn.Linear(64, 1)

    def forward(self, eyes, signals, blinks):
        _, (hidden, _) = self.signal_features(signals)
        features = self.hidden(torch.cat([
            self.eye_features(eyes).flatten(1),
            hidden[-1],
            self.blink_features(blinks)
        ], dim=1))

        return (
            torch.sigmoid(self.load_head(features)),
            torch.sigmoid(self.attention_head(features)),
            torch.sigmoid(self.working_memory_head(features)),
            torch.sigmoid(self.executive_head(features)),
            torch.sigmoid(self.fatigue_head(features))
        )
