"""
Engagement Recognition Models

Multimodal network that fuses the per-modality features of one tick with a
temporal window of previous samples.
"""

from typing import Dict

import torch
import torch.nn as nn

# Feature width per modality, in fusion order
MODALITY_DIMS: Dict[str, int] = {
    'emotion': 13,
    'gaze': 10,
    'posture': 8,
    'micro_expression': 6,
    'cognitive_load': 6,
}
MODALITY_HIDDEN: Dict[str, int] = {
    'emotion': 32,
    'gaze': 24,
    'posture': 16,
    'micro_expression': 12,
    'cognitive_load': 12,
}
TEMPORAL_LENGTH = 20
TEMPORAL_FEATURES = 37
NUM_OUTPUTS = 5


class ModalityGate(nn.Module):
    """Query-key-value gating of one modality embedding."""

    def __init__(self, in_features: int, gate_dim: int = 32):
        super(ModalityGate, self).__init__()
        self.query = nn.Linear(in_features, gate_dim)
        self.key = nn.Linear(in_features, gate_dim)
        self.value = nn.Linear(in_features, gate_dim)

    def forward(self, x):
        gate = torch.sigmoid(self.query(x) * self.key(x))
        return gate * self.value(x)


class EngagementNet(nn.Module):
    """
    Multimodal engagement estimator.

    Each modality passes through its own dense encoder and an attention gate;
    the temporal window goes through an LSTM. Five sigmoid heads give overall
    engagement, attention level, cognitive load, fatigue level and
    distraction probability.
    """

    def __init__(self, gate_dim: int = 32, dropout: float = 0.3):
        """
        Initialize EngagementNet.

        Args:
            gate_dim: Width of each gated modality embedding
            dropout: Dropout rate of the first fusion layer
        """
        super(EngagementNet, self).__init__()

        self.encoders = nn.ModuleDict({
            name: nn.Sequential(nn.Linear(dim, MODALITY_HIDDEN[name]), nn.ReLU(inplace=True))
            for name, dim in MODALITY_DIMS.items()
        })
        self.gates = nn.ModuleDict({
            name: ModalityGate(MODALITY_HIDDEN[name], gate_dim) for name in MODALITY_DIMS
        })
        self.temporal = nn.LSTM(TEMPORAL_FEATURES, 64, batch_first=True)

        fused_dim = gate_dim * len(MODALITY_DIMS) + 64
        self.fusion = nn.Sequential(
            nn.Linear(fused_dim, 256),
            nn.ReLU(inplace=True),
            nn.Dropout(dropout),
            nn.Linear(256, 128),
            nn.ReLU(inplace=True),
            nn.Dropout(0.2)
        )
        self.heads = nn.Linear(128, NUM_OUTPUTS)

    def forward(self, emotion, gaze, posture, micro_expression, cognitive_load, temporal):
        inputs = {
            'emotion': emotion,
            'gaze': gaze,
            'posture': posture,
            'micro_expression': micro_expression,
            'cognitive_load': cognitive_load,
        }
        gated = [self.gates[name](self.encoders[name](inputs[name])) for name in MODALITY_DIMS]
        _, (hidden, _) = self.temporal(temporal)

        features = self.fusion(torch.cat(gated + [hidden[-1]], dim=1))
        return torch.sigmoid(self.heads(features))
