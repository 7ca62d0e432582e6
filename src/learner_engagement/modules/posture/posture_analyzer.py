"""
Posture analysis.

Works from the face box and the region just below it (shoulders), so no body
landmark model is needed. Head angles come from ``FaceRegion.head_angles``.
"""

import logging
from typing import Optional, Tuple

import numpy as np
import torch.nn as nn

from ...types import LEANING_LABELS, HeadPose, LeaningDirection, PostureMetrics, clamp
from ..base import FaceRegion, InferenceModule, ModuleInput, ModuleResult, TorchModelMixin, valid_rows
from ..image_utils import edge_density
from .models import POSTURE_FEATURES, PostureNet

logger = logging.getLogger(__name__)


def posture_row(metrics: PostureMetrics) -> np.ndarray:
    """Encode posture metrics as one row of the 8-wide posture window."""
    pose = metrics.head_pose
    return np.array([
        pose.pitch / 90.0,
        pose.yaw / 90.0,
        pose.roll / 90.0,
        pose.stability,
        metrics.shoulder_alignment,
        metrics.spinal_posture,
        metrics.ergonomic_score,
        LEANING_LABELS.index(metrics.leaning) / (len(LEANING_LABELS) - 1)
    ], dtype=np.float32)


def pose_stability(history: np.ndarray, head_pose: Tuple[float, float, float],
                   tolerance_deg: float = 15.0) -> float:
    """
    Head stability from the spread of recent head angles.

    Args:
        history: Posture window (rows as produced by ``posture_row``)
        head_pose: Current (pitch, yaw, roll) in degrees
        tolerance_deg: Mean standard deviation that maps to zero stability

    Returns:
        Stability in [0, 1]; 1.0 with fewer than three observations
    """
    rows = valid_rows(history)
    if len(rows) < 2:
        return 1.0
    angles = np.vstack([rows[:, :3] * 90.0, np.asarray(head_pose, dtype=np.float32)])
    spread = float(np.mean(np.std(angles, axis=0)))
    return clamp(1.0 - spread / tolerance_deg)


def count_posture_changes(history: np.ndarray, leaning: LeaningDirection) -> int:
    """Number of leaning-direction changes across the window and current tick."""
    rows = valid_rows(history)
    scale = len(LEANING_LABELS) - 1
    sequence = [int(round(v * scale)) for v in rows[:, 7]] if len(rows) else []
    sequence.append(LEANING_LABELS.index(leaning))
    return int(sum(1 for a, b in zip(sequence, sequence[1:]) if a != b))


def shoulder_balance(frame: Optional[np.ndarray], region: FaceRegion) -> float:
    """
    Left/right balance of edge energy in the band below the face.

    Returns:
        1.0 for a symmetric band, lower when one side dominates; 0.8 when
        the band is outside the frame
    """
    if frame is None:
        return 0.8
    x1, y1, x2, y2 = region.bbox
    face_w, face_h = x2 - x1, y2 - y1
    h, w = frame.shape[:2]
    top, bottom = min(h, y2), min(h, y2 + face_h)
    left, right = max(0, x1 - face_w), min(w, x2 + face_w)
    center = (x1 + x2) // 2
    if bottom - top < 4 or center - left < 4 or right - center < 4:
        return 0.8

    left_h, left_v = edge_density(frame[top:bottom, left:center])
    right_h, right_v = edge_density(frame[top:bottom, center:right])
    left_energy, right_energy = left_h + left_v, right_h + right_v
    total = left_energy + right_energy
    if total <= 1e-6:
        return 0.8
    return clamp(1.0 - abs(left_energy - right_energy) / total)


def posture_geometry(frame: Optional[np.ndarray], region: FaceRegion,
                     head_pose: Tuple[float, float, float]) -> np.ndarray:
    """Six geometry features: centre x/y, relative size, aspect, roll, shoulder balance."""
    cx, cy = region.center
    x1, y1, x2, y2 = region.bbox
    aspect = (x2 - x1) / max(y2 - y1, 1)
    return np.array([
        cx, cy, region.relative_size, aspect, head_pose[2] / 90.0,
        shoulder_balance(frame, region)
    ], dtype=np.float32)


class PostureModule(InferenceModule):
    """Posture analysis over the face geometry and a 15x8 posture window."""

    name = 'posture'
    history_length = 15
    history_width = POSTURE_FEATURES

    def neutral_metric(self) -> PostureMetrics:
        return PostureMetrics()


class PostureAnalyzer(TorchModelMixin, PostureModule):
    """PostureNet inference."""

    artifact_name = 'posture'

    @classmethod
    def build_model(cls) -> nn.Module:
        return PostureNet(history_length=cls.history_length)

    def infer(self, inputs: ModuleInput) -> ModuleResult:
        region = inputs.region
        if region is None:
            return self.result(self.neutral_metric(), 0.0)

        scope = inputs.scope
        head_pose = region.head_angles()
        geometry = self.to_batch(scope, posture_geometry(inputs.frame, region, head_pose))
        pose = self.to_batch(scope, np.array(head_pose, dtype=np.float32) / 90.0)
        history = self.to_batch(scope, inputs.history.astype(np.float32))

        scores, leaning = self.run_model(scope, geometry, pose, history)
        shoulder, spine, stability, ergonomic = scores[0].tolist()
        direction = LEANING_LABELS[int(leaning[0].argmax())]

        metrics = PostureMetrics(
            head_pose=HeadPose(*head_pose, stability=clamp(stability)),
            shoulder_alignment=clamp(shoulder),
            spinal_posture=clamp(spine),
            leaning=direction,
            ergonomic_score=clamp(ergonomic),
            posture_changes=count_posture_changes(inputs.history, direction)
        )
        return self.result(metrics, float(leaning[0].max()) * region.confidence)


class GeometricPostureAnalyzer(PostureModule):
    """Rule-based posture estimate from the face box position and size."""

    is_fallback = True

    def __init__(self, forward_size: float = 0.5, backward_size: float = 0.2,
                 side_offset: float = 0.15, roll_limit: float = 12.0):
        self.forward_size = forward_size
        self.backward_size = backward_size
        self.side_offset = side_offset
        self.roll_limit = roll_limit

    def leaning(self, region: FaceRegion, roll: float) -> LeaningDirection:
        cx, _ = region.center
        size = region.relative_size
        if size > self.forward_size:
            return LeaningDirection.FORWARD
        if size < self.backward_size:
            return LeaningDirection.BACKWARD
        if roll < -self.roll_limit or cx < 0.5 - self.side_offset:
            return LeaningDirection.LEFT
        if roll > self.roll_limit or cx > 0.5 + self.side_offset:
            return LeaningDirection.RIGHT
        return LeaningDirection.NEUTRAL

    def infer(self, inputs: ModuleInput) -> ModuleResult:
        region = inputs.region
        if region is None:
            return self.result(self.neutral_metric(), 0.0)

        pitch, yaw, roll = region.head_angles()
        stability = pose_stability(inputs.history, (pitch, yaw, roll))
        shoulder = shoulder_balance(inputs.frame, region)
        spine = clamp(1.0 - abs(pitch) / 60.0 - max(0.0, region.relative_size - 0.45))
        direction = self.leaning(region, roll)

        ergonomic = (shoulder + spine + stability) / 3.0
        if direction != LeaningDirection.NEUTRAL:
            ergonomic -= 0.1

        metrics = PostureMetrics(
            head_pose=HeadPose(pitch=pitch, yaw=yaw, roll=roll, stability=stability),
            shoulder_alignment=shoulder,
            spinal_posture=spine,
            leaning=direction,
            ergonomic_score=clamp(ergonomic),
            posture_changes=count_posture_changes(inputs.history, direction)
        )
        return self.result(metrics, 0.6 * region.confidence)
