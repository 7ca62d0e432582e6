"""
Screen-gaze estimation.

Maps the eye band and head orientation to a normalised screen coordinate and
classifies the movement as fixation, saccade or blink.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np
import torch.nn as nn

from ...types import GazeType, clamp
from ..base import InferenceModule, ModuleInput, ModuleResult, TorchModelMixin, valid_rows
from ..image_utils import estimate_pupil_center, preprocess_region
from .models import GazeNet

logger = logging.getLogger(__name__)

GAZE_TYPES = (GazeType.FIXATION, GazeType.SACCADE, GazeType.BLINK)


@dataclass(frozen=True)
class GazeEstimate:
    x: float  # clamped to [0, 1]
    y: float
    gaze_type: GazeType
    on_screen: bool
    head_pose: Tuple[float, float, float] = (0.0, 0.0, 0.0)
    saccade_speed: Optional[float] = None


def is_on_screen(x: float, y: float, yaw: float, max_yaw: float) -> bool:
    return 0.0 <= x <= 1.0 and 0.0 <= y <= 1.0 and abs(yaw) <= max_yaw


def movement_speed(x: float, y: float, history: np.ndarray, interval_s: float) -> float:
    """
    Gaze speed relative to the previous point, in screen widths per second.

    Args:
        x, y: Current gaze point
        history: Zero-padded window of previous (x, y) points
        interval_s: Time between consecutive points

    Returns:
        Speed, or 0.0 when there is no previous point
    """
    previous = valid_rows(history)
    if not len(previous):
        return 0.0
    last_x, last_y = previous[-1]
    return float(np.hypot(x - last_x, y - last_y)) / max(interval_s, 1e-3)


class GazeModule(InferenceModule):
    """Gaze estimation over the eye band and a 5x2 window of gaze points."""

    name = 'gaze'
    history_length = 5
    history_width = 2

    def __init__(self, interval_s: float = 0.1, saccade_speed: float = 0.8,
                 max_yaw: float = 35.0):
        self.interval_s = interval_s
        self.saccade_speed = saccade_speed
        self.max_yaw = max_yaw

    def neutral_metric(self) -> GazeEstimate:
        # No face means nobody is looking at the screen
        return GazeEstimate(x=0.5, y=0.5, gaze_type=GazeType.FIXATION, on_screen=False)

    def build_estimate(self, raw_x: float, raw_y: float, gaze_type: GazeType,
                       head_pose: Tuple[float, float, float],
                       history: np.ndarray) -> GazeEstimate:
        x, y = clamp(raw_x), clamp(raw_y)
        speed = movement_speed(x, y, history, self.interval_s)
        if gaze_type != GazeType.BLINK:
            gaze_type = GazeType.SACCADE if speed > self.saccade_speed else GazeType.FIXATION

        return GazeEstimate(
            x=x,
            y=y,
            gaze_type=gaze_type,
            on_screen=is_on_screen(raw_x, raw_y, head_pose[1], self.max_yaw),
            head_pose=head_pose,
            saccade_speed=speed if gaze_type == GazeType.SACCADE else None
        )


class GazeEstimator(TorchModelMixin, GazeModule):
    """GazeNet inference."""

    artifact_name = 'gaze'

    def __init__(self, model: nn.Module, device, **kwargs):
        TorchModelMixin.__init__(self, model, device)
        GazeModule.__init__(self, **kwargs)

    @classmethod
    def build_model(cls) -> nn.Module:
        return GazeNet(history_length=cls.history_length)

    def infer(self, inputs: ModuleInput) -> ModuleResult:
        region = inputs.region
        if region is None:
            return self.result(self.neutral_metric(), 0.0)

        scope = inputs.scope
        head_pose = region.head_angles()
        eyes = self.to_batch(scope, preprocess_region(region.eyes, (60, 36)))
        pose = self.to_batch(scope, np.array(head_pose, dtype=np.float32) / 90.0)
        history = self.to_batch(scope, inputs.history.astype(np.float32))

        coordinates, confidence, gaze_type = self.run_model(scope, eyes, pose, history)
        x, y = coordinates[0].tolist()
        estimate = self.build_estimate(
            x, y, GAZE_TYPES[int(gaze_type[0].argmax())], head_pose, inputs.history
        )
        return self.result(estimate, float(confidence[0, 0]) * region.confidence)


class PupilGazeEstimator(GazeModule):
    """
    Geometric gaze estimate from pupil offsets and head orientation.

    The darkest blob in each half of the eye band is taken as the pupil; its
    offset from the eye centre plus the head yaw/pitch gives the gaze point.
    Low dark/bright contrast across the band is read as a blink.
    """

    is_fallback = True

    def __init__(self, pupil_gain: float = 1.5, head_gain: float = 1.2,
                 blink_contrast: float = 0.12, **kwargs):
        super().__init__(**kwargs)
        self.pupil_gain = pupil_gain
        self.head_gain = head_gain
        self.blink_contrast = blink_contrast

    def infer(self, inputs: ModuleInput) -> ModuleResult:
        region = inputs.region
        if region is None or region.eyes.size == 0:
            return self.result(self.neutral_metric(), 0.0)

        half = max(region.eyes.shape[1] // 2, 1)
        left = estimate_pupil_center(region.eyes[:, :half])
        right = estimate_pupil_center(region.eyes[:, half:])
        pupil_x = (left[0] + right[0]) / 2.0
        pupil_y = (left[1] + right[1]) / 2.0
        contrast = (left[2] + right[2]) / 2.0

        head_pose = region.head_angles()
        pitch, yaw, _ = head_pose
        raw_x = 0.5 + (pupil_x - 0.5) * self.pupil_gain + yaw / 90.0 * self.head_gain
        raw_y = 0.5 + (pupil_y - 0.5) * self.pupil_gain + pitch / 90.0 * self.head_gain

        gaze_type = GazeType.BLINK if contrast < self.blink_contrast else GazeType.FIXATION
        estimate = self.build_estimate(raw_x, raw_y, gaze_type, head_pose, inputs.history)

        confidence = 0.7 * clamp(0.3 + contrast) * region.confidence
        return self.result(estimate, confidence)
