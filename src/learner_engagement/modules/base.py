"""
Common interface for the per-modality inference modules.

Every modality has one abstract module class (input contract, history shape
and neutral metric) and two implementations: a primary torch model loaded
from the model store, and a built-in estimator used when the artifact cannot
be loaded. ``select_module`` picks one at initialization.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple, Type

import numpy as np
import torch
import torch.nn as nn

from ..exceptions import InferenceError, InitializationError, ModelLoadError
from ..types import clamp
from .image_utils import estimate_pupil_center
from .model_store import ModelStore
from .resources import BufferScope

logger = logging.getLogger(__name__)


@dataclass
class FaceRegion:
    """Face crop and sub-regions extracted from one frame."""
    bbox: Tuple[int, int, int, int]  # (x1, y1, x2, y2)
    face: np.ndarray
    eyes: np.ndarray
    mouth: np.ndarray
    frame_size: Tuple[int, int]  # (width, height)
    confidence: float

    @property
    def center(self) -> Tuple[float, float]:
        """Face centre normalised to the frame."""
        x1, y1, x2, y2 = self.bbox
        width, height = self.frame_size
        return (x1 + x2) / 2.0 / max(width, 1), (y1 + y2) / 2.0 / max(height, 1)

    @property
    def relative_size(self) -> float:
        """Face height as a fraction of frame height."""
        _, y1, _, y2 = self.bbox
        return (y2 - y1) / max(self.frame_size[1], 1)

    def head_angles(self) -> Tuple[float, float, float]:
        """
        Coarse head orientation from the face position and eye band.

        Returns:
            (pitch, yaw, roll) in degrees, each within [-90, 90]
        """
        cx, cy = self.center
        yaw = float(np.clip((cx - 0.5) * 120.0, -90.0, 90.0))
        pitch = float(np.clip((cy - 0.45) * 120.0, -90.0, 90.0))

        roll = 0.0
        if self.eyes.size and self.eyes.shape[1] >= 4:
            half = self.eyes.shape[1] // 2
            _, left_y, left_c = estimate_pupil_center(self.eyes[:, :half])
            _, right_y, right_c = estimate_pupil_center(self.eyes[:, half:])
            if min(left_c, right_c) > 0.15:
                dy = (right_y - left_y) * self.eyes.shape[0]
                roll = float(np.degrees(np.arctan2(dy, max(half, 1))))
        return pitch, yaw, float(np.clip(roll, -90.0, 90.0))


@dataclass
class ModuleInput:
    frame: Optional[np.ndarray]
    region: Optional[FaceRegion]
    history: np.ndarray
    scope: BufferScope
    timestamp: float
    features: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class ModuleResult:
    metric: Any
    confidence: float
    source: str  # 'primary', 'fallback' or 'neutral'
    error: Optional[InferenceError] = None


class InferenceModule(ABC):
    """
    Pure ``(frame region, history window) -> (metric, confidence)`` stage.

    Calling the module never raises: an exception inside ``infer`` is logged
    and replaced by the neutral metric with zero confidence.
    """

    name = 'module'
    history_length = 0
    history_width = 0
    is_fallback = False

    @property
    def source(self) -> str:
        return 'fallback' if self.is_fallback else 'primary'

    def __call__(self, inputs: ModuleInput) -> ModuleResult:
        try:
            return self.infer(inputs)
        except Exception as e:
            error = InferenceError(self.name, inputs.timestamp, e)
            logger.error(str(error))
            return ModuleResult(self.neutral_metric(), 0.0, 'neutral', error)

    def result(self, metric: Any, confidence: float) -> ModuleResult:
        return ModuleResult(metric, clamp(confidence), self.source)

    @abstractmethod
    def infer(self, inputs: ModuleInput) -> ModuleResult:
        """Run inference on one tick's inputs."""

    @abstractmethod
    def neutral_metric(self) -> Any:
        """Metric substituted when inference fails."""

    def close(self):
        """Release model handles."""


class TorchModelMixin:
    """
    Loading and invocation of a torch network for a primary module.

    Subclasses set ``artifact_name`` and implement ``build_model``.
    """

    artifact_name: str = ''

    def __init__(self, model: nn.Module, device: torch.device):
        self.device = device
        self.model = model.to(device)
        self.model.eval()

    @classmethod
    def build_model(cls) -> nn.Module:
        raise NotImplementedError

    @classmethod
    def load(cls, store: ModelStore, device: torch.device, **kwargs):
        checkpoint = store.load_checkpoint(cls.artifact_name, device)
        model = cls.build_model()
        try:
            model.load_state_dict(checkpoint['model_state_dict'])
        except (RuntimeError, KeyError) as e:
            raise ModelLoadError(f"Incompatible weights for '{cls.artifact_name}': {e}") from e
        return cls(model, device, **kwargs)

    def to_batch(self, scope: BufferScope, array: np.ndarray) -> torch.Tensor:
        """Wrap an array as a batch of one on the model device."""
        tensor = scope.tensor(np.ascontiguousarray(array)).unsqueeze(0)
        return scope.track(tensor.to(self.device))

    def run_model(self, scope: BufferScope, *tensors: torch.Tensor):
        with torch.no_grad():
            outputs = self.model(*tensors)
        if isinstance(outputs, tuple):
            return tuple(scope.track(o.detach().cpu()) for o in outputs)
        return scope.track(outputs.detach().cpu())

    def close(self):
        self.model = None


def select_module(
    primary_cls: Type[InferenceModule],
    fallback_cls: Type[InferenceModule],
    store: ModelStore,
    device: torch.device,
    **module_kwargs
) -> InferenceModule:
    """
    Load the primary module, or the fallback estimator if that fails.

    ``module_kwargs`` are passed to whichever implementation is built.

    Raises:
        InitializationError: If neither implementation can be constructed
    """
    try:
        module = primary_cls.load(store, device, **module_kwargs)
        logger.info(f"{primary_cls.name}: primary model loaded on {device}")
        return module
    except ModelLoadError as e:
        logger.warning(f"{primary_cls.name}: {e}; using built-in fallback estimator")

    try:
        return fallback_cls(**module_kwargs)
    except Exception as e:
        raise InitializationError(
            f"{fallback_cls.name}: fallback estimator unavailable: {e}"
        ) from e


def valid_rows(history: np.ndarray) -> np.ndarray:
    """Rows of a zero-padded history window that hold real samples."""
    if history.size == 0:
        return history
    return history[np.any(history != 0, axis=1)]
