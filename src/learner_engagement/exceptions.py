"""
Error taxonomy for the engagement tracking pipeline.

Fatal errors (initialization, capture) propagate to the caller. Per-module
inference errors are recovered locally by substituting a neutral metric.
"""

from typing import Optional


class EngagementError(Exception):
    """Base class for all engagement tracking errors."""


class InitializationError(EngagementError):
    """Required inference modules could not be loaded, even via fallback."""


class ModelLoadError(EngagementError):
    """A primary model artifact is missing or unreadable."""


class CaptureError(EngagementError):
    """The frame source could not be opened or was lost."""


class SessionClosedError(EngagementError):
    """Operation attempted on a stopped or disposed session."""


class CalibrationError(EngagementError):
    """Illegal calibration state transition."""


class InferenceError(EngagementError):
    """A single module failed during one tick."""

    def __init__(self, module_name: str, tick_timestamp: Optional[float], cause: BaseException):
        self.module_name = module_name
        self.tick_timestamp = tick_timestamp
        self.cause = cause
        super().__init__(
            f"{module_name} inference failed at tick {tick_timestamp}: "
            f"{type(cause).__name__}: {cause}"
        )


class CalibrationInsufficientData(UserWarning):
    """Calibration window ended without usable samples."""
