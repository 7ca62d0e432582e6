"""
Real-time Interface Module

Frame sources and the continuous analysis scheduler.
"""

from .frame_source import CameraFrameSource, Frame, FrameSource
from .scheduler import AnalysisScheduler, SchedulerState

__all__ = ['CameraFrameSource', 'Frame', 'FrameSource', 'AnalysisScheduler', 'SchedulerState']
