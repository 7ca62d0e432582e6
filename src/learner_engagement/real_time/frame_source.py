"""
Frame sources for the analysis scheduler.

A frame source is pulled once per tick. ``CameraFrameSource`` reads a webcam
or a video file on a capture thread into a small queue; for a live camera
the oldest frame is dropped when the queue is full.
"""

import logging
import queue
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple, Union

import cv2
import numpy as np

from ..exceptions import CaptureError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Frame:
    image: np.ndarray
    timestamp: float  # seconds since the epoch


class FrameSource(ABC):
    """Pull interface over a timestamped frame stream."""

    @abstractmethod
    def open(self):
        """
        Acquire the underlying device or stream.

        Raises:
            CaptureError: If the source cannot be opened
        """

    @abstractmethod
    def read(self, timeout: float = 0.05) -> Optional[Frame]:
        """Next frame, or None if none arrived within ``timeout`` seconds."""

    @abstractmethod
    def release(self):
        """Release the underlying device. Safe to call more than once."""

    @property
    def closed(self) -> bool:
        """True once the stream has ended or the source was released."""
        return False

    def get_statistics(self) -> Dict[str, Any]:
        return {}


class CameraFrameSource(FrameSource):
    """
    Webcam or video-file source with a threaded capture loop.
    """

    def __init__(
        self,
        source: Union[int, str] = 0,
        resolution: Tuple[int, int] = (1280, 720),
        fps: float = 30.0,
        buffer_size: int = 4
    ):
        """
        Initialize the frame source.

        Args:
            source: Camera device ID or path to a video file
            resolution: Requested camera resolution (width, height)
            fps: Requested frames per second
            buffer_size: Frame queue size
        """
        self.source = source
        self.resolution = resolution
        self.fps = fps
        self.buffer_size = buffer_size
        self.live = isinstance(source, int)

        self.cap = None
        self.is_running = False
        self.exhausted = False
        self.capture_thread = None
        self.frame_queue = queue.Queue(maxsize=buffer_size)

        # Statistics
        self.frames_captured = 0
        self.frames_dropped = 0
        self.start_time = None

    @classmethod
    def from_config(cls, config: Dict[str, Any], source: Optional[Union[int, str]] = None
                    ) -> 'CameraFrameSource':
        camera = config.get('camera', {})
        return cls(
            source=camera.get('device_id', 0) if source is None else source,
            resolution=(camera.get('width', 1280), camera.get('height', 720)),
            fps=camera.get('fps', 30),
            buffer_size=camera.get('buffer_size', 4)
        )

    def open(self):
        self.cap = cv2.VideoCapture(self.source)
        if not self.cap.isOpened():
            self.cap.release()
            self.cap = None
            raise CaptureError(f"Failed to open frame source {self.source!r}")

        if self.live:
            self.cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.resolution[0])
            self.cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.resolution[1])
            self.cap.set(cv2.CAP_PROP_FPS, self.fps)

        self.is_running = True
        self.start_time = time.time()
        self.capture_thread = threading.Thread(target=self._capture_loop, daemon=True)
        self.capture_thread.start()
        logger.info(f"Frame source {self.source!r} opened")

    def _capture_loop(self):
        """Main capture loop running in separate thread."""
        while self.is_running:
            ret, image = self.cap.read()
            if not ret:
                if not self.live:
                    self.exhausted = True
                    logger.info(f"End of video {self.source!r}")
                    break
                logger.warning("Failed to read frame from camera")
                time.sleep(0.01)
                continue

            self.frames_captured += 1
            frame = Frame(image=image, timestamp=time.time())

            if not self.live:
                # Video files are not dropped; wait for the consumer
                while self.is_running:
                    try:
                        self.frame_queue.put(frame, timeout=0.1)
                        break
                    except queue.Full:
                        continue
                continue

            try:
                self.frame_queue.put_nowait(frame)
            except queue.Full:
                # Remove oldest frame if queue is full
                try:
                    self.frame_queue.get_nowait()
                    self.frames_dropped += 1
                except queue.Empty:
                    pass
                self.frame_queue.put_nowait(frame)

    def read(self, timeout: float = 0.05) -> Optional[Frame]:
        try:
            return self.frame_queue.get(timeout=timeout)
        except queue.Empty:
            return None

    @property
    def closed(self) -> bool:
        if self.cap is None:
            return True
        return self.exhausted and self.frame_queue.empty()

    def release(self):
        self.is_running = False
        if self.capture_thread and self.capture_thread is not threading.current_thread():
            self.capture_thread.join(timeout=2.0)
        self.capture_thread = None

        if self.cap is not None:
            self.cap.release()
            self.cap = None
            logger.info(f"Frame source {self.source!r} released")

        while not self.frame_queue.empty():
            try:
                self.frame_queue.get_nowait()
            except queue.Empty:
                break

    def get_statistics(self) -> Dict[str, Any]:
        if self.start_time is None:
            return {}

        elapsed_time = time.time() - self.start_time
        return {
            'frames_captured': self.frames_captured,
            'frames_dropped': self.frames_dropped,
            'elapsed_time': elapsed_time,
            'actual_fps': self.frames_captured / elapsed_time if elapsed_time > 0 else 0,
            'target_fps': self.fps,
            'queue_size': self.frame_queue.qsize()
        }
