"""
Face and facial-region detection.

The primary detector is the OpenCV DNN ResNet-10 SSD whose prototxt and
caffemodel come from the model store; the fallback is the Haar cascade that
ships with OpenCV.
"""

import logging
from typing import List, Optional, Tuple

import cv2
import numpy as np
import torch

from ...exceptions import ModelLoadError
from ..base import FaceRegion, InferenceModule, ModuleInput, ModuleResult
from ..model_store import ModelStore

logger = logging.getLogger(__name__)

Box = Tuple[int, int, int, int]


def extract_regions(frame: np.ndarray, bbox: Box, confidence: float) -> Optional[FaceRegion]:
    """
    Crop the face, eye band and mouth band out of a frame.

    Args:
        frame: Full BGR frame
        bbox: Face bounding box (x1, y1, x2, y2)
        confidence: Detection confidence

    Returns:
        FaceRegion, or None if the box is degenerate
    """
    h, w = frame.shape[:2]
    x1, y1, x2, y2 = bbox
    x1, x2 = max(0, min(w - 1, x1)), max(0, min(w, x2))
    y1, y2 = max(0, min(h - 1, y1)), max(0, min(h, y2))
    if x2 - x1 < 8 or y2 - y1 < 8:
        return None

    face = frame[y1:y2, x1:x2]
    fh = y2 - y1
    # Eyes sit roughly in the 20-55% band of the face box, the mouth in 62-95%
    eyes = face[int(fh * 0.20):int(fh * 0.55), :]
    mouth = face[int(fh * 0.62):int(fh * 0.95), :]

    return FaceRegion(
        bbox=(x1, y1, x2, y2),
        face=face,
        eyes=eyes,
        mouth=mouth,
        frame_size=(w, h),
        confidence=float(confidence)
    )


class FaceRegionModule(InferenceModule):
    """Locates the learner's face; the metric is a FaceRegion or None."""

    name = 'face_detector'

    def __init__(self, confidence_threshold: float = 0.5):
        self.confidence_threshold = confidence_threshold

    def detect(self, frame: np.ndarray) -> List[Tuple[Box, float]]:
        raise NotImplementedError

    def infer(self, inputs: ModuleInput) -> ModuleResult:
        detections = self.detect(inputs.frame)
        if not detections:
            return self.result(None, 0.0)

        best = max(detections, key=lambda d: (d[0][2] - d[0][0]) * (d[0][3] - d[0][1]))
        region = extract_regions(inputs.frame, best[0], best[1])
        if region is None:
            return self.result(None, 0.0)
        return self.result(region, best[1])

    def neutral_metric(self):
        return None


class DnnFaceDetector(FaceRegionModule):
    """OpenCV DNN face detector (ResNet-10 SSD)."""

    artifact_name = 'face_detector'

    def __init__(self, net, confidence_threshold: float = 0.5):
        super().__init__(confidence_threshold)
        self.net = net

    @classmethod
    def load(cls, store: ModelStore, device: torch.device, confidence_threshold: float = 0.5):
        prototxt = store.resolve(cls.artifact_name, '.prototxt')
        weights = store.resolve(cls.artifact_name, '.caffemodel')
        try:
            net = cv2.dnn.readNetFromCaffe(str(prototxt), str(weights))
        except cv2.error as e:
            raise ModelLoadError(f"Could not load DNN face detector: {e}") from e
        return cls(net, confidence_threshold)

    def detect(self, frame: np.ndarray) -> List[Tuple[Box, float]]:
        h, w = frame.shape[:2]
        blob = cv2.dnn.blobFromImage(frame, 1.0, (300, 300), [104, 117, 123])
        self.net.setInput(blob)
        detections = self.net.forward()

        faces = []
        for i in range(detections.shape[2]):
            confidence = float(detections[0, 0, i, 2])
            if confidence > self.confidence_threshold:
                box = detections[0, 0, i, 3:7] * np.array([w, h, w, h])
                x1, y1, x2, y2 = box.astype(int)
                faces.append(((int(x1), int(y1), int(x2), int(y2)), confidence))
        return faces

    def close(self):
        self.net = None


class HaarFaceDetector(FaceRegionModule):
    """Haar cascade face detector bundled with OpenCV."""

    is_fallback = True

    def __init__(self, confidence_threshold: float = 0.5):
        super().__init__(confidence_threshold)
        cascade_path = cv2.data.haarcascades + 'haarcascade_frontalface_default.xml'
        self.face_cascade = cv2.CascadeClassifier(cascade_path)
        if self.face_cascade.empty():
            raise RuntimeError(f"Could not load Haar cascade from {cascade_path}")

    def detect(self, frame: np.ndarray) -> List[Tuple[Box, float]]:
        gray = cv2.cvtColor(frame, cv2.COLOR_BGR2GRAY) if frame.ndim == 3 else frame
        faces, _, weights = self.face_cascade.detectMultiScale3(
            gray,
            scaleFactor=1.1,
            minNeighbors=5,
            minSize=(30, 30),
            outputRejectLevels=True
        )

        results = []
        for (x, y, w, h), weight in zip(faces, np.ravel(weights) if len(faces) else []):
            # Cascade level weights are unbounded; squash into (0, 1)
            confidence = float(1.0 - np.exp(-max(float(weight), 0.0) / 2.0))
            if confidence > self.confidence_threshold:
                results.append(((int(x), int(y), int(x + w), int(y + h)), confidence))
        return results

    def close(self):
        self.face_cascade = None
