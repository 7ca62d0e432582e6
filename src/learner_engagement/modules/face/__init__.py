"""
Face Region Detection Module

Locates the learner's face in a frame and extracts the face, eye and mouth
regions consumed by the other inference modules.
"""

from .face_detector import DnnFaceDetector, FaceRegionModule, HaarFaceDetector, extract_regions

__all__ = ['DnnFaceDetector', 'FaceRegionModule', 'HaarFaceDetector', 'extract_regions']
