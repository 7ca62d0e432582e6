"""
Image preprocessing helpers shared by the inference modules.
"""

from typing import Tuple

import cv2
import numpy as np

IMAGENET_MEAN = np.array([0.485, 0.456, 0.406], dtype=np.float32).reshape(3, 1, 1)
IMAGENET_STD = np.array([0.229, 0.224, 0.225], dtype=np.float32).reshape(3, 1, 1)


def to_gray(image: np.ndarray) -> np.ndarray:
    if image.ndim == 3 and image.shape[2] == 3:
        return cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
    if image.ndim == 3:
        return image[:, :, 0]
    return image


def apply_histogram_equalization(image: np.ndarray) -> np.ndarray:
    """
    Apply CLAHE to an image in range [0, 1].

    Args:
        image: Input image in range [0, 1]

    Returns:
        Contrast-enhanced image
    """
    uint8_image = (np.clip(image, 0.0, 1.0) * 255).astype(np.uint8)
    clahe = cv2.createCLAHE(clipLimit=2.0, tileGridSize=(4, 4))

    if uint8_image.ndim == 3:
        enhanced = np.zeros_like(uint8_image)
        for i in range(uint8_image.shape[2]):
            enhanced[:, :, i] = clahe.apply(np.ascontiguousarray(uint8_image[:, :, i]))
    else:
        enhanced = clahe.apply(uint8_image)

    return enhanced.astype(np.float32) / 255.0


def preprocess_region(image: np.ndarray, target_size: Tuple[int, int]) -> np.ndarray:
    """
    Preprocess an image region for model input.

    Args:
        image: Raw BGR (or grayscale) region
        target_size: Target size (width, height) for resizing

    Returns:
        Float32 array in CHW layout, ImageNet-normalised
    """
    if image is None or image.size == 0:
        return np.zeros((3, target_size[1], target_size[0]), dtype=np.float32)

    if image.ndim == 3 and image.shape[2] == 3:
        image = cv2.cvtColor(image, cv2.COLOR_BGR2RGB)
    elif image.ndim == 2:
        image = cv2.cvtColor(image, cv2.COLOR_GRAY2RGB)

    resized = cv2.resize(image, target_size, interpolation=cv2.INTER_AREA)
    normalized = apply_histogram_equalization(resized.astype(np.float32) / 255.0)
    chw = np.transpose(normalized, (2, 0, 1))
    return (chw - IMAGENET_MEAN) / IMAGENET_STD


def estimate_pupil_center(eye_region: np.ndarray) -> Tuple[float, float, float]:
    """
    Estimate the pupil position inside an eye region.

    Returns:
        (x, y, contrast): position normalised to the region in [0, 1] and the
        dark/bright contrast in [0, 1] used as a confidence proxy
    """
    if eye_region is None or eye_region.size == 0:
        return 0.5, 0.5, 0.0

    gray = np.ascontiguousarray(to_gray(eye_region))
    blurred = cv2.GaussianBlur(gray, (5, 5), 0)
    min_val, max_val, min_loc, _ = cv2.minMaxLoc(blurred)

    h, w = gray.shape[:2]
    pupil_x, pupil_y = min_loc
    contrast = float(max_val - min_val) / 255.0

    # Implausible positions near the border fall back to the centre
    if not (0.15 * w <= pupil_x <= 0.85 * w and 0.15 * h <= pupil_y <= 0.85 * h):
        return 0.5, 0.5, contrast * 0.5

    return pupil_x / max(w - 1, 1), pupil_y / max(h - 1, 1), contrast


def dark_fraction(image: np.ndarray, threshold: int = 60) -> float:
    """Fraction of pixels darker than ``threshold``."""
    if image is None or image.size == 0:
        return 0.0
    gray = to_gray(image)
    return float(np.count_nonzero(gray < threshold)) / gray.size


def edge_density(image: np.ndarray) -> Tuple[float, float]:
    """Mean horizontal and vertical gradient magnitude, scaled to [0, 1]."""
    if image is None or image.size == 0:
        return 0.0, 0.0
    gray = to_gray(image).astype(np.float32)
    gx = cv2.Sobel(gray, cv2.CV_32F, 1, 0, ksize=3)
    gy = cv2.Sobel(gray, cv2.CV_32F, 0, 1, ksize=3)
    scale = 4.0 * 255.0
    return float(np.mean(np.abs(gx))) / scale, float(np.mean(np.abs(gy))) / scale
