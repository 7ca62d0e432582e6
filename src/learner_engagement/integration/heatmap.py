"""
Attention Heatmap Generation

Batch synthesis of a gaze density map from the gaze trails stored in a
session's History. Each point adds a confidence-weighted Gaussian blob of
fixed radius to a grid the size of the screen.
"""

import logging
import time
from typing import Any, Dict, Iterable, List, Optional

import numpy as np

from ..types import AttentionHeatmap, EngagementSample, GazePoint

logger = logging.getLogger(__name__)


def gaussian_kernel(radius: int, sigma: float) -> np.ndarray:
    """Square Gaussian kernel of side 2*radius+1, truncated to a disc."""
    coords = np.arange(-radius, radius + 1, dtype=np.float32)
    x_coords, y_coords = np.meshgrid(coords, coords)
    distance_sq = x_coords ** 2 + y_coords ** 2
    kernel = np.exp(-distance_sq / (2 * sigma ** 2))
    kernel[distance_sq > radius ** 2] = 0.0
    return kernel.astype(np.float32)


def collect_gaze_points(history: Iterable[EngagementSample], start_ms: int, end_ms: int) -> List[GazePoint]:
    """
    Distinct gaze points whose own timestamp lies in [start_ms, end_ms].

    Consecutive samples carry overlapping trails, so points are de-duplicated
    by timestamp. Result is ordered by timestamp.
    """
    points: Dict[int, GazePoint] = {}
    for sample in history:
        for point in sample.gaze_trail:
            if start_ms <= point.timestamp_ms <= end_ms:
                points.setdefault(point.timestamp_ms, point)
    return [points[ts] for ts in sorted(points)]


class AttentionHeatmapGenerator:
    """
    Gaussian-splat heatmap over normalised gaze points.

    Deterministic for a given History slice and window; History itself is
    never modified.
    """

    def __init__(self, width: int = 1280, height: int = 720, radius: int = 50, sigma: float = 20.0):
        """
        Initialize the generator.

        Args:
            width: Grid width (screen pixels)
            height: Grid height (screen pixels)
            radius: Kernel radius in pixels
            sigma: Gaussian sigma in pixels
        """
        if width <= 0 or height <= 0:
            raise ValueError("Heatmap dimensions must be positive")
        self.width = width
        self.height = height
        self.radius = radius
        self.sigma = sigma
        self.kernel = gaussian_kernel(radius, sigma)

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> 'AttentionHeatmapGenerator':
        heatmap = config.get('heatmap', {})
        return cls(
            width=heatmap.get('width', 1280),
            height=heatmap.get('height', 720),
            radius=heatmap.get('radius', 50),
            sigma=heatmap.get('sigma', 20.0)
        )

    def splat(self, density: np.ndarray, point: GazePoint):
        """Add one confidence-weighted kernel centred on a gaze point."""
        cx = int(round(point.x * (self.width - 1)))
        cy = int(round(point.y * (self.height - 1)))
        r = self.radius

        x0, x1 = max(0, cx - r), min(self.width, cx + r + 1)
        y0, y1 = max(0, cy - r), min(self.height, cy + r + 1)
        if x0 >= x1 or y0 >= y1:
            return
        kx0, ky0 = x0 - (cx - r), y0 - (cy - r)
        density[y0:y1, x0:x1] += point.confidence * self.kernel[ky0:ky0 + (y1 - y0), kx0:kx0 + (x1 - x0)]

    def generate(self, history: Iterable[EngagementSample], duration_ms: int,
                 now_ms: Optional[int] = None) -> AttentionHeatmap:
        """
        Build the heatmap for the last ``duration_ms`` milliseconds.

        Args:
            history: Snapshot of published samples
            duration_ms: Window length
            now_ms: Window end (defaults to the current wall-clock time)

        Returns:
            AttentionHeatmap with a read-only density grid of shape (height, width)
        """
        if duration_ms < 0:
            raise ValueError("duration_ms must be non-negative")
        end_ms = int(time.time() * 1000) if now_ms is None else int(now_ms)
        start_ms = end_ms - int(duration_ms)

        points = collect_gaze_points(history, start_ms, end_ms)
        density = np.zeros((self.height, self.width), dtype=np.float32)
        for point in points:
            self.splat(density, point)
        density.setflags(write=False)

        logger.debug(f"Heatmap over {len(points)} gaze points ({start_ms}-{end_ms} ms)")
        return AttentionHeatmap(
            width=self.width,
            height=self.height,
            density=density,
            window_start_ms=start_ms,
            window_end_ms=end_ms,
            point_count=len(points),
            generated_at=time.time()
        )
