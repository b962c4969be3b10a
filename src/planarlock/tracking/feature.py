"""
Interest point detection for planar target tracking.

The detector scores every interior pixel with an inverse-distance-weighted
3x3 gradient measure, bins candidates into a fixed cell grid and keeps the
strongest local maxima of each cell. Binning spreads the points over the
whole image instead of letting them cluster in the most textured region,
which the geometric verification stage depends on.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, NamedTuple, Optional, Tuple, Union

import cv2
import numpy as np

from .image import to_grayscale

LOGGER = logging.getLogger(__name__)


class Point(NamedTuple):
    """Pixel coordinates in the image the point was detected in."""

    x: float
    y: float


class InterestPoint(NamedTuple):
    """Detected point with its corner response (used only for ranking)."""

    x: float
    y: float
    response: float

    @property
    def point(self) -> Point:
        return Point(self.x, self.y)


class Sensitivity(Enum):
    """Detector sensitivity modes."""
    HIGH = "high"  # Reference images: lower cutoff, more points
    LOW = "low"  # Live frames: higher cutoff, fewer points


@dataclass
class DetectorConfiguration:
    """Configuration for the grid-binned corner detector."""

    grid_size: int = 10
    reference_grid_size: int = 20  # Finer binning for the one-off reference pass
    max_points: int = 500  # Budget for live frames
    reference_max_points: int = 2000  # Budget for the reference image

    # Corner score cutoffs per sensitivity mode
    high_sensitivity_threshold: float = 15.0
    low_sensitivity_threshold: float = 30.0

    min_points_per_cell: int = 2
    border_margin: int = 8  # Half the descriptor patch

    def threshold_for(self, sensitivity: Sensitivity) -> float:
        if sensitivity is Sensitivity.HIGH:
            return self.high_sensitivity_threshold
        return self.low_sensitivity_threshold


# (dy, dx, weight) for the eight neighbours, weight = 1 / (|dx| + |dy| + 1)
_NEIGHBOURS = tuple(
    (dy, dx, 1.0 / (abs(dx) + abs(dy) + 1))
    for dy in (-1, 0, 1)
    for dx in (-1, 0, 1)
    if dy or dx
)

_NMS_KERNEL = np.ones((3, 3), dtype=np.uint8)


def corner_scores(gray: np.ndarray) -> np.ndarray:
    """Compute the corner score of every pixel of a grayscale image.

    The score is the sum of absolute intensity differences to the eight
    neighbours, each weighted by ``1 / (|dx| + |dy| + 1)``.
    """
    gray_f = gray.astype(np.float32)
    height, width = gray_f.shape
    padded = cv2.copyMakeBorder(gray_f, 1, 1, 1, 1, cv2.BORDER_REPLICATE)
    scores = np.zeros_like(gray_f)
    for dy, dx, weight in _NEIGHBOURS:
        shifted = padded[1 + dy:1 + dy + height, 1 + dx:1 + dx + width]
        scores += weight * np.abs(shifted - gray_f)
    return scores


def _sort_by_response(xs: np.ndarray, ys: np.ndarray, responses: np.ndarray) -> np.ndarray:
    """Indices ordering points by descending response, then by y and x."""
    return np.lexsort((xs, ys, -responses))


class FeatureDetector:
    """Grid-binned corner detector with per-cell non-maximum suppression."""

    def __init__(self, config: Optional[Union[Dict, DetectorConfiguration]] = None):
        if isinstance(config, DetectorConfiguration):
            self.config = config
        else:
            cfg_dict = dict(config or {})
            self.config = DetectorConfiguration(**{
                k: v for k, v in cfg_dict.items()
                if k in DetectorConfiguration.__dataclass_fields__
            })

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #
    def detect(
        self,
        image: np.ndarray,
        max_points: Optional[int] = None,
        sensitivity: Union[str, Sensitivity] = Sensitivity.LOW,
        grid_size: Optional[int] = None,
    ) -> List[InterestPoint]:
        """Detect up to ``max_points`` interest points ranked by response."""
        points, responses = self.detect_array(image, max_points, sensitivity, grid_size)
        return [
            InterestPoint(float(x), float(y), float(r))
            for (x, y), r in zip(points, responses)
        ]

    def detect_array(
        self,
        image: np.ndarray,
        max_points: Optional[int] = None,
        sensitivity: Union[str, Sensitivity] = Sensitivity.LOW,
        grid_size: Optional[int] = None,
    ) -> Tuple[np.ndarray, np.ndarray]:
        """Array form of :meth:`detect`.

        Args:
            image: ``(H, W)`` gray or ``(H, W, C)`` RGB/RGBA uint8 pixels.
            max_points: Point budget; defaults to the live-frame budget.
            sensitivity: ``"high"`` for reference images, ``"low"`` for frames.
            grid_size: Cells per side; defaults to the live-frame grid.

        Returns:
            ``(points, responses)`` where points is an ``(N, 2)`` float32 array
            of ``(x, y)`` sorted by descending response.
        """
        sensitivity = Sensitivity(sensitivity)
        if max_points is None:
            max_points = self.config.max_points
        empty = (np.empty((0, 2), dtype=np.float32), np.empty(0, dtype=np.float32))
        if max_points <= 0:
            return empty

        gray = to_grayscale(image)
        height, width = gray.shape[:2]
        margin = max(int(self.config.border_margin), 1)
        if height <= 2 * margin or width <= 2 * margin:
            LOGGER.debug("Image %dx%d smaller than sampling window", width, height)
            return empty

        scores = corner_scores(gray)
        threshold = self.config.threshold_for(sensitivity)
        grid = max(int(self.config.grid_size if grid_size is None else grid_size), 1)
        per_cell = max(max_points // (grid * grid), self.config.min_points_per_cell, 1)

        row_edges = np.linspace(0, height, grid + 1).astype(int)
        col_edges = np.linspace(0, width, grid + 1).astype(int)

        xs_all: List[np.ndarray] = []
        ys_all: List[np.ndarray] = []
        responses_all: List[np.ndarray] = []

        for row in range(grid):
            y1 = max(row_edges[row], margin)
            y2 = min(row_edges[row + 1], height - margin)
            if y2 <= y1:
                continue
            for col in range(grid):
                x1 = max(col_edges[col], margin)
                x2 = min(col_edges[col + 1], width - margin)
                if x2 <= x1:
                    continue

                cell = np.ascontiguousarray(scores[y1:y2, x1:x2])
                # Dilation ignores pixels outside the cell
                neighbourhood_max = cv2.dilate(cell, _NMS_KERNEL)
                keep = (cell > threshold) & (cell >= neighbourhood_max)
                ys, xs = np.nonzero(keep)
                if ys.size == 0:
                    continue

                responses = cell[ys, xs]
                order = _sort_by_response(xs, ys, responses)[:per_cell]
                xs_all.append(xs[order] + x1)
                ys_all.append(ys[order] + y1)
                responses_all.append(responses[order])

        if not responses_all:
            return empty

        xs = np.concatenate(xs_all)
        ys = np.concatenate(ys_all)
        responses = np.concatenate(responses_all)
        order = _sort_by_response(xs, ys, responses)[:max_points]

        points = np.stack((xs[order], ys[order]), axis=1).astype(np.float32)
        LOGGER.debug(
            "Detected %d points (%s sensitivity, %d candidates)",
            len(points),
            sensitivity.value,
            len(responses),
        )
        return points, responses[order].astype(np.float32)
