"""
Reference model construction.

The reference model is built once per tracking session from the target
image and is read-only afterwards. Besides the points and descriptors used
for matching it carries two summaries used as secondary verification
signals: a 64-bin colour histogram and a spatial fingerprint made of the
normalised pairwise distances of a well-spread subset of points.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Optional, Union

import cv2
import numpy as np

from .descriptor import DescriptorComputer, DescriptorConfiguration
from .feature import FeatureDetector, Sensitivity
from .image import alpha_channel, load_pixels, to_rgb

LOGGER = logging.getLogger(__name__)


@dataclass
class ReferenceConfiguration:
    """Configuration for reference model summaries."""

    histogram_bins: int = 4  # Per RGB channel
    alpha_threshold: int = 10  # Pixels with alpha <= this are skipped
    fingerprint_points: int = 30
    fingerprint_grid_cols: int = 6
    fingerprint_grid_rows: int = 5
    fingerprint_seed: int = 0


@dataclass(frozen=True, eq=False)
class ReferenceModel:
    """Read-only description of the tracking target."""

    target_width: int
    target_height: int
    points: np.ndarray  # shape (N, 2)
    descriptors: np.ndarray  # shape (N, D)
    responses: Optional[np.ndarray] = None
    color_histogram: Optional[np.ndarray] = None  # shape (bins**3,)
    spatial_fingerprint: Optional[np.ndarray] = None  # condensed pairwise distances
    fingerprint_indices: np.ndarray = field(default_factory=lambda: np.empty(0, dtype=np.int64))
    descriptor_config: DescriptorConfiguration = field(default_factory=DescriptorConfiguration)

    def __post_init__(self):
        if len(self.points) != len(self.descriptors):
            raise ValueError(
                f"{len(self.points)} points but {len(self.descriptors)} descriptors."
            )
        for name in ("points", "descriptors", "responses", "color_histogram",
                     "spatial_fingerprint", "fingerprint_indices"):
            value = getattr(self, name)
            if isinstance(value, np.ndarray):
                value.setflags(write=False)

    @property
    def point_count(self) -> int:
        return len(self.points)

    def fingerprint_matrix(self) -> Optional[np.ndarray]:
        """Expand the condensed fingerprint into a square distance matrix."""
        if self.spatial_fingerprint is None or len(self.fingerprint_indices) < 2:
            return None
        count = len(self.fingerprint_indices)
        matrix = np.zeros((count, count), dtype=np.float32)
        matrix[np.triu_indices(count, 1)] = self.spatial_fingerprint
        return matrix + matrix.T


def compute_color_histogram(
    pixels: np.ndarray,
    bins: int = 4,
    alpha_threshold: int = 10,
) -> np.ndarray:
    """Normalised joint RGB histogram with ``bins`` levels per channel.

    Near-transparent pixels are not counted. An image without any counted
    pixel yields an all-zero histogram.
    """
    rgb = to_rgb(pixels)
    alpha = alpha_channel(pixels)
    mask = None
    if alpha is not None:
        mask = np.ascontiguousarray((alpha > alpha_threshold).astype(np.uint8) * 255)

    hist = cv2.calcHist(
        [rgb], [0, 1, 2], mask, [bins, bins, bins], [0, 256, 0, 256, 0, 256]
    ).ravel()
    total = float(hist.sum())
    if total <= 0:
        return np.zeros(bins ** 3, dtype=np.float32)
    return (hist / total).astype(np.float32)


def histogram_similarity(first: np.ndarray, second: np.ndarray) -> float:
    """Histogram intersection of two normalised histograms, in [0, 1]."""
    score = cv2.compareHist(
        np.asarray(first, dtype=np.float32),
        np.asarray(second, dtype=np.float32),
        cv2.HISTCMP_INTERSECT,
    )
    return float(np.clip(score, 0.0, 1.0))


def normalized_pairwise_distances(points: np.ndarray) -> np.ndarray:
    """Condensed pairwise distances divided by their maximum."""
    pts = np.asarray(points, dtype=np.float32).reshape(-1, 2)
    count = len(pts)
    if count < 2:
        return np.empty(0, dtype=np.float32)
    diff = pts[:, np.newaxis, :] - pts[np.newaxis, :, :]
    distances = np.linalg.norm(diff, axis=2)[np.triu_indices(count, 1)]
    largest = float(distances.max())
    if largest <= 1e-9:
        return np.zeros_like(distances, dtype=np.float32)
    return (distances / largest).astype(np.float32)


def select_fingerprint_points(
    points: np.ndarray,
    width: int,
    height: int,
    config: ReferenceConfiguration,
) -> np.ndarray:
    """Pick a well-spread subset of points for the spatial fingerprint.

    Takes the strongest point of every cell of a coarse grid (``points`` is
    expected in descending response order), then tops up with randomly
    chosen remaining points when the grid is under-populated.
    """
    target = min(config.fingerprint_points, len(points))
    if target <= 0:
        return np.empty(0, dtype=np.int64)

    cols = max(config.fingerprint_grid_cols, 1)
    rows = max(config.fingerprint_grid_rows, 1)
    cell_x = np.clip((points[:, 0] * cols / width).astype(int), 0, cols - 1)
    cell_y = np.clip((points[:, 1] * rows / height).astype(int), 0, rows - 1)
    cell_ids = cell_y * cols + cell_x

    _, first_in_cell = np.unique(cell_ids, return_index=True)
    selected = sorted(first_in_cell.tolist())[:target]

    if len(selected) < target:
        rng = np.random.default_rng(config.fingerprint_seed)
        remaining = np.setdiff1d(np.arange(len(points)), selected)
        fill = rng.choice(remaining, size=target - len(selected), replace=False)
        selected.extend(int(i) for i in fill)

    return np.asarray(selected, dtype=np.int64)


class ReferenceModelBuilder:
    """Builds :class:`ReferenceModel` instances from reference images."""

    def __init__(
        self,
        detector: Optional[FeatureDetector] = None,
        descriptor: Optional[DescriptorComputer] = None,
        config: Optional[Union[Dict, ReferenceConfiguration]] = None,
    ):
        self.detector = detector or FeatureDetector()
        self.descriptor = descriptor or DescriptorComputer()
        if isinstance(config, ReferenceConfiguration):
            self.config = config
        else:
            cfg_dict = dict(config or {})
            self.config = ReferenceConfiguration(**{
                k: v for k, v in cfg_dict.items()
                if k in ReferenceConfiguration.__dataclass_fields__
            })

    def build(self, image, width: int, height: int) -> ReferenceModel:
        """Build the reference model of a target image.

        Raises:
            EmptyImageError: If width or height is zero.
            InvalidImageError: If the pixel buffer is unusable.
        """
        pixels = load_pixels(image, width, height)

        points, responses = self.detector.detect_array(
            pixels,
            max_points=self.detector.config.reference_max_points,
            sensitivity=Sensitivity.HIGH,
            grid_size=self.detector.config.reference_grid_size,
        )
        descriptors = self.descriptor.describe_many(pixels, points)

        fingerprint_indices = select_fingerprint_points(points, width, height, self.config)
        fingerprint = None
        if len(fingerprint_indices) >= 2:
            fingerprint = normalized_pairwise_distances(points[fingerprint_indices])

        histogram = compute_color_histogram(
            pixels, self.config.histogram_bins, self.config.alpha_threshold
        )

        model = ReferenceModel(
            target_width=int(width),
            target_height=int(height),
            points=points,
            descriptors=descriptors,
            responses=responses,
            color_histogram=histogram,
            spatial_fingerprint=fingerprint,
            fingerprint_indices=fingerprint_indices,
            descriptor_config=self.descriptor.config,
        )
        if model.point_count == 0:
            LOGGER.warning("Reference image %dx%d has no detectable features", width, height)
        else:
            LOGGER.info(
                "Reference model built: %dx%d, %d points, descriptor length %d",
                width,
                height,
                model.point_count,
                descriptors.shape[1],
            )
        return model
