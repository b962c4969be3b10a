"""
Patch descriptors for interest points.

A descriptor summarises the appearance of a square patch around a point.
The base part is a coarse grid of mean-centred intensity samples, which
gives partial illumination invariance. The enhanced variant appends
per-channel colour samples, local horizontal/vertical intensity
differences and a gradient-orientation histogram of the patch.

Descriptors are only comparable when built with the same configuration;
the reference model records the configuration it was built with.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Union

import cv2
import numpy as np

from .feature import Point
from .image import to_grayscale, to_rgb

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class DescriptorConfiguration:
    """Configuration for the patch descriptor."""

    patch_size: int = 16
    sample_stride: int = 4
    enhanced: bool = True
    orientation_bins: int = 8

    @property
    def samples_per_side(self) -> int:
        return len(range(-(self.patch_size // 2), self.patch_size - self.patch_size // 2, self.sample_stride))

    @property
    def descriptor_length(self) -> int:
        samples = self.samples_per_side ** 2
        if not self.enhanced:
            return samples
        # intensity + RGB + (dx, dy) + orientation histogram
        return samples + 3 * samples + 2 * samples + self.orientation_bins


@dataclass
class Feature:
    """A detected point together with its descriptor."""

    point: Point
    descriptor: np.ndarray


def _sample(image: np.ndarray, ys: np.ndarray, xs: np.ndarray) -> np.ndarray:
    """Gather ``image[ys, xs]``; coordinates outside the image read as 0."""
    height, width = image.shape[:2]
    inside = (ys >= 0) & (ys < height) & (xs >= 0) & (xs < width)
    values = image[np.clip(ys, 0, height - 1), np.clip(xs, 0, width - 1)]
    if values.ndim > inside.ndim:
        inside = inside[..., np.newaxis]
    return np.where(inside, values, 0.0).astype(np.float32)


class DescriptorComputer:
    """Computes fixed-length patch descriptors."""

    def __init__(self, config: Optional[Union[Dict, DescriptorConfiguration]] = None):
        if isinstance(config, DescriptorConfiguration):
            self.config = config
        else:
            cfg_dict = dict(config or {})
            self.config = DescriptorConfiguration(**{
                k: v for k, v in cfg_dict.items()
                if k in DescriptorConfiguration.__dataclass_fields__
            })

        half = self.config.patch_size // 2
        offsets = np.arange(-half, self.config.patch_size - half, self.config.sample_stride)
        oy, ox = np.meshgrid(offsets, offsets, indexing="ij")
        self._sample_dy = oy.ravel()
        self._sample_dx = ox.ravel()

        dense = np.arange(-half, self.config.patch_size - half)
        dy, dx = np.meshgrid(dense, dense, indexing="ij")
        self._patch_dy = dy.ravel()
        self._patch_dx = dx.ravel()

    @property
    def descriptor_length(self) -> int:
        return self.config.descriptor_length

    def describe(self, image: np.ndarray, point: Point) -> np.ndarray:
        """Compute the descriptor of a single point."""
        return self.describe_many(image, [point])[0]

    def compute(self, image: np.ndarray, points: Sequence[Point]) -> List[Feature]:
        """Compute a :class:`Feature` for every point."""
        descriptors = self.describe_many(image, points)
        return [
            Feature(point=Point(float(p[0]), float(p[1])), descriptor=d)
            for p, d in zip(points, descriptors)
        ]

    def describe_many(self, image: np.ndarray, points) -> np.ndarray:
        """Compute descriptors for many points at once.

        Args:
            image: ``(H, W)`` or ``(H, W, C)`` uint8 pixels.
            points: ``(N, 2)`` array or sequence of ``(x, y)`` points.

        Returns:
            ``(N, descriptor_length)`` float32 array.
        """
        pts = np.asarray(points, dtype=np.float32).reshape(-1, 2)
        length = self.descriptor_length
        if len(pts) == 0:
            return np.empty((0, length), dtype=np.float32)

        gray = to_grayscale(image).astype(np.float32) / 255.0
        cx = np.rint(pts[:, 0]).astype(np.int64)[:, np.newaxis]
        cy = np.rint(pts[:, 1]).astype(np.int64)[:, np.newaxis]
        ys = cy + self._sample_dy[np.newaxis, :]
        xs = cx + self._sample_dx[np.newaxis, :]

        intensity = _sample(gray, ys, xs)
        centred = intensity - intensity.mean(axis=1, keepdims=True)
        if not self.config.enhanced:
            return centred.astype(np.float32)

        rgb = to_rgb(image).astype(np.float32) / 255.0
        colour = _sample(rgb, ys, xs).reshape(len(pts), -1)

        diff_x = _sample(gray, ys, xs + 1) - intensity
        diff_y = _sample(gray, ys + 1, xs) - intensity

        orientation = self._orientation_histograms(gray, cx, cy)

        descriptors = np.hstack((centred, colour, diff_x, diff_y, orientation))
        return descriptors.astype(np.float32)

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #
    def _orientation_histograms(self, gray: np.ndarray, cx: np.ndarray, cy: np.ndarray) -> np.ndarray:
        """Magnitude-weighted gradient orientation histogram per patch."""
        bins = self.config.orientation_bins
        gx = cv2.Sobel(gray, cv2.CV_32F, 1, 0, ksize=3)
        gy = cv2.Sobel(gray, cv2.CV_32F, 0, 1, ksize=3)
        magnitude, angle = cv2.cartToPolar(gx, gy)

        ys = cy + self._patch_dy[np.newaxis, :]
        xs = cx + self._patch_dx[np.newaxis, :]
        mags = _sample(magnitude, ys, xs)
        angles = _sample(angle, ys, xs)

        bin_index = (angles * (bins / (2.0 * np.pi))).astype(np.int64) % bins
        count = len(cx)
        flat_index = bin_index + bins * np.arange(count)[:, np.newaxis]
        histograms = np.bincount(
            flat_index.ravel(), weights=mags.ravel(), minlength=count * bins
        ).reshape(count, bins)

        totals = histograms.sum(axis=1, keepdims=True)
        return np.divide(
            histograms, totals, out=np.zeros_like(histograms), where=totals > 0
        ).astype(np.float32)
