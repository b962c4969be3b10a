"""
Geometric verification of descriptor matches.

Descriptor matching alone produces false positives on repetitive texture.
For a roughly fronto-parallel, non-rotated view of a planar target every
distance between two reference points is scaled by the same factor in the
frame. The verifier estimates that factor from random samples of matches
(median of the sample's pairwise ratios) and keeps the matches consistent
with it, RANSAC style.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple, Union

import numpy as np

from .matching import FeatureMatch
from .reference import ReferenceModel, normalized_pairwise_distances

LOGGER = logging.getLogger(__name__)


@dataclass
class VerifierConfiguration:
    """Configuration for scale-consistency verification."""

    # Random samples per frame. At 5, a scene with 2 outliers among 12
    # matches keeps an outlier in the result for a few percent of seeds.
    iterations: int = 5
    sample_size: int = 4
    scale_tolerance: float = 0.25  # Max relative deviation from the sample scale
    min_matches: int = 8
    degenerate_epsilon: float = 1e-6


@dataclass
class VerificationResult:
    """Output of :meth:`GeometricVerifier.verify`."""

    inliers: List[FeatureMatch] = field(default_factory=list)
    consistency_ratio: float = 0.0
    scale: Optional[float] = None
    translation: Optional[Tuple[float, float]] = None


class GeometricVerifier:
    """Keeps the subset of matches that agrees on a single global scale."""

    def __init__(
        self,
        config: Optional[Union[Dict, VerifierConfiguration]] = None,
        rng: Optional[np.random.Generator] = None,
    ):
        if isinstance(config, VerifierConfiguration):
            self.config = config
        else:
            cfg_dict = dict(config or {})
            self.config = VerifierConfiguration(**{
                k: v for k, v in cfg_dict.items()
                if k in VerifierConfiguration.__dataclass_fields__
            })
        self.rng = rng if rng is not None else np.random.default_rng()

    def verify(
        self,
        matches: Sequence[FeatureMatch],
        frame_points: np.ndarray,
        reference_points: np.ndarray,
        iterations: Optional[int] = None,
    ) -> VerificationResult:
        """Filter matches to a scale-consistent subset.

        Args:
            matches: Candidate correspondences.
            frame_points: ``(N, 2)`` points of the frame (query side).
            reference_points: ``(M, 2)`` points of the reference (train side).
            iterations: Number of random samples; defaults to the configuration.

        Returns:
            Inliers of the best-scoring sample and their share of all matches.
        """
        total = len(matches)
        if total < max(self.config.min_matches, self.config.sample_size):
            return VerificationResult()

        iterations = self.config.iterations if iterations is None else iterations
        frame = np.asarray(frame_points, dtype=np.float64).reshape(-1, 2)
        reference = np.asarray(reference_points, dtype=np.float64).reshape(-1, 2)
        frame_pts = frame[[m.query_index for m in matches]]
        ref_pts = reference[[m.train_index for m in matches]]

        best_mask: Optional[np.ndarray] = None
        best_ratio = 0.0
        best_scale: Optional[float] = None

        for _ in range(max(iterations, 1)):
            sample = self.rng.choice(total, size=self.config.sample_size, replace=False)
            scale = self._sample_scale(frame_pts[sample], ref_pts[sample])
            if scale is None:
                continue

            mask = self._consistent_mask(frame_pts, ref_pts, sample, scale)
            ratio = float(mask.sum()) / total
            if ratio > best_ratio:
                best_ratio = ratio
                best_mask = mask
                best_scale = scale

        if best_mask is None:
            LOGGER.debug("No non-degenerate sample among %d matches", total)
            return VerificationResult()

        inliers = [m for m, keep in zip(matches, best_mask) if keep]
        offsets = frame_pts[best_mask] - best_scale * ref_pts[best_mask]
        translation = tuple(float(v) for v in np.median(offsets, axis=0))
        LOGGER.debug(
            "Verified %d/%d matches (scale %.3f)", len(inliers), total, best_scale
        )
        return VerificationResult(
            inliers=inliers,
            consistency_ratio=best_ratio,
            scale=float(best_scale),
            translation=translation,
        )

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #
    def _sample_scale(self, frame_sample: np.ndarray, ref_sample: np.ndarray) -> Optional[float]:
        """Median frame/reference distance ratio over the sample's pairs."""
        rows, cols = np.triu_indices(len(frame_sample), 1)
        ref_d = np.linalg.norm(ref_sample[rows] - ref_sample[cols], axis=1)
        frame_d = np.linalg.norm(frame_sample[rows] - frame_sample[cols], axis=1)
        valid = ref_d > self.config.degenerate_epsilon
        if not valid.any():
            return None
        scale = float(np.median(frame_d[valid] / ref_d[valid]))
        if not np.isfinite(scale) or scale <= self.config.degenerate_epsilon:
            return None
        return scale

    def _consistent_mask(
        self,
        frame_pts: np.ndarray,
        ref_pts: np.ndarray,
        sample: np.ndarray,
        scale: float,
    ) -> np.ndarray:
        """Candidates whose scale to every sample match is within tolerance."""
        ref_d = np.linalg.norm(ref_pts[:, np.newaxis, :] - ref_pts[np.newaxis, sample, :], axis=2)
        frame_d = np.linalg.norm(frame_pts[:, np.newaxis, :] - frame_pts[np.newaxis, sample, :], axis=2)
        valid = ref_d > self.config.degenerate_epsilon
        ratios = frame_d / np.where(valid, ref_d, 1.0)
        deviation = np.abs(ratios - scale) / scale
        rejected = valid & (deviation > self.config.scale_tolerance)
        return valid.any(axis=1) & ~rejected.any(axis=1)


# ---------------------------------------------------------------------- #
# Spatial helpers
# ---------------------------------------------------------------------- #
def bounding_box(points: np.ndarray) -> Optional[Tuple[float, float, float, float]]:
    """Return ``(x_min, y_min, x_max, y_max)`` of the points, or ``None``."""
    pts = np.asarray(points, dtype=np.float32).reshape(-1, 2)
    if len(pts) == 0:
        return None
    x_min, y_min = pts.min(axis=0)
    x_max, y_max = pts.max(axis=0)
    return float(x_min), float(y_min), float(x_max), float(y_max)


def quadrant_count(points: np.ndarray, min_points: int = 1) -> int:
    """Count quadrants around the bounding-box centre holding ``min_points``.

    Points lying exactly on a dividing line count towards the lower/right
    side. Clusters confined to one corner occupy fewer quadrants.
    """
    box = bounding_box(points)
    if box is None:
        return 0
    pts = np.asarray(points, dtype=np.float32).reshape(-1, 2)
    cx = (box[0] + box[2]) / 2.0
    cy = (box[1] + box[3]) / 2.0
    quadrant = (pts[:, 0] >= cx).astype(int) + 2 * (pts[:, 1] >= cy).astype(int)
    counts = np.bincount(quadrant, minlength=4)
    return int((counts >= max(min_points, 1)).sum())


def target_region(
    scale: Optional[float],
    translation: Optional[Tuple[float, float]],
    width: int,
    height: int,
) -> Optional[np.ndarray]:
    """Corners of the reference rectangle placed in frame coordinates.

    Only scale and translation are modelled, so the region is an
    axis-aligned rectangle ordered top-left, top-right, bottom-right,
    bottom-left.
    """
    if scale is None or translation is None:
        return None
    corners = np.array(
        [[0, 0], [width, 0], [width, height], [0, height]], dtype=np.float32
    )
    return (corners * scale + np.asarray(translation, dtype=np.float32)).astype(np.float32)


def fingerprint_consistency(
    inliers: Sequence[FeatureMatch],
    frame_points: np.ndarray,
    reference: ReferenceModel,
    min_points: int = 3,
) -> Optional[float]:
    """Agreement between matched fingerprint points and the stored fingerprint.

    Returns a score in [0, 1] (1 means identical normalised layout), or
    ``None`` when fewer than ``min_points`` fingerprint points were matched.
    """
    matrix = reference.fingerprint_matrix()
    if matrix is None:
        return None

    position = {int(idx): pos for pos, idx in enumerate(reference.fingerprint_indices)}
    matched: Dict[int, int] = {}
    for m in inliers:
        pos = position.get(m.train_index)
        if pos is not None and pos not in matched:
            matched[pos] = m.query_index
    if len(matched) < max(min_points, 2):
        return None

    positions = sorted(matched)
    sub = matrix[np.ix_(positions, positions)][np.triu_indices(len(positions), 1)]
    largest = float(sub.max())
    if largest <= 1e-9:
        return None
    expected = sub / largest

    frame = np.asarray(frame_points, dtype=np.float32).reshape(-1, 2)
    observed = normalized_pairwise_distances(frame[[matched[p] for p in positions]])
    score = 1.0 - float(np.mean(np.abs(observed - expected)))
    return float(np.clip(score, 0.0, 1.0))
