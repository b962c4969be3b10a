"""
Descriptor matching between a camera frame and the reference model.

Each frame descriptor is compared against every reference descriptor by L2
distance. A correspondence is kept only when the nearest reference
descriptor is clearly closer than the second nearest (Lowe's ratio test),
which rejects points whose appearance is repeated elsewhere on the target.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Union

import cv2
import numpy as np

from .descriptor import Feature
from .reference import ReferenceModel

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class FeatureMatch:
    """Correspondence between a frame feature and a reference point."""

    query_index: int  # Index into the frame's features
    train_index: int  # Index into the reference model
    distance: float


@dataclass
class MatcherConfiguration:
    """Configuration for ratio-test descriptor matching."""

    ratio_threshold: float = 0.7  # Lower is stricter
    max_matches: int = 100
    min_matches: int = 8
    # Acceptance distance when the reference holds a single descriptor
    single_candidate_max_distance: float = 0.25


def _descriptor_matrix(features: Union[np.ndarray, Sequence[Feature]]) -> np.ndarray:
    if isinstance(features, np.ndarray):
        matrix = features
    elif len(features) and isinstance(features[0], Feature):
        matrix = np.stack([f.descriptor for f in features])
    else:
        matrix = np.asarray(features)
    if matrix.size == 0:
        return np.empty((0, 0), dtype=np.float32)
    return np.ascontiguousarray(matrix, dtype=np.float32).reshape(len(matrix), -1)


class DescriptorMatcher:
    """Brute-force L2 matcher with ambiguity rejection."""

    def __init__(self, config: Optional[Union[Dict, MatcherConfiguration]] = None):
        if isinstance(config, MatcherConfiguration):
            self.config = config
        else:
            cfg_dict = dict(config or {})
            self.config = MatcherConfiguration(**{
                k: v for k, v in cfg_dict.items()
                if k in MatcherConfiguration.__dataclass_fields__
            })
        self.matcher = cv2.BFMatcher(cv2.NORM_L2, crossCheck=False)

    def match(
        self,
        frame_features: Union[np.ndarray, Sequence[Feature]],
        reference: ReferenceModel,
        ratio_threshold: Optional[float] = None,
    ) -> List[FeatureMatch]:
        """Match frame features against the reference model.

        Returns:
            Accepted matches sorted by ascending distance, at most
            ``max_matches`` of them, or an empty list when fewer than
            ``min_matches`` survive the ratio test.
        """
        matches = self.match_descriptors(
            frame_features, reference.descriptors, ratio_threshold
        )
        if len(matches) < self.config.min_matches:
            LOGGER.debug(
                "Only %d descriptor matches (< %d), treating as no target",
                len(matches),
                self.config.min_matches,
            )
            return []
        return matches[:self.config.max_matches]

    def match_descriptors(
        self,
        query: Union[np.ndarray, Sequence[Feature]],
        train: Union[np.ndarray, Sequence[Feature]],
        ratio_threshold: Optional[float] = None,
    ) -> List[FeatureMatch]:
        """Ratio-test matching without the minimum-count gate or the cap."""
        ratio = self.config.ratio_threshold if ratio_threshold is None else ratio_threshold
        query_matrix = _descriptor_matrix(query)
        train_matrix = _descriptor_matrix(train)
        if len(query_matrix) == 0 or len(train_matrix) == 0:
            return []
        if query_matrix.shape[1] != train_matrix.shape[1]:
            raise ValueError(
                f"Descriptor lengths differ: {query_matrix.shape[1]} vs {train_matrix.shape[1]}."
            )

        k = 2 if len(train_matrix) >= 2 else 1
        knn_matches = self.matcher.knnMatch(query_matrix, train_matrix, k=k)

        accepted: List[FeatureMatch] = []
        for match_pair in knn_matches:
            if len(match_pair) >= 2:
                best, second = match_pair[0], match_pair[1]
                if best.distance < ratio * second.distance:
                    accepted.append(FeatureMatch(best.queryIdx, best.trainIdx, float(best.distance)))
            elif len(match_pair) == 1:
                only = match_pair[0]
                if only.distance < self.config.single_candidate_max_distance:
                    accepted.append(FeatureMatch(only.queryIdx, only.trainIdx, float(only.distance)))

        accepted.sort(key=lambda m: (m.distance, m.query_index))
        return accepted
