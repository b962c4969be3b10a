"""
Temporal confidence filtering of per-frame match evidence.

Single-frame match counts are noisy; showing the AR overlay whenever one
frame happens to match makes it flicker. The state machine below turns the
per-frame evidence into a stable decision with two layers of hysteresis:

- asymmetric thresholds on a moving average of inlier counts (a higher
  count is needed to start tracking than to keep tracking), and
- a consecutive-good-frame counter that must reach ``required_frames``
  before the state is promoted to ``HIGH``, plus a minimum dwell time
  between changes of the tracking decision.

Policy on failure is a hard reset: the first frame that fails the current
thresholds drops the state to ``NONE`` and clears the counter.
"""

from __future__ import annotations

import logging
import math
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Deque, Optional

LOGGER = logging.getLogger(__name__)


class TrackingState(Enum):
    """Confidence levels, only HIGH authorises the overlay."""
    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass
class ConfidenceConfig:
    """Configuration for the confidence state machine."""

    history_size: int = 5  # Moving-average window, in frames
    start_threshold: float = 12.0  # Average inliers needed to start tracking
    stop_threshold: float = 8.0  # Average inliers needed to keep tracking
    required_frames: int = 8  # Consecutive good frames before HIGH
    medium_fraction: float = 0.5  # Share of required_frames that maps to MEDIUM
    min_dwell_frames: int = 5  # Min frames between tracking decision changes
    min_match_quality: float = 0.4
    min_quadrants: int = 4
    min_points_per_quadrant: int = 1

    # Match quality blend
    inlier_weight: float = 0.4
    consistency_weight: float = 0.4
    color_weight: float = 0.2


@dataclass
class FrameEvidence:
    """Per-frame input of the state machine."""

    inlier_count: int
    match_quality: float
    well_distributed: bool


def compute_match_quality(
    inlier_ratio: float,
    consistency_ratio: float,
    color_score: Optional[float],
    config: ConfidenceConfig,
) -> float:
    """Blend match signals into a single quality score in [0, 1].

    When no colour score is available its weight is dropped and the other
    weights are renormalised. Non-finite inputs yield 0.
    """
    terms = [
        (inlier_ratio, config.inlier_weight),
        (consistency_ratio, config.consistency_weight),
    ]
    if color_score is not None:
        terms.append((color_score, config.color_weight))

    total_weight = sum(weight for _, weight in terms)
    if total_weight <= 0:
        return 0.0
    quality = sum(value * weight for value, weight in terms) / total_weight
    if not math.isfinite(quality):
        return 0.0
    return min(max(quality, 0.0), 1.0)


class ConfidenceStateMachine:
    """Converts noisy per-frame evidence into a stable tracking state."""

    def __init__(self, config: Optional[ConfidenceConfig] = None):
        self.config = config or ConfidenceConfig()
        self.match_history: Deque[int] = deque(maxlen=max(self.config.history_size, 1))
        self.state = TrackingState.NONE
        self.consecutive_good_frames = 0
        self.frames_since_change = 0  # Frames since the tracking decision last changed

    def reset(self):
        """Reset to the initial NONE state."""
        self.match_history.clear()
        self.state = TrackingState.NONE
        self.consecutive_good_frames = 0
        self.frames_since_change = 0

    @property
    def is_tracking(self) -> bool:
        return self.state is TrackingState.HIGH

    @property
    def average_match_count(self) -> float:
        if not self.match_history:
            return 0.0
        return sum(self.match_history) / len(self.match_history)

    def update(self, evidence: FrameEvidence) -> TrackingState:
        """Feed one frame of evidence and return the new state."""
        self.frames_since_change += 1
        self.match_history.append(max(int(evidence.inlier_count), 0))
        average = self.average_match_count

        threshold = self.config.stop_threshold if self.is_tracking else self.config.start_threshold
        quality = evidence.match_quality if math.isfinite(evidence.match_quality) else 0.0
        good = (
            quality >= self.config.min_match_quality
            and evidence.well_distributed
            and average >= threshold
        )

        if not good:
            if self.consecutive_good_frames:
                LOGGER.debug(
                    "Bad frame after %d good frames (quality %.2f, avg %.1f < %.1f or spread=%s)",
                    self.consecutive_good_frames,
                    quality,
                    average,
                    threshold,
                    evidence.well_distributed,
                )
            self.consecutive_good_frames = 0
            self._set_state(TrackingState.NONE)
            return self.state

        self.consecutive_good_frames += 1
        self._set_state(self._level_for(self.consecutive_good_frames))
        return self.state

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #
    def _level_for(self, count: int) -> TrackingState:
        required = max(self.config.required_frames, 1)
        if count >= required:
            if self.is_tracking or self.frames_since_change >= self.config.min_dwell_frames:
                return TrackingState.HIGH
            return TrackingState.MEDIUM
        if count >= math.ceil(required * self.config.medium_fraction):
            return TrackingState.MEDIUM
        return TrackingState.LOW

    def _set_state(self, new_state: TrackingState):
        if new_state is self.state:
            return
        was_tracking = self.is_tracking
        previous = self.state
        self.state = new_state
        if was_tracking != self.is_tracking:
            self.frames_since_change = 0
            LOGGER.info(
                "Tracking %s (%s -> %s)",
                "acquired" if self.is_tracking else "lost",
                previous.value,
                new_state.value,
            )
        else:
            LOGGER.debug("Confidence %s -> %s", previous.value, new_state.value)
