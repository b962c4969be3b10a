"""
Tracker sessions: the per-frame pipeline and the external interface.

A session owns one read-only reference model and all temporal state
(confidence counters, moving averages, random source of the verifier).
The host drives it once per display refresh with the latest camera frame;
frames arriving faster than the minimum interval are skipped, not queued.

Typical use::

    model = build_reference_model(rgba, width, height)
    session = create_session(model)
    result = process_frame(session, frame_rgba, frame_width, frame_height)
    if result.is_tracking:
        place_overlay(result.target_region)
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field, replace
from typing import Callable, Dict, List, Optional, Tuple

import numpy as np

from .confidence import (
    ConfidenceConfig,
    ConfidenceStateMachine,
    FrameEvidence,
    TrackingState,
    compute_match_quality,
)
from .errors import SessionClosedError
from .tracking.descriptor import DescriptorComputer
from .tracking.feature import FeatureDetector, Sensitivity
from .tracking.image import load_pixels
from .tracking.matching import DescriptorMatcher, FeatureMatch
from .tracking.reference import (
    ReferenceModel,
    ReferenceModelBuilder,
    compute_color_histogram,
    histogram_similarity,
)
from .tracking.verification import (
    GeometricVerifier,
    bounding_box,
    fingerprint_consistency,
    quadrant_count,
    target_region,
)

LOGGER = logging.getLogger(__name__)


@dataclass
class SessionConfiguration:
    """Session-level settings."""

    min_frame_interval: float = 0.05  # Seconds between processed frames
    use_color: bool = True  # Blend colour similarity into match quality
    min_fingerprint_points: int = 3


@dataclass
class TrackingInfo:
    """Diagnostic record describing how a frame was processed."""

    target_point_count: int = 0
    frame_point_count: int = 0
    descriptor_match_count: int = 0
    inlier_ratio: float = 0.0
    match_quality: float = 0.0
    color_score: Optional[float] = None
    fingerprint_score: Optional[float] = None
    quadrant_count: int = 0
    average_match_count: float = 0.0
    processing_time_ms: float = 0.0


@dataclass
class TrackingResult:
    """Tracking decision and geometry for one frame."""

    is_tracking: bool = False
    confidence: TrackingState = TrackingState.NONE
    inliers: List[FeatureMatch] = field(default_factory=list)
    frame_points: np.ndarray = field(default_factory=lambda: np.empty((0, 2), dtype=np.float32))
    info: TrackingInfo = field(default_factory=TrackingInfo)
    scale: Optional[float] = None
    bounding_box: Optional[Tuple[float, float, float, float]] = None
    target_region: Optional[np.ndarray] = None  # (4, 2) corners in frame pixels
    frame_index: int = 0
    skipped: bool = False


@dataclass
class SessionMetrics:
    """Accumulated session counters."""

    total_frames: int = 0
    processed_frames: int = 0
    skipped_frames: int = 0
    tracking_frames: int = 0
    state_changes: int = 0
    avg_processing_time_ms: float = 0.0


def _section(config: Optional[Dict], name: str) -> Dict:
    return dict((config or {}).get(name) or {})


def _dataclass_from(cls, values: Dict):
    return cls(**{k: v for k, v in values.items() if k in cls.__dataclass_fields__})


class TrackerSession:
    """Tracks one reference target across a stream of frames."""

    def __init__(
        self,
        reference_model: ReferenceModel,
        config: Optional[Dict] = None,
        rng: Optional[np.random.Generator] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if reference_model is None:
            raise ValueError("A reference model is required.")
        self.reference = reference_model
        self.config = _dataclass_from(SessionConfiguration, _section(config, "session"))

        self.detector = FeatureDetector(_section(config, "detector"))
        # Frame descriptors must be built exactly like the reference ones
        self.descriptor = DescriptorComputer(reference_model.descriptor_config)
        self.matcher = DescriptorMatcher(_section(config, "matcher"))
        self.verifier = GeometricVerifier(_section(config, "verifier"), rng=rng)
        self.confidence = ConfidenceStateMachine(
            _dataclass_from(ConfidenceConfig, _section(config, "confidence"))
        )

        self.clock = clock
        self.metrics = SessionMetrics()
        self.frame_index = 0
        self._closed = False
        self._last_timestamp: Optional[float] = None
        self._last_result: Optional[TrackingResult] = None

        LOGGER.info(
            "Tracker session created: target %dx%d with %d points",
            reference_model.target_width,
            reference_model.target_height,
            reference_model.point_count,
        )

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #
    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def state(self) -> TrackingState:
        return self.confidence.state

    @property
    def is_tracking(self) -> bool:
        return self.confidence.is_tracking

    def close(self):
        """Stop the session; further frames are refused."""
        if not self._closed:
            self._closed = True
            LOGGER.info("Tracker session closed after %d frames", self.metrics.total_frames)

    def reset(self):
        """Drop temporal state while keeping the reference model."""
        self.confidence.reset()
        self.frame_index = 0
        self._last_timestamp = None
        self._last_result = None
        self.metrics = SessionMetrics()

    def process_frame(
        self,
        frame,
        width: int,
        height: int,
        timestamp: Optional[float] = None,
    ) -> TrackingResult:
        """Run the tracking pipeline on one frame.

        Args:
            frame: RGBA (or RGB/gray) uint8 pixels, as array or flat buffer.
            width: Frame width in pixels.
            height: Frame height in pixels.
            timestamp: Frame time in seconds; defaults to the session clock.

        Returns:
            The tracking result. A frame without a visible target is a
            normal ``is_tracking=False`` result.

        Raises:
            SessionClosedError: If the session was closed.
            EmptyImageError: If width or height is zero.
            InvalidImageError: If the pixel buffer is unusable.
        """
        if self._closed:
            raise SessionClosedError("Cannot process frames on a closed session.")
        pixels = load_pixels(frame, width, height)

        now = self.clock() if timestamp is None else float(timestamp)
        self.metrics.total_frames += 1
        if self._last_timestamp is not None and now < self._last_timestamp:
            # Host clock was reset or a replay restarted: start a new timeline
            LOGGER.info(
                "Frame timestamp went backwards (%.3f s -> %.3f s), restarting throttle",
                self._last_timestamp,
                now,
            )
        elif (
            self._last_timestamp is not None
            and now - self._last_timestamp < self.config.min_frame_interval
        ):
            self.metrics.skipped_frames += 1
            LOGGER.debug("Frame skipped (%.1f ms since last)", (now - self._last_timestamp) * 1000)
            return self._skipped_result()
        self._last_timestamp = now

        started = time.perf_counter()
        self.frame_index += 1
        result = self._run_pipeline(pixels)
        elapsed_ms = (time.perf_counter() - started) * 1000.0
        result.info.processing_time_ms = elapsed_ms

        self._update_metrics(result, elapsed_ms)
        self._last_result = result
        return result

    # ------------------------------------------------------------------ #
    # Pipeline
    # ------------------------------------------------------------------ #
    def _run_pipeline(self, pixels: np.ndarray) -> TrackingResult:
        reference = self.reference
        info = TrackingInfo(target_point_count=reference.point_count)

        points, _ = self.detector.detect_array(pixels, sensitivity=Sensitivity.LOW)
        info.frame_point_count = len(points)

        matches: List[FeatureMatch] = []
        if len(points) and reference.point_count:
            descriptors = self.descriptor.describe_many(pixels, points)
            matches = self.matcher.match(descriptors, reference)
        info.descriptor_match_count = len(matches)

        verification = self.verifier.verify(matches, points, reference.points)
        inliers = verification.inliers
        inlier_points = points[[m.query_index for m in inliers]] if inliers else np.empty((0, 2), dtype=np.float32)

        box = bounding_box(inlier_points)
        info.quadrant_count = quadrant_count(
            inlier_points, self.confidence.config.min_points_per_quadrant
        )
        denominator = min(self.matcher.config.max_matches, reference.point_count)
        info.inlier_ratio = len(inliers) / denominator if denominator else 0.0

        if inliers:
            info.color_score = self._color_score(pixels, box)
            info.fingerprint_score = fingerprint_consistency(
                inliers, points, reference, self.config.min_fingerprint_points
            )
            info.match_quality = compute_match_quality(
                info.inlier_ratio,
                verification.consistency_ratio,
                info.color_score,
                self.confidence.config,
            )

        state = self.confidence.update(FrameEvidence(
            inlier_count=len(inliers),
            match_quality=info.match_quality,
            well_distributed=info.quadrant_count >= self.confidence.config.min_quadrants,
        ))
        info.average_match_count = self.confidence.average_match_count

        LOGGER.debug(
            "Frame %d: %d points, %d matches, %d inliers, quality %.2f, state %s",
            self.frame_index,
            info.frame_point_count,
            info.descriptor_match_count,
            len(inliers),
            info.match_quality,
            state.value,
        )

        return TrackingResult(
            is_tracking=state is TrackingState.HIGH,
            confidence=state,
            inliers=inliers,
            frame_points=points,
            info=info,
            scale=verification.scale,
            bounding_box=box,
            target_region=target_region(
                verification.scale,
                verification.translation,
                reference.target_width,
                reference.target_height,
            ),
            frame_index=self.frame_index,
        )

    def _skipped_result(self) -> TrackingResult:
        """Copy of the last result marked as skipped, sharing no mutable state."""
        previous = self._last_result
        if previous is None:
            return TrackingResult(frame_index=self.frame_index, skipped=True)
        return replace(
            previous,
            inliers=list(previous.inliers),
            frame_points=previous.frame_points.copy(),
            info=replace(previous.info),
            target_region=None if previous.target_region is None else previous.target_region.copy(),
            skipped=True,
        )

    def _color_score(self, pixels: np.ndarray, box) -> Optional[float]:
        """Colour similarity between the matched frame region and the target."""
        if not self.config.use_color or box is None or self.reference.color_histogram is None:
            return None
        if not self.reference.color_histogram.any():
            return None
        x_min, y_min, x_max, y_max = (int(round(v)) for v in box)
        region = pixels[y_min:y_max + 1, x_min:x_max + 1]
        if region.size == 0:
            return None
        bins = round(len(self.reference.color_histogram) ** (1.0 / 3.0))
        histogram = compute_color_histogram(region, bins=bins)
        if not histogram.any():
            return None
        return histogram_similarity(histogram, self.reference.color_histogram)

    def _update_metrics(self, result: TrackingResult, elapsed_ms: float):
        metrics = self.metrics
        previous = self._last_result
        metrics.processed_frames += 1
        if result.is_tracking:
            metrics.tracking_frames += 1
        if previous is not None and previous.is_tracking != result.is_tracking:
            metrics.state_changes += 1
        n = metrics.processed_frames
        metrics.avg_processing_time_ms = (
            (metrics.avg_processing_time_ms * (n - 1) + elapsed_ms) / n
        )


# ---------------------------------------------------------------------- #
# Functional interface
# ---------------------------------------------------------------------- #
def build_reference_model(image, width: int, height: int, config: Optional[Dict] = None) -> ReferenceModel:
    """Build a reference model from a decoded target image.

    Raises:
        EmptyImageError: If width or height is zero.
        InvalidImageError: If the pixel buffer is unusable.
    """
    builder = ReferenceModelBuilder(
        detector=FeatureDetector(_section(config, "detector")),
        descriptor=DescriptorComputer(_section(config, "descriptor")),
        config=_section(config, "reference"),
    )
    return builder.build(image, width, height)


def create_session(
    reference_model: ReferenceModel,
    config: Optional[Dict] = None,
    seed: Optional[int] = None,
) -> TrackerSession:
    """Create a tracker session; ``seed`` makes verification reproducible."""
    return TrackerSession(reference_model, config=config, rng=np.random.default_rng(seed))


def process_frame(
    session: TrackerSession,
    frame,
    width: int,
    height: int,
    timestamp: Optional[float] = None,
) -> TrackingResult:
    """Process one camera frame with the given session."""
    return session.process_frame(frame, width, height, timestamp=timestamp)
