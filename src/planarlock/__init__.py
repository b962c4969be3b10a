"""
PLANARLOCK - Planar target tracking for AR overlays.

This package provides functionality for:
- Grid-binned interest point detection
- Patch descriptors
- Reference model construction
- Ratio-test descriptor matching
- Scale-consistency geometric verification
- Temporal confidence filtering of the tracking decision
"""

from .confidence import (
    ConfidenceConfig,
    ConfidenceStateMachine,
    FrameEvidence,
    TrackingState,
    compute_match_quality,
)
from .errors import (
    EmptyImageError,
    InvalidImageError,
    PlanarLockError,
    SessionClosedError,
    TrackingInputError,
)
from .session import (
    SessionConfiguration,
    SessionMetrics,
    TrackerSession,
    TrackingInfo,
    TrackingResult,
    build_reference_model,
    create_session,
    process_frame,
)
from .tracking import (
    DescriptorComputer,
    DescriptorMatcher,
    Feature,
    FeatureDetector,
    FeatureMatch,
    GeometricVerifier,
    InterestPoint,
    Point,
    ReferenceModel,
    ReferenceModelBuilder,
    VerificationResult,
)

__version__ = "0.1.0"

__all__ = [
    # External interface
    "build_reference_model",
    "create_session",
    "process_frame",
    "TrackerSession",
    "TrackingResult",
    "TrackingInfo",
    "SessionConfiguration",
    "SessionMetrics",
    # Confidence
    "ConfidenceConfig",
    "ConfidenceStateMachine",
    "FrameEvidence",
    "TrackingState",
    "compute_match_quality",
    # Pipeline stages
    "DescriptorComputer",
    "DescriptorMatcher",
    "Feature",
    "FeatureDetector",
    "FeatureMatch",
    "GeometricVerifier",
    "InterestPoint",
    "Point",
    "ReferenceModel",
    "ReferenceModelBuilder",
    "VerificationResult",
    # Errors
    "PlanarLockError",
    "TrackingInputError",
    "EmptyImageError",
    "InvalidImageError",
    "SessionClosedError",
]
