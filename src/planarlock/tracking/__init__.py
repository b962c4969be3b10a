"""
Tracking subpackage.

Pipeline stages for planar target tracking, leaves first:

- image: pixel buffer validation and grayscale conversion
- feature: grid-binned corner detection
- descriptor: patch descriptors
- reference: reference model construction
- matching: ratio-test descriptor matching
- verification: scale-consistency verification
"""

from .descriptor import DescriptorComputer, DescriptorConfiguration, Feature
from .feature import (
    DetectorConfiguration,
    FeatureDetector,
    InterestPoint,
    Point,
    Sensitivity,
)
from .matching import DescriptorMatcher, FeatureMatch, MatcherConfiguration
from .reference import ReferenceConfiguration, ReferenceModel, ReferenceModelBuilder
from .verification import GeometricVerifier, VerificationResult, VerifierConfiguration

__all__ = [
    "DescriptorComputer",
    "DescriptorConfiguration",
    "DescriptorMatcher",
    "DetectorConfiguration",
    "Feature",
    "FeatureDetector",
    "FeatureMatch",
    "GeometricVerifier",
    "InterestPoint",
    "MatcherConfiguration",
    "Point",
    "ReferenceConfiguration",
    "ReferenceModel",
    "ReferenceModelBuilder",
    "Sensitivity",
    "VerificationResult",
    "VerifierConfiguration",
]
