"""
Exception types raised by the tracking pipeline.

Only malformed input and misuse of a closed session are errors. A frame in
which the target is not visible is a normal result, never an exception.
"""


class PlanarLockError(Exception):
    """Base class for all PLANARLOCK errors."""


class TrackingInputError(PlanarLockError, ValueError):
    """Raised when an image handed to the pipeline cannot be used."""


class EmptyImageError(TrackingInputError):
    """Raised when an image has zero width, zero height or no pixels."""


class InvalidImageError(TrackingInputError):
    """Raised when a pixel buffer is missing or does not match its size."""


class SessionClosedError(PlanarLockError, RuntimeError):
    """Raised when a frame is submitted to a session that was closed."""
