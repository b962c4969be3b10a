"""
Pixel buffer handling.

Frames and reference images arrive from the host application as raw
decoded buffers (RGBA, 8 bits per channel) plus width/height metadata.
This module validates them and converts them to the arrays the rest of the
pipeline works with.
"""

from __future__ import annotations

from typing import Optional, Union

import cv2
import numpy as np

from ..errors import EmptyImageError, InvalidImageError


PixelBuffer = Union[np.ndarray, bytes, bytearray, memoryview]

# Channel counts accepted for flat buffers, most specific first.
_FLAT_CHANNELS = (4, 3, 1)


def load_pixels(data: PixelBuffer, width: int, height: int) -> np.ndarray:
    """Validate a pixel buffer and return it as an ``(H, W, C)`` uint8 array.

    Args:
        data: numpy array shaped ``(H, W)`` / ``(H, W, C)`` or a flat buffer
            holding ``W*H*4`` (RGBA), ``W*H*3`` (RGB) or ``W*H`` (gray) bytes.
        width: Image width in pixels.
        height: Image height in pixels.

    Returns:
        Array of shape ``(height, width, C)`` with ``C`` in ``{1, 3, 4}``.

    Raises:
        EmptyImageError: If width or height is not positive.
        InvalidImageError: If the buffer is missing or inconsistent.
    """
    if width is None or height is None or int(width) <= 0 or int(height) <= 0:
        raise EmptyImageError(f"Image size must be positive, got {width}x{height}.")
    width, height = int(width), int(height)

    if data is None:
        raise InvalidImageError("Pixel buffer is missing.")

    if isinstance(data, (bytes, bytearray, memoryview)):
        array = np.frombuffer(data, dtype=np.uint8)
    else:
        array = np.asarray(data)

    if array.size == 0:
        raise EmptyImageError("Pixel buffer is empty.")
    if array.dtype != np.uint8:
        raise InvalidImageError(f"Expected 8-bit pixels, got dtype {array.dtype}.")

    if array.ndim == 1:
        pixel_count = width * height
        for channels in _FLAT_CHANNELS:
            if array.size == pixel_count * channels:
                return array.reshape(height, width, channels)
        raise InvalidImageError(
            f"Buffer of {array.size} bytes does not match a {width}x{height} image."
        )

    if array.ndim == 2:
        array = array[:, :, np.newaxis]
    if array.ndim != 3 or array.shape[2] not in _FLAT_CHANNELS:
        raise InvalidImageError(f"Unsupported pixel array shape {array.shape}.")
    if array.shape[0] != height or array.shape[1] != width:
        raise InvalidImageError(
            f"Pixel array is {array.shape[1]}x{array.shape[0]}, expected {width}x{height}."
        )
    return array


def to_grayscale(pixels: np.ndarray) -> np.ndarray:
    """Convert pixels to a single-channel 8-bit luma image.

    Uses ``0.299 R + 0.587 G + 0.114 B`` rounded to the nearest integer,
    which is what OpenCV's RGB to gray conversion computes.
    """
    if pixels.ndim == 2:
        return pixels
    channels = pixels.shape[2]
    if channels == 1:
        return pixels[:, :, 0]
    if channels == 4:
        return cv2.cvtColor(pixels, cv2.COLOR_RGBA2GRAY)
    return cv2.cvtColor(pixels, cv2.COLOR_RGB2GRAY)


def to_rgb(pixels: np.ndarray) -> np.ndarray:
    """Return a contiguous 3-channel RGB view of the pixels."""
    if pixels.ndim == 2:
        pixels = pixels[:, :, np.newaxis]
    if pixels.shape[2] == 1:
        return np.ascontiguousarray(np.repeat(pixels, 3, axis=2))
    return np.ascontiguousarray(pixels[:, :, :3])


def alpha_channel(pixels: np.ndarray) -> Optional[np.ndarray]:
    """Return the alpha channel of RGBA pixels, or ``None`` if opaque."""
    if pixels.ndim == 3 and pixels.shape[2] == 4:
        return pixels[:, :, 3]
    return None
