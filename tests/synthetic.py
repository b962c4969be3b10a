"""
Synthetic RGBA images shared by the test modules.
"""

import numpy as np


def random_checkerboard(width=400, height=400, square=25, seed=7):
    """Checkerboard whose squares carry random colours.

    Dark squares draw every channel from [0, 60] and light squares from
    [170, 255], so neighbouring squares always differ strongly in luma while
    no two corners look alike.
    """
    rng = np.random.default_rng(seed)
    rows = height // square + 1
    cols = width // square + 1
    dark = rng.integers(0, 61, size=(rows, cols, 3))
    light = rng.integers(170, 256, size=(rows, cols, 3))
    parity = (np.add.outer(np.arange(rows), np.arange(cols)) % 2 == 0)[:, :, np.newaxis]
    colours = np.where(parity, light, dark).astype(np.uint8)

    board = np.repeat(np.repeat(colours, square, axis=0), square, axis=1)[:height, :width]
    alpha = np.full((height, width, 1), 255, dtype=np.uint8)
    return np.ascontiguousarray(np.concatenate((board, alpha), axis=2))


def noise_image(width=400, height=400, seed=0):
    """Gray uniform noise as RGBA, textured in every region."""
    rng = np.random.default_rng(seed)
    gray = rng.integers(0, 256, size=(height, width), dtype=np.uint8)
    alpha = np.full((height, width), 255, dtype=np.uint8)
    return np.ascontiguousarray(np.stack((gray, gray, gray, alpha), axis=2))


def blank_image(width=320, height=240, value=255):
    """Uniform RGBA image without any detectable feature."""
    image = np.full((height, width, 4), value, dtype=np.uint8)
    image[:, :, 3] = 255
    return image
