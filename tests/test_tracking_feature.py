"""
Tests for interest point detection, descriptors and pixel buffer handling.
"""

import os
import sys
import unittest

import numpy as np

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))
sys.path.insert(0, os.path.dirname(__file__))

from planarlock.errors import EmptyImageError, InvalidImageError  # type: ignore
from planarlock.tracking.descriptor import DescriptorComputer  # type: ignore
from planarlock.tracking.feature import FeatureDetector, Point, corner_scores  # type: ignore
from planarlock.tracking.image import load_pixels, to_grayscale  # type: ignore
from synthetic import blank_image, noise_image, random_checkerboard  # type: ignore


class TestPixelBuffers(unittest.TestCase):
    """Validate buffer parsing and grayscale conversion."""

    def test_flat_rgba_buffer_is_reshaped(self):
        image = random_checkerboard(40, 30, square=10)
        pixels = load_pixels(image.tobytes(), 40, 30)
        self.assertEqual(pixels.shape, (30, 40, 4))
        np.testing.assert_array_equal(pixels, image)

    def test_zero_size_is_rejected(self):
        with self.assertRaises(EmptyImageError):
            load_pixels(b"", 0, 10)
        with self.assertRaises(EmptyImageError):
            load_pixels(np.zeros((10, 10, 4), dtype=np.uint8), 10, 0)

    def test_inconsistent_buffers_are_rejected(self):
        with self.assertRaises(InvalidImageError):
            load_pixels(None, 10, 10)
        with self.assertRaises(InvalidImageError):
            load_pixels(bytes(10 * 10 * 4 - 1), 10, 10)
        with self.assertRaises(InvalidImageError):
            load_pixels(np.zeros((10, 12, 4), dtype=np.uint8), 10, 10)
        with self.assertRaises(InvalidImageError):
            load_pixels(np.zeros((10, 10, 4), dtype=np.float32), 10, 10)

    def test_grayscale_uses_luma_weights(self):
        pixels = np.zeros((1, 3, 4), dtype=np.uint8)
        pixels[0, 0] = (255, 0, 0, 255)
        pixels[0, 1] = (0, 255, 0, 255)
        pixels[0, 2] = (0, 0, 255, 255)
        gray = to_grayscale(pixels)
        self.assertEqual(gray.tolist(), [[76, 150, 29]])


class TestFeatureDetector(unittest.TestCase):
    """Validate the grid-binned corner detector."""

    def setUp(self):
        self.detector = FeatureDetector()

    def test_corner_score_weights(self):
        gray = np.zeros((5, 5), dtype=np.uint8)
        gray[2, 2] = 60
        scores = corner_scores(gray)
        # Four edge neighbours at weight 1/2 and four diagonals at 1/3
        self.assertAlmostEqual(float(scores[2, 2]), 60 * (4 / 2 + 4 / 3), places=3)
        self.assertAlmostEqual(float(scores[2, 3]), 30.0, places=3)
        self.assertAlmostEqual(float(scores[1, 1]), 20.0, places=3)

    def test_detection_is_deterministic(self):
        image = random_checkerboard(seed=11)
        first = self.detector.detect(image, max_points=400, sensitivity="low")
        second = self.detector.detect(image, max_points=400, sensitivity="low")
        self.assertGreater(len(first), 0)
        self.assertEqual(first, second)

    def test_points_are_ranked_and_bounded(self):
        image = random_checkerboard(seed=3)
        points = self.detector.detect(image, max_points=150)
        self.assertLessEqual(len(points), 150)
        responses = [p.response for p in points]
        self.assertEqual(responses, sorted(responses, reverse=True))

        margin = self.detector.config.border_margin
        for p in points:
            self.assertGreaterEqual(p.x, margin)
            self.assertGreaterEqual(p.y, margin)
            self.assertLess(p.x, 400 - margin)
            self.assertLess(p.y, 400 - margin)

    def test_spatial_coverage_on_uniform_texture(self):
        width = height = 400
        points, _ = self.detector.detect_array(
            noise_image(width, height), max_points=1000, sensitivity="high"
        )
        cells = {
            (int(x * 10 // width), int(y * 10 // height))
            for x, y in points
        }
        self.assertGreaterEqual(len(cells), 50)

    def test_high_sensitivity_finds_more_points(self):
        image = random_checkerboard(seed=5)
        config = self.detector.config
        config.low_sensitivity_threshold = 250.0
        low, _ = self.detector.detect_array(image, max_points=2000, sensitivity="low")
        high, _ = self.detector.detect_array(image, max_points=2000, sensitivity="high")
        self.assertGreater(len(high), len(low))

    def test_non_maximum_suppression(self):
        gray = np.zeros((60, 60), dtype=np.uint8)
        gray[30, 30] = 200
        points = self.detector.detect(gray, max_points=100, sensitivity="high")
        self.assertEqual(points[0].point, Point(30.0, 30.0))
        # A weaker neighbour in the same cell is suppressed
        self.assertNotIn(Point(31.0, 30.0), [p.point for p in points])

    def test_small_and_blank_images_yield_no_points(self):
        self.assertEqual(self.detector.detect(random_checkerboard(12, 12, square=4)), [])
        self.assertEqual(self.detector.detect(blank_image()), [])


class TestDescriptorComputer(unittest.TestCase):
    """Validate fixed-length patch descriptors."""

    def setUp(self):
        self.computer = DescriptorComputer()
        self.image = random_checkerboard(120, 90, square=15, seed=2)

    def test_length_is_fixed_near_borders(self):
        expected = self.computer.descriptor_length
        self.assertEqual(expected, 16 + 48 + 32 + 8)
        for point in (Point(0, 0), Point(60, 45), Point(119, 89), Point(-30, 500)):
            descriptor = self.computer.describe(self.image, point)
            self.assertEqual(descriptor.shape, (expected,))
            self.assertTrue(np.all(np.isfinite(descriptor)))

    def test_basic_descriptor_is_mean_centred(self):
        computer = DescriptorComputer({"enhanced": False})
        self.assertEqual(computer.descriptor_length, 16)
        descriptor = computer.describe(self.image, Point(40, 40))
        self.assertAlmostEqual(float(descriptor.mean()), 0.0, places=5)

    def test_brightness_offset_leaves_intensity_part_unchanged(self):
        computer = DescriptorComputer({"enhanced": False})
        gray = np.full((64, 64), 60, dtype=np.uint8)
        gray[20:44, 32:] = 120
        brighter = gray + 40
        first = computer.describe(gray, Point(32, 32))
        second = computer.describe(brighter, Point(32, 32))
        np.testing.assert_allclose(first, second, atol=1e-5)

    def test_orientation_histogram_sums_to_one(self):
        descriptor = self.computer.describe(self.image, Point(45, 45))
        histogram = descriptor[-self.computer.config.orientation_bins:]
        self.assertAlmostEqual(float(histogram.sum()), 1.0, places=4)

    def test_compute_pairs_points_and_descriptors(self):
        points = [Point(10, 10), Point(50, 30)]
        features = self.computer.compute(self.image, points)
        self.assertEqual([f.point for f in features], points)
        np.testing.assert_allclose(
            features[1].descriptor, self.computer.describe(self.image, points[1]), atol=1e-6
        )
        self.assertEqual(self.computer.describe_many(self.image, []).shape, (0, 104))


if __name__ == "__main__":
    unittest.main()
