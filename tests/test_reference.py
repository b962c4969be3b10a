"""
Tests for reference model construction.
"""

import os
import sys
import unittest

import numpy as np

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))
sys.path.insert(0, os.path.dirname(__file__))

from planarlock.errors import EmptyImageError  # type: ignore
from planarlock.tracking.descriptor import DescriptorComputer  # type: ignore
from planarlock.tracking.feature import FeatureDetector  # type: ignore
from planarlock.tracking.reference import (  # type: ignore
    ReferenceConfiguration,
    ReferenceModel,
    ReferenceModelBuilder,
    compute_color_histogram,
    histogram_similarity,
    normalized_pairwise_distances,
    select_fingerprint_points,
)
from synthetic import noise_image, random_checkerboard  # type: ignore


class TestReferenceModelBuilder(unittest.TestCase):
    """Validate the one-time reference model build."""

    @classmethod
    def setUpClass(cls):
        cls.image = random_checkerboard(seed=21)
        cls.model = ReferenceModelBuilder().build(cls.image, 400, 400)

    def test_points_and_descriptors_are_aligned(self):
        model = self.model
        self.assertEqual(model.target_width, 400)
        self.assertEqual(model.target_height, 400)
        self.assertGreater(model.point_count, 100)
        self.assertLessEqual(model.point_count, 2000)
        self.assertEqual(len(model.descriptors), model.point_count)
        self.assertEqual(model.descriptors.shape[1], DescriptorComputer().descriptor_length)

    def test_model_is_read_only(self):
        with self.assertRaises(ValueError):
            self.model.points[0, 0] = 1.0
        with self.assertRaises(ValueError):
            self.model.descriptors[0, 0] = 1.0
        with self.assertRaises(AttributeError):
            self.model.target_width = 10

    def test_color_histogram_is_normalised(self):
        histogram = self.model.color_histogram
        self.assertEqual(histogram.shape, (64,))
        self.assertAlmostEqual(float(histogram.sum()), 1.0, places=4)

    def test_spatial_fingerprint(self):
        model = self.model
        count = len(model.fingerprint_indices)
        self.assertEqual(count, 30)
        self.assertEqual(len(set(model.fingerprint_indices.tolist())), count)
        self.assertEqual(model.spatial_fingerprint.shape, (count * (count - 1) // 2,))
        self.assertAlmostEqual(float(model.spatial_fingerprint.max()), 1.0, places=5)
        matrix = model.fingerprint_matrix()
        np.testing.assert_allclose(matrix, matrix.T)

    def test_reference_pass_uses_finer_grid(self):
        detector = FeatureDetector()
        self.assertGreater(detector.config.reference_grid_size, detector.config.grid_size)
        model = ReferenceModelBuilder(detector=detector).build(noise_image(400, 400), 400, 400)

        grid = detector.config.reference_grid_size
        cap = max(detector.config.reference_max_points // (grid * grid), detector.config.min_points_per_cell)
        cells = (model.points // (400 / grid)).astype(int)
        _, counts = np.unique(cells, axis=0, return_counts=True)
        self.assertLessEqual(int(counts.max()), cap)
        self.assertGreaterEqual(len(counts), grid * grid // 2)

    def test_zero_size_image_fails(self):
        with self.assertRaises(EmptyImageError):
            ReferenceModelBuilder().build(self.image, 0, 400)

    def test_mismatched_arrays_are_rejected(self):
        with self.assertRaises(ValueError):
            ReferenceModel(
                target_width=10,
                target_height=10,
                points=np.zeros((3, 2), dtype=np.float32),
                descriptors=np.zeros((2, 16), dtype=np.float32),
            )


class TestReferenceSummaries(unittest.TestCase):
    """Validate colour histograms and fingerprint helpers."""

    def test_transparent_pixels_are_skipped(self):
        image = np.zeros((20, 20, 4), dtype=np.uint8)
        image[:10, :, :] = (255, 0, 0, 255)
        image[10:, :, :] = (0, 0, 255, 0)
        histogram = compute_color_histogram(image).reshape(4, 4, 4)
        self.assertAlmostEqual(float(histogram[3, 0, 0]), 1.0, places=5)
        self.assertAlmostEqual(float(histogram[0, 0, 3]), 0.0, places=5)

    def test_fully_transparent_image_gives_empty_histogram(self):
        image = np.zeros((8, 8, 4), dtype=np.uint8)
        self.assertFalse(compute_color_histogram(image).any())

    def test_histogram_similarity_bounds(self):
        first = np.zeros(64, dtype=np.float32)
        first[0] = 1.0
        second = np.zeros(64, dtype=np.float32)
        second[5] = 1.0
        self.assertAlmostEqual(histogram_similarity(first, first), 1.0, places=5)
        self.assertAlmostEqual(histogram_similarity(first, second), 0.0, places=5)

    def test_pairwise_distances_are_normalised(self):
        distances = normalized_pairwise_distances(np.array([[0, 0], [3, 4], [6, 8]]))
        np.testing.assert_allclose(distances, [0.5, 1.0, 0.5], atol=1e-6)
        self.assertEqual(normalized_pairwise_distances(np.zeros((1, 2))).size, 0)
        self.assertFalse(normalized_pairwise_distances(np.zeros((3, 2))).any())

    def test_fingerprint_fills_sparse_grids(self):
        config = ReferenceConfiguration(fingerprint_points=6)
        # Every point sits in the same grid cell
        points = np.array([[1, 1], [2, 1], [3, 1], [1, 2], [2, 2], [3, 2], [1, 3]], dtype=np.float32)
        selected = select_fingerprint_points(points, 100, 100, config)
        self.assertEqual(len(selected), 6)
        self.assertEqual(selected[0], 0)
        self.assertEqual(len(set(selected.tolist())), 6)

    def test_fingerprint_prefers_one_point_per_cell(self):
        config = ReferenceConfiguration(fingerprint_points=4, fingerprint_grid_cols=2, fingerprint_grid_rows=2)
        points = np.array(
            [[10, 10], [12, 12], [90, 10], [10, 90], [92, 12], [90, 90]], dtype=np.float32
        )
        selected = select_fingerprint_points(points, 100, 100, config)
        self.assertEqual(sorted(selected.tolist()), [0, 2, 3, 5])


if __name__ == "__main__":
    unittest.main()
