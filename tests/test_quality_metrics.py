"""Tests for the standalone quality metric functions."""

import numpy as np
import pytest

from quality_metrics import (
    feature_distance,
    frechet_distance,
    gaussian_statistics,
    max_cosine_similarity,
    mean_squared_error,
    psnr,
    psnr_from_mse,
    ssim,
)

pytestmark = pytest.mark.unit


class TestPSNR:

    def test_identical_inputs_capped(self, block_clip):
        assert psnr(block_clip, block_clip) == 100.0

    def test_known_value(self):
        reference = np.zeros((2, 8, 8, 3), dtype=np.uint8)
        distorted = np.full((2, 8, 8, 3), 10, dtype=np.uint8)
        assert mean_squared_error(reference, distorted) == 100.0
        assert psnr(reference, distorted) == pytest.approx(20 * np.log10(25.5))

    def test_single_frame_accepted(self):
        frame = np.zeros((8, 8, 3), dtype=np.uint8)
        assert psnr(frame, frame) == 100.0

    def test_from_mse_unit_scale(self):
        assert psnr_from_mse(0.01, max_value=1.0) == pytest.approx(20.0)
        assert psnr_from_mse(0.0) == 100.0

    def test_shape_mismatch(self):
        with pytest.raises(ValueError, match="Shape mismatch"):
            psnr(np.zeros((1, 8, 8, 3)), np.zeros((1, 8, 4, 3)))

    def test_empty_input(self):
        with pytest.raises(ValueError):
            psnr(np.zeros((0, 8, 8, 3)), np.zeros((0, 8, 8, 3)))


class TestSSIM:

    def test_identical_inputs(self, block_clip):
        assert ssim(block_clip, block_clip) == pytest.approx(1.0)

    def test_noise_against_flat(self, noise_clip):
        flat = np.full_like(noise_clip, 128)
        assert ssim(noise_clip, flat) < 0.1

    def test_in_unit_range(self, noise_clip, rng):
        other = rng.integers(0, 256, size=noise_clip.shape, dtype=np.uint8)
        value = ssim(noise_clip, other)
        assert 0.0 <= value <= 1.0


class TestFrechetDistance:

    def test_identical_distributions(self, rng):
        features = rng.normal(size=(500, 4))
        assert feature_distance(features, features) == pytest.approx(0.0, abs=1e-6)

    def test_mean_shift(self):
        identity = np.eye(2)
        distance = frechet_distance(np.zeros(2), identity, np.array([3.0, 4.0]), identity)
        assert distance == pytest.approx(25.0)

    def test_singular_covariances(self):
        """Zero covariances fall back to the regularized square root."""
        zeros = np.zeros((3, 3))
        distance = frechet_distance(np.zeros(3), zeros, np.ones(3), zeros)
        assert distance == pytest.approx(3.0, abs=1e-4)

    def test_never_negative(self, rng):
        features = rng.normal(size=(3, 16))
        assert feature_distance(features, features) >= 0.0

    def test_dimension_mismatch(self):
        with pytest.raises(ValueError):
            frechet_distance(np.zeros(2), np.eye(2), np.zeros(3), np.eye(3))


class TestGaussianStatistics:

    def test_single_sample_has_zero_covariance(self):
        mu, sigma = gaussian_statistics(np.array([[1.0, 2.0, 3.0]]))
        np.testing.assert_array_equal(mu, [1.0, 2.0, 3.0])
        np.testing.assert_array_equal(sigma, np.zeros((3, 3)))

    def test_covariance_shape(self, rng):
        mu, sigma = gaussian_statistics(rng.normal(size=(10, 5)))
        assert mu.shape == (5,)
        assert sigma.shape == (5, 5)

    def test_empty(self):
        with pytest.raises(ValueError):
            gaussian_statistics(np.zeros((0, 4)))


class TestMaxCosineSimilarity:

    def test_empty_candidates(self):
        assert max_cosine_similarity(np.ones(3), np.zeros((0, 3))) == (-1.0, -1)
        assert max_cosine_similarity(np.ones(3), None) == (-1.0, -1)

    def test_best_match(self):
        candidates = np.array([[1.0, 0.0], [0.0, 1.0], [1.0, 1.0]])
        similarity, index = max_cosine_similarity(np.array([0.0, 2.0]), candidates)
        assert index == 1
        assert similarity == pytest.approx(1.0)
