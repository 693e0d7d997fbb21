"""
Core quality metrics implementation.

All pixel metrics take arrays on the 0-255 scale shaped ``(T, H, W, C)``
(a single ``(H, W, C)`` frame is also accepted).

References:
    [1] Wang et al., "Image Quality Assessment: From Error Visibility to
        Structural Similarity", IEEE TIP 2004
    [2] Heusel et al., "GANs Trained by a Two Time-Scale Update Rule Converge
        to a Local Nash Equilibrium", NeurIPS 2017
    [3] Unterthiner et al., "Towards Accurate Generative Models of Video:
        A New Metric & Challenges", arXiv 2018
"""

from __future__ import annotations

import logging
from typing import Optional

import numpy as np
from numpy.typing import NDArray
from scipy import linalg
from scipy.ndimage import gaussian_filter
from sklearn.metrics.pairwise import cosine_similarity

logger = logging.getLogger(__name__)

MAX_PIXEL_VALUE = 255.0
PSNR_CAP = 100.0  # reported for identical inputs


def _as_float(frames: NDArray) -> NDArray[np.float64]:
    array = np.asarray(frames, dtype=np.float64)
    if array.ndim == 3:
        array = array[np.newaxis]
    if array.ndim != 4:
        raise ValueError(
            f"Expected frames shaped (T, H, W, C) or (H, W, C), got {array.shape}"
        )
    return array


def _check_pair(reference: NDArray, distorted: NDArray) -> tuple[NDArray, NDArray]:
    ref = _as_float(reference)
    dist = _as_float(distorted)
    if ref.shape != dist.shape:
        raise ValueError(f"Shape mismatch: {ref.shape} vs {dist.shape}")
    if ref.size == 0:
        raise ValueError("Cannot compare empty frame sets")
    return ref, dist


def mean_squared_error(reference: NDArray, distorted: NDArray) -> float:
    """Mean squared error over all pixels and channels."""
    ref, dist = _check_pair(reference, distorted)
    return float(np.mean((ref - dist) ** 2))


def psnr(
    reference: NDArray,
    distorted: NDArray,
    max_value: float = MAX_PIXEL_VALUE,
    cap: float = PSNR_CAP
) -> float:
    """
    Compute Peak Signal-to-Noise Ratio in dB.

    PSNR = 20 * log10(MAX / sqrt(MSE))

    Args:
        reference: Reference frames.
        distorted: Frames to compare against the reference.
        max_value: Peak pixel value.
        cap: Value returned when the inputs are identical (MSE == 0).

    Returns:
        PSNR in dB, in [0, cap].
    """
    return psnr_from_mse(mean_squared_error(reference, distorted), max_value, cap)


def psnr_from_mse(
    mse: float,
    max_value: float = MAX_PIXEL_VALUE,
    cap: float = PSNR_CAP
) -> float:
    """Convert a mean squared error into PSNR in dB, capped at ``cap``."""
    if mse <= 0:
        return cap
    value = 20 * np.log10(max_value / np.sqrt(mse))
    return float(np.clip(value, 0.0, cap))


def ssim(
    reference: NDArray,
    distorted: NDArray,
    window_size: int = 11,
    sigma: float = 1.5,
    data_range: float = MAX_PIXEL_VALUE
) -> float:
    """
    Compute the mean Structural Similarity Index.

    Local statistics use a Gaussian window of ``window_size`` taps applied
    per frame and per channel. Stability constants follow the reference
    implementation: c1 = (0.01 * L)^2, c2 = (0.03 * L)^2.

    Reference:
        Wang et al., "Image Quality Assessment: From Error Visibility to
        Structural Similarity", IEEE TIP 2004

    Returns:
        Mean SSIM, clipped to [0, 1].
    """
    ref, dist = _check_pair(reference, distorted)

    c1 = (0.01 * data_range) ** 2
    c2 = (0.03 * data_range) ** 2

    # Smooth along H and W only
    sigmas = (0, sigma, sigma, 0)
    truncate = (window_size // 2) / sigma

    def blur(x: NDArray) -> NDArray:
        return gaussian_filter(x, sigma=sigmas, truncate=truncate)

    mu1 = blur(ref)
    mu2 = blur(dist)
    mu1_sq = mu1 ** 2
    mu2_sq = mu2 ** 2
    mu1_mu2 = mu1 * mu2

    sigma1_sq = blur(ref * ref) - mu1_sq
    sigma2_sq = blur(dist * dist) - mu2_sq
    sigma12 = blur(ref * dist) - mu1_mu2

    ssim_map = ((2 * mu1_mu2 + c1) * (2 * sigma12 + c2)) / (
        (mu1_sq + mu2_sq + c1) * (sigma1_sq + sigma2_sq + c2)
    )

    return float(np.clip(ssim_map.mean(), 0.0, 1.0))


def gaussian_statistics(
    features: NDArray[np.float32]
) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
    """
    Fit a Gaussian to a set of feature vectors.

    Args:
        features: Array of shape (n_samples, dim).

    Returns:
        Tuple of (mean vector, covariance matrix). With fewer than two
        samples the covariance is all zeros.
    """
    features = np.asarray(features, dtype=np.float64)
    if features.ndim == 1:
        features = features[np.newaxis]
    if features.ndim != 2 or len(features) == 0:
        raise ValueError(f"Expected features shaped (n, dim), got {features.shape}")

    mu = features.mean(axis=0)
    if len(features) < 2:
        sigma = np.zeros((features.shape[1], features.shape[1]))
    else:
        sigma = np.atleast_2d(np.cov(features, rowvar=False))
    return mu, sigma


def frechet_distance(
    mu1: NDArray,
    sigma1: NDArray,
    mu2: NDArray,
    sigma2: NDArray,
    eps: float = 1e-6
) -> float:
    """
    Compute the Frechet distance between two Gaussians.

    d^2 = ||mu1 - mu2||^2 + Tr(sigma1 + sigma2 - 2 * sqrt(sigma1 * sigma2))

    Reference:
        Heusel et al., "GANs Trained by a Two Time-Scale Update Rule Converge
        to a Local Nash Equilibrium", NeurIPS 2017

    Returns:
        Non-negative distance.
    """
    mu1 = np.atleast_1d(mu1)
    mu2 = np.atleast_1d(mu2)
    sigma1 = np.atleast_2d(sigma1)
    sigma2 = np.atleast_2d(sigma2)

    if mu1.shape != mu2.shape or sigma1.shape != sigma2.shape:
        raise ValueError("Mean vectors and covariances must have matching dimensions")

    diff = mu1 - mu2

    try:
        covmean = linalg.sqrtm(sigma1.dot(sigma2))
    except (linalg.LinAlgError, ValueError):
        covmean = np.full_like(sigma1, np.nan)
    if not np.isfinite(covmean).all():
        logger.debug(f"Singular product of covariances, adding {eps} to the diagonal")
        offset = np.eye(sigma1.shape[0]) * eps
        covmean = linalg.sqrtm((sigma1 + offset).dot(sigma2 + offset))

    # Numerical error can leave a small imaginary component
    if np.iscomplexobj(covmean):
        covmean = covmean.real

    distance = diff.dot(diff) + np.trace(sigma1) + np.trace(sigma2) - 2 * np.trace(covmean)
    return max(float(distance), 0.0)


def feature_distance(
    features_a: NDArray[np.float32],
    features_b: NDArray[np.float32]
) -> float:
    """Frechet distance between Gaussian fits of two feature sets."""
    mu1, sigma1 = gaussian_statistics(features_a)
    mu2, sigma2 = gaussian_statistics(features_b)
    return frechet_distance(mu1, sigma1, mu2, sigma2)


def max_cosine_similarity(
    vector: NDArray[np.float32],
    candidates: Optional[NDArray[np.float32]]
) -> tuple[float, int]:
    """
    Highest cosine similarity between a vector and a set of candidates.

    Args:
        vector: Query vector of shape (dim,).
        candidates: Array of shape (n, dim), possibly empty or None.

    Returns:
        Tuple of (similarity, index of best candidate). Returns (-1.0, -1)
        when there are no candidates.
    """
    if candidates is None or len(candidates) == 0:
        return -1.0, -1
    similarities = cosine_similarity(
        np.asarray(vector, dtype=np.float64).reshape(1, -1),
        np.asarray(candidates, dtype=np.float64)
    )[0]
    best = int(np.argmax(similarities))
    return float(similarities[best]), best
