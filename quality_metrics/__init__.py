"""
Quality Metrics for Video Tokenization

Objective fidelity and distributional metrics used to gate curated clips:

- PSNR: pixel-level reconstruction fidelity
- SSIM: Gaussian-windowed structural similarity
- Frechet distance: FID (per-frame embeddings) and FVD (clip embeddings)
- Cosine similarity: near-duplicate scoring of deep features
"""

from .metrics import (
    mean_squared_error,
    psnr,
    psnr_from_mse,
    ssim,
    gaussian_statistics,
    frechet_distance,
    feature_distance,
    max_cosine_similarity,
)

__all__ = [
    "mean_squared_error",
    "psnr",
    "psnr_from_mse",
    "ssim",
    "gaussian_statistics",
    "frechet_distance",
    "feature_distance",
    "max_cosine_similarity",
]

__version__ = "1.0.0"
