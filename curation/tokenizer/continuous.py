"""Continuous tokenizer for diffusion models."""

from __future__ import annotations

import logging

import numpy as np
from numpy.typing import NDArray

from quality_metrics import psnr_from_mse

from ..types import TokenizerVariant
from .base import TokenizationCodec

logger = logging.getLogger(__name__)

# Minimum PSNR gain (dB) for a refinement pass to count as progress
MIN_REFINEMENT_GAIN_DB = 1e-3


class ContinuousCodec(TokenizationCodec):
    """
    Continuous latents refined by iterative back-projection.

    After the initial encode, the residual between the batch and its
    reconstruction is encoded and added to the latent until the batch PSNR
    reaches the target or ``max_refinement_iterations`` is reached. A pass
    that does not raise PSNR ends the loop early. Models flagged as
    projections skip refinement entirely, since their residual encodes to
    zero.
    """

    variant = TokenizerVariant.CONTINUOUS

    def _encode_batch(
        self,
        batch: NDArray[np.float32],
        target_psnr: float
    ) -> tuple[NDArray[np.float32], NDArray[np.float32]]:
        latent = self.model.encode(batch)
        recon = self.model.decode(latent, batch.shape)
        if self.model.is_projection:
            return latent.astype(np.float32), np.clip(recon, 0.0, 1.0)

        previous = None
        for iteration in range(self.config.max_refinement_iterations):
            psnr = psnr_from_mse(np.mean((batch - recon) ** 2, dtype=np.float64), max_value=1.0)
            if psnr >= target_psnr:
                break
            if previous is not None and psnr <= previous[0] + MIN_REFINEMENT_GAIN_DB:
                # keep the better of the last two passes
                if psnr < previous[0]:
                    latent, recon = previous[1], previous[2]
                logger.debug(f"{self.codec_id} refinement stalled at {psnr:.2f}dB after {iteration} passes")
                break
            previous = (psnr, latent, recon)
            latent = latent + self.model.encode(batch - recon)
            recon = self.model.decode(latent, batch.shape)
            logger.debug(f"{self.codec_id} refinement {iteration + 1}: psnr was {psnr:.2f}dB")

        return latent.astype(np.float32), np.clip(recon, 0.0, 1.0)

    def _decode_batch(
        self,
        latent: NDArray[np.float32],
        shape: tuple[int, int, int, int]
    ) -> NDArray[np.float32]:
        return np.clip(self.model.decode(latent.astype(np.float32), shape), 0.0, 1.0)
