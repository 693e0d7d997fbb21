"""Discrete tokenizer for autoregressive models."""

from __future__ import annotations

import logging
from typing import Optional

import numpy as np
from numpy.typing import NDArray
from sklearn.metrics import pairwise_distances_argmin

from ..config import TokenizerConfig
from ..errors import ConfigurationError
from ..memory import MemoryLedger
from ..types import TokenizerVariant
from .base import TokenizationCodec
from .models import FrameCodecModel, lattice_codebook

logger = logging.getLogger(__name__)


class DiscreteCodec(TokenizationCodec):
    """
    Vector-quantized tokens over a fixed RGB codebook.

    Each pooled latent vector is replaced by the index of its nearest
    codebook entry (Euclidean); decode is a table lookup followed by the
    model's decode. The codebook is reserved in the memory ledger for the
    codec's lifetime.
    """

    variant = TokenizerVariant.DISCRETE

    def __init__(
        self,
        config: TokenizerConfig,
        ledger: Optional[MemoryLedger] = None,
        model: Optional[FrameCodecModel] = None,
        codebook: Optional[NDArray[np.float32]] = None
    ):
        """
        Initialize the codec and allocate its codebook.

        Args:
            config: Validated tokenizer configuration.
            ledger: Shared memory ledger.
            model: Encode/decode transform pair.
            codebook: RGB entries in [0, 1], shape (compression_ratio, 3).
                Defaults to the lattice codebook.

        Raises:
            ConfigurationError: If the codebook has the wrong shape.
            ResourceExhaustedError: If the ledger cannot hold the codebook.
        """
        super().__init__(config, ledger, model)
        size = config.compression_ratio
        if codebook is None:
            codebook = lattice_codebook(size)
        codebook = np.asarray(codebook, dtype=np.float32)
        if codebook.shape != (size, 3):
            raise ConfigurationError(
                f"Codebook must have shape ({size}, 3), got {codebook.shape}"
            )
        if size > np.iinfo(np.uint16).max + 1:
            raise ConfigurationError(f"Codebook of {size} entries does not fit uint16 tokens")

        self._reservation = self.ledger.reserve(codebook.nbytes, label=f"{self.codec_id}:codebook")
        self.codebook = codebook
        logger.info(f"Allocated {size}-entry codebook for {self.codec_id}")

    def _release_resources(self) -> None:
        self.ledger.release(self._reservation)

    def quantize(self, latent: NDArray[np.float32]) -> NDArray[np.uint16]:
        """Map RGB latent vectors (..., 3) to nearest codebook indices (...)."""
        flat = latent.reshape(-1, 3)
        indices = pairwise_distances_argmin(flat, self.codebook)
        return indices.astype(np.uint16).reshape(latent.shape[:-1])

    def _encode_batch(
        self,
        batch: NDArray[np.float32],
        target_psnr: float
    ) -> tuple[NDArray[np.uint16], NDArray[np.float32]]:
        tokens = self.quantize(self.model.encode(batch))
        return tokens, self._decode_batch(tokens, batch.shape)

    def _decode_batch(
        self,
        latent: NDArray[np.uint16],
        shape: tuple[int, int, int, int]
    ) -> NDArray[np.float32]:
        if latent.size and int(latent.max()) >= len(self.codebook):
            raise ValueError(f"Token index {int(latent.max())} outside codebook")
        return self.model.decode(self.codebook[latent.astype(np.int64)], shape)
