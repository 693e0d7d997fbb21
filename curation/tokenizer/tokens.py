"""Token buffers and codec result containers."""

from __future__ import annotations

import io
from dataclasses import dataclass, field
from typing import Any, Optional

import numpy as np
from numpy.typing import NDArray

from ..errors import CurationError, InvalidAssetError
from ..types import AssetStatus, TokenizerMetrics, TokenizerVariant


@dataclass
class TokenBuffer:
    """
    Latent representation of a video.

    ``latent`` is float32 ``(T, gh, gw, 3)`` for the continuous variant and
    uint16 codebook indices ``(T, gh, gw)`` for the discrete variant.
    """
    latent: NDArray
    video_shape: tuple[int, int, int, int]  # (T, H, W, C) of the source clip
    variant: TokenizerVariant
    compression_ratio: int

    @classmethod
    def empty(cls, variant: TokenizerVariant, compression_ratio: int) -> "TokenBuffer":
        dtype = np.float32 if variant == TokenizerVariant.CONTINUOUS else np.uint16
        return cls(np.zeros((0,), dtype=dtype), (0, 0, 0, 3), variant, compression_ratio)

    @property
    def is_empty(self) -> bool:
        return self.latent.size == 0

    @property
    def num_frames(self) -> int:
        return self.video_shape[0]

    @property
    def nbytes(self) -> int:
        return int(self.latent.nbytes)

    def to_bytes(self) -> bytes:
        """Serialize to a compressed ``.npz`` payload."""
        buffer = io.BytesIO()
        np.savez_compressed(
            buffer,
            latent=self.latent,
            video_shape=np.asarray(self.video_shape, dtype=np.int64),
            variant=np.asarray(self.variant.value),
            compression_ratio=np.asarray(self.compression_ratio, dtype=np.int64),
        )
        return buffer.getvalue()

    @classmethod
    def from_bytes(cls, data: bytes) -> "TokenBuffer":
        """
        Deserialize a payload written by ``to_bytes``.

        Raises:
            InvalidAssetError: If the payload is not a token buffer.
        """
        try:
            with np.load(io.BytesIO(data), allow_pickle=False) as archive:
                return cls(
                    latent=archive["latent"],
                    video_shape=tuple(int(v) for v in archive["video_shape"]),
                    variant=TokenizerVariant(str(archive["variant"])),
                    compression_ratio=int(archive["compression_ratio"]),
                )
        except (OSError, EOFError, KeyError, ValueError) as e:
            raise InvalidAssetError(f"Malformed token buffer: {e}") from e


@dataclass(frozen=True)
class EncodeOptions:
    batch_size: Optional[int] = None  # frames per batch, defaults to the config value
    target_psnr: Optional[float] = None  # continuous refinement target, defaults to the config value


@dataclass(frozen=True)
class DecodeOptions:
    batch_size: Optional[int] = None


@dataclass
class TokenizationResult:
    """Outcome of an encode call."""
    tokens: TokenBuffer
    metrics: TokenizerMetrics
    status: AssetStatus
    error: Optional[CurationError] = None
    reconstruction: Optional[NDArray[np.uint8]] = field(default=None, repr=False)

    @property
    def ok(self) -> bool:
        return self.status == AssetStatus.COMPLETED


@dataclass
class DecodeResult:
    """Outcome of a decode call."""
    video: NDArray[np.uint8]
    metrics: TokenizerMetrics
    status: AssetStatus
    error: Optional[CurationError] = None

    @property
    def ok(self) -> bool:
        return self.status == AssetStatus.COMPLETED


@dataclass
class ValidationResult:
    """Report on a candidate tokenizer configuration."""
    is_valid: bool
    errors: list[str] = field(default_factory=list)
    estimated_memory_bytes: int = 0
    codebook_bytes: int = 0
    available_memory_bytes: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "errors": list(self.errors),
            "estimated_memory_bytes": self.estimated_memory_bytes,
            "codebook_bytes": self.codebook_bytes,
            "available_memory_bytes": self.available_memory_bytes,
        }
