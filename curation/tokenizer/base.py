"""Abstract base class for tokenization codecs."""

from __future__ import annotations

import logging
import threading
import time
from abc import ABC, abstractmethod
from typing import Any, Mapping, Optional, Union

import numpy as np
from numpy.typing import NDArray

from quality_metrics import psnr_from_mse

from ..config import (
    TokenizerConfig,
    estimate_memory_bytes,
    parse_variant,
    tokenizer_config_errors,
)
from ..errors import (
    CodecError,
    ConfigurationError,
    CurationError,
    InvalidAssetError,
    ResourceExhaustedError,
)
from ..memory import MemoryLedger
from ..types import AssetStatus, TokenizerMetrics, TokenizerVariant, VideoResolution
from .models import BlockPoolingModel, FrameCodecModel
from .tokens import (
    DecodeOptions,
    DecodeResult,
    EncodeOptions,
    TokenBuffer,
    TokenizationResult,
    ValidationResult,
)

logger = logging.getLogger(__name__)


def codec_id(variant: TokenizerVariant, compression_ratio: int) -> str:
    return f"{variant.value.lower()}-{compression_ratio}"


def codebook_bytes(variant: TokenizerVariant, compression_ratio: int) -> int:
    """Device memory held by the codebook of a codec (float32 RGB entries)."""
    if variant != TokenizerVariant.DISCRETE:
        return 0
    return compression_ratio * 3 * 4


def _to_float(batch: NDArray) -> NDArray[np.float32]:
    if batch.dtype == np.uint8:
        return batch.astype(np.float32) / 255.0
    return batch.astype(np.float32)


def _to_uint8(batch: NDArray[np.float32]) -> NDArray[np.uint8]:
    return np.clip(np.rint(batch * 255.0), 0, 255).astype(np.uint8)


def validate_config(
    candidate: Union[TokenizerConfig, Mapping[str, Any]],
    ledger: Optional[MemoryLedger] = None
) -> ValidationResult:
    """
    Report whether a candidate configuration is usable.

    Accepts a constructed ``TokenizerConfig`` or the keyword arguments for
    one; resolutions may be given as ``{"width": ..., "height": ...}``. When
    a ledger is given, the batch estimate plus codebook must also fit in
    the memory currently available.
    """
    if isinstance(candidate, TokenizerConfig):
        params = {
            "variant": candidate.variant,
            "compression_ratio": candidate.compression_ratio,
            "resolution": candidate.resolution,
            "batch_size": candidate.batch_size,
            "device_memory_budget_gb": candidate.device_memory_budget_gb,
            "max_refinement_iterations": candidate.max_refinement_iterations,
        }
    else:
        params = dict(candidate)

    try:
        variant = parse_variant(params.get("variant"))
        resolution = params.get("resolution")
        if isinstance(resolution, Mapping):
            resolution = VideoResolution(int(resolution["width"]), int(resolution["height"]))
        if not isinstance(resolution, VideoResolution):
            raise ConfigurationError(f"Invalid resolution: {resolution!r}")
        ratio = int(params.get("compression_ratio", 0))
        batch_size = int(params.get("batch_size", 32))
    except (ConfigurationError, KeyError, TypeError, ValueError) as e:
        return ValidationResult(is_valid=False, errors=[str(e)])

    errors = tokenizer_config_errors(
        variant,
        ratio,
        resolution,
        batch_size,
        float(params.get("device_memory_budget_gb", 80.0)),
        int(params.get("max_refinement_iterations", 5)),
    )
    estimate = estimate_memory_bytes(variant, ratio, max(resolution.pixels, 0), batch_size)
    codebook = codebook_bytes(variant, ratio)
    available = ledger.available_bytes if ledger is not None else 0
    if ledger is not None and not errors and estimate + codebook > available:
        errors.append(
            f"insufficient device memory: needs {estimate + codebook} bytes, {available} available"
        )
    return ValidationResult(
        is_valid=not errors,
        errors=errors,
        estimated_memory_bytes=estimate,
        codebook_bytes=codebook,
        available_memory_bytes=available,
    )


class TokenizationCodec(ABC):
    """
    Shared encode/decode pipeline for tokenization codecs.

    Subclasses implement the per-batch transforms. The base class validates
    input, splits frames into batches, reserves transient device memory from
    the ledger for the duration of each call, converts every failure into a
    ``FAILED`` result and keeps a running ``TokenizerMetrics`` snapshot.
    """

    variant: TokenizerVariant

    def __init__(
        self,
        config: TokenizerConfig,
        ledger: Optional[MemoryLedger] = None,
        model: Optional[FrameCodecModel] = None
    ):
        """
        Initialize the codec.

        Args:
            config: Validated tokenizer configuration.
            ledger: Shared memory ledger. A private ledger sized to the
                config's device budget is created if None.
            model: Encode/decode transform pair. Defaults to block pooling
                at the configured compression ratio.
        """
        if config.variant != self.variant:
            raise ConfigurationError(
                f"{type(self).__name__} requires a {self.variant.value} config, "
                f"got {config.variant.value}"
            )
        self.config = config
        self.ledger = ledger or MemoryLedger(config.device_memory_budget_bytes)
        self.model = model or BlockPoolingModel.for_ratio(config.compression_ratio)
        self.codec_id = codec_id(self.variant, config.compression_ratio)
        self._closed = False

        self._lock = threading.Lock()
        self._frames_processed = 0
        self._seconds = 0.0
        self._psnr_weighted = 0.0
        self._psnr_frames = 0
        self._metrics = TokenizerMetrics(compression_ratio=float(config.compression_ratio))

    @property
    def metrics(self) -> TokenizerMetrics:
        """
        Running snapshot over every operation so far.

        Failed calls count toward elapsed time and frames attempted, so they
        lower throughput, but never toward PSNR.
        """
        with self._lock:
            return self._metrics

    @property
    def closed(self) -> bool:
        return self._closed

    @abstractmethod
    def _encode_batch(
        self,
        batch: NDArray[np.float32],
        target_psnr: float
    ) -> tuple[NDArray, NDArray[np.float32]]:
        """
        Encode one batch of float frames in [0, 1].

        Returns:
            Tuple of (latent, reconstruction in [0, 1]).
        """
        pass

    @abstractmethod
    def _decode_batch(
        self,
        latent: NDArray,
        shape: tuple[int, int, int, int]
    ) -> NDArray[np.float32]:
        pass

    def _release_resources(self) -> None:
        """Hook for subclasses holding ledger reservations."""

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._release_resources()
        logger.debug(f"Closed codec {self.codec_id}")

    def __enter__(self) -> "TokenizationCodec":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def validate_config(
        self,
        candidate: Union[TokenizerConfig, Mapping[str, Any]]
    ) -> ValidationResult:
        return validate_config(candidate, self.ledger)

    def _check_video(self, video: Any) -> NDArray:
        if self._closed:
            raise CodecError(f"Codec {self.codec_id} is closed")
        if video is None:
            raise InvalidAssetError("No video data")
        frames = np.asarray(video)
        if frames.size == 0:
            raise InvalidAssetError("Video has no frames")
        if frames.ndim != 4 or frames.shape[-1] != 3:
            raise InvalidAssetError(f"Expected RGB video shaped (T, H, W, 3), got {frames.shape}")
        _, height, width, _ = frames.shape
        limit = self.config.resolution
        if height > limit.height or width > limit.width:
            raise InvalidAssetError(
                f"Frame size {width}x{height} exceeds configured resolution {limit}"
            )
        if frames.dtype == np.uint8:
            return frames
        if np.issubdtype(frames.dtype, np.floating):
            if not np.isfinite(frames).all() or frames.min() < 0.0 or frames.max() > 1.0:
                raise InvalidAssetError("Float video values must be finite and in [0, 1]")
            return frames
        raise InvalidAssetError(f"Unsupported video dtype: {frames.dtype}")

    def _batch_size(self, requested: Optional[int]) -> int:
        batch_size = requested or self.config.batch_size
        if batch_size < 1:
            raise ConfigurationError(f"batch_size must be >= 1, got {batch_size}")
        return batch_size

    def _record(
        self,
        frames: int,
        seconds: float,
        psnr: Optional[float] = None
    ) -> TokenizerMetrics:
        """
        Fold one operation into the running snapshot and return the call's own metrics.

        A failed call passes no PSNR and may pass zero frames.
        """
        ratio = float(self.config.compression_ratio)
        with self._lock:
            self._frames_processed += frames
            self._seconds += seconds
            if psnr is not None:
                self._psnr_weighted += psnr * frames
                self._psnr_frames += frames
            self._metrics = TokenizerMetrics(
                compression_ratio=ratio,
                psnr=self._psnr_weighted / self._psnr_frames if self._psnr_frames else 0.0,
                throughput=self._frames_processed / self._seconds if self._seconds > 0 else 0.0,
                latency_ms=self._seconds / self._frames_processed * 1000.0 if self._frames_processed else 0.0,
            )
        return TokenizerMetrics(
            compression_ratio=ratio,
            psnr=psnr if psnr is not None else 0.0,
            throughput=frames / seconds if seconds > 0 else 0.0,
            latency_ms=seconds / frames * 1000.0 if frames else 0.0,
        )

    def _as_curation_error(self, operation: str, error: Exception) -> CurationError:
        if isinstance(error, CurationError):
            return error
        if isinstance(error, MemoryError):
            wrapped = ResourceExhaustedError(f"{self.codec_id} {operation} ran out of memory")
        else:
            wrapped = CodecError(f"{self.codec_id} {operation} failed: {error}")
        wrapped.__cause__ = error
        return wrapped

    def encode(
        self,
        video: Any,
        options: Optional[EncodeOptions] = None
    ) -> TokenizationResult:
        """
        Encode a video into tokens.

        Args:
            video: Array of shape (T, H, W, 3), uint8 or float in [0, 1].
            options: Batch size and refinement target overrides.

        Returns:
            ``COMPLETED`` result with tokens, per-call metrics and the
            uint8 reconstruction, or a ``FAILED`` result carrying the error.
            Never raises.
        """
        options = options or EncodeOptions()
        start = time.perf_counter()
        attempted = 0
        try:
            frames = self._check_video(video)
            attempted = len(frames)
            batch_size = self._batch_size(options.batch_size)
            target = options.target_psnr if options.target_psnr is not None else self.config.target_psnr
            num_frames, height, width, _ = frames.shape

            latents = []
            reconstruction = []
            squared_error = 0.0
            nbytes = self.config.memory_for(height * width, min(batch_size, num_frames))
            with self.ledger.reservation(nbytes, label=f"{self.codec_id}:encode"):
                for offset in range(0, num_frames, batch_size):
                    batch = _to_float(frames[offset:offset + batch_size])
                    latent, recon = self._encode_batch(batch, target)
                    squared_error += float(np.sum((batch - recon) ** 2, dtype=np.float64))
                    latents.append(latent)
                    reconstruction.append(_to_uint8(recon))

            psnr = psnr_from_mse(squared_error / frames.size, max_value=1.0)
            tokens = TokenBuffer(
                latent=np.concatenate(latents),
                video_shape=tuple(int(d) for d in frames.shape),
                variant=self.variant,
                compression_ratio=self.config.compression_ratio,
            )
            metrics = self._record(num_frames, time.perf_counter() - start, psnr)
            logger.debug(
                f"{self.codec_id} encoded {num_frames} frames: "
                f"psnr={psnr:.2f}dB, latency={metrics.latency_ms:.2f}ms/frame"
            )
            return TokenizationResult(
                tokens=tokens,
                metrics=metrics,
                status=AssetStatus.COMPLETED,
                reconstruction=np.concatenate(reconstruction),
            )
        except Exception as e:
            error = self._as_curation_error("encode", e)
            logger.warning(f"{self.codec_id} encode failed: {error}")
            self._record(attempted, time.perf_counter() - start)
            return TokenizationResult(
                tokens=TokenBuffer.empty(self.variant, self.config.compression_ratio),
                metrics=TokenizerMetrics(),
                status=AssetStatus.FAILED,
                error=error,
            )

    def decode(
        self,
        tokens: TokenBuffer,
        options: Optional[DecodeOptions] = None
    ) -> DecodeResult:
        """
        Decode tokens back into uint8 frames.

        Returns:
            ``COMPLETED`` result with the video shaped like the source clip,
            or a ``FAILED`` result carrying the error. Never raises.
        """
        options = options or DecodeOptions()
        start = time.perf_counter()
        attempted = 0
        try:
            if self._closed:
                raise CodecError(f"Codec {self.codec_id} is closed")
            if tokens.variant != self.variant or tokens.compression_ratio != self.config.compression_ratio:
                raise InvalidAssetError(
                    f"Tokens for {codec_id(tokens.variant, tokens.compression_ratio)} "
                    f"cannot be decoded by {self.codec_id}"
                )
            if tokens.is_empty or tokens.num_frames == 0:
                raise InvalidAssetError("Token buffer is empty")
            attempted = tokens.num_frames
            if len(tokens.latent) != tokens.num_frames:
                raise InvalidAssetError(
                    f"Token buffer holds {len(tokens.latent)} frames, expected {tokens.num_frames}"
                )

            batch_size = self._batch_size(options.batch_size)
            num_frames, height, width, channels = tokens.video_shape
            frames = []
            nbytes = self.config.memory_for(height * width, min(batch_size, num_frames))
            with self.ledger.reservation(nbytes, label=f"{self.codec_id}:decode"):
                for offset in range(0, num_frames, batch_size):
                    latent = tokens.latent[offset:offset + batch_size]
                    shape = (len(latent), height, width, channels)
                    frames.append(_to_uint8(self._decode_batch(latent, shape)))

            metrics = self._record(num_frames, time.perf_counter() - start)
            return DecodeResult(
                video=np.concatenate(frames),
                metrics=metrics,
                status=AssetStatus.COMPLETED,
            )
        except Exception as e:
            error = self._as_curation_error("decode", e)
            logger.warning(f"{self.codec_id} decode failed: {error}")
            self._record(attempted, time.perf_counter() - start)
            return DecodeResult(
                video=np.zeros((0, 0, 0, 3), dtype=np.uint8),
                metrics=TokenizerMetrics(),
                status=AssetStatus.FAILED,
                error=error,
            )
