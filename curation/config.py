"""Configuration dataclasses for the curation pipeline."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Union

from .errors import ConfigurationError, ErrorKind
from .retry import RetryPolicy, default_retry_policies, parse_retry_policies
from .types import TokenizerVariant, VideoResolution

GIB = 1024 ** 3

ALLOWED_COMPRESSION_RATIOS = {
    TokenizerVariant.CONTINUOUS: (256, 512, 1024),
    TokenizerVariant.DISCRETE: (256, 512, 2048),
}

# Bits stored per pixel value on device while a batch is in flight
_BITS_PER_VALUE = {
    TokenizerVariant.CONTINUOUS: 32,
    TokenizerVariant.DISCRETE: 16,
}
_MEMORY_OVERHEAD = 1.5


def _get_device() -> str:
    """Get the best available device."""
    try:
        import torch
        return "cuda" if torch.cuda.is_available() else "cpu"
    except ImportError:
        return "cpu"


def parse_variant(variant: Union[str, TokenizerVariant]) -> TokenizerVariant:
    if isinstance(variant, TokenizerVariant):
        return variant
    try:
        return TokenizerVariant(str(variant).upper())
    except ValueError as e:
        raise ConfigurationError(f"Unknown tokenizer variant: {variant}") from e


def estimate_memory_bytes(
    variant: TokenizerVariant,
    compression_ratio: int,
    pixels: int,
    batch_size: int
) -> int:
    """Device memory for one batch: raw frames plus latent, with overhead."""
    bytes_per_value = _BITS_PER_VALUE[variant] / 8
    raw = pixels * 3 * bytes_per_value * batch_size
    latent = raw / max(compression_ratio, 1)
    return int((raw + latent) * _MEMORY_OVERHEAD)


def tokenizer_config_errors(
    variant: TokenizerVariant,
    compression_ratio: int,
    resolution: VideoResolution,
    batch_size: int = 32,
    device_memory_budget_gb: float = 80.0,
    max_refinement_iterations: int = 5
) -> list[str]:
    """Every rule a candidate tokenizer configuration breaks, in check order."""
    errors = []
    allowed = ALLOWED_COMPRESSION_RATIOS[variant]
    if compression_ratio not in allowed:
        errors.append(
            f"compression ratio must be one of {list(allowed)} for {variant.value}"
        )
    if not resolution.validate():
        errors.append("resolution must be positive and at most 7680 per side")
    if not 1 <= batch_size <= 128:
        errors.append("batch_size must be in [1, 128]")
    if max_refinement_iterations < 0:
        errors.append("max_refinement_iterations must be non-negative")
    if device_memory_budget_gb <= 0:
        errors.append("device_memory_budget_gb must be positive")
    if not errors:
        estimate = estimate_memory_bytes(variant, compression_ratio, resolution.pixels, batch_size)
        if estimate > device_memory_budget_gb * GIB:
            errors.append(
                f"estimated memory {estimate / GIB:.2f}GB exceeds "
                f"device budget {device_memory_budget_gb:.2f}GB"
            )
    return errors


@dataclass(frozen=True)
class TokenizerConfig:
    """
    Immutable tokenizer configuration.

    ``resolution`` is the largest frame size the codec accepts; the memory
    estimate is computed for it. Construction fails with
    ``ConfigurationError`` if the compression ratio is not allowed for the
    variant, the resolution is out of range, or the estimated device memory
    for one batch exceeds the device budget.
    """
    variant: TokenizerVariant
    compression_ratio: int
    resolution: VideoResolution
    batch_size: int = 32  # frames per batch
    device_memory_budget_gb: float = 80.0
    target_psnr: float = 32.80
    max_refinement_iterations: int = 5

    def __post_init__(self):
        object.__setattr__(self, "variant", parse_variant(self.variant))
        errors = tokenizer_config_errors(
            self.variant,
            self.compression_ratio,
            self.resolution,
            self.batch_size,
            self.device_memory_budget_gb,
            self.max_refinement_iterations,
        )
        if errors:
            raise ConfigurationError(
                f"Invalid tokenizer configuration: variant={self.variant.value}, "
                f"compression_ratio={self.compression_ratio}, "
                f"resolution={self.resolution}: {'; '.join(errors)}"
            )

    @property
    def device_memory_budget_bytes(self) -> int:
        return int(self.device_memory_budget_gb * GIB)

    @property
    def estimated_memory_bytes(self) -> int:
        return estimate_memory_bytes(
            self.variant, self.compression_ratio, self.resolution.pixels, self.batch_size
        )

    def memory_for(self, pixels: int, frames: int) -> int:
        """Device memory needed to process ``frames`` frames of ``pixels`` pixels each."""
        return estimate_memory_bytes(self.variant, self.compression_ratio, pixels, frames)

    def to_dict(self) -> dict[str, Any]:
        return {
            "variant": self.variant.value,
            "compression_ratio": self.compression_ratio,
            "resolution": {"width": self.resolution.width, "height": self.resolution.height},
            "batch_size": self.batch_size,
            "estimated_memory_gb": self.estimated_memory_bytes / GIB,
        }


@dataclass
class EmbedderConfig:
    """Configuration for frame feature extraction."""
    backbone: str = "resnet18"  # torchvision classification model name
    weights: Optional[str] = None  # torchvision weights enum name, e.g. "DEFAULT"
    input_size: int = 224
    batch_size: int = 32  # frames per forward pass
    device: str = field(default_factory=_get_device)
    torch_dtype: str = "float32"  # "bfloat16", "float16", or "float32"
    normalize_embeddings: bool = True
    grid_size: int = 8  # luma grid side for the statistics extractor
    seed: int = 0  # initializes backbones loaded without weights


@dataclass(frozen=True)
class QualityThresholds:
    """
    Acceptance thresholds for quality metrics.

    FID and FVD are Frechet distances between embeddings on the extractor's
    own scale. With the default frame-statistics extractor that scale is
    0-255 gray levels, so a uniform color bias of ``d`` levels alone costs
    ``3 * d**2``; the default ``max_fid`` tolerates about 4 levels of bias.
    Discrete codecs quantize colors to their codebook lattice and need a
    higher ``max_fid``/``max_fvd`` than the defaults, which suit the
    continuous variant.
    """
    min_psnr: float = 25.0
    min_ssim: float = 0.7
    max_fid: float = 50.0
    max_fvd: float = 150.0

    def __post_init__(self):
        for name in ("min_psnr", "min_ssim", "max_fid", "max_fvd"):
            if getattr(self, name) < 0:
                raise ConfigurationError(f"{name} must be non-negative, got {getattr(self, name)}")
        if self.min_ssim > 1.0:
            raise ConfigurationError(f"min_ssim must be <= 1.0, got {self.min_ssim}")


@dataclass(frozen=True)
class QualityConfig:
    """Configuration for quality assessment."""
    thresholds: QualityThresholds = field(default_factory=QualityThresholds)
    batch_size: int = 32  # frames per feature-extraction batch
    fvd_window: int = 4  # frames per clip for FVD embeddings
    fvd_stride: int = 2
    ssim_window: int = 11
    ssim_sigma: float = 1.5
    cache_size: int = 10000  # cached metric sets, oldest evicted first

    def __post_init__(self):
        if self.batch_size < 1 or self.fvd_window < 1 or self.fvd_stride < 1:
            raise ConfigurationError("batch_size, fvd_window and fvd_stride must be >= 1")
        if self.cache_size < 1:
            raise ConfigurationError(f"cache_size must be >= 1, got {self.cache_size}")
        if self.ssim_window < 3 or self.ssim_window % 2 == 0:
            raise ConfigurationError("ssim_window must be an odd number >= 3")


@dataclass(frozen=True)
class DeduplicationConfig:
    """Configuration for perceptual fingerprinting and similarity checks."""
    similarity_threshold: float = 0.95
    max_cache_size: int = 10000
    batch_size: int = 32
    retry_attempts: int = 3
    retry_delay: float = 1.0  # seconds, grows linearly per attempt
    fingerprint_frames: int = 8
    hash_size: int = 8  # fingerprint grid side per frame
    max_workers: int = 4

    def __post_init__(self):
        if not 0.0 < self.similarity_threshold <= 1.0:
            raise ConfigurationError(
                f"similarity_threshold must be in (0, 1], got {self.similarity_threshold}"
            )
        if self.max_cache_size < 1:
            raise ConfigurationError(f"max_cache_size must be >= 1, got {self.max_cache_size}")
        if self.retry_attempts < 1:
            raise ConfigurationError(f"retry_attempts must be >= 1, got {self.retry_attempts}")
        if self.retry_delay < 0:
            raise ConfigurationError("retry_delay must be non-negative")
        if self.fingerprint_frames < 1 or self.hash_size < 2:
            raise ConfigurationError("fingerprint_frames must be >= 1 and hash_size >= 2")
        if self.batch_size < 1 or self.max_workers < 1:
            raise ConfigurationError("batch_size and max_workers must be >= 1")


@dataclass(frozen=True)
class StageTimeouts:
    """Per-stage time budgets in seconds. ``None`` disables a budget."""
    encode_per_frame_s: Optional[float] = 0.1
    quality_s: Optional[float] = 600.0
    deduplicate_s: Optional[float] = 600.0
    annotate_s: Optional[float] = 600.0
    end_to_end_s: Optional[float] = 600.0

    def __post_init__(self):
        for name, value in self.__dict__.items():
            if value is not None and value <= 0:
                raise ConfigurationError(f"{name} must be positive, got {value}")


@dataclass(frozen=True)
class CuratorConfig:
    """Top-level configuration surface of the curation orchestrator."""
    batch_size: int = 32
    max_concurrent: int = 4
    quality_thresholds: QualityThresholds = field(default_factory=QualityThresholds)
    similarity_threshold: float = 0.95
    max_cache_size: int = 10000
    retry_policies: dict[ErrorKind, RetryPolicy] = field(default_factory=default_retry_policies)
    timeouts: StageTimeouts = field(default_factory=StageTimeouts)
    annotate: bool = True
    persist_tokens: bool = False
    device_memory_budget_gb: float = 80.0

    def __post_init__(self):
        if self.batch_size < 1:
            raise ConfigurationError(f"batch_size must be >= 1, got {self.batch_size}")
        if self.max_concurrent < 1:
            raise ConfigurationError(f"max_concurrent must be >= 1, got {self.max_concurrent}")
        if self.device_memory_budget_gb <= 0:
            raise ConfigurationError("device_memory_budget_gb must be positive")
        # Re-validate through the component configs
        self.deduplication_config()
        for kind, policy in self.retry_policies.items():
            if not isinstance(kind, ErrorKind) or not isinstance(policy, RetryPolicy):
                raise ConfigurationError(f"Invalid retry policy entry: {kind!r} -> {policy!r}")

    def deduplication_config(self) -> DeduplicationConfig:
        return DeduplicationConfig(
            similarity_threshold=self.similarity_threshold,
            max_cache_size=self.max_cache_size,
            batch_size=self.batch_size,
            max_workers=self.max_concurrent,
        )

    def quality_config(self) -> QualityConfig:
        return QualityConfig(
            thresholds=self.quality_thresholds,
            batch_size=self.batch_size,
            cache_size=self.max_cache_size,
        )

    def retry_policy_for(self, kind: ErrorKind) -> Optional[RetryPolicy]:
        return self.retry_policies.get(kind)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CuratorConfig":
        """Build a config from a JSON-style dict; unknown keys are rejected."""
        data = dict(data)
        known = set(cls.__dataclass_fields__)
        unknown = set(data) - known
        if unknown:
            raise ConfigurationError(f"Unknown configuration keys: {sorted(unknown)}")

        try:
            if "quality_thresholds" in data and isinstance(data["quality_thresholds"], dict):
                data["quality_thresholds"] = QualityThresholds(**data["quality_thresholds"])
            if "timeouts" in data and isinstance(data["timeouts"], dict):
                data["timeouts"] = StageTimeouts(**data["timeouts"])
        except TypeError as e:
            raise ConfigurationError(f"Invalid configuration section: {e}") from e
        if "retry_policies" in data:
            data["retry_policies"] = parse_retry_policies(data["retry_policies"])
        return cls(**data)

    @classmethod
    def from_json(cls, path: Union[str, Path]) -> "CuratorConfig":
        """Load a config from a JSON file."""
        with open(path) as f:
            return cls.from_dict(json.load(f))
