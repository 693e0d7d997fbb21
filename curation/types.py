"""Data types and result containers."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

import numpy as np
from numpy.typing import NDArray

from .errors import ErrorKind

MAX_DIMENSION = 7680  # 8K

TARGET_PSNR = 32.80
MAX_LATENCY_MS = 100.0
REFERENCE_THROUGHPUT = 30.0  # frames per second


class AssetStatus(str, Enum):
    """Lifecycle status of a video asset."""
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class TokenizerVariant(str, Enum):
    """Tokenizer architectures: continuous for diffusion, discrete for autoregressive."""
    CONTINUOUS = "CONTINUOUS"
    DISCRETE = "DISCRETE"


class Stage(str, Enum):
    """Pipeline stages, in execution order."""
    ENCODE = "encode"
    QUALITY_GATE = "quality_gate"
    DEDUPLICATE = "deduplicate"
    ANNOTATE = "annotate"


@dataclass(frozen=True)
class VideoResolution:
    """Frame dimensions in pixels."""
    width: int
    height: int

    @property
    def aspect_ratio(self) -> float:
        return self.width / self.height

    @property
    def pixels(self) -> int:
        return self.width * self.height

    def validate(self) -> bool:
        """True if both dimensions are positive and at most 8K."""
        return (
            0 < self.width <= MAX_DIMENSION
            and 0 < self.height <= MAX_DIMENSION
        )

    def __str__(self) -> str:
        return f"{self.width}x{self.height}"


@dataclass(frozen=True)
class QualityMetrics:
    """Reconstruction fidelity and distributional similarity scores."""
    psnr: float
    ssim: float
    fid: float
    fvd: float

    def to_dict(self) -> dict[str, float]:
        return {
            "psnr": self.psnr,
            "ssim": self.ssim,
            "fid": self.fid,
            "fvd": self.fvd,
        }


@dataclass
class Annotation:
    """A single label attached to an asset by the annotation stage."""
    label: str
    confidence: float
    frame_index: Optional[int] = None


@dataclass
class VideoAsset:
    """
    A video moving through the curation pipeline.

    ``frames`` and ``reconstruction`` are runtime payloads: the decoded
    source clip as uint8 ``(T, H, W, C)`` and the clip rebuilt from tokens.
    They are loaded lazily by the orchestrator and never serialized.
    """
    id: str
    checksum: str
    source: str
    resolution: VideoResolution
    frame_count: int
    status: AssetStatus = AssetStatus.PENDING
    quality: Optional[QualityMetrics] = None
    annotations: Optional[list[Annotation]] = None
    attempts: int = 0
    error_kind: Optional[ErrorKind] = None
    error_message: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)
    frames: Optional[NDArray[np.uint8]] = field(
        default=None, repr=False, compare=False
    )
    reconstruction: Optional[NDArray[np.uint8]] = field(
        default=None, repr=False, compare=False
    )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "checksum": self.checksum,
            "source": self.source,
            "resolution": {"width": self.resolution.width, "height": self.resolution.height},
            "frame_count": self.frame_count,
            "status": self.status.value,
            "quality": self.quality.to_dict() if self.quality else None,
            "annotations": [
                {"label": a.label, "confidence": a.confidence, "frame_index": a.frame_index}
                for a in self.annotations
            ] if self.annotations is not None else None,
            "attempts": self.attempts,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "error_message": self.error_message,
            "metadata": dict(self.metadata),
        }


@dataclass(frozen=True)
class TokenizerMetrics:
    """Running performance snapshot of a tokenization codec."""
    compression_ratio: float = 0.0
    psnr: float = 0.0
    throughput: float = 0.0  # frames per second
    latency_ms: float = 0.0  # per frame

    def validate(self) -> bool:
        """True if PSNR reaches the target and per-frame latency is within budget."""
        return self.psnr >= TARGET_PSNR and self.latency_ms <= MAX_LATENCY_MS

    def efficiency(self) -> float:
        """Weighted PSNR/throughput score as a percentage."""
        return (
            self.psnr / TARGET_PSNR * 0.6
            + self.throughput / REFERENCE_THROUGHPUT * 0.4
        ) * 100


@dataclass
class ProcessingJob:
    """One orchestration attempt chain for an asset."""
    asset: VideoAsset
    stage: Optional[Stage] = None
    completed_stages: list[Stage] = field(default_factory=list)
    error_kind: Optional[ErrorKind] = None
    error: Optional[BaseException] = field(default=None, repr=False)
    retry_policy: Optional[Any] = None
    scheduled_delay: Optional[float] = None
    attempt: int = 0
    retry_delays: list[float] = field(default_factory=list)
    done: threading.Event = field(default_factory=threading.Event, repr=False, compare=False)
    sequencer: Optional[Any] = field(default=None, repr=False, compare=False)
    turn_wait_s: float = 0.0  # time this attempt spent waiting for its duplicate-check turn
