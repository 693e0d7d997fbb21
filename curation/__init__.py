"""
Video Curation and Tokenization Pipeline

Curates raw video for generative-model training:
- Continuous and discrete tokenizers with fidelity tracking
- PSNR/SSIM/FID/FVD quality gating
- Perceptual near-duplicate detection
- Retry, timeout and cancellation handling per asset
"""

from .config import (
    CuratorConfig,
    DeduplicationConfig,
    EmbedderConfig,
    QualityConfig,
    QualityThresholds,
    StageTimeouts,
    TokenizerConfig,
)
from .errors import (
    AnnotationError,
    CancelledError,
    CodecError,
    ConfigurationError,
    CurationError,
    DeduplicationError,
    DuplicateDetectedError,
    ErrorKind,
    ExtractionError,
    InvalidAssetError,
    QualityAssessmentError,
    QualityGateError,
    ResourceExhaustedError,
    StageTimeoutError,
)
from .types import (
    Annotation,
    AssetStatus,
    QualityMetrics,
    Stage,
    TokenizerMetrics,
    TokenizerVariant,
    VideoAsset,
    VideoResolution,
)
from .memory import MemoryLedger
from .retry import BackoffKind, RetryPolicy, compute_delay
from .tokenizer import ContinuousCodec, DiscreteCodec, TokenizationCodec, create_codec, validate_config
from .quality import QualityAssessor
from .dedup import Deduplicator, DuplicateIndex
from .annotation import Annotator, MockAnnotator
from .orchestrator import BatchOptions, CurationOrchestrator
from .demo import generate_synthetic_assets, print_results_summary

__version__ = "1.0.0"

__all__ = [
    # Configuration
    "CuratorConfig",
    "DeduplicationConfig",
    "EmbedderConfig",
    "QualityConfig",
    "QualityThresholds",
    "StageTimeouts",
    "TokenizerConfig",
    "RetryPolicy",
    "BackoffKind",
    "compute_delay",
    # Errors
    "CurationError",
    "ConfigurationError",
    "ResourceExhaustedError",
    "QualityGateError",
    "DuplicateDetectedError",
    "InvalidAssetError",
    "ExtractionError",
    "DeduplicationError",
    "CodecError",
    "StageTimeoutError",
    "QualityAssessmentError",
    "AnnotationError",
    "CancelledError",
    "ErrorKind",
    # Types
    "Annotation",
    "AssetStatus",
    "QualityMetrics",
    "Stage",
    "TokenizerMetrics",
    "TokenizerVariant",
    "VideoAsset",
    "VideoResolution",
    # Core components
    "MemoryLedger",
    "TokenizationCodec",
    "ContinuousCodec",
    "DiscreteCodec",
    "create_codec",
    "validate_config",
    "QualityAssessor",
    "Deduplicator",
    "DuplicateIndex",
    "Annotator",
    "MockAnnotator",
    # Orchestration
    "CurationOrchestrator",
    "BatchOptions",
    # Demo utilities
    "generate_synthetic_assets",
    "print_results_summary",
]
