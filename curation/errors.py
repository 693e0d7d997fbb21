"""Error taxonomy for the curation pipeline.

Every error carries an ``ErrorKind`` and a ``retryable`` flag. The
orchestrator classifies stage failures with these two attributes:

- business failures (quality gate, duplicate, invalid asset) are terminal;
- infrastructure failures (codec, extraction, memory, timeout) are retried
  according to the retry policy registered for their kind.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Classification used to key retry policies and error counters."""
    CONFIGURATION = "configuration"
    RESOURCE_EXHAUSTED = "resource_exhausted"
    QUALITY_GATE = "quality_gate"
    DUPLICATE = "duplicate"
    INVALID_ASSET = "invalid_asset"
    EXTRACTION = "extraction"
    CODEC = "codec"
    TIMEOUT = "timeout"
    QUALITY_ASSESSMENT = "quality_assessment"
    ANNOTATION = "annotation"
    CANCELLED = "cancelled"
    UNKNOWN = "unknown"


class CurationError(Exception):
    """Base class for all pipeline errors."""
    kind: ErrorKind = ErrorKind.UNKNOWN
    retryable: bool = False

    def __init__(self, message: str, asset_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.asset_id = asset_id


class ConfigurationError(CurationError, ValueError):
    """Invalid configuration. Raised at construction, never retried."""
    kind = ErrorKind.CONFIGURATION


class ResourceExhaustedError(CurationError):
    """The memory ledger denied a reservation."""
    kind = ErrorKind.RESOURCE_EXHAUSTED
    retryable = True

    def __init__(
        self,
        message: str,
        requested: int = 0,
        available: int = 0,
        asset_id: Optional[str] = None
    ):
        super().__init__(message, asset_id=asset_id)
        self.requested = requested
        self.available = available


class QualityGateError(CurationError):
    """Quality metrics below the configured thresholds."""
    kind = ErrorKind.QUALITY_GATE


class DuplicateDetectedError(CurationError):
    """Asset is a near-duplicate of content already in the index."""
    kind = ErrorKind.DUPLICATE


class InvalidAssetError(CurationError, ValueError):
    """Asset content is empty or malformed (zero frames, bad shape)."""
    kind = ErrorKind.INVALID_ASSET


class ExtractionError(CurationError):
    """Feature or frame extraction failed."""
    kind = ErrorKind.EXTRACTION
    retryable = True


class DeduplicationError(ExtractionError):
    """Feature extraction for deduplication kept failing after retries."""


class CodecError(CurationError):
    """Encode or decode failed inside the tokenization codec."""
    kind = ErrorKind.CODEC
    retryable = True


class StageTimeoutError(CurationError, TimeoutError):
    """A stage exceeded its time budget."""
    kind = ErrorKind.TIMEOUT
    retryable = True

    def __init__(
        self,
        message: str,
        stage: str = "",
        elapsed: float = 0.0,
        budget: float = 0.0,
        asset_id: Optional[str] = None
    ):
        super().__init__(message, asset_id=asset_id)
        self.stage = stage
        self.elapsed = elapsed
        self.budget = budget


class QualityAssessmentError(CurationError):
    """Quality metrics could not be computed."""
    kind = ErrorKind.QUALITY_ASSESSMENT
    retryable = True


class AnnotationError(CurationError):
    """Annotation stage failed."""
    kind = ErrorKind.ANNOTATION
    retryable = True


class CancelledError(CurationError):
    """Processing was cancelled cooperatively."""
    kind = ErrorKind.CANCELLED


def classify(error: BaseException) -> tuple[ErrorKind, bool]:
    """
    Map an exception to its (kind, retryable) pair.

    Exceptions outside the taxonomy are ``UNKNOWN`` and not retryable by
    themselves; a retry policy registered for ``UNKNOWN`` still applies.
    """
    if isinstance(error, CurationError):
        return error.kind, error.retryable
    if isinstance(error, TimeoutError):
        return ErrorKind.TIMEOUT, True
    if isinstance(error, MemoryError):
        return ErrorKind.RESOURCE_EXHAUSTED, True
    return ErrorKind.UNKNOWN, False
