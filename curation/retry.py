"""Retry policies as data, plus the pure delay function that drives them."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .errors import ConfigurationError, ErrorKind


class BackoffKind(str, Enum):
    """How the delay grows between attempts."""
    FIXED = "fixed"
    LINEAR = "linear"
    EXPONENTIAL = "exponential"


@dataclass(frozen=True)
class RetryPolicy:
    """Retry settings for one error kind."""
    max_attempts: int = 3
    base_delay: float = 1.0  # seconds
    backoff: BackoffKind = BackoffKind.EXPONENTIAL
    max_delay: float = 60.0
    multiplier: float = 2.0

    def __post_init__(self):
        if isinstance(self.backoff, str) and not isinstance(self.backoff, BackoffKind):
            object.__setattr__(self, "backoff", BackoffKind(self.backoff))
        if self.max_attempts < 1:
            raise ConfigurationError(
                f"max_attempts must be >= 1, got {self.max_attempts}"
            )
        if self.base_delay < 0 or self.max_delay < 0:
            raise ConfigurationError("retry delays must be non-negative")
        if self.multiplier < 1:
            raise ConfigurationError(
                f"multiplier must be >= 1, got {self.multiplier}"
            )

    def allows_retry(self, attempts_made: int) -> bool:
        """True if another attempt may follow ``attempts_made`` attempts."""
        return attempts_made < self.max_attempts


def compute_delay(policy: RetryPolicy, failed_attempts: int) -> float:
    """
    Delay before the next attempt.

    Args:
        policy: Retry policy to apply.
        failed_attempts: Number of attempts that have failed so far (>= 1).

    Returns:
        Delay in seconds, capped at ``policy.max_delay``.
    """
    n = max(1, failed_attempts)
    if policy.backoff == BackoffKind.FIXED:
        delay = policy.base_delay
    elif policy.backoff == BackoffKind.LINEAR:
        delay = policy.base_delay * n
    else:
        delay = policy.base_delay * policy.multiplier ** (n - 1)
    return float(min(delay, policy.max_delay))


RETRYABLE_KINDS = (
    ErrorKind.RESOURCE_EXHAUSTED,
    ErrorKind.EXTRACTION,
    ErrorKind.CODEC,
    ErrorKind.TIMEOUT,
    ErrorKind.QUALITY_ASSESSMENT,
    ErrorKind.ANNOTATION,
)


def default_retry_policies() -> dict[ErrorKind, RetryPolicy]:
    """Exponential backoff from 1s, three attempts, for every infrastructure kind."""
    return {kind: RetryPolicy() for kind in RETRYABLE_KINDS}


def parse_retry_policies(
    raw: Optional[dict]
) -> dict[ErrorKind, RetryPolicy]:
    """Build a policy map from a JSON-style dict keyed by error kind name."""
    if raw is None:
        return default_retry_policies()
    policies = {}
    for key, value in raw.items():
        try:
            kind = ErrorKind(key) if not isinstance(key, ErrorKind) else key
        except ValueError as e:
            raise ConfigurationError(f"Unknown error kind in retry policies: {key}") from e
        if isinstance(value, RetryPolicy):
            policies[kind] = value
            continue
        try:
            policies[kind] = RetryPolicy(**value)
        except (TypeError, ValueError) as e:
            if isinstance(e, ConfigurationError):
                raise
            raise ConfigurationError(f"Invalid retry policy for {key}: {e}") from e
    return policies
