"""Retry policy and backoff tests."""

import pytest

from curation.errors import (
    CodecError,
    ConfigurationError,
    DuplicateDetectedError,
    ErrorKind,
    QualityGateError,
    StageTimeoutError,
    classify,
)
from curation.retry import (
    RETRYABLE_KINDS,
    BackoffKind,
    RetryPolicy,
    compute_delay,
    default_retry_policies,
    parse_retry_policies,
)

pytestmark = pytest.mark.unit


class TestComputeDelay:
    """Test the pure delay function."""

    def test_exponential(self):
        policy = RetryPolicy(base_delay=1.0, backoff=BackoffKind.EXPONENTIAL, multiplier=2.0)
        assert [compute_delay(policy, n) for n in (1, 2, 3, 4)] == [1.0, 2.0, 4.0, 8.0]

    def test_linear(self):
        policy = RetryPolicy(base_delay=0.5, backoff=BackoffKind.LINEAR)
        assert [compute_delay(policy, n) for n in (1, 2, 3)] == [0.5, 1.0, 1.5]

    def test_fixed(self):
        policy = RetryPolicy(base_delay=3.0, backoff=BackoffKind.FIXED)
        assert [compute_delay(policy, n) for n in (1, 5)] == [3.0, 3.0]

    def test_capped_at_max_delay(self):
        policy = RetryPolicy(base_delay=10.0, max_delay=15.0)
        assert compute_delay(policy, 3) == 15.0

    def test_zero_failures_treated_as_first(self):
        policy = RetryPolicy(base_delay=1.0)
        assert compute_delay(policy, 0) == 1.0


class TestRetryPolicy:
    """Test policy validation and attempt accounting."""

    def test_allows_retry_until_max_attempts(self):
        policy = RetryPolicy(max_attempts=3)
        assert policy.allows_retry(1)
        assert policy.allows_retry(2)
        assert not policy.allows_retry(3)

    def test_single_attempt_never_retries(self):
        assert not RetryPolicy(max_attempts=1).allows_retry(1)

    def test_backoff_from_string(self):
        assert RetryPolicy(backoff="fixed").backoff == BackoffKind.FIXED

    @pytest.mark.parametrize("kwargs", [
        {"max_attempts": 0},
        {"base_delay": -1.0},
        {"multiplier": 0.5},
    ])
    def test_invalid_policy(self, kwargs):
        with pytest.raises(ConfigurationError):
            RetryPolicy(**kwargs)

    def test_defaults_cover_retryable_kinds(self):
        policies = default_retry_policies()
        assert set(policies) == set(RETRYABLE_KINDS)
        assert all(p == RetryPolicy() for p in policies.values())

    def test_parse_none_gives_defaults(self):
        assert parse_retry_policies(None) == default_retry_policies()

    def test_parse_invalid_values(self):
        with pytest.raises(ConfigurationError, match="Invalid retry policy for codec"):
            parse_retry_policies({"codec": {"max_attempts": "three"}})


class TestClassify:
    """Test mapping exceptions to (kind, retryable)."""

    def test_business_failures_not_retryable(self):
        assert classify(QualityGateError("low psnr")) == (ErrorKind.QUALITY_GATE, False)
        assert classify(DuplicateDetectedError("dup")) == (ErrorKind.DUPLICATE, False)

    def test_infrastructure_failures_retryable(self):
        assert classify(CodecError("boom")) == (ErrorKind.CODEC, True)
        assert classify(StageTimeoutError("slow")) == (ErrorKind.TIMEOUT, True)

    def test_builtin_errors(self):
        assert classify(TimeoutError()) == (ErrorKind.TIMEOUT, True)
        assert classify(MemoryError()) == (ErrorKind.RESOURCE_EXHAUSTED, True)
        assert classify(KeyError("x")) == (ErrorKind.UNKNOWN, False)
