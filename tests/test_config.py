"""
Configuration tests.

Tests validate tokenizer configuration rules, component configs and
loading the curation configuration from JSON.
"""

import json

import pytest

from curation.config import (
    GIB,
    CuratorConfig,
    DeduplicationConfig,
    QualityConfig,
    QualityThresholds,
    StageTimeouts,
    TokenizerConfig,
    estimate_memory_bytes,
    parse_variant,
    tokenizer_config_errors,
)
from curation.errors import ConfigurationError, ErrorKind
from curation.retry import BackoffKind, RetryPolicy
from curation.types import TokenizerVariant, VideoResolution

pytestmark = pytest.mark.unit

HD = VideoResolution(1280, 720)


class TestTokenizerConfig:
    """Test construction-time validation of tokenizer configs."""

    @pytest.mark.parametrize("ratio", [256, 512, 1024])
    def test_continuous_ratios_accepted(self, ratio):
        """Continuous tokenizers accept 256, 512 and 1024."""
        config = TokenizerConfig(TokenizerVariant.CONTINUOUS, ratio, HD)
        assert config.compression_ratio == ratio

    @pytest.mark.parametrize("ratio", [256, 512, 2048])
    def test_discrete_ratios_accepted(self, ratio):
        """Discrete tokenizers accept 256, 512 and 2048."""
        config = TokenizerConfig(TokenizerVariant.DISCRETE, ratio, HD)
        assert config.variant == TokenizerVariant.DISCRETE

    @pytest.mark.parametrize("variant,ratio", [
        (TokenizerVariant.CONTINUOUS, 2048),
        (TokenizerVariant.DISCRETE, 1024),
        (TokenizerVariant.CONTINUOUS, 100),
    ])
    def test_disallowed_ratio_rejected(self, variant, ratio):
        """A ratio outside the variant's allowed set raises ConfigurationError."""
        with pytest.raises(ConfigurationError, match="compression ratio"):
            TokenizerConfig(variant, ratio, HD)

    def test_error_message_names_offending_values(self):
        """The error message includes variant, ratio and resolution."""
        with pytest.raises(ConfigurationError) as exc_info:
            TokenizerConfig(TokenizerVariant.CONTINUOUS, 2048, HD)
        message = str(exc_info.value)
        assert "CONTINUOUS" in message
        assert "2048" in message
        assert "1280x720" in message

    @pytest.mark.parametrize("resolution", [
        VideoResolution(0, 720),
        VideoResolution(1280, -1),
        VideoResolution(7681, 4320),
    ])
    def test_invalid_resolution_rejected(self, resolution):
        with pytest.raises(ConfigurationError, match="resolution"):
            TokenizerConfig(TokenizerVariant.CONTINUOUS, 512, resolution)

    def test_8k_accepted(self):
        """7680 per side is the inclusive upper bound."""
        config = TokenizerConfig(TokenizerVariant.CONTINUOUS, 512, VideoResolution(7680, 4320))
        assert config.resolution.pixels == 7680 * 4320

    def test_memory_budget_exceeded(self):
        """A batch that does not fit the device budget is rejected."""
        with pytest.raises(ConfigurationError, match="exceeds"):
            TokenizerConfig(
                TokenizerVariant.CONTINUOUS,
                512,
                VideoResolution(7680, 4320),
                batch_size=32,
                device_memory_budget_gb=1.0,
            )

    def test_batch_size_bounds(self):
        with pytest.raises(ConfigurationError, match="batch_size"):
            TokenizerConfig(TokenizerVariant.CONTINUOUS, 512, HD, batch_size=0)
        with pytest.raises(ConfigurationError, match="batch_size"):
            TokenizerConfig(TokenizerVariant.CONTINUOUS, 512, HD, batch_size=129)

    def test_variant_parsed_from_string(self):
        """Variant names are case-insensitive strings."""
        config = TokenizerConfig("discrete", 256, HD)
        assert config.variant == TokenizerVariant.DISCRETE

    def test_unknown_variant(self):
        with pytest.raises(ConfigurationError, match="Unknown tokenizer variant"):
            parse_variant("analog")

    def test_config_is_immutable(self):
        config = TokenizerConfig(TokenizerVariant.CONTINUOUS, 512, HD)
        with pytest.raises(AttributeError):
            config.compression_ratio = 256

    def test_memory_estimate(self):
        """Estimate covers raw frames plus latent with 1.5x overhead."""
        raw = 1280 * 720 * 3 * 4 * 32
        expected = int((raw + raw / 512) * 1.5)
        config = TokenizerConfig(TokenizerVariant.CONTINUOUS, 512, HD)
        assert config.estimated_memory_bytes == expected
        assert estimate_memory_bytes(TokenizerVariant.CONTINUOUS, 512, HD.pixels, 32) == expected

    def test_discrete_estimate_is_smaller(self):
        """Discrete batches hold 16-bit values."""
        continuous = estimate_memory_bytes(TokenizerVariant.CONTINUOUS, 512, HD.pixels, 32)
        discrete = estimate_memory_bytes(TokenizerVariant.DISCRETE, 512, HD.pixels, 32)
        assert discrete == pytest.approx(continuous / 2, rel=1e-6)

    def test_errors_collected_in_order(self):
        """Every broken rule is reported, not only the first."""
        errors = tokenizer_config_errors(
            TokenizerVariant.CONTINUOUS, 2048, VideoResolution(0, 0), batch_size=0
        )
        assert len(errors) == 3
        assert "compression ratio" in errors[0]
        assert "resolution" in errors[1]
        assert "batch_size" in errors[2]

    def test_to_dict(self):
        config = TokenizerConfig(TokenizerVariant.CONTINUOUS, 512, HD)
        data = config.to_dict()
        assert data["variant"] == "CONTINUOUS"
        assert data["resolution"] == {"width": 1280, "height": 720}
        assert data["estimated_memory_gb"] == pytest.approx(config.estimated_memory_bytes / GIB)


class TestComponentConfigs:
    """Test validation of quality, dedup and timeout configs."""

    def test_threshold_defaults(self):
        thresholds = QualityThresholds()
        assert thresholds.min_psnr == 25.0
        assert thresholds.min_ssim == 0.7
        assert thresholds.max_fid == 50.0
        assert thresholds.max_fvd == 150.0

    def test_negative_threshold_rejected(self):
        with pytest.raises(ConfigurationError, match="max_fid"):
            QualityThresholds(max_fid=-1.0)

    def test_ssim_threshold_above_one_rejected(self):
        with pytest.raises(ConfigurationError, match="min_ssim"):
            QualityThresholds(min_ssim=1.5)

    def test_similarity_threshold_range(self):
        with pytest.raises(ConfigurationError, match="similarity_threshold"):
            DeduplicationConfig(similarity_threshold=0.0)
        assert DeduplicationConfig(similarity_threshold=1.0).similarity_threshold == 1.0

    def test_quality_config_rejects_even_window(self):
        with pytest.raises(ConfigurationError, match="ssim_window"):
            QualityConfig(ssim_window=10)

    def test_timeouts_must_be_positive(self):
        with pytest.raises(ConfigurationError, match="quality_s"):
            StageTimeouts(quality_s=0)

    def test_timeouts_can_be_disabled(self):
        timeouts = StageTimeouts(encode_per_frame_s=None, end_to_end_s=None)
        assert timeouts.encode_per_frame_s is None


class TestCuratorConfig:
    """Test the top-level configuration surface."""

    def test_defaults(self):
        config = CuratorConfig()
        assert config.batch_size == 32
        assert config.max_concurrent == 4
        assert config.similarity_threshold == 0.95
        assert config.max_cache_size == 10000

    def test_default_retry_policies_cover_infrastructure_kinds(self):
        config = CuratorConfig()
        assert config.retry_policy_for(ErrorKind.CODEC) is not None
        assert config.retry_policy_for(ErrorKind.TIMEOUT) is not None
        assert config.retry_policy_for(ErrorKind.QUALITY_GATE) is None
        assert config.retry_policy_for(ErrorKind.DUPLICATE) is None

    def test_derived_component_configs(self):
        config = CuratorConfig(similarity_threshold=0.9, max_cache_size=50, max_concurrent=2)
        dedup = config.deduplication_config()
        assert dedup.similarity_threshold == 0.9
        assert dedup.max_cache_size == 50
        assert dedup.max_workers == 2
        assert config.quality_config().cache_size == 50

    def test_invalid_similarity_threshold_surfaces(self):
        with pytest.raises(ConfigurationError):
            CuratorConfig(similarity_threshold=1.5)

    def test_from_dict(self):
        config = CuratorConfig.from_dict({
            "max_concurrent": 8,
            "quality_thresholds": {"min_psnr": 30.0},
            "timeouts": {"end_to_end_s": 120.0},
            "retry_policies": {"codec": {"max_attempts": 5, "backoff": "linear"}},
        })
        assert config.max_concurrent == 8
        assert config.quality_thresholds.min_psnr == 30.0
        assert config.timeouts.end_to_end_s == 120.0
        policy = config.retry_policy_for(ErrorKind.CODEC)
        assert policy == RetryPolicy(max_attempts=5, backoff=BackoffKind.LINEAR)
        assert config.retry_policy_for(ErrorKind.TIMEOUT) is None

    def test_from_dict_rejects_unknown_keys(self):
        with pytest.raises(ConfigurationError, match="Unknown configuration keys"):
            CuratorConfig.from_dict({"max_concurent": 8})

    def test_from_dict_rejects_unknown_section_fields(self):
        with pytest.raises(ConfigurationError, match="Invalid configuration section"):
            CuratorConfig.from_dict({"quality_thresholds": {"min_lpips": 0.1}})

    def test_from_dict_rejects_unknown_error_kind(self):
        with pytest.raises(ConfigurationError, match="Unknown error kind"):
            CuratorConfig.from_dict({"retry_policies": {"gremlins": {}}})

    def test_from_json(self, tmp_path):
        path = tmp_path / "curation.json"
        path.write_text(json.dumps({"similarity_threshold": 0.9, "annotate": False}))
        config = CuratorConfig.from_json(path)
        assert config.similarity_threshold == 0.9
        assert config.annotate is False
