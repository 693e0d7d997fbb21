"""
Shared fixtures for all tests.

This conftest.py provides synthetic clips, fake clocks and pre-wired
pipeline components used across the test suite.
"""

from typing import Callable, List

import numpy as np
import pytest

from curation.config import CuratorConfig, StageTimeouts, TokenizerConfig
from curation.demo import generate_block_clip, make_asset
from curation.memory import MemoryLedger
from curation.observability import InMemoryAuditLog, InMemoryMetricsSink
from curation.types import TokenizerVariant, VideoAsset, VideoResolution


class FakeClock:
    """Monotonic clock that advances by ``step`` seconds on every read."""

    def __init__(self, start: float = 0.0, step: float = 0.0):
        self.now = start
        self.step = step

    def __call__(self) -> float:
        value = self.now
        self.now += self.step
        return value

    def advance(self, seconds: float) -> None:
        self.now += seconds


class SleepRecorder:
    """Stand-in for time.sleep that records requested delays."""

    def __init__(self):
        self.calls: List[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def rng() -> np.random.Generator:
    """Seeded random generator."""
    return np.random.default_rng(1234)


@pytest.fixture
def block_clip(rng) -> np.ndarray:
    """8-frame 256x512 clip of saturated color blocks."""
    return generate_block_clip(rng, num_frames=8, height=256, width=512)


@pytest.fixture
def clip_factory(rng) -> Callable[..., np.ndarray]:
    """Builds independent block clips."""
    def factory(num_frames: int = 8, height: int = 256, width: int = 512) -> np.ndarray:
        return generate_block_clip(rng, num_frames=num_frames, height=height, width=width)
    return factory


@pytest.fixture
def asset_factory(clip_factory) -> Callable[..., VideoAsset]:
    """Builds pending assets from block clips or given frames."""
    def factory(asset_id: str, frames: np.ndarray = None) -> VideoAsset:
        return make_asset(asset_id, clip_factory() if frames is None else frames)
    return factory


@pytest.fixture
def noise_clip(rng) -> np.ndarray:
    """Uniform noise clip; loses most of its detail at any compression ratio."""
    return rng.integers(0, 256, size=(8, 256, 512, 3), dtype=np.uint8)


@pytest.fixture
def ledger() -> MemoryLedger:
    """80 GB ledger."""
    return MemoryLedger.from_gb(80)


@pytest.fixture
def sleep() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def metrics_sink() -> InMemoryMetricsSink:
    return InMemoryMetricsSink()


@pytest.fixture
def audit_log() -> InMemoryAuditLog:
    return InMemoryAuditLog()


@pytest.fixture
def tokenizer_config() -> TokenizerConfig:
    """Continuous tokenizer at ratio 512 for frames up to 512x256."""
    return TokenizerConfig(
        variant=TokenizerVariant.CONTINUOUS,
        compression_ratio=512,
        resolution=VideoResolution(512, 256),
    )


@pytest.fixture
def curator_config() -> CuratorConfig:
    """Default curation settings with time budgets disabled."""
    return CuratorConfig(
        timeouts=StageTimeouts(
            encode_per_frame_s=None,
            quality_s=None,
            deduplicate_s=None,
            annotate_s=None,
            end_to_end_s=None,
        )
    )


@pytest.fixture
def smooth_clip_factory() -> Callable[..., np.ndarray]:
    """Builds drifting sinusoid clips whose detail is finer than any codec block."""
    def factory(num_frames: int = 8, height: int = 256, width: int = 512) -> np.ndarray:
        y, x = np.mgrid[0:height, 0:width].astype(np.float64)
        frames = []
        for t in range(num_frames):
            phase = 0.4 * t
            frames.append(np.stack([
                127.5 + 100.0 * np.sin(x / 8.0 + phase),
                127.5 + 100.0 * np.cos(y / 6.0 - phase),
                127.5 + 60.0 * np.sin((x + y) / 11.0),
            ], axis=-1))
        return np.rint(np.stack(frames)).astype(np.uint8)
    return factory
