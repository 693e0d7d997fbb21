"""Feature extractors producing frame and clip embeddings."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Optional

import numpy as np
from numpy.typing import NDArray

from ..config import EmbedderConfig
from ..errors import ExtractionError

logger = logging.getLogger(__name__)


def _check_frames(frames: NDArray) -> NDArray[np.uint8]:
    frames = np.asarray(frames)
    if frames.ndim == 3:
        frames = frames[np.newaxis]
    if frames.ndim != 4 or frames.shape[0] == 0 or frames.shape[-1] != 3:
        raise ExtractionError(f"Expected RGB frames shaped (T, H, W, 3), got {frames.shape}")
    if frames.dtype != np.uint8:
        frames = np.clip(frames, 0, 255).astype(np.uint8)
    return frames


def l2_normalize(vector: NDArray[np.float32]) -> NDArray[np.float32]:
    norm = np.linalg.norm(vector)
    if norm == 0:
        return vector.astype(np.float32)
    return (vector / norm).astype(np.float32)


class FeatureExtractor(ABC):
    """
    Deterministic mapping from frames to embedding vectors.

    Subclasses implement ``extract_frames``. The clip embedding returned by
    ``extract`` concatenates the mean frame embedding with the mean frame-to-
    frame change, so it reflects both appearance and motion.
    """

    @property
    @abstractmethod
    def dim(self) -> int:
        """Dimension of a single frame embedding."""
        pass

    @abstractmethod
    def extract_frames(self, frames: NDArray[np.uint8]) -> NDArray[np.float32]:
        """
        Embed each frame.

        Args:
            frames: uint8 array of shape (T, H, W, 3).

        Returns:
            Array of shape (T, dim).

        Raises:
            ExtractionError: If the frames cannot be embedded.
        """
        pass

    def clip_features(self, frames: NDArray[np.uint8]) -> NDArray[np.float32]:
        """
        Unnormalized clip embedding of size ``2 * dim``.

        Args:
            frames: uint8 array of shape (T, H, W, 3).
        """
        features = self.extract_frames(frames)
        appearance = features.mean(axis=0)
        if len(features) > 1:
            motion = (features[-1] - features[0]) / (len(features) - 1)
        else:
            motion = np.zeros_like(appearance)
        return np.concatenate([appearance, motion]).astype(np.float32)

    def extract(self, frames: NDArray[np.uint8]) -> NDArray[np.float32]:
        """Embed a clip as a single L2-normalized vector of size ``2 * dim``."""
        return l2_normalize(self.clip_features(frames))


class FrameStatisticsExtractor(FeatureExtractor):
    """
    Lightweight extractor built from downsampled frame statistics.

    Each frame becomes its mean-centered luma grid (``grid_size`` x
    ``grid_size``, box-filtered with Pillow) followed by its RGB channel
    means centered on mid-gray. Values stay on the 0-255 pixel scale.
    """

    def __init__(self, config: Optional[EmbedderConfig] = None):
        self.config = config or EmbedderConfig()
        self.grid_size = self.config.grid_size

    @property
    def dim(self) -> int:
        return self.grid_size * self.grid_size + 3

    def extract_frames(self, frames: NDArray[np.uint8]) -> NDArray[np.float32]:
        from PIL import Image

        frames = _check_frames(frames)
        features = np.empty((len(frames), self.dim), dtype=np.float32)
        for i, frame in enumerate(frames):
            luma = Image.fromarray(frame).convert("L").resize(
                (self.grid_size, self.grid_size), Image.Resampling.BOX
            )
            grid = np.asarray(luma, dtype=np.float32).ravel()
            color = frame.reshape(-1, 3).mean(axis=0) - 127.5
            features[i, :-3] = grid - grid.mean()
            features[i, -3:] = color
        return features
