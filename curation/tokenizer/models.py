"""Frame codec models: the encode/decode transform pairs behind a codec.

The default model partitions each frame into a grid of blocks and keeps the
mean RGB value of each block. Block shapes are nested across compression
ratios, so every coarser grid is a union of finer cells and a lower ratio
can never reconstruct worse than a higher one.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

import numpy as np
from numpy.typing import NDArray

from ..errors import ConfigurationError

# (block height, block width) in pixels; the ratio is pixels per latent vector
BLOCK_SHAPES = {
    256: (16, 16),
    512: (16, 32),
    1024: (32, 32),
    2048: (32, 64),
}


def block_shape(compression_ratio: int) -> tuple[int, int]:
    try:
        return BLOCK_SHAPES[compression_ratio]
    except KeyError:
        raise ConfigurationError(
            f"No block shape for compression ratio {compression_ratio}; "
            f"supported: {sorted(BLOCK_SHAPES)}"
        ) from None


class FrameCodecModel(ABC):
    """
    Encode/decode transform pair operating on float frames in [0, 1].

    Attributes:
        is_projection: True when ``decode(encode(x))`` is an orthogonal
            projection, so the residual of a reconstruction encodes to zero
            and back-projection refinement cannot improve it.
    """

    is_projection: bool = False

    @abstractmethod
    def encode(self, batch: NDArray[np.float32]) -> NDArray[np.float32]:
        """
        Map frames to latents.

        Args:
            batch: Array of shape (N, H, W, C).

        Returns:
            Latent array whose leading dimension is N.
        """
        pass

    @abstractmethod
    def decode(
        self,
        latent: NDArray[np.float32],
        shape: tuple[int, int, int, int]
    ) -> NDArray[np.float32]:
        """
        Map latents back to frames of ``shape`` (N, H, W, C).
        """
        pass


class BlockPoolingModel(FrameCodecModel):
    """
    Spatial block averaging with nearest-neighbour reconstruction.

    Border blocks that extend past the frame average only their valid
    pixels, which keeps ``decode(encode(x))`` an orthogonal projection.
    """

    is_projection = True

    def __init__(self, block_height: int, block_width: int):
        if block_height < 1 or block_width < 1:
            raise ConfigurationError("Block dimensions must be positive")
        self.block_height = block_height
        self.block_width = block_width

    @classmethod
    def for_ratio(cls, compression_ratio: int) -> "BlockPoolingModel":
        return cls(*block_shape(compression_ratio))

    def grid_shape(self, height: int, width: int) -> tuple[int, int]:
        return (
            -(-height // self.block_height),
            -(-width // self.block_width),
        )

    def _valid_counts(self, height: int, width: int) -> NDArray[np.float64]:
        gh, gw = self.grid_shape(height, width)
        rows = np.minimum(self.block_height, height - np.arange(gh) * self.block_height)
        cols = np.minimum(self.block_width, width - np.arange(gw) * self.block_width)
        return np.outer(rows, cols).astype(np.float64)

    def encode(self, batch: NDArray[np.float32]) -> NDArray[np.float32]:
        n, height, width, channels = batch.shape
        gh, gw = self.grid_shape(height, width)
        pad_h = gh * self.block_height - height
        pad_w = gw * self.block_width - width
        if pad_h or pad_w:
            batch = np.pad(batch, ((0, 0), (0, pad_h), (0, pad_w), (0, 0)))
        blocks = batch.reshape(n, gh, self.block_height, gw, self.block_width, channels)
        sums = blocks.sum(axis=(2, 4), dtype=np.float64)
        counts = self._valid_counts(height, width)
        return (sums / counts[np.newaxis, :, :, np.newaxis]).astype(np.float32)

    def decode(
        self,
        latent: NDArray[np.float32],
        shape: tuple[int, int, int, int]
    ) -> NDArray[np.float32]:
        _, height, width, _ = shape
        frames = np.repeat(latent, self.block_height, axis=1)
        frames = np.repeat(frames, self.block_width, axis=2)
        return frames[:, :height, :width]


def lattice_codebook(size: int) -> NDArray[np.float32]:
    """
    Deterministic RGB codebook with exactly ``size`` entries.

    The entries form a regular lattice over [0, 1]^3 whose per-channel level
    counts are powers of two splitting ``log2(size)`` bits as evenly as
    possible (red first). Every corner of the cube, black and white
    included, is an entry.

    Args:
        size: Number of entries; a power of two, at least 8.

    Returns:
        Array of shape (size, 3), ordered by (r, g, b) level index.
    """
    bits = int(size).bit_length() - 1
    if size < 8 or 1 << bits != size:
        raise ConfigurationError(f"Codebook size must be a power of two >= 8, got {size}")
    channel_bits = [bits // 3 + (1 if i < bits % 3 else 0) for i in range(3)]
    axes = [np.linspace(0.0, 1.0, 1 << b) for b in channel_bits]
    grid = np.stack(np.meshgrid(*axes, indexing="ij"), axis=-1)
    return grid.reshape(-1, 3).astype(np.float32)
