"""Demo utilities for the curation pipeline."""

from __future__ import annotations

from typing import Optional

import numpy as np
from numpy.typing import NDArray

from .dedup import content_checksum
from .types import AssetStatus, TokenizerMetrics, VideoAsset, VideoResolution

# Block size shared by every supported compression ratio's pooling grid
PATTERN_BLOCK = (32, 64)


def generate_block_clip(
    rng: np.random.Generator,
    num_frames: int = 8,
    height: int = 256,
    width: int = 512
) -> NDArray[np.uint8]:
    """
    Generate a clip of saturated color blocks with one block toggling per frame.

    Every block is constant per channel and aligned to the coarsest pooling
    grid, so all codecs reconstruct the clip exactly.

    Args:
        rng: Random generator.
        num_frames: Number of frames.
        height: Frame height in pixels.
        width: Frame width in pixels.

    Returns:
        Array of shape (num_frames, height, width, 3) with uint8 values.
    """
    bh, bw = PATTERN_BLOCK
    rows, cols = -(-height // bh), -(-width // bw)
    base = rng.integers(0, 2, size=(rows, cols, 3), dtype=np.uint8) * 255

    frames = []
    for t in range(num_frames):
        grid = base.copy()
        grid[t % rows, t % cols] = 255 - grid[t % rows, t % cols]
        frame = np.repeat(np.repeat(grid, bh, axis=0), bw, axis=1)
        frames.append(frame[:height, :width])
    return np.stack(frames)


def make_asset(
    asset_id: str,
    frames: NDArray[np.uint8],
    source: Optional[str] = None
) -> VideoAsset:
    """Wrap in-memory frames as a pending asset."""
    height, width = (frames.shape[1], frames.shape[2]) if frames.ndim == 4 else (0, 0)
    return VideoAsset(
        id=asset_id,
        checksum=content_checksum(frames),
        source=source or f"memory://{asset_id}",
        resolution=VideoResolution(width, height),
        frame_count=len(frames),
        frames=frames,
    )


def generate_synthetic_assets(
    n_assets: int = 6,
    num_frames: int = 8,
    height: int = 256,
    width: int = 512,
    seed: int = 42
) -> list[VideoAsset]:
    """
    Generate synthetic assets for demonstration.

    Creates assets covering every outcome of the pipeline:
    - Unique block clips (curated)
    - An exact copy of the first clip (duplicate)
    - A clip of uniform noise (fails the quality gate)
    - A clip with zero frames (invalid asset)

    Args:
        n_assets: Number of unique block clips.
        num_frames: Frames per clip.
        height: Frame height in pixels.
        width: Frame width in pixels.
        seed: Random seed for reproducibility.

    Returns:
        List of pending assets.
    """
    rng = np.random.default_rng(seed)

    assets = [
        make_asset(f"clip-{i:03d}", generate_block_clip(rng, num_frames, height, width))
        for i in range(n_assets)
    ]
    if assets:
        first = assets[0]
        assets.append(make_asset(f"{first.id}-copy", first.frames.copy()))

    noise = rng.integers(0, 256, size=(num_frames, height, width, 3), dtype=np.uint8)
    assets.append(make_asset("noise-000", noise))
    assets.append(make_asset("empty-000", np.zeros((0, height, width, 3), dtype=np.uint8)))

    return assets


def print_results_summary(
    assets: list[VideoAsset],
    metrics: Optional[TokenizerMetrics] = None
) -> None:
    """Print a human-readable summary of curation results."""
    completed = [a for a in assets if a.status == AssetStatus.COMPLETED]
    failed = [a for a in assets if a.status == AssetStatus.FAILED]
    cancelled = [a for a in assets if a.status == AssetStatus.CANCELLED]

    print("\n" + "=" * 60)
    print("VIDEO CURATION RESULTS")
    print("=" * 60)

    print(f"\nTotal assets submitted: {len(assets)}")
    print(f"Curated: {len(completed)}")
    print(f"Failed: {len(failed)}")
    print(f"Cancelled: {len(cancelled)}")

    if metrics is not None:
        print("\n" + "-" * 60)
        print("TOKENIZER")
        print("-" * 60)
        print(f"  Compression ratio: {metrics.compression_ratio:.0f}x")
        print(f"  PSNR: {metrics.psnr:.2f} dB")
        print(f"  Throughput: {metrics.throughput:.1f} frames/s")
        print(f"  Latency: {metrics.latency_ms:.2f} ms/frame")
        print(f"  Efficiency: {metrics.efficiency():.1f}%")
        print(f"  Meets targets: {'yes' if metrics.validate() else 'no'}")

    if completed:
        print("\n" + "-" * 60)
        print("CURATED ASSETS")
        print("-" * 60)
        for asset in completed:
            print(f"\n{asset.id} ({asset.resolution}, {asset.frame_count} frames):")
            if asset.quality:
                q = asset.quality
                print(f"  PSNR: {q.psnr:.2f}  SSIM: {q.ssim:.4f}  FID: {q.fid:.4f}  FVD: {q.fvd:.4f}")
            if asset.annotations:
                labels = ", ".join(f"{a.label} ({a.confidence:.2f})" for a in asset.annotations)
                print(f"  Labels: {labels}")

    if failed or cancelled:
        print("\n" + "-" * 60)
        print("EXCLUDED ASSETS")
        print("-" * 60)
        for asset in failed + cancelled:
            kind = asset.error_kind.value if asset.error_kind else "unknown"
            print(f"  {asset.id}: {asset.status.value} [{kind}] after {asset.attempts} attempt(s)")
            if asset.error_message:
                print(f"    {asset.error_message}")

    print("\n" + "=" * 60)
