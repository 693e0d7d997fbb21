"""Frame decoding, sampling and directory scanning utilities."""

from __future__ import annotations

import io
import logging
from pathlib import Path
from typing import Optional, Union

import numpy as np
from numpy.typing import NDArray

logger = logging.getLogger(__name__)

VIDEO_EXTENSIONS = (".mp4", ".mov", ".mkv", ".avi", ".webm")
IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png")


def get_frame_indices(
    total_frames: int,
    num_frames: int,
    strategy: str = "uniform",
    rng: Optional[np.random.Generator] = None
) -> NDArray[np.int64]:
    """
    Get frame indices to sample based on strategy.

    Args:
        total_frames: Total number of frames available.
        num_frames: Number of frames to sample.
        strategy: Sampling strategy ("uniform" or "random").
        rng: Generator for random sampling.

    Returns:
        Array of frame indices to sample, in ascending order.
    """
    if total_frames < 1:
        raise ValueError("Cannot sample from an empty clip")
    if total_frames < num_frames or strategy == "uniform":
        # Repeats frames if not enough
        indices = np.linspace(0, total_frames - 1, num_frames, dtype=np.int64)
    else:  # random sampling
        rng = rng or np.random.default_rng()
        indices = np.sort(rng.choice(total_frames, num_frames, replace=False))
    return indices


def decode_video(
    source: Union[str, Path, bytes],
    max_frames: Optional[int] = None
) -> NDArray[np.uint8]:
    """
    Decode every frame of a video with PyAV.

    Args:
        source: Path to a video file or the encoded bytes.
        max_frames: Stop after this many frames.

    Returns:
        Array of shape (T, H, W, 3) with uint8 values. T may be 0.
    """
    import av

    handle = io.BytesIO(source) if isinstance(source, (bytes, bytearray)) else str(source)
    frames = []
    with av.open(handle) as container:
        for frame in container.decode(video=0):
            frames.append(frame.to_ndarray(format="rgb24"))
            if max_frames is not None and len(frames) >= max_frames:
                break

    if not frames:
        return np.zeros((0, 0, 0, 3), dtype=np.uint8)
    return np.stack(frames)


def load_frames_from_directory(
    frame_dir: Union[str, Path],
    num_frames: Optional[int] = None,
    strategy: str = "uniform"
) -> NDArray[np.uint8]:
    """
    Load frames from a directory of image files sorted by name.

    Args:
        frame_dir: Path to directory containing frame images.
        num_frames: Number of frames to sample. Loads all frames if None.
        strategy: Sampling strategy ("uniform" or "random").

    Returns:
        Array of shape (T, H, W, C) with uint8 values.
    """
    from PIL import Image

    frame_dir = Path(frame_dir)
    frame_files = sorted(
        p for p in frame_dir.iterdir()
        if p.is_file() and p.suffix.lower() in IMAGE_EXTENSIONS
    )

    if not frame_files:
        raise ValueError(f"No image files found in {frame_dir}")

    if num_frames is None:
        indices = range(len(frame_files))
    else:
        indices = get_frame_indices(len(frame_files), num_frames, strategy)

    frames = []
    for idx in indices:
        with Image.open(frame_files[idx]) as img:
            frames.append(np.array(img.convert("RGB")))

    return np.stack(frames)


def resize_frames(
    frames: NDArray[np.uint8],
    width: int,
    height: int
) -> NDArray[np.uint8]:
    """Resize every frame to (height, width) with bilinear filtering."""
    from PIL import Image

    if frames.shape[1:3] == (height, width):
        return frames
    return np.stack([
        np.asarray(Image.fromarray(frame).resize((width, height), Image.Resampling.BILINEAR))
        for frame in frames
    ])


def find_video_files(
    base_dir: Union[str, Path],
    extensions: tuple[str, ...] = VIDEO_EXTENSIONS
) -> list[Path]:
    """
    Find all video files under a directory.

    Args:
        base_dir: Base directory to search from.
        extensions: Lower-case file suffixes to accept.

    Returns:
        Sorted list of video file paths.
    """
    base_dir = Path(base_dir)
    results = sorted(
        p for p in base_dir.rglob("*")
        if p.is_file() and p.suffix.lower() in extensions
    )
    logger.info(f"Found {len(results)} video files in {base_dir}")
    return results
