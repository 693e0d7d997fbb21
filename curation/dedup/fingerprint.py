"""Perceptual fingerprints for exact-match duplicate lookup."""

from __future__ import annotations

import hashlib

import imagehash
import numpy as np
from numpy.typing import NDArray
from PIL import Image

from ..embedder.frame_loader import get_frame_indices
from ..errors import InvalidAssetError


def frame_hash(frame: NDArray[np.uint8], hash_size: int = 8) -> str:
    """
    Average hash of one frame.

    Bits come from ``imagehash.average_hash`` on the grayscale frame. A
    final hex digit carries the mean brightness in 16 levels so flat frames
    of different brightness do not collide.

    Returns:
        Hex string of ``ceil(hash_size**2 / 4) + 1`` characters.
    """
    gray = Image.fromarray(np.ascontiguousarray(frame)).convert("L")
    brightness = int(np.asarray(gray).mean()) >> 4
    return f"{imagehash.average_hash(gray, hash_size=hash_size)}{brightness:x}"


def perceptual_fingerprint(
    frames: NDArray[np.uint8],
    num_frames: int = 8,
    hash_size: int = 8
) -> str:
    """
    Concatenated frame hashes of uniformly sampled frames, in frame order.

    Args:
        frames: uint8 array of shape (T, H, W, 3).
        num_frames: Frames to sample (repeated when the clip is shorter).
        hash_size: Grid side of each frame hash.

    Raises:
        InvalidAssetError: If the clip has no frames.
    """
    if frames is None or len(frames) == 0:
        raise InvalidAssetError("Cannot fingerprint a clip without frames")
    indices = get_frame_indices(len(frames), num_frames, strategy="uniform")
    return "".join(frame_hash(frames[i], hash_size) for i in indices)


def content_checksum(frames: NDArray[np.uint8]) -> str:
    """SHA-256 of the raw frame bytes and shape."""
    frames = np.ascontiguousarray(frames)
    digest = hashlib.sha256(str(frames.shape).encode())
    digest.update(frames.tobytes())
    return digest.hexdigest()
