"""Heuristic annotator for demonstration purposes."""

from __future__ import annotations

import numpy as np

from ..errors import AnnotationError
from ..types import Annotation, VideoAsset
from .base import Annotator


class MockAnnotator(Annotator):
    """
    Label clips from simple frame statistics.

    In production, this would be replaced with a video understanding
    model. Labels here are derived from brightness, motion and dominant
    color, so the same clip always gets the same annotations.
    """

    COLOR_LABELS = ("red-dominant", "green-dominant", "blue-dominant")

    def __init__(
        self,
        dark_threshold: float = 64.0,
        bright_threshold: float = 192.0,
        motion_threshold: float = 8.0
    ):
        """
        Initialize the annotator.

        Args:
            dark_threshold: Mean luma below which a clip is "low-light".
            bright_threshold: Mean luma above which a clip is "bright".
            motion_threshold: Mean absolute frame difference above which a
                clip is "dynamic".
        """
        self.dark_threshold = dark_threshold
        self.bright_threshold = bright_threshold
        self.motion_threshold = motion_threshold

    def annotate(self, asset: VideoAsset) -> list[Annotation]:
        if asset.frames is None or len(asset.frames) == 0:
            raise AnnotationError(f"Asset {asset.id} has no frames to annotate", asset_id=asset.id)

        frames = asset.frames.astype(np.float32)
        annotations = []

        # Lighting
        luma = frames @ np.array([0.299, 0.587, 0.114], dtype=np.float32)
        brightness = float(luma.mean())
        if brightness < self.dark_threshold:
            label = "low-light"
        elif brightness > self.bright_threshold:
            label = "bright"
        else:
            label = "normal-exposure"
        annotations.append(Annotation(label, confidence=round(1.0 - abs(brightness - 127.5) / 255.0, 3)))

        # Motion
        if len(frames) > 1:
            motion = np.abs(np.diff(luma, axis=0)).mean(axis=(1, 2))
            peak = int(np.argmax(motion))
            score = float(motion.mean())
            label = "dynamic" if score > self.motion_threshold else "static"
            confidence = min(1.0, score / (2 * self.motion_threshold)) if label == "dynamic" else \
                max(0.0, 1.0 - score / self.motion_threshold)
            annotations.append(Annotation(label, confidence=round(confidence, 3), frame_index=peak + 1))
        else:
            annotations.append(Annotation("still-image", confidence=1.0, frame_index=0))

        # Color
        channel_means = frames.reshape(-1, 3).mean(axis=0)
        dominant = int(np.argmax(channel_means))
        share = float(channel_means[dominant] / max(channel_means.sum(), 1e-6))
        annotations.append(Annotation(self.COLOR_LABELS[dominant], confidence=round(share, 3)))

        return annotations
