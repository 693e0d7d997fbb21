from .base import FeatureExtractor, FrameStatisticsExtractor
from .model_loader import TorchVisionFeatureExtractor
from . import frame_loader

__all__ = [
    "FeatureExtractor",
    "FrameStatisticsExtractor",
    "TorchVisionFeatureExtractor",
    "frame_loader",
]
