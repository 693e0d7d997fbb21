from __future__ import annotations
import logging
from typing import Any, Optional, TYPE_CHECKING

import numpy as np
from numpy.typing import NDArray

from .base import FeatureExtractor, _check_frames
from ..config import EmbedderConfig
from ..errors import ExtractionError

if TYPE_CHECKING:
    import torch

logger = logging.getLogger(__name__)

IMAGENET_MEAN = (0.485, 0.456, 0.406)
IMAGENET_STD = (0.229, 0.224, 0.225)


class TorchVisionFeatureExtractor(FeatureExtractor):
    """
    Frame embeddings from a torchvision classification backbone with its
    classifier head removed.
    """
    def __init__(self, config: Optional[EmbedderConfig] = None):
        self.config = config or EmbedderConfig()
        self.device = None
        self.model = None
        self.transform = None
        self.is_loaded = False
        self._dim: Optional[int] = None

    def _ensure_torch(self) -> None:
        """Ensure torch is imported and device is set."""
        if self.device is None:
            import torch
            self.device = torch.device(self.config.device)

    def get_torch_dtype(self):
        """Get torch dtype from config string."""
        import torch
        dtype_map = {
            "bfloat16": torch.bfloat16,
            "float16": torch.float16,
            "float32": torch.float32,
        }
        return dtype_map.get(self.config.torch_dtype, torch.float32)

    @property
    def dim(self) -> int:
        if not self.is_loaded:
            self.load_model()
        return self._dim

    def load_model(self) -> None:
        """Load the backbone and strip its classification head."""
        if self.is_loaded:
            logger.info("Model already loaded, skipping...")
            return

        self._ensure_torch()
        import torch

        try:
            import torchvision

            logger.info(f"Loading backbone: {self.config.backbone} (weights={self.config.weights})")
            logger.info(f"Device: {self.device}, Dtype: {self.config.torch_dtype}")

            torch.manual_seed(self.config.seed)
            model = torchvision.models.get_model(
                self.config.backbone, weights=self.config.weights
            )

            if hasattr(model, "fc"):
                self._dim = model.fc.in_features
                model.fc = torch.nn.Identity()
            elif hasattr(model, "classifier"):
                last = model.classifier[-1] if isinstance(model.classifier, torch.nn.Sequential) else model.classifier
                self._dim = last.in_features
                model.classifier = torch.nn.Identity()
            else:
                raise ValueError(f"Unsupported backbone without fc/classifier head: {self.config.backbone}")

            self.model = model.to(device=self.device, dtype=self.get_torch_dtype())
            self.model.eval()

            self.is_loaded = True
            logger.info(f"Model loaded successfully on {self.device}")
            logger.info(f"Model parameters: {sum(p.numel() for p in self.model.parameters()) / 1e6:.2f}M")

            self._init_transform()

        except ImportError as e:
            raise ImportError(
                "torchvision library required. Install with: "
                "pip install video-token-curation[torch]"
            ) from e
        except Exception as e:
            raise RuntimeError(f"Failed to load model: {e}") from e

    def _init_transform(self) -> None:
        """Initialize the image transform for backbone preprocessing."""
        import torchvision.transforms as T
        from torchvision.transforms.functional import InterpolationMode

        self.transform = T.Compose([
            T.Resize((self.config.input_size, self.config.input_size),
                     interpolation=InterpolationMode.BICUBIC),
            T.ToTensor(),
            T.Normalize(mean=IMAGENET_MEAN, std=IMAGENET_STD)
        ])

    def extract_vision_features(
        self,
        pixel_values: Any
    ) -> Any:
        """
        Run the backbone without gradients.

        Args:
            pixel_values: Preprocessed pixel values tensor of shape (N, C, H, W).

        Returns:
            Feature tensor of shape (N, dim).
        """
        import torch

        pixel_values = pixel_values.to(dtype=self.get_torch_dtype(), device=self.device)
        with torch.no_grad():
            return self.model(pixel_values)

    def extract_frames(self, frames: NDArray[np.uint8]) -> NDArray[np.float32]:
        import torch
        from PIL import Image

        if not self.is_loaded:
            self.load_model()

        frames = _check_frames(frames)
        try:
            outputs = []
            for start in range(0, len(frames), self.config.batch_size):
                batch = frames[start:start + self.config.batch_size]
                pixel_values = torch.stack([
                    self.transform(Image.fromarray(frame)) for frame in batch
                ])
                features = self.extract_vision_features(pixel_values)
                if self.config.normalize_embeddings:
                    features = torch.nn.functional.normalize(features.float(), p=2, dim=-1)
                outputs.append(features.to(torch.float32).cpu().numpy())
        except Exception as e:
            raise ExtractionError(f"Backbone feature extraction failed: {e}") from e

        return np.concatenate(outputs).astype(np.float32)
