"""TorchVision backbone extractor tests; skipped when torch is not installed."""

import numpy as np
import pytest

from curation.config import EmbedderConfig
from curation.embedder import TorchVisionFeatureExtractor
from curation.errors import ExtractionError

pytest.importorskip("torch")
pytest.importorskip("torchvision")

pytestmark = pytest.mark.unit


@pytest.fixture(scope="module")
def extractor():
    config = EmbedderConfig(backbone="resnet18", weights=None, input_size=32, batch_size=4, device="cpu")
    extractor = TorchVisionFeatureExtractor(config)
    extractor.load_model()
    return extractor


class TestTorchVisionFeatureExtractor:

    def test_head_removed(self, extractor):
        assert extractor.dim == 512

    def test_batched_extraction(self, extractor, block_clip):
        features = extractor.extract_frames(np.ascontiguousarray(block_clip[:6, :64, :64]))
        assert features.shape == (6, 512)
        assert features.dtype == np.float32
        np.testing.assert_allclose(np.linalg.norm(features, axis=1), 1.0, atol=1e-4)

    def test_seeded_initialization_is_deterministic(self, extractor, block_clip):
        config = EmbedderConfig(backbone="resnet18", weights=None, input_size=32, device="cpu")
        other = TorchVisionFeatureExtractor(config)
        frames = np.ascontiguousarray(block_clip[:2, :64, :64])
        np.testing.assert_allclose(
            other.extract_frames(frames), extractor.extract_frames(frames), atol=1e-5
        )

    def test_invalid_frames(self, extractor):
        with pytest.raises(ExtractionError):
            extractor.extract_frames(np.zeros((0, 32, 32, 3), dtype=np.uint8))

    def test_unknown_backbone(self):
        extractor = TorchVisionFeatureExtractor(EmbedderConfig(backbone="not-a-model", device="cpu"))
        with pytest.raises(RuntimeError, match="Failed to load model"):
            extractor.load_model()
