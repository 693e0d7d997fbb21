"""Annotator tests."""

import numpy as np
import pytest

from curation.annotation import MockAnnotator
from curation.demo import make_asset
from curation.errors import AnnotationError

pytestmark = pytest.mark.unit


def labels(annotations):
    return [a.label for a in annotations]


class TestMockAnnotator:

    @pytest.fixture
    def annotator(self):
        return MockAnnotator()

    def test_dark_static_clip(self, annotator):
        frames = np.full((4, 16, 16, 3), 10, dtype=np.uint8)
        result = labels(annotator.annotate(make_asset("dark", frames)))
        assert result[0] == "low-light"
        assert result[1] == "static"

    def test_bright_clip(self, annotator):
        frames = np.full((2, 16, 16, 3), 240, dtype=np.uint8)
        assert labels(annotator.annotate(make_asset("bright", frames)))[0] == "bright"

    def test_dynamic_clip_peak_frame(self, annotator):
        frames = np.zeros((4, 16, 16, 3), dtype=np.uint8)
        frames[2:] = 255
        annotations = annotator.annotate(make_asset("cut", frames))
        motion = annotations[1]
        assert motion.label == "dynamic"
        assert motion.frame_index == 2

    def test_single_frame(self, annotator):
        frames = np.full((1, 16, 16, 3), 128, dtype=np.uint8)
        annotations = annotator.annotate(make_asset("still", frames))
        assert labels(annotations) == ["normal-exposure", "still-image", "red-dominant"]

    def test_dominant_color(self, annotator):
        frames = np.zeros((2, 16, 16, 3), dtype=np.uint8)
        frames[..., 2] = 200
        assert labels(annotator.annotate(make_asset("blue", frames)))[-1] == "blue-dominant"

    def test_confidences_in_unit_range(self, annotator, block_clip):
        for annotation in annotator.annotate(make_asset("a", block_clip)):
            assert 0.0 <= annotation.confidence <= 1.0

    def test_no_frames(self, annotator):
        asset = make_asset("empty", np.zeros((0, 8, 8, 3), dtype=np.uint8))
        with pytest.raises(AnnotationError):
            annotator.annotate(asset)

    def test_annotate_batch(self, annotator, asset_factory):
        assets = [asset_factory("a"), asset_factory("b")]
        result = annotator.annotate_batch(assets)
        assert set(result) == {"a", "b"}
        assert all(len(v) == 3 for v in result.values())
