"""Command-line entry point and demo helper tests."""

import argparse
import json

import numpy as np
import pytest

from curation.cli import build_parser, load_assets, main, parse_resolution
from curation.demo import generate_block_clip, generate_synthetic_assets, print_results_summary
from curation.errors import ErrorKind
from curation.types import AssetStatus, TokenizerMetrics, VideoResolution

pytestmark = pytest.mark.unit


class TestParser:

    def test_parse_resolution(self):
        assert parse_resolution("1280x720") == VideoResolution(1280, 720)
        assert parse_resolution("1920X1080") == VideoResolution(1920, 1080)

    @pytest.mark.parametrize("value", ["1280", "axb", "1x2x3"])
    def test_parse_resolution_invalid(self, value):
        with pytest.raises(argparse.ArgumentTypeError):
            parse_resolution(value)

    def test_defaults(self):
        args = build_parser().parse_args([])
        assert args.variant == "CONTINUOUS"
        assert args.compression_ratio == 512
        assert args.max_resolution == VideoResolution(7680, 4320)
        assert not args.no_annotate

    def test_variant_case_insensitive(self):
        assert build_parser().parse_args(["--variant", "discrete"]).variant == "DISCRETE"


class TestLoadAssets:

    def test_pending_assets_without_frames(self, tmp_path):
        (tmp_path / "sub").mkdir()
        (tmp_path / "sub" / "b.mp4").write_bytes(b"second")
        (tmp_path / "a.mkv").write_bytes(b"first")

        assets, store = load_assets(str(tmp_path))

        assert sorted(a.id for a in assets) == ["a.mkv", "sub/b.mp4"]
        assert all(a.frames is None and a.status == AssetStatus.PENDING for a in assets)
        assert store.retrieve("sub/b.mp4") == b"second"


class TestMain:

    def test_invalid_compression_ratio_exits(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main(["--demo", "--compression-ratio", "300"])
        assert exc_info.value.code == 2
        assert "Invalid configuration" in capsys.readouterr().out

    def test_invalid_config_file_exits(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"quality_thresholds": {"min_ssim": 2.0}}))
        with pytest.raises(SystemExit) as exc_info:
            main(["--demo", "--config", str(path)])
        assert exc_info.value.code == 2

    def test_empty_video_dir_exits(self, tmp_path):
        with pytest.raises(SystemExit) as exc_info:
            main(["--video-dir", str(tmp_path)])
        assert exc_info.value.code == 1

    def test_demo_run(self, capsys):
        main(["--demo", "--n-samples", "2", "--no-annotate", "--max-resolution", "512x256"])
        out = capsys.readouterr().out
        assert "VIDEO CURATION RESULTS" in out
        assert "Curated: 2" in out
        assert "clip-000-copy: FAILED [duplicate]" in out


class TestDemoHelpers:

    def test_block_clip_toggles_one_block_per_frame(self, rng):
        clip = generate_block_clip(rng, num_frames=3, height=64, width=128)
        assert clip.shape == (3, 64, 128, 3)
        changed = np.any(clip[0] != clip[1], axis=-1)
        assert changed.sum() == 2 * 32 * 64

    def test_synthetic_assets(self):
        assets = generate_synthetic_assets(n_assets=2, num_frames=4, height=64, width=128)
        assert [a.id for a in assets] == ["clip-000", "clip-001", "clip-000-copy", "noise-000", "empty-000"]
        assert assets[0].checksum == assets[2].checksum
        assert assets[-1].frame_count == 0
        assert assets[0].resolution == VideoResolution(128, 64)

    def test_summary(self, capsys):
        assets = generate_synthetic_assets(n_assets=1, num_frames=2, height=64, width=128)
        assets[0].status = AssetStatus.COMPLETED
        assets[1].status = AssetStatus.FAILED
        assets[1].error_kind = ErrorKind.DUPLICATE
        assets[1].error_message = "Duplicate of clip-000"

        print_results_summary(assets, TokenizerMetrics(compression_ratio=512, psnr=40.0))

        out = capsys.readouterr().out
        assert "Curated: 1" in out
        assert "Compression ratio: 512x" in out
        assert "clip-000-copy: FAILED [duplicate]" in out
