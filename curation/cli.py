import argparse
import hashlib
import logging
import sys

from .config import CuratorConfig, QualityThresholds, TokenizerConfig
from .demo import generate_synthetic_assets, print_results_summary
from .embedder.frame_loader import find_video_files
from .errors import ConfigurationError
from .orchestrator import BatchOptions, CurationOrchestrator
from .storage import LocalObjectStore
from .types import TokenizerVariant, VideoAsset, VideoResolution


def parse_resolution(value: str) -> VideoResolution:
    try:
        width, height = (int(v) for v in value.lower().split("x"))
    except ValueError:
        raise argparse.ArgumentTypeError(f"Expected WIDTHxHEIGHT, got {value!r}") from None
    return VideoResolution(width, height)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Video curation and tokenization pipeline"
    )
    parser.add_argument(
        "--demo",
        action="store_true",
        help="Run demo with synthetic clips"
    )
    parser.add_argument(
        "--video-dir",
        type=str,
        default=None,
        help="Directory containing video files to curate"
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="JSON file with curation settings (overrides threshold flags)"
    )
    parser.add_argument(
        "--variant",
        type=str.upper,
        choices=[v.value for v in TokenizerVariant],
        default=TokenizerVariant.CONTINUOUS.value,
        help="Tokenizer variant"
    )
    parser.add_argument(
        "--compression-ratio",
        type=int,
        default=512,
        help="Tokenizer compression ratio"
    )
    parser.add_argument(
        "--max-resolution",
        type=parse_resolution,
        default=VideoResolution(7680, 4320),
        help="Largest accepted frame size as WIDTHxHEIGHT (default: 7680x4320)"
    )
    parser.add_argument(
        "--max-concurrent",
        type=int,
        default=4,
        help="Assets processed in parallel"
    )
    parser.add_argument(
        "--min-psnr",
        type=float,
        default=25.0,
        help="Minimum reconstruction PSNR in dB"
    )
    parser.add_argument(
        "--min-ssim",
        type=float,
        default=0.7,
        help="Minimum reconstruction SSIM"
    )
    parser.add_argument(
        "--max-fid",
        type=float,
        default=50.0,
        help="Maximum FID"
    )
    parser.add_argument(
        "--max-fvd",
        type=float,
        default=150.0,
        help="Maximum FVD"
    )
    parser.add_argument(
        "--similarity-threshold",
        type=float,
        default=0.95,
        help="Cosine similarity above which clips are duplicates"
    )
    parser.add_argument(
        "--no-annotate",
        action="store_true",
        help="Skip the annotation stage"
    )
    parser.add_argument(
        "--n-samples",
        type=int,
        default=6,
        help="Number of unique synthetic clips in demo mode"
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging"
    )
    return parser


def load_assets(video_dir: str) -> tuple[list[VideoAsset], LocalObjectStore]:
    """Create pending assets for every video under ``video_dir``; frames load lazily."""
    store = LocalObjectStore(video_dir)
    assets = []
    for path in find_video_files(store.root):
        relative = path.relative_to(store.root).as_posix()
        assets.append(VideoAsset(
            id=relative,
            checksum=hashlib.sha256(path.read_bytes()).hexdigest(),
            source=relative,
            resolution=VideoResolution(0, 0),
            frame_count=0,
        ))
    return assets, store


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    try:
        if args.config:
            config = CuratorConfig.from_json(args.config)
        else:
            config = CuratorConfig(
                max_concurrent=args.max_concurrent,
                quality_thresholds=QualityThresholds(
                    min_psnr=args.min_psnr,
                    min_ssim=args.min_ssim,
                    max_fid=args.max_fid,
                    max_fvd=args.max_fvd,
                ),
                similarity_threshold=args.similarity_threshold,
                annotate=not args.no_annotate,
            )
        tokenizer_config = TokenizerConfig(
            variant=TokenizerVariant(args.variant),
            compression_ratio=args.compression_ratio,
            resolution=args.max_resolution,
            device_memory_budget_gb=config.device_memory_budget_gb,
        )
    except ConfigurationError as e:
        print(f"Invalid configuration: {e}")
        sys.exit(2)

    store = None
    if args.demo or args.video_dir is None:
        print("Running in DEMO MODE with synthetic clips...")
        assets = generate_synthetic_assets(n_assets=args.n_samples)
        print(f"Generated {len(assets)} assets "
              f"({args.n_samples} unique, 1 duplicate, 1 noisy, 1 empty)")
    else:
        assets, store = load_assets(args.video_dir)
        if not assets:
            print(f"No video files found in {args.video_dir}")
            sys.exit(1)
        print(f"Found {len(assets)} videos in {args.video_dir}")

    with CurationOrchestrator(
        config=config,
        tokenizer_config=tokenizer_config,
        object_store=store,
    ) as orchestrator:
        orchestrator.process_batch(assets, BatchOptions(show_progress=True))
        print_results_summary(assets, orchestrator.get_metrics())


if __name__ == "__main__":
    main()
