"""Reconstruction and distributional quality assessment."""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from typing import Optional

import numpy as np
from numpy.typing import NDArray

from quality_metrics import feature_distance, psnr, ssim

from ..config import QualityConfig
from ..embedder import FeatureExtractor, FrameStatisticsExtractor
from ..errors import QualityAssessmentError
from ..memory import MemoryLedger
from ..types import QualityMetrics, VideoAsset

logger = logging.getLogger(__name__)

# float64 copies of reference and compared frames
_WORKING_BYTES_PER_VALUE = 16


def sliding_windows(num_frames: int, window: int, stride: int) -> list[slice]:
    """Temporal windows for clip embeddings; a short clip is one window."""
    if num_frames <= window:
        return [slice(0, num_frames)]
    return [slice(s, s + window) for s in range(0, num_frames - window + 1, stride)]


class QualityAssessor:
    """
    Compute PSNR, SSIM, FID and FVD for an asset and gate on thresholds.

    The reference is ``asset.frames``; it is compared with
    ``asset.reconstruction``, or with itself shifted by one frame when no
    reconstruction exists. Results are cached per (asset id, checksum);
    cache writes take a lock, reads do not.
    """

    def __init__(
        self,
        config: Optional[QualityConfig] = None,
        extractor: Optional[FeatureExtractor] = None,
        ledger: Optional[MemoryLedger] = None
    ):
        """
        Initialize the assessor.

        Args:
            config: Thresholds and window settings. Uses defaults if None.
            extractor: Embedding model for FID and FVD.
            ledger: Memory ledger charged for the working set.
        """
        self.config = config or QualityConfig()
        self.thresholds = self.config.thresholds
        self.extractor = extractor or FrameStatisticsExtractor()
        self.ledger = ledger
        self._cache: OrderedDict[tuple[str, str], QualityMetrics] = OrderedDict()
        self._lock = threading.Lock()

    @property
    def cache_size(self) -> int:
        return len(self._cache)

    def clear_cache(self) -> None:
        with self._lock:
            self._cache.clear()

    def assess_quality(self, asset: VideoAsset) -> QualityMetrics:
        """
        Score an asset, using the cached result when available.

        Args:
            asset: Asset with decoded ``frames`` and optionally ``reconstruction``.

        Returns:
            Complete metric set.

        Raises:
            QualityAssessmentError: If any metric cannot be computed.
        """
        key = (asset.id, asset.checksum)
        cached = self._cache.get(key)
        if cached is not None:
            logger.debug(f"Quality cache hit for {asset.id}")
            return cached

        try:
            reference, compared = self._frame_pair(asset)
            if self.ledger is not None:
                nbytes = reference.size * _WORKING_BYTES_PER_VALUE
                with self.ledger.reservation(nbytes, label=f"quality:{asset.id}"):
                    metrics = self._compute(reference, compared)
            else:
                metrics = self._compute(reference, compared)
        except Exception as e:
            raise QualityAssessmentError(
                f"Quality assessment failed for {asset.id}: {e}", asset_id=asset.id
            ) from e

        with self._lock:
            metrics = self._cache.setdefault(key, metrics)
            while len(self._cache) > self.config.cache_size:
                self._cache.popitem(last=False)

        logger.info(
            f"Assessed {asset.id}: psnr={metrics.psnr:.2f}, ssim={metrics.ssim:.3f}, "
            f"fid={metrics.fid:.2f}, fvd={metrics.fvd:.2f}"
        )
        return metrics

    def is_acceptable(self, metrics: QualityMetrics) -> bool:
        """True iff every metric is within its threshold."""
        return not self.failed_thresholds(metrics)

    def failed_thresholds(self, metrics: QualityMetrics) -> list[str]:
        """Readable description of each threshold the metrics miss."""
        t = self.thresholds
        failures = []
        if not metrics.psnr >= t.min_psnr:
            failures.append(f"psnr {metrics.psnr:.2f} < {t.min_psnr}")
        if not metrics.ssim >= t.min_ssim:
            failures.append(f"ssim {metrics.ssim:.3f} < {t.min_ssim}")
        if not metrics.fid <= t.max_fid:
            failures.append(f"fid {metrics.fid:.2f} > {t.max_fid}")
        if not metrics.fvd <= t.max_fvd:
            failures.append(f"fvd {metrics.fvd:.2f} > {t.max_fvd}")
        return failures

    def _frame_pair(self, asset: VideoAsset) -> tuple[NDArray[np.uint8], NDArray[np.uint8]]:
        if asset.frames is None or len(asset.frames) == 0:
            raise ValueError("asset has no decoded frames")
        reference = np.asarray(asset.frames)
        if asset.reconstruction is not None:
            compared = np.asarray(asset.reconstruction)
        else:
            compared = np.roll(reference, 1, axis=0)
        if reference.shape != compared.shape:
            raise ValueError(
                f"reconstruction shape {compared.shape} does not match frames {reference.shape}"
            )
        return reference, compared

    def _frame_features(self, frames: NDArray[np.uint8]) -> NDArray[np.float32]:
        step = self.config.batch_size
        return np.concatenate([
            self.extractor.extract_frames(frames[i:i + step])
            for i in range(0, len(frames), step)
        ])

    def _clip_features(self, frames: NDArray[np.uint8]) -> NDArray[np.float32]:
        windows = sliding_windows(len(frames), self.config.fvd_window, self.config.fvd_stride)
        return np.stack([self.extractor.clip_features(frames[w]) for w in windows])

    def _compute(
        self,
        reference: NDArray[np.uint8],
        compared: NDArray[np.uint8]
    ) -> QualityMetrics:
        fid = feature_distance(self._frame_features(reference), self._frame_features(compared))
        fvd = feature_distance(self._clip_features(reference), self._clip_features(compared))
        values = {
            "psnr": psnr(reference, compared),
            "ssim": ssim(
                reference,
                compared,
                window_size=self.config.ssim_window,
                sigma=self.config.ssim_sigma,
            ),
            "fid": fid,
            "fvd": fvd,
        }
        for name, value in values.items():
            if not np.isfinite(value):
                raise ValueError(f"{name} is not finite: {value}")
            if name != "ssim" and value < 0:
                raise ValueError(f"{name} is negative: {value}")
        return QualityMetrics(**values)
