"""Near-duplicate detection against a bounded index of retained assets."""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Optional

import numpy as np
from numpy.typing import NDArray
from sklearn.metrics.pairwise import cosine_similarity

from ..config import DeduplicationConfig
from ..embedder import FeatureExtractor, FrameStatisticsExtractor
from ..errors import DeduplicationError, InvalidAssetError
from ..memory import MemoryLedger
from ..types import VideoAsset
from .fingerprint import perceptual_fingerprint
from .index import DuplicateIndex

logger = logging.getLogger(__name__)

# float32 working copy of the frames during extraction
_EXTRACTION_BYTES_PER_VALUE = 4


@dataclass
class DuplicateVerdict:
    """Outcome of a duplicate check."""
    is_duplicate: bool
    fingerprint: str
    features: Optional[NDArray[np.float32]] = field(default=None, repr=False)
    similarity: float = -1.0
    matched_asset_id: Optional[str] = None
    reason: str = ""  # "fingerprint", "similarity" or "" when unique


class Deduplicator:
    """
    Perceptual near-duplicate detector.

    An exact fingerprint hit owned by another asset is a duplicate without
    feature extraction. Otherwise the asset's feature vector is compared by
    cosine similarity with every cached vector; similarity above the
    threshold is a duplicate. Entries owned by the asset being checked are
    ignored, so re-checking an asset after registering it is safe.
    """

    def __init__(
        self,
        config: Optional[DeduplicationConfig] = None,
        extractor: Optional[FeatureExtractor] = None,
        index: Optional[DuplicateIndex] = None,
        ledger: Optional[MemoryLedger] = None,
        sleep: Callable[[float], None] = time.sleep
    ):
        """
        Initialize the deduplicator.

        Args:
            config: Thresholds, cache size and retry settings.
            extractor: Feature extractor for similarity checks.
            index: Shared index. A new one sized to the config is created if None.
            ledger: Memory ledger charged during feature extraction.
            sleep: Called with the backoff delay between extraction retries.
        """
        self.config = config or DeduplicationConfig()
        self.extractor = extractor or FrameStatisticsExtractor()
        self.index = index if index is not None else DuplicateIndex(self.config.max_cache_size)
        self.ledger = ledger
        self._sleep = sleep
        self._claim_lock = threading.Lock()

    def fingerprint(self, asset: VideoAsset) -> str:
        return perceptual_fingerprint(
            self._frames(asset),
            num_frames=self.config.fingerprint_frames,
            hash_size=self.config.hash_size,
        )

    def _frames(self, asset: VideoAsset) -> NDArray[np.uint8]:
        if asset.frames is None or len(asset.frames) == 0:
            raise InvalidAssetError(f"Asset {asset.id} has no frames", asset_id=asset.id)
        return asset.frames

    def extract_features(self, asset: VideoAsset) -> NDArray[np.float32]:
        """
        Extract the asset's feature vector, retrying transient failures.

        Failures are retried up to ``retry_attempts`` times in total with a
        linear backoff of ``retry_delay * attempt`` seconds.

        Raises:
            DeduplicationError: If every attempt failed.
            InvalidAssetError: If the asset has no frames.
        """
        frames = self._frames(asset)
        attempts = self.config.retry_attempts
        last_error: Optional[Exception] = None

        for attempt in range(1, attempts + 1):
            try:
                if self.ledger is None:
                    return self.extractor.extract(frames)
                nbytes = frames.size * _EXTRACTION_BYTES_PER_VALUE
                with self.ledger.reservation(nbytes, label=f"dedup:{asset.id}"):
                    return self.extractor.extract(frames)
            except InvalidAssetError:
                raise
            except Exception as e:
                last_error = e
                if attempt < attempts:
                    delay = self.config.retry_delay * attempt
                    logger.warning(
                        f"Feature extraction for {asset.id} failed "
                        f"(attempt {attempt}/{attempts}), retrying in {delay:.1f}s: {e}"
                    )
                    self._sleep(delay)

        raise DeduplicationError(
            f"Feature extraction for {asset.id} failed after {attempts} attempts: {last_error}",
            asset_id=asset.id,
        ) from last_error

    def check(self, asset: VideoAsset) -> DuplicateVerdict:
        """Check an asset against the index without modifying it."""
        fingerprint = self.fingerprint(asset)
        entry = self.index.get(fingerprint)
        if entry is not None and entry.asset_id != asset.id:
            return DuplicateVerdict(
                is_duplicate=True,
                fingerprint=fingerprint,
                similarity=1.0,
                matched_asset_id=entry.asset_id,
                reason="fingerprint",
            )

        features = self.extract_features(asset)
        similarity, match = self.index.most_similar(features, exclude_asset_id=asset.id)
        duplicate = match is not None and similarity > self.config.similarity_threshold
        return DuplicateVerdict(
            is_duplicate=duplicate,
            fingerprint=fingerprint,
            features=features,
            similarity=similarity,
            matched_asset_id=match.asset_id if duplicate else None,
            reason="similarity" if duplicate else "",
        )

    def is_duplicate(self, asset: VideoAsset) -> bool:
        """
        True if the asset duplicates content already in the index.

        Does not modify the index, so repeated calls agree.
        """
        return self.check(asset).is_duplicate

    def register(
        self,
        asset: VideoAsset,
        verdict: Optional[DuplicateVerdict] = None
    ) -> None:
        """Insert the asset into the index."""
        fingerprint = verdict.fingerprint if verdict else self.fingerprint(asset)
        features = verdict.features if verdict is not None and verdict.features is not None else None
        if features is None:
            features = self.extract_features(asset)
        self.index.insert(fingerprint, asset.checksum, asset.id, features)

    def claim(self, asset: VideoAsset) -> DuplicateVerdict:
        """Check and, if unique, register the asset in one atomic step."""
        with self._claim_lock:
            verdict = self.check(asset)
            if not verdict.is_duplicate:
                self.register(asset, verdict)
        if verdict.is_duplicate:
            logger.info(
                f"{asset.id} is a duplicate of {verdict.matched_asset_id} "
                f"({verdict.reason}, similarity={verdict.similarity:.3f})"
            )
        return verdict

    def _prepare(self, asset: VideoAsset) -> tuple[str, NDArray[np.float32]]:
        return self.fingerprint(asset), self.extract_features(asset)

    def deduplicate_batch(self, assets: list[VideoAsset]) -> list[VideoAsset]:
        """
        Drop duplicates from a batch, keeping the first of each group.

        Fingerprints and features are computed up front on a thread pool.
        Each asset, in order, is then compared with the index and with every
        earlier asset in the batch. Retained assets are registered.

        Returns:
            Retained assets in submission order.

        Raises:
            DeduplicationError: If feature extraction keeps failing for an asset.
        """
        if not assets:
            return []

        workers = min(self.config.max_workers, len(assets))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            prepared = list(pool.map(self._prepare, assets))

        fingerprints = [fp for fp, _ in prepared]
        features = np.stack([f for _, f in prepared])
        pairwise = cosine_similarity(features)
        threshold = self.config.similarity_threshold

        retained = []
        with self._claim_lock:
            for i, asset in enumerate(assets):
                duplicate_of = None
                for j in range(i):
                    if fingerprints[j] == fingerprints[i] or pairwise[i, j] > threshold:
                        duplicate_of = assets[j].id
                        break

                if duplicate_of is None:
                    entry = self.index.get(fingerprints[i])
                    if entry is not None and entry.asset_id != asset.id:
                        duplicate_of = entry.asset_id
                    else:
                        similarity, match = self.index.most_similar(
                            features[i], exclude_asset_id=asset.id
                        )
                        if match is not None and similarity > threshold:
                            duplicate_of = match.asset_id

                if duplicate_of is not None:
                    logger.info(f"Dropping {asset.id}: duplicate of {duplicate_of}")
                    continue

                self.index.insert(fingerprints[i], asset.checksum, asset.id, features[i])
                retained.append(asset)

        logger.info(f"Batch deduplication retained {len(retained)}/{len(assets)} assets")
        return retained
