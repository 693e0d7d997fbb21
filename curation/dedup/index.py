"""Bounded fingerprint index with FIFO eviction."""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Optional

import numpy as np
from numpy.typing import NDArray

from quality_metrics import max_cosine_similarity

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IndexEntry:
    """Cached record for one retained asset."""
    checksum: str
    asset_id: str
    features: NDArray[np.float32] = field(repr=False, compare=False)


class DuplicateIndex:
    """
    Insertion-ordered map of perceptual fingerprint to asset record.

    Holds at most ``max_size`` entries; inserting past the limit evicts the
    oldest insertion. Re-inserting an existing fingerprint keeps the
    original entry and its position. Writes take a lock; lookups read the
    current state without locking.
    """

    def __init__(self, max_size: int = 10000):
        if max_size < 1:
            raise ValueError(f"max_size must be >= 1, got {max_size}")
        self.max_size = max_size
        self._entries: OrderedDict[str, IndexEntry] = OrderedDict()
        self._lock = threading.Lock()
        self._snapshot: Optional[tuple[list[IndexEntry], NDArray[np.float32]]] = None

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, fingerprint: str) -> bool:
        return fingerprint in self._entries

    def get(self, fingerprint: str) -> Optional[IndexEntry]:
        return self._entries.get(fingerprint)

    def fingerprints(self) -> list[str]:
        """Fingerprints from oldest to newest insertion."""
        with self._lock:
            return list(self._entries)

    def insert(
        self,
        fingerprint: str,
        checksum: str,
        asset_id: str,
        features: NDArray[np.float32]
    ) -> list[IndexEntry]:
        """
        Add an entry, evicting the oldest ones beyond ``max_size``.

        Returns:
            The evicted entries.
        """
        evicted = []
        with self._lock:
            if fingerprint in self._entries:
                return evicted
            self._entries[fingerprint] = IndexEntry(
                checksum, asset_id, np.asarray(features, dtype=np.float32)
            )
            while len(self._entries) > self.max_size:
                _, entry = self._entries.popitem(last=False)
                evicted.append(entry)
            self._snapshot = None
        if evicted:
            logger.debug(f"Evicted {len(evicted)} entries from duplicate index")
        return evicted

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._snapshot = None

    def _feature_matrix(self) -> tuple[list[IndexEntry], NDArray[np.float32]]:
        snapshot = self._snapshot
        if snapshot is None:
            with self._lock:
                entries = list(self._entries.values())
                if entries:
                    matrix = np.stack([e.features for e in entries])
                else:
                    matrix = np.zeros((0, 0), dtype=np.float32)
                snapshot = (entries, matrix)
                self._snapshot = snapshot
        return snapshot

    def most_similar(
        self,
        features: NDArray[np.float32],
        exclude_asset_id: Optional[str] = None
    ) -> tuple[float, Optional[IndexEntry]]:
        """
        Find the cached entry with the highest cosine similarity.

        Args:
            features: Query vector.
            exclude_asset_id: Entries owned by this asset are ignored.

        Returns:
            Tuple of (similarity, entry), or (-1.0, None) if nothing qualifies.
        """
        entries, matrix = self._feature_matrix()
        if exclude_asset_id is not None and entries:
            keep = [i for i, e in enumerate(entries) if e.asset_id != exclude_asset_id]
            entries = [entries[i] for i in keep]
            matrix = matrix[keep]
        similarity, best = max_cosine_similarity(features, matrix)
        if best < 0:
            return similarity, None
        return similarity, entries[best]
