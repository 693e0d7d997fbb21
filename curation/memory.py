"""Shared device-memory accounting."""

from __future__ import annotations

import itertools
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator

from .errors import ResourceExhaustedError

logger = logging.getLogger(__name__)

GIB = 1024 ** 3


@dataclass(frozen=True)
class Reservation:
    """Handle for memory reserved in a ledger."""
    reservation_id: int
    nbytes: int
    label: str


class MemoryLedger:
    """
    Tracked budget of device memory.

    Components reserve against the ledger before touching device memory and
    release afterwards. Reserve and release are atomic under one lock; a
    reservation that would push usage past the capacity is denied with
    ``ResourceExhaustedError`` instead of blocking.
    """

    def __init__(self, capacity_bytes: int):
        """
        Initialize the ledger.

        Args:
            capacity_bytes: Device memory ceiling in bytes.
        """
        if capacity_bytes <= 0:
            raise ValueError(f"capacity_bytes must be positive, got {capacity_bytes}")
        self.capacity_bytes = int(capacity_bytes)
        self._lock = threading.Lock()
        self._active: dict[int, Reservation] = {}
        self._used = 0
        self._peak = 0
        self._ids = itertools.count(1)

    @classmethod
    def from_gb(cls, capacity_gb: float) -> "MemoryLedger":
        return cls(int(capacity_gb * GIB))

    @property
    def used_bytes(self) -> int:
        with self._lock:
            return self._used

    @property
    def available_bytes(self) -> int:
        with self._lock:
            return self.capacity_bytes - self._used

    @property
    def peak_bytes(self) -> int:
        with self._lock:
            return self._peak

    @property
    def active_reservations(self) -> int:
        with self._lock:
            return len(self._active)

    def reserve(self, nbytes: int, label: str = "") -> Reservation:
        """
        Reserve memory or fail immediately.

        Raises:
            ResourceExhaustedError: If the reservation does not fit.
        """
        nbytes = int(nbytes)
        if nbytes < 0:
            raise ValueError(f"Cannot reserve a negative amount: {nbytes}")
        with self._lock:
            available = self.capacity_bytes - self._used
            if nbytes > available:
                raise ResourceExhaustedError(
                    f"Memory reservation denied for {label or 'anonymous'}: "
                    f"requested {nbytes} bytes, {available} available",
                    requested=nbytes,
                    available=available,
                )
            reservation = Reservation(next(self._ids), nbytes, label)
            self._active[reservation.reservation_id] = reservation
            self._used += nbytes
            self._peak = max(self._peak, self._used)
        logger.debug(f"Reserved {nbytes} bytes for {label} (id={reservation.reservation_id})")
        return reservation

    def release(self, reservation: Reservation) -> None:
        """Release a reservation. Releasing twice is a no-op."""
        with self._lock:
            if self._active.pop(reservation.reservation_id, None) is None:
                return
            self._used -= reservation.nbytes
        logger.debug(f"Released {reservation.nbytes} bytes for {reservation.label}")

    @contextmanager
    def reservation(self, nbytes: int, label: str = "") -> Iterator[Reservation]:
        """Reserve for the duration of a ``with`` block, releasing on every exit path."""
        handle = self.reserve(nbytes, label)
        try:
            yield handle
        finally:
            self.release(handle)
