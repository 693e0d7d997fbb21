"""Memory ledger tests."""

import threading

import pytest

from curation.errors import ResourceExhaustedError
from curation.memory import GIB, MemoryLedger

pytestmark = pytest.mark.unit


class TestMemoryLedger:
    """Test reservation accounting."""

    def test_reserve_and_release(self):
        ledger = MemoryLedger(1000)
        handle = ledger.reserve(400, label="frames")
        assert ledger.used_bytes == 400
        assert ledger.available_bytes == 600
        assert ledger.active_reservations == 1

        ledger.release(handle)
        assert ledger.used_bytes == 0
        assert ledger.active_reservations == 0

    def test_denied_reservation_leaves_usage_unchanged(self):
        ledger = MemoryLedger(1000)
        ledger.reserve(800)
        with pytest.raises(ResourceExhaustedError) as exc_info:
            ledger.reserve(300, label="codebook")
        assert exc_info.value.requested == 300
        assert exc_info.value.available == 200
        assert ledger.used_bytes == 800

    def test_exact_fit_allowed(self):
        ledger = MemoryLedger(1000)
        ledger.reserve(1000)
        assert ledger.available_bytes == 0

    def test_double_release_is_noop(self):
        ledger = MemoryLedger(1000)
        handle = ledger.reserve(100)
        ledger.release(handle)
        ledger.release(handle)
        assert ledger.used_bytes == 0

    def test_context_manager_releases_on_error(self):
        ledger = MemoryLedger(1000)
        with pytest.raises(RuntimeError):
            with ledger.reservation(500):
                assert ledger.used_bytes == 500
                raise RuntimeError("encode failed")
        assert ledger.used_bytes == 0

    def test_peak_tracked(self):
        ledger = MemoryLedger(1000)
        first = ledger.reserve(300)
        second = ledger.reserve(500)
        ledger.release(first)
        ledger.release(second)
        assert ledger.peak_bytes == 800

    def test_negative_reservation_rejected(self):
        with pytest.raises(ValueError):
            MemoryLedger(1000).reserve(-1)

    def test_invalid_capacity(self):
        with pytest.raises(ValueError):
            MemoryLedger(0)

    def test_from_gb(self):
        assert MemoryLedger.from_gb(2).capacity_bytes == 2 * GIB

    def test_concurrent_reservations_never_exceed_capacity(self):
        """Reserve is atomic: 100 threads racing for 10 slots get exactly 10."""
        ledger = MemoryLedger(10)
        granted = []
        lock = threading.Lock()
        barrier = threading.Barrier(100)

        def worker():
            barrier.wait()
            try:
                handle = ledger.reserve(1)
            except ResourceExhaustedError:
                return
            with lock:
                granted.append(handle)

        threads = [threading.Thread(target=worker) for _ in range(100)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(granted) == 10
        assert ledger.used_bytes == 10
