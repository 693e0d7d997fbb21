"""Pipeline metrics and audit events.

Both sinks are fire-and-forget from the orchestrator's point of view: it
guards every call, so a failing sink is logged and never stops processing.
"""

from __future__ import annotations

import logging
import threading
import time
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Optional

logger = logging.getLogger(__name__)

Tags = Optional[dict[str, str]]


def _tag_key(tags: Tags) -> tuple[tuple[str, str], ...]:
    return tuple(sorted((tags or {}).items()))


class MetricsSink(ABC):
    """Receiver for counters and timing observations."""

    @abstractmethod
    def increment(self, name: str, value: float = 1.0, tags: Tags = None) -> None:
        pass

    @abstractmethod
    def observe(self, name: str, value: float, tags: Tags = None) -> None:
        """Record a sample, e.g. a stage duration in seconds."""
        pass


class LoggingMetricsSink(MetricsSink):
    """Writes metrics to the ``curation.metrics`` logger at DEBUG level."""

    def __init__(self, logger_name: str = "curation.metrics"):
        self._logger = logging.getLogger(logger_name)

    def increment(self, name: str, value: float = 1.0, tags: Tags = None) -> None:
        self._logger.debug(f"counter {name} +{value} {tags or {}}")

    def observe(self, name: str, value: float, tags: Tags = None) -> None:
        self._logger.debug(f"observe {name}={value:.4f} {tags or {}}")


class InMemoryMetricsSink(MetricsSink):
    """Collects metrics in memory for inspection."""

    def __init__(self):
        self._lock = threading.Lock()
        self._counters: dict[tuple[str, tuple], float] = defaultdict(float)
        self._observations: dict[tuple[str, tuple], list[float]] = defaultdict(list)

    def increment(self, name: str, value: float = 1.0, tags: Tags = None) -> None:
        with self._lock:
            self._counters[(name, _tag_key(tags))] += value

    def observe(self, name: str, value: float, tags: Tags = None) -> None:
        with self._lock:
            self._observations[(name, _tag_key(tags))].append(value)

    def counter(self, name: str, tags: Tags = None) -> float:
        """Counter value for exact tags, or summed over all tags when ``tags`` is None."""
        with self._lock:
            if tags is not None:
                return self._counters.get((name, _tag_key(tags)), 0.0)
            return sum(v for (n, _), v in self._counters.items() if n == name)

    def observations(self, name: str) -> list[float]:
        with self._lock:
            return [
                value
                for (n, _), values in self._observations.items() if n == name
                for value in values
            ]


@dataclass(frozen=True)
class AuditEvent:
    """One audit record."""
    event: str
    asset_id: Optional[str]
    details: dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)


class AuditLog(ABC):
    """Append-only record of lifecycle events."""

    @abstractmethod
    def record(self, event: str, asset_id: Optional[str] = None, **details: Any) -> None:
        pass


class LoggingAuditLog(AuditLog):
    """Writes audit events to the ``curation.audit`` logger at INFO level."""

    def __init__(self, logger_name: str = "curation.audit"):
        self._logger = logging.getLogger(logger_name)

    def record(self, event: str, asset_id: Optional[str] = None, **details: Any) -> None:
        self._logger.info(f"{event} asset={asset_id} {details}")


class InMemoryAuditLog(AuditLog):
    """Keeps audit events in memory."""

    def __init__(self):
        self._lock = threading.Lock()
        self.events: list[AuditEvent] = []

    def record(self, event: str, asset_id: Optional[str] = None, **details: Any) -> None:
        with self._lock:
            self.events.append(AuditEvent(event, asset_id, dict(details)))

    def for_asset(self, asset_id: str) -> list[AuditEvent]:
        with self._lock:
            return [e for e in self.events if e.asset_id == asset_id]
