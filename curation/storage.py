"""Object storage for source videos and persisted token buffers."""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Union

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoreOptions:
    """Options for a single store call."""
    content_type: str = "application/octet-stream"
    overwrite: bool = True
    metadata: dict[str, str] = field(default_factory=dict)


class ObjectStore(ABC):
    """Abstract blob store addressed by slash-separated relative paths."""

    @abstractmethod
    def store(
        self,
        data: bytes,
        path: str,
        options: Optional[StoreOptions] = None
    ) -> str:
        """
        Store bytes at a path.

        Args:
            data: Payload.
            path: Relative object path.
            options: Store options.

        Returns:
            URL of the stored object.

        Raises:
            FileExistsError: If the object exists and ``overwrite`` is False.
        """
        pass

    @abstractmethod
    def retrieve(self, path: str) -> bytes:
        """
        Read an object.

        Raises:
            FileNotFoundError: If no object exists at ``path``.
        """
        pass

    @abstractmethod
    def exists(self, path: str) -> bool:
        pass


def _normalize(path: str) -> str:
    parts = [p for p in str(path).replace("\\", "/").split("/") if p not in ("", ".")]
    if not parts or any(p == ".." for p in parts):
        raise ValueError(f"Invalid object path: {path!r}")
    return "/".join(parts)


class LocalObjectStore(ObjectStore):
    """Object store backed by a directory on the local filesystem."""

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    def _resolve(self, path: str) -> Path:
        return self.root / _normalize(path)

    def store(
        self,
        data: bytes,
        path: str,
        options: Optional[StoreOptions] = None
    ) -> str:
        options = options or StoreOptions()
        target = self._resolve(path)
        if target.exists() and not options.overwrite:
            raise FileExistsError(f"Object already exists: {path}")
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
        logger.debug(f"Stored {len(data)} bytes at {target}")
        return target.as_uri()

    def retrieve(self, path: str) -> bytes:
        target = self._resolve(path)
        if not target.is_file():
            raise FileNotFoundError(f"No object at {path}")
        return target.read_bytes()

    def exists(self, path: str) -> bool:
        return self._resolve(path).is_file()


class InMemoryObjectStore(ObjectStore):
    """Thread-safe in-memory object store."""

    def __init__(self):
        self._objects: dict[str, bytes] = {}
        self._lock = threading.Lock()

    def store(
        self,
        data: bytes,
        path: str,
        options: Optional[StoreOptions] = None
    ) -> str:
        options = options or StoreOptions()
        key = _normalize(path)
        with self._lock:
            if key in self._objects and not options.overwrite:
                raise FileExistsError(f"Object already exists: {path}")
            self._objects[key] = bytes(data)
        return f"memory://{key}"

    def retrieve(self, path: str) -> bytes:
        key = _normalize(path)
        try:
            return self._objects[key]
        except KeyError:
            raise FileNotFoundError(f"No object at {path}") from None

    def exists(self, path: str) -> bool:
        return _normalize(path) in self._objects

    def __len__(self) -> int:
        return len(self._objects)
