"""Artifact storage for generated images.

Keys are random, never derived from the repository, PR or revision, so an
image url reveals nothing about other PRs and cannot be guessed from one.
The engine allocates the key in its own checkpointed step and passes it to
``put``; a retried upload therefore overwrites the same object instead of
leaving an orphan behind.
"""

from __future__ import annotations

import logging
import threading
import uuid
from abc import ABC, abstractmethod
from pathlib import Path

logger = logging.getLogger(__name__)

_EXTENSIONS = {
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/webp": ".webp",
}


def new_key(content_type: str = "image/png") -> str:
    return uuid.uuid4().hex + _EXTENSIONS.get(content_type, "")


class BaseArtifactStore(ABC):
    @abstractmethod
    def put(self, data: bytes, content_type: str, key: str | None = None) -> str:
        """Store ``data`` under ``key`` (a fresh random key if None) and return its public url."""

    @abstractmethod
    def url_for(self, key: str) -> str:
        """Return the public url of ``key``."""


class FileSystemArtifactStore(BaseArtifactStore):
    """Writes artifacts into a directory served at ``base_url``.

    The webhook server mounts the directory under ``/artifacts`` when this
    store is configured; any static host or CDN in front of the directory
    works the same way.
    """

    def __init__(self, root: str, base_url: str):
        self._root = Path(root)
        self._root.mkdir(parents=True, exist_ok=True)
        self._base_url = base_url.rstrip("/")

    @property
    def root(self) -> Path:
        return self._root

    def put(self, data: bytes, content_type: str, key: str | None = None) -> str:
        key = key or new_key(content_type)
        target = self._root / Path(key).name
        tmp = target.with_suffix(target.suffix + ".tmp")
        tmp.write_bytes(data)
        tmp.replace(target)
        logger.debug("Stored artifact %s (%d bytes)", target.name, len(data))
        return self.url_for(target.name)

    def url_for(self, key: str) -> str:
        return f"{self._base_url}/{key}"


class MemoryArtifactStore(BaseArtifactStore):
    """Keeps artifacts in a dict. Used by dry runs and tests."""

    def __init__(self, base_url: str = "memory://artifacts"):
        self._base_url = base_url.rstrip("/")
        self._lock = threading.Lock()
        self.objects: dict[str, tuple[bytes, str]] = {}

    def put(self, data: bytes, content_type: str, key: str | None = None) -> str:
        key = key or new_key(content_type)
        with self._lock:
            self.objects[key] = (data, content_type)
        return self.url_for(key)

    def url_for(self, key: str) -> str:
        return f"{self._base_url}/{key}"
