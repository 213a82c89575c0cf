"""Blob storage for initiative reference images."""
from __future__ import annotations

import logging
import re
import time
from abc import ABC, abstractmethod
from pathlib import Path
from urllib.parse import quote

from mtaji.config import get_settings
from mtaji.errors import BlobStoreError

log = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9.\-]")


def sanitize_filename(name: str) -> str:
    cleaned = _UNSAFE_CHARS.sub("_", Path(name or "").name)
    return cleaned or "upload"


def object_path(changemaker_id: int, filename: str, now_ms: int | None = None) -> str:
    """``{changemaker_id}/{epoch_ms}_{sanitized name}``."""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return f"{changemaker_id}/{now_ms}_{sanitize_filename(filename)}"


class BlobStore(ABC):
    """Upload bytes under a path and hand back a public URL."""

    @abstractmethod
    def upload(self, path: str, data: bytes) -> str:
        """Store *data* at *path*, return its public URL."""

    @abstractmethod
    def get_public_url(self, path: str) -> str:
        ...


class LocalBlobStore(BlobStore):
    """Files under ``root/bucket``, served by some static host at ``base_url``."""

    def __init__(self, root: str | Path, base_url: str, bucket: str = "initiative-images"):
        self.root = Path(root)
        self.base_url = base_url.rstrip("/")
        self.bucket = bucket

    @classmethod
    def from_settings(cls) -> LocalBlobStore:
        settings = get_settings()
        return cls(settings.blob_dir, settings.blob_base_url, settings.image_bucket)

    def _target(self, path: str) -> Path:
        base = (self.root / self.bucket).resolve()
        target = (base / path).resolve()
        if base not in target.parents:
            raise BlobStoreError(f"Refusing to write outside the bucket: {path}")
        return target

    def upload(self, path: str, data: bytes) -> str:
        target = self._target(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as exc:
            raise BlobStoreError(f"Upload of {path} failed: {exc}") from exc
        log.debug("Stored %d bytes at %s", len(data), target)
        return self.get_public_url(path)

    def get_public_url(self, path: str) -> str:
        return f"{self.base_url}/{self.bucket}/{quote(path)}"
