"""
Local filesystem storage provider for development and tests.
Saves certificates under a local directory instead of Azure Blob Storage.
"""
from typing import Optional, BinaryIO
from pathlib import Path

import structlog

from .provider import StorageProvider


logger = structlog.get_logger(__name__)


class LocalStorageProvider(StorageProvider):
    """Local filesystem storage provider."""

    def __init__(self, base_dir: str = "var/storage"):
        self.base_dir = Path(base_dir)
        (self.base_dir / "uploads").mkdir(parents=True, exist_ok=True)

    def _get_path(self, key: str) -> Path:
        """Get the local filesystem path for a given key."""
        clean_key = key.lstrip("/").replace("..", "").replace("\\", "/")
        return self.base_dir / "uploads" / clean_key

    def get_download_url(self, key: str, expires_s: int) -> Optional[str]:
        # Served by streaming the bytes through the API
        return None

    def exists(self, key: str) -> bool:
        return self._get_path(key).exists()

    def put(self, data: bytes | BinaryIO, key: str, content_type: str) -> None:
        path = self._get_path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "wb") as f:
            f.write(data.read() if hasattr(data, "read") else data)

    def read(self, key: str) -> bytes:
        return self._get_path(key).read_bytes()

    def delete(self, key: str) -> None:
        path = self._get_path(key)
        try:
            if path.exists():
                path.unlink()
        except OSError as e:
            logger.warning("local_storage_delete_failed", key=key, error=str(e))
