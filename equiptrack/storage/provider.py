from typing import BinaryIO, Optional


class StorageProvider:
    """Blob storage for calibration certificates, addressed by key."""

    def get_download_url(self, key: str, expires_s: int) -> Optional[str]:
        """Short-lived URL for the object, or None when the provider streams instead."""
        raise NotImplementedError

    def exists(self, key: str) -> bool:
        raise NotImplementedError

    def put(self, data: bytes | BinaryIO, key: str, content_type: str) -> None:
        raise NotImplementedError

    def read(self, key: str) -> bytes:
        """Object bytes; FileNotFoundError when the key is missing."""
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError


_provider: Optional[StorageProvider] = None


def get_storage() -> StorageProvider:
    """FastAPI dependency returning the configured provider (built once)."""
    global _provider
    if _provider is None:
        from ..config import settings
        if settings.storage_provider == "blob":
            from .blob_provider import BlobStorageProvider
            _provider = BlobStorageProvider()
        else:
            from .local_provider import LocalStorageProvider
            _provider = LocalStorageProvider(settings.local_storage_dir)
    return _provider
