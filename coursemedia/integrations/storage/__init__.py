"""Object storage for original uploads and derived artifacts."""

from .client import StorageClient, get_storage_client

__all__ = ["StorageClient", "get_storage_client"]
