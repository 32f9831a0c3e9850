"""Dummy S3 implementation using local filesystem."""

import os
import shutil
from pathlib import Path
from typing import BinaryIO, Optional

from coursemedia.core.config import settings
from coursemedia.core.constants import UPLOAD_CHUNK_SIZE
from coursemedia.core.logging import get_logger

logger = get_logger(__name__)


class DummyS3Client:
    """
    Mock S3 client that stores files locally.
    Mimics boto3 S3 client API but uses filesystem.
    """

    def __init__(self, storage_path: Optional[str] = None):
        self.storage_path = Path(storage_path or settings.S3_STORAGE_PATH)
        self.storage_path.mkdir(parents=True, exist_ok=True)
        logger.info("Initialized DummyS3Client", storage_path=str(self.storage_path))

    def _get_full_path(self, key: str) -> Path:
        """Convert S3 key to local filesystem path."""
        key = key.lstrip('/')
        return self.storage_path / key

    def upload_file(self, file_path: str, key: str) -> dict:
        destination = self._get_full_path(key)
        destination.parent.mkdir(parents=True, exist_ok=True)

        shutil.copy2(file_path, destination)

        logger.info("File uploaded", source=file_path, destination=str(destination))

        return {
            "ETag": f'"{os.path.getsize(destination)}"',
            "Location": str(destination),
            "Key": key,
        }

    def upload_fileobj(self, fileobj: BinaryIO, key: str) -> int:
        """Stream a file object into storage. Returns the number of bytes written."""
        destination = self._get_full_path(key)
        destination.parent.mkdir(parents=True, exist_ok=True)

        written = 0
        with open(destination, 'wb') as out:
            for chunk in iter(lambda: fileobj.read(UPLOAD_CHUNK_SIZE), b""):
                out.write(chunk)
                written += len(chunk)

        logger.info("Stream stored", destination=str(destination), size=written)
        return written

    def download_file(self, key: str, file_path: str) -> None:
        source = self._get_full_path(key)

        if not source.exists():
            raise FileNotFoundError(f"File not found: {key}")

        Path(file_path).parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(source, file_path)

        logger.debug("File downloaded", source=str(source), destination=file_path)

    def get_object(self, key: str) -> dict:
        file_path = self._get_full_path(key)

        if not file_path.exists():
            raise FileNotFoundError(f"File not found: {key}")

        with open(file_path, 'rb') as f:
            content = f.read()

        return {
            "Body": content,
            "ContentLength": len(content),
            "Key": key,
        }

    def put_object(self, key: str, body: bytes, content_type: Optional[str] = None) -> dict:
        destination = self._get_full_path(key)
        destination.parent.mkdir(parents=True, exist_ok=True)

        with open(destination, 'wb') as f:
            f.write(body)

        logger.info("Object stored", destination=str(destination), size=len(body))

        return {
            "ETag": f'"{len(body)}"',
            "Location": str(destination),
            "Key": key,
        }

    def head_object(self, key: str) -> dict:
        file_path = self._get_full_path(key)
        if not file_path.exists():
            raise FileNotFoundError(f"File not found: {key}")
        return {"ContentLength": file_path.stat().st_size, "Key": key}

    def object_exists(self, key: str) -> bool:
        return self._get_full_path(key).is_file()

    def delete_object(self, key: str) -> dict:
        file_path = self._get_full_path(key)

        if file_path.exists():
            file_path.unlink()
            logger.info("File deleted", path=str(file_path))
        else:
            logger.warning("File not found for deletion", path=str(file_path))

        return {"DeleteMarker": False, "Key": key}

    def generate_presigned_url(self, key: str, expiration: int = 3600) -> str:
        """In dummy mode this is just the local file URL."""
        file_path = self._get_full_path(key)
        return f"file://{file_path.absolute()}"
