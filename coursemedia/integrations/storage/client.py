"""Main storage client - switches between dummy and real AWS S3."""

from typing import BinaryIO, Optional

from coursemedia.core.config import settings
from coursemedia.core.errors import TransientInfraError
from coursemedia.core.logging import get_logger

logger = get_logger(__name__)


class StorageClient:
    """
    Unified storage client that works with both dummy (local) and real AWS S3.
    Automatically selects implementation based on USE_DUMMY_S3 setting.

    Every backend failure other than a missing object surfaces as
    TransientInfraError so job handlers retry it through the queue.
    """

    def __init__(self, use_dummy: Optional[bool] = None, storage_path: Optional[str] = None):
        use_dummy = settings.USE_DUMMY_S3 if use_dummy is None else use_dummy
        if use_dummy:
            from .dummy_storage import DummyS3Client
            self._client = DummyS3Client(storage_path)
            self._bucket = None
            self._mode = "dummy"
            logger.info("StorageClient initialized in DUMMY mode (local storage)")
        else:
            try:
                import boto3
            except ImportError:
                raise ImportError(
                    "boto3 is required for real S3 mode. "
                    "Install it with: pip install boto3"
                )
            self._client = boto3.client(
                's3',
                aws_access_key_id=settings.AWS_ACCESS_KEY_ID,
                aws_secret_access_key=settings.AWS_SECRET_ACCESS_KEY,
                region_name=settings.AWS_REGION,
            )
            self._bucket = settings.AWS_S3_BUCKET
            self._mode = "real"
            logger.info("StorageClient initialized in REAL mode", bucket=self._bucket)

    @property
    def mode(self) -> str:
        return self._mode

    def upload_file(self, file_path: str, key: str) -> dict:
        try:
            if self._mode == "dummy":
                return self._client.upload_file(file_path, key)
            self._client.upload_file(file_path, self._bucket, key)
            return {"Key": key, "Bucket": self._bucket}
        except FileNotFoundError:
            raise
        except Exception as exc:
            raise TransientInfraError(f"Storage upload failed for {key}: {exc}") from exc

    def upload_fileobj(self, fileobj: BinaryIO, key: str, content_type: Optional[str] = None) -> int:
        """Stream an upload into storage and return its size in bytes."""
        if self._mode == "dummy":
            return self._client.upload_fileobj(fileobj, key)

        extra_args = {"ContentType": content_type} if content_type else None
        self._client.upload_fileobj(fileobj, self._bucket, key, ExtraArgs=extra_args)
        return self.head_object(key)["ContentLength"]

    def download_file(self, key: str, file_path: str) -> None:
        try:
            if self._mode == "dummy":
                self._client.download_file(key, file_path)
            else:
                self._client.download_file(self._bucket, key, file_path)
        except FileNotFoundError:
            raise
        except Exception as exc:
            raise TransientInfraError(f"Storage download failed for {key}: {exc}") from exc

    def put_object(self, key: str, body: bytes, content_type: Optional[str] = None) -> dict:
        if self._mode == "dummy":
            return self._client.put_object(key, body, content_type)
        params = {"Bucket": self._bucket, "Key": key, "Body": body}
        if content_type:
            params["ContentType"] = content_type
        return self._client.put_object(**params)

    def get_object_bytes(self, key: str) -> bytes:
        if self._mode == "dummy":
            return self._client.get_object(key)["Body"]
        response = self._client.get_object(Bucket=self._bucket, Key=key)
        return response["Body"].read()

    def head_object(self, key: str) -> dict:
        if self._mode == "dummy":
            return self._client.head_object(key)
        return self._client.head_object(Bucket=self._bucket, Key=key)

    def object_exists(self, key: str) -> bool:
        if self._mode == "dummy":
            return self._client.object_exists(key)
        try:
            self._client.head_object(Bucket=self._bucket, Key=key)
            return True
        except self._client.exceptions.ClientError:
            return False

    def delete_object(self, key: str) -> dict:
        if self._mode == "dummy":
            return self._client.delete_object(key)
        return self._client.delete_object(Bucket=self._bucket, Key=key)

    def generate_presigned_url(self, key: str, expiration: int = 3600) -> str:
        if self._mode == "dummy":
            return self._client.generate_presigned_url(key, expiration)
        return self._client.generate_presigned_url(
            'get_object',
            Params={'Bucket': self._bucket, 'Key': key},
            ExpiresIn=expiration,
        )


# Singleton instance
_storage_client = None


def get_storage_client() -> StorageClient:
    """Get singleton storage client instance."""
    global _storage_client
    if _storage_client is None:
        _storage_client = StorageClient()
    return _storage_client
