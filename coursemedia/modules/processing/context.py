from __future__ import annotations

import uuid
from pathlib import Path, PurePosixPath
from typing import Optional

from coursemedia.core.constants import MAX_PROGRESS, MIN_PROGRESS
from coursemedia.core.errors import JobCancelled, ProcessingError
from coursemedia.core.logging import get_logger
from coursemedia.integrations.storage import StorageClient
from coursemedia.modules.assets.models import VideoAsset
from coursemedia.modules.jobs.models import JobType, ProcessingJob
from coursemedia.modules.jobs.payloads import JobParameters
from coursemedia.modules.jobs.queue import JobQueue

logger = get_logger(__name__)


class JobContext:
    """Everything a handler may touch while running one job.

    Progress reports double as cancellation checkpoints: once the job has
    been cancelled, the next ``report_progress`` or ``check_cancelled``
    raises JobCancelled.
    """

    def __init__(
        self,
        job: ProcessingJob,
        params: JobParameters,
        asset: VideoAsset,
        queue: JobQueue,
        storage: StorageClient,
        work_dir: Path,
        worker_id: str,
    ):
        self.job = job
        self.params = params
        self.asset = asset
        self.queue = queue
        self.storage = storage
        self.work_dir = work_dir
        self.worker_id = worker_id
        self._last_progress = MIN_PROGRESS

    @property
    def job_id(self) -> uuid.UUID:
        return self.job.id

    @property
    def asset_id(self) -> uuid.UUID:
        return self.job.asset_id

    @property
    def job_type(self) -> JobType:
        return self.job.job_type

    def check_cancelled(self) -> None:
        if self.queue.is_cancelled(self.job.id):
            raise JobCancelled(self.job.id)

    def report_progress(self, percent: float) -> None:
        percent = int(max(MIN_PROGRESS, min(MAX_PROGRESS, percent)))
        if percent <= self._last_progress:
            return
        self._last_progress = percent
        self.queue.update_progress(self.job.id, percent)
        self.check_cancelled()

    # ---------- STORAGE ----------

    def fetch_source(self) -> Path:
        """Download the original upload into the work dir and return its local path."""
        if not self.asset.storage_key:
            raise ProcessingError(f"Asset {self.asset.id} has no stored original")
        suffix = PurePosixPath(self.asset.storage_key).suffix or ".mp4"
        local_path = self.work_dir / f"source{suffix}"
        if not local_path.exists():
            try:
                self.storage.download_file(self.asset.storage_key, str(local_path))
            except FileNotFoundError as e:
                raise ProcessingError(
                    f"Original upload missing from storage: {self.asset.storage_key}"
                ) from e
        return local_path

    def publish_output(self, local_path: Path, key: str, content_type: Optional[str] = None) -> str:
        """Upload a produced file and return its storage key."""
        self.storage.upload_file(str(local_path), key)
        logger.info(
            "job output published",
            job_id=str(self.job.id),
            key=key,
            content_type=content_type,
        )
        return key

    def publish_bytes(self, body: bytes, key: str, content_type: Optional[str] = None) -> str:
        self.storage.put_object(key, body, content_type)
        return key
