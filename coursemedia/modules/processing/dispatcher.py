"""Pulls jobs off the queue and runs their handlers.

``Dispatcher.run_next`` is one iteration of a worker loop and owns its own
database session. ``WorkerPool`` runs that loop on N threads. Nothing a
handler raises escapes ``run_next``: failures become ``JobQueue.fail``
calls and cancellation just ends the attempt.
"""

from __future__ import annotations

import os
import socket
import tempfile
import threading
import uuid
from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import Optional

from sqlalchemy.orm import Session

from coursemedia.core.config import settings
from coursemedia.core.errors import JobCancelled, ProcessingError
from coursemedia.core.logging import get_logger
from coursemedia.core.timeutils import utcnow
from coursemedia.db.session import SessionLocal
from coursemedia.integrations.storage import StorageClient, get_storage_client
from coursemedia.modules.assets.service import AssetService
from coursemedia.modules.jobs.models import ProcessingJob
from coursemedia.modules.jobs.payloads import parse_parameters
from coursemedia.modules.jobs.queue import JobQueue
from coursemedia.modules.processing.context import JobContext
from coursemedia.modules.processing.handlers import HandlerOutcome, HandlerRegistry, default_registry

logger = get_logger(__name__)


class Dispatcher:
    def __init__(
        self,
        registry: Optional[HandlerRegistry] = None,
        session_factory: Callable[[], Session] = SessionLocal,
        storage: Optional[StorageClient] = None,
        work_root: Optional[str] = None,
        clock: Callable[[], datetime] = utcnow,
        backoff_base_seconds: Optional[float] = None,
        backoff_max_seconds: Optional[float] = None,
    ):
        self.registry = registry or default_registry()
        self.session_factory = session_factory
        self.storage = storage or get_storage_client()
        self.work_root = Path(work_root or settings.WORK_DIR)
        self.clock = clock
        self.backoff_base_seconds = backoff_base_seconds
        self.backoff_max_seconds = backoff_max_seconds

    def _queue(self, db: Session) -> JobQueue:
        return JobQueue(
            db,
            clock=self.clock,
            backoff_base_seconds=self.backoff_base_seconds,
            backoff_max_seconds=self.backoff_max_seconds,
        )

    def run_next(self, worker_id: str) -> Optional[uuid.UUID]:
        """Claim and run one job. Returns its id, or None when nothing was dispatchable."""
        db = self.session_factory()
        try:
            queue = self._queue(db)
            job = queue.dequeue_next(worker_id)
            if job is None:
                return None
            self._execute(db, queue, job, worker_id)
            return job.id
        finally:
            db.close()

    def _execute(self, db: Session, queue: JobQueue, job: ProcessingJob, worker_id: str) -> None:
        log = logger.bind(job_id=str(job.id), job_type=job.job_type.value, worker_id=worker_id)
        assets = AssetService(db, clock=self.clock)

        try:
            handler = self.registry.get(job.job_type)
            params = parse_parameters(job.job_type, job.parameters)
            asset = assets.get_asset(job.asset_id)

            self.work_root.mkdir(parents=True, exist_ok=True)
            with tempfile.TemporaryDirectory(prefix=f"job-{job.id}-", dir=self.work_root) as work_dir:
                ctx = JobContext(job, params, asset, queue, self.storage, Path(work_dir), worker_id)
                ctx.check_cancelled()
                outcome = handler.handle(ctx)
        except JobCancelled:
            db.rollback()
            log.info("job cancelled while running; attempt abandoned")
        except ProcessingError as exc:
            db.rollback()
            queue.fail(job.id, exc.message, worker_id=worker_id, error_kind=exc.error_kind)
        except Exception as exc:
            db.rollback()
            log.exception("job handler crashed")
            queue.fail(job.id, f"{type(exc).__name__}: {exc}", worker_id=worker_id)
        else:
            self._finish(db, queue, assets, job, outcome, worker_id)

        try:
            assets.refresh_processing_status(job.asset_id)
        except Exception:
            db.rollback()
            log.exception("failed to refresh asset processing status")

    def _finish(
        self,
        db: Session,
        queue: JobQueue,
        assets: AssetService,
        job: ProcessingJob,
        outcome: HandlerOutcome,
        worker_id: str,
    ) -> None:
        # artifact first, then completion, in one transaction
        try:
            assets.record_artifact(
                job.asset_id,
                job.id,
                job.job_type,
                outcome.artifact_path,
                outcome.artifact_attrs(),
                commit=False,
            )
            completed = queue.complete(job.id, outcome.result, worker_id=worker_id, commit=False)
        except Exception as exc:
            db.rollback()
            logger.exception("recording job outcome failed", job_id=str(job.id))
            queue.fail(job.id, f"Recording result failed: {exc}", worker_id=worker_id)
            return

        if completed:
            db.commit()
        else:
            # cancelled or taken over while running; drop the artifact with it
            db.rollback()


class WorkerPool:
    """N worker threads running the dispatcher loop with idle polling."""

    def __init__(
        self,
        dispatcher: Dispatcher,
        size: Optional[int] = None,
        poll_interval: Optional[float] = None,
    ):
        self.dispatcher = dispatcher
        self.size = size or settings.WORKER_POOL_SIZE
        self.poll_interval = (
            settings.WORKER_POLL_INTERVAL_SECONDS if poll_interval is None else poll_interval
        )
        self._stop = threading.Event()
        self._threads: list[threading.Thread] = []
        self._prefix = f"{socket.gethostname()}-{os.getpid()}"

    def worker_ids(self) -> list[str]:
        return [f"{self._prefix}-worker-{i}" for i in range(self.size)]

    def start(self) -> None:
        if self._threads:
            return
        self._stop.clear()
        for worker_id in self.worker_ids():
            thread = threading.Thread(target=self._loop, args=(worker_id,), name=worker_id, daemon=True)
            thread.start()
            self._threads.append(thread)
        logger.info("worker pool started", size=self.size)

    def stop(self, timeout: Optional[float] = None) -> None:
        """Ask workers to stop after their current job and wait for them."""
        self._stop.set()
        for thread in self._threads:
            thread.join(timeout)
        self._threads = []
        logger.info("worker pool stopped")

    def _loop(self, worker_id: str) -> None:
        while not self._stop.is_set():
            try:
                processed = self.dispatcher.run_next(worker_id)
            except Exception:
                logger.exception("worker loop iteration failed", worker_id=worker_id)
                processed = None
            if processed is None:
                self._stop.wait(self.poll_interval)

    def run_until_idle(self, max_jobs: Optional[int] = None) -> int:
        """Drain dispatchable jobs on the calling thread. Returns how many ran."""
        worker_id = f"{self._prefix}-inline"
        processed = 0
        while max_jobs is None or processed < max_jobs:
            if self.dispatcher.run_next(worker_id) is None:
                break
            processed += 1
        return processed
