"""
Stress test for the atomic claim: concurrent workers never share a job.
"""
import threading
import uuid
from collections import Counter

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from coursemedia.db.base import Base
from coursemedia.modules.audit.models import AuditLogEntry  # noqa: F401
from coursemedia.modules.jobs.models import JobStatus, ProcessingJob
from coursemedia.modules.jobs.payloads import JobSpec, ThumbnailParameters
from coursemedia.modules.jobs.queue import JobQueue

WORKERS = 8
JOBS = 40


class TestConcurrentClaims:
    """At most one claim per job under concurrent dequeue."""

    def test_each_job_is_claimed_exactly_once(self, tmp_path):
        """N workers draining M jobs claim every job once and never twice."""
        engine = create_engine(
            f"sqlite:///{tmp_path / 'claims.db'}",
            connect_args={"check_same_thread": False, "timeout": 30},
        )
        Base.metadata.create_all(bind=engine)
        Session = sessionmaker(autoflush=False, expire_on_commit=False, bind=engine)

        with Session() as setup:
            queue = JobQueue(setup)
            queue.enqueue_many(
                JobSpec.for_job(uuid.uuid4(), ThumbnailParameters(), priority=i % 3)
                for i in range(JOBS)
            )

        claims: list[tuple[str, uuid.UUID]] = []
        claims_lock = threading.Lock()
        errors: list[BaseException] = []
        start = threading.Barrier(WORKERS)

        def worker(worker_id: str) -> None:
            try:
                start.wait()
                with Session() as session:
                    queue = JobQueue(session)
                    while True:
                        job = queue.dequeue_next(worker_id)
                        if job is None:
                            return
                        with claims_lock:
                            claims.append((worker_id, job.id))
            except BaseException as exc:  # surfaced by the assertion below
                errors.append(exc)

        threads = [
            threading.Thread(target=worker, args=(f"worker-{i}",)) for i in range(WORKERS)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=120)

        assert not errors
        counts = Counter(job_id for _, job_id in claims)
        assert len(counts) == JOBS
        assert max(counts.values()) == 1

        with Session() as check:
            jobs = check.query(ProcessingJob).all()
            assert {job.status for job in jobs} == {JobStatus.processing}
            owners = {job.id: job.worker_id for job in jobs}
            assert all(owners[job_id] == worker_id for worker_id, job_id in claims)

        engine.dispose()
