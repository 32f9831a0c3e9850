"""
Tests for the dispatcher and worker pool, with fake handlers standing in for ffmpeg and whisper.
"""
import pytest
from sqlalchemy import select

from coursemedia.core.errors import InvalidStateError, ProcessingError
from coursemedia.models.outbox_event import OutboxEvent
from coursemedia.modules.assets.models import AssetProcessingStatus, UploadStatus
from coursemedia.modules.assets.service import AssetService
from coursemedia.modules.jobs.models import JobStatus, JobType
from coursemedia.modules.jobs.payloads import JobSpec, SubtitleParameters, TranscodeParameters
from coursemedia.modules.jobs.queue import JobQueue
from coursemedia.modules.processing.dispatcher import WorkerPool
from coursemedia.modules.processing.handlers import HandlerOutcome, HandlerRegistry, JobHandler
from coursemedia.modules.status.service import AggregateStatus, StatusService


def _lesson_plan(asset_id, max_retries=None):
    return [
        JobSpec.for_job(
            asset_id,
            TranscodeParameters(resolution="1920x1080", quality="high", bitrate_kbps=5000),
            priority=20,
            max_retries=max_retries,
        ),
        JobSpec.for_job(
            asset_id,
            TranscodeParameters(resolution="854x480", quality="low", bitrate_kbps=1000),
            priority=20,
            max_retries=max_retries,
        ),
        JobSpec.for_job(asset_id, SubtitleParameters(language="en"), priority=10),
    ]


class CancelMidwayHandler(JobHandler):
    """Cancels its own job and then hits a progress checkpoint."""

    job_type = JobType.video_transcoding

    def handle(self, ctx) -> HandlerOutcome:
        ctx.report_progress(10)
        ctx.queue.cancel(ctx.job_id, actor_id="instructor-1")
        ctx.report_progress(60)
        raise AssertionError("cancellation checkpoint did not fire")


class CrashingHandler(JobHandler):
    job_type = JobType.video_transcoding

    def handle(self, ctx) -> HandlerOutcome:
        raise RuntimeError("disk on fire")


class TestProcessingRun:
    """End-to-end processing of an asset's jobs."""

    def test_all_jobs_complete_and_artifacts_are_recorded(
        self, db, uploaded_asset, fake_registry, make_dispatcher
    ):
        JobQueue(db).enqueue_many(_lesson_plan(uploaded_asset.id))
        pool = WorkerPool(make_dispatcher(fake_registry()), size=1)

        processed = pool.run_until_idle()

        assert processed == 3
        db.expire_all()
        status = StatusService(db).get_status(uploaded_asset.id)
        assert status.aggregate.status == AggregateStatus.completed
        assert status.aggregate.progress == 100
        assert status.aggregate.counts["completed"] == 3

        asset = AssetService(db).get_asset(uploaded_asset.id)
        assert asset.processing_status == AssetProcessingStatus.completed
        assert asset.upload_status == UploadStatus.completed
        assert len(asset.artifacts) == 3

        renditions = AssetService(db).list_renditions(uploaded_asset.id)
        assert sorted(r.attributes["resolution"] for r in renditions) == ["1920x1080", "854x480"]

        subtitles = AssetService(db).get_subtitles(uploaded_asset.id, language="en")
        assert len(subtitles) == 1
        assert subtitles[0].confidence_score == 0.9
        assert [s.text for s in subtitles[0].segments] == ["welcome to the lesson"]

        events = db.scalars(select(OutboxEvent)).all()
        assert [e.event_type for e in events] == ["video.processing.completed"]

    def test_empty_queue_runs_nothing(self, db, fake_registry, make_dispatcher):
        dispatcher = make_dispatcher(fake_registry())

        assert dispatcher.run_next("w1") is None
        assert WorkerPool(dispatcher, size=1).run_until_idle() == 0


class TestFailures:
    """Failed attempts go through the retry policy."""

    def test_exhausted_retries_fail_the_asset_until_manual_retry(
        self, db, uploaded_asset, fake_registry, fake_handler, make_dispatcher
    ):
        """max_retries=2 with three failures: the job fails terminally with retry_count 2."""
        flaky = fake_handler(JobType.video_transcoding, fail_times=3)
        queue = JobQueue(db)
        job_id = queue.enqueue(
            JobSpec.for_job(
                uploaded_asset.id,
                TranscodeParameters(resolution="1280x720"),
                max_retries=2,
            )
        )
        pool = WorkerPool(make_dispatcher(fake_registry(flaky)), size=1)

        assert pool.run_until_idle() == 3

        db.expire_all()
        job = queue.get_job(job_id)
        assert flaky.calls == 3
        assert job.status == JobStatus.failed
        assert job.retry_count == 2
        assert job.error_message == "simulated failure #3"
        status = StatusService(db).get_status(uploaded_asset.id)
        assert status.aggregate.status == AggregateStatus.failed
        assert AssetService(db).get_asset(uploaded_asset.id).processing_status == AssetProcessingStatus.failed

        queue.retry_manually(job_id, actor_id="admin-1")
        assert pool.run_until_idle() == 1

        db.expire_all()
        assert queue.get_job(job_id).status == JobStatus.completed
        status = StatusService(db).get_status(uploaded_asset.id)
        assert status.aggregate.status == AggregateStatus.completed

    def test_handler_crash_is_recorded_as_failure(
        self, db, uploaded_asset, fake_registry, make_dispatcher
    ):
        queue = JobQueue(db)
        job_id = queue.enqueue(
            JobSpec.for_job(uploaded_asset.id, TranscodeParameters(resolution="1280x720"), max_retries=0)
        )

        make_dispatcher(fake_registry(CrashingHandler())).run_next("w1")

        db.expire_all()
        job = queue.get_job(job_id)
        assert job.status == JobStatus.failed
        assert job.error_message == "RuntimeError: disk on fire"
        assert AssetService(db).get_asset(uploaded_asset.id).artifacts == []

    def test_job_type_without_handler_fails(self, db, uploaded_asset, make_dispatcher):
        queue = JobQueue(db)
        job_id = queue.enqueue(
            JobSpec.for_job(uploaded_asset.id, SubtitleParameters(language="de"), max_retries=0)
        )

        make_dispatcher(HandlerRegistry()).run_next("w1")

        db.expire_all()
        job = queue.get_job(job_id)
        assert job.status == JobStatus.failed
        assert "No handler registered" in job.error_message

    def test_processing_error_keeps_its_message(
        self, db, uploaded_asset, fake_registry, fake_handler, make_dispatcher
    ):
        broken = fake_handler(
            JobType.video_transcoding,
            fail_times=1,
            error=ProcessingError("ffmpeg failed (exit=1). moov atom not found"),
        )
        queue = JobQueue(db)
        job_id = queue.enqueue(
            JobSpec.for_job(uploaded_asset.id, TranscodeParameters(resolution="1280x720"))
        )

        make_dispatcher(fake_registry(broken)).run_next("w1")

        db.expire_all()
        job = queue.get_job(job_id)
        assert job.status == JobStatus.pending
        assert job.retry_count == 1
        assert job.error_message == "ffmpeg failed (exit=1). moov atom not found"


class TestCancellation:
    def test_cancelled_job_is_abandoned_without_artifact(
        self, db, uploaded_asset, fake_registry, make_dispatcher
    ):
        queue = JobQueue(db)
        job_id = queue.enqueue(
            JobSpec.for_job(uploaded_asset.id, TranscodeParameters(resolution="1280x720"))
        )

        make_dispatcher(fake_registry(CancelMidwayHandler())).run_next("w1")

        db.expire_all()
        job = queue.get_job(job_id)
        assert job.status == JobStatus.cancelled
        assert job.retry_count == 0
        assert job.result_data is None
        assert AssetService(db).list_renditions(uploaded_asset.id) == []


class TestReprocessing:
    """A reprocess replaces the job plan the asset status is derived from."""

    def test_reprocess_after_terminal_failure_completes_asset(
        self, db, uploaded_asset, fake_registry, fake_handler, make_dispatcher
    ):
        JobQueue(db).enqueue_many(_lesson_plan(uploaded_asset.id, max_retries=0))
        flaky = fake_handler(JobType.video_transcoding, fail_times=1)
        pool = WorkerPool(make_dispatcher(fake_registry(flaky)), size=1)
        pool.run_until_idle()

        db.expire_all()
        assert AssetService(db).get_asset(uploaded_asset.id).processing_status == (
            AssetProcessingStatus.failed
        )

        new_job_ids = AssetService(db).reprocess(uploaded_asset.id, actor_id="admin-1")
        pool.run_until_idle()

        db.expire_all()
        status = StatusService(db).get_status(uploaded_asset.id)
        assert status.aggregate.status == AggregateStatus.completed
        assert status.aggregate.total_jobs == len(new_job_ids)
        assert status.aggregate.counts["failed"] == 0
        # the superseded failure is still listed
        old_failed = [job for job in status.jobs if job.status == JobStatus.failed]
        assert len(old_failed) == 1
        assert old_failed[0].generation == 1
        assert {job.generation for job in status.jobs if job.id in set(new_job_ids)} == {2}

        asset = AssetService(db).get_asset(uploaded_asset.id)
        assert asset.processing_status == AssetProcessingStatus.completed
        assert asset.upload_status == UploadStatus.completed

        with pytest.raises(InvalidStateError):
            JobQueue(db).retry_manually(old_failed[0].id)

    def test_reprocess_after_cancellation_completes_asset(
        self, db, uploaded_asset, fake_registry, make_dispatcher
    ):
        queue = JobQueue(db)
        job_ids = queue.enqueue_many(_lesson_plan(uploaded_asset.id))
        queue.cancel(job_ids[0], actor_id="instructor-1")
        pool = WorkerPool(make_dispatcher(fake_registry()), size=1)
        pool.run_until_idle()

        db.expire_all()
        status = StatusService(db).get_status(uploaded_asset.id)
        assert status.aggregate.status == AggregateStatus.pending
        assert status.aggregate.counts["cancelled"] == 1

        AssetService(db).reprocess(uploaded_asset.id)
        pool.run_until_idle()

        db.expire_all()
        status = StatusService(db).get_status(uploaded_asset.id)
        assert status.aggregate.status == AggregateStatus.completed
        assert status.aggregate.counts["cancelled"] == 0
        assert AssetService(db).get_asset(uploaded_asset.id).processing_status == (
            AssetProcessingStatus.completed
        )
