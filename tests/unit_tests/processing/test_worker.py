import asyncio
import time

import pytest

from files_ingest.database.local import get_file
from files_ingest.errors import TransientStorageError
from files_ingest.schemas import FileStatus
from files_ingest.services.admission import UploadAdmissionController
from ingest_workers.worker import Worker
from tests.consts import TEST_TEXT_CONTENT


@pytest.fixture
def make_worker(local_queue):
    def _make_worker(pipeline, **kwargs):
        kwargs.setdefault("backoff_base_seconds", 0)
        kwargs.setdefault("poll_interval_seconds", 0.01)
        return Worker(local_queue, pipeline, **kwargs)

    return _make_worker


async def _deliver(queue, worker):
    job = await queue.get_task()
    assert job is not None
    await worker.process_task(job)
    return job


def _queue_is_empty(queue):
    return not any(queue.pending_dir.iterdir()) and not any(queue.processing_dir.iterdir())


def test_backoff_doubles():
    worker = Worker(queue=None, pipeline=None, backoff_base_seconds=1.0)

    assert [worker.backoff_delay(attempt) for attempt in (1, 2, 3)] == [1.0, 2.0, 4.0]


async def test_successful_job_is_acked(make_worker, pipeline, make_scanning_file, local_queue, user, db_path):
    file = make_scanning_file(user, TEST_TEXT_CONTENT)
    local_queue.enqueue(file.id)

    await _deliver(local_queue, make_worker(pipeline))

    assert get_file(file.id, db_path=db_path).status == FileStatus.CLEAN
    assert _queue_is_empty(local_queue)
    assert await local_queue.list_dead_letters() == []


async def test_download_failing_every_attempt_rejects_file(
    make_worker, pipeline, make_scanning_file, blob_store, scanner, local_queue, user, db_path
):
    blob_store.get_error = TransientStorageError("storage timed out")
    file = make_scanning_file(user, TEST_TEXT_CONTENT)
    local_queue.enqueue(file.id)
    worker = make_worker(pipeline, max_attempts=3)

    attempts = [(await _deliver(local_queue, worker)).attempt for _ in range(3)]

    assert attempts == [1, 2, 3]
    assert blob_store.get_calls == 3
    assert scanner.calls == 0
    stored = get_file(file.id, db_path=db_path)
    assert stored.status == FileStatus.REJECTED
    assert stored.reason.startswith("Processing error:")
    assert "storage timed out" in stored.reason

    dead_letters = await local_queue.list_dead_letters()
    assert len(dead_letters) == 1
    assert dead_letters[0].file_id == file.id
    assert dead_letters[0].attempts == 3
    assert _queue_is_empty(local_queue)


async def test_retry_waits_for_backoff(make_worker, pipeline, make_scanning_file, blob_store, local_queue, user):
    blob_store.get_error = TransientStorageError("flaky")
    file = make_scanning_file(user, TEST_TEXT_CONTENT)
    local_queue.enqueue(file.id)

    await _deliver(local_queue, make_worker(pipeline, backoff_base_seconds=60))

    assert await local_queue.get_task() is None


async def test_recovers_after_transient_failure(make_worker, pipeline, make_scanning_file, blob_store, local_queue, user, db_path):
    blob_store.get_error = TransientStorageError("flaky")
    file = make_scanning_file(user, TEST_TEXT_CONTENT)
    local_queue.enqueue(file.id)
    worker = make_worker(pipeline)

    await _deliver(local_queue, worker)
    blob_store.get_error = None
    job = await _deliver(local_queue, worker)

    assert job.attempt == 2
    assert get_file(file.id, db_path=db_path).status == FileStatus.CLEAN


async def test_missing_file_is_dead_lettered_immediately(make_worker, pipeline, local_queue):
    local_queue.enqueue("no-such-file")

    await _deliver(local_queue, make_worker(pipeline))

    dead_letters = await local_queue.list_dead_letters()
    assert len(dead_letters) == 1
    assert dead_letters[0].attempts == 1
    assert "File not found" in dead_letters[0].error


class SlowPipeline:
    def __init__(self, delay):
        self.delay = delay
        self.rejected = []

    def process(self, file_id):
        time.sleep(self.delay)

    def mark_rejected(self, file_id, error):
        self.rejected.append((file_id, error))
        return True


async def test_timeout_counts_as_failure(make_worker, local_queue):
    slow = SlowPipeline(delay=0.5)
    local_queue.enqueue("slow-file")

    await _deliver(local_queue, make_worker(slow, max_attempts=1, job_timeout_seconds=0.05))

    assert slow.rejected[0][0] == "slow-file"
    assert "timed out" in slow.rejected[0][1]
    assert len(await local_queue.list_dead_letters()) == 1


class CountingPipeline:
    def __init__(self, stop_after, on_done):
        self.processed = []
        self.stop_after = stop_after
        self.on_done = on_done

    def process(self, file_id):
        self.processed.append(file_id)
        if len(self.processed) == self.stop_after:
            self.on_done()

    def mark_rejected(self, file_id, error):
        return False


async def test_listen_for_tasks_drains_queue(make_worker, local_queue):
    for i in range(4):
        local_queue.enqueue(f"file-{i}")
    counting = CountingPipeline(stop_after=4, on_done=lambda: worker.stop())
    worker = make_worker(counting, concurrency=2)

    await asyncio.wait_for(worker.listen_for_tasks(), timeout=10)

    assert sorted(counting.processed) == [f"file-{i}" for i in range(4)]
    assert _queue_is_empty(local_queue)


def test_job_delivered_before_complete_commits_is_retried(
    make_worker, pipeline, blob_store, audit, local_queue, settings, user, db_path
):
    admission = UploadAdmissionController(blob_store, local_queue, audit, db_path=db_path, settings=settings)
    initiated = admission.initiate(user, "notes.txt", len(TEST_TEXT_CONTENT), "text/plain")
    blob_store.objects[get_file(initiated.file_id, db_path=db_path).storage_key] = TEST_TEXT_CONTENT
    worker = make_worker(pipeline)
    enqueue = local_queue.enqueue
    early_attempts = []

    def enqueue_and_deliver(file_id):
        job_id = enqueue(file_id)
        # A consumer runs the job while complete() still holds its transaction
        early_attempts.append(asyncio.run(_deliver(local_queue, worker)).attempt)
        return job_id

    local_queue.enqueue = enqueue_and_deliver
    admission.complete(initiated.file_id, user)

    assert early_attempts == [1]
    assert get_file(initiated.file_id, db_path=db_path).status == FileStatus.SCANNING
    assert not _queue_is_empty(local_queue)

    redelivered = asyncio.run(_deliver(local_queue, worker))

    assert redelivered.attempt == 2
    assert get_file(initiated.file_id, db_path=db_path).status == FileStatus.CLEAN
    assert _queue_is_empty(local_queue)
    assert asyncio.run(local_queue.list_dead_letters()) == []
