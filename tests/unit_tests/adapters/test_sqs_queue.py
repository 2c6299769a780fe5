import pytest

from files_ingest.adapters.queue import SQSQueue
from files_ingest.errors import QueueUnavailable
from files_ingest.settings import Settings


@pytest.fixture
def sqs_queue(mocked_aws):
    return SQSQueue(
        mocked_aws.sqs,
        mocked_aws.queue_url,
        mocked_aws.dead_letter_queue_url,
        wait_time_seconds=0,
    )


async def test_enqueue_and_receive(sqs_queue):
    job_id = sqs_queue.enqueue("file-1")

    job = await sqs_queue.get_task()

    assert job.job_id == job_id
    assert job.file_id == "file-1"
    assert job.attempt == 1
    assert job.receipt


async def test_empty_queue_returns_none(sqs_queue):
    assert await sqs_queue.get_task() is None


async def test_ack_deletes_message(sqs_queue, mocked_aws):
    sqs_queue.enqueue("file-1")
    job = await sqs_queue.get_task()

    await sqs_queue.ack(job)

    attributes = mocked_aws.sqs.get_queue_attributes(
        QueueUrl=mocked_aws.queue_url,
        AttributeNames=["ApproximateNumberOfMessages", "ApproximateNumberOfMessagesNotVisible"],
    )["Attributes"]
    assert attributes["ApproximateNumberOfMessages"] == "0"
    assert attributes["ApproximateNumberOfMessagesNotVisible"] == "0"


async def test_retry_redelivers_with_higher_attempt(sqs_queue):
    sqs_queue.enqueue("file-1")
    job = await sqs_queue.get_task()

    await sqs_queue.retry(job, 0, "boom")
    retried = await sqs_queue.get_task()

    assert retried.job_id == job.job_id
    assert retried.attempt == 2


async def test_dead_letter_moves_message(sqs_queue):
    sqs_queue.enqueue("file-1")
    job = await sqs_queue.get_task()

    await sqs_queue.dead_letter(job, "Processing error: boom")

    assert await sqs_queue.get_task() is None
    entries = await sqs_queue.list_dead_letters()
    assert len(entries) == 1
    assert entries[0].file_id == "file-1"
    assert entries[0].error == "Processing error: boom"


def test_enqueue_to_missing_queue_raises(mocked_aws):
    queue = SQSQueue(
        mocked_aws.sqs,
        mocked_aws.queue_url.replace("test-file-processing", "no-such-queue"),
        mocked_aws.dead_letter_queue_url,
    )

    with pytest.raises(QueueUnavailable):
        queue.enqueue("file-1")


def test_from_settings_requires_dead_letter_queue():
    settings = Settings(deployment_mode="aws-prod", sqs_queue_url="https://sqs.example/queue")

    with pytest.raises(ValueError):
        SQSQueue.from_settings(settings)
