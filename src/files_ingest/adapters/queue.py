import asyncio
import json
import logging
import math
import os
import time
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from pydantic import BaseModel, Field

from files_ingest.errors import QueueUnavailable
from files_ingest.schemas import DeadLetterEntry
from files_ingest.settings import Settings, get_settings

logger = logging.getLogger(__name__)


class Job(BaseModel):
    """A processing job for one file.

    ``attempt`` is the 1-based number of the current delivery.
    ``receipt`` identifies the claimed delivery to the queue and is never serialized.
    """
    job_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    file_id: str
    attempt: int = 1
    enqueued_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    last_error: Optional[str] = None
    receipt: Optional[str] = Field(default=None, exclude=True)

    def dump(self) -> str:
        return self.model_dump_json()


class BaseQueue:
    """Base class for queue handling (to be extended by specific implementations)

    Delivery is at-least-once: a claimed job stays invisible to other consumers
    until it is acknowledged, rescheduled or dead-lettered.
    """

    def enqueue(self, file_id: str) -> str:
        """Store a processing job and return its id; raises ``QueueUnavailable`` on failure."""
        raise NotImplementedError

    async def add_task(self, file_id: str) -> str:
        return await asyncio.to_thread(self.enqueue, file_id)

    async def get_task(self) -> Optional[Job]:
        raise NotImplementedError

    async def ack(self, job: Job) -> None:
        raise NotImplementedError

    async def retry(self, job: Job, delay_seconds: float, error: str) -> None:
        raise NotImplementedError

    async def dead_letter(self, job: Job, error: str) -> None:
        raise NotImplementedError

    async def list_dead_letters(self) -> List[DeadLetterEntry]:
        raise NotImplementedError

    def recover_stale(self, max_age_seconds: float) -> int:
        """Release claims abandoned by dead workers. Brokers with visibility timeouts need nothing here."""
        return 0


class LocalQueue(BaseQueue):
    """Handles local queue using file system for IPC

    Layout under ``queue_dir``::

        pending/<eligible-ms>_<job-id>.json    waiting, sorted by eligibility
        processing/<same name>                 claimed by a worker
        dead_letter/<job-id>.json              exhausted jobs kept for inspection
        errors/                                unreadable task files

    A claim is an atomic ``rename`` from pending to processing, so two workers
    never hold the same delivery.
    """

    def __init__(self, queue_dir: str):
        self.queue_dir = Path(queue_dir)
        self.pending_dir = self.queue_dir / "pending"
        self.processing_dir = self.queue_dir / "processing"
        self.dead_letter_dir = self.queue_dir / "dead_letter"
        for directory in (self.pending_dir, self.processing_dir, self.dead_letter_dir):
            directory.mkdir(parents=True, exist_ok=True)
        logger.info("LocalQueue initialized at: %s", self.queue_dir)

    @staticmethod
    def _task_filename(job: Job, eligible_at: float) -> str:
        return f"{int(eligible_at * 1000):013d}_{job.job_id}.json"

    def _write(self, directory: Path, filename: str, payload: str) -> None:
        tmp_path = self.queue_dir / f".{filename}.tmp"
        tmp_path.write_text(payload)
        os.replace(tmp_path, directory / filename)

    def _schedule(self, job: Job, eligible_at: float) -> None:
        self._write(self.pending_dir, self._task_filename(job, eligible_at), job.dump())

    def enqueue(self, file_id: str) -> str:
        """Add task to queue"""
        job = Job(file_id=file_id)
        try:
            self._schedule(job, time.time())
        except OSError as e:
            logger.error("Error adding task to queue: %s", str(e))
            raise QueueUnavailable(f"Could not enqueue file {file_id}: {e}") from e
        logger.info("Added job %s for file %s to queue", job.job_id, file_id)
        return job.job_id

    async def get_task(self) -> Optional[Job]:
        """Claim the oldest eligible task, or return None when nothing is ready"""
        now_ms = int(time.time() * 1000)
        for task_file in sorted(self.pending_dir.glob("*.json")):
            eligible_ms = int(task_file.name.split("_", 1)[0])
            if eligible_ms > now_ms:
                break

            claimed = self.processing_dir / task_file.name
            try:
                task_file.rename(claimed)
            except FileNotFoundError:
                # Another worker claimed it first
                continue
            os.utime(claimed)

            try:
                job = Job.model_validate_json(claimed.read_text())
            except (OSError, ValueError) as e:
                logger.error("Error reading task file %s: %s", claimed, str(e))
                # Move problematic file to error directory
                error_dir = self.queue_dir / "errors"
                error_dir.mkdir(exist_ok=True)
                claimed.rename(error_dir / claimed.name)
                continue

            job.receipt = str(claimed)
            logger.info("Retrieved job %s (attempt %d) for file %s", job.job_id, job.attempt, job.file_id)
            return job

        await asyncio.sleep(0.1)  # Prevent busy waiting
        return None

    async def ack(self, job: Job) -> None:
        Path(job.receipt).unlink(missing_ok=True)

    async def retry(self, job: Job, delay_seconds: float, error: str) -> None:
        next_job = job.model_copy(update={"attempt": job.attempt + 1, "last_error": error})
        self._schedule(next_job, time.time() + delay_seconds)
        Path(job.receipt).unlink(missing_ok=True)
        logger.info("Job %s rescheduled in %.1fs (attempt %d)", job.job_id, delay_seconds, next_job.attempt)

    async def dead_letter(self, job: Job, error: str) -> None:
        record = DeadLetterEntry(
            job_id=job.job_id,
            file_id=job.file_id,
            attempts=job.attempt,
            error=error,
            failed_at=datetime.now(timezone.utc),
        )
        self._write(self.dead_letter_dir, f"{job.job_id}.json", record.model_dump_json())
        Path(job.receipt).unlink(missing_ok=True)
        logger.warning("Job %s for file %s dead-lettered after %d attempts", job.job_id, job.file_id, job.attempt)

    async def list_dead_letters(self) -> List[DeadLetterEntry]:
        return [
            DeadLetterEntry.model_validate_json(path.read_text())
            for path in sorted(self.dead_letter_dir.glob("*.json"))
        ]

    def recover_stale(self, max_age_seconds: float) -> int:
        """Return claims older than ``max_age_seconds`` to the pending set.

        A claim only gets that old when its worker died mid-job, so the job is
        delivered again.
        """
        recovered = 0
        cutoff = time.time() - max_age_seconds
        for claimed in self.processing_dir.glob("*.json"):
            try:
                if claimed.stat().st_mtime < cutoff:
                    claimed.rename(self.pending_dir / claimed.name)
                    recovered += 1
            except FileNotFoundError:
                continue
        if recovered:
            logger.warning("Recovered %d stale job claim(s)", recovered)
        return recovered


class SQSQueue(BaseQueue):
    """Handles AWS SQS queue

    The attempt number is SQS's ``ApproximateReceiveCount``. A retry hides the
    message for the backoff delay; dead-lettering moves it to a second queue.
    """

    def __init__(self, sqs_client, queue_url: str, dead_letter_queue_url: str, wait_time_seconds: int = 5):
        self.sqs = sqs_client
        self.queue_url = queue_url
        self.dead_letter_queue_url = dead_letter_queue_url
        self.wait_time_seconds = wait_time_seconds

    @classmethod
    def from_settings(cls, settings: Settings) -> "SQSQueue":
        if not settings.sqs_queue_url or not settings.sqs_dead_letter_queue_url:
            raise ValueError("SQS_QUEUE_URL and SQS_DEAD_LETTER_QUEUE_URL must be set for SQS queues")

        sqs = boto3.client(
            "sqs",
            endpoint_url=settings.aws_endpoint_url,
            aws_access_key_id=settings.aws_access_key_id,
            aws_secret_access_key=settings.aws_secret_access_key,
            region_name=settings.aws_region,
        )

        logger.info(f"SQSQueue initialized")
        logger.info(f"  Endpoint: {settings.aws_endpoint_url}")
        logger.info(f"  Queue URL: {settings.sqs_queue_url}")
        logger.info(f"  Dead-letter URL: {settings.sqs_dead_letter_queue_url}")
        return cls(sqs, settings.sqs_queue_url, settings.sqs_dead_letter_queue_url)

    def enqueue(self, file_id: str) -> str:
        """Add a task to the SQS queue."""
        job = Job(file_id=file_id)
        try:
            response = self.sqs.send_message(QueueUrl=self.queue_url, MessageBody=job.dump())
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Error adding task to SQS queue: {str(e)}")
            raise QueueUnavailable(f"Could not enqueue file {file_id}: {e}") from e
        logger.info(f"Task added to SQS queue with ID: {response.get('MessageId')}")
        return job.job_id

    async def get_task(self) -> Optional[Job]:
        messages = await asyncio.to_thread(
            self.sqs.receive_message,
            QueueUrl=self.queue_url,
            MaxNumberOfMessages=1,
            WaitTimeSeconds=self.wait_time_seconds,
            AttributeNames=["ApproximateReceiveCount"],
        )
        if "Messages" not in messages:
            return None

        message = messages["Messages"][0]
        try:
            job = Job.model_validate_json(message["Body"])
        except ValueError as e:
            logger.error(f"Discarding malformed SQS message {message.get('MessageId')}: {e}")
            await self._delete(self.queue_url, message["ReceiptHandle"])
            return None

        job.attempt = int(message.get("Attributes", {}).get("ApproximateReceiveCount", job.attempt))
        job.receipt = message["ReceiptHandle"]
        logger.info(f"Retrieved job {job.job_id} (attempt {job.attempt}) for file {job.file_id}")
        return job

    async def _delete(self, queue_url: str, receipt_handle: str) -> None:
        await asyncio.to_thread(self.sqs.delete_message, QueueUrl=queue_url, ReceiptHandle=receipt_handle)

    async def ack(self, job: Job) -> None:
        await self._delete(self.queue_url, job.receipt)

    async def retry(self, job: Job, delay_seconds: float, error: str) -> None:
        # SQS caps visibility timeouts at 12 hours
        visibility = min(int(math.ceil(delay_seconds)), 43200)
        await asyncio.to_thread(
            self.sqs.change_message_visibility,
            QueueUrl=self.queue_url,
            ReceiptHandle=job.receipt,
            VisibilityTimeout=visibility,
        )
        logger.info(f"Job {job.job_id} hidden for {visibility}s before attempt {job.attempt + 1}")

    async def dead_letter(self, job: Job, error: str) -> None:
        record = DeadLetterEntry(
            job_id=job.job_id,
            file_id=job.file_id,
            attempts=job.attempt,
            error=error,
            failed_at=datetime.now(timezone.utc),
        )
        await asyncio.to_thread(
            self.sqs.send_message,
            QueueUrl=self.dead_letter_queue_url,
            MessageBody=record.model_dump_json(),
        )
        await self._delete(self.queue_url, job.receipt)
        logger.warning(f"Job {job.job_id} for file {job.file_id} dead-lettered after {job.attempt} attempts")

    async def _peek_dead_letters(self):
        response = await asyncio.to_thread(
            self.sqs.receive_message,
            QueueUrl=self.dead_letter_queue_url,
            MaxNumberOfMessages=10,
            VisibilityTimeout=0,
        )
        return response.get("Messages", [])

    async def list_dead_letters(self) -> List[DeadLetterEntry]:
        return [DeadLetterEntry.model_validate_json(m["Body"]) for m in await self._peek_dead_letters()]


class QueueFactory:
    """Factory to initialize the correct queue handler based on deployment mode"""

    @staticmethod
    def get_queue_handler(settings: Optional[Settings] = None) -> BaseQueue:
        settings = settings or get_settings()

        deployment_mode = settings.deployment_mode
        logger.info(f"Creating queue handler for mode: {deployment_mode}")
        if settings.is_aws:
            return SQSQueue.from_settings(settings)
        return LocalQueue(str(Path(settings.storage_dir) / "queue_data"))
