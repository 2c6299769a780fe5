import asyncio
import logging
import time
from typing import Optional

from files_ingest.adapters.queue import BaseQueue, Job
from files_ingest.errors import is_retryable
from files_ingest.settings import Settings
from ingest_workers.processing.pipeline import ProcessingPipeline

logger = logging.getLogger(__name__)


class Worker:
    """Pool of queue consumers feeding the processing pipeline.

    Each consumer handles one job at a time. A failed job is rescheduled with
    exponential backoff until ``max_attempts`` deliveries have failed; then the
    file is rejected and the job dead-lettered.
    """

    def __init__(
        self,
        queue: BaseQueue,
        pipeline: ProcessingPipeline,
        concurrency: int = 2,
        max_attempts: int = 3,
        backoff_base_seconds: float = 1.0,
        job_timeout_seconds: float = 300.0,
        poll_interval_seconds: float = 1.0,
    ):
        self.queue = queue
        self.pipeline = pipeline
        self.concurrency = concurrency
        self.max_attempts = max_attempts
        self.backoff_base_seconds = backoff_base_seconds
        self.job_timeout_seconds = job_timeout_seconds
        self.poll_interval_seconds = poll_interval_seconds
        self.running = True
        self._last_recovery = 0.0
        logger.info(f"Worker initialized with {concurrency} consumer(s), {max_attempts} attempts per job")

    @classmethod
    def from_settings(cls, queue: BaseQueue, pipeline: ProcessingPipeline, settings: Settings) -> "Worker":
        return cls(
            queue,
            pipeline,
            concurrency=settings.worker_concurrency,
            max_attempts=settings.job_max_attempts,
            backoff_base_seconds=settings.job_backoff_base_seconds,
            job_timeout_seconds=settings.job_timeout_seconds,
            poll_interval_seconds=settings.queue_poll_interval_seconds,
        )

    def backoff_delay(self, attempt: int) -> float:
        """Delay before the delivery following ``attempt``: base, 2*base, 4*base, ..."""
        return self.backoff_base_seconds * (2 ** (attempt - 1))

    async def process_task(self, job: Job) -> None:
        """Run the pipeline for one delivery and settle the job with the queue"""
        logger.info(f"Processing job {job.job_id} for file {job.file_id} (attempt {job.attempt})")
        # A timed-out thread cannot be cancelled; it finishes in the background and its
        # commit is discarded once the file is terminal. Settings keep the adapter
        # timeouts below job_timeout_seconds so this stays rare.
        try:
            await asyncio.wait_for(
                asyncio.to_thread(self.pipeline.process, job.file_id),
                timeout=self.job_timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            await self._handle_failure(job, e, f"Processing timed out after {self.job_timeout_seconds}s")
            return
        except Exception as e:
            await self._handle_failure(job, e, str(e) or e.__class__.__name__)
            return

        await self.queue.ack(job)
        logger.info(f"Job {job.job_id} completed")

    async def _handle_failure(self, job: Job, error: BaseException, message: str) -> None:
        if is_retryable(error) and job.attempt < self.max_attempts:
            delay = self.backoff_delay(job.attempt)
            logger.warning(f"Job {job.job_id} attempt {job.attempt} failed: {message}; retrying in {delay}s")
            await self.queue.retry(job, delay, message)
            return

        logger.error(f"Job {job.job_id} failed permanently after {job.attempt} attempt(s): {message}")
        await asyncio.to_thread(self.pipeline.mark_rejected, job.file_id, message)
        await self.queue.dead_letter(job, message)

    def _recover_stale_claims(self) -> None:
        now = time.monotonic()
        if now - self._last_recovery < self.job_timeout_seconds:
            return
        self._last_recovery = now
        self.queue.recover_stale(self.job_timeout_seconds * 2)

    async def _consume(self, consumer_id: int) -> None:
        consecutive_errors = 0
        while self.running:
            try:
                job = await self.queue.get_task()
                if job is None:
                    if consumer_id == 0:
                        self._recover_stale_claims()
                    await asyncio.sleep(self.poll_interval_seconds)
                    continue
                await self.process_task(job)
                consecutive_errors = 0
            except Exception as e:
                consecutive_errors += 1
                logger.error(f"Error in task processing loop: {str(e)}", exc_info=True)

                # Implement exponential backoff
                backoff_time = min(30, 2 ** consecutive_errors)
                logger.warning(f"Backing off for {backoff_time} seconds after error...")
                await asyncio.sleep(backoff_time)

    async def listen_for_tasks(self, consumers: Optional[int] = None):
        """Run the consumers until ``stop`` is called"""
        count = consumers or self.concurrency
        logger.info(f"Worker started listening for tasks with {count} consumer(s)")
        await asyncio.gather(*(self._consume(i) for i in range(count)))

    def stop(self):
        """Stop the worker gracefully"""
        logger.info("Stopping worker...")
        self.running = False
