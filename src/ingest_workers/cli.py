"""
CLI commands for the processing worker.

Starts the worker pool and lists dead-lettered jobs for operators.
"""

import asyncio
import logging
import os

import click

from files_ingest.adapters.queue import QueueFactory
from files_ingest.adapters.scanner import ScannerFactory
from files_ingest.adapters.storage import StorageFactory
from files_ingest.database.local import init_db
from files_ingest.services.audit import AuditRecorder
from files_ingest.settings import get_settings
from ingest_workers.processing.pipeline import ProcessingPipeline
from ingest_workers.worker import Worker

# Configure logging
logger = logging.getLogger(__name__)


@click.group()
def cli():
    """CLI commands for Ingest Worker management"""
    pass


@cli.command()
@click.option("--mode",
              type=click.Choice(["local-dev", "aws-mock", "aws-prod"]),
              default=None,
              help="Deployment mode (defaults to DEPLOYMENT_MODE)")
@click.option("--concurrency", type=int, default=None, help="Number of concurrent consumers")
def worker(mode, concurrency):
    """Start the processing worker"""
    if mode:
        os.environ["DEPLOYMENT_MODE"] = mode
        # Clear settings cache to pick up new mode
        get_settings.cache_clear()

    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    print(f"Starting ingest worker in {settings.deployment_mode} mode...")
    print(f"  S3 bucket: {settings.s3_bucket_name}")
    print(f"  SQS queue: {settings.sqs_queue_name}")
    print(f"  Scanner: {settings.scanner_url}")

    init_db(settings.database_path)
    queue = QueueFactory.get_queue_handler(settings)
    print(f"Queue handler initialized: {type(queue).__name__}")

    pipeline = ProcessingPipeline(
        StorageFactory.get_blob_store(settings),
        ScannerFactory.get_scanner(settings),
        AuditRecorder(settings.database_path),
        db_path=settings.database_path,
        settings=settings,
    )
    worker_instance = Worker.from_settings(queue, pipeline, settings)

    try:
        print("Worker ready to process tasks")
        asyncio.run(worker_instance.listen_for_tasks(concurrency))
    except KeyboardInterrupt:
        print("Received shutdown signal...")
        worker_instance.stop()
    finally:
        print("Worker shutdown complete")


@cli.command()
def dead_letters():
    """List dead-lettered jobs"""
    queue = QueueFactory.get_queue_handler(get_settings())
    entries = asyncio.run(queue.list_dead_letters())
    if not entries:
        print("No dead-lettered jobs")
        return
    for entry in entries:
        print(f"{entry.job_id}  file={entry.file_id}  attempts={entry.attempts}  "
              f"failed_at={entry.failed_at}  error={entry.error}")


if __name__ == "__main__":
    cli()
