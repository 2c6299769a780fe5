# cli.py
import logging

import click

from files_ingest.database.local import get_user, init_db, create_user as insert_user
from files_ingest.schemas import UserRole
from files_ingest.settings import get_settings

# Configure logging
logger = logging.getLogger(__name__)


@click.group()
def cli():
    """CLI commands for the Files Ingest API"""
    pass

# Worker commands live in src/ingest_workers/cli.py


@cli.command()
def show_config():
    """Show current configuration"""
    settings = get_settings()

    print("Current Configuration:")
    print(f"  Deployment Mode: {settings.deployment_mode}")
    print(f"  AWS Region: {settings.aws_region}")
    print(f"  AWS Endpoint: {settings.aws_endpoint_url}")
    print(f"  S3 Bucket: {settings.s3_bucket_name}")
    print(f"  SQS Queue Name: {settings.sqs_queue_name}")
    print(f"  SQS Queue URL: {settings.sqs_queue_url}")
    print(f"  SQS Dead-letter URL: {settings.sqs_dead_letter_queue_url}")
    print(f"  Database: {settings.database_path}")
    print(f"  Storage Dir: {settings.storage_dir}")
    print(f"  Max Upload: {settings.max_upload_bytes} bytes")
    print(f"  Deduplication: {settings.enable_file_deduplication}")
    print(f"  Scanner URL: {settings.scanner_url}")
    print(f"  Worker Concurrency: {settings.worker_concurrency}")
    print(f"  Job Attempts: {settings.job_max_attempts}")


@cli.command("init-db")
def init_database():
    """Create the database tables"""
    settings = get_settings()
    init_db(settings.database_path)
    print(f"Database ready at {settings.database_path}")


@cli.command()
@click.argument("user_id")
@click.option("--admin", is_flag=True, help="Give the user the administrator role")
@click.option("--storage-quota", type=int, default=None, help="Storage quota in bytes")
@click.option("--files-quota", type=int, default=None, help="Maximum number of files")
def create_user(user_id, admin, storage_quota, files_quota):
    """Create a user with quotas"""
    settings = get_settings()
    init_db(settings.database_path)
    if get_user(user_id, db_path=settings.database_path):
        raise click.ClickException(f"User {user_id} already exists")

    user = insert_user(
        user_id,
        storage_quota if storage_quota is not None else settings.default_storage_quota_bytes,
        files_quota if files_quota is not None else settings.default_files_quota,
        role=UserRole.ADMIN if admin else UserRole.USER,
        db_path=settings.database_path,
    )
    print(f"Created {user.role.value} {user.id} "
          f"(storage quota {user.storage_quota_bytes} bytes, {user.files_quota} files)")


@cli.command()
@click.option("--host", default="0.0.0.0")
@click.option("--port", type=int, default=8000)
def serve(host, port):
    """Run the API with uvicorn"""
    import uvicorn

    from files_ingest.main import create_app

    settings = get_settings()
    logging.basicConfig(level=settings.log_level.upper())
    uvicorn.run(create_app(settings), host=host, port=port)


if __name__ == "__main__":
    cli()
