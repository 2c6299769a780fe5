# src/files_ingest/settings.py
from typing import Optional, Dict, Any
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache


class Settings(BaseSettings):
    """
    Single source of truth for all application settings.

    Configuration precedence:
    1. Environment variables (highest priority)
    2. .env file (if exists)
    3. Default values in this class (lowest priority)

    Usage:
        from files_ingest.settings import get_settings
        settings = get_settings()
        bucket_name = settings.s3_bucket_name
    """

    # Application Settings
    app_name: str = Field(
        default="files-ingest",
        description="Application name"
    )

    # Deployment Mode
    deployment_mode: str = Field(
        default="local-dev",
        description="Deployment mode: local-dev, aws-mock, or aws-prod"
    )

    # AWS Core Settings
    aws_region: str = Field(
        default="us-east-1",
        alias="AWS_DEFAULT_REGION"
    )

    aws_access_key_id: Optional[str] = Field(
        default=None,
        alias="AWS_ACCESS_KEY_ID"
    )

    aws_secret_access_key: Optional[str] = Field(
        default=None,
        alias="AWS_SECRET_ACCESS_KEY"
    )

    aws_endpoint_url: Optional[str] = Field(
        default=None,
        alias="AWS_ENDPOINT_URL"
    )

    # S3 Configuration
    s3_bucket_name: str = Field(
        default="files-ingest-uploads",
        description="S3 bucket clients upload into"
    )

    # SQS Configuration
    sqs_queue_name: str = Field(
        default="file-processing",
        description="SQS queue name for processing jobs"
    )

    sqs_queue_url: Optional[str] = Field(
        default=None,
        alias="SQS_QUEUE_URL",
        description="Full SQS queue URL"
    )

    sqs_dead_letter_queue_url: Optional[str] = Field(
        default=None,
        alias="SQS_DEAD_LETTER_QUEUE_URL",
        description="SQS queue that keeps jobs which exhausted their attempts"
    )

    # Storage Configuration
    storage_dir: str = Field(
        default="storage",
        description="Local storage directory (blobs and queue data in local-dev)"
    )

    database_path: str = Field(
        default="files_ingest.db",
        description="SQLite database file"
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level"
    )

    # Upload admission
    max_upload_bytes: int = Field(
        default=104857600,
        description="Global maximum declared upload size (100 MiB)"
    )

    presigned_url_expiry_seconds: int = Field(
        default=900,
        description="Lifetime of presigned upload/download handles"
    )

    default_storage_quota_bytes: int = Field(
        default=1073741824,
        description="Storage quota for newly created users (1 GiB)"
    )

    default_files_quota: int = Field(
        default=1000,
        description="File count quota for newly created users"
    )

    # Processing
    enable_file_deduplication: bool = Field(
        default=False,
        description="Trust byte-identical content that is already clean"
    )

    thumbnail_max_width: int = Field(default=300)
    thumbnail_max_height: int = Field(default=300)

    scanner_url: str = Field(
        default="http://localhost:3000/api/v1/scan",
        description="HTTP endpoint of the malware scanning service"
    )

    scanner_timeout_seconds: float = Field(default=60.0)
    blob_timeout_seconds: float = Field(default=30.0)

    # Worker / queue
    worker_concurrency: int = Field(default=2, ge=1)
    job_max_attempts: int = Field(default=3, ge=1)
    job_backoff_base_seconds: float = Field(default=1.0, ge=0)
    job_timeout_seconds: float = Field(
        default=300.0,
        description=(
            "Upper bound for a single processing attempt. A timed-out attempt keeps running "
            "in its thread, so this must exceed the blob and scanner timeouts combined"
        )
    )
    queue_poll_interval_seconds: float = Field(default=1.0)

    # Sharing
    default_share_ttl_minutes: int = Field(default=15, ge=1)

    @field_validator('deployment_mode', mode='before')
    @classmethod
    def normalize_deployment_mode(cls, v):
        """Normalize deployment mode values for backwards compatibility."""
        if v:
            mode_mapping = {
                "local-mock": "local-dev",
                "cloud": "aws-prod",
            }
            return mode_mapping.get(v, v)
        return v

    @field_validator('deployment_mode')
    @classmethod
    def validate_deployment_mode(cls, v):
        """Validate deployment mode is one of the allowed values."""
        valid_modes = ["local-dev", "aws-mock", "aws-prod"]
        if v not in valid_modes:
            raise ValueError(f"Invalid deployment_mode: {v}. Must be one of {valid_modes}")
        return v

    @model_validator(mode='after')
    def apply_mode_defaults(self):
        """Fill endpoint, mock credentials and queue URL for the local modes."""
        if self.deployment_mode == "aws-mock":
            if self.aws_endpoint_url is None:
                self.aws_endpoint_url = "http://localhost:5000"
            if self.aws_access_key_id is None:
                self.aws_access_key_id = "mock"
            if self.aws_secret_access_key is None:
                self.aws_secret_access_key = "mock"
            if self.sqs_queue_url is None:
                # moto uses a simplified format without account number
                self.sqs_queue_url = f"{self.aws_endpoint_url}/queue/{self.sqs_queue_name}"
            if self.sqs_dead_letter_queue_url is None:
                self.sqs_dead_letter_queue_url = f"{self.aws_endpoint_url}/queue/{self.sqs_queue_name}-dlq"
        return self

    @model_validator(mode='after')
    def check_job_timeout(self):
        """The adapters must give up before the worker abandons an attempt."""
        adapter_budget = self.blob_timeout_seconds + self.scanner_timeout_seconds
        if self.job_timeout_seconds <= adapter_budget:
            raise ValueError(
                f"job_timeout_seconds ({self.job_timeout_seconds}) must exceed "
                f"blob_timeout_seconds + scanner_timeout_seconds ({adapter_budget})"
            )
        return self

    @property
    def is_aws(self) -> bool:
        return self.deployment_mode in ("aws-mock", "aws-prod")

    def get_environment_dict(self) -> Dict[str, Any]:
        """Get configuration as a dictionary suitable for docker-compose or subprocess.

        Returns:
            Dictionary of environment variables
        """
        env_dict = {
            'DEPLOYMENT_MODE': self.deployment_mode,
            'S3_BUCKET_NAME': self.s3_bucket_name,
            'SQS_QUEUE_NAME': self.sqs_queue_name,
            'AWS_DEFAULT_REGION': self.aws_region,
            'SQS_QUEUE_URL': self.sqs_queue_url or '',
            'SQS_DEAD_LETTER_QUEUE_URL': self.sqs_dead_letter_queue_url or '',
            'DATABASE_PATH': self.database_path,
            'STORAGE_DIR': self.storage_dir,
            'LOG_LEVEL': self.log_level,
        }

        # Only include AWS credentials for mock mode
        if self.deployment_mode == 'aws-mock':
            env_dict.update({
                'AWS_ENDPOINT_URL': self.aws_endpoint_url or '',
                'AWS_ACCESS_KEY_ID': self.aws_access_key_id or 'mock',
                'AWS_SECRET_ACCESS_KEY': self.aws_secret_access_key or 'mock',
            })

        return env_dict

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_file=(".env", ".env.local-dev", ".env.aws-mock", ".env.aws-prod"),
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    This ensures we only create one Settings instance per process.
    """
    return Settings()
