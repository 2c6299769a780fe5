"""
Upload admission controller.

``initiate`` admits an upload and hands out a direct-to-storage upload URL;
``complete`` moves the file to ``scanning`` and enqueues its processing job as
one unit.
"""

import logging
import time
import uuid
from typing import Optional

from files_ingest.adapters.queue import BaseQueue
from files_ingest.adapters.storage import BaseBlobStore
from files_ingest.database.local import DEFAULT_DB_PATH, insert_file, mark_scanning, transaction
from files_ingest.errors import NotFound, PayloadTooLarge, QuotaExceeded
from files_ingest.schemas import FileRecord, InitiateUploadResponse, UserRecord
from files_ingest.services.audit import AuditAction, AuditRecorder
from files_ingest.services.quota import QuotaLedger
from files_ingest.settings import Settings, get_settings

logger = logging.getLogger(__name__)


def generate_storage_key() -> str:
    """Opaque blob key, unrelated to the user supplied file name."""
    return f"{int(time.time() * 1000)}-{uuid.uuid4()}"


class UploadAdmissionController:
    def __init__(
        self,
        blob_store: BaseBlobStore,
        queue: BaseQueue,
        audit: AuditRecorder,
        db_path: str = DEFAULT_DB_PATH,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.blob_store = blob_store
        self.queue = queue
        self.audit = audit
        self.db_path = db_path
        self.quota = QuotaLedger(db_path)

    def initiate(
        self,
        user: UserRecord,
        file_name: str,
        declared_size: int,
        declared_content_type: str,
    ) -> InitiateUploadResponse:
        max_size = self.settings.max_upload_bytes
        if declared_size > max_size:
            raise PayloadTooLarge(
                f"File size exceeds the maximum allowed size ({max_size / 1024 / 1024:g} MB)"
            )

        decision = self.quota.check_admission(user, declared_size)
        if not decision.allowed:
            raise QuotaExceeded(decision.reason)

        storage_key = generate_storage_key()
        upload_url = self.blob_store.issue_upload_handle(storage_key, declared_content_type, declared_size)

        file_id = str(uuid.uuid4())
        insert_file(file_id, user.id, file_name, storage_key, declared_size, db_path=self.db_path)
        logger.info(f"Admitted upload {file_id} ({declared_size} bytes) for user {user.id}")

        self.audit.record(
            user.id,
            AuditAction.FILE_UPLOAD_INITIATED,
            'file',
            file_id,
            {'fileName': file_name, 'fileSize': declared_size, 'contentType': declared_content_type},
        )
        return InitiateUploadResponse(file_id=file_id, upload_url=upload_url)

    def complete(self, file_id: str, user: UserRecord) -> FileRecord:
        """Flip ``pending`` to ``scanning`` and enqueue the job.

        The enqueue runs inside the database transaction; if it raises, the
        status flip is rolled back and the file stays ``pending``.
        """
        with transaction(self.db_path) as conn:
            file = mark_scanning(conn, file_id, user.id)
            if file is None:
                raise NotFound('File not found or not pending')
            job_id = self.queue.enqueue(file_id)

        logger.info(f"File {file_id} queued for processing as job {job_id}")
        self.audit.record(
            user.id,
            AuditAction.FILE_UPLOAD_COMPLETED,
            'file',
            file_id,
            {'fileName': file.original_name, 'fileSize': file.size_bytes},
        )
        return file
