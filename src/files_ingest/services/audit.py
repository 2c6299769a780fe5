"""
Audit recorder.

Appends action records to the ``audit_logs`` table. Recording is best effort:
a failed write is logged and dropped, never raised to the caller.
"""

import logging
import uuid
from datetime import datetime
from typing import Any, Dict, Optional

from files_ingest.database.local import DEFAULT_DB_PATH, insert_audit_log, list_audit_logs
from files_ingest.schemas import AuditLogListResponse

logger = logging.getLogger(__name__)


class AuditAction:
    FILE_UPLOAD_INITIATED = 'FILE_UPLOAD_INITIATED'
    FILE_UPLOAD_COMPLETED = 'FILE_UPLOAD_COMPLETED'
    FILE_DEDUPLICATED = 'FILE_DEDUPLICATED'
    FILE_QUARANTINED = 'FILE_QUARANTINED'
    FILE_PROCESSED = 'FILE_PROCESSED'
    FILE_PROCESSING_FAILED = 'FILE_PROCESSING_FAILED'
    FILE_DOWNLOAD_REQUESTED = 'FILE_DOWNLOAD_REQUESTED'
    FILE_SHARE_CREATED = 'FILE_SHARE_CREATED'
    FILE_SHARE_ACCESSED = 'FILE_SHARE_ACCESSED'
    FILE_DELETED = 'FILE_DELETED'
    FILE_ADMIN_ALLOWED = 'FILE_ADMIN_ALLOWED'


class AuditRecorder:
    """Writes and queries audit records"""

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self.db_path = db_path

    def record(
        self,
        user_id: Optional[str],
        action: str,
        target_type: str,
        target_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        try:
            insert_audit_log(
                uuid.uuid4().hex,
                user_id,
                action,
                target_type,
                target_id,
                metadata or {},
                db_path=self.db_path,
            )
        except Exception as e:  # pylint: disable=broad-except
            logger.error(f"Failed to record audit log {action} for {target_type} {target_id}: {e}")

    def list_logs(
        self,
        limit: int = 100,
        offset: int = 0,
        user_id: Optional[str] = None,
        action: Optional[str] = None,
        target_type: Optional[str] = None,
        target_id: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> AuditLogListResponse:
        logs, total = list_audit_logs(
            limit=limit,
            offset=offset,
            user_id=user_id,
            action=action,
            target_type=target_type,
            target_id=target_id,
            start_date=start_date,
            end_date=end_date,
            db_path=self.db_path,
        )
        return AuditLogListResponse(logs=logs, total=total, limit=limit, offset=offset)
