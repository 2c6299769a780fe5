"""
Share token issuer.

A share is a capability token bound to one clean file. It stops resolving once
``expires_at`` passes or, for one-time shares, once it has been consumed.
"""

import logging
import secrets
import uuid
from datetime import timedelta
from typing import Optional, Tuple

from files_ingest.adapters.storage import BaseBlobStore
from files_ingest.database.local import (
    DEFAULT_DB_PATH,
    consume_share,
    get_file,
    get_share_by_token,
    insert_share,
    utc_now,
)
from files_ingest.errors import AccessDenied, InvalidArgument, InvalidState, NotFound
from files_ingest.mime_policy import is_safe_for_preview
from files_ingest.schemas import (
    ContentDisposition,
    FileRecord,
    FileStatus,
    ShareRecord,
    SharedFile,
    SharedFileResponse,
    UserRecord,
)
from files_ingest.services.audit import AuditAction, AuditRecorder
from files_ingest.settings import Settings, get_settings

logger = logging.getLogger(__name__)

SHARE_TOKEN_BYTES = 32


class ShareTokenIssuer:
    def __init__(
        self,
        blob_store: BaseBlobStore,
        audit: AuditRecorder,
        db_path: str = DEFAULT_DB_PATH,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.blob_store = blob_store
        self.audit = audit
        self.db_path = db_path

    def create_share(
        self,
        file_id: str,
        issuer: UserRecord,
        ttl_minutes: Optional[int] = None,
        one_time_use: bool = False,
    ) -> ShareRecord:
        if ttl_minutes is None:
            ttl_minutes = self.settings.default_share_ttl_minutes
        if ttl_minutes < 1:
            raise InvalidArgument(f'Share lifetime must be at least one minute (got {ttl_minutes})')

        file = get_file(file_id, db_path=self.db_path)
        if file is None:
            raise NotFound('File not found')
        if file.owner_id != issuer.id and not issuer.is_admin:
            raise AccessDenied('Only the owner or an administrator can share this file')
        if file.status != FileStatus.CLEAN:
            raise InvalidState(f'Cannot share a file in status {file.status.value}')

        expires_at = utc_now() + timedelta(minutes=ttl_minutes)
        share = insert_share(
            str(uuid.uuid4()),
            file_id,
            issuer.id,
            secrets.token_urlsafe(SHARE_TOKEN_BYTES),
            expires_at,
            one_time_use,
            db_path=self.db_path,
        )
        logger.info(f"Share {share.id} created for file {file_id}, expires {expires_at.isoformat()}")

        self.audit.record(
            issuer.id,
            AuditAction.FILE_SHARE_CREATED,
            'file',
            file_id,
            {'shareId': share.id, 'expiresInMinutes': ttl_minutes, 'oneTimeUse': one_time_use},
        )
        return share

    def resolve_share(self, token: str) -> Tuple[FileRecord, ShareRecord]:
        """Look up a live share and, when it is one-time, consume it in the same step.

        Missing, expired and already used tokens are all ``NotFound``.
        """
        share = get_share_by_token(token, db_path=self.db_path)
        now = utc_now()
        if share is None or not share.is_valid(now):
            raise NotFound('Share link not found or expired')

        file = get_file(share.file_id, db_path=self.db_path)
        if file is None or file.status != FileStatus.CLEAN:
            raise NotFound('Share link not found or expired')

        if share.one_time_use:
            if not consume_share(share.id, now, db_path=self.db_path):
                raise NotFound('Share link not found or expired')
            share.used_at = now

        return file, share

    def access_shared_file(self, token: str) -> SharedFileResponse:
        file, share = self.resolve_share(token)
        can_preview = is_safe_for_preview(file.detected_mime)
        disposition = ContentDisposition.INLINE if can_preview else ContentDisposition.ATTACHMENT
        download_url = self.blob_store.issue_download_handle(file.storage_key, file.original_name, disposition)

        self.audit.record(
            None,
            AuditAction.FILE_SHARE_ACCESSED,
            'file',
            file.id,
            {'shareId': share.id},
        )
        return SharedFileResponse(
            file=SharedFile(
                id=file.id,
                name=file.original_name,
                size=file.size_bytes,
                mime_type=file.detected_mime,
                created_at=file.created_at,
            ),
            download_url=download_url,
            can_preview=can_preview,
        )
