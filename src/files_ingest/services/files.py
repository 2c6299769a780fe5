"""
File queries, downloads, deletion and operator actions.

Files a caller may not see are reported as ``NotFound``, the same as files
that do not exist.
"""

import logging
from typing import Optional

from files_ingest.adapters.storage import BaseBlobStore
from files_ingest.database import local as db
from files_ingest.errors import InvalidState, NotFound, TransientStorageError
from files_ingest.mime_policy import is_safe_for_preview
from files_ingest.schemas import (
    ContentDisposition,
    DownloadResponse,
    FileRecord,
    FileResponse,
    FileStatus,
    ListFilesResponse,
    ListUsersResponse,
    UserRecord,
)
from files_ingest.services.audit import AuditAction, AuditRecorder

logger = logging.getLogger(__name__)


def thumbnail_key(storage_key: str) -> str:
    return f"thumbnails/{storage_key}"


def can_preview(file: FileRecord) -> bool:
    return file.status == FileStatus.CLEAN and is_safe_for_preview(file.detected_mime)


class FileService:
    def __init__(self, blob_store: BaseBlobStore, audit: AuditRecorder, db_path: str = db.DEFAULT_DB_PATH):
        self.blob_store = blob_store
        self.audit = audit
        self.db_path = db_path

    def _get_visible_file(self, file_id: str, user: UserRecord) -> FileRecord:
        file = db.get_file(file_id, db_path=self.db_path)
        if file is None or (file.owner_id != user.id and not user.is_admin):
            raise NotFound('File not found')
        return file

    def get_file(self, file_id: str, user: UserRecord) -> FileResponse:
        file = self._get_visible_file(file_id, user)
        return FileResponse(**file.model_dump(), can_preview=can_preview(file))

    def list_files(
        self,
        user: Optional[UserRecord],
        status: Optional[FileStatus] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> ListFilesResponse:
        """List one user's files, or everybody's when ``user`` is None."""
        files, total = db.list_files(
            owner_id=user.id if user is not None else None,
            status=status,
            limit=page_size,
            offset=(page - 1) * page_size,
            db_path=self.db_path,
        )
        return ListFilesResponse(files=files, total=total, page=page, page_size=page_size)

    def get_download_url(self, file_id: str, user: UserRecord) -> DownloadResponse:
        file = self._get_visible_file(file_id, user)
        if file.status != FileStatus.CLEAN:
            raise InvalidState(f'File is not available for download (status: {file.status.value})')

        disposition = ContentDisposition.INLINE if can_preview(file) else ContentDisposition.ATTACHMENT
        url = self.blob_store.issue_download_handle(file.storage_key, file.original_name, disposition)

        self.audit.record(
            user.id,
            AuditAction.FILE_DOWNLOAD_REQUESTED,
            'file',
            file.id,
            {'fileName': file.original_name, 'disposition': disposition.value},
        )
        return DownloadResponse(url=url, filename=file.original_name)

    def delete_file(self, file_id: str, user: UserRecord) -> None:
        """Remove the record (its shares go with it), then the blob and thumbnail."""
        file = self._get_visible_file(file_id, user)
        if not db.delete_file(file.id, db_path=self.db_path):
            raise NotFound('File not found')

        for key in (file.storage_key, thumbnail_key(file.storage_key)):
            try:
                self.blob_store.delete_object(key)
            except TransientStorageError as e:
                logger.warning(f"Could not delete blob {key} of file {file.id}: {e}")

        self.audit.record(
            user.id,
            AuditAction.FILE_DELETED,
            'file',
            file.id,
            {'fileName': file.original_name, 'ownerId': file.owner_id},
        )

    def allow_file(self, file_id: str, admin: UserRecord) -> FileRecord:
        """Operator override of a quarantine verdict."""
        file = db.get_file(file_id, db_path=self.db_path)
        if file is None:
            raise NotFound('File not found')
        if not db.override_quarantined(file_id, db_path=self.db_path):
            raise InvalidState(f'Only quarantined files can be allowed (status: {file.status.value})')

        logger.warning(f"Administrator {admin.id} allowed quarantined file {file_id}")
        self.audit.record(
            admin.id,
            AuditAction.FILE_ADMIN_ALLOWED,
            'file',
            file_id,
            {'previousReason': file.reason},
        )
        return db.get_file(file_id, db_path=self.db_path)

    def list_users(self, page: int = 1, page_size: int = 20) -> ListUsersResponse:
        users, total = db.list_users_with_usage(
            limit=page_size,
            offset=(page - 1) * page_size,
            db_path=self.db_path,
        )
        return ListUsersResponse(users=users, total=total, page=page, page_size=page_size)
