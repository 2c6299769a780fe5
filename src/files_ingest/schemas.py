####################################
# --- Records and API schemas --- #
####################################

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
)

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100
MAX_SHARE_TTL_MINUTES = 7 * 24 * 60


class FileStatus(str, Enum):
    """Lifecycle states of an uploaded file."""
    PENDING = 'pending'
    SCANNING = 'scanning'
    CLEAN = 'clean'
    QUARANTINED = 'quarantined'
    REJECTED = 'rejected'


TERMINAL_STATUSES = frozenset({FileStatus.CLEAN, FileStatus.QUARANTINED, FileStatus.REJECTED})


class UserRole(str, Enum):
    USER = 'user'
    ADMIN = 'admin'


class ContentDisposition(str, Enum):
    INLINE = 'inline'
    ATTACHMENT = 'attachment'


class UserRecord(BaseModel):
    id: str
    role: UserRole = UserRole.USER
    storage_quota_bytes: int
    files_quota: int
    created_at: Optional[datetime] = None

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


class FileRecord(BaseModel):
    """A row of the ``files`` table."""
    id: str
    owner_id: str
    original_name: str
    storage_key: str
    size_bytes: int
    sha256: Optional[str] = None
    detected_mime: Optional[str] = None
    status: FileStatus = FileStatus.PENDING
    reason: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    scanned_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class ShareRecord(BaseModel):
    """A row of the ``file_shares`` table."""
    id: str
    file_id: str
    created_by: str
    share_token: str
    expires_at: datetime
    one_time_use: bool = False
    used_at: Optional[datetime] = None
    created_at: datetime

    def is_valid(self, now: datetime) -> bool:
        return now < self.expires_at and (not self.one_time_use or self.used_at is None)


class AuditLogEntry(BaseModel):
    id: str
    user_id: Optional[str] = None
    action: str
    target_type: str
    target_id: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime


class ScanResult(BaseModel):
    """Verdict returned by the malware scanner."""
    infected: bool
    signatures: List[str] = Field(default_factory=list)


class ProcessingOutcome(BaseModel):
    """Classification computed by one processing attempt, committed in a single update."""
    sha256: str
    detected_mime: Optional[str] = None
    status: FileStatus
    reason: Optional[str] = None
    deduplicated_from: Optional[str] = None


#############################
# --- Request / response --- #
#############################

class InitiateUploadRequest(BaseModel):
    """Request body for `POST /v1/uploads/initiate`."""
    file_name: str = Field(min_length=1, max_length=255)
    file_size: int = Field(gt=0, description="Declared size of the upload in bytes.")
    content_type: str = Field(
        default="application/octet-stream",
        description="Client supplied content type. Never trusted for classification.",
    )

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "file_name": "holiday.jpg",
                "file_size": 204800,
                "content_type": "image/jpeg",
            }
        }
    )


class InitiateUploadResponse(BaseModel):
    file_id: str
    upload_url: str


class FileResponse(FileRecord):
    """File details with preview safety."""
    can_preview: bool = False


class ListFilesResponse(BaseModel):
    files: List[FileRecord]
    total: int
    page: int
    page_size: int


class DownloadResponse(BaseModel):
    url: str
    filename: str


class CreateShareRequest(BaseModel):
    expires_in_minutes: Optional[int] = Field(default=None, ge=1, le=MAX_SHARE_TTL_MINUTES)
    one_time_use: bool = False


class CreateShareResponse(BaseModel):
    share_token: str
    expires_at: datetime
    one_time_use: bool


class SharedFile(BaseModel):
    id: str
    name: str
    size: int
    mime_type: Optional[str] = None
    created_at: datetime


class SharedFileResponse(BaseModel):
    file: SharedFile
    download_url: str
    can_preview: bool


class AdminFileActionRequest(BaseModel):
    action: Literal['allow', 'delete']


class UserUsage(BaseModel):
    user: UserRecord
    used_storage_bytes: int
    file_count: int


class ListUsersResponse(BaseModel):
    users: List[UserUsage]
    total: int
    page: int
    page_size: int


class AuditLogListResponse(BaseModel):
    logs: List[AuditLogEntry]
    total: int
    limit: int
    offset: int


class DeadLetterEntry(BaseModel):
    job_id: str
    file_id: str
    attempts: int
    error: Optional[str] = None
    failed_at: Optional[datetime] = None


class DeadLetterListResponse(BaseModel):
    jobs: List[DeadLetterEntry]


class PageQueryParams(BaseModel):
    page: int = Field(1, ge=1)
    page_size: int = Field(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE)


class ListFilesQueryParams(PageQueryParams):
    """Query parameters for `GET /v1/files` and `GET /v1/admin/files`."""
    status: Optional[FileStatus] = Field(None, description="Only list files in this status.")


class AuditLogQueryParams(BaseModel):
    """Query parameters for `GET /v1/admin/audit-logs`."""
    limit: int = Field(100, ge=1, le=1000)
    offset: int = Field(0, ge=0)
    user_id: Optional[str] = None
    action: Optional[str] = None
    target_type: Optional[str] = None
    target_id: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


class AdminFileActionResponse(BaseModel):
    file_id: str
    action: Literal['allow', 'delete']
    file: Optional[FileRecord] = None
