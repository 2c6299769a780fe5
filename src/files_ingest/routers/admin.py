from fastapi import APIRouter, Depends, Path

from files_ingest.adapters.queue import BaseQueue
from files_ingest.dependencies import (
    get_audit_recorder,
    get_file_service,
    get_queue,
    require_admin,
)
from files_ingest.schemas import (
    AdminFileActionRequest,
    AdminFileActionResponse,
    AuditLogListResponse,
    AuditLogQueryParams,
    DeadLetterListResponse,
    ListFilesQueryParams,
    ListFilesResponse,
    ListUsersResponse,
    PageQueryParams,
    UserRecord,
)
from files_ingest.services.audit import AuditRecorder
from files_ingest.services.files import FileService

router = APIRouter(dependencies=[Depends(require_admin)])


@router.get("/admin/files", response_model=ListFilesResponse)
def list_all_files(
    query_params: ListFilesQueryParams = Depends(),
    files: FileService = Depends(get_file_service),
):
    """List every user's files."""
    return files.list_files(None, query_params.status, query_params.page, query_params.page_size)


@router.post("/admin/files/{file_id}", response_model=AdminFileActionResponse)
def file_action(
    body: AdminFileActionRequest,
    file_id: str = Path(...),
    admin: UserRecord = Depends(require_admin),
    files: FileService = Depends(get_file_service),
):
    """
    ``allow`` releases a quarantined file as clean; ``delete`` removes any file.
    """
    if body.action == 'allow':
        return AdminFileActionResponse(file_id=file_id, action=body.action, file=files.allow_file(file_id, admin))

    files.delete_file(file_id, admin)
    return AdminFileActionResponse(file_id=file_id, action=body.action)


@router.get("/admin/users", response_model=ListUsersResponse)
def list_users(
    query_params: PageQueryParams = Depends(),
    files: FileService = Depends(get_file_service),
):
    return files.list_users(query_params.page, query_params.page_size)


@router.get("/admin/audit-logs", response_model=AuditLogListResponse)
def list_audit_logs(
    query_params: AuditLogQueryParams = Depends(),
    audit: AuditRecorder = Depends(get_audit_recorder),
):
    return audit.list_logs(**query_params.model_dump())


@router.get("/admin/dead-letters", response_model=DeadLetterListResponse)
async def list_dead_letters(queue: BaseQueue = Depends(get_queue)):
    """Jobs that exhausted their retries, with the last error."""
    return DeadLetterListResponse(jobs=await queue.list_dead_letters())
