from fastapi import APIRouter, Depends, Path, Response, status

from files_ingest.dependencies import get_current_user, get_file_service, get_share_issuer
from files_ingest.schemas import (
    CreateShareRequest,
    CreateShareResponse,
    DownloadResponse,
    FileResponse,
    ListFilesQueryParams,
    ListFilesResponse,
    UserRecord,
)
from files_ingest.services.files import FileService
from files_ingest.services.shares import ShareTokenIssuer

router = APIRouter()


@router.get("/files", response_model=ListFilesResponse)
def list_files(
    query_params: ListFilesQueryParams = Depends(),
    user: UserRecord = Depends(get_current_user),
    files: FileService = Depends(get_file_service),
):
    """List the caller's files, newest first."""
    return files.list_files(user, query_params.status, query_params.page, query_params.page_size)


@router.get("/files/{file_id}", response_model=FileResponse)
def get_file(
    file_id: str = Path(...),
    user: UserRecord = Depends(get_current_user),
    files: FileService = Depends(get_file_service),
):
    return files.get_file(file_id, user)


@router.get("/files/{file_id}/download", response_model=DownloadResponse)
def get_download_url(
    file_id: str = Path(...),
    user: UserRecord = Depends(get_current_user),
    files: FileService = Depends(get_file_service),
):
    """
    Issue a time-limited download URL for a clean file.

    Safe preview types are served inline, everything else as an attachment.
    """
    return files.get_download_url(file_id, user)


@router.post(
    "/files/{file_id}/share",
    response_model=CreateShareResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_share(
    body: CreateShareRequest,
    file_id: str = Path(...),
    user: UserRecord = Depends(get_current_user),
    shares: ShareTokenIssuer = Depends(get_share_issuer),
):
    share = shares.create_share(file_id, user, body.expires_in_minutes, body.one_time_use)
    return CreateShareResponse(
        share_token=share.share_token,
        expires_at=share.expires_at,
        one_time_use=share.one_time_use,
    )


@router.delete("/files/{file_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_file(
    file_id: str = Path(...),
    user: UserRecord = Depends(get_current_user),
    files: FileService = Depends(get_file_service),
):
    files.delete_file(file_id, user)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
