from fastapi import APIRouter, Depends, Path, status

from files_ingest.dependencies import get_admission_controller, get_current_user
from files_ingest.schemas import (
    FileRecord,
    InitiateUploadRequest,
    InitiateUploadResponse,
    UserRecord,
)
from files_ingest.services.admission import UploadAdmissionController

router = APIRouter()


@router.post(
    "/uploads/initiate",
    response_model=InitiateUploadResponse,
    status_code=status.HTTP_201_CREATED,
)
def initiate_upload(
    body: InitiateUploadRequest,
    user: UserRecord = Depends(get_current_user),
    admission: UploadAdmissionController = Depends(get_admission_controller),
):
    """
    Admit an upload and return a time-limited URL to upload the bytes to directly.

    Fails with 400 when the user's quota would be exceeded and 413 when the
    declared size is over the global maximum.
    """
    return admission.initiate(user, body.file_name, body.file_size, body.content_type)


@router.post("/uploads/{file_id}/complete", response_model=FileRecord)
def complete_upload(
    file_id: str = Path(..., description="Id returned by initiate"),
    user: UserRecord = Depends(get_current_user),
    admission: UploadAdmissionController = Depends(get_admission_controller),
):
    """Signal that the direct upload finished and queue the file for processing."""
    return admission.complete(file_id, user)
