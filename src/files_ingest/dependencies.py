"""
FastAPI dependencies.

Services are built once in ``create_app`` and kept on ``app.state``. The caller
is identified by the ``X-User-Id`` header; authenticating that header is the
job of whatever sits in front of this API.
"""

from typing import Optional

from fastapi import Depends, Header, HTTPException, Request, status

from files_ingest.adapters.queue import BaseQueue
from files_ingest.database.local import get_user
from files_ingest.errors import AccessDenied
from files_ingest.schemas import UserRecord
from files_ingest.services.admission import UploadAdmissionController
from files_ingest.services.audit import AuditRecorder
from files_ingest.services.files import FileService
from files_ingest.services.shares import ShareTokenIssuer
from files_ingest.settings import Settings


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_queue(request: Request) -> BaseQueue:
    return request.app.state.queue


def get_admission_controller(request: Request) -> UploadAdmissionController:
    return request.app.state.admission


def get_file_service(request: Request) -> FileService:
    return request.app.state.file_service


def get_share_issuer(request: Request) -> ShareTokenIssuer:
    return request.app.state.share_issuer


def get_audit_recorder(request: Request) -> AuditRecorder:
    return request.app.state.audit


def get_current_user(
    settings: Settings = Depends(get_app_settings),
    x_user_id: Optional[str] = Header(default=None),
) -> UserRecord:
    if not x_user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing X-User-Id header")
    user = get_user(x_user_id, db_path=settings.database_path)
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unknown user")
    return user


def require_admin(user: UserRecord = Depends(get_current_user)) -> UserRecord:
    if not user.is_admin:
        raise AccessDenied("Administrator role required")
    return user
