from textwrap import dedent
import logging
from typing import Optional

import pydantic
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.routing import APIRoute

from files_ingest.adapters.queue import BaseQueue, QueueFactory
from files_ingest.adapters.storage import BaseBlobStore, StorageFactory
from files_ingest.database.local import init_db
from files_ingest.errors import (
    FilesIngestError,
    handle_broad_exceptions,
    handle_files_ingest_errors,
    handle_pydantic_validation_errors,
)
from files_ingest.routers.admin import router as admin_router
from files_ingest.routers.files import router as files_router
from files_ingest.routers.health import router as health_router
from files_ingest.routers.shares import router as shares_router
from files_ingest.routers.uploads import router as uploads_router
from files_ingest.services.admission import UploadAdmissionController
from files_ingest.services.audit import AuditRecorder
from files_ingest.services.files import FileService
from files_ingest.services.shares import ShareTokenIssuer
from files_ingest.settings import Settings, get_settings

# Set up logging
logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    blob_store: Optional[BaseBlobStore] = None,
    queue: Optional[BaseQueue] = None,
) -> FastAPI:
    """Create a FastAPI application."""
    settings = settings or get_settings()

    app = FastAPI(
        title="Files Ingest API",
        summary="Upload, scan and share files",
        version="v1",
        description=dedent(
            """\
        Clients upload bytes straight to storage through a presigned URL, then
        signal completion. Files become downloadable once the worker has
        hashed, sniffed and scanned them.

        | Status | Meaning |
        | --- | --- |
        | `pending` | upload admitted, bytes not confirmed |
        | `scanning` | queued or being processed |
        | `clean` | passed every check |
        | `quarantined` | found unsafe |
        | `rejected` | could not be processed |
        """
        ),
        docs_url="/",  # its easier to find the docs when they live on the base url
        generate_unique_id_function=custom_generate_unique_id,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    logger.info("creating db")
    init_db(settings.database_path)

    blob_store = blob_store or StorageFactory.get_blob_store(settings)
    queue = queue or QueueFactory.get_queue_handler(settings)
    audit = AuditRecorder(settings.database_path)

    app.state.settings = settings
    app.state.queue = queue
    app.state.audit = audit
    app.state.admission = UploadAdmissionController(
        blob_store, queue, audit, db_path=settings.database_path, settings=settings
    )
    app.state.file_service = FileService(blob_store, audit, db_path=settings.database_path)
    app.state.share_issuer = ShareTokenIssuer(blob_store, audit, db_path=settings.database_path, settings=settings)

    app.include_router(uploads_router, prefix="/v1", tags=["uploads"])
    app.include_router(files_router, prefix="/v1", tags=["files"])
    app.include_router(shares_router, prefix="/v1", tags=["shares"])
    app.include_router(admin_router, prefix="/v1", tags=["admin"])
    app.include_router(health_router, tags=["health"])

    app.add_exception_handler(
        exc_class_or_status_code=FilesIngestError,
        handler=handle_files_ingest_errors,
    )
    app.add_exception_handler(
        exc_class_or_status_code=pydantic.ValidationError,
        handler=handle_pydantic_validation_errors,
    )
    app.middleware("http")(handle_broad_exceptions)

    return app


def custom_generate_unique_id(route: APIRoute):
    """
    Generate prettier `operationId`s in the OpenAPI schema.

    These become the function names in generated client SDKs.
    """
    return f"{route.tags[0]}-{route.name}"


if __name__ == "__main__":
    import uvicorn

    app = create_app()
    uvicorn.run(app, host="0.0.0.0", port=8000)
