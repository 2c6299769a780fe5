from fastapi import APIRouter, Depends

from files_ingest.database.local import get_connection
from files_ingest.dependencies import get_app_settings
from files_ingest.settings import Settings

router = APIRouter()


@router.get("/health")
def health_check(settings: Settings = Depends(get_app_settings)):
    """
    Health check endpoint for monitoring API status and component readiness.

    Returns status of API and database components along with deployment mode.
    """
    health_status = {
        "status": "ok",
        "deployment_mode": settings.deployment_mode,
        "components": {
            "api": "ready",
            "database": "initializing",
        },
        "ready": False,
    }

    # Check database status
    try:
        with get_connection(settings.database_path) as conn:
            conn.execute("SELECT 1").fetchone()
        health_status["components"]["database"] = "ready"
    except Exception as e:
        health_status["components"]["database"] = f"error: {str(e)}"
        health_status["status"] = "degraded"

    health_status["ready"] = all(state == "ready" for state in health_status["components"].values())
    return health_status
