from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import Response

from engage.automation.api import router as automation_router
from engage.core.auth import AuthUser, get_current_user
from engage.core.config import get_settings
from engage.crm.api import router as crm_router
from engage.metrics import generate_metrics_payload, metrics_content_type
from engage.scheduling.api import public_router as scheduling_public_router
from engage.scheduling.api import router as scheduling_router
from engage.workflows.api import router as workflows_router

router = APIRouter()
router.include_router(crm_router)
router.include_router(automation_router)
router.include_router(workflows_router)
router.include_router(scheduling_router)
router.include_router(scheduling_public_router)


@router.get("/health", tags=["system"])
def health() -> dict[str, str]:
    settings = get_settings()
    return {
        "status": "ok",
        "service": settings.app_name,
        "environment": settings.app_env,
    }


@router.get("/metrics", tags=["system"])
def metrics(user: AuthUser = Depends(get_current_user)) -> Response:
    settings = get_settings()
    if not settings.metrics_enabled:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="not found")
    if "system.metrics.read" not in user.roles:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Missing permission: system.metrics.read")
    return Response(content=generate_metrics_payload(), media_type=metrics_content_type())
