from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import Response

from callbook.core.auth import get_current_user
from callbook.core.config import get_settings
from callbook.crm.api import calls_router, leads_router
from callbook.metrics import generate_metrics_payload, metrics_content_type
from callbook.platform.security.context import AuthContext
from callbook.users.api import users_router

router = APIRouter()
router.include_router(leads_router)
router.include_router(calls_router)
router.include_router(users_router)


@router.get("/health", tags=["system"])
def health() -> dict[str, str]:
    settings = get_settings()
    return {
        "status": "ok",
        "service": settings.app_name,
        "environment": settings.app_env,
    }


@router.get("/me", tags=["auth"])
def me(user: AuthContext = Depends(get_current_user)) -> dict[str, str]:
    return {
        "user_id": str(user.user_id),
        "role": user.role,
    }


@router.get("/metrics", tags=["system"])
def metrics(user: AuthContext = Depends(get_current_user)) -> Response:
    settings = get_settings()
    if not settings.metrics_enabled:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="not found")
    if not user.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="metrics are restricted to admins")
    return Response(content=generate_metrics_payload(), media_type=metrics_content_type())
