from fastapi import APIRouter, Depends
from fastapi.responses import Response

from salesflow.approvals.api import router as approvals_router
from salesflow.compliance.api import router as compliance_router
from salesflow.core.auth import AuthUser, get_current_user
from salesflow.core.config import get_settings
from salesflow.crm.api import leads_router, tasks_router
from salesflow.errors import Forbidden, NotFoundError
from salesflow.messaging.api import router as messaging_router
from salesflow.metrics import generate_metrics_payload, metrics_content_type
from salesflow.sequences.api import router as sequences_router
from salesflow.workflows.api import router as workflows_router

METRICS_ROLE = "system.metrics.read"

router = APIRouter()
for domain_router in (
    leads_router,
    tasks_router,
    compliance_router,
    messaging_router,
    sequences_router,
    workflows_router,
    approvals_router,
):
    router.include_router(domain_router)


@router.get("/health", tags=["system"])
def health() -> dict[str, str]:
    settings = get_settings()
    return {"status": "ok", "service": settings.app_name, "environment": settings.app_env}


@router.get("/me", tags=["auth"])
async def me(user: AuthUser = Depends(get_current_user)) -> dict[str, str | list[str]]:
    return {"sub": user.sub, "roles": user.roles}


@router.get("/metrics", tags=["system"])
def metrics(user: AuthUser = Depends(get_current_user)) -> Response:
    if not get_settings().metrics_enabled:
        raise NotFoundError("not found")
    if not user.has_role(METRICS_ROLE):
        raise Forbidden(f"Missing permission: {METRICS_ROLE}")
    return Response(content=generate_metrics_payload(), media_type=metrics_content_type())
