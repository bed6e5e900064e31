from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from core.config import get_settings
from core.scheduler import scheduler_running
from core.tenancy import get_resolver

router = APIRouter(tags=["health"])


@router.get("/health")
def health():
    # Backward-compatible liveness alias.
    return {"status": "ok"}


@router.get("/live")
def live():
    return {"status": "ok"}


@router.get("/ready")
def ready(request: Request):
    settings = get_settings()
    checks: dict[str, str] = {}

    try:
        get_resolver().discover_tenant_ids()
        checks["partition_catalog"] = "ok"
    except Exception:
        checks["partition_catalog"] = "failed"

    if settings.scheduler_enabled:
        checks["scheduler"] = "ok" if scheduler_running(request.app) else "failed"
    else:
        checks["scheduler"] = "skipped"

    failed_checks = [name for name, result in checks.items() if result == "failed"]
    if failed_checks:
        return JSONResponse(
            status_code=503,
            content={"status": "not_ready", "checks": checks},
        )
    return {"status": "ready", "checks": checks}


@router.get("/version")
def version():
    settings = get_settings()
    return {"name": settings.app_name, "version": settings.app_version}
