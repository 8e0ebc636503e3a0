from __future__ import annotations

from fastapi import APIRouter
from starlette.responses import JSONResponse

from stackapply.core.observability.metrics import inc_named
from stackapply.core.settings import get_settings

router = APIRouter()


@router.get("/health/live")
async def live():
    inc_named("health_live")
    return {"status": "ok"}


@router.get("/api/v1/health/live")
def liveness():
    inc_named("health_live")
    return {"status": "alive"}


@router.get("/api/v1/health/ready")
def readiness():
    """
    Readiness reflects ability to serve traffic: the workspace root must be
    writable because every apply records state and run history there.
    """
    inc_named("health_ready")

    settings = get_settings()
    problems: list[str] = []

    try:
        settings.workspace_root.mkdir(parents=True, exist_ok=True)
        probe = settings.workspace_root / ".ready_check.tmp"
        probe.write_text("ok", encoding="utf-8")
        probe.unlink()
    except OSError as e:
        problems.append(f"workspace_not_writable:{type(e).__name__}")

    if problems:
        return JSONResponse(
            status_code=503,
            content={"status": "not_ready", "problems": problems},
        )

    return {"status": "ready", "env": settings.env}
