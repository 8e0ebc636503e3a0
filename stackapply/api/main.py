from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from starlette.responses import JSONResponse

from stackapply import __version__
from stackapply.api.endpoints import health
from stackapply.api.endpoints import metrics as metrics_ep
from stackapply.api.endpoints.runs import router as runs_router
from stackapply.api.endpoints.stacks import router as stacks_router
from stackapply.api.middleware.error_shaping import SafeErrorMiddleware
from stackapply.api.middleware.request_context import (
    RequestContextMiddleware,
    SecurityHeadersMiddleware,
)
from stackapply.core.errors import ConfigurationError
from stackapply.core.settings import get_settings

log = logging.getLogger("stackapply.api")

app = FastAPI(
    title="stackapply API",
    version=__version__,
)

# ------------------------------------------------------------
# Middleware stack (ORDER MATTERS)
# Starlette reverses add_middleware order: the LAST call = OUTERMOST wrapper.
# Runtime order (outermost -> innermost):
#   SafeErrorMiddleware -> SecurityHeaders -> RequestContext -> handler
# ------------------------------------------------------------
app.add_middleware(RequestContextMiddleware)
app.add_middleware(SecurityHeadersMiddleware, enabled=get_settings().env == "prod")
app.add_middleware(SafeErrorMiddleware)


@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError):
    log.info("configuration error path=%s kind=%s: %s", request.url.path, exc.kind, exc)
    return JSONResponse(status_code=422, content=exc.to_dict())


app.include_router(health.router)
app.include_router(metrics_ep.router)
app.include_router(stacks_router)
app.include_router(runs_router)
