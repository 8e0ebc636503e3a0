from __future__ import annotations

import logging
import re
import time
import uuid
from typing import Callable, Optional

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from stackapply.api.observability.metrics import (
    HTTP_REQUEST_DURATION_SECONDS,
    HTTP_REQUESTS_TOTAL,
    normalize_path,
)
from stackapply.core.observability.logging import json_log
from stackapply.core.observability.metrics import inc_http

log = logging.getLogger("stackapply.request")

_STACK_PATH = re.compile(r"^/api/v1/stacks/([^/]+)/(?:state|destroy)$")
_RUN_PATH = re.compile(r"^/api/v1/runs/([0-9a-f]{32})(?:/history)?$")


def _subject(path: str) -> dict:
    """Stack or run a request is about, for the request log line."""
    m = _STACK_PATH.match(path)
    if m:
        return {"stack": m.group(1)}
    m = _RUN_PATH.match(path)
    if m:
        return {"run_id": m.group(1)}
    return {}


def _observe(method: str, path: str, status: int, seconds: float) -> None:
    label = normalize_path(path)
    HTTP_REQUESTS_TOTAL.labels(method=method, path=label, status=str(status)).inc()
    HTTP_REQUEST_DURATION_SECONDS.labels(method=method, path=label).observe(seconds)
    inc_http(method, label, status)


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Request ID, HTTP metrics and one structured log line per API call.

    Adds:
      request.state.request_id (reused by apply/destroy run records)
      response header: X-Request-Id
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        rid: Optional[str] = request.headers.get("x-request-id") or uuid.uuid4().hex
        request.state.request_id = rid

        start = time.perf_counter()
        resp = await call_next(request)
        elapsed = time.perf_counter() - start

        resp.headers["X-Request-Id"] = rid
        path = request.url.path
        _observe(request.method.upper(), path, resp.status_code, elapsed)

        if path.startswith("/api/"):
            json_log(
                log,
                "request",
                request_id=rid,
                method=request.method,
                path=path,
                status_code=resp.status_code,
                duration_ms=int(elapsed * 1000),
                **_subject(path),
            )
        return resp


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Hardening headers, switched on for STACKAPPLY_ENV=prod."""

    _HEADERS = {
        "X-Content-Type-Options": "nosniff",
        "X-Frame-Options": "DENY",
        "Referrer-Policy": "no-referrer",
        "Cache-Control": "no-store",
    }

    def __init__(self, app, enabled: bool = True):
        super().__init__(app)
        self.enabled = enabled

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        resp = await call_next(request)
        if self.enabled:
            for k, v in self._HEADERS.items():
                resp.headers.setdefault(k, v)
        return resp
