from __future__ import annotations

import logging
from typing import Callable, Dict, Optional

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse, Response

from stackapply.core.errors import StackApplyError

log = logging.getLogger("stackapply.errors")


def _request_id(request: Request) -> Optional[str]:
    return getattr(request.state, "request_id", None) or request.headers.get("x-request-id")


class SafeErrorMiddleware(BaseHTTPMiddleware):
    """
    Last line of defence for the HTTP surface.

    - tracebacks go to the server log only
    - clients get {"detail", "error"?, "request_id"?} and a 500
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        try:
            return await call_next(request)
        except Exception as e:
            rid = _request_id(request)
            log.exception("Unhandled error rid=%s path=%s: %s", rid, request.url.path, e)
            payload: Dict[str, str] = {"detail": "Internal Server Error"}
            if isinstance(e, StackApplyError):
                payload["error"] = e.kind
            if rid:
                payload["request_id"] = rid
            return JSONResponse(status_code=500, content=payload)
