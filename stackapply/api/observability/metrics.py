from __future__ import annotations

import re
from prometheus_client import Counter, Histogram


def normalize_path(path: str) -> str:
    """Reduce high-cardinality paths for metrics labels."""
    p = path or "/"

    # run ids
    p = re.sub(r"/[0-9a-f]{32}(?=/|$)", "/:run_id", p)
    # stack names
    p = re.sub(r"^(/api/v1/stacks)/(?!validate$|plan$|apply$)[^/]+", r"\1/:stack", p)

    return p


HTTP_REQUESTS_TOTAL = Counter(
    "stackapply_http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)

HTTP_REQUEST_DURATION_SECONDS = Histogram(
    "stackapply_http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
)
