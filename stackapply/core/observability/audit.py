import json
import logging
import logging.handlers
import threading
import time
from pathlib import Path
from typing import Any, Dict, Optional

# RotatingFileHandler: 10MB max per file, 5 backups
_MAX_BYTES = 10 * 1024 * 1024
_BACKUP_COUNT = 5

_handler_cache: Dict[str, logging.Handler] = {}
_cache_lock = threading.Lock()


def _now_ms() -> int:
    return int(time.time() * 1000)


def _get_rotating_handler(audit_path: Path) -> logging.Handler:
    key = str(audit_path.resolve())
    with _cache_lock:
        if key not in _handler_cache:
            audit_path.parent.mkdir(parents=True, exist_ok=True)
            h = logging.handlers.RotatingFileHandler(
                str(audit_path),
                maxBytes=_MAX_BYTES,
                backupCount=_BACKUP_COUNT,
                encoding="utf-8",
            )
            h.setFormatter(logging.Formatter("%(message)s"))
            _handler_cache[key] = h
        return _handler_cache[key]


def audit_event(
    event_type: str,
    *,
    audit_path: Path,
    run_id: Optional[str] = None,
    stack: Optional[str] = None,
    request_id: Optional[str] = None,
    extra: Optional[Dict[str, Any]] = None,
) -> None:
    record: Dict[str, Any] = {
        "ts_ms": _now_ms(),
        "type": event_type,
        "run_id": run_id,
        "stack": stack,
        "request_id": request_id,
    }
    if extra:
        record["extra"] = extra

    line = json.dumps(record, separators=(",", ":"), ensure_ascii=False, default=str)

    handler = _get_rotating_handler(audit_path)
    log_record = logging.LogRecord(
        name="stackapply.audit",
        level=logging.INFO,
        pathname="",
        lineno=0,
        msg=line,
        args=(),
        exc_info=None,
    )
    handler.emit(log_record)
    handler.flush()
