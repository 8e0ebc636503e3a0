from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

log = logging.getLogger("stackapply.settings")

PROJECT_ROOT = Path(__file__).resolve().parents[2]


def _env(name: str, default: str) -> str:
    return (os.getenv(name) or default).strip()


def _env_int(name: str, default: int, *, minimum: int = 1) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw.strip())
    except ValueError:
        log.warning("Ignoring invalid %s=%r (expected an integer); using %d", name, raw, default)
        return default
    if value < minimum:
        log.warning("Ignoring %s=%d (minimum %d); using %d", name, value, minimum, default)
        return default
    return value


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes")


@dataclass(frozen=True)
class Settings:
    env: str
    workspace_root: Path
    default_provider: str
    parallelism: int
    halt_on_error: bool
    log_level: str
    host: str
    port: int


def get_settings() -> Settings:
    """Read STACKAPPLY_* environment variables. Re-read on every call."""
    ws_raw = _env("STACKAPPLY_WORKSPACE_ROOT", "")
    workspace_root = Path(ws_raw).resolve() if ws_raw else PROJECT_ROOT / "workspace"
    return Settings(
        env=_env("STACKAPPLY_ENV", "dev").lower(),
        workspace_root=workspace_root,
        default_provider=_env("STACKAPPLY_PROVIDER", "local").lower(),
        parallelism=_env_int("STACKAPPLY_PARALLELISM", 1),
        halt_on_error=_env_bool("STACKAPPLY_HALT_ON_ERROR", True),
        log_level=_env("STACKAPPLY_LOG_LEVEL", "INFO").upper(),
        host=_env("STACKAPPLY_HOST", "0.0.0.0"),
        port=_env_int("STACKAPPLY_PORT", 8001),
    )
