from __future__ import annotations

from pathlib import Path


def _dir(workspace_dir: Path, *parts: str) -> Path:
    d = Path(workspace_dir).joinpath(".stackapply", *parts)
    d.mkdir(parents=True, exist_ok=True)
    return d


def state_dir(workspace_dir: Path) -> Path:
    return _dir(workspace_dir, "state")


def runs_dir(workspace_dir: Path) -> Path:
    return _dir(workspace_dir, "runs")


def objects_dir(workspace_dir: Path) -> Path:
    return _dir(workspace_dir, "objects")


def audit_path(workspace_dir: Path) -> Path:
    return _dir(workspace_dir) / "audit.log"
