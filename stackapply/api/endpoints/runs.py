from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, HTTPException, Query

from stackapply.core.apply import RunRegistry
from stackapply.core.settings import get_settings

router = APIRouter(prefix="/api/v1/runs", tags=["runs"])


def _registry() -> RunRegistry:
    return RunRegistry(workspace_dir=get_settings().workspace_root)


def _get(run_id: str):
    try:
        rec = _registry().get(run_id)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid run_id")
    if rec is None:
        raise HTTPException(status_code=404, detail=f"run not found: {run_id}")
    return rec


@router.get("")
def list_runs(stack: Optional[str] = Query(default=None)) -> Dict[str, Any]:
    return {"runs": _registry().list_runs(stack=stack)}


@router.get("/{run_id}")
def get_run(run_id: str) -> Dict[str, Any]:
    return _get(run_id).to_dict()


@router.get("/{run_id}/history")
def get_run_history(run_id: str) -> Dict[str, Any]:
    _get(run_id)
    return {"run_id": run_id, "events": _registry().history(run_id)}
