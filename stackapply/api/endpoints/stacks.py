from __future__ import annotations

import re
from pathlib import Path
from typing import Any, Dict, Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, Field

from stackapply.core.apply import ApplyExecutor, StateStore, plan
from stackapply.core.graph import build_graph
from stackapply.core.providers import build_providers
from stackapply.core.settings import get_settings

router = APIRouter(prefix="/api/v1/stacks", tags=["stacks"])

_STACK_RE = re.compile(r"^[A-Za-z0-9_\-]{1,128}$")


class StackRequest(BaseModel):
    document: Dict[str, Any]
    variables: Dict[str, Any] = Field(default_factory=dict)


class ApplyRequest(StackRequest):
    parallelism: Optional[int] = Field(default=None, ge=1, le=64)
    halt_on_error: Optional[bool] = None


class DestroyRequest(BaseModel):
    parallelism: Optional[int] = Field(default=None, ge=1, le=64)
    halt_on_error: Optional[bool] = None


def _workspace() -> Path:
    ws = get_settings().workspace_root
    ws.mkdir(parents=True, exist_ok=True)
    return ws


def _stack_name(stack: str) -> str:
    if not _STACK_RE.match(stack):
        raise HTTPException(
            status_code=400,
            detail="Invalid stack: must be alphanumeric, underscores, or hyphens, max 128 chars",
        )
    return stack


def _request_id(request: Request) -> Optional[str]:
    return getattr(request.state, "request_id", None)


def _graph(req: StackRequest):
    return build_graph(req.document, req.variables, default_provider=get_settings().default_provider)


def _executor(
    ws: Path,
    parallelism: Optional[int],
    halt_on_error: Optional[bool],
    request_id: Optional[str],
) -> ApplyExecutor:
    settings = get_settings()
    return ApplyExecutor(
        workspace_dir=ws,
        providers=build_providers(ws),
        parallelism=parallelism or settings.parallelism,
        halt_on_error=settings.halt_on_error if halt_on_error is None else halt_on_error,
        request_id=request_id,
    )


@router.post("/validate")
def validate_stack(req: StackRequest) -> Dict[str, Any]:
    graph = _graph(req)
    return {"valid": True, "resources": len(graph.nodes), **graph.to_dict()}


@router.post("/plan")
def plan_stack(req: StackRequest) -> Dict[str, Any]:
    graph = _graph(req)
    ws = _workspace()
    return plan(graph, workspace_dir=ws, providers=build_providers(ws)).to_dict()


@router.post("/apply")
def apply_stack(req: ApplyRequest, request: Request) -> Dict[str, Any]:
    graph = _graph(req)
    ws = _workspace()
    report = _executor(ws, req.parallelism, req.halt_on_error, _request_id(request)).apply(graph)
    return report.to_dict()


@router.post("/{stack}/destroy")
def destroy_stack(
    stack: str,
    request: Request,
    req: Optional[DestroyRequest] = None,
) -> Dict[str, Any]:
    name = _stack_name(stack)
    ws = _workspace()
    req = req or DestroyRequest()
    report = _executor(ws, req.parallelism, req.halt_on_error, _request_id(request)).destroy(name)
    return report.to_dict()


@router.get("/{stack}/state")
def get_state(stack: str) -> Dict[str, Any]:
    store = StateStore(workspace_dir=_workspace(), stack=_stack_name(stack))
    if not store.exists():
        raise HTTPException(status_code=404, detail=f"no state for stack={stack}")
    return store.load().to_dict()
