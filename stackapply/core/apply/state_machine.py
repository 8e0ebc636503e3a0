from __future__ import annotations

from typing import Set, Tuple

from .models import NodeStatus, RunState


_NODE_ALLOWED: Set[Tuple[NodeStatus, NodeStatus]] = {
    (NodeStatus.PENDING, NodeStatus.RUNNING),
    (NodeStatus.PENDING, NodeStatus.SKIPPED),
    (NodeStatus.RUNNING, NodeStatus.SUCCEEDED),
    (NodeStatus.RUNNING, NodeStatus.FAILED),
}

_RUN_ALLOWED: Set[Tuple[RunState, RunState]] = {
    (RunState.PENDING, RunState.RUNNING),
    (RunState.PENDING, RunState.CANCELED),
    (RunState.RUNNING, RunState.SUCCEEDED),
    (RunState.RUNNING, RunState.FAILED),
    (RunState.RUNNING, RunState.CANCELED),
}

_RUN_TERMINAL: Set[RunState] = {
    RunState.SUCCEEDED,
    RunState.FAILED,
    RunState.CANCELED,
}


def is_terminal(state: RunState) -> bool:
    return state in _RUN_TERMINAL


def can_transition(src: RunState, dst: RunState) -> bool:
    if src == dst:
        return True
    if src in _RUN_TERMINAL:
        return False
    return (src, dst) in _RUN_ALLOWED


def ensure_transition(src: RunState, dst: RunState) -> None:
    if not can_transition(src, dst):
        raise ValueError(f"Illegal transition: {src.value} -> {dst.value}")


def ensure_node_transition(src: NodeStatus, dst: NodeStatus) -> None:
    if (src, dst) not in _NODE_ALLOWED:
        raise ValueError(f"Illegal node transition: {src.value} -> {dst.value}")
