from .executor import ApplyExecutor, CancelToken
from .models import ApplyReport, NodeAction, NodeOutcome, NodeStatus, Operation, RunState
from .planner import Plan, PlannedAction, plan
from .registry import RunRegistry
from .state import ResourceState, StackState, StateStore

__all__ = [
    "ApplyExecutor",
    "ApplyReport",
    "CancelToken",
    "NodeAction",
    "NodeOutcome",
    "NodeStatus",
    "Operation",
    "Plan",
    "PlannedAction",
    "ResourceState",
    "RunRegistry",
    "RunState",
    "StackState",
    "StateStore",
    "plan",
]
