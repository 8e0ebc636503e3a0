from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class NodeStatus(str, Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"


class NodeAction(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    NOOP = "noop"
    DELETE = "delete"


class RunState(str, Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    CANCELED = "CANCELED"


class Operation(str, Enum):
    APPLY = "apply"
    DESTROY = "destroy"


# Skip reasons
SKIP_DEPENDENCY_FAILED = "dependency failed"
SKIP_HALTED = "halted"
SKIP_CANCELED = "canceled"


@dataclass
class NodeOutcome:
    address: str
    action: Optional[NodeAction] = None
    status: NodeStatus = NodeStatus.PENDING
    error: Optional[str] = None
    reason: Optional[str] = None
    attributes: Dict[str, Any] = field(default_factory=dict)
    started_ts: Optional[str] = None
    finished_ts: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address": self.address,
            "action": self.action.value if self.action else None,
            "status": self.status.value,
            "error": self.error,
            "reason": self.reason,
            "attributes": self.attributes,
            "started_ts": self.started_ts,
            "finished_ts": self.finished_ts,
        }

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "NodeOutcome":
        return NodeOutcome(
            address=d["address"],
            action=NodeAction(d["action"]) if d.get("action") else None,
            status=NodeStatus(d.get("status") or NodeStatus.PENDING.value),
            error=d.get("error"),
            reason=d.get("reason"),
            attributes=d.get("attributes") or {},
            started_ts=d.get("started_ts"),
            finished_ts=d.get("finished_ts"),
        )


@dataclass
class ApplyReport:
    run_id: str
    stack: str
    operation: Operation
    state: RunState = RunState.PENDING
    outcomes: List[NodeOutcome] = field(default_factory=list)
    outputs: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None

    def _with(self, status: NodeStatus) -> List[str]:
        return [o.address for o in self.outcomes if o.status == status]

    @property
    def succeeded(self) -> List[str]:
        return self._with(NodeStatus.SUCCEEDED)

    @property
    def failed(self) -> List[str]:
        return self._with(NodeStatus.FAILED)

    @property
    def skipped(self) -> List[str]:
        return self._with(NodeStatus.SKIPPED)

    def outcome(self, address: str) -> Optional[NodeOutcome]:
        for o in self.outcomes:
            if o.address == address:
                return o
        return None

    def mutations(self) -> int:
        """Number of provider create/update/delete calls that succeeded."""
        return sum(
            1
            for o in self.outcomes
            if o.status == NodeStatus.SUCCEEDED and o.action not in (None, NodeAction.NOOP)
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "stack": self.stack,
            "operation": self.operation.value,
            "state": self.state.value,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
            "outputs": self.outputs,
            "error": self.error,
            "outcomes": [o.to_dict() for o in self.outcomes],
        }

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "ApplyReport":
        return ApplyReport(
            run_id=d["run_id"],
            stack=d["stack"],
            operation=Operation(d["operation"]),
            state=RunState(d["state"]),
            outcomes=[NodeOutcome.from_dict(o) for o in d.get("outcomes", []) or []],
            outputs=d.get("outputs") or {},
            error=d.get("error"),
        )


@dataclass
class RunEvent:
    ts: str
    state: RunState
    message: str = ""
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"ts": self.ts, "state": self.state.value, "message": self.message, "data": self.data}

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "RunEvent":
        return RunEvent(ts=d["ts"], state=RunState(d["state"]), message=d.get("message", ""), data=d.get("data") or {})


@dataclass
class RunRecord:
    run_id: str
    stack: str
    operation: Operation
    state: RunState
    created_ts: str
    updated_ts: str
    request_id: Optional[str] = None
    finished_ts: Optional[str] = None
    report: Optional[Dict[str, Any]] = None
    events: List[RunEvent] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "stack": self.stack,
            "operation": self.operation.value,
            "state": self.state.value,
            "created_ts": self.created_ts,
            "updated_ts": self.updated_ts,
            "request_id": self.request_id,
            "finished_ts": self.finished_ts,
            "report": self.report,
            "events": [e.to_dict() for e in self.events],
        }

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "RunRecord":
        return RunRecord(
            run_id=d["run_id"],
            stack=d["stack"],
            operation=Operation(d.get("operation") or Operation.APPLY.value),
            state=RunState(d["state"]),
            created_ts=d.get("created_ts") or _utc_now_iso(),
            updated_ts=d.get("updated_ts") or _utc_now_iso(),
            request_id=d.get("request_id"),
            finished_ts=d.get("finished_ts"),
            report=d.get("report"),
            events=[RunEvent.from_dict(e) for e in d.get("events") or []],
        )
