from __future__ import annotations

import json
import re
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional

from stackapply.core.workspace import runs_dir

from .models import Operation, RunEvent, RunRecord, RunState, _utc_now_iso
from .state_machine import ensure_transition, is_terminal

_RUN_ID_RE = re.compile(r"^[a-f0-9]{32}$")


def new_run_id() -> str:
    return uuid.uuid4().hex


class RunRegistry:
    """File-backed history of apply/destroy runs.

    Path: <workspace>/.stackapply/runs/{run_id}.json
    """

    def __init__(self, *, workspace_dir: Path):
        self.workspace_dir = workspace_dir

    def _path(self, run_id: str) -> Path:
        if not _RUN_ID_RE.match(run_id or ""):
            raise ValueError(f"Invalid run_id: {run_id!r}")
        return runs_dir(self.workspace_dir) / f"{run_id}.json"

    def get(self, run_id: str) -> Optional[RunRecord]:
        p = self._path(run_id)
        if not p.exists():
            return None
        obj = json.loads(p.read_text(encoding="utf-8"))
        return RunRecord.from_dict(obj)

    def upsert(self, rec: RunRecord) -> None:
        p = self._path(rec.run_id)
        p.write_text(json.dumps(rec.to_dict(), indent=2, sort_keys=True), encoding="utf-8")

    def create(
        self,
        *,
        stack: str,
        operation: Operation,
        run_id: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> RunRecord:
        now = _utc_now_iso()
        rec = RunRecord(
            run_id=run_id or new_run_id(),
            stack=stack,
            operation=operation,
            state=RunState.PENDING,
            created_ts=now,
            updated_ts=now,
            request_id=request_id,
            events=[RunEvent(ts=now, state=RunState.PENDING, message="initialized")],
        )
        self.upsert(rec)
        return rec

    def transition(
        self,
        *,
        run_id: str,
        dst: RunState,
        message: str = "",
        data: Optional[Dict[str, Any]] = None,
    ) -> RunRecord:
        rec = self.get(run_id)
        if rec is None:
            raise FileNotFoundError(f"run not found for run_id={run_id}")

        ensure_transition(rec.state, dst)

        now = _utc_now_iso()
        rec.state = dst
        rec.updated_ts = now
        if is_terminal(dst):
            rec.finished_ts = now
        rec.events.append(RunEvent(ts=now, state=dst, message=message, data=data or {}))
        self.upsert(rec)
        return rec

    def attach_report(self, *, run_id: str, report: Dict[str, Any]) -> RunRecord:
        rec = self.get(run_id)
        if rec is None:
            raise FileNotFoundError(f"run not found for run_id={run_id}")
        rec.report = report
        rec.updated_ts = _utc_now_iso()
        self.upsert(rec)
        return rec

    def history(self, run_id: str) -> List[Dict[str, Any]]:
        rec = self.get(run_id)
        if rec is None:
            return []
        return [e.to_dict() for e in rec.events]

    def list_runs(self, *, stack: Optional[str] = None) -> List[Dict[str, Any]]:
        out: List[Dict[str, Any]] = []
        for p in sorted(runs_dir(self.workspace_dir).glob("*.json")):
            rec = RunRecord.from_dict(json.loads(p.read_text(encoding="utf-8")))
            if stack and rec.stack != stack:
                continue
            out.append(
                {
                    "run_id": rec.run_id,
                    "stack": rec.stack,
                    "operation": rec.operation.value,
                    "state": rec.state.value,
                    "created_ts": rec.created_ts,
                    "finished_ts": rec.finished_ts,
                }
            )
        out.sort(key=lambda r: r["created_ts"])
        return out
