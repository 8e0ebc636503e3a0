from __future__ import annotations

import json
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Generator, List, Optional

from stackapply.core.workspace import state_dir

from .models import _utc_now_iso

try:
    import fcntl as _fcntl
    _HAS_FCNTL = True
except ImportError:
    _HAS_FCNTL = False
    logging.getLogger("stackapply.locking").warning(
        "fcntl not available (non-POSIX). File locking is disabled. "
        "Do not run concurrent applies against the same workspace on this platform."
    )

_THREAD_LOCK = threading.RLock()


@contextmanager
def _locked_file(path: Path) -> Generator:
    """Open a file for read/write and apply an exclusive flock (POSIX only)."""
    with _THREAD_LOCK:
        with open(path, "a+", encoding="utf-8") as fh:
            if _HAS_FCNTL:
                _fcntl.flock(fh, _fcntl.LOCK_EX)
            try:
                yield fh
            finally:
                if _HAS_FCNTL:
                    _fcntl.flock(fh, _fcntl.LOCK_UN)


@dataclass
class ResourceState:
    address: str
    type: str
    name: str
    provider: str
    id: str
    declared: Dict[str, Any] = field(default_factory=dict)
    attributes: Dict[str, Any] = field(default_factory=dict)
    depends_on: List[str] = field(default_factory=list)
    order: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address": self.address,
            "type": self.type,
            "name": self.name,
            "provider": self.provider,
            "id": self.id,
            "declared": self.declared,
            "attributes": self.attributes,
            "depends_on": list(self.depends_on),
            "order": self.order,
        }

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "ResourceState":
        return ResourceState(
            address=d["address"],
            type=d["type"],
            name=d["name"],
            provider=d["provider"],
            id=str(d["id"]),
            declared=d.get("declared") or {},
            attributes=d.get("attributes") or {},
            depends_on=list(d.get("depends_on") or []),
            order=int(d.get("order") or 0),
        )


@dataclass
class StackState:
    stack: str
    serial: int = 0
    updated_ts: Optional[str] = None
    resources: Dict[str, ResourceState] = field(default_factory=dict)
    outputs: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stack": self.stack,
            "serial": self.serial,
            "updated_ts": self.updated_ts,
            "resources": {k: v.to_dict() for k, v in sorted(self.resources.items())},
            "outputs": self.outputs,
        }

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "StackState":
        return StackState(
            stack=d["stack"],
            serial=int(d.get("serial") or 0),
            updated_ts=d.get("updated_ts"),
            resources={
                k: ResourceState.from_dict(v) for k, v in (d.get("resources") or {}).items()
            },
            outputs=d.get("outputs") or {},
        )


class StateStore:
    """File-backed record of what has been materialized for one stack.

    Path: <workspace>/.stackapply/state/{stack}.json
    """

    def __init__(self, *, workspace_dir: Path, stack: str):
        self.workspace_dir = workspace_dir
        self.stack = stack

    @property
    def path(self) -> Path:
        return state_dir(self.workspace_dir) / f"{self.stack}.json"

    def exists(self) -> bool:
        return self.path.exists() and self.path.stat().st_size > 0

    def load(self) -> StackState:
        if not self.exists():
            return StackState(stack=self.stack)
        with _locked_file(self.path) as fh:
            fh.seek(0)
            return self._parse(fh.read())

    def _parse(self, text: str) -> StackState:
        if not text.strip():
            return StackState(stack=self.stack)
        return StackState.from_dict(json.loads(text))

    def _mutate(self, fn: Callable[[StackState], None]) -> StackState:
        with _locked_file(self.path) as fh:
            fh.seek(0)
            st = self._parse(fh.read())
            fn(st)
            st.serial += 1
            st.updated_ts = _utc_now_iso()
            fh.seek(0)
            fh.truncate()
            fh.write(json.dumps(st.to_dict(), indent=2, sort_keys=True))
            fh.flush()
            return st

    def record(self, resource: ResourceState) -> StackState:
        def _fn(st: StackState) -> None:
            st.resources[resource.address] = resource

        return self._mutate(_fn)

    def remove(self, address: str) -> StackState:
        def _fn(st: StackState) -> None:
            st.resources.pop(address, None)

        return self._mutate(_fn)

    def set_outputs(self, outputs: Dict[str, Any]) -> StackState:
        def _fn(st: StackState) -> None:
            st.outputs = dict(outputs)

        return self._mutate(_fn)
