from __future__ import annotations

import logging
import threading
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Set

from stackapply.core.errors import ProviderError, StackApplyError
from stackapply.core.graph.models import ResourceAddress, ResourceGraph, ResourceNode
from stackapply.core.graph.references import resolve_value
from stackapply.core.graph.resolver import descendants, topological_order
from stackapply.core.observability.audit import audit_event
from stackapply.core.observability.metrics import record_node_outcome, record_run
from stackapply.core.providers import Provider, build_providers, get_provider
from stackapply.core.workspace import audit_path

from .models import (
    SKIP_CANCELED,
    SKIP_DEPENDENCY_FAILED,
    SKIP_HALTED,
    ApplyReport,
    NodeAction,
    NodeOutcome,
    NodeStatus,
    Operation,
    RunState,
    _utc_now_iso,
)
from .reconcile import attributes_match, check_providers, invoke, same_value, state_nodes
from .registry import RunRegistry, new_run_id
from .state import ResourceState, StateStore
from .state_machine import ensure_node_transition

log = logging.getLogger("stackapply.apply")


class CancelToken:
    """Cooperative cancellation shared between a caller and a running apply."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def canceled(self) -> bool:
        return self._event.is_set()


# step(node, action_holder) -> materialized attributes
Step = Callable[[ResourceNode, Dict[str, Any]], Dict[str, Any]]


@dataclass
class _Result:
    status: NodeStatus
    action: Optional[NodeAction]
    attributes: Dict[str, Any]
    error: Optional[str] = None


class _Walk:
    """Bookkeeping for one pass over an ordered node list."""

    def __init__(
        self,
        nodes: List[ResourceNode],
        order: List[ResourceAddress],
        report: ApplyReport,
        *,
        halt_on_error: bool,
        cancel: CancelToken,
    ):
        self.nodes = nodes
        self.by_addr = {n.address: n for n in nodes}
        self.pending: List[ResourceAddress] = list(order)
        self.report = report
        self.halt_on_error = halt_on_error
        self.cancel = cancel
        self.position = {a: i for i, a in enumerate(order)}
        # nodes at or after this position do not start once a failure halts the walk
        self.halt_at: Optional[int] = None
        self.failed: List[ResourceAddress] = []
        self.lock = threading.Lock()
        self.outcomes: Dict[ResourceAddress, NodeOutcome] = {}
        for addr in order:
            o = NodeOutcome(address=str(addr))
            self.outcomes[addr] = o
            report.outcomes.append(o)

    def _skip(self, addr: ResourceAddress, reason: str) -> None:
        o = self.outcomes[addr]
        ensure_node_transition(o.status, NodeStatus.SKIPPED)
        o.status = NodeStatus.SKIPPED
        o.reason = reason
        o.finished_ts = _utc_now_iso()
        log.info("skipped %s (%s)", o.address, reason)

    def next_ready(self, limit: int) -> List[ResourceNode]:
        with self.lock:
            if self.cancel.canceled:
                return []
            out: List[ResourceNode] = []
            for addr in list(self.pending):
                if len(out) >= limit:
                    break
                if self.halt_at is not None and self.position[addr] >= self.halt_at:
                    break
                node = self.by_addr[addr]
                dep_status = [self.outcomes[d].status for d in node.dependencies if d in self.outcomes]
                if any(s in (NodeStatus.FAILED, NodeStatus.SKIPPED) for s in dep_status):
                    self.pending.remove(addr)
                    self._skip(addr, SKIP_DEPENDENCY_FAILED)
                    continue
                if all(s == NodeStatus.SUCCEEDED for s in dep_status):
                    self.pending.remove(addr)
                    o = self.outcomes[addr]
                    ensure_node_transition(o.status, NodeStatus.RUNNING)
                    o.status = NodeStatus.RUNNING
                    o.started_ts = _utc_now_iso()
                    out.append(node)
            return out

    def finish(self, node: ResourceNode, result: _Result) -> None:
        with self.lock:
            o = self.outcomes[node.address]
            ensure_node_transition(o.status, result.status)
            o.status = result.status
            o.action = result.action
            o.attributes = result.attributes
            o.error = result.error
            o.finished_ts = _utc_now_iso()
            if result.status == NodeStatus.FAILED:
                self.failed.append(node.address)
                if self.halt_on_error:
                    pos = self.position[node.address]
                    self.halt_at = pos if self.halt_at is None else min(self.halt_at, pos)
        record_node_outcome((result.action or NodeAction.NOOP).value, result.status.value)

    def skip_remaining(self) -> None:
        with self.lock:
            blocked: Set[ResourceAddress] = set()
            for f in self.failed:
                blocked |= descendants(self.nodes, f)
            for addr in list(self.pending):
                if addr in blocked:
                    reason = SKIP_DEPENDENCY_FAILED
                elif self.cancel.canceled:
                    reason = SKIP_CANCELED
                else:
                    reason = SKIP_HALTED
                self._skip(addr, reason)
            self.pending = []


class ApplyExecutor:
    """Reconciles declared resources with provider state.

    - parallelism=1: nodes run one at a time in dependency order
    - parallelism>1: independent ready nodes run on a thread pool
    - halt_on_error=True: the first failure stops forward progress
    - halt_on_error=False: only dependents of a failed node are skipped
    """

    def __init__(
        self,
        *,
        workspace_dir: Path,
        providers: Optional[Mapping[str, Provider]] = None,
        parallelism: int = 1,
        halt_on_error: bool = True,
        registry: Optional[RunRegistry] = None,
        request_id: Optional[str] = None,
    ):
        if parallelism < 1:
            raise ValueError("parallelism must be >= 1")
        self.workspace_dir = workspace_dir
        self.providers = providers if providers is not None else build_providers(workspace_dir)
        self.parallelism = parallelism
        self.halt_on_error = halt_on_error
        self.registry = registry or RunRegistry(workspace_dir=workspace_dir)
        self.request_id = request_id
        self._lock = threading.Lock()

    # ------------------------------------------------------------
    # Walking
    # ------------------------------------------------------------
    def _run_step(self, step: Step, node: ResourceNode) -> _Result:
        holder: Dict[str, Any] = {"action": None}
        try:
            attrs = step(node, holder)
        except Exception as e:
            log.warning("%s failed: %s", node.address, e)
            return _Result(status=NodeStatus.FAILED, action=holder["action"], attributes={}, error=str(e))
        log.info("%s %s", (holder["action"] or NodeAction.NOOP).value, node.address)
        return _Result(status=NodeStatus.SUCCEEDED, action=holder["action"], attributes=attrs)

    def _walk(
        self,
        nodes: List[ResourceNode],
        order: List[ResourceAddress],
        step: Step,
        report: ApplyReport,
        cancel: CancelToken,
    ) -> _Walk:
        w = _Walk(nodes, order, report, halt_on_error=self.halt_on_error, cancel=cancel)

        if self.parallelism == 1:
            while True:
                ready = w.next_ready(1)
                if not ready:
                    break
                w.finish(ready[0], self._run_step(step, ready[0]))
        else:
            with ThreadPoolExecutor(max_workers=self.parallelism, thread_name_prefix="stackapply") as pool:
                in_flight = {}
                while True:
                    for node in w.next_ready(self.parallelism - len(in_flight)):
                        in_flight[pool.submit(self._run_step, step, node)] = node
                    if not in_flight:
                        break
                    done, _ = wait(in_flight, return_when=FIRST_COMPLETED)
                    for f in done:
                        w.finish(in_flight.pop(f), f.result())

        w.skip_remaining()
        return w

    # ------------------------------------------------------------
    # Run bookkeeping
    # ------------------------------------------------------------
    def _start(self, stack: str, operation: Operation, run_id: Optional[str]) -> ApplyReport:
        rec = self.registry.create(
            stack=stack,
            operation=operation,
            run_id=run_id or new_run_id(),
            request_id=self.request_id,
        )
        self.registry.transition(run_id=rec.run_id, dst=RunState.RUNNING, message=f"{operation.value} started")
        report = ApplyReport(run_id=rec.run_id, stack=stack, operation=operation, state=RunState.RUNNING)
        log.info("run=%s stack=%s %s started", rec.run_id, stack, operation.value)
        return report

    def _final_state(self, report: ApplyReport) -> RunState:
        if report.failed or report.error:
            return RunState.FAILED
        if any(o.reason == SKIP_CANCELED for o in report.outcomes):
            return RunState.CANCELED
        return RunState.SUCCEEDED

    def _finish(self, report: ApplyReport) -> ApplyReport:
        report.state = self._final_state(report)
        summary = {
            "succeeded": len(report.succeeded),
            "failed": len(report.failed),
            "skipped": len(report.skipped),
        }
        self.registry.transition(
            run_id=report.run_id,
            dst=report.state,
            message=f"{report.operation.value} {report.state.value.lower()}",
            data=summary,
        )
        self.registry.attach_report(run_id=report.run_id, report=report.to_dict())
        record_run(report.operation.value, report.state.value)
        audit_event(
            f"{report.operation.value}.finished",
            audit_path=audit_path(self.workspace_dir),
            run_id=report.run_id,
            stack=report.stack,
            request_id=self.request_id,
            extra={"state": report.state.value, **summary, "failed_nodes": report.failed},
        )
        log.info("run=%s stack=%s %s %s %s", report.run_id, report.stack, report.operation.value, report.state.value, summary)
        return report

    # ------------------------------------------------------------
    # Apply
    # ------------------------------------------------------------
    def apply(
        self,
        graph: ResourceGraph,
        *,
        cancel: Optional[CancelToken] = None,
        run_id: Optional[str] = None,
    ) -> ApplyReport:
        cancel = cancel or CancelToken()
        store = StateStore(workspace_dir=self.workspace_dir, stack=graph.stack)
        state = store.load()

        declared = {str(n.address) for n in graph.nodes}
        orphans = {k: v for k, v in state.resources.items() if k not in declared}

        # Configuration problems surface before any provider call
        check_providers(
            self.providers,
            [n.provider for n in graph.nodes] + [r.provider for r in state.resources.values()],
        )
        order = graph.order or topological_order(graph.nodes)
        position = {a: i for i, a in enumerate(order)}

        report = self._start(graph.stack, Operation.APPLY, run_id)
        materialized: Dict[ResourceAddress, Dict[str, Any]] = {}

        def _lookup(addr: ResourceAddress) -> Optional[Dict[str, Any]]:
            with self._lock:
                return materialized.get(addr)

        def _step(node: ResourceNode, holder: Dict[str, Any]) -> Dict[str, Any]:
            provider = get_provider(self.providers, node.provider)
            addr = str(node.address)
            desired = resolve_value(node.attributes, _lookup, addr)

            entry = state.resources.get(addr)
            if entry is not None and entry.provider != node.provider:
                # moved between providers: remove the old object, then create anew
                holder["action"] = NodeAction.CREATE
                log.info("%s moves from provider %s to %s", addr, entry.provider, node.provider)
                invoke(get_provider(self.providers, entry.provider), "delete", entry.type, entry.id)
                store.remove(addr)
                entry = None
            current = invoke(provider, "read", node.address.type, entry.id) if entry else None

            if current is None:
                holder["action"] = NodeAction.CREATE
                attrs = invoke(provider, "create", node.address.type, node.address.name, desired)
            elif attributes_match(desired, current):
                holder["action"] = NodeAction.NOOP
                attrs = current
            else:
                holder["action"] = NodeAction.UPDATE
                attrs = invoke(provider, "update", node.address.type, entry.id, desired)

            if not isinstance(attrs, dict) or not attrs.get("id"):
                raise ProviderError(f"{node.provider} returned no id for {addr}", provider=node.provider)

            with self._lock:
                materialized[node.address] = attrs

            record = ResourceState(
                address=addr,
                type=node.address.type,
                name=node.address.name,
                provider=node.provider,
                id=str(attrs["id"]),
                declared=desired,
                attributes=attrs,
                depends_on=[str(d) for d in node.dependencies],
                order=position[node.address],
            )
            if entry is None or not same_value(entry.to_dict(), record.to_dict()):
                store.record(record)
            return attrs

        self._walk(graph.nodes, order, _step, report, cancel)

        if not report.failed and orphans:
            self._delete_all(orphans, store, report, cancel)

        if not report.failed and not cancel.canceled:
            try:
                report.outputs = resolve_value(graph.outputs, _lookup, "outputs")
            except StackApplyError as e:
                report.error = str(e)
                log.warning("run=%s outputs could not be resolved: %s", report.run_id, e)
            else:
                store.set_outputs(report.outputs)

        return self._finish(report)

    # ------------------------------------------------------------
    # Delete / destroy
    # ------------------------------------------------------------
    def _delete_all(
        self,
        resources: Mapping[str, ResourceState],
        store: StateStore,
        report: ApplyReport,
        cancel: CancelToken,
    ) -> None:
        nodes = state_nodes(resources, reverse=True)

        def _step(node: ResourceNode, holder: Dict[str, Any]) -> Dict[str, Any]:
            entry = resources[str(node.address)]
            provider = get_provider(self.providers, entry.provider)
            holder["action"] = NodeAction.DELETE
            invoke(provider, "delete", entry.type, entry.id)
            store.remove(entry.address)
            return {"id": entry.id}

        self._walk(nodes, topological_order(nodes), _step, report, cancel)

    def destroy(
        self,
        stack: str,
        *,
        cancel: Optional[CancelToken] = None,
        run_id: Optional[str] = None,
    ) -> ApplyReport:
        cancel = cancel or CancelToken()
        store = StateStore(workspace_dir=self.workspace_dir, stack=stack)
        state = store.load()
        check_providers(self.providers, [r.provider for r in state.resources.values()])

        report = self._start(stack, Operation.DESTROY, run_id)
        self._delete_all(state.resources, store, report, cancel)
        if not report.failed and not cancel.canceled and store.exists():
            store.set_outputs({})
        return self._finish(report)

