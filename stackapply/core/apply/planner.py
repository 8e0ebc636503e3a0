"""Preview what an apply would do without issuing mutations.

Only ``read`` is called on providers. Values that depend on resources which
will be created or updated are reported as unknown.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from stackapply.core.errors import UnresolvedReferenceError
from stackapply.core.graph.models import ResourceAddress, ResourceGraph
from stackapply.core.graph.references import resolve_value
from stackapply.core.graph.resolver import topological_order
from stackapply.core.providers import Provider, get_provider

from .models import NodeAction
from .reconcile import attributes_match, changed_keys, check_providers, invoke, state_nodes
from .state import StateStore


@dataclass
class PlannedAction:
    address: str
    action: NodeAction
    provider: str
    changes: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    unknown: List[str] = field(default_factory=list)
    # set when the resource moves here from another provider
    previous_provider: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address": self.address,
            "action": self.action.value,
            "provider": self.provider,
            "changes": self.changes,
            "unknown": self.unknown,
            "previous_provider": self.previous_provider,
        }


@dataclass
class Plan:
    stack: str
    actions: List[PlannedAction] = field(default_factory=list)

    def counts(self) -> Dict[str, int]:
        out = {a.value: 0 for a in NodeAction}
        for pa in self.actions:
            out[pa.action.value] += 1
        return out

    @property
    def has_changes(self) -> bool:
        return any(pa.action != NodeAction.NOOP for pa in self.actions)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stack": self.stack,
            "has_changes": self.has_changes,
            "counts": self.counts(),
            "actions": [pa.to_dict() for pa in self.actions],
        }


def _partial_resolve(
    attributes: Dict[str, Any],
    known: Mapping[ResourceAddress, Optional[Dict[str, Any]]],
    where: str,
):
    resolved: Dict[str, Any] = {}
    unknown: List[str] = []
    for key, value in attributes.items():
        try:
            resolved[key] = resolve_value(value, known.get, f"{where}.{key}")
        except UnresolvedReferenceError:
            unknown.append(key)
    return resolved, unknown


def plan(
    graph: ResourceGraph,
    *,
    workspace_dir: Path,
    providers: Mapping[str, Provider],
) -> Plan:
    store = StateStore(workspace_dir=workspace_dir, stack=graph.stack)
    state = store.load()
    declared = {str(n.address) for n in graph.nodes}
    orphans = {k: v for k, v in state.resources.items() if k not in declared}

    check_providers(
        providers,
        [n.provider for n in graph.nodes] + [r.provider for r in state.resources.values()],
    )

    out = Plan(stack=graph.stack)
    known: Dict[ResourceAddress, Optional[Dict[str, Any]]] = {}

    for node in graph.ordered_nodes():
        addr = str(node.address)
        provider = get_provider(providers, node.provider)
        desired, unknown = _partial_resolve(node.attributes, known, addr)

        entry = state.resources.get(addr)
        previous = None
        if entry is not None and entry.provider != node.provider:
            previous, entry = entry.provider, None
        current = invoke(provider, "read", node.address.type, entry.id) if entry else None

        if current is None:
            action = NodeAction.CREATE
            changes = changed_keys(desired, {})
        else:
            changes = changed_keys(desired, current)
            if not unknown and attributes_match(desired, current):
                action = NodeAction.NOOP
                known[node.address] = current
            else:
                action = NodeAction.UPDATE

        out.actions.append(
            PlannedAction(
                address=addr,
                action=action,
                provider=node.provider,
                changes=changes,
                unknown=unknown,
                previous_provider=previous,
            )
        )

    if orphans:
        for a in topological_order(state_nodes(orphans, reverse=True)):
            r = orphans[str(a)]
            out.actions.append(PlannedAction(address=r.address, action=NodeAction.DELETE, provider=r.provider))

    return out
