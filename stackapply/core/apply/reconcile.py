from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Mapping

from stackapply.core.graph.models import ResourceAddress, ResourceNode
from stackapply.core.observability.metrics import record_provider_call
from stackapply.core.providers import Provider, get_provider

from .state import ResourceState

log = logging.getLogger("stackapply.providers")


def invoke(provider: Provider, operation: str, *args: Any) -> Any:
    """Call one provider operation, timing and counting it."""
    start = time.time()
    try:
        out = getattr(provider, operation)(*args)
    except Exception:
        record_provider_call(provider.name, operation, "error", time.time() - start)
        log.warning("provider=%s operation=%s failed", provider.name, operation, exc_info=True)
        raise
    record_provider_call(provider.name, operation, "ok", time.time() - start)
    return out


def same_value(a: Any, b: Any) -> bool:
    """Equality that never treats ``True`` as ``1`` or ``1`` as ``1.0``."""
    if type(a) is not type(b):
        return False
    if isinstance(a, dict):
        return a.keys() == b.keys() and all(same_value(v, b[k]) for k, v in a.items())
    if isinstance(a, list):
        return len(a) == len(b) and all(same_value(x, y) for x, y in zip(a, b))
    return a == b


def attributes_match(desired: Mapping[str, Any], current: Mapping[str, Any]) -> bool:
    """True when every declared key equals the provider's value.

    Keys only the provider knows about (ids, computed fields) are ignored.
    """
    for k, v in desired.items():
        if k not in current or not same_value(v, current[k]):
            return False
    return True


def changed_keys(desired: Mapping[str, Any], current: Mapping[str, Any]) -> Dict[str, Dict[str, Any]]:
    out: Dict[str, Dict[str, Any]] = {}
    for k, v in desired.items():
        if k not in current:
            out[k] = {"from": None, "to": v}
        elif not same_value(v, current[k]):
            out[k] = {"from": current[k], "to": v}
    return out


def check_providers(providers: Mapping[str, Provider], names: List[str]) -> None:
    for name in sorted(set(names)):
        get_provider(providers, name)


def state_nodes(resources: Mapping[str, ResourceState], *, reverse: bool = False) -> List[ResourceNode]:
    """Dependency nodes rebuilt from recorded state.

    With ``reverse`` the edges point from a resource to its dependents, which
    is the order deletions must follow.
    """
    entries = sorted(resources.values(), key=lambda r: (r.order, r.address))
    deps: Dict[str, List[str]] = {r.address: [d for d in r.depends_on if d in resources] for r in entries}
    if reverse:
        rev: Dict[str, List[str]] = {r.address: [] for r in entries}
        for addr, ds in deps.items():
            for d in ds:
                rev[d].append(addr)
        deps = rev

    nodes: List[ResourceNode] = []
    # Later-applied resources go first when deleting
    for idx, r in enumerate(reversed(entries) if reverse else entries):
        nodes.append(
            ResourceNode(
                address=ResourceAddress(type=r.type, name=r.name),
                index=idx,
                provider=r.provider,
                explicit_dependencies=[ResourceAddress.parse(d) for d in deps[r.address]],
            )
        )
    return nodes
