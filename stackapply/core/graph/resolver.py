from __future__ import annotations

import heapq
from collections import defaultdict, deque
from typing import Dict, List, Sequence, Set

from stackapply.core.errors import CycleError, MissingReferenceError

from .models import ResourceAddress, ResourceNode


def _index(nodes: Sequence[ResourceNode]) -> Dict[ResourceAddress, ResourceNode]:
    return {n.address: n for n in nodes}


def _dependents(nodes: Sequence[ResourceNode]) -> Dict[ResourceAddress, List[ResourceAddress]]:
    edges: Dict[ResourceAddress, List[ResourceAddress]] = defaultdict(list)
    for node in nodes:
        for dep in node.dependencies:
            edges[dep].append(node.address)
    return edges


def topological_order(nodes: Sequence[ResourceNode]) -> List[ResourceAddress]:
    """Order nodes so that each one follows everything it depends on.

    Among nodes that are ready at the same time the earliest declared wins.
    Raises CycleError naming the nodes of one cycle when no order exists.
    """
    by_addr = _index(nodes)
    for node in nodes:
        for dep in node.dependencies:
            if dep not in by_addr:
                raise MissingReferenceError(
                    f"{node.address} depends on undeclared resource {dep}",
                    nodes=[str(node.address), str(dep)],
                )

    edges = _dependents(nodes)
    in_degree: Dict[ResourceAddress, int] = {n.address: len(n.dependencies) for n in nodes}

    ready = [(n.index, n.address) for n in nodes if in_degree[n.address] == 0]
    heapq.heapify(ready)

    order: List[ResourceAddress] = []
    while ready:
        _, current = heapq.heappop(ready)
        order.append(current)
        for neighbor in edges[current]:
            in_degree[neighbor] -= 1
            if in_degree[neighbor] == 0:
                heapq.heappush(ready, (by_addr[neighbor].index, neighbor))

    if len(order) != len(nodes):
        remaining = [n for n in nodes if in_degree[n.address] > 0]
        raise CycleError([str(a) for a in find_cycle(remaining)])

    return order


def find_cycle(nodes: Sequence[ResourceNode]) -> List[ResourceAddress]:
    """Return one cycle among ``nodes`` in dependency order (empty if acyclic)."""
    by_addr = _index(nodes)
    WHITE, GREY, BLACK = 0, 1, 2
    color: Dict[ResourceAddress, int] = {a: WHITE for a in by_addr}

    for start in sorted(nodes, key=lambda n: n.index):
        if color[start.address] != WHITE:
            continue
        path: List[ResourceAddress] = [start.address]
        stack = [iter(start.dependencies)]
        color[start.address] = GREY
        while stack:
            advanced = False
            for dep in stack[-1]:
                if dep not in by_addr:
                    continue
                if color[dep] == GREY:
                    return path[path.index(dep):]
                if color[dep] == WHITE:
                    color[dep] = GREY
                    path.append(dep)
                    stack.append(iter(by_addr[dep].dependencies))
                    advanced = True
                    break
            if not advanced:
                color[path.pop()] = BLACK
                stack.pop()
    return []


def descendants(nodes: Sequence[ResourceNode], address: ResourceAddress) -> Set[ResourceAddress]:
    """Every node that depends on ``address`` directly or transitively."""
    edges = _dependents(nodes)
    seen: Set[ResourceAddress] = set()
    queue = deque(edges[address])
    while queue:
        cur = queue.popleft()
        if cur in seen:
            continue
        seen.add(cur)
        queue.extend(edges[cur])
    return seen


def reverse_order(nodes: Sequence[ResourceNode]) -> List[ResourceAddress]:
    """Destroy order: dependents before the resources they reference."""
    return list(reversed(topological_order(nodes)))
