import random

import pytest

from stackapply.core.errors import CycleError, MissingReferenceError
from stackapply.core.graph.models import ResourceAddress, ResourceNode
from stackapply.core.graph.resolver import descendants, find_cycle, reverse_order, topological_order


def _node(name, index, deps=()):
    return ResourceNode(
        address=ResourceAddress(type="res", name=name),
        index=index,
        provider="memory",
        explicit_dependencies=[ResourceAddress(type="res", name=d) for d in deps],
    )


def _names(order):
    return [a.name for a in order]


def test_order_respects_dependencies():
    nodes = [_node("c", 0, ["b"]), _node("b", 1, ["a"]), _node("a", 2)]
    assert _names(topological_order(nodes)) == ["a", "b", "c"]


def test_ties_broken_by_declaration_order():
    nodes = [_node("z", 0), _node("y", 1, ["z"]), _node("x", 2), _node("w", 3, ["x"])]
    # z and x are both ready first; z was declared earlier
    assert _names(topological_order(nodes)) == ["z", "y", "x", "w"]


def test_order_is_deterministic():
    nodes = [_node(n, i) for i, n in enumerate("edcba")]
    assert _names(topological_order(nodes)) == list("edcba")
    assert topological_order(nodes) == topological_order(list(nodes))


def test_random_acyclic_graphs_produce_consistent_orders():
    for seed in range(25):
        rnd = random.Random(seed)
        count = rnd.randint(1, 30)
        names = [f"n{i}" for i in range(count)]
        deps = {n: rnd.sample(names[:i], rnd.randint(0, min(i, 3))) for i, n in enumerate(names)}
        shuffled = list(names)
        rnd.shuffle(shuffled)
        nodes = [_node(n, i, deps[n]) for i, n in enumerate(shuffled)]

        order = _names(topological_order(nodes))

        assert sorted(order) == sorted(names)
        pos = {n: i for i, n in enumerate(order)}
        for consumer, producers in deps.items():
            for p in producers:
                assert pos[p] < pos[consumer]


def test_cycle_is_reported_with_its_members():
    nodes = [
        _node("root", 0),
        _node("a", 1, ["c", "root"]),
        _node("b", 2, ["a"]),
        _node("c", 3, ["b"]),
        _node("downstream", 4, ["c"]),
    ]
    with pytest.raises(CycleError) as ei:
        topological_order(nodes)

    assert set(ei.value.nodes) == {"res.a", "res.b", "res.c"}
    assert "->" in str(ei.value)


def test_self_reference_is_a_cycle():
    with pytest.raises(CycleError) as ei:
        topological_order([_node("solo", 0, ["solo"])])
    assert ei.value.nodes == ["res.solo"]


def test_find_cycle_returns_edges_in_order():
    nodes = [_node("a", 0, ["b"]), _node("b", 1, ["c"]), _node("c", 2, ["a"])]
    cycle = _names(find_cycle(nodes))
    assert len(cycle) == 3
    by_name = {n.address.name: n for n in nodes}
    for i, name in enumerate(cycle):
        nxt = cycle[(i + 1) % len(cycle)]
        assert ResourceAddress(type="res", name=nxt) in by_name[name].dependencies


def test_find_cycle_empty_for_acyclic():
    assert find_cycle([_node("a", 0), _node("b", 1, ["a"])]) == []


def test_undeclared_dependency_is_missing_reference():
    with pytest.raises(MissingReferenceError):
        topological_order([_node("a", 0, ["ghost"])])


def test_descendants_are_transitive():
    nodes = [_node("a", 0), _node("b", 1, ["a"]), _node("c", 2, ["b"]), _node("d", 3)]
    got = descendants(nodes, ResourceAddress(type="res", name="a"))
    assert {a.name for a in got} == {"b", "c"}
    assert descendants(nodes, ResourceAddress(type="res", name="d")) == set()


def test_reverse_order_puts_dependents_first():
    nodes = [_node("a", 0), _node("b", 1, ["a"])]
    assert _names(reverse_order(nodes)) == ["b", "a"]
