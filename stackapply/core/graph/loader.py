from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

from stackapply.core.errors import (
    DuplicateResourceError,
    MalformedAttributeError,
    MissingReferenceError,
)

from .models import ResourceAddress, ResourceGraph, ResourceNode
from .references import find_references, substitute_variables
from .resolver import topological_order
from .schema import StackDocument, load_document, parse_document

log = logging.getLogger("stackapply.graph")

_SCALARS = (str, int, float, bool, type(None))


def _check_value(value: Any, where: str) -> None:
    if isinstance(value, _SCALARS):
        return
    if isinstance(value, list):
        for i, v in enumerate(value):
            _check_value(v, f"{where}[{i}]")
        return
    if isinstance(value, dict):
        for k, v in value.items():
            if not isinstance(k, str):
                raise MalformedAttributeError(f"{where}: mapping keys must be strings (got {k!r})")
            _check_value(v, f"{where}.{k}")
        return
    raise MalformedAttributeError(
        f"{where}: unsupported value of type {type(value).__name__} ({value!r})"
    )


def resolve_variables(doc: StackDocument, overrides: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
    overrides = dict(overrides or {})
    unknown = sorted(k for k in overrides if k not in doc.variables)
    if unknown:
        raise MissingReferenceError(
            f"Values given for undeclared variables: {', '.join(unknown)}",
            nodes=[f"var.{k}" for k in unknown],
        )

    values: Dict[str, Any] = {}
    for name, decl in doc.variables.items():
        if name in overrides:
            values[name] = overrides[name]
        elif decl.has_default:
            values[name] = decl.default
        else:
            raise MissingReferenceError(f"Variable '{name}' has no value", nodes=[f"var.{name}"])
        _check_value(values[name], f"var.{name}")
    return values


def build_graph(
    document: Union[StackDocument, Dict[str, Any]],
    variables: Optional[Mapping[str, Any]] = None,
    *,
    default_provider: str = "local",
) -> ResourceGraph:
    """Turn a stack document into a validated, ordered resource graph.

    Raises a ConfigurationError subclass for duplicate addresses, undefined
    variables or resources, malformed values and dependency cycles.
    """
    doc = parse_document(document)
    values = resolve_variables(doc, variables)

    nodes: List[ResourceNode] = []
    seen: Dict[ResourceAddress, int] = {}
    for idx, decl in enumerate(doc.resources):
        addr = ResourceAddress(type=decl.type, name=decl.name)
        if addr in seen:
            raise DuplicateResourceError(f"Resource {addr} is declared more than once", nodes=[str(addr)])
        seen[addr] = idx

        where = str(addr)
        _check_value(decl.attributes, where)
        attributes = substitute_variables(decl.attributes, values, where)

        explicit: List[ResourceAddress] = []
        for raw in decl.depends_on:
            try:
                dep = ResourceAddress.parse(raw)
            except ValueError as exc:
                raise MalformedAttributeError(f"{where}.depends_on: {exc}", nodes=[where]) from exc
            if dep not in explicit:
                explicit.append(dep)

        nodes.append(
            ResourceNode(
                address=addr,
                index=idx,
                provider=decl.provider or doc.provider or default_provider,
                attributes=attributes,
                explicit_dependencies=explicit,
                references=find_references(attributes, where),
            )
        )

    for node in nodes:
        for dep in node.dependencies:
            if dep not in seen:
                raise MissingReferenceError(
                    f"{node.address} references undeclared resource {dep}",
                    nodes=[str(node.address), str(dep)],
                )

    _check_value(doc.outputs, "outputs")
    outputs = substitute_variables(doc.outputs, values, "outputs")
    for ref in find_references(outputs, "outputs"):
        if ref.producer not in seen:
            raise MissingReferenceError(
                f"output references undeclared resource {ref.producer}",
                nodes=[str(ref.producer)],
            )

    graph = ResourceGraph(stack=doc.stack, nodes=nodes, outputs=outputs)
    graph.order = topological_order(nodes)
    log.debug("stack=%s resources=%d order=%s", doc.stack, len(nodes), [str(a) for a in graph.order])
    return graph


def load_graph(
    path: Path,
    variables: Optional[Mapping[str, Any]] = None,
    *,
    default_provider: str = "local",
) -> ResourceGraph:
    return build_graph(load_document(path), variables, default_provider=default_provider)
