"""Interpolation expressions inside attribute values.

``${var.NAME}`` names a variable, ``${TYPE.NAME.ATTR[.PATH]}`` names an
attribute of another resource. ``$${`` is a literal ``${``.
"""
from __future__ import annotations

from typing import Any, Callable, Dict, List, Mapping, Tuple, Union

from stackapply.core.errors import (
    MalformedAttributeError,
    MissingReferenceError,
    UnresolvedReferenceError,
)

from .models import Reference, ResourceAddress

Segment = Tuple[str, str]  # ("lit" | "expr", text)

_MISSING = object()


def _tokenize(text: str, where: str) -> List[Segment]:
    segments: List[Segment] = []
    buf: List[str] = []
    i = 0
    n = len(text)
    while i < n:
        if text.startswith("$${", i):
            buf.append("${")
            i += 3
            continue
        if text.startswith("${", i):
            end = text.find("}", i + 2)
            if end < 0:
                raise MalformedAttributeError(f"{where}: unterminated expression in {text!r}")
            expr = text[i + 2 : end].strip()
            if not expr:
                raise MalformedAttributeError(f"{where}: empty expression in {text!r}")
            if buf:
                segments.append(("lit", "".join(buf)))
                buf = []
            segments.append(("expr", expr))
            i = end + 1
            continue
        buf.append(text[i])
        i += 1
    if buf:
        segments.append(("lit", "".join(buf)))
    return segments


def _escape(literal: str) -> str:
    return literal.replace("${", "$${")


def _split(expr: str, where: str) -> List[str]:
    parts = [p.strip() for p in expr.split(".")]
    if any(not p for p in parts):
        raise MalformedAttributeError(f"{where}: malformed expression '${{{expr}}}'")
    return parts


def is_variable(expr: str) -> bool:
    return expr.split(".", 1)[0].strip() == "var"


def parse_reference(expr: str, where: str = "attribute") -> Reference:
    parts = _split(expr, where)
    if len(parts) < 3:
        raise MalformedAttributeError(
            f"{where}: reference '${{{expr}}}' must have the form type.name.attribute"
        )
    return Reference(
        producer=ResourceAddress(type=parts[0], name=parts[1]),
        attribute=tuple(parts[2:]),
        expression=expr,
    )


def _variable_name(expr: str, where: str) -> str:
    parts = _split(expr, where)
    if len(parts) != 2:
        raise MalformedAttributeError(f"{where}: variable reference '${{{expr}}}' must be var.NAME")
    return parts[1]


def _render(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return ""
    return str(value)


def _map_strings(value: Any, fn: Callable[[str, str], Any], where: str) -> Any:
    if isinstance(value, str):
        return fn(value, where)
    if isinstance(value, list):
        return [_map_strings(v, fn, f"{where}[{i}]") for i, v in enumerate(value)]
    if isinstance(value, dict):
        return {k: _map_strings(v, fn, f"{where}.{k}") for k, v in value.items()}
    return value


def substitute_variables(value: Any, variables: Mapping[str, Any], where: str = "attribute") -> Any:
    """Replace ``${var.*}`` expressions, leaving resource references untouched."""

    def _one(text: str, loc: str) -> Any:
        segments = _tokenize(text, loc)
        if len(segments) == 1 and segments[0][0] == "expr" and is_variable(segments[0][1]):
            raw = _lookup_variable(segments[0][1], variables, loc)
            return _map_strings(raw, lambda s, _: _escape(s), loc)
        out: List[str] = []
        for kind, body in segments:
            if kind == "lit":
                out.append(_escape(body))
            elif is_variable(body):
                out.append(_escape(_render(_lookup_variable(body, variables, loc))))
            else:
                out.append("${" + body + "}")
        return "".join(out)

    return _map_strings(value, _one, where)


def _lookup_variable(expr: str, variables: Mapping[str, Any], where: str) -> Any:
    name = _variable_name(expr, where)
    if name not in variables:
        raise MissingReferenceError(f"{where}: undefined variable '{name}'", nodes=[f"var.{name}"])
    return variables[name]


def find_references(value: Any, where: str = "attribute") -> List[Reference]:
    found: List[Reference] = []

    def _one(text: str, loc: str) -> str:
        for kind, body in _tokenize(text, loc):
            if kind == "expr":
                if is_variable(body):
                    raise MalformedAttributeError(f"{loc}: variable '${{{body}}}' was not substituted")
                ref = parse_reference(body, loc)
                if ref not in found:
                    found.append(ref)
        return text

    _map_strings(value, _one, where)
    return found


def walk_path(attributes: Mapping[str, Any], path: Tuple[str, ...]) -> Any:
    """Follow ``path`` through nested mappings and lists; ``_MISSING`` if absent."""
    cur: Any = attributes
    for seg in path:
        if isinstance(cur, dict):
            if seg not in cur:
                return _MISSING
            cur = cur[seg]
        elif isinstance(cur, list):
            try:
                cur = cur[int(seg)]
            except (ValueError, IndexError):
                return _MISSING
        else:
            return _MISSING
    return cur


Lookup = Callable[[ResourceAddress], Union[Dict[str, Any], None]]


def resolve_value(value: Any, lookup: Lookup, where: str = "attribute") -> Any:
    """Substitute every resource reference using materialized attributes.

    ``lookup`` returns the recorded attributes of a producer (``None`` when the
    producer has not been materialized).
    """

    def _value_of(expr: str, loc: str) -> Any:
        ref = parse_reference(expr, loc)
        attrs = lookup(ref.producer)
        if attrs is None:
            raise UnresolvedReferenceError(f"{loc}: '{ref.producer}' has not been applied")
        v = walk_path(attrs, ref.attribute)
        if v is _MISSING:
            raise UnresolvedReferenceError(
                f"{loc}: '{ref.producer}' has no attribute '{ref.attribute_path}'"
            )
        return v

    def _one(text: str, loc: str) -> Any:
        segments = _tokenize(text, loc)
        if len(segments) == 1 and segments[0][0] == "expr":
            return _value_of(segments[0][1], loc)
        out: List[str] = []
        for kind, body in segments:
            out.append(body if kind == "lit" else _render(_value_of(body, loc)))
        return "".join(out)

    return _map_strings(value, _one, where)
