"""Stack document schema and file loading.

A stack document is a YAML or JSON mapping::

    stack: web
    provider: memory
    variables:
      region: {default: us-east-1}
    resources:
      - type: network_vpc
        name: main
        attributes:
          cidr_block: 10.0.0.0/16
          region: ${var.region}
    outputs:
      vpc_id: ${network_vpc.main.id}
"""
from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from stackapply.core.errors import MalformedAttributeError

STACK_NAME_PATTERN = r"^[A-Za-z0-9_\-]{1,128}$"
RESOURCE_TYPE_PATTERN = r"^[a-z][a-z0-9_]*$"
RESOURCE_NAME_PATTERN = r"^[A-Za-z_][A-Za-z0-9_\-]*$"


class VariableDecl(BaseModel):
    model_config = ConfigDict(extra="forbid")

    default: Any = None
    description: Optional[str] = None

    @property
    def has_default(self) -> bool:
        return "default" in self.model_fields_set


class ResourceDecl(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: str = Field(pattern=RESOURCE_TYPE_PATTERN)
    name: str = Field(pattern=RESOURCE_NAME_PATTERN)
    provider: Optional[str] = None
    depends_on: List[str] = Field(default_factory=list)
    attributes: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("type")
    @classmethod
    def _not_reserved(cls, v: str) -> str:
        if v == "var":
            raise ValueError("'var' is reserved for variable references and cannot be a resource type")
        return v


class StackDocument(BaseModel):
    model_config = ConfigDict(extra="forbid")

    stack: str = Field(pattern=STACK_NAME_PATTERN)
    provider: Optional[str] = None
    variables: Dict[str, VariableDecl] = Field(default_factory=dict)
    resources: List[ResourceDecl] = Field(default_factory=list)
    outputs: Dict[str, Any] = Field(default_factory=dict)


def _format_validation_error(exc: ValidationError) -> str:
    parts: List[str] = []
    for err in exc.errors():
        loc = ".".join(str(x) for x in err.get("loc", ()))
        parts.append(f"{loc}: {err.get('msg')}")
    return "; ".join(parts) or str(exc)


def parse_document(raw: Any) -> StackDocument:
    if isinstance(raw, StackDocument):
        return raw
    if not isinstance(raw, dict):
        raise MalformedAttributeError("Stack document must be a mapping")
    try:
        return StackDocument.model_validate(raw)
    except ValidationError as exc:
        raise MalformedAttributeError(f"Invalid stack document: {_format_validation_error(exc)}") from exc


def _parse_text(text: str, suffix: str) -> Any:
    if suffix in (".yaml", ".yml"):
        return yaml.safe_load(text)
    if suffix == ".json":
        return json.loads(text)
    # Unknown extension: JSON first, then YAML
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return yaml.safe_load(text)


def load_document(path: Path) -> StackDocument:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"stack document not found: {p}")
    text = p.read_text(encoding="utf-8")
    try:
        raw = _parse_text(text, p.suffix.lower())
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise MalformedAttributeError(f"Cannot parse {p.name}: {exc}") from exc
    return parse_document(raw)
