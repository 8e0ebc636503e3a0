from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple


@dataclass(frozen=True, order=True)
class ResourceAddress:
    type: str
    name: str

    def __str__(self) -> str:
        return f"{self.type}.{self.name}"

    @staticmethod
    def parse(text: str) -> "ResourceAddress":
        parts = (text or "").strip().split(".")
        if len(parts) != 2 or not all(parts):
            raise ValueError(f"Invalid resource address: {text!r} (expected 'type.name')")
        return ResourceAddress(type=parts[0], name=parts[1])


@dataclass(frozen=True)
class Reference:
    """Edge from a consuming node to one attribute of a producing node."""

    producer: ResourceAddress
    attribute: Tuple[str, ...]
    expression: str

    @property
    def attribute_path(self) -> str:
        return ".".join(self.attribute)


@dataclass
class ResourceNode:
    address: ResourceAddress
    index: int
    provider: str
    attributes: Dict[str, Any] = field(default_factory=dict)
    explicit_dependencies: List[ResourceAddress] = field(default_factory=list)
    references: List[Reference] = field(default_factory=list)

    @property
    def implicit_dependencies(self) -> List[ResourceAddress]:
        out: List[ResourceAddress] = []
        for ref in self.references:
            if ref.producer not in out:
                out.append(ref.producer)
        return out

    @property
    def dependencies(self) -> List[ResourceAddress]:
        out = list(self.explicit_dependencies)
        for dep in self.implicit_dependencies:
            if dep not in out:
                out.append(dep)
        return out

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address": str(self.address),
            "type": self.address.type,
            "name": self.address.name,
            "provider": self.provider,
            "attributes": self.attributes,
            "depends_on": [str(d) for d in self.dependencies],
        }


@dataclass
class ResourceGraph:
    stack: str
    nodes: List[ResourceNode] = field(default_factory=list)
    outputs: Dict[str, Any] = field(default_factory=dict)
    order: List[ResourceAddress] = field(default_factory=list)

    def get(self, address: ResourceAddress) -> Optional[ResourceNode]:
        for n in self.nodes:
            if n.address == address:
                return n
        return None

    def by_address(self) -> Dict[ResourceAddress, ResourceNode]:
        return {n.address: n for n in self.nodes}

    def ordered_nodes(self) -> List[ResourceNode]:
        idx = self.by_address()
        return [idx[a] for a in self.order]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stack": self.stack,
            "order": [str(a) for a in self.order],
            "nodes": [n.to_dict() for n in self.ordered_nodes()],
        }
