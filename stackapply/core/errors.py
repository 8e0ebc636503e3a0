from __future__ import annotations

from typing import List, Optional, Sequence


class StackApplyError(Exception):
    """Base class for every error raised by stackapply."""

    kind = "error"

    def to_dict(self) -> dict:
        return {"error": self.kind, "detail": str(self)}


class ConfigurationError(StackApplyError):
    """Raised while loading a stack, before any provider is touched."""

    kind = "configuration"

    def __init__(self, message: str, *, nodes: Optional[Sequence[str]] = None):
        super().__init__(message)
        self.nodes: List[str] = list(nodes or [])

    def to_dict(self) -> dict:
        out = super().to_dict()
        out["nodes"] = self.nodes
        return out


class CycleError(ConfigurationError):
    kind = "cycle"

    def __init__(self, nodes: Sequence[str]):
        path = " -> ".join(list(nodes) + [nodes[0]]) if nodes else ""
        super().__init__(f"Dependency cycle detected: {path}", nodes=nodes)


class MissingReferenceError(ConfigurationError):
    kind = "missing_reference"


class MalformedAttributeError(ConfigurationError):
    kind = "malformed_attribute"


class DuplicateResourceError(ConfigurationError):
    kind = "duplicate_resource"


class UnknownProviderError(ConfigurationError):
    kind = "unknown_provider"


class UnresolvedReferenceError(StackApplyError):
    """A producer was applied but did not return the referenced attribute."""

    kind = "unresolved_reference"


class ProviderError(StackApplyError):
    kind = "provider"

    def __init__(self, message: str, *, provider: Optional[str] = None, operation: Optional[str] = None):
        super().__init__(message)
        self.provider = provider
        self.operation = operation
