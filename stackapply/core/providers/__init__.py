from __future__ import annotations

from pathlib import Path
from typing import Dict, Mapping

from stackapply.core.errors import UnknownProviderError
from stackapply.core.workspace import objects_dir

from .base import Provider
from .local import LocalProvider
from .memory import MemoryProvider

PROVIDERS: Dict[str, Provider] = {
    "memory": MemoryProvider(),
}


def build_providers(workspace_dir: Path) -> Dict[str, Provider]:
    """Process-wide providers plus the ones bound to ``workspace_dir``."""
    out: Dict[str, Provider] = dict(PROVIDERS)
    out.setdefault("local", LocalProvider(root=objects_dir(workspace_dir)))
    return out


def get_provider(providers: Mapping[str, Provider], name: str) -> Provider:
    p = providers.get(name)
    if p is None:
        raise UnknownProviderError(
            f"Unsupported provider: {name} (available: {', '.join(sorted(providers))})"
        )
    return p


__all__ = [
    "PROVIDERS",
    "LocalProvider",
    "MemoryProvider",
    "Provider",
    "build_providers",
    "get_provider",
]
