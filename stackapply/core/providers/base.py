from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional


class Provider(ABC):
    """Translates resource nodes into calls against real (or simulated) infrastructure."""

    name: str

    @abstractmethod
    def create(self, resource_type: str, name: str, attributes: Dict[str, Any]) -> Dict[str, Any]:
        """Create a resource.

        Returns the materialized attributes; must include a stable ``id``.
        Example: {"id": "network_vpc-0001", "cidr_block": "10.0.0.0/16", ...}
        """

    @abstractmethod
    def read(self, resource_type: str, resource_id: str) -> Optional[Dict[str, Any]]:
        """Return current attributes, or None when the resource no longer exists."""

    @abstractmethod
    def update(self, resource_type: str, resource_id: str, attributes: Dict[str, Any]) -> Dict[str, Any]:
        """Update a resource in place and return its materialized attributes."""

    @abstractmethod
    def delete(self, resource_type: str, resource_id: str) -> None:
        """Delete a resource. Deleting an absent resource is not an error."""
