from __future__ import annotations

import copy
import itertools
import threading
from typing import Any, Dict, Optional, Tuple

from stackapply.core.errors import ProviderError

from .base import Provider


class MemoryProvider(Provider):
    """Process-local simulated cloud. Objects live as long as the instance."""

    name = "memory"

    def __init__(self):
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self._objects: Dict[Tuple[str, str], Dict[str, Any]] = {}

    def _new_id(self, resource_type: str) -> str:
        return f"{resource_type}-{next(self._ids):04d}"

    def create(self, resource_type: str, name: str, attributes: Dict[str, Any]) -> Dict[str, Any]:
        with self._lock:
            rid = self._new_id(resource_type)
            obj = {**copy.deepcopy(attributes), "id": rid}
            self._objects[(resource_type, rid)] = obj
            return copy.deepcopy(obj)

    def read(self, resource_type: str, resource_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            obj = self._objects.get((resource_type, resource_id))
            return copy.deepcopy(obj) if obj is not None else None

    def update(self, resource_type: str, resource_id: str, attributes: Dict[str, Any]) -> Dict[str, Any]:
        with self._lock:
            key = (resource_type, resource_id)
            if key not in self._objects:
                raise ProviderError(
                    f"{resource_type} {resource_id} not found",
                    provider=self.name,
                    operation="update",
                )
            obj = {**copy.deepcopy(attributes), "id": resource_id}
            self._objects[key] = obj
            return copy.deepcopy(obj)

    def delete(self, resource_type: str, resource_id: str) -> None:
        with self._lock:
            self._objects.pop((resource_type, resource_id), None)

    def count(self) -> int:
        with self._lock:
            return len(self._objects)
