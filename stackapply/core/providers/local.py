from __future__ import annotations

import json
import re
import uuid
from pathlib import Path
from typing import Any, Dict, Optional

from stackapply.core.errors import ProviderError

from .base import Provider

_ID_RE = re.compile(r"^[a-z0-9_\-]{1,160}$")


class LocalProvider(Provider):
    """File-backed provider.

    Path: <root>/{resource_type}/{resource_id}.json
    """

    name = "local"

    def __init__(self, *, root: Path):
        self.root = root

    def _path(self, resource_type: str, resource_id: str) -> Path:
        if not _ID_RE.match(resource_id or ""):
            raise ProviderError(f"Invalid resource id: {resource_id!r}", provider=self.name)
        d = self.root / resource_type
        d.mkdir(parents=True, exist_ok=True)
        return d / f"{resource_id}.json"

    def _write(self, p: Path, obj: Dict[str, Any]) -> None:
        p.write_text(json.dumps(obj, indent=2, sort_keys=True), encoding="utf-8")

    def create(self, resource_type: str, name: str, attributes: Dict[str, Any]) -> Dict[str, Any]:
        rid = f"{resource_type}-{uuid.uuid4().hex[:12]}"
        obj = {**attributes, "id": rid}
        self._write(self._path(resource_type, rid), obj)
        return obj

    def read(self, resource_type: str, resource_id: str) -> Optional[Dict[str, Any]]:
        p = self._path(resource_type, resource_id)
        if not p.exists():
            return None
        return json.loads(p.read_text(encoding="utf-8"))

    def update(self, resource_type: str, resource_id: str, attributes: Dict[str, Any]) -> Dict[str, Any]:
        p = self._path(resource_type, resource_id)
        if not p.exists():
            raise ProviderError(f"{resource_type} {resource_id} not found", provider=self.name, operation="update")
        obj = {**attributes, "id": resource_id}
        self._write(p, obj)
        return obj

    def delete(self, resource_type: str, resource_id: str) -> None:
        p = self._path(resource_type, resource_id)
        if p.exists():
            p.unlink()
