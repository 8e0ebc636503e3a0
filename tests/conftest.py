from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from stackapply.api.main import app
from stackapply.core.errors import ProviderError
from stackapply.core.observability.metrics import reset_metrics
from stackapply.core.providers import MemoryProvider


@pytest.fixture(autouse=True)
def _isolated_env(tmp_path: Path, monkeypatch):
    # Every test gets its own workspace root and the file-backed provider
    monkeypatch.setenv("STACKAPPLY_ENV", "dev")
    monkeypatch.setenv("STACKAPPLY_WORKSPACE_ROOT", str(tmp_path / "workspace"))
    monkeypatch.setenv("STACKAPPLY_PROVIDER", "local")
    monkeypatch.delenv("STACKAPPLY_PARALLELISM", raising=False)
    monkeypatch.delenv("STACKAPPLY_HALT_ON_ERROR", raising=False)
    reset_metrics()


@pytest.fixture()
def workspace(tmp_path: Path) -> Path:
    ws = tmp_path / "ws"
    ws.mkdir(parents=True, exist_ok=True)
    return ws


@pytest.fixture()
def client():
    return TestClient(app)


@pytest.fixture()
def web_stack():
    """Six resources: a network, a subnet and a security group feeding an
    instance behind a load balancer, plus one independent DNS record."""
    return {
        "stack": "web",
        "provider": "memory",
        "resources": [
            {"type": "network_vpc", "name": "main", "attributes": {"cidr_block": "10.0.0.0/16"}},
            {
                "type": "network_subnet",
                "name": "public",
                "attributes": {"vpc_id": "${network_vpc.main.id}", "cidr_block": "10.0.1.0/24"},
            },
            {
                "type": "network_security_group",
                "name": "web",
                "attributes": {
                    "vpc_id": "${network_vpc.main.id}",
                    "ingress": [{"port": 443, "cidr": "0.0.0.0/0"}],
                },
            },
            {
                "type": "compute_instance",
                "name": "app",
                "attributes": {
                    "subnet_id": "${network_subnet.public.id}",
                    "security_groups": ["${network_security_group.web.id}"],
                    "hostname": "app-${network_subnet.public.id}",
                },
            },
            {
                "type": "lb_load_balancer",
                "name": "front",
                "attributes": {"targets": ["${compute_instance.app.id}"], "port": 443},
            },
            {"type": "dns_record", "name": "www", "attributes": {"value": "www.example.com"}},
        ],
        "outputs": {"instance_id": "${compute_instance.app.id}"},
    }


class RecordingProvider(MemoryProvider):
    """Memory provider that records every call and fails on request."""

    name = "memory"

    def __init__(self, *, fail_create=(), fail_delete_types=(), omit=None, on_create=None):
        super().__init__()
        self.calls = []
        self.fail_create = set(fail_create)
        self.fail_delete_types = set(fail_delete_types)
        self.omit = omit or {}
        self.on_create = on_create

    def create(self, resource_type, name, attributes):
        addr = f"{resource_type}.{name}"
        self.calls.append(("create", addr))
        if self.on_create:
            self.on_create(addr)
        if addr in self.fail_create:
            raise ProviderError(f"quota exceeded for {addr}", provider=self.name, operation="create")
        out = super().create(resource_type, name, attributes)
        for key in self.omit.get(addr, ()):
            out.pop(key, None)
        return out

    def read(self, resource_type, resource_id):
        self.calls.append(("read", resource_id))
        return super().read(resource_type, resource_id)

    def update(self, resource_type, resource_id, attributes):
        self.calls.append(("update", resource_id))
        return super().update(resource_type, resource_id, attributes)

    def delete(self, resource_type, resource_id):
        self.calls.append(("delete", resource_id))
        if resource_type in self.fail_delete_types:
            raise ProviderError(f"{resource_id} is still in use", provider=self.name, operation="delete")
        super().delete(resource_type, resource_id)

    def mutations(self):
        return [c for c in self.calls if c[0] != "read"]


@pytest.fixture()
def recording_provider():
    return RecordingProvider
