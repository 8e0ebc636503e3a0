import json

import pytest
import yaml

from stackapply.cli import main, parse_vars
from stackapply.core.errors import ConfigurationError, ProviderError
from stackapply.core.providers import PROVIDERS, MemoryProvider

STACK_YAML = """
stack: web
variables:
  cidr:
    default: 10.0.0.0/16
resources:
  - type: network_vpc
    name: main
    attributes:
      cidr_block: ${var.cidr}
  - type: network_subnet
    name: a
    attributes:
      vpc_id: ${network_vpc.main.id}
outputs:
  vpc_id: ${network_vpc.main.id}
"""


@pytest.fixture()
def stack_file(tmp_path):
    p = tmp_path / "web.yaml"
    p.write_text(STACK_YAML, encoding="utf-8")
    return p


def _run(capsys, *argv):
    code = main(list(argv))
    out = capsys.readouterr().out
    return code, (json.loads(out) if out.strip() else None)


def test_validate(capsys, stack_file, workspace):
    code, out = _run(capsys, "--workspace", str(workspace), "validate", str(stack_file))
    assert code == 0
    assert out["valid"] is True
    assert out["order"] == ["network_vpc.main", "network_subnet.a"]
    subnet = out["nodes"][1]
    assert subnet["depends_on"] == ["network_vpc.main"]
    assert subnet["attributes"] == {"vpc_id": "${network_vpc.main.id}"}
    assert subnet["provider"] == "local"


def test_plan_apply_state_destroy(capsys, stack_file, workspace):
    ws = ["--workspace", str(workspace)]

    code, out = _run(capsys, *ws, "plan", str(stack_file))
    assert code == 0
    assert out["counts"]["create"] == 2

    code, out = _run(capsys, *ws, "apply", str(stack_file), "--var", "cidr=10.5.0.0/16")
    assert code == 0
    assert out["state"] == "SUCCEEDED"
    vpc_id = out["outputs"]["vpc_id"]

    code, out = _run(capsys, *ws, "state", "web")
    assert code == 0
    assert out["resources"]["network_vpc.main"]["declared"]["cidr_block"] == "10.5.0.0/16"
    assert out["resources"]["network_vpc.main"]["id"] == vpc_id

    code, out = _run(capsys, *ws, "destroy", "web")
    assert code == 0
    assert out["succeeded"] == ["network_subnet.a", "network_vpc.main"]


def test_failed_apply_exits_1(capsys, tmp_path, workspace):
    doc = {
        "stack": "broken",
        "resources": [
            {"type": "network_vpc", "name": "main", "attributes": {}},
            {"type": "network_subnet", "name": "a", "attributes": {"vpc_arn": "${network_vpc.main.arn}"}},
        ],
    }
    p = tmp_path / "broken.json"
    p.write_text(json.dumps(doc), encoding="utf-8")

    code, out = _run(capsys, "--workspace", str(workspace), "apply", str(p))
    assert code == 1
    assert out["state"] == "FAILED"
    assert out["failed"] == ["network_subnet.a"]


def test_configuration_errors_exit_2(capsys, tmp_path, workspace):
    p = tmp_path / "cycle.yaml"
    p.write_text(
        yaml.safe_dump(
            {
                "stack": "loop",
                "resources": [
                    {"type": "t", "name": "a", "depends_on": ["t.b"]},
                    {"type": "t", "name": "b", "depends_on": ["t.a"]},
                ],
            }
        ),
        encoding="utf-8",
    )
    code, out = _run(capsys, "--workspace", str(workspace), "validate", str(p))
    assert code == 2
    assert out["error"] == "cycle"

    code, _ = _run(capsys, "--workspace", str(workspace), "validate", str(tmp_path / "missing.yaml"))
    assert code == 2

    code, out = _run(capsys, "--workspace", str(workspace), "apply", str(p), "--var", "novalue")
    assert code == 2
    assert out["error"] == "configuration"


def test_unknown_provider_exits_2(capsys, stack_file, workspace):
    code, out = _run(capsys, "--workspace", str(workspace), "--provider", "cloud", "apply", str(stack_file))
    assert code == 2
    assert out["error"] == "unknown_provider"


def test_state_for_unknown_stack(capsys, workspace):
    code, out = _run(capsys, "--workspace", str(workspace), "state", "ghost")
    assert code == 1
    assert out is None


def test_parse_vars():
    assert parse_vars(["n=3", "on=true", "zones=[a, b]", "name=web", "empty="]) == {
        "n": 3,
        "on": True,
        "zones": ["a", "b"],
        "name": "web",
        "empty": "",
    }
    with pytest.raises(ConfigurationError):
        parse_vars(["oops"])


def _branching_stack(tmp_path):
    doc = {
        "stack": "branches",
        "resources": [
            {"type": "network_vpc", "name": "main", "attributes": {}},
            {"type": "network_subnet", "name": "a", "attributes": {"vpc_arn": "${network_vpc.main.arn}"}},
            {"type": "dns_record", "name": "www", "attributes": {}},
        ],
    }
    p = tmp_path / "branches.json"
    p.write_text(json.dumps(doc), encoding="utf-8")
    return p


def test_apply_halts_by_default(capsys, tmp_path, workspace):
    code, out = _run(capsys, "--workspace", str(workspace), "apply", str(_branching_stack(tmp_path)))
    assert code == 1
    assert out["skipped"] == ["dns_record.www"]


def test_halt_setting_from_environment(capsys, tmp_path, workspace, monkeypatch):
    monkeypatch.setenv("STACKAPPLY_HALT_ON_ERROR", "false")
    code, out = _run(capsys, "--workspace", str(workspace), "apply", str(_branching_stack(tmp_path)))
    assert code == 1
    assert out["failed"] == ["network_subnet.a"]
    assert out["succeeded"] == ["network_vpc.main", "dns_record.www"]


@pytest.mark.parametrize("value", ["-1", "0"])
def test_invalid_parallelism_exits_2(capsys, stack_file, workspace, value):
    code, out = _run(capsys, "--workspace", str(workspace), "apply", str(stack_file), "--parallelism", value)
    assert code == 2
    assert out["error"] == "configuration"
    assert "parallelism" in out["detail"]


class _UnreadableProvider(MemoryProvider):
    def read(self, resource_type, resource_id):
        raise ProviderError("backend unavailable", provider="flaky", operation="read")


def test_provider_error_during_plan_exits_1(capsys, stack_file, workspace, monkeypatch):
    monkeypatch.setitem(PROVIDERS, "flaky", _UnreadableProvider())
    ws = ["--workspace", str(workspace), "--provider", "flaky"]
    code, _ = _run(capsys, *ws, "apply", str(stack_file))
    assert code == 0

    code, out = _run(capsys, *ws, "plan", str(stack_file))
    assert code == 1
    assert out["error"] == "provider"
    assert "backend unavailable" in out["detail"]
