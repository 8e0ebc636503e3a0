import json
from pathlib import Path

import pytest

from stackapply.core.errors import (
    ConfigurationError,
    CycleError,
    DuplicateResourceError,
    MalformedAttributeError,
    MissingReferenceError,
)
from stackapply.core.graph import ResourceAddress, build_graph, load_graph
from stackapply.core.graph.schema import load_document


def _addr(text):
    return ResourceAddress.parse(text)


def test_references_become_implicit_dependencies(web_stack):
    graph = build_graph(web_stack)
    instance = graph.get(_addr("compute_instance.app"))

    assert set(instance.implicit_dependencies) == {
        _addr("network_subnet.public"),
        _addr("network_security_group.web"),
    }
    assert instance.explicit_dependencies == []
    assert [str(a) for a in graph.order] == [
        "network_vpc.main",
        "network_subnet.public",
        "network_security_group.web",
        "compute_instance.app",
        "lb_load_balancer.front",
        "dns_record.www",
    ]


def test_reference_keeps_attribute_path():
    graph = build_graph(
        {
            "stack": "s",
            "resources": [
                {"type": "a", "name": "x", "attributes": {}},
                {"type": "b", "name": "y", "attributes": {"v": "${a.x.tags.Name}"}},
            ],
        }
    )
    ref = graph.get(_addr("b.y")).references[0]
    assert ref.producer == _addr("a.x")
    assert ref.attribute == ("tags", "Name")


def test_explicit_depends_on_orders_nodes():
    graph = build_graph(
        {
            "stack": "s",
            "resources": [
                {"type": "app", "name": "web", "depends_on": ["db.main"]},
                {"type": "db", "name": "main"},
            ],
        }
    )
    assert [str(a) for a in graph.order] == ["db.main", "app.web"]


def test_default_provider_precedence():
    graph = build_graph(
        {
            "stack": "s",
            "provider": "memory",
            "resources": [
                {"type": "a", "name": "x"},
                {"type": "a", "name": "y", "provider": "local"},
            ],
        },
        default_provider="other",
    )
    assert graph.get(_addr("a.x")).provider == "memory"
    assert graph.get(_addr("a.y")).provider == "local"

    graph = build_graph({"stack": "s", "resources": [{"type": "a", "name": "x"}]}, default_provider="other")
    assert graph.get(_addr("a.x")).provider == "other"


def test_missing_reference_is_rejected():
    with pytest.raises(MissingReferenceError) as ei:
        build_graph(
            {
                "stack": "s",
                "resources": [{"type": "a", "name": "x", "attributes": {"v": "${b.nope.id}"}}],
            }
        )
    assert "b.nope" in ei.value.nodes


def test_missing_explicit_dependency_is_rejected():
    with pytest.raises(MissingReferenceError):
        build_graph({"stack": "s", "resources": [{"type": "a", "name": "x", "depends_on": ["b.y"]}]})


def test_malformed_depends_on_entry():
    with pytest.raises(MalformedAttributeError):
        build_graph({"stack": "s", "resources": [{"type": "a", "name": "x", "depends_on": ["nodot"]}]})


def test_duplicate_resource_is_rejected():
    with pytest.raises(DuplicateResourceError):
        build_graph({"stack": "s", "resources": [{"type": "a", "name": "x"}, {"type": "a", "name": "x"}]})


def test_cycle_fails_at_load_time():
    with pytest.raises(CycleError) as ei:
        build_graph(
            {
                "stack": "s",
                "resources": [
                    {"type": "a", "name": "x", "attributes": {"v": "${b.y.id}"}},
                    {"type": "b", "name": "y", "attributes": {"v": "${a.x.id}"}},
                ],
            }
        )
    assert set(ei.value.nodes) == {"a.x", "b.y"}


@pytest.mark.parametrize(
    "value",
    ["${a.x", "${}", "${a.x}", "${a..id}"],
)
def test_malformed_expressions(value):
    with pytest.raises(MalformedAttributeError):
        build_graph(
            {
                "stack": "s",
                "resources": [
                    {"type": "a", "name": "x"},
                    {"type": "b", "name": "y", "attributes": {"v": value}},
                ],
            }
        )


def test_invalid_document_shape():
    with pytest.raises(MalformedAttributeError):
        build_graph({"resources": []})
    with pytest.raises(MalformedAttributeError):
        build_graph({"stack": "s", "resources": [{"type": "Bad-Type", "name": "x"}]})
    with pytest.raises(MalformedAttributeError):
        build_graph({"stack": "s", "unexpected": 1})
    with pytest.raises(MalformedAttributeError):
        build_graph(["not", "a", "mapping"])


def test_var_is_not_a_resource_type():
    doc = {
        "stack": "s",
        "resources": [
            {"type": "var", "name": "x", "attributes": {}},
            {"type": "dns_record", "name": "www", "attributes": {"v": "${var.x.id}"}},
        ],
    }
    with pytest.raises(MalformedAttributeError, match="reserved for variable references"):
        build_graph(doc)


def test_variables_defaults_and_overrides():
    doc = {
        "stack": "s",
        "variables": {"region": {"default": "us-east-1"}, "size": {}, "zones": {"default": ["a", "b"]}},
        "resources": [
            {
                "type": "a",
                "name": "x",
                "attributes": {"region": "${var.region}", "label": "${var.region}-${var.size}", "zones": "${var.zones}"},
            }
        ],
    }
    graph = build_graph(doc, {"size": 3})
    attrs = graph.get(_addr("a.x")).attributes
    assert attrs == {"region": "us-east-1", "label": "us-east-1-3", "zones": ["a", "b"]}

    graph = build_graph(doc, {"size": 3, "region": "eu-west-1"})
    assert graph.get(_addr("a.x")).attributes["region"] == "eu-west-1"


def test_variable_without_value_is_missing():
    doc = {"stack": "s", "variables": {"size": {}}, "resources": []}
    with pytest.raises(MissingReferenceError):
        build_graph(doc)


def test_unknown_variable_override_is_rejected():
    with pytest.raises(MissingReferenceError):
        build_graph({"stack": "s", "resources": []}, {"ghost": 1})


def test_undefined_variable_in_attribute():
    with pytest.raises(MissingReferenceError):
        build_graph({"stack": "s", "resources": [{"type": "a", "name": "x", "attributes": {"v": "${var.nope}"}}]})


def test_output_must_reference_declared_resource():
    with pytest.raises(MissingReferenceError):
        build_graph({"stack": "s", "resources": [], "outputs": {"id": "${a.x.id}"}})


def test_configuration_errors_share_a_base_class():
    with pytest.raises(ConfigurationError):
        build_graph({"stack": "s", "resources": [{"type": "a", "name": "x"}, {"type": "a", "name": "x"}]})


def test_load_yaml_document(tmp_path: Path):
    p = tmp_path / "stack.yaml"
    p.write_text(
        "stack: net\n"
        "resources:\n"
        "  - type: network_vpc\n"
        "    name: main\n"
        "    attributes:\n"
        "      cidr_block: 10.0.0.0/16\n"
        "  - type: network_subnet\n"
        "    name: a\n"
        "    attributes:\n"
        "      vpc_id: ${network_vpc.main.id}\n",
        encoding="utf-8",
    )
    graph = load_graph(p)
    assert graph.stack == "net"
    assert [str(a) for a in graph.order] == ["network_vpc.main", "network_subnet.a"]


def test_load_json_document(tmp_path: Path, web_stack):
    p = tmp_path / "stack.json"
    p.write_text(json.dumps(web_stack), encoding="utf-8")
    assert len(load_graph(p).nodes) == 6


def test_yaml_dates_are_not_valid_attribute_values(tmp_path: Path):
    p = tmp_path / "stack.yml"
    p.write_text(
        "stack: s\nresources:\n  - type: a\n    name: x\n    attributes:\n      created: 2024-01-01\n",
        encoding="utf-8",
    )
    with pytest.raises(MalformedAttributeError):
        load_graph(p)


def test_unparseable_file(tmp_path: Path):
    p = tmp_path / "broken.yaml"
    p.write_text("stack: [unclosed\n", encoding="utf-8")
    with pytest.raises(MalformedAttributeError):
        load_document(p)


def test_missing_file(tmp_path: Path):
    with pytest.raises(FileNotFoundError):
        load_document(tmp_path / "nope.yaml")
