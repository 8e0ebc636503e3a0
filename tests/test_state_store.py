import json

from stackapply.core.apply import ResourceState, StateStore


def _res(addr: str, rid: str, order: int = 0, depends_on=None) -> ResourceState:
    t, n = addr.split(".")
    return ResourceState(
        address=addr,
        type=t,
        name=n,
        provider="memory",
        id=rid,
        declared={"k": "v"},
        attributes={"k": "v", "id": rid},
        depends_on=depends_on or [],
        order=order,
    )


def test_missing_state_loads_empty(workspace):
    store = StateStore(workspace_dir=workspace, stack="web")
    st = store.load()
    assert not store.exists()
    assert st.stack == "web"
    assert st.serial == 0
    assert st.resources == {}


def test_record_persists_and_bumps_serial(workspace):
    store = StateStore(workspace_dir=workspace, stack="web")
    store.record(_res("network_vpc.main", "vpc-1"))
    store.record(_res("network_subnet.a", "subnet-1", order=1, depends_on=["network_vpc.main"]))

    assert store.path == workspace / ".stackapply" / "state" / "web.json"
    on_disk = json.loads(store.path.read_text(encoding="utf-8"))
    assert on_disk["serial"] == 2
    assert sorted(on_disk["resources"]) == ["network_subnet.a", "network_vpc.main"]

    st = StateStore(workspace_dir=workspace, stack="web").load()
    assert st.resources["network_subnet.a"].depends_on == ["network_vpc.main"]
    assert st.resources["network_subnet.a"].order == 1
    assert st.updated_ts is not None


def test_remove_and_outputs(workspace):
    store = StateStore(workspace_dir=workspace, stack="web")
    store.record(_res("network_vpc.main", "vpc-1"))
    store.set_outputs({"vpc_id": "vpc-1"})
    store.remove("network_vpc.main")
    store.remove("network_vpc.absent")

    st = store.load()
    assert st.resources == {}
    assert st.outputs == {"vpc_id": "vpc-1"}
    assert st.serial == 4


def test_stacks_are_isolated(workspace):
    StateStore(workspace_dir=workspace, stack="a").record(_res("network_vpc.main", "vpc-a"))
    assert StateStore(workspace_dir=workspace, stack="b").load().resources == {}
