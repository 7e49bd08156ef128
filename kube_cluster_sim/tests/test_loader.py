import json
import os

import pytest

from kube_cluster_sim.errors import DuplicateResourceError, ManifestError
from kube_cluster_sim.loader import load_state, save_state
from kube_cluster_sim.model import ComponentStatus, TaintEffect, is_node_ready
from kube_cluster_sim.state import find_node, find_pod, find_resource

FIXTURE_DIR = os.path.join(os.path.dirname(__file__), "fixtures")


def fixture(name: str) -> str:
    return os.path.join(FIXTURE_DIR, name)


def test_no_path_gives_default_cluster(cluster):
    assert load_state(None) == cluster


def test_manifest_stream_merges_into_default_cluster():
    state = load_state(fixture("workloads.yaml"))

    assert [n.metadata.name for n in state.nodes] == ["control-plane", "node01", "node02", "node03"]
    assert "shop" in state.namespaces

    pod = find_pod(state, "checkout", "shop")
    assert pod.spec.node_name == "node01"
    assert find_resource(state, "ConfigMap", "checkout-config", "shop").body["data"]["LOG_LEVEL"] == "debug"

    node03 = find_node(state, "node03")
    assert node03.spec.taints[0].effect is TaintEffect.NO_SCHEDULE
    assert node03.status.allocatable["pods"] == "20"


def test_snapshot_replaces_cluster():
    state = load_state(fixture("snapshot.yaml"))

    assert [n.metadata.name for n in state.nodes] == ["solo"]
    assert not is_node_ready(state.nodes[0])
    assert state.system_components[0].status == ComponentStatus.STOPPED
    assert state.etcd.members[0].is_leader is True
    assert state.events[0].reason == "NodeNotReady"
    assert state.services == ()


def test_duplicate_objects_rejected():
    with pytest.raises(DuplicateResourceError):
        load_state(fixture("duplicate.yaml"))


def test_unparsable_file(tmp_path):
    path = tmp_path / "broken.json"
    path.write_text("{not json", encoding="utf-8")

    with pytest.raises(ManifestError, match="cannot parse"):
        load_state(str(path))


@pytest.mark.parametrize("filename", ["state.yaml", "state.json"])
def test_save_then_load(tmp_path, filename):
    original = load_state(fixture("workloads.yaml"))
    path = str(tmp_path / filename)

    save_state(path, original)

    assert load_state(path) == original


def test_json_snapshot_is_plain_json(tmp_path, cluster):
    path = tmp_path / "state.json"
    save_state(str(path), cluster)

    data = json.loads(path.read_text(encoding="utf-8"))
    assert data["etcd"]["members"][0]["isLeader"] is True
    assert data["systemComponents"][0] == {
        "name": "kube-apiserver",
        "node": "control-plane",
        "status": "Running",
    }
