from dataclasses import replace

import pytest

from kube_cluster_sim.errors import DuplicateResourceError
from kube_cluster_sim.model import ObjectMeta, Resource
from kube_cluster_sim.state import (
    check_unique,
    collection_for,
    delete_resource,
    find_pod,
    find_resource,
    pods_on_node,
    put_resource,
    remove_pod,
)


def test_collection_for_unknown_kind():
    with pytest.raises(ValueError):
        collection_for("Widget")


def test_find_pod_namespace_scoped(cluster, make_pod):
    state = put_resource(cluster, make_pod("web", namespace="default"))
    state = put_resource(state, make_pod("web", namespace="shop"))

    assert find_pod(state, "web", "shop").metadata.namespace == "shop"
    assert find_pod(state, "web", "other") is None
    assert find_pod(state, "web") is not None


def test_put_resource_replaces_same_key(cluster, make_pod):
    state = put_resource(cluster, make_pod("web"))
    state = put_resource(state, make_pod("web", node_name="node01"))

    assert len(state.pods) == 1
    assert state.pods[0].spec.node_name == "node01"
    assert [p.metadata.name for p in pods_on_node(state, "node01")] == ["web"]


def test_put_resource_registers_namespace(cluster, make_pod):
    state = put_resource(cluster, make_pod("web", namespace="shop"))

    assert "shop" in state.namespaces
    assert "shop" not in cluster.namespaces


def test_put_and_delete_passive_kind(cluster):
    cm = Resource(kind="ConfigMap", metadata=ObjectMeta(name="cfg", namespace="default"))
    state = put_resource(cluster, cm)

    assert find_resource(state, "ConfigMap", "cfg") == cm
    assert find_resource(delete_resource(state, "ConfigMap", "cfg"), "ConfigMap", "cfg") is None


def test_delete_missing_returns_same_state(cluster):
    assert delete_resource(cluster, "ConfigMap", "nope") is cluster


def test_remove_pod_leaves_input_untouched(cluster, make_pod):
    state = put_resource(cluster, make_pod("web"))
    after = remove_pod(state, state.pods[0])

    assert after.pods == ()
    assert len(state.pods) == 1


class TestUniqueness:
    def test_default_cluster_is_unique(self, cluster):
        check_unique(cluster)

    def test_duplicate_namespaced_object(self, cluster, make_pod):
        pod = make_pod("web")
        state = replace(cluster, pods=(pod, pod))

        with pytest.raises(DuplicateResourceError) as err:
            check_unique(state)
        assert err.value.key == ("Pod", "default", "web")

    def test_same_name_different_namespace_allowed(self, cluster, make_pod):
        state = replace(
            cluster, pods=(make_pod("web"), make_pod("web", namespace="shop"))
        )
        check_unique(state)

    def test_duplicate_cluster_scoped_object(self, cluster):
        node = cluster.nodes[0]
        with pytest.raises(DuplicateResourceError):
            check_unique(replace(cluster, nodes=cluster.nodes + (node,)))
