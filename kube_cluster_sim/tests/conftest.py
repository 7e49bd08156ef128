"""
Shared pytest fixtures: manifest-shaped factories for nodes and pods, and a
pinned clock.
"""

import pytest

from kube_cluster_sim.defaults import initial_cluster_state
from kube_cluster_sim.manifest import from_manifest
from kube_cluster_sim.model import ClusterState

NOW = "2024-05-01T12:00:00Z"


@pytest.fixture
def now() -> str:
    return NOW


@pytest.fixture
def cluster() -> ClusterState:
    return initial_cluster_state()


@pytest.fixture
def make_node():
    def build(
        name,
        *,
        ready=True,
        labels=None,
        taints=None,
        unschedulable=False,
        pods="110",
        conditions=None,
        ip=None,
    ):
        conds = [{"type": "Ready", "status": "True" if ready else "False"}]
        conds += conditions or []
        status = {"conditions": conds, "allocatable": {"pods": pods}}
        if ip:
            status["addresses"] = [{"type": "InternalIP", "address": ip}]
        return from_manifest(
            {
                "kind": "Node",
                "metadata": {"name": name, "labels": labels or {}},
                "spec": {"taints": taints or [], "unschedulable": unschedulable},
                "status": status,
            }
        )

    return build


@pytest.fixture
def make_pod():
    def build(
        name,
        *,
        namespace="default",
        labels=None,
        node_name=None,
        phase="Pending",
        containers=None,
        container_statuses=None,
        **spec,
    ):
        body = {
            "containers": containers
            if containers is not None
            else [{"name": "app", "image": "nginx:1.25"}],
            **spec,
        }
        if node_name:
            body["nodeName"] = node_name
        status = {"phase": phase}
        if container_statuses is not None:
            status["containerStatuses"] = container_statuses
        return from_manifest(
            {
                "kind": "Pod",
                "metadata": {"name": name, "namespace": namespace, "labels": labels or {}},
                "spec": body,
                "status": status,
            }
        )

    return build
