import json
import os

import pytest

from kube_cluster_sim.faults import FaultConfig, inject_fault, repair_fault
from kube_cluster_sim.loader import load_state, save_state, state_from_documents
from kube_cluster_sim.manifest import from_manifest, state_from_dict
from kube_cluster_sim.scheduler import schedule_pod

GOLDEN_DIR = os.path.join(os.path.dirname(__file__), "..", "golden")


def load_fixture(scenario: str):
    with open(os.path.join(GOLDEN_DIR, scenario, "input.json")) as f:
        return json.load(f)


@pytest.mark.parametrize("filename", ["state.yaml", "state.json"])
def test_saved_snapshot_schedules_identically(tmp_path, filename):
    """
    Contract:
    A snapshot written by save_state and read back by load_state produces
    the same scheduling decision as the state it was written from.
    """
    data = load_fixture("taint_pending")
    state = state_from_dict(data["state"])
    pod = from_manifest(data["pod"])

    path = str(tmp_path / filename)
    save_state(path, state)

    assert schedule_pod(pod, load_state(path)) == schedule_pod(pod, state)


def test_fault_steps_never_mutate_their_input():
    """
    Contract:
    Every inject/repair call leaves the state it was handed untouched,
    whether the transition succeeds or fails.
    """
    data = load_fixture("node_failure")
    state = state_from_documents(data["manifests"])

    for step in data["steps"]:
        operation = inject_fault if step["action"] == "inject" else repair_fault
        before = state
        snapshot = repr(before)

        result = operation(FaultConfig(type=step["type"], target=step["target"]), state, now=data["now"])

        assert repr(before) == snapshot
        state = result.new_state
