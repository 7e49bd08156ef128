from dataclasses import replace

import pytest

from kube_cluster_sim.config import SimulatorConfig
from kube_cluster_sim.errors import ErrorKind
from kube_cluster_sim.model import ClusterState, EventType, is_node_ready, pod_condition
from kube_cluster_sim.scheduler import (
    DEFAULT_FILTERS,
    bind_pod,
    get_scheduling_failure_reasons,
    schedule_pod,
)
from kube_cluster_sim.state import find_node, find_pod

GPU_TAINT = {"key": "dedicated", "value": "gpu", "effect": "NoSchedule"}
GPU_TOLERATION = {"key": "dedicated", "operator": "Equal", "value": "gpu", "effect": "NoSchedule"}


def _state(*nodes, pods=()):
    return ClusterState(nodes=tuple(nodes), pods=tuple(pods))


def _required_affinity(*expressions):
    return {
        "nodeAffinity": {
            "requiredDuringSchedulingIgnoredDuringExecution": {
                "nodeSelectorTerms": [{"matchExpressions": list(expressions)}]
            }
        }
    }


class TestTaintScenario:
    def test_untolerated_taint_is_unschedulable(self, make_node, make_pod):
        state = _state(make_node("node01", taints=[GPU_TAINT]))
        result = schedule_pod(make_pod("web"), state)

        assert result.success is False
        assert result.reason == ErrorKind.UNSCHEDULABLE
        assert result.message == (
            "0/1 nodes are available: 1 node(s) had untolerated taint {dedicated: gpu}."
        )

    def test_matching_toleration_schedules(self, make_node, make_pod):
        state = _state(make_node("node01", taints=[GPU_TAINT]))
        result = schedule_pod(make_pod("web", tolerations=[GPU_TOLERATION]), state)

        assert result.success is True
        assert result.node_name == "node01"

    @pytest.mark.parametrize(
        "toleration,tolerated",
        [
            ({"operator": "Exists"}, True),
            ({"key": "dedicated", "operator": "Exists"}, True),
            ({"key": "dedicated", "operator": "Exists", "effect": "NoExecute"}, False),
            ({"key": "dedicated", "value": "cpu"}, False),
            ({"key": "other", "operator": "Exists"}, False),
        ],
    )
    def test_toleration_matching(self, make_node, make_pod, toleration, tolerated):
        state = _state(make_node("node01", taints=[GPU_TAINT]))
        result = schedule_pod(make_pod("web", tolerations=[toleration]), state)
        assert result.success is tolerated

    def test_prefer_no_schedule_does_not_block(self, make_node, make_pod):
        taint = {"key": "spot", "effect": "PreferNoSchedule"}
        state = _state(make_node("node01", taints=[taint]))
        assert schedule_pod(make_pod("web"), state).success is True


class TestFilters:
    def test_not_ready_and_unschedulable_nodes_skipped(self, make_node, make_pod):
        state = _state(
            make_node("a", ready=False),
            make_node("b", unschedulable=True),
            make_node("c"),
        )
        assert schedule_pod(make_pod("web"), state).node_name == "c"

    def test_node_selector_exact_match(self, make_node, make_pod):
        state = _state(
            make_node("a", labels={"disk": "hdd"}),
            make_node("b", labels={"disk": "ssd"}),
        )
        pod = make_pod("web", nodeSelector={"disk": "ssd"})
        assert schedule_pod(pod, state).node_name == "b"

    @pytest.mark.parametrize(
        "expression,expected",
        [
            ({"key": "zone", "operator": "In", "values": ["us-east"]}, "east"),
            ({"key": "zone", "operator": "NotIn", "values": ["us-east"]}, "west"),
            ({"key": "gpu", "operator": "Exists"}, "west"),
            ({"key": "gpu", "operator": "DoesNotExist"}, "east"),
            ({"key": "cores", "operator": "Gt", "values": ["8"]}, "west"),
            ({"key": "cores", "operator": "Lt", "values": ["8"]}, "east"),
        ],
    )
    def test_required_node_affinity_operators(self, make_node, make_pod, expression, expected):
        state = _state(
            make_node("east", labels={"zone": "us-east", "cores": "4"}),
            make_node("west", labels={"zone": "us-west", "cores": "16", "gpu": "a100"}),
        )
        pod = make_pod("web", affinity=_required_affinity(expression))
        assert schedule_pod(pod, state).node_name == expected

    def test_non_numeric_label_fails_gt(self, make_node, make_pod):
        state = _state(make_node("a", labels={"cores": "many"}))
        pod = make_pod(
            "web", affinity=_required_affinity({"key": "cores", "operator": "Gt", "values": ["1"]})
        )
        assert schedule_pod(pod, state).success is False

    def test_affinity_terms_are_ored(self, make_node, make_pod):
        state = _state(make_node("a", labels={"zone": "z1"}), make_node("b", labels={"zone": "z2"}))
        affinity = {
            "nodeAffinity": {
                "requiredDuringSchedulingIgnoredDuringExecution": {
                    "nodeSelectorTerms": [
                        {"matchExpressions": [{"key": "zone", "operator": "In", "values": ["z9"]}]},
                        {"matchExpressions": [{"key": "zone", "operator": "In", "values": ["z2"]}]},
                    ]
                }
            }
        }
        assert schedule_pod(make_pod("web", affinity=affinity), state).node_name == "b"

    def test_match_fields_on_node_name(self, make_node, make_pod):
        state = _state(make_node("a"), make_node("b"))
        affinity = {
            "nodeAffinity": {
                "requiredDuringSchedulingIgnoredDuringExecution": {
                    "nodeSelectorTerms": [
                        {
                            "matchFields": [
                                {"key": "metadata.name", "operator": "In", "values": ["b"]}
                            ]
                        }
                    ]
                }
            }
        }
        assert schedule_pod(make_pod("web", affinity=affinity), state).node_name == "b"

    def test_pod_capacity(self, make_node, make_pod):
        full = make_node("full", pods="1")
        state = _state(full, make_node("free"), pods=[make_pod("old", node_name="full")])
        assert schedule_pod(make_pod("web"), state).node_name == "free"

    def test_default_capacity_from_config(self, make_node, make_pod):
        node = make_node("a", pods="")
        state = _state(node, pods=[make_pod("old", node_name="a")])
        config = SimulatorConfig(default_max_pods=1)

        result = schedule_pod(make_pod("web"), state, config)
        assert result.success is False
        assert "Too many pods" in result.message

    def test_no_nodes(self, make_pod):
        result = schedule_pod(make_pod("web"), ClusterState())
        assert result.reason == ErrorKind.UNSCHEDULABLE
        assert result.message == "no nodes available to schedule pods"


class TestScoring:
    def test_less_loaded_node_wins(self, make_node, make_pod):
        state = _state(
            make_node("busy", pods="4"),
            make_node("idle", pods="4"),
            pods=[make_pod("p1", node_name="busy"), make_pod("p2", node_name="busy")],
        )
        result = schedule_pod(make_pod("web"), state)

        assert result.node_name == "idle"
        # (4-2)/4*50 = 25 and 4/4*50 = 50
        assert dict(result.scores) == {"idle": 50, "busy": 25}

    def test_balance_rounds_half_up(self, make_node, make_pod):
        # 3 of 4 free: 37.5 rounds to 38
        state = _state(make_node("a", pods="4"), pods=[make_pod("p", node_name="a")])
        assert schedule_pod(make_pod("web"), state).scores["a"] == 38

    def test_ties_keep_node_order(self, make_node, make_pod):
        state = _state(make_node("a"), make_node("b"), make_node("c"))
        assert schedule_pod(make_pod("web"), state).node_name == "a"

    def test_preferred_node_affinity_weight(self, make_node, make_pod):
        state = _state(make_node("a"), make_node("b", labels={"disk": "ssd"}))
        affinity = {
            "nodeAffinity": {
                "preferredDuringSchedulingIgnoredDuringExecution": [
                    {
                        "weight": 10,
                        "preference": {
                            "matchExpressions": [{"key": "disk", "operator": "In", "values": ["ssd"]}]
                        },
                    }
                ]
            }
        }
        result = schedule_pod(make_pod("web", affinity=affinity), state)
        assert result.node_name == "b"
        assert result.scores["b"] - result.scores["a"] == 10

    def test_negative_preference_weight(self, make_node, make_pod):
        state = _state(make_node("a", labels={"spot": "true"}), make_node("b"))
        affinity = {
            "nodeAffinity": {
                "preferredDuringSchedulingIgnoredDuringExecution": [
                    {"weight": -5, "preference": {"matchExpressions": [{"key": "spot", "operator": "Exists"}]}}
                ]
            }
        }
        assert schedule_pod(make_pod("web", affinity=affinity), state).node_name == "b"

    def test_pod_anti_affinity_spreads(self, make_node, make_pod):
        state = _state(
            make_node("a", labels={"kubernetes.io/hostname": "a"}),
            make_node("b", labels={"kubernetes.io/hostname": "b"}),
            pods=[make_pod("web-0", labels={"app": "web"}, node_name="a")],
        )
        anti = {
            "podAntiAffinity": {
                "preferredDuringSchedulingIgnoredDuringExecution": [
                    {
                        "weight": 100,
                        "podAffinityTerm": {
                            "topologyKey": "kubernetes.io/hostname",
                            "labelSelector": {"matchLabels": {"app": "web"}},
                        },
                    }
                ]
            }
        }
        assert schedule_pod(make_pod("web-1", affinity=anti), state).node_name == "b"

    def test_pod_affinity_uses_topology_domain(self, make_node, make_pod):
        state = _state(
            make_node("a", labels={"zone": "z1"}, pods="10"),
            make_node("b", labels={"zone": "z2"}, pods="10"),
            make_node("c", labels={"zone": "z2"}, pods="10"),
            pods=[make_pod("cache", labels={"app": "cache"}, node_name="b")],
        )
        affinity = {
            "podAffinity": {
                "preferredDuringSchedulingIgnoredDuringExecution": [
                    {
                        "weight": 100,
                        "podAffinityTerm": {
                            "topologyKey": "zone",
                            "labelSelector": {
                                "matchExpressions": [
                                    {"key": "app", "operator": "In", "values": ["cache"]}
                                ]
                            },
                        },
                    }
                ]
            }
        }
        result = schedule_pod(make_pod("web", affinity=affinity), state)

        # c shares b's zone and carries no pods, so it outranks b
        assert result.node_name == "c"
        assert result.scores["a"] < result.scores["c"]


class TestEngineProperties:
    def _cluster(self, make_node, make_pod):
        return _state(
            make_node("n1", taints=[GPU_TAINT]),
            make_node("n2", labels={"disk": "ssd"}),
            make_node("n3", labels={"disk": "ssd"}, ready=False),
            make_node("n4", labels={"disk": "ssd"}),
            pods=[make_pod("p", node_name="n2")],
        )

    def test_determinism(self, make_node, make_pod):
        state = self._cluster(make_node, make_pod)
        pod = make_pod("web", nodeSelector={"disk": "ssd"})
        assert schedule_pod(pod, state) == schedule_pod(pod, state)

    def test_idempotent_rebinding(self, make_node, make_pod):
        state = self._cluster(make_node, make_pod)
        pod = make_pod("web", nodeSelector={"disk": "ssd"})
        first = schedule_pod(pod, state)

        bound = replace(pod, spec=replace(pod.spec, node_name=first.node_name))
        second = schedule_pod(bound, state)

        assert second.success is True
        assert second.node_name == first.node_name

    def test_filter_soundness(self, make_node, make_pod):
        state = self._cluster(make_node, make_pod)
        result = schedule_pod(make_pod("web"), state)
        node = find_node(state, result.node_name)

        assert is_node_ready(node)
        assert not node.spec.unschedulable
        assert not node.spec.taints

    def test_state_not_mutated(self, make_node, make_pod):
        state = self._cluster(make_node, make_pod)
        snapshot = replace(state)
        schedule_pod(make_pod("web"), state)
        assert state == snapshot


class TestPreBound:
    def test_missing_node(self, make_node, make_pod):
        result = schedule_pod(make_pod("web", node_name="ghost"), _state(make_node("a")))
        assert result.reason == ErrorKind.NODE_NOT_FOUND
        assert result.message == 'node "ghost" not found'

    def test_not_ready_node(self, make_node, make_pod):
        result = schedule_pod(make_pod("web", node_name="a"), _state(make_node("a", ready=False)))
        assert result.reason == ErrorKind.NODE_NOT_READY


class TestFailureReasons:
    def test_lists_every_failing_filter(self, make_node, make_pod):
        state = _state(
            make_node("a", ready=False, taints=[GPU_TAINT]),
            make_node("b"),
            make_node("c", labels={"disk": "hdd"}, unschedulable=True),
        )
        reasons = get_scheduling_failure_reasons(make_pod("web", nodeSelector={"disk": "ssd"}), state)

        assert reasons == [
            "a: NodeNotReady, NodeSelectorMismatch, TaintToleration",
            "b: NodeSelectorMismatch",
            "c: NodeUnschedulable, NodeSelectorMismatch",
        ]

    def test_agrees_with_filter_stage(self, make_node, make_pod):
        """
        Contract: a node is absent from the diagnostic exactly when it
        passes every filter.
        """
        state = _state(make_node("a", ready=False), make_node("b"))
        pod = make_pod("web")
        failing = {r.split(":")[0] for r in get_scheduling_failure_reasons(pod, state)}
        result = schedule_pod(pod, state)

        assert failing == {"a"}
        assert set(result.scores) == {"b"}
        assert len(DEFAULT_FILTERS) == 6


class TestBind:
    def test_successful_bind(self, make_node, make_pod, now):
        state = _state(make_node("node01", ip="10.0.0.5"))
        pod = make_pod("web")
        result = bind_pod(pod, state, now=now)

        bound = find_pod(result.new_state, "web")
        assert result.success
        assert bound.spec.node_name == "node01"
        assert bound.status.host_ip == "10.0.0.5"
        assert pod_condition(bound, "PodScheduled").status == "True"

        (event,) = result.events
        assert event.type == EventType.NORMAL
        assert event.reason == "Scheduled"
        assert event.message == "Successfully assigned default/web to node01"
        assert event.source.component == "default-scheduler"
        assert result.new_state.events[-1] == event
        assert state.pods == ()

    def test_failed_bind_records_condition(self, make_node, make_pod, now):
        state = _state(make_node("node01", ready=False))
        result = bind_pod(make_pod("web"), state, now=now)

        stored = find_pod(result.new_state, "web")
        condition = pod_condition(stored, "PodScheduled")
        assert not result.success
        assert stored.spec.node_name is None
        assert condition.status == "False"
        assert condition.reason == "Unschedulable"
        assert result.events[0].reason == "FailedScheduling"
        assert result.events[0].type == EventType.WARNING
        assert result.events[0].message == "0/1 nodes are available: 1 node(s) were not ready."

    @pytest.mark.parametrize(
        "nodes,reason",
        [
            ([], ErrorKind.NODE_NOT_FOUND),
            ([("node01", False)], ErrorKind.NODE_NOT_READY),
        ],
    )
    def test_failed_prebound_bind_keeps_reason(self, make_node, make_pod, now, nodes, reason):
        state = _state(*(make_node(name, ready=ready) for name, ready in nodes))
        result = bind_pod(make_pod("web", node_name="node01"), state, now=now)

        stored = find_pod(result.new_state, "web")
        condition = pod_condition(stored, "PodScheduled")
        assert result.schedule.reason == reason
        assert stored.spec.node_name == "node01"
        assert condition.status == "False"
        assert condition.reason == reason.value


def _preferred(weight, *expressions):
    return {
        "nodeAffinity": {
            "preferredDuringSchedulingIgnoredDuringExecution": [
                {"weight": weight, "preference": {"matchExpressions": list(expressions)} if expressions else {}}
            ]
        }
    }


def _weighted_term(kind, weight, selector, namespaces=None):
    term = {"topologyKey": "kubernetes.io/hostname", "labelSelector": selector}
    if namespaces is not None:
        term["namespaces"] = namespaces
    return {kind: {"preferredDuringSchedulingIgnoredDuringExecution": [{"weight": weight, "podAffinityTerm": term}]}}


class TestScoringEdgeCases:
    @pytest.mark.parametrize(
        "affinity,bonus",
        [
            # empty preference matches every node
            (_preferred(7), {"a": 7, "b": 7}),
            # numeric operators are ignored for preferences
            (_preferred(9, {"key": "cores", "operator": "Gt", "values": ["2"]}), {"a": 0, "b": 0}),
            (_preferred(9, {"key": "cores", "operator": "Lt", "values": ["16"]}), {"a": 0, "b": 0}),
            (_preferred(9, {"key": "cores", "operator": "Exists"}), {"a": 0, "b": 9}),
        ],
    )
    def test_preferred_node_affinity(self, make_node, make_pod, affinity, bonus):
        state = _state(make_node("a"), make_node("b", labels={"cores": "8"}))
        baseline = schedule_pod(make_pod("web"), state).scores

        scores = schedule_pod(make_pod("web", affinity=affinity), state).scores

        assert {n: scores[n] - baseline[n] for n in ("a", "b")} == bonus

    @pytest.mark.parametrize(
        "affinity,bonus",
        [
            # pods outside the listed namespaces are not counted
            (_weighted_term("podAffinity", 20, {"matchLabels": {"app": "cache"}}, ["prod"]), {"a": 20, "b": 0}),
            (_weighted_term("podAffinity", 20, {"matchLabels": {"app": "cache"}}, ["qa"]), {"a": 0, "b": 0}),
            (_weighted_term("podAffinity", 20, {"matchLabels": {"app": "cache"}}), {"a": 20, "b": 20}),
            # anti-affinity through matchExpressions subtracts the weight
            (
                _weighted_term(
                    "podAntiAffinity",
                    30,
                    {"matchExpressions": [{"key": "app", "operator": "In", "values": ["cache"]}]},
                ),
                {"a": -30, "b": -30},
            ),
            (
                _weighted_term(
                    "podAntiAffinity",
                    30,
                    {"matchExpressions": [{"key": "app", "operator": "NotIn", "values": ["cache"]}]},
                ),
                {"a": 0, "b": 0},
            ),
        ],
    )
    def test_pod_affinity_selectors(self, make_node, make_pod, affinity, bonus):
        state = _state(
            make_node("a", labels={"kubernetes.io/hostname": "a"}),
            make_node("b", labels={"kubernetes.io/hostname": "b"}),
            pods=[
                make_pod("cache-prod", namespace="prod", labels={"app": "cache"}, node_name="a"),
                make_pod("cache-dev", namespace="dev", labels={"app": "cache"}, node_name="b"),
            ],
        )
        baseline = schedule_pod(make_pod("web"), state).scores

        scores = schedule_pod(make_pod("web", affinity=affinity), state).scores

        assert {n: scores[n] - baseline[n] for n in ("a", "b")} == bonus
