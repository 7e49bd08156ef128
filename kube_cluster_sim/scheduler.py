"""
Pod scheduling: filter -> score -> bind.

Filters and scorers are small plugin classes evaluated in list order, the same
way the real scheduler framework runs its plugins. All functions here are pure:
they read a ClusterState and never modify it.
"""

import logging
import math
from collections import Counter
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field, replace

from kube_cluster_sim.config import DEFAULT_CONFIG, SimulatorConfig
from kube_cluster_sim.errors import ErrorKind
from kube_cluster_sim.model import (
    ClusterState,
    EventType,
    InvolvedObject,
    K8sEvent,
    LabelSelector,
    LabelSelectorRequirement,
    Node,
    NodeSelectorTerm,
    Pod,
    PodAffinityTerm,
    PodCondition,
    SelectorOperator,
    Taint,
    TaintEffect,
    Toleration,
    TolerationOperator,
    is_node_ready,
    node_pod_capacity,
    pod_display_name,
)
from kube_cluster_sim.state import append_events, find_node, put_resource
from kube_cluster_sim.timeline import new_event, utc_now

logger = logging.getLogger(__name__)

BLOCKING_EFFECTS = (TaintEffect.NO_SCHEDULE, TaintEffect.NO_EXECUTE)


@dataclass(frozen=True)
class ScheduleResult:
    success: bool
    node_name: str | None = None
    reason: ErrorKind | None = None
    message: str | None = None
    # Per-candidate total score, highest first. Empty on the fast path.
    scores: Mapping[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class BindResult:
    schedule: ScheduleResult
    new_state: ClusterState
    events: tuple[K8sEvent, ...] = ()

    @property
    def success(self) -> bool:
        return self.schedule.success


class SchedulingContext:
    """
    Per-call view shared by all plugins; pod counts are computed once.
    """

    def __init__(self, pod: Pod, state: ClusterState, config: SimulatorConfig):
        self.pod = pod
        self.state = state
        self.config = config
        self.pod_counts = Counter(
            p.spec.node_name for p in state.pods if p.spec.node_name
        )

    def capacity(self, node: Node) -> int:
        return node_pod_capacity(node, self.config.default_max_pods)

    def pod_count(self, node: Node) -> int:
        return self.pod_counts.get(node.metadata.name, 0)


# ----------------------------
# Label and taint matching
# ----------------------------


def _as_number(value: str | None) -> float | None:
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def match_requirement(
    req: LabelSelectorRequirement,
    labels: Mapping[str, str],
    *,
    allow_numeric: bool = True,
) -> bool:
    value = labels.get(req.key)

    if req.operator == SelectorOperator.IN:
        return value is not None and value in req.values
    if req.operator == SelectorOperator.NOT_IN:
        return value not in req.values
    if req.operator == SelectorOperator.EXISTS:
        return req.key in labels
    if req.operator == SelectorOperator.DOES_NOT_EXIST:
        return req.key not in labels

    if not allow_numeric or not req.values:
        return False
    left, right = _as_number(value), _as_number(req.values[0])
    if left is None or right is None:
        return False
    if req.operator == SelectorOperator.GT:
        return left > right
    if req.operator == SelectorOperator.LT:
        return left < right
    return False


def match_node_selector_term(
    term: NodeSelectorTerm, node: Node, *, allow_numeric: bool = True
) -> bool:
    """
    AND of all expressions (against labels) and fields (metadata.name only).
    A term with no expressions matches.
    """
    labels = node.metadata.labels
    if not all(
        match_requirement(expr, labels, allow_numeric=allow_numeric)
        for expr in term.match_expressions
    ):
        return False

    node_fields = {"metadata.name": node.metadata.name}
    return all(
        match_requirement(expr, node_fields, allow_numeric=False)
        for expr in term.match_fields
    )


def match_label_selector(selector: LabelSelector, labels: Mapping[str, str]) -> bool:
    if any(labels.get(k) != v for k, v in selector.match_labels.items()):
        return False
    return all(
        match_requirement(expr, labels, allow_numeric=False)
        for expr in selector.match_expressions
    )


def tolerates(toleration: Toleration, taint: Taint) -> bool:
    # An empty key with Exists tolerates everything.
    if not toleration.key and toleration.operator == TolerationOperator.EXISTS:
        return True
    if toleration.key != taint.key:
        return False
    if toleration.effect and toleration.effect != taint.effect:
        return False
    if toleration.operator == TolerationOperator.EXISTS:
        return True
    return (toleration.value or "") == (taint.value or "")


def untolerated_taints(pod: Pod, node: Node) -> list[Taint]:
    return [
        taint
        for taint in node.spec.taints
        if taint.effect in BLOCKING_EFFECTS
        and not any(tolerates(t, taint) for t in pod.spec.tolerations)
    ]


def _format_taint(taint: Taint) -> str:
    return f"{{{taint.key}: {taint.value or ''}}}"


# ----------------------------
# Filter plugins
# ----------------------------


class FilterPlugin:
    """
    Base class for filter-stage predicates.
    """

    name: str = "BaseFilter"
    # Label used by get_scheduling_failure_reasons().
    reason: str = "Unknown"
    # Fragment used in the "0/N nodes are available" message.
    message: str = "node(s) were filtered out"

    def filter(self, node: Node, ctx: SchedulingContext) -> bool:
        raise NotImplementedError

    def failure_message(self, node: Node, ctx: SchedulingContext) -> str:
        return self.message


class NodeReadyFilter(FilterPlugin):
    name = "NodeReady"
    reason = "NodeNotReady"
    message = "node(s) were not ready"

    def filter(self, node, ctx):
        return is_node_ready(node)


class NodeUnschedulableFilter(FilterPlugin):
    name = "NodeUnschedulable"
    reason = "NodeUnschedulable"
    message = "node(s) were unschedulable"

    def filter(self, node, ctx):
        return not node.spec.unschedulable


class NodeSelectorFilter(FilterPlugin):
    name = "NodeSelector"
    reason = "NodeSelectorMismatch"
    message = "node(s) didn't match Pod's node affinity/selector"

    def filter(self, node, ctx):
        labels = node.metadata.labels
        return all(labels.get(k) == v for k, v in ctx.pod.spec.node_selector.items())


class NodeAffinityFilter(FilterPlugin):
    name = "NodeAffinity"
    reason = "NodeAffinityMismatch"
    message = "node(s) didn't match Pod's node affinity/selector"

    def filter(self, node, ctx):
        affinity = ctx.pod.spec.affinity
        node_affinity = affinity.node_affinity if affinity else None
        if node_affinity is None:
            return True
        terms = node_affinity.required_during_scheduling_ignored_during_execution
        if terms is None:
            return True
        return any(match_node_selector_term(term, node) for term in terms)


class TaintTolerationFilter(FilterPlugin):
    name = "TaintToleration"
    reason = "TaintToleration"
    message = "node(s) had untolerated taint"

    def filter(self, node, ctx):
        return not untolerated_taints(ctx.pod, node)

    def failure_message(self, node, ctx):
        taints = untolerated_taints(ctx.pod, node)
        if not taints:
            return self.message
        return f"{self.message} {_format_taint(taints[0])}"


class PodCapacityFilter(FilterPlugin):
    name = "NodeResourcesFit"
    reason = "InsufficientResources"
    message = "Too many pods"

    def filter(self, node, ctx):
        return ctx.pod_count(node) < ctx.capacity(node)


DEFAULT_FILTERS: tuple[FilterPlugin, ...] = (
    NodeReadyFilter(),
    NodeUnschedulableFilter(),
    NodeSelectorFilter(),
    NodeAffinityFilter(),
    TaintTolerationFilter(),
    PodCapacityFilter(),
)

# ----------------------------
# Score plugins
# ----------------------------


class ScorePlugin:
    """
    Base class for score-stage functions. Scores are signed integers and are
    summed across plugins.
    """

    name: str = "BaseScore"

    def score(self, node: Node, ctx: SchedulingContext) -> int:
        raise NotImplementedError


class ResourceBalanceScore(ScorePlugin):
    name = "ResourceBalance"
    max_score = 50

    def score(self, node, ctx):
        capacity = ctx.capacity(node)
        if capacity <= 0:
            return 0
        free = (capacity - ctx.pod_count(node)) / capacity
        # Half-up rounding, not Python's round-half-even.
        return math.floor(free * self.max_score + 0.5)


class NodeAffinityPreferenceScore(ScorePlugin):
    name = "NodeAffinityPreference"

    def score(self, node, ctx):
        affinity = ctx.pod.spec.affinity
        if affinity is None or affinity.node_affinity is None:
            return 0
        total = 0
        for pref in affinity.node_affinity.preferred_during_scheduling_ignored_during_execution:
            if match_node_selector_term(pref.preference, node, allow_numeric=False):
                total += pref.weight
        return total


def pod_affinity_term_matches(
    term: PodAffinityTerm, node: Node, state: ClusterState
) -> bool:
    """
    True when some scheduled pod in the node's topology domain (nodes sharing
    the term's topologyKey value) matches the term's selector.
    """
    selector = term.label_selector
    if selector is None or selector.is_empty():
        return False

    topology_value = node.metadata.labels.get(term.topology_key)
    if not topology_value:
        return False

    domain = {
        n.metadata.name
        for n in state.nodes
        if n.metadata.labels.get(term.topology_key) == topology_value
    }

    for p in state.pods:
        if p.spec.node_name not in domain:
            continue
        if term.namespaces and (p.metadata.namespace or "default") not in term.namespaces:
            continue
        if match_label_selector(selector, p.metadata.labels):
            return True
    return False


class PodAffinityPreferenceScore(ScorePlugin):
    name = "InterPodAffinity"

    def score(self, node, ctx):
        affinity = ctx.pod.spec.affinity
        if affinity is None:
            return 0

        total = 0
        if affinity.pod_affinity is not None:
            for pref in affinity.pod_affinity.preferred_during_scheduling_ignored_during_execution:
                if pod_affinity_term_matches(pref.pod_affinity_term, node, ctx.state):
                    total += pref.weight

        if affinity.pod_anti_affinity is not None:
            for pref in affinity.pod_anti_affinity.preferred_during_scheduling_ignored_during_execution:
                if pod_affinity_term_matches(pref.pod_affinity_term, node, ctx.state):
                    total -= pref.weight

        return total


class ImageLocalityScore(ScorePlugin):
    """
    Extension point. Nodes do not track their image cache, so every node
    scores zero.
    """

    name = "ImageLocality"

    def score(self, node, ctx):
        return 0


DEFAULT_SCORERS: tuple[ScorePlugin, ...] = (
    ResourceBalanceScore(),
    NodeAffinityPreferenceScore(),
    PodAffinityPreferenceScore(),
    ImageLocalityScore(),
)

# ----------------------------
# Scheduling
# ----------------------------


def _first_failure(
    node: Node, ctx: SchedulingContext, filters: Sequence[FilterPlugin]
) -> FilterPlugin | None:
    for f in filters:
        if not f.filter(node, ctx):
            return f
    return None


def unschedulable_message(
    ctx: SchedulingContext, filters: Sequence[FilterPlugin] = DEFAULT_FILTERS
) -> str:
    nodes = ctx.state.nodes
    if not nodes:
        return "no nodes available to schedule pods"

    counts: Counter[str] = Counter()
    for node in nodes:
        failed = _first_failure(node, ctx, filters)
        if failed is not None:
            counts[failed.failure_message(node, ctx)] += 1

    parts = [f"{count} {fragment}" for fragment, count in sorted(counts.items())]
    return f"0/{len(nodes)} nodes are available: {', '.join(parts)}."


def schedule_pod(
    pod: Pod,
    state: ClusterState,
    config: SimulatorConfig | None = None,
    *,
    filters: Sequence[FilterPlugin] = DEFAULT_FILTERS,
    scorers: Sequence[ScorePlugin] = DEFAULT_SCORERS,
) -> ScheduleResult:
    """
    Pick a node for `pod`.

    - A pod that already names a node is validated, not rescheduled
    - Filter: drop nodes failing any filter plugin
    - Score: sum all score plugins per candidate
    - Select: highest score wins, ties keep node order (stable sort)

    Failures are returned as results, never raised.
    """
    config = config or DEFAULT_CONFIG
    pod_name = pod.metadata.name

    if pod.spec.node_name:
        node_name = pod.spec.node_name
        node = find_node(state, node_name)
        if node is None:
            return ScheduleResult(
                success=False,
                reason=ErrorKind.NODE_NOT_FOUND,
                message=f'node "{node_name}" not found',
            )
        if not is_node_ready(node):
            return ScheduleResult(
                success=False,
                reason=ErrorKind.NODE_NOT_READY,
                message=f'node "{node_name}" is not ready',
            )
        return ScheduleResult(success=True, node_name=node_name)

    ctx = SchedulingContext(pod, state, config)

    feasible = [
        node for node in state.nodes if _first_failure(node, ctx, filters) is None
    ]
    logger.debug(
        "pod %s: %d/%d nodes passed filters",
        pod_name,
        len(feasible),
        len(state.nodes),
    )

    if not feasible:
        return ScheduleResult(
            success=False,
            reason=ErrorKind.UNSCHEDULABLE,
            message=unschedulable_message(ctx, filters),
        )

    scored = [(node, sum(s.score(node, ctx) for s in scorers)) for node in feasible]
    scored.sort(key=lambda item: item[1], reverse=True)

    chosen = scored[0][0].metadata.name
    logger.debug("pod %s: selected %s from %s", pod_name, chosen, scored)

    return ScheduleResult(
        success=True,
        node_name=chosen,
        scores={node.metadata.name: score for node, score in scored},
    )


def get_scheduling_failure_reasons(
    pod: Pod,
    state: ClusterState,
    config: SimulatorConfig | None = None,
    *,
    filters: Sequence[FilterPlugin] = DEFAULT_FILTERS,
) -> list[str]:
    """
    Diagnostic only: every filter that rejects each node, e.g.
    "node01: NodeNotReady, TaintToleration". Nodes passing all filters are
    omitted.
    """
    ctx = SchedulingContext(pod, state, config or DEFAULT_CONFIG)
    reasons = []
    for node in state.nodes:
        failed = [f.reason for f in filters if not f.filter(node, ctx)]
        if failed:
            reasons.append(f"{node.metadata.name}: {', '.join(failed)}")
    return reasons


# ----------------------------
# Bind
# ----------------------------


def _with_condition(
    conditions: tuple[PodCondition, ...], condition: PodCondition
) -> tuple[PodCondition, ...]:
    kept = tuple(c for c in conditions if c.type != condition.type)
    return kept + (condition,)


def _internal_ip(node: Node | None) -> str | None:
    if node is None:
        return None
    for addr in node.status.addresses:
        if addr.type == "InternalIP":
            return addr.address
    return None


def bind_pod(
    pod: Pod,
    state: ClusterState,
    config: SimulatorConfig | None = None,
    *,
    now: str | None = None,
) -> BindResult:
    """
    Schedule `pod` and commit the decision into a new state.

    The pod is stored (created or replaced) with spec.nodeName and a
    PodScheduled condition, and a Scheduled / FailedScheduling event is
    appended. A failed schedule leaves spec.nodeName untouched and carries
    the failure reason (Unschedulable, NodeNotFound, NodeNotReady) on the
    condition.
    """
    config = config or DEFAULT_CONFIG
    ts = now or utc_now()
    result = schedule_pod(pod, state, config)
    involved = InvolvedObject(
        kind="Pod", name=pod.metadata.name, namespace=pod.metadata.namespace or "default"
    )

    if result.success:
        node = find_node(state, result.node_name)
        updated = replace(
            pod,
            spec=replace(pod.spec, node_name=result.node_name),
            status=replace(
                pod.status,
                host_ip=pod.status.host_ip or _internal_ip(node),
                conditions=_with_condition(
                    pod.status.conditions,
                    PodCondition(type="PodScheduled", status="True", last_transition_time=ts),
                ),
            ),
        )
        event = new_event(
            EventType.NORMAL,
            "Scheduled",
            f"Successfully assigned {pod_display_name(pod)} to {result.node_name}",
            involved,
            source=config.scheduler_name,
            now=ts,
        )
    else:
        updated = replace(
            pod,
            status=replace(
                pod.status,
                conditions=_with_condition(
                    pod.status.conditions,
                    PodCondition(
                        type="PodScheduled",
                        status="False",
                        reason=result.reason.value,
                        message=result.message,
                        last_transition_time=ts,
                    ),
                ),
            ),
        )
        event = new_event(
            EventType.WARNING,
            "FailedScheduling",
            result.message or "",
            involved,
            source=config.scheduler_name,
            now=ts,
        )

    new_state = append_events(put_resource(state, updated), [event])
    return BindResult(schedule=result, new_state=new_state, events=(event,))
