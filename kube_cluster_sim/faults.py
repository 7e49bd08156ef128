"""
Fault injection and repair.

Each fault type maps to a pair of pure transitions (inject, repair). A
transition locates its target, rewrites the affected status fields into a new
ClusterState and appends the events it emits. Failed lookups return the input
state untouched.
"""

import logging
import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass, replace
from enum import Enum

from kube_cluster_sim.config import DEFAULT_CONFIG, SimulatorConfig
from kube_cluster_sim.errors import ErrorKind
from kube_cluster_sim.model import (
    ClusterState,
    ComponentStatus,
    ContainerState,
    ContainerStateRunning,
    ContainerStateTerminated,
    ContainerStateWaiting,
    ContainerStatus,
    EventType,
    InvolvedObject,
    K8sEvent,
    MemberStatus,
    Node,
    NodeCondition,
    Pod,
    PodPhase,
    node_condition,
    pod_display_name,
)
from kube_cluster_sim.state import (
    append_events,
    find_node,
    find_pod,
    remove_pod,
    replace_node,
    replace_pod,
)
from kube_cluster_sim.timeline import new_event, utc_now

logger = logging.getLogger(__name__)


class FaultType(str, Enum):
    NODE_NOT_READY = "node-not-ready"
    NODE_DISK_PRESSURE = "node-disk-pressure"
    NODE_MEMORY_PRESSURE = "node-memory-pressure"
    NODE_PID_PRESSURE = "node-pid-pressure"
    NODE_NETWORK_UNAVAILABLE = "node-network-unavailable"
    POD_CRASH_LOOP = "pod-crash-loop"
    POD_IMAGE_PULL_ERROR = "pod-image-pull-error"
    POD_OOM_KILLED = "pod-oom-killed"
    POD_EVICTED = "pod-evicted"
    ETCD_UNHEALTHY = "etcd-unhealthy"
    APISERVER_DOWN = "apiserver-down"
    SCHEDULER_DOWN = "scheduler-down"
    CONTROLLER_MANAGER_DOWN = "controller-manager-down"
    KUBELET_DOWN = "kubelet-down"
    DNS_FAILURE = "dns-failure"
    NETWORK_PARTITION = "network-partition"


class Severity(str, Enum):
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass(frozen=True)
class FaultConfig:
    type: FaultType | str
    target: str
    # Seconds; enforced by the caller re-invoking repair_fault().
    duration: int | None = None
    severity: Severity | str | None = None
    # Narrows pod lookup for pod faults.
    namespace: str | None = None


@dataclass(frozen=True)
class FaultResult:
    success: bool
    message: str
    new_state: ClusterState
    events: tuple[K8sEvent, ...] = ()
    reason: ErrorKind | None = None


@dataclass(frozen=True)
class ActiveFault:
    type: FaultType | str
    target: str
    description: str


@dataclass(frozen=True)
class _Env:
    now: str
    source: str

    def event(
        self, event_type: EventType, reason: str, message: str, involved: InvolvedObject
    ) -> K8sEvent:
        return new_event(
            event_type, reason, message, involved, source=self.source, now=self.now
        )


Transition = Callable[[FaultConfig, ClusterState, _Env], FaultResult]


@dataclass(frozen=True)
class FaultHandlers:
    inject: Transition
    # None: no in-place repair exists.
    repair: Transition | None = None


# ----------------------------
# Result helpers
# ----------------------------


def _failure(state: ClusterState, reason: ErrorKind, message: str) -> FaultResult:
    return FaultResult(success=False, message=message, new_state=state, reason=reason)


def _success(
    state: ClusterState, message: str, events: Iterable[K8sEvent]
) -> FaultResult:
    events = tuple(events)
    return FaultResult(
        success=True,
        message=message,
        new_state=append_events(state, events),
        events=events,
    )


def _node_not_found(state: ClusterState, name: str) -> FaultResult:
    return _failure(state, ErrorKind.NODE_NOT_FOUND, f'Node "{name}" not found')


def _pod_not_found(state: ClusterState, name: str) -> FaultResult:
    return _failure(state, ErrorKind.POD_NOT_FOUND, f'Pod "{name}" not found')


def _node_ref(name: str) -> InvolvedObject:
    return InvolvedObject(kind="Node", name=name)


def _pod_ref(pod: Pod) -> InvolvedObject:
    return InvolvedObject(
        kind="Pod", name=pod.metadata.name, namespace=pod.metadata.namespace or "default"
    )


# ----------------------------
# Node transitions
# ----------------------------

CONDITION_REASONS = {
    "DiskPressure": "KubeletHasDiskPressure",
    "MemoryPressure": "KubeletHasInsufficientMemory",
    "PIDPressure": "KubeletHasInsufficientPID",
    "NetworkUnavailable": "NoRouteCreated",
}


def _set_condition(
    node: Node,
    cond_type: str,
    status: str,
    *,
    now: str,
    reason: str | None = None,
    message: str | None = None,
) -> Node:
    existing = node_condition(node, cond_type)
    if existing is None:
        updated = NodeCondition(
            type=cond_type,
            status=status,
            reason=reason,
            message=message,
            last_heartbeat_time=now,
            last_transition_time=now,
        )
        conditions = node.status.conditions + (updated,)
    else:
        updated = replace(
            existing,
            status=status,
            reason=reason,
            message=message,
            last_heartbeat_time=now,
            last_transition_time=(
                now if existing.status != status else existing.last_transition_time
            ),
        )
        conditions = tuple(
            updated if c.type == cond_type else c for c in node.status.conditions
        )
    return replace(node, status=replace(node.status, conditions=conditions))


def _set_pod_phases(
    state: ClusterState,
    node_name: str,
    phase: PodPhase,
    only_from: PodPhase | None = None,
) -> ClusterState:
    pods = tuple(
        replace(p, status=replace(p.status, phase=phase))
        if p.spec.node_name == node_name
        and (only_from is None or p.status.phase == only_from)
        else p
        for p in state.pods
    )
    return replace(state, pods=pods)


def _mark_node_not_ready(
    state: ClusterState, node: Node, env: _Env
) -> tuple[ClusterState, list[K8sEvent]]:
    name = node.metadata.name
    updated = _set_condition(
        node,
        "Ready",
        "False",
        now=env.now,
        reason="KubeletNotReady",
        message="Kubelet stopped posting node status",
    )
    state = _set_pod_phases(replace_node(state, updated), name, PodPhase.UNKNOWN)
    event = env.event(
        EventType.WARNING,
        "NodeNotReady",
        f"Node {name} status is now: NodeNotReady",
        _node_ref(name),
    )
    return state, [event]


def _mark_node_ready(
    state: ClusterState, node: Node, env: _Env
) -> tuple[ClusterState, list[K8sEvent]]:
    name = node.metadata.name
    updated = _set_condition(
        node,
        "Ready",
        "True",
        now=env.now,
        reason="KubeletReady",
        message="kubelet is posting ready status",
    )
    state = _set_pod_phases(
        replace_node(state, updated), name, PodPhase.RUNNING, only_from=PodPhase.UNKNOWN
    )
    event = env.event(
        EventType.NORMAL,
        "NodeReady",
        f"Node {name} status is now: NodeReady",
        _node_ref(name),
    )
    return state, [event]


def inject_node_not_ready(config, state, env):
    node = find_node(state, config.target)
    if node is None:
        return _node_not_found(state, config.target)
    new_state, events = _mark_node_not_ready(state, node, env)
    return _success(new_state, f'Node "{config.target}" is now NotReady', events)


def repair_node_not_ready(config, state, env):
    node = find_node(state, config.target)
    if node is None:
        return _node_not_found(state, config.target)
    new_state, events = _mark_node_ready(state, node, env)
    return _success(new_state, f'Node "{config.target}" is now Ready', events)


def _inject_node_condition(cond_type: str) -> Transition:
    def inject(config, state, env):
        node = find_node(state, config.target)
        if node is None:
            return _node_not_found(state, config.target)
        updated = _set_condition(
            node,
            cond_type,
            "True",
            now=env.now,
            reason=CONDITION_REASONS.get(cond_type),
            message=f"Node has {cond_type}",
        )
        event = env.event(
            EventType.WARNING,
            cond_type,
            f"Node {config.target} has {cond_type}",
            _node_ref(config.target),
        )
        return _success(
            replace_node(state, updated),
            f'Node "{config.target}" now has {cond_type}',
            [event],
        )

    inject.__name__ = f"inject_{cond_type.lower()}"
    return inject


def repair_node_conditions(config, state, env):
    """
    Clears every condition except Ready and forces Ready=True, whichever
    pressure condition was injected.
    """
    node = find_node(state, config.target)
    if node is None:
        return _node_not_found(state, config.target)

    ready = node_condition(node, "Ready")
    if ready is None:
        ready = NodeCondition(type="Ready", status="True", last_transition_time=env.now)
    elif ready.status != "True":
        ready = replace(ready, status="True", last_transition_time=env.now)
    ready = replace(
        ready, reason="KubeletReady", message="kubelet is posting ready status",
        last_heartbeat_time=env.now,
    )
    updated = replace(node, status=replace(node.status, conditions=(ready,)))

    event = env.event(
        EventType.NORMAL,
        "NodeRecovered",
        f"Node {config.target} conditions cleared",
        _node_ref(config.target),
    )
    return _success(
        replace_node(state, updated),
        f'Node "{config.target}" conditions repaired',
        [event],
    )


def inject_network_partition(config, state, env):
    node = find_node(state, config.target)
    if node is None:
        return _node_not_found(state, config.target)
    updated = _set_condition(
        node,
        "NetworkUnavailable",
        "True",
        now=env.now,
        reason="NetworkPartition",
        message="Node is partitioned from the cluster network",
    )
    new_state = _set_pod_phases(
        replace_node(state, updated), config.target, PodPhase.UNKNOWN
    )
    event = env.event(
        EventType.WARNING,
        "NetworkUnavailable",
        f"Node {config.target} is partitioned from the cluster network",
        _node_ref(config.target),
    )
    return _success(new_state, f'Network partition on node "{config.target}"', [event])


def repair_network_partition(config, state, env):
    node = find_node(state, config.target)
    if node is None:
        return _node_not_found(state, config.target)
    updated = _set_condition(
        node,
        "NetworkUnavailable",
        "False",
        now=env.now,
        reason="RouteCreated",
        message="RouteController created a route",
    )
    new_state = _set_pod_phases(
        replace_node(state, updated),
        config.target,
        PodPhase.RUNNING,
        only_from=PodPhase.UNKNOWN,
    )
    event = env.event(
        EventType.NORMAL,
        "NetworkAvailable",
        f"Node {config.target} rejoined the cluster network",
        _node_ref(config.target),
    )
    return _success(
        new_state, f'Network partition on node "{config.target}" healed', [event]
    )


# ----------------------------
# Pod transitions
# ----------------------------


def _container_statuses(pod: Pod) -> tuple[ContainerStatus, ...]:
    if pod.status.container_statuses:
        return pod.status.container_statuses
    return tuple(
        ContainerStatus(name=c.name, image=c.image) for c in pod.spec.containers
    )


def _first_container(pod: Pod) -> tuple[str, str]:
    statuses = _container_statuses(pod)
    if statuses:
        return statuses[0].name, statuses[0].image
    return "<unknown>", "<unknown>"


def _rewrite_pod(
    state: ClusterState,
    pod: Pod,
    phase: PodPhase,
    rewrite: Callable[[ContainerStatus], ContainerStatus],
) -> ClusterState:
    statuses = tuple(rewrite(cs) for cs in _container_statuses(pod))
    updated = replace(
        pod,
        status=replace(pod.status, phase=phase, container_statuses=statuses),
    )
    return replace_pod(state, updated)


def inject_pod_crash_loop(config, state, env):
    pod = find_pod(state, config.target, config.namespace)
    if pod is None:
        return _pod_not_found(state, config.target)

    def crash(cs: ContainerStatus) -> ContainerStatus:
        return replace(
            cs,
            ready=False,
            restart_count=cs.restart_count + 5,
            state=ContainerState(
                waiting=ContainerStateWaiting(
                    reason="CrashLoopBackOff",
                    message=(
                        f"back-off 5m0s restarting failed container={cs.name} "
                        f"pod={pod.metadata.name}"
                    ),
                )
            ),
            last_state=ContainerState(
                terminated=ContainerStateTerminated(
                    exit_code=1, reason="Error", finished_at=env.now
                )
            ),
        )

    container, _ = _first_container(pod)
    event = env.event(
        EventType.WARNING,
        "BackOff",
        f"Back-off restarting failed container {container} in pod {pod_display_name(pod)}",
        _pod_ref(pod),
    )
    return _success(
        _rewrite_pod(state, pod, PodPhase.CRASH_LOOP_BACK_OFF, crash),
        f'Pod "{config.target}" is now in CrashLoopBackOff',
        [event],
    )


def inject_pod_image_pull_error(config, state, env):
    pod = find_pod(state, config.target, config.namespace)
    if pod is None:
        return _pod_not_found(state, config.target)

    def pull_error(cs: ContainerStatus) -> ContainerStatus:
        return replace(
            cs,
            ready=False,
            state=ContainerState(
                waiting=ContainerStateWaiting(
                    reason="ImagePullBackOff",
                    message=f'Back-off pulling image "{cs.image}"',
                )
            ),
        )

    _, image = _first_container(pod)
    event = env.event(
        EventType.WARNING,
        "Failed",
        f'Failed to pull image "{image}": rpc error: code = NotFound '
        "desc = failed to pull and unpack image",
        _pod_ref(pod),
    )
    return _success(
        _rewrite_pod(state, pod, PodPhase.IMAGE_PULL_BACK_OFF, pull_error),
        f'Pod "{config.target}" has ImagePullBackOff error',
        [event],
    )


def inject_pod_oom_killed(config, state, env):
    pod = find_pod(state, config.target, config.namespace)
    if pod is None:
        return _pod_not_found(state, config.target)

    killed = ContainerStateTerminated(
        exit_code=137, reason="OOMKilled", finished_at=env.now
    )

    def oom(cs: ContainerStatus) -> ContainerStatus:
        return replace(
            cs,
            ready=False,
            restart_count=cs.restart_count + 1,
            state=ContainerState(terminated=killed),
            last_state=ContainerState(terminated=killed),
        )

    container, _ = _first_container(pod)
    event = env.event(
        EventType.WARNING,
        "OOMKilling",
        f"Memory limit exceeded, container {container} killed",
        _pod_ref(pod),
    )
    return _success(
        _rewrite_pod(state, pod, PodPhase.ERROR, oom),
        f'Pod "{config.target}" was OOMKilled',
        [event],
    )


def inject_pod_evicted(config, state, env):
    """
    Eviction deletes the pod. There is no in-place repair: the owner
    (or the caller) has to create a replacement.
    """
    pod = find_pod(state, config.target, config.namespace)
    if pod is None:
        return _pod_not_found(state, config.target)

    event = env.event(
        EventType.WARNING,
        "Evicted",
        "The node was low on resource: memory.",
        _pod_ref(pod),
    )
    return _success(remove_pod(state, pod), f'Pod "{config.target}" was evicted', [event])


def repair_pod(config, state, env):
    pod = find_pod(state, config.target, config.namespace)
    if pod is None:
        return _pod_not_found(state, config.target)

    def restart(cs: ContainerStatus) -> ContainerStatus:
        return replace(
            cs,
            ready=True,
            state=ContainerState(running=ContainerStateRunning(started_at=env.now)),
        )

    container, _ = _first_container(pod)
    event = env.event(
        EventType.NORMAL, "Started", f"Started container {container}", _pod_ref(pod)
    )
    return _success(
        _rewrite_pod(state, pod, PodPhase.RUNNING, restart),
        f'Pod "{config.target}" is now Running',
        [event],
    )


# ----------------------------
# etcd transitions
# ----------------------------


def _etcd_member_index(state: ClusterState, name: str) -> int | None:
    for i, member in enumerate(state.etcd.members):
        if member.name == name:
            return i
    return None


def inject_etcd_unhealthy(config, state, env):
    idx = _etcd_member_index(state, config.target)
    if idx is None:
        return _failure(
            state,
            ErrorKind.ETCD_MEMBER_NOT_FOUND,
            f'ETCD member "{config.target}" not found',
        )

    members = list(state.etcd.members)
    was_leader = members[idx].is_leader
    members[idx] = replace(members[idx], status=MemberStatus.UNHEALTHY, is_leader=False)

    message = f"ETCD member {config.target} is unhealthy"
    if was_leader:
        for i, m in enumerate(members):
            if i != idx and m.status == MemberStatus.HEALTHY:
                members[i] = replace(m, is_leader=True)
                message += f", leadership moved to {m.name}"
                break

    event = env.event(EventType.WARNING, "EtcdUnhealthy", message, _node_ref(config.target))
    new_state = replace(state, etcd=replace(state.etcd, members=tuple(members)))
    return _success(new_state, f'ETCD member "{config.target}" is now unhealthy', [event])


def repair_etcd(config, state, env):
    idx = _etcd_member_index(state, config.target)
    if idx is None:
        return _failure(
            state,
            ErrorKind.ETCD_MEMBER_NOT_FOUND,
            f'ETCD member "{config.target}" not found',
        )

    members = list(state.etcd.members)
    has_leader = any(m.is_leader for i, m in enumerate(members) if i != idx)
    members[idx] = replace(
        members[idx], status=MemberStatus.HEALTHY, is_leader=not has_leader
    )

    event = env.event(
        EventType.NORMAL,
        "EtcdHealthy",
        f"ETCD member {config.target} is healthy",
        _node_ref(config.target),
    )
    new_state = replace(state, etcd=replace(state.etcd, members=tuple(members)))
    return _success(new_state, f'ETCD member "{config.target}" is now healthy', [event])


# ----------------------------
# Component transitions
# ----------------------------

# Fault type -> system component it stops.
COMPONENT_FAULTS: dict[FaultType, str] = {
    FaultType.APISERVER_DOWN: "kube-apiserver",
    FaultType.SCHEDULER_DOWN: "kube-scheduler",
    FaultType.CONTROLLER_MANAGER_DOWN: "kube-controller-manager",
    FaultType.DNS_FAILURE: "coredns",
    FaultType.KUBELET_DOWN: "kubelet",
}


def _set_component(
    state: ClusterState,
    component: str,
    node: str,
    status: ComponentStatus,
    *,
    message: str | None,
    heartbeat: str | None,
) -> tuple[ClusterState, int]:
    """
    Rewrite every `component` record hosted on `node`. Returns the new state
    and the number of records changed.
    """
    changed = 0
    components = []
    for c in state.system_components:
        if c.name == component and c.node == node:
            c = replace(
                c,
                status=status,
                message=message,
                last_heartbeat=heartbeat or c.last_heartbeat,
            )
            changed += 1
        components.append(c)
    return replace(state, system_components=tuple(components)), changed


def _component_transition(component: str, down: bool) -> Transition:
    def transition(config, state, env):
        if not config.target:
            return _failure(
                state, ErrorKind.COMPONENT_NOT_FOUND, f"{component} fault needs a target node"
            )
        where = f' on "{config.target}"'
        if down:
            new_state, changed = _set_component(
                state,
                component,
                config.target,
                ComponentStatus.STOPPED,
                message="Component crashed",
                heartbeat=None,
            )
        else:
            new_state, changed = _set_component(
                state,
                component,
                config.target,
                ComponentStatus.RUNNING,
                message=None,
                heartbeat=env.now,
            )
        if not changed:
            return _failure(
                state, ErrorKind.COMPONENT_NOT_FOUND, f"{component} not found{where}"
            )

        involved = _node_ref(config.target)
        if down:
            event = env.event(
                EventType.WARNING, "ComponentDown", f"{component} is not running{where}", involved
            )
            message = f"{component} is now down{where}"
        else:
            event = env.event(
                EventType.NORMAL, "ComponentStarted", f"{component} is now running{where}", involved
            )
            message = f"{component} is now running{where}"
        return _success(new_state, message, [event])

    transition.__name__ = f"{'inject' if down else 'repair'}_{component.replace('-', '_')}"
    return transition


def inject_kubelet_down(config, state, env):
    node = find_node(state, config.target)
    if node is None:
        return _node_not_found(state, config.target)

    new_state, changed = _set_component(
        state,
        "kubelet",
        config.target,
        ComponentStatus.STOPPED,
        message="Kubelet stopped",
        heartbeat=None,
    )
    # Nodes without a kubelet record only get the readiness cascade.
    events = []
    if changed:
        events.append(
            env.event(
                EventType.WARNING,
                "ComponentDown",
                f"kubelet is not running on node {config.target}",
                _node_ref(config.target),
            )
        )
    new_state, cascade = _mark_node_not_ready(new_state, node, env)
    return _success(new_state, f'Kubelet on "{config.target}" is now down', events + cascade)


def repair_kubelet(config, state, env):
    node = find_node(state, config.target)
    if node is None:
        return _node_not_found(state, config.target)

    new_state, changed = _set_component(
        state,
        "kubelet",
        config.target,
        ComponentStatus.RUNNING,
        message=None,
        heartbeat=env.now,
    )
    # Nodes without a kubelet record only get the readiness cascade.
    events = []
    if changed:
        events.append(
            env.event(
                EventType.NORMAL,
                "ComponentStarted",
                f"kubelet is now running on node {config.target}",
                _node_ref(config.target),
            )
        )
    new_state, cascade = _mark_node_ready(new_state, node, env)
    return _success(new_state, f'Kubelet on "{config.target}" is now running', events + cascade)


# ----------------------------
# Dispatch table
# ----------------------------

FAULT_HANDLERS: dict[FaultType, FaultHandlers] = {
    FaultType.NODE_NOT_READY: FaultHandlers(inject_node_not_ready, repair_node_not_ready),
    FaultType.NODE_DISK_PRESSURE: FaultHandlers(
        _inject_node_condition("DiskPressure"), repair_node_conditions
    ),
    FaultType.NODE_MEMORY_PRESSURE: FaultHandlers(
        _inject_node_condition("MemoryPressure"), repair_node_conditions
    ),
    FaultType.NODE_PID_PRESSURE: FaultHandlers(
        _inject_node_condition("PIDPressure"), repair_node_conditions
    ),
    FaultType.NODE_NETWORK_UNAVAILABLE: FaultHandlers(
        _inject_node_condition("NetworkUnavailable"), repair_node_conditions
    ),
    FaultType.POD_CRASH_LOOP: FaultHandlers(inject_pod_crash_loop, repair_pod),
    FaultType.POD_IMAGE_PULL_ERROR: FaultHandlers(inject_pod_image_pull_error, repair_pod),
    FaultType.POD_OOM_KILLED: FaultHandlers(inject_pod_oom_killed, repair_pod),
    FaultType.POD_EVICTED: FaultHandlers(inject_pod_evicted, None),
    FaultType.ETCD_UNHEALTHY: FaultHandlers(inject_etcd_unhealthy, repair_etcd),
    FaultType.APISERVER_DOWN: FaultHandlers(
        _component_transition("kube-apiserver", down=True),
        _component_transition("kube-apiserver", down=False),
    ),
    FaultType.SCHEDULER_DOWN: FaultHandlers(
        _component_transition("kube-scheduler", down=True),
        _component_transition("kube-scheduler", down=False),
    ),
    FaultType.CONTROLLER_MANAGER_DOWN: FaultHandlers(
        _component_transition("kube-controller-manager", down=True),
        _component_transition("kube-controller-manager", down=False),
    ),
    FaultType.KUBELET_DOWN: FaultHandlers(inject_kubelet_down, repair_kubelet),
    FaultType.DNS_FAILURE: FaultHandlers(
        _component_transition("coredns", down=True),
        _component_transition("coredns", down=False),
    ),
    FaultType.NETWORK_PARTITION: FaultHandlers(
        inject_network_partition, repair_network_partition
    ),
}

_missing = set(FaultType) - set(FAULT_HANDLERS)
if _missing:
    raise RuntimeError(f"Fault types without handlers: {sorted(m.value for m in _missing)}")


# ----------------------------
# Entry points
# ----------------------------


def _parse_type(value: FaultType | str) -> FaultType | None:
    try:
        return FaultType(value)
    except ValueError:
        return None


def _env(config: SimulatorConfig | None, now: str | None) -> _Env:
    return _Env(now=now or utc_now(), source=(config or DEFAULT_CONFIG).event_source)


def inject_fault(
    config: FaultConfig,
    state: ClusterState,
    sim_config: SimulatorConfig | None = None,
    *,
    now: str | None = None,
) -> FaultResult:
    fault_type = _parse_type(config.type)
    if fault_type is None:
        return _failure(
            state, ErrorKind.UNKNOWN_FAULT_TYPE, f"Unknown fault type: {config.type}"
        )

    logger.debug("inject %s -> %s", fault_type.value, config.target)
    return FAULT_HANDLERS[fault_type].inject(config, state, _env(sim_config, now))


def repair_fault(
    config: FaultConfig,
    state: ClusterState,
    sim_config: SimulatorConfig | None = None,
    *,
    now: str | None = None,
) -> FaultResult:
    fault_type = _parse_type(config.type)
    if fault_type is None:
        return _failure(
            state, ErrorKind.UNKNOWN_FAULT_TYPE, f"Unknown fault type: {config.type}"
        )

    repair = FAULT_HANDLERS[fault_type].repair
    if repair is None:
        return _failure(
            state,
            ErrorKind.CANNOT_REPAIR,
            f"Cannot repair fault type: {fault_type.value}",
        )

    logger.debug("repair %s -> %s", fault_type.value, config.target)
    return repair(config, state, _env(sim_config, now))


# ----------------------------
# Fault visibility
# ----------------------------

CONDITION_FAULTS: dict[str, FaultType] = {
    "DiskPressure": FaultType.NODE_DISK_PRESSURE,
    "MemoryPressure": FaultType.NODE_MEMORY_PRESSURE,
    "PIDPressure": FaultType.NODE_PID_PRESSURE,
    "NetworkUnavailable": FaultType.NODE_NETWORK_UNAVAILABLE,
}

_COMPONENT_TO_FAULT = {name: fault for fault, name in COMPONENT_FAULTS.items()}


def _condition_fault(condition: NodeCondition) -> FaultType | str:
    if condition.type == "NetworkUnavailable" and condition.reason == "NetworkPartition":
        return FaultType.NETWORK_PARTITION
    if condition.type in CONDITION_FAULTS:
        return CONDITION_FAULTS[condition.type]
    return "node-" + re.sub(r"(?<!^)(?=[A-Z])", "-", condition.type).lower()


def _is_oom_killed(pod: Pod) -> bool:
    return any(
        cs.state.terminated is not None and cs.state.terminated.reason == "OOMKilled"
        for cs in pod.status.container_statuses
    )


def get_active_faults(state: ClusterState) -> list[ActiveFault]:
    """
    Derive the current fault set from state alone, so faults introduced by
    any path are reported, not only those made by inject_fault().
    """
    faults: list[ActiveFault] = []

    for node in state.nodes:
        name = node.metadata.name
        ready = node_condition(node, "Ready")
        if ready is None or ready.status != "True":
            faults.append(
                ActiveFault(FaultType.NODE_NOT_READY, name, f"Node {name} is NotReady")
            )
        for condition in node.status.conditions:
            if condition.type != "Ready" and condition.status == "True":
                faults.append(
                    ActiveFault(
                        _condition_fault(condition),
                        name,
                        f"Node {name} has {condition.type}",
                    )
                )

    for pod in state.pods:
        name = pod.metadata.name
        if pod.status.phase == PodPhase.CRASH_LOOP_BACK_OFF:
            faults.append(
                ActiveFault(FaultType.POD_CRASH_LOOP, name, f"Pod {name} is in CrashLoopBackOff")
            )
        if pod.status.phase == PodPhase.IMAGE_PULL_BACK_OFF:
            faults.append(
                ActiveFault(
                    FaultType.POD_IMAGE_PULL_ERROR, name, f"Pod {name} has ImagePullBackOff"
                )
            )
        if _is_oom_killed(pod):
            faults.append(
                ActiveFault(FaultType.POD_OOM_KILLED, name, f"Pod {name} was OOMKilled")
            )

    for member in state.etcd.members:
        if member.status != MemberStatus.HEALTHY:
            faults.append(
                ActiveFault(
                    FaultType.ETCD_UNHEALTHY,
                    member.name,
                    f"ETCD member {member.name} is {member.status.value}",
                )
            )

    for component in state.system_components:
        if component.status != ComponentStatus.RUNNING:
            faults.append(
                ActiveFault(
                    _COMPONENT_TO_FAULT.get(component.name, f"{component.name}-down"),
                    component.node,
                    f"{component.name} on {component.node} is {component.status.value}",
                )
            )

    return faults
