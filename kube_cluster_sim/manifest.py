"""
Conversion between cluster-shaped mappings (camelCase keys, as kubectl shows
them) and the typed records in kube_cluster_sim.model.

This module sits on the boundary: it is the one place malformed input raises
(ManifestError). Everything past it works on validated records.
"""

from collections.abc import Callable, Mapping
from enum import Enum
from typing import Any

from kube_cluster_sim.errors import ManifestError
from kube_cluster_sim.model import (
    KIND_COLLECTIONS,
    Affinity,
    ClusterState,
    ComponentStatus,
    Container,
    ContainerState,
    ContainerStateRunning,
    ContainerStateTerminated,
    ContainerStateWaiting,
    ContainerStatus,
    ETCDBackup,
    ETCDCluster,
    ETCDMember,
    EventSource,
    InvolvedObject,
    K8sEvent,
    K8sResource,
    LabelSelector,
    LabelSelectorRequirement,
    Node,
    NodeAddress,
    NodeAffinity,
    NodeCondition,
    NodeSelectorTerm,
    NodeSpec,
    NodeStatus,
    ObjectMeta,
    Pod,
    PodAffinity,
    PodAffinityTerm,
    PodCondition,
    PodSpec,
    PodStatus,
    PreferredSchedulingTerm,
    Resource,
    SystemComponent,
    Taint,
    Toleration,
    UserContext,
    WeightedPodAffinityTerm,
)

# ----------------------------
# Generic helpers
# ----------------------------


def _value(v: Any) -> Any:
    return v.value if isinstance(v, Enum) else v


def _thaw(value: Any) -> Any:
    """
    Read-only mappings and tuples back to plain dicts and lists.
    """
    if isinstance(value, Mapping):
        return {k: _thaw(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_thaw(v) for v in value]
    return _value(value)


def _compact(d: dict[str, Any]) -> dict[str, Any]:
    """
    Drop None values and empty collections.
    """
    return {k: v for k, v in d.items() if v is not None and v != {} and v != []}


def _mapping(value: Any, what: str) -> dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ManifestError(f"{what} must be a mapping, got {type(value).__name__}")
    return dict(value)


def _list(value: Any, what: str) -> list[Any]:
    if value is None:
        return []
    if not isinstance(value, (list, tuple)):
        raise ManifestError(f"{what} must be a list, got {type(value).__name__}")
    return list(value)


def _required(obj: Mapping[str, Any], key: str, what: str) -> Any:
    value = obj.get(key)
    if value is None or value == "":
        raise ManifestError(f"{what} is missing required field '{key}'")
    return value


def _string_map(value: Any, what: str) -> dict[str, str]:
    return {str(k): "" if v is None else str(v) for k, v in _mapping(value, what).items()}


def _items(value: Any, what: str, convert: Callable[[dict[str, Any], str], Any]) -> tuple:
    return tuple(
        convert(_mapping(item, f"{what}[{i}]"), f"{what}[{i}]")
        for i, item in enumerate(_list(value, what))
    )


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


# ----------------------------
# Metadata
# ----------------------------


def meta_from_dict(obj: Mapping[str, Any], what: str) -> ObjectMeta:
    return ObjectMeta(
        name=str(_required(obj, "name", what)),
        namespace=obj.get("namespace"),
        labels=_string_map(obj.get("labels"), f"{what}.labels"),
        annotations=_string_map(obj.get("annotations"), f"{what}.annotations"),
        uid=obj.get("uid"),
        creation_timestamp=obj.get("creationTimestamp"),
        owner_references=_list(obj.get("ownerReferences"), f"{what}.ownerReferences"),
    )


def meta_to_dict(meta: ObjectMeta) -> dict[str, Any]:
    return _compact(
        {
            "name": meta.name,
            "namespace": meta.namespace,
            "labels": _thaw(meta.labels),
            "annotations": _thaw(meta.annotations),
            "uid": meta.uid,
            "creationTimestamp": meta.creation_timestamp,
            "ownerReferences": _thaw(meta.owner_references),
        }
    )


# ----------------------------
# Scheduling constraints
# ----------------------------


def _taint(obj: dict[str, Any], what: str) -> Taint:
    return Taint(
        key=str(_required(obj, "key", what)),
        effect=_required(obj, "effect", what),
        value=obj.get("value"),
    )


def _toleration(obj: dict[str, Any], what: str) -> Toleration:
    return Toleration(
        key=obj.get("key"),
        operator=obj.get("operator") or "Equal",
        value=obj.get("value"),
        effect=obj.get("effect") or None,
        toleration_seconds=obj.get("tolerationSeconds"),
    )


def _requirement(obj: dict[str, Any], what: str) -> LabelSelectorRequirement:
    return LabelSelectorRequirement(
        key=str(_required(obj, "key", what)),
        operator=_required(obj, "operator", what),
        values=tuple(str(v) for v in _list(obj.get("values"), f"{what}.values")),
    )


def _node_selector_term(obj: dict[str, Any], what: str) -> NodeSelectorTerm:
    return NodeSelectorTerm(
        match_expressions=_items(
            obj.get("matchExpressions"), f"{what}.matchExpressions", _requirement
        ),
        match_fields=_items(obj.get("matchFields"), f"{what}.matchFields", _requirement),
    )


def _preferred_term(obj: dict[str, Any], what: str) -> PreferredSchedulingTerm:
    return PreferredSchedulingTerm(
        weight=int(_required(obj, "weight", what)),
        preference=_node_selector_term(
            _mapping(obj.get("preference"), f"{what}.preference"), f"{what}.preference"
        ),
    )


def _node_affinity(obj: dict[str, Any], what: str) -> NodeAffinity:
    required = obj.get("requiredDuringSchedulingIgnoredDuringExecution")
    terms = None
    if required is not None:
        required = _mapping(required, f"{what}.required")
        terms = _items(
            required.get("nodeSelectorTerms"), f"{what}.nodeSelectorTerms", _node_selector_term
        )
    return NodeAffinity(
        required_during_scheduling_ignored_during_execution=terms,
        preferred_during_scheduling_ignored_during_execution=_items(
            obj.get("preferredDuringSchedulingIgnoredDuringExecution"),
            f"{what}.preferred",
            _preferred_term,
        ),
    )


def _label_selector(obj: dict[str, Any], what: str) -> LabelSelector:
    return LabelSelector(
        match_labels=_string_map(obj.get("matchLabels"), f"{what}.matchLabels"),
        match_expressions=_items(
            obj.get("matchExpressions"), f"{what}.matchExpressions", _requirement
        ),
    )


def _pod_affinity_term(obj: dict[str, Any], what: str) -> PodAffinityTerm:
    selector = obj.get("labelSelector")
    return PodAffinityTerm(
        topology_key=str(_required(obj, "topologyKey", what)),
        label_selector=(
            None
            if selector is None
            else _label_selector(_mapping(selector, what), f"{what}.labelSelector")
        ),
        namespaces=tuple(_list(obj.get("namespaces"), f"{what}.namespaces")),
    )


def _weighted_term(obj: dict[str, Any], what: str) -> WeightedPodAffinityTerm:
    return WeightedPodAffinityTerm(
        weight=int(_required(obj, "weight", what)),
        pod_affinity_term=_pod_affinity_term(
            _mapping(_required(obj, "podAffinityTerm", what), what),
            f"{what}.podAffinityTerm",
        ),
    )


def _pod_affinity(obj: dict[str, Any], what: str) -> PodAffinity:
    return PodAffinity(
        required_during_scheduling_ignored_during_execution=_items(
            obj.get("requiredDuringSchedulingIgnoredDuringExecution"),
            f"{what}.required",
            _pod_affinity_term,
        ),
        preferred_during_scheduling_ignored_during_execution=_items(
            obj.get("preferredDuringSchedulingIgnoredDuringExecution"),
            f"{what}.preferred",
            _weighted_term,
        ),
    )


def _affinity(obj: dict[str, Any], what: str) -> Affinity:
    def optional(key, convert):
        value = obj.get(key)
        if value is None:
            return None
        return convert(_mapping(value, f"{what}.{key}"), f"{what}.{key}")

    return Affinity(
        node_affinity=optional("nodeAffinity", _node_affinity),
        pod_affinity=optional("podAffinity", _pod_affinity),
        pod_anti_affinity=optional("podAntiAffinity", _pod_affinity),
    )


def _requirement_to_dict(req: LabelSelectorRequirement) -> dict[str, Any]:
    return _compact(
        {"key": req.key, "operator": req.operator.value, "values": list(req.values)}
    )


def _term_to_dict(term: NodeSelectorTerm) -> dict[str, Any]:
    return _compact(
        {
            "matchExpressions": [_requirement_to_dict(r) for r in term.match_expressions],
            "matchFields": [_requirement_to_dict(r) for r in term.match_fields],
        }
    )


def _label_selector_to_dict(selector: LabelSelector | None) -> dict[str, Any] | None:
    if selector is None:
        return None
    return _compact(
        {
            "matchLabels": _thaw(selector.match_labels),
            "matchExpressions": [_requirement_to_dict(r) for r in selector.match_expressions],
        }
    )


def _pod_affinity_term_to_dict(term: PodAffinityTerm) -> dict[str, Any]:
    return _compact(
        {
            "topologyKey": term.topology_key,
            "labelSelector": _label_selector_to_dict(term.label_selector),
            "namespaces": list(term.namespaces),
        }
    )


def _pod_affinity_to_dict(affinity: PodAffinity | None) -> dict[str, Any] | None:
    if affinity is None:
        return None
    return _compact(
        {
            "requiredDuringSchedulingIgnoredDuringExecution": [
                _pod_affinity_term_to_dict(t)
                for t in affinity.required_during_scheduling_ignored_during_execution
            ],
            "preferredDuringSchedulingIgnoredDuringExecution": [
                {
                    "weight": w.weight,
                    "podAffinityTerm": _pod_affinity_term_to_dict(w.pod_affinity_term),
                }
                for w in affinity.preferred_during_scheduling_ignored_during_execution
            ],
        }
    )


def _affinity_to_dict(affinity: Affinity | None) -> dict[str, Any] | None:
    if affinity is None:
        return None

    node = None
    na = affinity.node_affinity
    if na is not None:
        node = _compact(
            {
                "preferredDuringSchedulingIgnoredDuringExecution": [
                    {"weight": p.weight, "preference": _term_to_dict(p.preference)}
                    for p in na.preferred_during_scheduling_ignored_during_execution
                ]
            }
        )
        required = na.required_during_scheduling_ignored_during_execution
        if required is not None:
            # An empty term list is meaningful (matches nothing): keep it.
            node["requiredDuringSchedulingIgnoredDuringExecution"] = {
                "nodeSelectorTerms": [_term_to_dict(t) for t in required]
            }

    return _compact(
        {
            "nodeAffinity": node,
            "podAffinity": _pod_affinity_to_dict(affinity.pod_affinity),
            "podAntiAffinity": _pod_affinity_to_dict(affinity.pod_anti_affinity),
        }
    )


# ----------------------------
# Containers
# ----------------------------


def _container(obj: dict[str, Any], what: str) -> Container:
    return Container(
        name=str(_required(obj, "name", what)),
        image=str(obj.get("image") or ""),
        command=tuple(_list(obj.get("command"), f"{what}.command")),
        args=tuple(_list(obj.get("args"), f"{what}.args")),
        ports=_list(obj.get("ports"), f"{what}.ports"),
        env=_list(obj.get("env"), f"{what}.env"),
        resources=_mapping(obj.get("resources"), f"{what}.resources"),
        image_pull_policy=obj.get("imagePullPolicy"),
    )


def _container_to_dict(c: Container) -> dict[str, Any]:
    return _compact(
        {
            "name": c.name,
            "image": c.image or None,
            "command": list(c.command),
            "args": list(c.args),
            "ports": _thaw(c.ports),
            "env": _thaw(c.env),
            "resources": _thaw(c.resources),
            "imagePullPolicy": c.image_pull_policy,
        }
    )


def _container_state(obj: dict[str, Any], what: str) -> ContainerState:
    running = obj.get("running")
    waiting = obj.get("waiting")
    terminated = obj.get("terminated")
    if running is not None:
        running = ContainerStateRunning(
            started_at=_mapping(running, f"{what}.running").get("startedAt")
        )
    if waiting is not None:
        waiting = _mapping(waiting, f"{what}.waiting")
        waiting = ContainerStateWaiting(
            reason=str(waiting.get("reason") or ""), message=waiting.get("message")
        )
    if terminated is not None:
        terminated = _mapping(terminated, f"{what}.terminated")
        terminated = ContainerStateTerminated(
            exit_code=int(terminated.get("exitCode", 0)),
            reason=terminated.get("reason"),
            message=terminated.get("message"),
            finished_at=terminated.get("finishedAt"),
        )
    return ContainerState(running=running, waiting=waiting, terminated=terminated)


def _container_state_to_dict(state: ContainerState) -> dict[str, Any]:
    out: dict[str, Any] = {}
    if state.running is not None:
        out["running"] = _compact({"startedAt": state.running.started_at})
    if state.waiting is not None:
        out["waiting"] = _compact(
            {"reason": state.waiting.reason, "message": state.waiting.message}
        )
    if state.terminated is not None:
        t = state.terminated
        out["terminated"] = _compact(
            {
                "exitCode": t.exit_code,
                "reason": t.reason,
                "message": t.message,
                "finishedAt": t.finished_at,
            }
        )
    return out


def _container_status(obj: dict[str, Any], what: str) -> ContainerStatus:
    return ContainerStatus(
        name=str(_required(obj, "name", what)),
        ready=bool(obj.get("ready", False)),
        restart_count=int(obj.get("restartCount", 0)),
        state=_container_state(_mapping(obj.get("state"), f"{what}.state"), what),
        last_state=_container_state(
            _mapping(obj.get("lastState"), f"{what}.lastState"), what
        ),
        image=str(obj.get("image") or ""),
        image_id=str(obj.get("imageID") or ""),
    )


def _container_status_to_dict(cs: ContainerStatus) -> dict[str, Any]:
    return _compact(
        {
            "name": cs.name,
            "ready": cs.ready,
            "restartCount": cs.restart_count,
            "state": _container_state_to_dict(cs.state),
            "lastState": _container_state_to_dict(cs.last_state),
            "image": cs.image or None,
            "imageID": cs.image_id or None,
        }
    )


# ----------------------------
# Pod
# ----------------------------


def _pod_condition(obj: dict[str, Any], what: str) -> PodCondition:
    return PodCondition(
        type=str(_required(obj, "type", what)),
        status=str(_required(obj, "status", what)),
        reason=obj.get("reason"),
        message=obj.get("message"),
        last_transition_time=obj.get("lastTransitionTime"),
    )


def pod_from_dict(obj: Mapping[str, Any]) -> Pod:
    meta = _mapping(obj.get("metadata"), "Pod.metadata")
    what = f"Pod {meta.get('name', '<unnamed>')!r}"
    spec = _mapping(obj.get("spec"), f"{what}.spec")
    status = _mapping(obj.get("status"), f"{what}.status")

    affinity = spec.get("affinity")
    return Pod(
        metadata=meta_from_dict(meta, what),
        api_version=obj.get("apiVersion", "v1"),
        spec=PodSpec(
            containers=_items(spec.get("containers"), f"{what}.containers", _container),
            init_containers=_items(
                spec.get("initContainers"), f"{what}.initContainers", _container
            ),
            node_name=spec.get("nodeName") or None,
            node_selector=_string_map(spec.get("nodeSelector"), f"{what}.nodeSelector"),
            affinity=(
                None
                if affinity is None
                else _affinity(_mapping(affinity, what), f"{what}.affinity")
            ),
            tolerations=_items(spec.get("tolerations"), f"{what}.tolerations", _toleration),
            volumes=_list(spec.get("volumes"), f"{what}.volumes"),
            service_account_name=spec.get("serviceAccountName"),
            restart_policy=spec.get("restartPolicy"),
            priority_class_name=spec.get("priorityClassName"),
            priority=spec.get("priority"),
            scheduler_name=spec.get("schedulerName"),
        ),
        status=PodStatus(
            phase=status.get("phase") or "Pending",
            conditions=_items(status.get("conditions"), f"{what}.conditions", _pod_condition),
            container_statuses=_items(
                status.get("containerStatuses"), f"{what}.containerStatuses", _container_status
            ),
            host_ip=status.get("hostIP"),
            pod_ip=status.get("podIP"),
            start_time=status.get("startTime"),
            qos_class=status.get("qosClass"),
            reason=status.get("reason"),
            message=status.get("message"),
        ),
    )


def pod_to_dict(pod: Pod) -> dict[str, Any]:
    spec = pod.spec
    status = pod.status
    return {
        "apiVersion": pod.api_version,
        "kind": "Pod",
        "metadata": meta_to_dict(pod.metadata),
        "spec": _compact(
            {
                "containers": [_container_to_dict(c) for c in spec.containers],
                "initContainers": [_container_to_dict(c) for c in spec.init_containers],
                "nodeName": spec.node_name,
                "nodeSelector": _thaw(spec.node_selector),
                "affinity": _affinity_to_dict(spec.affinity),
                "tolerations": [
                    _compact(
                        {
                            "key": t.key,
                            "operator": t.operator.value,
                            "value": t.value,
                            "effect": _value(t.effect),
                            "tolerationSeconds": t.toleration_seconds,
                        }
                    )
                    for t in spec.tolerations
                ],
                "volumes": _thaw(spec.volumes),
                "serviceAccountName": spec.service_account_name,
                "restartPolicy": spec.restart_policy,
                "priorityClassName": spec.priority_class_name,
                "priority": spec.priority,
                "schedulerName": spec.scheduler_name,
            }
        ),
        "status": _compact(
            {
                "phase": status.phase.value,
                "conditions": [
                    _compact(
                        {
                            "type": c.type,
                            "status": c.status,
                            "reason": c.reason,
                            "message": c.message,
                            "lastTransitionTime": c.last_transition_time,
                        }
                    )
                    for c in status.conditions
                ],
                "containerStatuses": [
                    _container_status_to_dict(cs) for cs in status.container_statuses
                ],
                "hostIP": status.host_ip,
                "podIP": status.pod_ip,
                "startTime": status.start_time,
                "qosClass": status.qos_class,
                "reason": status.reason,
                "message": status.message,
            }
        ),
    }


# ----------------------------
# Node
# ----------------------------


def _node_condition(obj: dict[str, Any], what: str) -> NodeCondition:
    return NodeCondition(
        type=str(_required(obj, "type", what)),
        status=str(_required(obj, "status", what)),
        reason=obj.get("reason"),
        message=obj.get("message"),
        last_heartbeat_time=obj.get("lastHeartbeatTime"),
        last_transition_time=obj.get("lastTransitionTime"),
    )


def _node_address(obj: dict[str, Any], what: str) -> NodeAddress:
    return NodeAddress(
        type=str(_required(obj, "type", what)),
        address=str(_required(obj, "address", what)),
    )


def node_from_dict(obj: Mapping[str, Any]) -> Node:
    meta = _mapping(obj.get("metadata"), "Node.metadata")
    what = f"Node {meta.get('name', '<unnamed>')!r}"
    spec = _mapping(obj.get("spec"), f"{what}.spec")
    status = _mapping(obj.get("status"), f"{what}.status")
    return Node(
        metadata=meta_from_dict(meta, what),
        api_version=obj.get("apiVersion", "v1"),
        spec=NodeSpec(
            taints=_items(spec.get("taints"), f"{what}.taints", _taint),
            unschedulable=bool(spec.get("unschedulable", False)),
            pod_cidr=spec.get("podCIDR"),
        ),
        status=NodeStatus(
            conditions=_items(status.get("conditions"), f"{what}.conditions", _node_condition),
            allocatable=_string_map(status.get("allocatable"), f"{what}.allocatable"),
            capacity=_string_map(status.get("capacity"), f"{what}.capacity"),
            addresses=_items(status.get("addresses"), f"{what}.addresses", _node_address),
            node_info=_string_map(status.get("nodeInfo"), f"{what}.nodeInfo"),
        ),
    )


def node_to_dict(node: Node) -> dict[str, Any]:
    return {
        "apiVersion": node.api_version,
        "kind": "Node",
        "metadata": meta_to_dict(node.metadata),
        "spec": _compact(
            {
                "taints": [
                    _compact({"key": t.key, "value": t.value, "effect": t.effect.value})
                    for t in node.spec.taints
                ],
                "unschedulable": node.spec.unschedulable or None,
                "podCIDR": node.spec.pod_cidr,
            }
        ),
        "status": _compact(
            {
                "conditions": [
                    _compact(
                        {
                            "type": c.type,
                            "status": c.status,
                            "reason": c.reason,
                            "message": c.message,
                            "lastHeartbeatTime": c.last_heartbeat_time,
                            "lastTransitionTime": c.last_transition_time,
                        }
                    )
                    for c in node.status.conditions
                ],
                "allocatable": _thaw(node.status.allocatable),
                "capacity": _thaw(node.status.capacity),
                "addresses": [
                    {"type": a.type, "address": a.address} for a in node.status.addresses
                ],
                "nodeInfo": _thaw(node.status.node_info),
            }
        ),
    }


# ----------------------------
# Passive kinds
# ----------------------------

_RESOURCE_RESERVED = ("apiVersion", "kind", "metadata", "spec", "status")


def resource_from_dict(obj: Mapping[str, Any]) -> Resource:
    kind = str(obj["kind"])
    meta = _mapping(obj.get("metadata"), f"{kind}.metadata")
    what = f"{kind} {meta.get('name', '<unnamed>')!r}"
    return Resource(
        kind=kind,
        metadata=meta_from_dict(meta, what),
        api_version=obj.get("apiVersion", "v1"),
        spec=_mapping(obj.get("spec"), f"{what}.spec"),
        status=_mapping(obj.get("status"), f"{what}.status"),
        body={k: v for k, v in obj.items() if k not in _RESOURCE_RESERVED},
    )


def resource_to_dict(resource: Resource) -> dict[str, Any]:
    out = {
        "apiVersion": resource.api_version,
        "kind": resource.kind,
        "metadata": meta_to_dict(resource.metadata),
    }
    if resource.spec:
        out["spec"] = _thaw(resource.spec)
    if resource.status:
        out["status"] = _thaw(resource.status)
    out.update(_thaw(resource.body))
    return out


# ----------------------------
# Kind dispatch
# ----------------------------

_FROM_MANIFEST: dict[str, Callable[[Mapping[str, Any]], K8sResource]] = {
    "Node": node_from_dict,
    "Pod": pod_from_dict,
}


def from_manifest(obj: Any) -> K8sResource:
    """
    Build the typed record selected by `kind`. Kinds without a dedicated
    record become a generic Resource.
    """
    if not isinstance(obj, Mapping):
        raise ManifestError(f"Manifest must be a mapping, got {type(obj).__name__}")
    kind = obj.get("kind")
    if not kind:
        raise ManifestError("Manifest is missing required field 'kind'")
    if kind not in KIND_COLLECTIONS:
        raise ManifestError(f"Unsupported resource kind: {kind}")

    convert = _FROM_MANIFEST.get(kind, resource_from_dict)
    try:
        return convert(obj)
    except ManifestError:
        raise
    except (TypeError, ValueError) as exc:
        name = _mapping(obj.get("metadata"), kind).get("name", "<unnamed>")
        raise ManifestError(f"Invalid {kind} {name!r}: {exc}") from exc


def to_manifest(resource: K8sResource) -> dict[str, Any]:
    if isinstance(resource, Pod):
        return pod_to_dict(resource)
    if isinstance(resource, Node):
        return node_to_dict(resource)
    return resource_to_dict(resource)


# ----------------------------
# Control plane and events
# ----------------------------


def _etcd_member(obj: dict[str, Any], what: str) -> ETCDMember:
    return ETCDMember(
        name=str(_required(obj, "name", what)),
        status=obj.get("status", "healthy"),
        id=str(obj.get("id", "")),
        is_leader=bool(obj.get("isLeader", False)),
        peer_urls=tuple(_list(obj.get("peerURLs"), f"{what}.peerURLs")),
        client_urls=tuple(_list(obj.get("clientURLs"), f"{what}.clientURLs")),
        db_size=int(obj.get("dbSize", 0)),
        db_size_in_use=int(obj.get("dbSizeInUse", 0)),
    )


def _etcd_backup(obj: dict[str, Any], what: str) -> ETCDBackup:
    return ETCDBackup(
        name=str(_required(obj, "name", what)),
        timestamp=str(obj.get("timestamp", "")),
        size=int(obj.get("size", 0)),
        path=str(obj.get("path", "")),
    )


def etcd_from_dict(obj: Mapping[str, Any]) -> ETCDCluster:
    obj = _mapping(obj, "etcd")
    return ETCDCluster(
        members=_items(obj.get("members"), "etcd.members", _etcd_member),
        version=str(obj.get("version", "")),
        cluster_id=str(obj.get("clusterID", "")),
        backups=_items(obj.get("backups"), "etcd.backups", _etcd_backup),
        corrupted=bool(obj.get("corrupted", False)),
    )


def etcd_to_dict(etcd: ETCDCluster) -> dict[str, Any]:
    return {
        "members": [
            {
                "name": m.name,
                "status": m.status.value,
                "id": m.id,
                "isLeader": m.is_leader,
                "peerURLs": list(m.peer_urls),
                "clientURLs": list(m.client_urls),
                "dbSize": m.db_size,
                "dbSizeInUse": m.db_size_in_use,
            }
            for m in etcd.members
        ],
        "version": etcd.version,
        "clusterID": etcd.cluster_id,
        "backups": [
            {"name": b.name, "timestamp": b.timestamp, "size": b.size, "path": b.path}
            for b in etcd.backups
        ],
        "corrupted": etcd.corrupted,
    }


def _component(obj: dict[str, Any], what: str) -> SystemComponent:
    return SystemComponent(
        name=str(_required(obj, "name", what)),
        node=str(obj.get("node", "")),
        status=obj.get("status", ComponentStatus.RUNNING),
        message=obj.get("message"),
        last_heartbeat=obj.get("lastHeartbeat"),
    )


def component_to_dict(c: SystemComponent) -> dict[str, Any]:
    return _compact(
        {
            "name": c.name,
            "node": c.node,
            "status": c.status.value,
            "message": c.message,
            "lastHeartbeat": c.last_heartbeat,
        }
    )


def event_from_dict(obj: Mapping[str, Any], what: str = "event") -> K8sEvent:
    obj = _mapping(obj, what)
    involved = _mapping(_required(obj, "involvedObject", what), f"{what}.involvedObject")
    timestamp = obj.get("timestamp") or obj.get("lastTimestamp") or obj.get("firstTimestamp")
    if not timestamp:
        raise ManifestError(f"{what} has no timestamp")
    source = obj.get("source")
    if source is not None:
        source = _mapping(source, f"{what}.source")
        source = EventSource(component=str(source.get("component", "")), host=source.get("host"))
    return K8sEvent(
        type=obj.get("type", "Normal"),
        reason=str(_required(obj, "reason", what)),
        message=str(obj.get("message", "")),
        involved_object=InvolvedObject(
            kind=str(_required(involved, "kind", f"{what}.involvedObject")),
            name=str(_required(involved, "name", f"{what}.involvedObject")),
            namespace=involved.get("namespace"),
        ),
        timestamp=str(timestamp),
        count=int(obj.get("count", 1)),
        first_timestamp=obj.get("firstTimestamp"),
        last_timestamp=obj.get("lastTimestamp"),
        source=source,
    )


def event_to_dict(event: K8sEvent) -> dict[str, Any]:
    return _compact(
        {
            "type": event.type.value,
            "reason": event.reason,
            "message": event.message,
            "involvedObject": _compact(
                {
                    "kind": event.involved_object.kind,
                    "name": event.involved_object.name,
                    "namespace": event.involved_object.namespace,
                }
            ),
            "timestamp": event.timestamp,
            "count": event.count,
            "firstTimestamp": event.first_timestamp,
            "lastTimestamp": event.last_timestamp,
            "source": (
                None
                if event.source is None
                else _compact({"component": event.source.component, "host": event.source.host})
            ),
        }
    )


def _user_context(obj: Mapping[str, Any]) -> UserContext:
    obj = _mapping(obj, "currentContext")
    defaults = UserContext()
    sa = obj.get("serviceAccount")
    return UserContext(
        user=str(obj.get("user", defaults.user)),
        groups=tuple(obj.get("groups", defaults.groups)),
        service_account=None if sa is None else _string_map(sa, "currentContext.serviceAccount"),
    )


# ----------------------------
# Whole-cluster snapshots
# ----------------------------

# Collection attribute -> kind it holds.
_COLLECTION_KINDS = {attr: kind for kind, attr in KIND_COLLECTIONS.items()}

STATE_KEYS = frozenset(
    [_camel(attr) for attr in _COLLECTION_KINDS]
    + ["namespaces", "etcd", "systemComponents", "events", "currentContext"]
)


def _collection(data: Mapping[str, Any], attr: str) -> tuple:
    kind = _COLLECTION_KINDS[attr]
    key = _camel(attr)
    out = []
    for i, item in enumerate(_list(data.get(key), key)):
        item = _mapping(item, f"{key}[{i}]")
        item.setdefault("kind", kind)
        if item["kind"] != kind:
            raise ManifestError(f"{key}[{i}] has kind {item['kind']!r}, expected {kind!r}")
        out.append(from_manifest(item))
    return tuple(out)


def is_state_dict(data: Any) -> bool:
    return isinstance(data, Mapping) and "kind" not in data and bool(set(data) & STATE_KEYS)


def state_from_dict(data: Mapping[str, Any]) -> ClusterState:
    data = _mapping(data, "cluster state")
    unknown = set(data) - STATE_KEYS
    if unknown:
        raise ManifestError(f"Unknown cluster state keys: {sorted(unknown)}")

    collections = {attr: _collection(data, attr) for attr in _COLLECTION_KINDS}
    current = data.get("currentContext")
    return ClusterState(
        **collections,
        namespaces=tuple(str(n) for n in _list(data.get("namespaces"), "namespaces")),
        etcd=etcd_from_dict(data.get("etcd")),
        system_components=_items(data.get("systemComponents"), "systemComponents", _component),
        events=tuple(
            event_from_dict(e, f"events[{i}]")
            for i, e in enumerate(_list(data.get("events"), "events"))
        ),
        current_context=UserContext() if current is None else _user_context(current),
    )


def state_to_dict(state: ClusterState) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for attr in _COLLECTION_KINDS:
        out[_camel(attr)] = [to_manifest(r) for r in getattr(state, attr)]
    out["namespaces"] = list(state.namespaces)
    out["etcd"] = etcd_to_dict(state.etcd)
    out["systemComponents"] = [component_to_dict(c) for c in state.system_components]
    out["events"] = [event_to_dict(e) for e in state.events]
    ctx = state.current_context
    out["currentContext"] = _compact(
        {
            "user": ctx.user,
            "groups": list(ctx.groups),
            "serviceAccount": None if ctx.service_account is None else _thaw(ctx.service_account),
        }
    )
    return out


# ----------------------------
# Result rendering
# ----------------------------


def schedule_result_to_dict(result) -> dict[str, Any]:
    return {
        "success": result.success,
        "nodeName": result.node_name,
        "reason": _value(result.reason),
        "message": result.message,
        "scores": dict(result.scores or {}),
    }


def fault_result_to_dict(result) -> dict[str, Any]:
    return {
        "success": result.success,
        "message": result.message,
        "reason": _value(result.reason),
        "events": [event_to_dict(e) for e in result.events],
    }


def active_fault_to_dict(fault) -> dict[str, Any]:
    return {
        "type": _value(fault.type),
        "target": fault.target,
        "description": fault.description,
    }
