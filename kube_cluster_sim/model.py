from collections.abc import Mapping
from dataclasses import dataclass, field, fields
from enum import Enum
from types import MappingProxyType
from typing import Any, ClassVar, Union

from kube_cluster_sim.config import DEFAULT_MAX_PODS

# ----------------------------
# Enumerations
# ----------------------------


class PodPhase(str, Enum):
    PENDING = "Pending"
    RUNNING = "Running"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    UNKNOWN = "Unknown"
    CRASH_LOOP_BACK_OFF = "CrashLoopBackOff"
    ERROR = "Error"
    IMAGE_PULL_BACK_OFF = "ImagePullBackOff"
    CONTAINER_CREATING = "ContainerCreating"


class TaintEffect(str, Enum):
    NO_SCHEDULE = "NoSchedule"
    PREFER_NO_SCHEDULE = "PreferNoSchedule"
    NO_EXECUTE = "NoExecute"


class TolerationOperator(str, Enum):
    EQUAL = "Equal"
    EXISTS = "Exists"


class SelectorOperator(str, Enum):
    IN = "In"
    NOT_IN = "NotIn"
    EXISTS = "Exists"
    DOES_NOT_EXIST = "DoesNotExist"
    GT = "Gt"
    LT = "Lt"


class EventType(str, Enum):
    NORMAL = "Normal"
    WARNING = "Warning"


class MemberStatus(str, Enum):
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    UNKNOWN = "unknown"


class ComponentStatus(str, Enum):
    RUNNING = "Running"
    STOPPED = "Stopped"
    ERROR = "Error"
    UNKNOWN = "Unknown"


# ----------------------------
# Immutable record base
# ----------------------------


def _freeze(value: Any) -> Any:
    if isinstance(value, dict):
        return MappingProxyType({k: _freeze(v) for k, v in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(v) for v in value)
    return value


class _Record:
    """
    Mixin for frozen dataclasses: lists become tuples and dicts become
    read-only mappings, recursively, so no stored collection can be edited.
    """

    def __post_init__(self) -> None:
        for f in fields(self):
            value = getattr(self, f.name)
            frozen = _freeze(value)
            if frozen is not value:
                object.__setattr__(self, f.name, frozen)

    def _coerce(self, name: str, enum_type: type[Enum]) -> None:
        value = getattr(self, name)
        if value is not None and not isinstance(value, enum_type):
            object.__setattr__(self, name, enum_type(value))


# ----------------------------
# Metadata
# ----------------------------


@dataclass(frozen=True)
class ObjectMeta(_Record):
    name: str
    namespace: str | None = None
    labels: Mapping[str, str] = field(default_factory=dict)
    annotations: Mapping[str, str] = field(default_factory=dict)
    uid: str | None = None
    creation_timestamp: str | None = None
    owner_references: tuple[Mapping[str, Any], ...] = ()


# ----------------------------
# Scheduling constraints
# ----------------------------


@dataclass(frozen=True)
class Taint(_Record):
    key: str
    effect: TaintEffect
    value: str | None = None

    def __post_init__(self) -> None:
        super().__post_init__()
        self._coerce("effect", TaintEffect)


@dataclass(frozen=True)
class Toleration(_Record):
    key: str | None = None
    operator: TolerationOperator = TolerationOperator.EQUAL
    value: str | None = None
    effect: TaintEffect | None = None
    toleration_seconds: int | None = None

    def __post_init__(self) -> None:
        super().__post_init__()
        if self.operator is None:
            object.__setattr__(self, "operator", TolerationOperator.EQUAL)
        self._coerce("operator", TolerationOperator)
        self._coerce("effect", TaintEffect)


@dataclass(frozen=True)
class LabelSelectorRequirement(_Record):
    key: str
    operator: SelectorOperator
    values: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        super().__post_init__()
        self._coerce("operator", SelectorOperator)


@dataclass(frozen=True)
class NodeSelectorTerm(_Record):
    match_expressions: tuple[LabelSelectorRequirement, ...] = ()
    match_fields: tuple[LabelSelectorRequirement, ...] = ()


@dataclass(frozen=True)
class PreferredSchedulingTerm(_Record):
    weight: int
    preference: NodeSelectorTerm = field(default_factory=NodeSelectorTerm)


@dataclass(frozen=True)
class NodeAffinity(_Record):
    # None means "no requirement"; an empty tuple of terms matches no node.
    required_during_scheduling_ignored_during_execution: (
        tuple[NodeSelectorTerm, ...] | None
    ) = None
    preferred_during_scheduling_ignored_during_execution: tuple[
        PreferredSchedulingTerm, ...
    ] = ()


@dataclass(frozen=True)
class LabelSelector(_Record):
    match_labels: Mapping[str, str] = field(default_factory=dict)
    match_expressions: tuple[LabelSelectorRequirement, ...] = ()

    def is_empty(self) -> bool:
        return not self.match_labels and not self.match_expressions


@dataclass(frozen=True)
class PodAffinityTerm(_Record):
    topology_key: str
    label_selector: LabelSelector | None = None
    namespaces: tuple[str, ...] = ()


@dataclass(frozen=True)
class WeightedPodAffinityTerm(_Record):
    weight: int
    pod_affinity_term: PodAffinityTerm


@dataclass(frozen=True)
class PodAffinity(_Record):
    """
    Shared shape of podAffinity and podAntiAffinity.
    """

    required_during_scheduling_ignored_during_execution: tuple[
        PodAffinityTerm, ...
    ] = ()
    preferred_during_scheduling_ignored_during_execution: tuple[
        WeightedPodAffinityTerm, ...
    ] = ()


@dataclass(frozen=True)
class Affinity(_Record):
    node_affinity: NodeAffinity | None = None
    pod_affinity: PodAffinity | None = None
    pod_anti_affinity: PodAffinity | None = None


# ----------------------------
# Containers
# ----------------------------


@dataclass(frozen=True)
class Container(_Record):
    name: str
    image: str = ""
    command: tuple[str, ...] = ()
    args: tuple[str, ...] = ()
    ports: tuple[Mapping[str, Any], ...] = ()
    env: tuple[Mapping[str, Any], ...] = ()
    resources: Mapping[str, Any] = field(default_factory=dict)
    image_pull_policy: str | None = None


@dataclass(frozen=True)
class ContainerStateRunning(_Record):
    started_at: str | None = None


@dataclass(frozen=True)
class ContainerStateWaiting(_Record):
    reason: str
    message: str | None = None


@dataclass(frozen=True)
class ContainerStateTerminated(_Record):
    exit_code: int
    reason: str | None = None
    message: str | None = None
    finished_at: str | None = None


@dataclass(frozen=True)
class ContainerState(_Record):
    running: ContainerStateRunning | None = None
    waiting: ContainerStateWaiting | None = None
    terminated: ContainerStateTerminated | None = None

    def is_empty(self) -> bool:
        return self.running is None and self.waiting is None and self.terminated is None


@dataclass(frozen=True)
class ContainerStatus(_Record):
    name: str
    ready: bool = False
    restart_count: int = 0
    state: ContainerState = field(default_factory=ContainerState)
    last_state: ContainerState = field(default_factory=ContainerState)
    image: str = ""
    image_id: str = ""


# ----------------------------
# Pod
# ----------------------------


@dataclass(frozen=True)
class PodCondition(_Record):
    type: str
    status: str
    reason: str | None = None
    message: str | None = None
    last_transition_time: str | None = None


@dataclass(frozen=True)
class PodSpec(_Record):
    containers: tuple[Container, ...] = ()
    init_containers: tuple[Container, ...] = ()
    node_name: str | None = None
    node_selector: Mapping[str, str] = field(default_factory=dict)
    affinity: Affinity | None = None
    tolerations: tuple[Toleration, ...] = ()
    volumes: tuple[Mapping[str, Any], ...] = ()
    service_account_name: str | None = None
    restart_policy: str | None = None
    priority_class_name: str | None = None
    priority: int | None = None
    scheduler_name: str | None = None


@dataclass(frozen=True)
class PodStatus(_Record):
    phase: PodPhase = PodPhase.PENDING
    conditions: tuple[PodCondition, ...] = ()
    container_statuses: tuple[ContainerStatus, ...] = ()
    host_ip: str | None = None
    pod_ip: str | None = None
    start_time: str | None = None
    qos_class: str | None = None
    reason: str | None = None
    message: str | None = None

    def __post_init__(self) -> None:
        super().__post_init__()
        self._coerce("phase", PodPhase)


@dataclass(frozen=True)
class Pod(_Record):
    kind: ClassVar[str] = "Pod"

    metadata: ObjectMeta
    spec: PodSpec = field(default_factory=PodSpec)
    status: PodStatus = field(default_factory=PodStatus)
    api_version: str = "v1"


# ----------------------------
# Node
# ----------------------------


@dataclass(frozen=True)
class NodeCondition(_Record):
    type: str
    status: str
    reason: str | None = None
    message: str | None = None
    last_heartbeat_time: str | None = None
    last_transition_time: str | None = None


@dataclass(frozen=True)
class NodeAddress(_Record):
    type: str
    address: str


@dataclass(frozen=True)
class NodeSpec(_Record):
    taints: tuple[Taint, ...] = ()
    unschedulable: bool = False
    pod_cidr: str | None = None


@dataclass(frozen=True)
class NodeStatus(_Record):
    conditions: tuple[NodeCondition, ...] = ()
    allocatable: Mapping[str, str] = field(default_factory=dict)
    capacity: Mapping[str, str] = field(default_factory=dict)
    addresses: tuple[NodeAddress, ...] = ()
    node_info: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class Node(_Record):
    kind: ClassVar[str] = "Node"

    metadata: ObjectMeta
    spec: NodeSpec = field(default_factory=NodeSpec)
    status: NodeStatus = field(default_factory=NodeStatus)
    api_version: str = "v1"


# ----------------------------
# Passive kinds
# ----------------------------


@dataclass(frozen=True)
class Resource(_Record):
    """
    Any kind the core stores but does not reason about (Deployment, Service,
    RBAC objects, ...). `body` holds top-level fields other than
    apiVersion/kind/metadata/spec/status, e.g. ConfigMap `data` or Role `rules`.
    """

    kind: str
    metadata: ObjectMeta
    api_version: str = "v1"
    spec: Mapping[str, Any] = field(default_factory=dict)
    status: Mapping[str, Any] = field(default_factory=dict)
    body: Mapping[str, Any] = field(default_factory=dict)


K8sResource = Union[Node, Pod, Resource]


# ----------------------------
# Control plane
# ----------------------------


@dataclass(frozen=True)
class ETCDMember(_Record):
    name: str
    status: MemberStatus = MemberStatus.HEALTHY
    id: str = ""
    is_leader: bool = False
    peer_urls: tuple[str, ...] = ()
    client_urls: tuple[str, ...] = ()
    db_size: int = 0
    db_size_in_use: int = 0

    def __post_init__(self) -> None:
        super().__post_init__()
        self._coerce("status", MemberStatus)


@dataclass(frozen=True)
class ETCDBackup(_Record):
    name: str
    timestamp: str
    size: int
    path: str


@dataclass(frozen=True)
class ETCDCluster(_Record):
    members: tuple[ETCDMember, ...] = ()
    version: str = ""
    cluster_id: str = ""
    backups: tuple[ETCDBackup, ...] = ()
    corrupted: bool = False


@dataclass(frozen=True)
class SystemComponent(_Record):
    name: str
    node: str
    status: ComponentStatus = ComponentStatus.RUNNING
    message: str | None = None
    last_heartbeat: str | None = None

    def __post_init__(self) -> None:
        super().__post_init__()
        self._coerce("status", ComponentStatus)


# ----------------------------
# Events
# ----------------------------


@dataclass(frozen=True)
class InvolvedObject(_Record):
    kind: str
    name: str
    namespace: str | None = None


@dataclass(frozen=True)
class EventSource(_Record):
    component: str
    host: str | None = None


@dataclass(frozen=True)
class K8sEvent(_Record):
    type: EventType
    reason: str
    message: str
    involved_object: InvolvedObject
    timestamp: str
    count: int = 1
    first_timestamp: str | None = None
    last_timestamp: str | None = None
    source: EventSource | None = None

    def __post_init__(self) -> None:
        super().__post_init__()
        self._coerce("type", EventType)


@dataclass(frozen=True)
class UserContext(_Record):
    user: str = "kubernetes-admin"
    groups: tuple[str, ...] = ("system:masters", "system:authenticated")
    service_account: Mapping[str, str] | None = None


# ----------------------------
# Cluster snapshot
# ----------------------------


@dataclass(frozen=True)
class ClusterState(_Record):
    nodes: tuple[Node, ...] = ()
    pods: tuple[Pod, ...] = ()
    deployments: tuple[Resource, ...] = ()
    services: tuple[Resource, ...] = ()
    namespaces: tuple[str, ...] = ()
    config_maps: tuple[Resource, ...] = ()
    secrets: tuple[Resource, ...] = ()
    persistent_volumes: tuple[Resource, ...] = ()
    persistent_volume_claims: tuple[Resource, ...] = ()
    storage_classes: tuple[Resource, ...] = ()
    ingresses: tuple[Resource, ...] = ()
    network_policies: tuple[Resource, ...] = ()
    gateway_classes: tuple[Resource, ...] = ()
    gateways: tuple[Resource, ...] = ()
    http_routes: tuple[Resource, ...] = ()
    hpas: tuple[Resource, ...] = ()
    roles: tuple[Resource, ...] = ()
    role_bindings: tuple[Resource, ...] = ()
    cluster_roles: tuple[Resource, ...] = ()
    cluster_role_bindings: tuple[Resource, ...] = ()
    service_accounts: tuple[Resource, ...] = ()
    jobs: tuple[Resource, ...] = ()
    cron_jobs: tuple[Resource, ...] = ()
    daemon_sets: tuple[Resource, ...] = ()
    stateful_sets: tuple[Resource, ...] = ()
    resource_quotas: tuple[Resource, ...] = ()
    limit_ranges: tuple[Resource, ...] = ()
    priority_classes: tuple[Resource, ...] = ()
    etcd: ETCDCluster = field(default_factory=ETCDCluster)
    system_components: tuple[SystemComponent, ...] = ()
    events: tuple[K8sEvent, ...] = ()
    current_context: UserContext = field(default_factory=UserContext)


# Kind -> ClusterState collection attribute.
KIND_COLLECTIONS: dict[str, str] = {
    "Node": "nodes",
    "Pod": "pods",
    "Deployment": "deployments",
    "Service": "services",
    "ConfigMap": "config_maps",
    "Secret": "secrets",
    "PersistentVolume": "persistent_volumes",
    "PersistentVolumeClaim": "persistent_volume_claims",
    "StorageClass": "storage_classes",
    "Ingress": "ingresses",
    "NetworkPolicy": "network_policies",
    "GatewayClass": "gateway_classes",
    "Gateway": "gateways",
    "HTTPRoute": "http_routes",
    "HorizontalPodAutoscaler": "hpas",
    "Role": "roles",
    "RoleBinding": "role_bindings",
    "ClusterRole": "cluster_roles",
    "ClusterRoleBinding": "cluster_role_bindings",
    "ServiceAccount": "service_accounts",
    "Job": "jobs",
    "CronJob": "cron_jobs",
    "DaemonSet": "daemon_sets",
    "StatefulSet": "stateful_sets",
    "ResourceQuota": "resource_quotas",
    "LimitRange": "limit_ranges",
    "PriorityClass": "priority_classes",
}

CLUSTER_SCOPED_KINDS = frozenset(
    {
        "Node",
        "PersistentVolume",
        "StorageClass",
        "GatewayClass",
        "ClusterRole",
        "ClusterRoleBinding",
        "PriorityClass",
    }
)

# ----------------------------
# Accessors
# ----------------------------


def resource_key(resource: K8sResource) -> tuple[str, str | None, str]:
    kind = resource.kind
    if kind in CLUSTER_SCOPED_KINDS:
        return kind, None, resource.metadata.name
    return kind, resource.metadata.namespace or "default", resource.metadata.name


def node_condition(node: Node, cond_type: str) -> NodeCondition | None:
    for c in node.status.conditions:
        if c.type == cond_type:
            return c
    return None


def is_node_ready(node: Node) -> bool:
    ready = node_condition(node, "Ready")
    return ready is not None and ready.status == "True"


def node_pod_capacity(node: Node, default: int = DEFAULT_MAX_PODS) -> int:
    raw = node.status.allocatable.get("pods")
    if raw is None or raw == "":
        return default
    try:
        return int(str(raw).strip())
    except ValueError:
        return 0


def pod_condition(pod: Pod, cond_type: str) -> PodCondition | None:
    for c in pod.status.conditions:
        if c.type == cond_type:
            return c
    return None


def pod_display_name(pod: Pod) -> str:
    return f"{pod.metadata.namespace or 'default'}/{pod.metadata.name}"
