from kube_cluster_sim.model import (
    ClusterState,
    ETCDCluster,
    ETCDMember,
    MemberStatus,
    Node,
    NodeAddress,
    NodeCondition,
    NodeStatus,
    ObjectMeta,
    Resource,
    SystemComponent,
)

# ----------------------------
# Built-in practice cluster
# ----------------------------

DEFAULT_NAMESPACES = ("default", "kube-system", "kube-public", "kube-node-lease")

_NODES = (
    # name, InternalIP, cpu, memory, control plane
    ("control-plane", "192.168.1.2", "4", "8Gi", True),
    ("node01", "192.168.1.3", "2", "4Gi", False),
    ("node02", "192.168.1.4", "2", "4Gi", False),
)

_KUBELET_VERSION = "v1.28.0"


def _node(name: str, ip: str, cpu: str, memory: str, control_plane: bool) -> Node:
    labels = {
        "kubernetes.io/hostname": name,
        "kubernetes.io/os": "linux",
    }
    if control_plane:
        labels["node-role.kubernetes.io/control-plane"] = ""
    resources = {"cpu": cpu, "memory": memory, "pods": "110"}
    return Node(
        metadata=ObjectMeta(name=name, labels=labels),
        status=NodeStatus(
            conditions=(
                NodeCondition(
                    type="Ready",
                    status="True",
                    reason="KubeletReady",
                    message="kubelet is posting ready status",
                ),
            ),
            allocatable=resources,
            capacity=resources,
            addresses=(
                NodeAddress(type="InternalIP", address=ip),
                NodeAddress(type="Hostname", address=name),
            ),
            node_info={
                "kubeletVersion": _KUBELET_VERSION,
                "containerRuntimeVersion": "containerd://1.7.2",
                "osImage": "Ubuntu 22.04.3 LTS",
            },
        ),
    )


def _resource(kind: str, name: str, namespace: str | None = None, api_version="v1", **fields):
    annotations = fields.pop("annotations", {})
    return Resource(
        kind=kind,
        api_version=api_version,
        metadata=ObjectMeta(name=name, namespace=namespace, annotations=annotations),
        **fields,
    )


def initial_cluster_state() -> ClusterState:
    """
    Three-node practice cluster: one control plane, two workers, a single
    healthy etcd member and every control-plane component running.
    """
    nodes = tuple(_node(*spec) for spec in _NODES)

    components = [
        SystemComponent(name="kube-apiserver", node="control-plane"),
        SystemComponent(name="kube-scheduler", node="control-plane"),
        SystemComponent(name="kube-controller-manager", node="control-plane"),
        SystemComponent(name="etcd", node="control-plane"),
    ]
    for n in nodes:
        components.append(SystemComponent(name="kubelet", node=n.metadata.name))
        components.append(SystemComponent(name="kube-proxy", node=n.metadata.name))
    components.append(SystemComponent(name="coredns", node="control-plane"))

    return ClusterState(
        nodes=nodes,
        namespaces=DEFAULT_NAMESPACES,
        services=(
            _resource(
                "Service",
                "kubernetes",
                "default",
                spec={
                    "type": "ClusterIP",
                    "clusterIP": "10.96.0.1",
                    "ports": [
                        {"name": "https", "port": 443, "protocol": "TCP", "targetPort": 6443}
                    ],
                },
            ),
        ),
        storage_classes=(
            _resource(
                "StorageClass",
                "standard",
                api_version="storage.k8s.io/v1",
                annotations={"storageclass.kubernetes.io/is-default-class": "true"},
                body={
                    "provisioner": "kubernetes.io/no-provisioner",
                    "volumeBindingMode": "WaitForFirstConsumer",
                },
            ),
        ),
        gateway_classes=(
            _resource(
                "GatewayClass",
                "nginx",
                api_version="gateway.networking.k8s.io/v1",
                spec={"controllerName": "gateway.nginx.org/nginx-gateway-controller"},
            ),
        ),
        cluster_roles=tuple(
            _resource(
                "ClusterRole",
                name,
                api_version="rbac.authorization.k8s.io/v1",
                body={"rules": rules},
            )
            for name, rules in (
                ("cluster-admin", [{"apiGroups": ["*"], "resources": ["*"], "verbs": ["*"]}]),
                (
                    "view",
                    [{"apiGroups": [""], "resources": ["*"], "verbs": ["get", "list", "watch"]}],
                ),
                (
                    "edit",
                    [
                        {
                            "apiGroups": ["", "apps"],
                            "resources": ["*"],
                            "verbs": ["get", "list", "watch", "create", "update", "patch", "delete"],
                        }
                    ],
                ),
            )
        ),
        cluster_role_bindings=(
            _resource(
                "ClusterRoleBinding",
                "cluster-admin-binding",
                api_version="rbac.authorization.k8s.io/v1",
                body={
                    "subjects": [
                        {
                            "kind": "Group",
                            "name": "system:masters",
                            "apiGroup": "rbac.authorization.k8s.io",
                        }
                    ],
                    "roleRef": {
                        "kind": "ClusterRole",
                        "name": "cluster-admin",
                        "apiGroup": "rbac.authorization.k8s.io",
                    },
                },
            ),
        ),
        service_accounts=(
            _resource("ServiceAccount", "default", "default"),
            _resource("ServiceAccount", "default", "kube-system"),
        ),
        daemon_sets=(
            _resource(
                "DaemonSet",
                "kube-proxy",
                "kube-system",
                api_version="apps/v1",
                spec={
                    "selector": {"matchLabels": {"k8s-app": "kube-proxy"}},
                    "template": {
                        "metadata": {"labels": {"k8s-app": "kube-proxy"}},
                        "spec": {
                            "containers": [
                                {
                                    "name": "kube-proxy",
                                    "image": "registry.k8s.io/kube-proxy:v1.28.0",
                                }
                            ]
                        },
                    },
                },
                status={
                    "desiredNumberScheduled": 3,
                    "currentNumberScheduled": 3,
                    "numberReady": 3,
                    "numberAvailable": 3,
                },
            ),
        ),
        priority_classes=(
            _resource(
                "PriorityClass",
                "system-cluster-critical",
                api_version="scheduling.k8s.io/v1",
                body={"value": 2000000000, "globalDefault": False},
            ),
            _resource(
                "PriorityClass",
                "system-node-critical",
                api_version="scheduling.k8s.io/v1",
                body={"value": 2000001000, "globalDefault": False},
            ),
        ),
        etcd=ETCDCluster(
            members=(
                ETCDMember(
                    name="control-plane",
                    id="a1b2c3d4e5f6",
                    status=MemberStatus.HEALTHY,
                    is_leader=True,
                    peer_urls=("https://192.168.1.2:2380",),
                    client_urls=("https://192.168.1.2:2379",),
                    db_size=4194304,
                    db_size_in_use=2097152,
                ),
            ),
            version="3.5.9",
            cluster_id="k8s-quest-etcd-cluster",
        ),
        system_components=tuple(components),
    )
