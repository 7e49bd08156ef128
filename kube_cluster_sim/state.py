from collections.abc import Iterable
from dataclasses import replace

from kube_cluster_sim.errors import DuplicateResourceError
from kube_cluster_sim.model import (
    KIND_COLLECTIONS,
    ClusterState,
    K8sEvent,
    K8sResource,
    Node,
    Pod,
    resource_key,
)

# ----------------------------
# Lookups
# ----------------------------


def collection_for(kind: str) -> str:
    try:
        return KIND_COLLECTIONS[kind]
    except KeyError:
        raise ValueError(f"Unsupported resource kind: {kind}") from None


def find_node(state: ClusterState, name: str | None) -> Node | None:
    if not name:
        return None
    for node in state.nodes:
        if node.metadata.name == name:
            return node
    return None


def find_pod(
    state: ClusterState, name: str, namespace: str | None = None
) -> Pod | None:
    """
    Return the first pod called `name`, restricted to `namespace` when given.
    """
    for pod in state.pods:
        if pod.metadata.name != name:
            continue
        if namespace is not None and (pod.metadata.namespace or "default") != namespace:
            continue
        return pod
    return None


def pods_on_node(state: ClusterState, node_name: str) -> list[Pod]:
    return [p for p in state.pods if p.spec.node_name == node_name]


def find_resource(
    state: ClusterState, kind: str, name: str, namespace: str | None = None
) -> K8sResource | None:
    for obj in getattr(state, collection_for(kind)):
        if obj.kind != kind or obj.metadata.name != name:
            continue
        obj_namespace = resource_key(obj)[1]
        if obj_namespace is not None and obj_namespace != (namespace or "default"):
            continue
        return obj
    return None


# ----------------------------
# Copy-on-write builders
# ----------------------------


def _replace_in(
    items: tuple, target: K8sResource, updated: K8sResource | None
) -> tuple:
    key = resource_key(target)
    out = []
    for item in items:
        if resource_key(item) == key:
            if updated is not None:
                out.append(updated)
        else:
            out.append(item)
    return tuple(out)


def replace_node(state: ClusterState, node: Node) -> ClusterState:
    return replace(state, nodes=_replace_in(state.nodes, node, node))


def replace_pod(state: ClusterState, pod: Pod) -> ClusterState:
    return replace(state, pods=_replace_in(state.pods, pod, pod))


def remove_pod(state: ClusterState, pod: Pod) -> ClusterState:
    return replace(state, pods=_replace_in(state.pods, pod, None))


def append_events(state: ClusterState, events: Iterable[K8sEvent]) -> ClusterState:
    events = tuple(events)
    if not events:
        return state
    return replace(state, events=state.events + events)


def put_resource(state: ClusterState, resource: K8sResource) -> ClusterState:
    """
    Create the object, or replace the stored object with the same key.
    """
    attr = collection_for(resource.kind)
    items = getattr(state, attr)
    key = resource_key(resource)

    if any(resource_key(item) == key for item in items):
        items = _replace_in(items, resource, resource)
    else:
        items = items + (resource,)

    namespace = key[1]
    namespaces = state.namespaces
    if namespace and namespace not in namespaces:
        namespaces = namespaces + (namespace,)

    return replace(state, **{attr: items, "namespaces": namespaces})


def delete_resource(
    state: ClusterState, kind: str, name: str, namespace: str | None = None
) -> ClusterState:
    existing = find_resource(state, kind, name, namespace)
    if existing is None:
        return state
    attr = collection_for(kind)
    return replace(state, **{attr: _replace_in(getattr(state, attr), existing, None)})


def check_unique(state: ClusterState) -> None:
    seen: set[tuple[str, str | None, str]] = set()
    for attr in dict.fromkeys(KIND_COLLECTIONS.values()):
        for obj in getattr(state, attr):
            key = resource_key(obj)
            if key in seen:
                raise DuplicateResourceError(key)
            seen.add(key)
