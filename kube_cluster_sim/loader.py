import json
import logging
import os
from collections.abc import Iterable
from dataclasses import replace
from typing import Any

import yaml

from kube_cluster_sim.defaults import initial_cluster_state
from kube_cluster_sim.errors import ManifestError
from kube_cluster_sim.manifest import (
    event_from_dict,
    from_manifest,
    is_state_dict,
    state_from_dict,
    state_to_dict,
)
from kube_cluster_sim.model import ClusterState
from kube_cluster_sim.state import append_events, check_unique, put_resource

logger = logging.getLogger(__name__)

# ----------------------------
# Snapshot loading
# ----------------------------


def _is_json(path: str) -> bool:
    return os.path.splitext(path)[1].lower() == ".json"


def read_documents(path: str) -> list[Any]:
    """
    Parse every document in a YAML stream, or the single document of a JSON
    file. Empty YAML documents are skipped.
    """
    with open(path, encoding="utf-8") as f:
        try:
            if _is_json(path):
                return [json.load(f)]
            return [doc for doc in yaml.safe_load_all(f) if doc is not None]
        except (json.JSONDecodeError, yaml.YAMLError) as exc:
            raise ManifestError(f"{path}: cannot parse: {exc}") from exc


def _manifests(docs: Iterable[Any]) -> Iterable[Any]:
    for doc in docs:
        if isinstance(doc, dict) and doc.get("kind") == "List":
            yield from doc.get("items") or []
        else:
            yield doc


def _apply_manifest(state: ClusterState, obj: Any) -> ClusterState:
    kind = obj.get("kind") if isinstance(obj, dict) else None

    # Namespaces are stored by name only, events in the log.
    if kind == "Namespace":
        name = (obj.get("metadata") or {}).get("name")
        if not name:
            raise ManifestError("Namespace is missing required field 'name'")
        if name in state.namespaces:
            return state
        return replace(state, namespaces=state.namespaces + (name,))
    if kind == "Event":
        return append_events(state, [event_from_dict(obj)])

    return put_resource(state, from_manifest(obj))


def state_from_documents(
    docs: list[Any], base: ClusterState | None = None
) -> ClusterState:
    """
    A single snapshot document replaces the cluster. Anything else is treated
    as manifests merged (create-or-replace) into `base`, which defaults to the
    built-in cluster.
    """
    if len(docs) == 1 and is_state_dict(docs[0]):
        state = state_from_dict(docs[0])
    else:
        state = base if base is not None else initial_cluster_state()
        for obj in _manifests(docs):
            state = _apply_manifest(state, obj)

    check_unique(state)
    return state


def load_state(path: str | None = None) -> ClusterState:
    if path is None:
        return initial_cluster_state()
    docs = read_documents(path)
    logger.debug("loaded %d document(s) from %s", len(docs), path)
    return state_from_documents(docs)


def save_state(path: str, state: ClusterState) -> None:
    data = state_to_dict(state)
    with open(path, "w", encoding="utf-8") as f:
        if _is_json(path):
            json.dump(data, f, indent=2, default=str)
            f.write("\n")
        else:
            yaml.safe_dump(data, f, sort_keys=False)
