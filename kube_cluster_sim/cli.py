import argparse
import logging
import sys
from typing import Any

import yaml

from kube_cluster_sim.config import OUTPUT_FORMATS, load_config
from kube_cluster_sim.errors import DuplicateResourceError, ManifestError
from kube_cluster_sim.faults import (
    FaultConfig,
    FaultType,
    get_active_faults,
    inject_fault,
    repair_fault,
)
from kube_cluster_sim.loader import load_state, read_documents, save_state
from kube_cluster_sim.manifest import (
    active_fault_to_dict,
    event_to_dict,
    fault_result_to_dict,
    from_manifest,
    schedule_result_to_dict,
)
from kube_cluster_sim.model import Pod, pod_display_name
from kube_cluster_sim.output import (
    output_result,
    render_bind,
    render_events,
    render_fault,
    render_faults,
    render_reasons,
    render_schedule,
)
from kube_cluster_sim.scheduler import (
    bind_pod,
    get_scheduling_failure_reasons,
    schedule_pod,
)
from kube_cluster_sim.state import find_pod
from kube_cluster_sim.timeline import build_timeline

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_INPUT_ERROR = 2


class InputError(Exception):
    pass


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="kube-cluster-sim",
        description="Schedule pods and inject faults on a simulated Kubernetes cluster",
    )
    parser.add_argument("--state", help="Cluster snapshot or manifests (YAML/JSON)")
    parser.add_argument("--config", help="Simulator configuration (YAML)")
    parser.add_argument(
        "--format",
        choices=OUTPUT_FORMATS,
        default=None,
        help="Output format (default: from configuration, else text)",
    )
    parser.add_argument("--write", metavar="PATH", help="Persist the resulting state to PATH")
    parser.add_argument(
        "--in-place", action="store_true", help="Persist the resulting state back to --state"
    )
    parser.add_argument("--verbose", action="store_true")

    sub = parser.add_subparsers(dest="command", required=True)

    for name, help_text in (
        ("schedule", "Pick a node for a pod without changing state"),
        ("bind", "Schedule a pod and record the decision"),
        ("reasons", "List filters rejecting each node for a pod"),
    ):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("pod", nargs="?", help="Name of a pod in the cluster state")
        p.add_argument("-n", "--namespace")
        p.add_argument("-f", "--filename", help="Pod manifest instead of a stored pod")

    for name, help_text in (
        ("inject", "Inject a fault"),
        ("repair", "Repair a fault"),
    ):
        p = sub.add_parser(name, help=help_text)
        p.add_argument(
            "type", help="Fault type: " + ", ".join(t.value for t in FaultType)
        )
        p.add_argument("target", nargs="?", default="", help="Node, pod, member or host")
        p.add_argument("-n", "--namespace")

    sub.add_parser("faults", help="List active faults")

    p = sub.add_parser("events", help="Show the event log")
    p.add_argument("--for", dest="name", help="Only events about this object")
    p.add_argument("--reason")

    return parser


# ----------------------------
# Helpers
# ----------------------------


def _resolve_pod(args, state) -> Pod:
    if args.filename:
        docs = read_documents(args.filename)
        if len(docs) != 1:
            raise InputError(f"{args.filename}: expected exactly one Pod manifest")
        pod = from_manifest(docs[0])
        if not isinstance(pod, Pod):
            raise InputError(f"{args.filename}: expected a Pod, got {pod.kind}")
        return pod

    if not args.pod:
        raise InputError("a pod name or -f/--filename is required")
    pod = find_pod(state, args.pod, args.namespace)
    if pod is None:
        raise InputError(f'pod "{args.pod}" not found')
    return pod


def _write_state(args, state) -> None:
    if args.write is None and not args.in_place:
        return
    path = args.write or args.state
    if not path:
        raise InputError("--in-place needs --state")
    save_state(path, state)
    logging.getLogger(__name__).debug("state written to %s", path)


# ----------------------------
# Commands
# ----------------------------


def cmd_schedule(args, state, config) -> tuple[dict[str, Any], Any, bool]:
    pod = _resolve_pod(args, state)
    result = schedule_pod(pod, state, config)
    return (
        {"pod": pod_display_name(pod), **schedule_result_to_dict(result)},
        render_schedule,
        result.success,
    )


def cmd_bind(args, state, config):
    pod = _resolve_pod(args, state)
    result = bind_pod(pod, state, config)
    _write_state(args, result.new_state)
    data = {
        "pod": pod_display_name(pod),
        **schedule_result_to_dict(result.schedule),
        "events": [event_to_dict(e) for e in result.events],
    }
    return data, render_bind, result.success


def cmd_reasons(args, state, config):
    pod = _resolve_pod(args, state)
    reasons = get_scheduling_failure_reasons(pod, state, config)
    return {"pod": pod_display_name(pod), "reasons": reasons}, render_reasons, True


def _fault_command(operation):
    def run(args, state, config):
        fault = FaultConfig(type=args.type, target=args.target, namespace=args.namespace)
        result = operation(fault, state, config)
        if result.success:
            _write_state(args, result.new_state)
        return fault_result_to_dict(result), render_fault, result.success

    return run


def cmd_faults(args, state, config):
    faults = [active_fault_to_dict(f) for f in get_active_faults(state)]
    return {"faults": faults}, render_faults, True


def cmd_events(args, state, config):
    timeline = build_timeline(state.events)
    events = timeline.for_object(args.name) if args.name else list(timeline.events)
    if args.reason:
        events = [e for e in events if e.reason == args.reason]
    return {"events": [event_to_dict(e) for e in events]}, render_events, True


COMMANDS = {
    "schedule": cmd_schedule,
    "bind": cmd_bind,
    "reasons": cmd_reasons,
    "inject": _fault_command(inject_fault),
    "repair": _fault_command(repair_fault),
    "faults": cmd_faults,
    "events": cmd_events,
}


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="[%(levelname)s] %(name)s: %(message)s",
    )

    try:
        config = load_config(args.config)
        state = load_state(args.state)
        data, render, success = COMMANDS[args.command](args, state, config)
    except (
        InputError,
        ManifestError,
        DuplicateResourceError,
        ValueError,
        OSError,
        yaml.YAMLError,
    ) as exc:
        print(f"[ERROR] {exc}", file=sys.stderr)
        return EXIT_INPUT_ERROR

    output_result(data, args.format or config.output_format, render)
    return EXIT_OK if success else EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())
