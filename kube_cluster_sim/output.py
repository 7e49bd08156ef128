import json
from collections.abc import Callable
from typing import Any

import yaml

# ----------------------------
# Output formatting
# ----------------------------


def output_result(
    result: dict[str, Any],
    fmt: str = "text",
    render: Callable[[dict[str, Any]], list[str]] | None = None,
) -> None:
    """
    Print a command result as JSON, YAML or text. Text uses `render`,
    falling back to one `key: value` line per field.
    """
    if fmt == "json":
        print(json.dumps(result, indent=2, default=str))
        return

    if fmt == "yaml":
        print(yaml.safe_dump(result, sort_keys=False), end="")
        return

    lines = render(result) if render else [f"{k}: {v}" for k, v in result.items()]
    for line in lines:
        print(line)


# ----------------------------
# Text renderers
# ----------------------------


def _status(success: bool) -> str:
    return "OK" if success else "FAILED"


def _event_line(event: dict[str, Any]) -> str:
    obj = event["involvedObject"]
    target = f"{obj['kind'].lower()}/{obj['name']}"
    return f"  {event.get('timestamp', '')}  {event['type']:<7}  {event['reason']:<18} {target}: {event.get('message', '')}"


def render_schedule(result: dict[str, Any]) -> list[str]:
    lines = [f"Pod: {result['pod']}", f"Result: {_status(result['success'])}"]
    if result["success"]:
        lines.append(f"Node: {result['nodeName']}")
    else:
        lines.append(f"Reason: {result['reason']}")
        lines.append(f"Message: {result['message']}")

    scores = result.get("scores") or {}
    if scores:
        lines.append("\nScores:")
        for node, score in sorted(scores.items(), key=lambda kv: (-kv[1], kv[0])):
            lines.append(f"  {node}: {score}")
    return lines


def render_bind(result: dict[str, Any]) -> list[str]:
    lines = render_schedule(result)
    if result.get("events"):
        lines.append("\nEvents:")
        lines.extend(_event_line(e) for e in result["events"])
    return lines


def render_reasons(result: dict[str, Any]) -> list[str]:
    reasons = result["reasons"]
    if not reasons:
        return [f"Pod {result['pod']}: every node passes all filters"]
    return [f"Pod {result['pod']} cannot be placed on:"] + [f"  - {r}" for r in reasons]


def render_fault(result: dict[str, Any]) -> list[str]:
    lines = [f"{_status(result['success'])}: {result['message']}"]
    if result.get("reason"):
        lines.append(f"Reason: {result['reason']}")
    if result.get("events"):
        lines.append("\nEvents:")
        lines.extend(_event_line(e) for e in result["events"])
    return lines


def render_faults(result: dict[str, Any]) -> list[str]:
    faults = result["faults"]
    if not faults:
        return ["No active faults"]
    width = max(len(f["type"]) for f in faults)
    return [f"{f['type']:<{width}}  {f['target']:<16} {f['description']}" for f in faults]


def render_events(result: dict[str, Any]) -> list[str]:
    events = result["events"]
    if not events:
        return ["No events"]
    return [_event_line(e).strip() for e in events]
