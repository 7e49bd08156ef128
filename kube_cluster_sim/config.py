from dataclasses import dataclass, fields
from typing import Any

import yaml

# ----------------------------
# Simulator configuration
# ----------------------------

DEFAULT_MAX_PODS = 110
OUTPUT_FORMATS = ("text", "json", "yaml")


@dataclass(frozen=True)
class SimulatorConfig:
    """
    Tunables shared by the scheduler, the fault engine and the CLI.
    """

    default_max_pods: int = DEFAULT_MAX_PODS
    event_source: str = "fault-injector"
    scheduler_name: str = "default-scheduler"
    output_format: str = "text"


DEFAULT_CONFIG = SimulatorConfig()


def config_from_dict(data: dict[str, Any] | None) -> SimulatorConfig:
    if not data:
        return DEFAULT_CONFIG
    if not isinstance(data, dict):
        raise ValueError("Configuration must be a mapping")

    known = {f.name for f in fields(SimulatorConfig)}
    unknown = set(data) - known
    if unknown:
        raise ValueError(f"Unknown configuration keys: {sorted(unknown)}")

    max_pods = data.get("default_max_pods", DEFAULT_MAX_PODS)
    if not isinstance(max_pods, int) or isinstance(max_pods, bool) or max_pods < 0:
        raise ValueError("default_max_pods must be a non-negative integer")

    fmt = data.get("output_format", "text")
    if fmt not in OUTPUT_FORMATS:
        raise ValueError(f"output_format must be one of {', '.join(OUTPUT_FORMATS)}")

    return SimulatorConfig(**data)


def load_config(path: str | None) -> SimulatorConfig:
    if path is None:
        return DEFAULT_CONFIG
    with open(path, encoding="utf-8") as f:
        return config_from_dict(yaml.safe_load(f))
