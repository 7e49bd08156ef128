from collections.abc import Callable, Iterable
from datetime import datetime, timedelta, timezone

from kube_cluster_sim.model import (
    EventSource,
    EventType,
    InvolvedObject,
    K8sEvent,
)


def utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_time(ts: str) -> datetime:
    return datetime.fromisoformat(ts.replace("Z", "+00:00"))


def new_event(
    event_type: EventType,
    reason: str,
    message: str,
    involved_object: InvolvedObject,
    *,
    source: str,
    host: str | None = None,
    now: str | None = None,
) -> K8sEvent:
    ts = now or utc_now()
    return K8sEvent(
        type=event_type,
        reason=reason,
        message=message,
        involved_object=involved_object,
        timestamp=ts,
        count=1,
        first_timestamp=ts,
        last_timestamp=ts,
        source=EventSource(component=source, host=host),
    )


class NormalizedEvent:
    def __init__(self, event: K8sEvent):
        self.event = event
        self.reason = event.reason
        self.kind = self._kind()
        self.phase = self._phase()
        self.source = event.source.component if event.source else None

    def _kind(self) -> str:
        reason = self.reason.lower()
        obj_kind = self.event.involved_object.kind
        if reason.endswith("scheduling") or reason == "scheduled":
            return "Scheduling"
        if "pull" in reason or (reason == "failed" and "image" in self.event.message.lower()):
            return "Image"
        if obj_kind == "Node":
            return "Node"
        if reason in ("backoff", "oomkilling", "started", "evicted"):
            return "Container"
        return "Generic"

    def _phase(self) -> str:
        if self.event.type == EventType.WARNING:
            return "Failure"
        return "Info"


class Timeline:
    """
    Read-only query view over an event sequence, oldest first.
    """

    def __init__(self, events: Iterable[K8sEvent]):
        self.events = tuple(events)
        self.normalized = [NormalizedEvent(e) for e in self.events]

    def first(self, reason: str) -> K8sEvent | None:
        for e in self.events:
            if e.reason == reason:
                return e
        return None

    def last(self, reason: str | None = None) -> K8sEvent | None:
        for e in reversed(self.events):
            if reason is None or e.reason == reason:
                return e
        return None

    def has(self, *, kind: str | None = None, phase: str | None = None) -> bool:
        for e in self.normalized:
            if kind and e.kind != kind:
                continue
            if phase and e.phase != phase:
                continue
            return True
        return False

    def count(self, *, reason: str | None = None) -> int:
        if not reason:
            return len(self.events)
        return sum(1 for e in self.events if e.reason == reason)

    def repeated(self, reason: str, threshold: int) -> bool:
        return self.count(reason=reason) >= threshold

    def for_object(self, name: str, *, kind: str | None = None) -> list[K8sEvent]:
        return [
            e
            for e in self.events
            if e.involved_object.name == name
            and (kind is None or e.involved_object.kind == kind)
        ]

    def events_within_window(
        self,
        minutes: int,
        *,
        reason: str | None = None,
        reference: str | None = None,
    ) -> list[K8sEvent]:
        """
        Events within the last `minutes` before `reference`
        (default: the newest event's timestamp).
        """
        if not self.events:
            return []

        ref = parse_time(reference or self.events[-1].last_timestamp or self.events[-1].timestamp)
        cutoff = ref - timedelta(minutes=minutes)

        result = []
        for e in self.events:
            if parse_time(e.last_timestamp or e.timestamp) < cutoff:
                continue
            if reason is None or e.reason == reason:
                result.append(e)
        return result

    def matching(self, predicate: Callable[[K8sEvent], bool]) -> list[K8sEvent]:
        return [e for e in self.events if predicate(e)]


def build_timeline(events: Iterable[K8sEvent]) -> Timeline:
    return Timeline(events)
