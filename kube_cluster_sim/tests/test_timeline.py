from kube_cluster_sim.model import EventType, InvolvedObject
from kube_cluster_sim.timeline import build_timeline, new_event, utc_now


def _event(reason, ts, event_type=EventType.WARNING, name="web", kind="Pod", message=""):
    return new_event(
        event_type,
        reason,
        message,
        InvolvedObject(kind=kind, name=name, namespace="default"),
        source="test",
        now=ts,
    )


def test_new_event_defaults():
    e = _event("BackOff", "2024-05-01T12:00:00Z")

    assert e.count == 1
    assert e.timestamp == e.first_timestamp == e.last_timestamp == "2024-05-01T12:00:00Z"
    assert e.source.component == "test"


def test_utc_now_format():
    ts = utc_now()
    assert ts.endswith("Z")
    assert len(ts) == len("2024-05-01T12:00:00Z")


class TestTimeline:
    def setup_method(self):
        self.timeline = build_timeline(
            [
                _event("Scheduled", "2024-05-01T11:00:00Z", EventType.NORMAL),
                _event("BackOff", "2024-05-01T11:55:00Z"),
                _event("BackOff", "2024-05-01T11:58:00Z"),
                _event("NodeNotReady", "2024-05-01T11:59:00Z", kind="Node", name="node01"),
                _event("BackOff", "2024-05-01T12:00:00Z"),
            ]
        )

    def test_count_and_repeated(self):
        assert self.timeline.count() == 5
        assert self.timeline.count(reason="BackOff") == 3
        assert self.timeline.repeated("BackOff", 3)
        assert not self.timeline.repeated("BackOff", 4)

    def test_first_and_last(self):
        assert self.timeline.first("BackOff").timestamp == "2024-05-01T11:55:00Z"
        assert self.timeline.last("BackOff").timestamp == "2024-05-01T12:00:00Z"
        assert self.timeline.first("Evicted") is None

    def test_normalized_kinds(self):
        assert self.timeline.has(kind="Scheduling", phase="Info")
        assert self.timeline.has(kind="Node", phase="Failure")
        assert self.timeline.has(kind="Container", phase="Failure")
        assert not self.timeline.has(kind="Image")

    def test_for_object(self):
        assert len(self.timeline.for_object("web")) == 4
        assert len(self.timeline.for_object("node01", kind="Node")) == 1
        assert self.timeline.for_object("node01", kind="Pod") == []

    def test_events_within_window(self):
        recent = self.timeline.events_within_window(5, reason="BackOff")
        assert [e.timestamp for e in recent] == [
            "2024-05-01T11:55:00Z",
            "2024-05-01T11:58:00Z",
            "2024-05-01T12:00:00Z",
        ]
        assert len(self.timeline.events_within_window(1)) == 2

    def test_empty_timeline(self):
        empty = build_timeline([])
        assert empty.events_within_window(10) == []
        assert empty.last() is None
