import pytest

from flowcore import eventbus, metrics
from flowcore.events import (
    AbortRequested,
    CancelLatencyMeasured,
    GenerationCompleted,
    emit,
    on,
)


def test_eventbus_dispatch_and_unsubscribe():  # noqa: D401
    got = []
    unsub = eventbus.subscribe("TestEvent", lambda p: got.append(p["value"]))
    eventbus.emit("TestEvent", {"value": 3})
    unsub()
    eventbus.emit("TestEvent", {"value": 4})
    assert got == [3]
    assert metrics.counter_value("events_emitted_total", {"event": "TestEvent"}) == 2


def test_eventbus_handler_exception_isolated():  # noqa: D401
    got = []

    def boom(_p):
        raise RuntimeError("x")

    eventbus.subscribe("E", boom)
    eventbus.subscribe("E", lambda p: got.append(p))
    eventbus.emit("E", {})
    assert len(got) == 1
    assert metrics.counter_value("handler_exceptions_total", {"event": "E"}) == 1


def test_typed_events_reach_any_subscribers_and_metrics():  # noqa: D401
    seen = []
    unsub = on(lambda name, payload: seen.append((name, payload)))
    emit(GenerationCompleted("c", "s", "m", "stop", frames=4, latency_ms=12))
    emit(CancelLatencyMeasured("c", "s", duration_ms=7))
    emit(AbortRequested("c", "s", delivered=True))
    unsub()
    names = [n for n, _ in seen]
    assert names == ["GenerationCompleted", "CancelLatencyMeasured", "AbortRequested"]
    assert seen[0][1]["finish_reason"] == "stop"
    assert "ts" in seen[0][1]
    snap = metrics.snapshot()
    assert snap["counters"]["events_generation{type=completed}"] == 1
    assert snap["histograms"]["cancel_latency_ms"]["last"] == 7
    assert metrics.counter_value("abort_requested_total", {"delivered": True}) == 1


def test_metrics_snapshot_labels_and_histograms():  # noqa: D401
    metrics.inc("x_total", {"b": 2, "a": 1})
    metrics.inc("x_total", {"a": 1, "b": 2}, value=2)
    for v in (5, 1, 3):
        metrics.observe("lat_ms", v)
    snap = metrics.snapshot()
    assert snap["counters"]["x_total{a=1,b=2}"] == 3
    hist = snap["histograms"]["lat_ms"]
    assert (hist["count"], hist["min"], hist["max"], hist["p50"]) == (3, 1, 5, 3)
    metrics.inc_stream_finished("stop")
    assert metrics.counter_value("stream_finished_total", {"reason": "stop"}) == 1


def test_unknown_error_type_rejected():  # noqa: D401
    from flowcore.errors import validate_error_type

    assert validate_error_type("stream-conflict") == "stream-conflict"
    with pytest.raises(ValueError):
        validate_error_type("no-such-type")
