"""Minimal in-memory metrics collector.

Purpose:
    - Counters and simple latency samples for stream health checks.
    - Zero external deps; can be swapped by a Prometheus exporter later.

Core API (intentionally tiny):
    inc(name, labels=None, value=1)
    observe(name, value, labels=None)
    snapshot() -> dict (copy for safe reading)

Thread-safety: coarse RLock; overhead negligible for low event volume.

Streaming metric names (documented for discoverability):
    - stream_started_total
    - stream_frames_total{kind}
    - stream_finished_total{reason}
    - stream_resume_total{result}          # attached|no-active|stale|not-found
    - stream_abort_total{result}           # signalled|no-active|not-found
    - abort_publish_failures_total
    - registry_reclaimed_total{backend}
    - cancel_latency_ms                    # abort signal -> run finalized
    - finish_hook_failures_total
    - api_request_total{route,method} / api_request_latency_ms

Helper functions wrap ``inc`` for the label sets used in several places.
"""
from __future__ import annotations

from threading import RLock
from time import time
from typing import Dict, Tuple, Any

_COUNTERS: Dict[Tuple[str, Tuple[Tuple[str, str], ...]], float] = {}
_HIST: Dict[Tuple[str, Tuple[Tuple[str, str], ...]], list] = {}
_LOCK = RLock()


def _norm_labels(labels: dict[str, Any] | None) -> Tuple[Tuple[str, str], ...]:
    if not labels:
        return tuple()
    return tuple(sorted((str(k), str(v)) for k, v in labels.items()))


def _label_str(labels: Tuple[Tuple[str, str], ...]) -> str:
    if not labels:
        return ""
    return "{" + ",".join(f"{k}={v}" for k, v in labels) + "}"


def inc(
    name: str,
    labels: dict[str, Any] | None = None,
    value: float = 1.0,
) -> None:
    key = (name, _norm_labels(labels))
    with _LOCK:
        _COUNTERS[key] = _COUNTERS.get(key, 0.0) + value


def observe(
    name: str,
    value: float,
    labels: dict[str, Any] | None = None,
) -> None:
    key = (name, _norm_labels(labels))
    with _LOCK:
        _HIST.setdefault(key, []).append(value)


def counter_value(name: str, labels: dict[str, Any] | None = None) -> float:
    """Return a single counter value (0.0 when never incremented)."""
    with _LOCK:
        return _COUNTERS.get((name, _norm_labels(labels)), 0.0)


def snapshot() -> dict[str, Any]:
    with _LOCK:
        counters: dict[str, float] = {}
        for (name, labels), v in _COUNTERS.items():
            counters[name + _label_str(labels)] = v
        hist = {}
        for (name, labels), vals in _HIST.items():
            if not vals:
                continue
            ordered = sorted(vals)
            hist[name + _label_str(labels)] = {
                "count": len(vals),
                "min": ordered[0],
                "max": ordered[-1],
                "p50": ordered[len(ordered) // 2],
                "last": vals[-1],
            }
        return {
            "ts": time(),
            "counters": counters,
            "histograms": hist,
        }


def reset_for_tests() -> None:  # pragma: no cover
    with _LOCK:
        _COUNTERS.clear()
        _HIST.clear()


__all__ = [
    "inc",
    "observe",
    "counter_value",
    "snapshot",
    "reset_for_tests",
    "inc_stream_finished",
    "inc_resume",
    "inc_abort",
]


# ------------------- Helper wrappers -------------------

def inc_stream_finished(reason: str) -> None:
    """Increment terminal outcome counter.

    reason: finish reason recorded on the assistant message
    (stop|length|tool-calls|error|abort|...).
    """
    inc("stream_finished_total", {"reason": reason})


def inc_resume(result: str) -> None:
    """Increment resume outcome counter (attached|no-active|stale|not-found)."""
    inc("stream_resume_total", {"result": result})


def inc_abort(result: str) -> None:
    """Increment abort outcome counter (signalled|no-active|not-found)."""
    inc("stream_abort_total", {"result": result})
