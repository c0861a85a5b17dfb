"""In-memory counters for lifecycle runs, tracker calls and metric refreshes.

Asyncio is single-threaded, so plain dicts need no locking.
"""

import time

_start_time = time.monotonic()

_metrics: dict = {
    "lifecycle_runs": 0,
    "lifecycle_decisions": {},
    "lifecycle_actions_applied": 0,
    "lifecycle_errors": 0,
    "tracker_calls": {},
    "user_metrics_refreshed": 0,
}


def record_tracker_call(operation: str, success: bool) -> None:
    """Record one tracker API call outcome, keyed by method and path shape."""
    t = _metrics["tracker_calls"].setdefault(operation, {
        "calls": 0,
        "successes": 0,
        "failures": 0,
    })
    t["calls"] += 1
    if success:
        t["successes"] += 1
    else:
        t["failures"] += 1


def record_lifecycle_decision(decision: str) -> None:
    decisions = _metrics["lifecycle_decisions"]
    decisions[decision] = decisions.get(decision, 0) + 1


def record_lifecycle_applied() -> None:
    _metrics["lifecycle_actions_applied"] += 1


def record_lifecycle_error() -> None:
    _metrics["lifecycle_errors"] += 1


def record_lifecycle_run() -> None:
    _metrics["lifecycle_runs"] += 1


def record_user_metrics_refreshed(count: int) -> None:
    _metrics["user_metrics_refreshed"] += count


def get_metrics() -> dict:
    """Return a snapshot of current metrics."""
    return {
        "uptime_seconds": round(time.monotonic() - _start_time, 1),
        "lifecycle_runs": _metrics["lifecycle_runs"],
        "lifecycle_decisions": dict(_metrics["lifecycle_decisions"]),
        "lifecycle_actions_applied": _metrics["lifecycle_actions_applied"],
        "lifecycle_errors": _metrics["lifecycle_errors"],
        "tracker_calls": {
            name: dict(stats)
            for name, stats in _metrics["tracker_calls"].items()
        },
        "user_metrics_refreshed": _metrics["user_metrics_refreshed"],
    }


def reset_metrics() -> None:
    _metrics["lifecycle_runs"] = 0
    _metrics["lifecycle_decisions"] = {}
    _metrics["lifecycle_actions_applied"] = 0
    _metrics["lifecycle_errors"] = 0
    _metrics["tracker_calls"] = {}
    _metrics["user_metrics_refreshed"] = 0
