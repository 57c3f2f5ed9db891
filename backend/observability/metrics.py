"""
Timing metrics for the remote session lifecycle.

- Durations use monotonic time
- One measurement = one METRIC_TIMER event via observability.logger
- No aggregation; dashboards work from the JSONL stream

Metrics emitted today:
- remote_open_latency    start() -> platform open settled
- remote_close_duration  teardown's bounded close call
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from typing import Any, Iterator

from observability.logger import log_event


@contextmanager
def timed(
    name: str,
    *,
    session_id: str | None = None,
    run_id: int | None = None,
    details: dict[str, Any] | None = None,
) -> Iterator[dict[str, Any]]:
    """
    Measure the enclosed block and emit exactly one metric event.

    The yielded dict is merged into the event's details, so the block
    can record its outcome:

        with timed("remote_open_latency", session_id=sid) as extra:
            ...
            extra["outcome"] = "ok"

    Exceptions (cancellation included) propagate; the metric is still
    emitted.
    """
    extra: dict[str, Any] = {}
    start_ns = time.monotonic_ns()
    try:
        yield extra
    finally:
        duration_ms = (time.monotonic_ns() - start_ns) // 1_000_000
        log_event({
            "event_type": "METRIC_TIMER",
            "metric": name,
            "value_ms": duration_ms,
            "session_id": session_id,
            "run_id": run_id,
            "details": {**(details or {}), **extra},
        })
