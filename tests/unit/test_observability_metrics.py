# pylint: disable=missing-module-docstring,missing-function-docstring

from typing import Any

import pytest

from observability import metrics


@pytest.fixture
def emitted(monkeypatch: pytest.MonkeyPatch) -> list[dict[str, Any]]:
    events: list[dict[str, Any]] = []
    monkeypatch.setattr(metrics, "log_event", events.append)
    return events


def test_timed_emits_one_metric_with_outcome(emitted: list[dict[str, Any]]) -> None:
    with metrics.timed("remote_open_latency", session_id="s1", run_id=3) as extra:
        extra["outcome"] = "opened"

    assert len(emitted) == 1
    event = emitted[0]
    assert event["event_type"] == "METRIC_TIMER"
    assert event["metric"] == "remote_open_latency"
    assert event["session_id"] == "s1"
    assert event["run_id"] == 3
    assert event["value_ms"] >= 0
    assert event["details"] == {"outcome": "opened"}


def test_timed_still_emits_when_block_raises(emitted: list[dict[str, Any]]) -> None:
    with pytest.raises(RuntimeError):
        with metrics.timed("remote_close_duration", details={"source": "end"}):
            raise RuntimeError("boom")

    assert [e["metric"] for e in emitted] == ["remote_close_duration"]
    assert emitted[0]["details"] == {"source": "end"}
