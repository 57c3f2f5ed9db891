"""
Label decoder for remote session streams.

The remote platform describes its state with free-form labels whose
exact vocabulary is not under our control (enum reprs such as
"Mode.speaking", "AgentState.listening", plain "disconnected", ...).
This module is the single place those labels are interpreted.

Policy:
- Labels are normalised, then looked up in explicit tables.
- Unknown status labels decode to RemoteStatus.UNKNOWN (ignored downstream).
- Only the speaking labels mean somebody is talking; every other activity
  label, unknown ones included, decodes to a not-speaking variant.
"""

from __future__ import annotations

from typing import Final

from orchestrator.events import (
    ActivityChanged,
    AgentActivity,
    MuteChanged,
    RemoteEventType,
    RemoteStatus,
    StatusChanged,
)


STATUS_LABELS: Final[dict[str, RemoteStatus]] = {
    "connecting": RemoteStatus.CONNECTING,
    "reconnecting": RemoteStatus.CONNECTING,
    "connected": RemoteStatus.CONNECTED,
    "active": RemoteStatus.CONNECTED,
    "open": RemoteStatus.CONNECTED,
    "disconnected": RemoteStatus.ENDED,
    "disconnecting": RemoteStatus.ENDED,
    "ended": RemoteStatus.ENDED,
    "closed": RemoteStatus.ENDED,
    "idle": RemoteStatus.ENDED,
    "error": RemoteStatus.ERROR,
    "failed": RemoteStatus.ERROR,
}

ACTIVITY_LABELS: Final[dict[str, AgentActivity]] = {
    "speaking": AgentActivity.AGENT_SPEAKING,
    "agent_speaking": AgentActivity.AGENT_SPEAKING,
    "user_speaking": AgentActivity.USER_SPEAKING,
    "listening": AgentActivity.LISTENING,
    "thinking": AgentActivity.THINKING,
    "idle": AgentActivity.IDLE,
}


def normalize_label(label: str) -> str:
    """
    Canonical form of a platform label.

    "Mode.Speaking" -> "speaking", " agent-speaking " -> "agent_speaking"
    """
    text = label.strip().lower()
    # Enum reprs: keep the member name only
    text = text.rsplit(".", 1)[-1]
    return text.replace("-", "_").replace(" ", "_")


def classify_status(label: str) -> RemoteStatus:
    return STATUS_LABELS.get(normalize_label(label), RemoteStatus.UNKNOWN)


def classify_activity(label: str) -> AgentActivity:
    return ACTIVITY_LABELS.get(normalize_label(label), AgentActivity.UNKNOWN)


# ---------------------------------------------------------------------
# Event construction
# ---------------------------------------------------------------------

def decode_status(label: str, *, run_id: int, ts_ms: int) -> StatusChanged:
    return StatusChanged(
        event_type=RemoteEventType.STATUS,
        run_id=run_id,
        ts_ms=ts_ms,
        status=classify_status(label),
        label=label,
    )


def decode_activity(label: str, *, run_id: int, ts_ms: int) -> ActivityChanged:
    return ActivityChanged(
        event_type=RemoteEventType.ACTIVITY,
        run_id=run_id,
        ts_ms=ts_ms,
        activity=classify_activity(label),
        label=label,
    )


def decode_mute(muted: bool, *, run_id: int, ts_ms: int) -> MuteChanged:
    return MuteChanged(
        event_type=RemoteEventType.MUTE,
        run_id=run_id,
        ts_ms=ts_ms,
        muted=bool(muted),
    )
