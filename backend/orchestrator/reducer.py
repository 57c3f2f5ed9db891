"""
Pure remote-event reducer.

(state, event) -> (mutation, commands)

Rules:
- Pure: no side effects, no IO, no clocks.
- Deterministic: output depends only on inputs.
- Total: every (phase, event) pair is handled or explicitly ignored (logged).
- Invariant enforcement (mute silences the user, no overlapping talkers)
  belongs to SessionStateStore.commit; the reducer only describes intent.
"""

from __future__ import annotations

from typing import Any

from orchestrator.commands import Command, EndSession, LogEvent
from orchestrator.enums.phase import ConnectionPhase
from orchestrator.events import (
    ActivityChanged,
    AgentActivity,
    MuteChanged,
    RemoteEvent,
    RemoteStatus,
    StatusChanged,
)
from orchestrator.state_dataclass import ErrorInfo, SessionState, StateMutation


Transition = tuple[StateMutation | None, tuple[Command, ...]]


# =============================================================================
# Small helpers
# =============================================================================

def _log(
    state: SessionState,
    event: RemoteEvent,
    decision: str,
    details: dict[str, Any] | None = None,
) -> LogEvent:
    return LogEvent(
        event={
            "ts_ms": event.ts_ms,
            "phase": state.phase.value,
            "event_type": event.event_type.value,
            "run_id": event.run_id,
            "decision": decision,
            "details": details or {},
        }
    )


def _ignore(state: SessionState, event: RemoteEvent, reason: str) -> Transition:
    return None, (_log(state, event, "ignore", {"reason": reason}),)


def _talkers(activity: AgentActivity) -> tuple[bool, bool]:
    """(agent_speaking, user_speaking) for a decoded activity."""
    if activity is AgentActivity.AGENT_SPEAKING:
        return True, False
    if activity is AgentActivity.USER_SPEAKING:
        return False, True
    return False, False


# =============================================================================
# Per-stream handlers
# =============================================================================

def _reduce_status(state: SessionState, event: StatusChanged) -> Transition:
    if event.status is RemoteStatus.ENDED:
        return None, (
            _log(state, event, "remote_ended", {"label": event.label}),
            EndSession(run_id=event.run_id),
        )

    if event.status is RemoteStatus.ERROR:
        error = ErrorInfo(kind="remote_status", reason=event.label or "remote_error")
        mutation = StateMutation(
            phase=ConnectionPhase.ERROR,
            agent_speaking=False,
            user_speaking=False,
            last_error=error,
        )
        return mutation, (
            _log(
                state,
                event,
                "state_changed",
                {
                    "from_phase": state.phase.value,
                    "to_phase": ConnectionPhase.ERROR.value,
                    "source": "remote_error",
                    "label": event.label,
                },
            ),
            EndSession(run_id=event.run_id, error=error),
        )

    if event.status is RemoteStatus.CONNECTED:
        return _ignore(state, event, "already_active")

    if event.status is RemoteStatus.CONNECTING:
        return _ignore(state, event, "remote_reconnecting")

    return _ignore(state, event, f"unknown_status:{event.label}")


def _reduce_activity(state: SessionState, event: ActivityChanged) -> Transition:
    agent, user = _talkers(event.activity)

    if agent == state.agent_speaking and user == state.user_speaking:
        return _ignore(state, event, "activity_unchanged")

    return (
        StateMutation(agent_speaking=agent, user_speaking=user),
        (
            _log(
                state,
                event,
                "activity_changed",
                {"activity": event.activity.value, "label": event.label},
            ),
        ),
    )


def _reduce_mute(state: SessionState, event: MuteChanged) -> Transition:
    if event.muted == state.is_muted:
        return _ignore(state, event, "mute_unchanged")

    return (
        StateMutation(is_muted=event.muted),
        (_log(state, event, "mute_confirmed", {"muted": event.muted}),),
    )


# =============================================================================
# Reducer entrypoint
# =============================================================================

def reduce(
    state: SessionState,
    event: RemoteEvent,
    *,
    active_run_id: int,
) -> Transition:
    """
    Translate one decoded remote event into a state mutation.

    Returns:
    - the mutation to commit (None when nothing changes)
    - a tuple of commands describing required side effects

    Properties:
    - Version-safe: events from any run other than active_run_id are ignored
    - Remote events only affect an ACTIVE session
    """
    if event.run_id != active_run_id:
        return _ignore(state, event, "stale_run")

    if state.phase is not ConnectionPhase.ACTIVE:
        return _ignore(state, event, f"phase_{state.phase.value.lower()}")

    if isinstance(event, StatusChanged):
        return _reduce_status(state, event)

    if isinstance(event, ActivityChanged):
        return _reduce_activity(state, event)

    if isinstance(event, MuteChanged):
        return _reduce_mute(state, event)

    return _ignore(state, event, f"unhandled_event:{type(event).__name__}")
