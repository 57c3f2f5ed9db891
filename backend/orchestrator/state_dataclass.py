"""
Authoritative session state container.

Rules:
- SessionState is a pure data model (frozen, one canonical instance
  held by the SessionStateStore).
- StateMutation is the only way to describe a change to it.
- Invariants are enforced by the store at commit time, not here.
"""
from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Literal

from orchestrator.enums.phase import ConnectionPhase


ErrorKind = Literal["remote_open", "remote_close", "remote_mute", "remote_status"]


# =============================================================================
# Errors surfaced to observers
# =============================================================================

@dataclass(frozen=True)
class ErrorInfo:
    """Dismissible error descriptor shown to the user."""
    kind: ErrorKind
    reason: str


# =============================================================================
# Session State
# =============================================================================

@dataclass(frozen=True)
class SessionState:
    """Immutable snapshot of everything UI observers render."""

    phase: ConnectionPhase = ConnectionPhase.IDLE

    # Meaningful only while ACTIVE
    is_muted: bool = False

    # At most one talker at a time; both False means silence / thinking
    agent_speaking: bool = False
    user_speaking: bool = False

    last_error: ErrorInfo | None = None

    # Monotonic commit counter, stamped by the store
    revision: int = 0

    # ------------------------------------------------------------------
    # Derived views
    # ------------------------------------------------------------------

    @property
    def is_loading(self) -> bool:
        return self.phase is ConnectionPhase.CONNECTING

    @property
    def is_connected(self) -> bool:
        return self.phase is ConnectionPhase.ACTIVE

    @property
    def is_anyone_thinking(self) -> bool:
        return self.is_connected and not self.agent_speaking and not self.user_speaking

    @property
    def is_conversation_active(self) -> bool:
        return self.agent_speaking or self.user_speaking

    def to_dict(self) -> dict[str, Any]:
        """JSON payload sent to observers."""
        return {
            "phase": self.phase.value,
            "is_muted": self.is_muted,
            "agent_speaking": self.agent_speaking,
            "user_speaking": self.user_speaking,
            "is_loading": self.is_loading,
            "is_connected": self.is_connected,
            "is_anyone_thinking": self.is_anyone_thinking,
            "last_error": (
                {"kind": self.last_error.kind, "reason": self.last_error.reason}
                if self.last_error is not None
                else None
            ),
            "revision": self.revision,
        }


# =============================================================================
# Mutations
# =============================================================================

@dataclass(frozen=True)
class StateMutation:
    """
    Partial update to SessionState.

    None means "leave unchanged". last_error can only be set here;
    clearing it requires clear_error=True so that None stays unambiguous.
    """

    phase: ConnectionPhase | None = None
    is_muted: bool | None = None
    agent_speaking: bool | None = None
    user_speaking: bool | None = None
    last_error: ErrorInfo | None = None
    clear_error: bool = False

    def apply(self, state: SessionState) -> SessionState:
        changes: dict[str, Any] = {}
        if self.phase is not None:
            changes["phase"] = self.phase
        if self.is_muted is not None:
            changes["is_muted"] = self.is_muted
        if self.agent_speaking is not None:
            changes["agent_speaking"] = self.agent_speaking
        if self.user_speaking is not None:
            changes["user_speaking"] = self.user_speaking
        if self.clear_error:
            changes["last_error"] = None
        if self.last_error is not None:
            changes["last_error"] = self.last_error
        return replace(state, **changes)


# Local reset applied on every teardown, whatever the remote said.
RESET_TO_IDLE = StateMutation(
    phase=ConnectionPhase.IDLE,
    is_muted=False,
    agent_speaking=False,
    user_speaking=False,
)
