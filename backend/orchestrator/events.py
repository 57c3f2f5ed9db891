"""
Remote session event definitions (decoded form).

Rules:
- Events describe facts reported by the remote voice-agent platform.
- Events carry data only (no behavior).
- Raw platform labels are decoded into these variants at the adapter
  boundary (adapters.agent.decoding); the reducer never sees strings.
- Every event carries the run_id of the session it came from, so that
  late events from a torn-down session can be discarded.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


# =============================================================================
# Event Type Enumeration
# =============================================================================

class RemoteEventType(str, Enum):
    """The three independent streams a remote session produces."""

    STATUS = "STATUS"
    ACTIVITY = "ACTIVITY"
    MUTE = "MUTE"


# =============================================================================
# Decoded variants
# =============================================================================

class RemoteStatus(str, Enum):
    """Connection status as reported by the platform."""

    CONNECTING = "CONNECTING"
    CONNECTED = "CONNECTED"
    ENDED = "ENDED"
    ERROR = "ERROR"
    UNKNOWN = "UNKNOWN"


class AgentActivity(str, Enum):
    """
    Who is talking, as reported by the platform.

    Only AGENT_SPEAKING and USER_SPEAKING mean somebody is talking.
    Everything else (including UNKNOWN) is silence.
    """

    AGENT_SPEAKING = "AGENT_SPEAKING"
    USER_SPEAKING = "USER_SPEAKING"
    LISTENING = "LISTENING"
    THINKING = "THINKING"
    IDLE = "IDLE"
    UNKNOWN = "UNKNOWN"


# =============================================================================
# Base Event
# =============================================================================

@dataclass(frozen=True)
class RemoteEvent:
    """
    Base remote event.

    event_type: discriminant
    run_id: session the event belongs to
    ts_ms: arrival timestamp (or fake in tests)
    """

    event_type: RemoteEventType
    run_id: int
    ts_ms: int


@dataclass(frozen=True)
class StatusChanged(RemoteEvent):
    status: RemoteStatus
    label: str = ""


@dataclass(frozen=True)
class ActivityChanged(RemoteEvent):
    activity: AgentActivity
    label: str = ""


@dataclass(frozen=True)
class MuteChanged(RemoteEvent):
    muted: bool
