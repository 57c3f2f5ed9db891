"""
Connection phase enumeration.

Rules:
- This enum defines ONLY the lifecycle stages of a conversation session.
- No behavior, no helper methods, no side effects.
- Transitions are owned by the controller and the reducer.
"""

from __future__ import annotations

from enum import Enum


class ConnectionPhase(str, Enum):
    """
    Lifecycle stage of the single conversation session.

    IDLE -> CONNECTING -> ACTIVE -> ENDING -> IDLE
    Any phase may pass through ERROR on an unrecoverable remote failure.
    ERROR is not sticky: it is published, then the session returns to IDLE.
    """

    IDLE = "IDLE"
    CONNECTING = "CONNECTING"
    ACTIVE = "ACTIVE"
    ENDING = "ENDING"
    ERROR = "ERROR"
