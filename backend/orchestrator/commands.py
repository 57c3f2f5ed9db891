"""
Side-effect command definitions emitted by the reducer.

Rules:
- Commands are declarative requests for side effects.
- Commands are emitted by the reducer and executed by the controller.
- No behavior, no async, no I/O, no clocks.
Invariant:
    - All concrete Command subclasses MUST be frozen dataclasses.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from orchestrator.state_dataclass import ErrorInfo


class CommandType(str, Enum):
    """Stable discriminants for logging and controller dispatch."""

    LOG_EVENT = "LOG_EVENT"
    END_SESSION = "END_SESSION"


class Command:
    """
    Base command type.

    command_type is an explicit discriminant and must never be inferred
    from Python type identity.
    """

    command_type: CommandType


@dataclass(frozen=True)
class LogEvent(Command):
    """Structured observability record, written by the controller."""
    event: dict[str, Any]
    command_type: CommandType = CommandType.LOG_EVENT


@dataclass(frozen=True)
class EndSession(Command):
    """
    Tear down the session identified by run_id.

    Emitted when the remote side ended or failed. error, when present,
    is kept in last_error after the phase returns to IDLE.
    """
    run_id: int
    error: ErrorInfo | None = None
    command_type: CommandType = CommandType.END_SESSION
