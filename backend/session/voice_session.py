"""
Voice session container.

- One VoiceSession per conversation attempt (start -> end)
- Owned and mutated by VoiceSessionController only; never shared
- Wraps the remote session handle plus the listener tasks consuming
  its event streams
- NOT a state machine; contains no orchestration logic
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any
from uuid import uuid4

from adapters.agent.base import RemoteSession


def _new_session_id() -> str:
    return f"sess_{uuid4().hex[:12]}"


# ---------------------------------------------------------------------
# VoiceSession
# ---------------------------------------------------------------------


@dataclass
class VoiceSession:
    """Mutable runtime container for a single conversation."""

    # ------------------------------------------------------------------
    # Identity / lifecycle
    # ------------------------------------------------------------------

    run_id: int
    agent_id: str
    session_id: str = field(default_factory=_new_session_id)
    created_at: float = field(default_factory=time.time)

    # ------------------------------------------------------------------
    # Remote handle (None while the open call is in flight)
    # ------------------------------------------------------------------

    remote: RemoteSession | None = None

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    listeners: list[asyncio.Task[None]] = field(default_factory=list)

    # Pending mute confirmations keyed by requested value
    _mute_waiters: dict[bool, asyncio.Event] = field(
        default_factory=dict, init=False, repr=False
    )

    # ------------------------------------------------------------------
    # Wiring helpers (called by VoiceSessionController)
    # ------------------------------------------------------------------

    def attach_remote(self, remote: RemoteSession) -> None:
        self.remote = remote

    def add_listener(self, task: asyncio.Task[None]) -> None:
        self.listeners.append(task)

    async def detach(self) -> None:
        """
        Release every event subscription.

        Cancels listener tasks and waits for them to finish. A listener
        calling this on its own session is skipped rather than awaited.
        """
        current = asyncio.current_task()
        tasks = [t for t in self.listeners if t is not current]
        self.listeners.clear()

        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        for waiter in self._mute_waiters.values():
            waiter.set()
        self._mute_waiters.clear()

    # ------------------------------------------------------------------
    # Mute confirmation
    # ------------------------------------------------------------------

    @property
    def mute_pending(self) -> bool:
        return bool(self._mute_waiters)

    def expect_mute(self, muted: bool) -> asyncio.Event:
        """Return an event set once the remote confirms `muted`."""
        return self._mute_waiters.setdefault(muted, asyncio.Event())

    def confirm_mute(self, muted: bool) -> None:
        waiter = self._mute_waiters.pop(muted, None)
        if waiter is not None:
            waiter.set()

    def forget_mute(self, muted: bool) -> None:
        self._mute_waiters.pop(muted, None)

    # ------------------------------------------------------------------
    # Observability helpers (read-only)
    # ------------------------------------------------------------------

    def log_context(self) -> dict[str, Any]:
        """Standard logging context for this session."""
        return {
            "session_id": self.session_id,
            "run_id": self.run_id,
            "agent_id": self.agent_id,
        }
