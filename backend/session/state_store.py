"""
Session state store.

- Single source of truth for SessionState (one instance per process,
  constructed by the composition root and injected, never global)
- Validates invariants on every commit; an invalid mutation is rejected
  and the last valid state is kept
- Publishes every committed state to all observers, synchronously and in
  subscription order, on the committing context
- snapshot() / subscribe() never block on remote work
"""

from __future__ import annotations

import asyncio
import itertools
import threading
from dataclasses import dataclass, replace
from typing import AsyncIterator, Callable

from constants import STATE_STREAM_BUFFER
from observability.logger import log_event
from orchestrator.enums.phase import ConnectionPhase
from orchestrator.state_dataclass import SessionState, StateMutation


Observer = Callable[[SessionState], None]


class StateInvariantViolation(Exception):
    """A mutation would have published an impossible SessionState."""

    def __init__(self, message: str, *, attempted: SessionState) -> None:
        super().__init__(message)
        self.attempted = attempted


@dataclass(frozen=True)
class Subscription:
    """Registration handle returned by subscribe()."""
    subscription_id: int


def _normalize(state: SessionState) -> SessionState:
    # Muted implies the user is not speaking
    if state.is_muted and state.user_speaking:
        return replace(state, user_speaking=False)
    return state


def _check_invariants(state: SessionState) -> None:
    if state.agent_speaking and state.user_speaking:
        raise StateInvariantViolation(
            "agent and user cannot speak at the same time", attempted=state
        )
    if state.phase is not ConnectionPhase.ACTIVE and (
        state.agent_speaking or state.user_speaking
    ):
        raise StateInvariantViolation(
            f"nobody can be speaking while {state.phase.value}", attempted=state
        )


class SessionStateStore:
    """
    Thread-safe publish/subscribe holder of the canonical SessionState.

    Writers: VoiceSessionController only.
    Readers: any number of UI observers.
    """

    def __init__(self, initial: SessionState | None = None) -> None:
        self._lock = threading.RLock()
        self._state = initial or SessionState()
        self._observers: dict[int, Observer] = {}
        self._ids = itertools.count(1)

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    def snapshot(self) -> SessionState:
        return self._state

    def subscribe(self, observer: Observer) -> Subscription:
        """
        Register an observer.

        The observer receives the current snapshot immediately, then
        every committed state until unsubscribed.
        """
        with self._lock:
            subscription = Subscription(subscription_id=next(self._ids))
            self._observers[subscription.subscription_id] = observer
            self._deliver(subscription.subscription_id, observer, self._state)
            return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        """Idempotent: unknown or already removed handles are ignored."""
        with self._lock:
            self._observers.pop(subscription.subscription_id, None)

    @property
    def observer_count(self) -> int:
        return len(self._observers)

    async def stream(
        self, *, buffer: int = STATE_STREAM_BUFFER
    ) -> AsyncIterator[SessionState]:
        """
        Async iterator of snapshots (current one first).

        Subscription lifetime is tied to the iteration: closing or
        abandoning the iterator unsubscribes.

        At most `buffer` snapshots wait for a slow consumer; older ones
        are dropped (the newest snapshot always survives).
        """
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue[SessionState] = asyncio.Queue(maxsize=buffer)

        def _put_latest(state: SessionState) -> None:
            if queue.full():
                dropped = queue.get_nowait()
                log_event({
                    "event_type": "STATE_STREAM_LAGGING",
                    "dropped_revision": dropped.revision,
                    "revision": state.revision,
                })
            queue.put_nowait(state)

        def _enqueue(state: SessionState) -> None:
            try:
                committing_loop = asyncio.get_running_loop()
            except RuntimeError:
                committing_loop = None

            if committing_loop is loop:
                _put_latest(state)
            else:
                loop.call_soon_threadsafe(_put_latest, state)

        subscription = self.subscribe(_enqueue)
        try:
            while True:
                yield await queue.get()
        finally:
            self.unsubscribe(subscription)

    # ------------------------------------------------------------------
    # Write side
    # ------------------------------------------------------------------

    def commit(self, mutation: StateMutation) -> SessionState:
        """
        Apply, validate and publish a mutation.

        Raises:
            StateInvariantViolation; the store keeps its last valid state.
        """
        with self._lock:
            candidate = _normalize(mutation.apply(self._state))
            _check_invariants(candidate)

            committed = replace(candidate, revision=self._state.revision + 1)
            self._state = committed

            for subscription_id, observer in list(self._observers.items()):
                self._deliver(subscription_id, observer, committed)

            return committed

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _deliver(
        self, subscription_id: int, observer: Observer, state: SessionState
    ) -> None:
        try:
            observer(state)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            # One broken observer must not starve the others
            log_event({
                "event_type": "OBSERVER_ERROR",
                "subscription_id": subscription_id,
                "revision": state.revision,
                "exception": type(exc).__name__,
                "message": str(exc),
            })
