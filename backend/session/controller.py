"""
Voice session controller.

Responsibilities:
- Only writer of the SessionStateStore
- Only holder of a VoiceSession (at most one per process)
- Serialises start / end / toggle_mute commands and remote events
- Translates remote events into state mutations via the pure reducer
- Executes reducer commands (logging, remote-initiated teardown)
- Converts every remote failure into last_error; commands never raise
  to UI observers

Run IDs:
- Every start() bumps the run ID and stamps the new VoiceSession with it
- Teardown bumps it again, so anything still in flight for the old
  session (open result, stream event, mute confirmation) is stale and
  discarded
"""

from __future__ import annotations

import asyncio
from dataclasses import replace
from typing import Any, AsyncIterator, Callable, Coroutine

from adapters.agent.base import (
    ConversationConfig,
    RemoteCloseError,
    RemoteMuteError,
    RemoteOpenError,
    RemoteSession,
    RemoteSessionClient,
)
from adapters.agent.decoding import decode_activity, decode_mute, decode_status
from constants import MUTE_CONFIRM_TIMEOUT_S, REMOTE_CLOSE_TIMEOUT_S
from observability.logger import log_event, now_ms
from observability.metrics import timed
from orchestrator.commands import Command, EndSession, LogEvent
from orchestrator.enums.phase import ConnectionPhase
from orchestrator.events import MuteChanged, RemoteEvent
from orchestrator.reducer import reduce
from orchestrator.state_dataclass import (
    RESET_TO_IDLE,
    ErrorInfo,
    SessionState,
    StateMutation,
)
from session.state_store import SessionStateStore, StateInvariantViolation
from session.voice_session import VoiceSession


Decoder = Callable[..., RemoteEvent]


class VoiceSessionController:
    """
    Session lifecycle orchestrator.

    Lock discipline:
    - Every state read-modify-commit happens under self._lock
    - The lock is NOT held while awaiting the remote open, so end() can
      cancel a pending connect
    - The lock IS held through teardown (bounded by the close timeout),
      so a start() issued during ENDING waits and then sees IDLE
    """

    def __init__(
        self,
        *,
        store: SessionStateStore,
        client: RemoteSessionClient,
        conversation_config: ConversationConfig | None = None,
        close_timeout_s: float = REMOTE_CLOSE_TIMEOUT_S,
        mute_confirm_timeout_s: float = MUTE_CONFIRM_TIMEOUT_S,
    ) -> None:
        self._store = store
        self._client = client
        self._conversation_config = conversation_config
        self._close_timeout_s = close_timeout_s
        self._mute_confirm_timeout_s = mute_confirm_timeout_s

        self._lock = asyncio.Lock()
        self._run_id = 0
        self._session: VoiceSession | None = None
        self._connect_task: asyncio.Task[RemoteSession] | None = None
        self._background: set[asyncio.Task[None]] = set()

    # ------------------------------------------------------------------
    # Read-only accessors
    # ------------------------------------------------------------------

    @property
    def store(self) -> SessionStateStore:
        return self._store

    @property
    def state(self) -> SessionState:
        return self._store.snapshot()

    @property
    def active_run_id(self) -> int:
        return self._run_id

    @property
    def session(self) -> VoiceSession | None:
        return self._session

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def start(self, agent_id: str) -> None:
        """
        Open a conversation with agent_id.

        No-op while CONNECTING or ACTIVE. On failure the phase passes
        through ERROR back to IDLE with last_error set.
        """
        async with self._lock:
            state = self._store.snapshot()
            if state.phase in (ConnectionPhase.CONNECTING, ConnectionPhase.ACTIVE):
                self._log("START_IGNORED", {
                    "agent_id": agent_id,
                    "phase": state.phase.value,
                })
                return

            if self._session is not None:
                # Remote failure still being torn down
                await self._teardown(error=state.last_error, source="restart")

            self._run_id += 1
            run_id = self._run_id
            session = VoiceSession(run_id=run_id, agent_id=agent_id)
            self._session = session

            self._log("START_REQUESTED", session.log_context())
            self._commit(
                StateMutation(
                    phase=ConnectionPhase.CONNECTING,
                    is_muted=False,
                    agent_speaking=False,
                    user_speaking=False,
                ),
                source="start",
            )

            task = asyncio.create_task(
                self._client.open(agent_id, self._conversation_config)
            )
            self._connect_task = task

        try:
            with timed(
                "remote_open_latency",
                session_id=session.session_id,
                run_id=run_id,
            ) as metric:
                remote = await task
                metric["outcome"] = "opened"
        except asyncio.CancelledError:
            if run_id != self._run_id:
                self._log("REMOTE_OPEN_CANCELLED", session.log_context())
                return
            # Our own caller was cancelled; do not leave CONNECTING behind
            async with self._lock:
                if run_id == self._run_id:
                    await self._teardown(error=None, source="start_cancelled")
            raise
        except RemoteOpenError as exc:
            await self._fail_open(session, exc.reason)
            return
        except Exception as exc:  # pylint: disable=broad-exception-caught
            await self._fail_open(session, f"{type(exc).__name__}: {exc}")
            return

        async with self._lock:
            if run_id != self._run_id:
                # end() won the race; the late session must not be applied
                self._log("REMOTE_OPEN_LATE", session.log_context())
                self._spawn(self._close_remote(remote, session))
                return

            self._connect_task = None
            session.attach_remote(remote)
            self._listen(session, remote.status_events, decode_status)
            self._listen(session, remote.activity_events, decode_activity)
            self._listen(session, remote.mute_events, decode_mute)

            self._commit(
                StateMutation(phase=ConnectionPhase.ACTIVE, clear_error=True),
                source="remote_open",
            )

    async def end(self) -> None:
        """
        End the current conversation (or cancel a pending connect).

        Local state always returns to IDLE, whatever the remote says.
        """
        async with self._lock:
            state = self._store.snapshot()
            if state.phase is ConnectionPhase.IDLE and self._session is None:
                self._log("END_IGNORED", {"phase": state.phase.value})
                return

            await self._teardown(error=None, source="end")

    async def toggle_mute(self) -> None:
        """
        Ask the remote to flip the microphone mute state.

        is_muted only changes once the remote confirms on its mute
        stream; this call waits (bounded) for that confirmation.
        A toggle issued while an earlier one still awaits confirmation
        is ignored.
        """
        async with self._lock:
            state = self._store.snapshot()
            session = self._session
            if (
                state.phase is not ConnectionPhase.ACTIVE
                or session is None
                or session.remote is None
            ):
                self._log("TOGGLE_MUTE_IGNORED", {"phase": state.phase.value})
                return

            if session.mute_pending:
                # One toggle at a time; the pending request decides the target
                self._log("TOGGLE_MUTE_IGNORED", {
                    **session.log_context(),
                    "phase": state.phase.value,
                    "reason": "confirmation_pending",
                })
                return

            target = not state.is_muted
            remote = session.remote
            waiter = session.expect_mute(target)

        self._log("MUTE_REQUESTED", {**session.log_context(), "muted": target})

        try:
            await remote.set_muted(target)
        except RemoteMuteError as exc:
            session.forget_mute(target)
            await self._surface_error(session, ErrorInfo(kind="remote_mute", reason=exc.reason))
            return
        except Exception as exc:  # pylint: disable=broad-exception-caught
            session.forget_mute(target)
            await self._surface_error(
                session,
                ErrorInfo(kind="remote_mute", reason=f"{type(exc).__name__}: {exc}"),
            )
            return

        try:
            await asyncio.wait_for(waiter.wait(), timeout=self._mute_confirm_timeout_s)
        except asyncio.TimeoutError:
            session.forget_mute(target)
            self._log("MUTE_CONFIRM_TIMEOUT", {**session.log_context(), "muted": target})

    async def dismiss_error(self) -> None:
        """Clear last_error; the phase is left untouched."""
        async with self._lock:
            if self._store.snapshot().last_error is None:
                return
            self._commit(StateMutation(clear_error=True), source="dismiss_error")

    async def shutdown(self) -> None:
        """Process teardown: end any session and drain background work."""
        await self.end()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    # ------------------------------------------------------------------
    # Remote event intake
    # ------------------------------------------------------------------

    def _listen(
        self,
        session: VoiceSession,
        stream: AsyncIterator[Any],
        decoder: Decoder,
    ) -> None:
        session.add_listener(
            asyncio.create_task(self._pump(session, stream, decoder))
        )

    async def _pump(
        self,
        session: VoiceSession,
        stream: AsyncIterator[Any],
        decoder: Decoder,
    ) -> None:
        """Consume one remote stream until cancelled or exhausted."""
        try:
            async for item in stream:
                event = decoder(item, run_id=session.run_id, ts_ms=now_ms())
                await self._handle_remote_event(session, event)
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # pylint: disable=broad-exception-caught
            self._log("REMOTE_STREAM_ERROR", {
                **session.log_context(),
                "stream": getattr(decoder, "__name__", "unknown"),
                "exception": type(exc).__name__,
                "message": str(exc),
            })
            return

        self._log("REMOTE_STREAM_CLOSED", {
            **session.log_context(),
            "stream": getattr(decoder, "__name__", "unknown"),
        })

    async def _handle_remote_event(self, session: VoiceSession, event: RemoteEvent) -> None:
        async with self._lock:
            mutation, commands = reduce(
                self._store.snapshot(),
                event,
                active_run_id=self._run_id,
            )
            if mutation is not None:
                self._commit(mutation, source=f"remote_{event.event_type.value.lower()}")

            if isinstance(event, MuteChanged) and event.run_id == self._run_id:
                session.confirm_mute(event.muted)

        for cmd in commands:
            self._execute_command(session, cmd)

    def _execute_command(self, session: VoiceSession, cmd: Command) -> None:
        if isinstance(cmd, LogEvent):
            log_event({**cmd.event, "session_id": session.session_id})

        elif isinstance(cmd, EndSession):
            self._spawn(self._end_from_remote(cmd.run_id, cmd.error))

    async def _end_from_remote(self, run_id: int, error: ErrorInfo | None) -> None:
        async with self._lock:
            if run_id != self._run_id:
                return
            await self._teardown(error=error, source="remote_end")

    # ------------------------------------------------------------------
    # Lifecycle helpers (lock held unless noted)
    # ------------------------------------------------------------------

    async def _teardown(self, *, error: ErrorInfo | None, source: str) -> None:
        """
        ENDING -> release subscriptions -> close remote -> IDLE.

        Bumps the run ID first so nothing from the old session can land.
        """
        session = self._session
        connect_task = self._connect_task

        self._run_id += 1
        self._session = None
        self._connect_task = None

        self._commit(
            StateMutation(
                phase=ConnectionPhase.ENDING,
                agent_speaking=False,
                user_speaking=False,
            ),
            source=source,
        )

        if connect_task is not None and not connect_task.done():
            connect_task.cancel()

        if session is not None:
            await session.detach()
            if session.remote is not None:
                await self._close_remote(session.remote, session)

        self._commit(replace(RESET_TO_IDLE, last_error=error), source=source)

    async def _close_remote(self, remote: RemoteSession, session: VoiceSession) -> None:
        """Best-effort, time-bounded close. Never raises. Lock not required."""
        with timed(
            "remote_close_duration",
            session_id=session.session_id,
            run_id=session.run_id,
        ) as metric:
            try:
                await asyncio.wait_for(remote.close(), timeout=self._close_timeout_s)
                metric["outcome"] = "closed"
            except RemoteCloseError as exc:
                metric["outcome"] = "failed"
                self._log("REMOTE_CLOSE_FAILED", {**session.log_context(), "reason": exc.reason})
            except asyncio.TimeoutError:
                metric["outcome"] = "timeout"
                self._log("REMOTE_CLOSE_TIMEOUT", {
                    **session.log_context(),
                    "timeout_s": self._close_timeout_s,
                })
            except Exception as exc:  # pylint: disable=broad-exception-caught
                metric["outcome"] = "failed"
                self._log("REMOTE_CLOSE_FAILED", {
                    **session.log_context(),
                    "reason": f"{type(exc).__name__}: {exc}",
                })

    async def _fail_open(self, session: VoiceSession, reason: str) -> None:
        """Lock not held on entry."""
        async with self._lock:
            if session.run_id != self._run_id:
                self._log("REMOTE_OPEN_FAILED_LATE", {**session.log_context(), "reason": reason})
                return

            self._log("REMOTE_OPEN_FAILED", {**session.log_context(), "reason": reason})
            self._session = None
            self._connect_task = None
            self._run_id += 1

            error = ErrorInfo(kind="remote_open", reason=reason)
            self._commit(
                StateMutation(phase=ConnectionPhase.ERROR, last_error=error),
                source="remote_open_failed",
            )
            self._commit(RESET_TO_IDLE, source="remote_open_failed")

    async def _surface_error(self, session: VoiceSession, error: ErrorInfo) -> None:
        """Record a non-fatal error for the current session. Lock not held on entry."""
        self._log("REMOTE_ERROR_SURFACED", {
            **session.log_context(),
            "kind": error.kind,
            "reason": error.reason,
        })
        async with self._lock:
            if session.run_id != self._run_id:
                return
            self._commit(StateMutation(last_error=error), source=error.kind)

    # ------------------------------------------------------------------
    # Commit + observability
    # ------------------------------------------------------------------

    def _commit(self, mutation: StateMutation, *, source: str) -> SessionState | None:
        """Commit through the store; invariant violations are logged and dropped."""
        before = self._store.snapshot()
        try:
            after = self._store.commit(mutation)
        except StateInvariantViolation as exc:
            self._log("STATE_INVARIANT_VIOLATION", {
                "source": source,
                "message": str(exc),
                "phase": before.phase.value,
                "attempted": exc.attempted.to_dict(),
            })
            return None

        if after.phase is not before.phase:
            self._log("PHASE_CHANGED", {
                "from_phase": before.phase.value,
                "to_phase": after.phase.value,
                "source": source,
                "revision": after.revision,
            })
        return after

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def _log(self, event_type: str, details: dict[str, Any]) -> None:
        log_event({
            "event_type": event_type,
            "active_run_id": self._run_id,
            **details,
        })
