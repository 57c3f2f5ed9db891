"""
ElevenLabs Conversational AI adapter.

Implements the remote session contract on top of the ElevenLabs SDK
`Conversation`, which runs its websocket and audio I/O on its own threads.

Role in the system:
- Opens one conversation per open() call.
- Bridges SDK thread callbacks onto the event loop as raw labels on the
  three contract streams (status / activity / mute).
- Implements mute by gating microphone input with silence.

Activity labels produced:
- "speaking"  when agent audio starts arriving
- "listening" on interruption, or once agent audio has been quiet for
  AGENT_AUDIO_IDLE_S
- "thinking"  when a final user transcript arrives

Architectural constraints:
- No state machine logic; the controller decides what labels mean.
- No retries.
"""

from __future__ import annotations

import asyncio
import threading
from typing import AsyncIterator, Callable, TypeVar

from elevenlabs.client import ElevenLabs
from elevenlabs.conversational_ai.conversation import (
    AudioInterface,
    Conversation,
    ConversationInitiationData,
)

from adapters.agent.base import (
    ConversationConfig,
    RemoteCloseError,
    RemoteMuteError,
    RemoteOpenError,
    RemoteSession,
    RemoteSessionClient,
)
from constants import (
    AGENT_AUDIO_IDLE_S,
    ELEVENLABS_READY_POLL_S,
    ELEVENLABS_READY_TIMEOUT_S,
)
from observability.logger import log_event


T = TypeVar("T")


async def _drain(queue: asyncio.Queue[T]) -> AsyncIterator[T]:
    while True:
        yield await queue.get()


def _default_audio_interface() -> AudioInterface:
    # Needs the pyaudio extra of the elevenlabs package
    from elevenlabs.conversational_ai.default_audio_interface import (  # pylint: disable=import-outside-toplevel
        DefaultAudioInterface,
    )
    return DefaultAudioInterface()


# ---------------------------------------------------------------------
# Audio gating
# ---------------------------------------------------------------------

class GatedAudioInterface(AudioInterface):
    """
    Wraps the device audio interface.

    - While muted, microphone frames are replaced with silence of the
      same length (the platform keeps receiving a steady stream).
    - Agent output and interruptions are reported through callbacks.

    All methods are called from SDK threads.
    """

    def __init__(
        self,
        inner: AudioInterface,
        *,
        on_output: Callable[[], None],
        on_interrupt: Callable[[], None],
    ) -> None:
        self._inner = inner
        self._on_output = on_output
        self._on_interrupt = on_interrupt
        self._muted = threading.Event()

    @property
    def muted(self) -> bool:
        return self._muted.is_set()

    def set_muted(self, muted: bool) -> None:
        if muted:
            self._muted.set()
        else:
            self._muted.clear()

    def start(self, input_callback: Callable[[bytes], None]) -> None:
        def _gated(audio: bytes) -> None:
            if self._muted.is_set():
                input_callback(bytes(len(audio)))
            else:
                input_callback(audio)

        self._inner.start(_gated)

    def stop(self) -> None:
        self._inner.stop()

    def output(self, audio: bytes) -> None:
        self._on_output()
        self._inner.output(audio)

    def interrupt(self) -> None:
        self._on_interrupt()
        self._inner.interrupt()


# ---------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------

class ElevenLabsRemoteSession(RemoteSession):
    """
    One open ElevenLabs conversation.

    Thread callbacks only ever hop onto the loop via call_soon_threadsafe;
    all queue and timer state is touched on the loop thread.
    """

    def __init__(
        self,
        *,
        loop: asyncio.AbstractEventLoop,
        inner_audio: AudioInterface,
        agent_audio_idle_s: float = AGENT_AUDIO_IDLE_S,
    ) -> None:
        self._loop = loop
        self._agent_audio_idle_s = agent_audio_idle_s

        self._status: asyncio.Queue[str] = asyncio.Queue()
        self._activity: asyncio.Queue[str] = asyncio.Queue()
        self._mute: asyncio.Queue[bool] = asyncio.Queue()

        self._status_stream = _drain(self._status)
        self._activity_stream = _drain(self._activity)
        self._mute_stream = _drain(self._mute)

        self.audio = GatedAudioInterface(
            inner_audio,
            on_output=lambda: self._loop.call_soon_threadsafe(self._agent_audio),
            on_interrupt=lambda: self._loop.call_soon_threadsafe(self._agent_quiet),
        )

        self._conversation: Conversation | None = None
        self._watcher: asyncio.Task[None] | None = None
        # Set whenever Conversation.end_session runs (our close or the SDK's own)
        self._sdk_ended = threading.Event()
        self._agent_speaking = False
        self._quiet_timer: asyncio.TimerHandle | None = None
        self._closed = False

    # ------------------------------------------------------------------
    # Contract streams
    # ------------------------------------------------------------------

    @property
    def status_events(self) -> AsyncIterator[str]:
        return self._status_stream

    @property
    def activity_events(self) -> AsyncIterator[str]:
        return self._activity_stream

    @property
    def mute_events(self) -> AsyncIterator[bool]:
        return self._mute_stream

    # ------------------------------------------------------------------
    # Lifecycle (called by ElevenLabsAgentClient)
    # ------------------------------------------------------------------

    def bind(self, conversation: Conversation) -> None:
        """Attach the conversation before start_session (close() works from here on)."""
        self._conversation = conversation

    def mark_ready(self) -> None:
        """Platform handshake done: publish "connected" and watch for the end."""
        assert self._conversation is not None
        self._status.put_nowait("connected")
        self._watcher = asyncio.create_task(self._watch_session_end(self._conversation))

    async def _watch_session_end(self, conversation: Conversation) -> None:
        try:
            await asyncio.to_thread(conversation.wait_for_session_end)
        except Exception:  # pylint: disable=broad-exception-caught
            self._status.put_nowait("error")
            return

        if self._closed or self._sdk_ended.is_set():
            # Our close, or the platform hung up and the SDK ended cleanly
            self._status.put_nowait("disconnected")
        else:
            # Websocket thread died without the session being ended
            self._status.put_nowait("error")

    # ------------------------------------------------------------------
    # SDK callbacks (SDK threads)
    # ------------------------------------------------------------------

    def on_user_transcript(self, _transcript: str) -> None:
        self._loop.call_soon_threadsafe(self._activity.put_nowait, "thinking")

    def on_end_session(self) -> None:
        self._sdk_ended.set()

    # ------------------------------------------------------------------
    # Loop-side activity tracking
    # ------------------------------------------------------------------

    def _agent_audio(self) -> None:
        if not self._agent_speaking:
            self._agent_speaking = True
            self._activity.put_nowait("speaking")

        if self._quiet_timer is not None:
            self._quiet_timer.cancel()
        self._quiet_timer = self._loop.call_later(self._agent_audio_idle_s, self._agent_quiet)

    def _agent_quiet(self) -> None:
        if self._quiet_timer is not None:
            self._quiet_timer.cancel()
            self._quiet_timer = None

        if self._agent_speaking:
            self._agent_speaking = False
            self._activity.put_nowait("listening")

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def set_muted(self, muted: bool) -> None:
        if self._closed:
            raise RemoteMuteError("session_closed")
        if self._watcher is None:
            raise RemoteMuteError("session_not_ready")

        self.audio.set_muted(muted)
        self._mute.put_nowait(self.audio.muted)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True

        if self._quiet_timer is not None:
            self._quiet_timer.cancel()
            self._quiet_timer = None

        if self._conversation is None:
            return

        try:
            await asyncio.to_thread(self._conversation.end_session)
        except Exception as exc:
            raise RemoteCloseError(f"{type(exc).__name__}: {exc}") from exc


# ---------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------

class ElevenLabsAgentClient(RemoteSessionClient):
    """
    Opens ElevenLabs conversations.

    api_key may be None for public agents (no signed URL required).

    open() returns only once the platform has acknowledged the
    conversation. Whatever stops open() early (failure, timeout or
    cancellation) also ends any conversation already started.
    """

    def __init__(
        self,
        *,
        api_key: str | None,
        audio_interface_factory: Callable[[], AudioInterface] | None = None,
        ready_timeout_s: float = ELEVENLABS_READY_TIMEOUT_S,
        ready_poll_s: float = ELEVENLABS_READY_POLL_S,
    ) -> None:
        self._client = ElevenLabs(api_key=api_key)
        self._requires_auth = bool(api_key)
        self._audio_interface_factory = audio_interface_factory or _default_audio_interface
        self._ready_timeout_s = ready_timeout_s
        self._ready_poll_s = ready_poll_s

    async def open(
        self,
        agent_id: str,
        config: ConversationConfig | None = None,
    ) -> RemoteSession:
        loop = asyncio.get_running_loop()
        session = ElevenLabsRemoteSession(
            loop=loop,
            inner_audio=self._audio_interface_factory(),
        )

        initiation = None
        if config is not None and config.dynamic_variables:
            initiation = ConversationInitiationData(
                dynamic_variables=dict(config.dynamic_variables),
            )

        conversation = Conversation(
            self._client,
            agent_id,
            requires_auth=self._requires_auth,
            audio_interface=session.audio,
            config=initiation,
            callback_user_transcript=session.on_user_transcript,
            callback_end_session=session.on_end_session,
        )
        session.bind(conversation)

        # start_session blocks (signed URL fetch) and cannot be interrupted;
        # keep it running through cancellation so it can be ended afterwards
        starting = asyncio.ensure_future(asyncio.to_thread(conversation.start_session))

        try:
            await asyncio.shield(starting)
            await self._wait_until_ready(conversation)
        except asyncio.CancelledError:
            await self._abandon(agent_id, session, starting, reason="cancelled")
            raise
        except RemoteOpenError as exc:
            await self._abandon(agent_id, session, starting, reason=exc.reason)
            raise
        except Exception as exc:
            reason = f"{type(exc).__name__}: {exc}"
            await self._abandon(agent_id, session, starting, reason=reason)
            raise RemoteOpenError(reason) from exc

        session.mark_ready()
        return session

    async def _wait_until_ready(self, conversation: Conversation) -> None:
        """
        Wait for the conversation initiation metadata.

        start_session only spawns the websocket thread; the SDK has no
        ready callback, but it records the conversation id when the
        platform's initiation metadata arrives.
        """
        # pylint: disable=protected-access
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._ready_timeout_s

        while conversation._conversation_id is None:
            thread = conversation._thread
            if thread is None or not thread.is_alive():
                raise RemoteOpenError("connection_closed_before_ready")
            if loop.time() >= deadline:
                raise RemoteOpenError("ready_timeout")
            await asyncio.sleep(self._ready_poll_s)

    @staticmethod
    async def _abandon(
        agent_id: str,
        session: ElevenLabsRemoteSession,
        starting: asyncio.Future[None],
        *,
        reason: str,
    ) -> None:
        """End a conversation that will never be handed to the controller."""
        try:
            await starting
        except Exception:  # pylint: disable=broad-exception-caught
            # start_session itself failed; nothing is running
            return

        try:
            await session.close()
        except RemoteCloseError as exc:
            log_event({
                "event_type": "ELEVENLABS_ABANDON_FAILED",
                "agent_id": agent_id,
                "open_reason": reason,
                "close_reason": exc.reason,
            })
