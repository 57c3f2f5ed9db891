"""
Simulated voice-agent platform.

Stands in for the real platform when no credentials are available
(AGENT_BACKEND=simulated): connects after a short delay, then alternates
agent turns and listening turns until closed. Mute requests are always
confirmed.
"""

from __future__ import annotations

import asyncio
from typing import AsyncIterator, TypeVar

from adapters.agent.base import (
    ConversationConfig,
    RemoteMuteError,
    RemoteOpenError,
    RemoteSession,
    RemoteSessionClient,
)
from constants import SIMULATED_CONNECT_DELAY_S, SIMULATED_TURN_S


T = TypeVar("T")


async def _drain(queue: asyncio.Queue[T]) -> AsyncIterator[T]:
    while True:
        yield await queue.get()


class SimulatedRemoteSession(RemoteSession):

    def __init__(self, *, turn_s: float = SIMULATED_TURN_S) -> None:
        self._turn_s = turn_s
        self._status: asyncio.Queue[str] = asyncio.Queue()
        self._activity: asyncio.Queue[str] = asyncio.Queue()
        self._mute: asyncio.Queue[bool] = asyncio.Queue()

        self._status_stream = _drain(self._status)
        self._activity_stream = _drain(self._activity)
        self._mute_stream = _drain(self._mute)

        self._closed = False
        self._status.put_nowait("connected")
        self._turns = asyncio.create_task(self._run_turns())

    @property
    def status_events(self) -> AsyncIterator[str]:
        return self._status_stream

    @property
    def activity_events(self) -> AsyncIterator[str]:
        return self._activity_stream

    @property
    def mute_events(self) -> AsyncIterator[bool]:
        return self._mute_stream

    async def _run_turns(self) -> None:
        # The agent greets first
        labels = ("speaking", "listening")
        turn = 0
        while not self._closed:
            self._activity.put_nowait(labels[turn % 2])
            turn += 1
            await asyncio.sleep(self._turn_s)

    async def set_muted(self, muted: bool) -> None:
        if self._closed:
            raise RemoteMuteError("session_closed")
        self._mute.put_nowait(muted)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._turns.cancel()
        self._status.put_nowait("disconnected")


class SimulatedAgentClient(RemoteSessionClient):

    def __init__(
        self,
        *,
        connect_delay_s: float = SIMULATED_CONNECT_DELAY_S,
        turn_s: float = SIMULATED_TURN_S,
    ) -> None:
        self._connect_delay_s = connect_delay_s
        self._turn_s = turn_s

    async def open(
        self,
        agent_id: str,
        config: ConversationConfig | None = None,
    ) -> RemoteSession:
        if not agent_id:
            raise RemoteOpenError("missing_agent_id")

        await asyncio.sleep(self._connect_delay_s)
        return SimulatedRemoteSession(turn_s=self._turn_s)
