# pylint: disable=missing-module-docstring,missing-function-docstring

import pytest

from adapters.agent.base import RemoteMuteError, RemoteOpenError
from adapters.agent.simulated import SimulatedAgentClient


@pytest.mark.asyncio
async def test_simulated_session_reports_connected_then_agent_turn() -> None:
    client = SimulatedAgentClient(connect_delay_s=0, turn_s=60)
    session = await client.open("agent-1")

    assert await session.status_events.__anext__() == "connected"
    assert await session.activity_events.__anext__() == "speaking"

    await session.close()


@pytest.mark.asyncio
async def test_simulated_mute_is_confirmed() -> None:
    client = SimulatedAgentClient(connect_delay_s=0, turn_s=60)
    session = await client.open("agent-1")

    await session.set_muted(True)
    assert await session.mute_events.__anext__() is True

    await session.close()
    with pytest.raises(RemoteMuteError):
        await session.set_muted(False)


@pytest.mark.asyncio
async def test_simulated_close_is_idempotent_and_reports_disconnect() -> None:
    client = SimulatedAgentClient(connect_delay_s=0, turn_s=60)
    session = await client.open("agent-1")
    await session.status_events.__anext__()

    await session.close()
    await session.close()

    assert await session.status_events.__anext__() == "disconnected"


@pytest.mark.asyncio
async def test_simulated_open_requires_agent_id() -> None:
    with pytest.raises(RemoteOpenError):
        await SimulatedAgentClient(connect_delay_s=0).open("")
