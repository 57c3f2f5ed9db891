# pylint: disable=missing-module-docstring,missing-function-docstring

import asyncio
from typing import Any

import pytest

import session.controller as controller_mod
from adapters.agent.base import RemoteCloseError, RemoteMuteError, RemoteOpenError
from orchestrator.enums.phase import ConnectionPhase
from orchestrator.state_dataclass import SessionState, StateMutation
from session.controller import VoiceSessionController
from session.state_store import SessionStateStore

from fake_agent import FakeAgentClient, settle


# ---------------------------------------------------------------------
# Fixtures / helpers
# ---------------------------------------------------------------------

class Recorder:
    """Observer that records every published snapshot."""

    def __init__(self) -> None:
        self.states: list[SessionState] = []

    def __call__(self, state: SessionState) -> None:
        self.states.append(state)

    def assert_invariants(self) -> None:
        for state in self.states:
            assert not (state.agent_speaking and state.user_speaking)
            assert not (state.is_muted and state.user_speaking)
            if state.phase is not ConnectionPhase.ACTIVE:
                assert not state.agent_speaking
                assert not state.user_speaking

    @property
    def phases(self) -> list[ConnectionPhase]:
        collapsed: list[ConnectionPhase] = []
        for state in self.states:
            if not collapsed or collapsed[-1] is not state.phase:
                collapsed.append(state.phase)
        return collapsed


def make_controller(
    client: FakeAgentClient,
    **kwargs: Any,
) -> tuple[VoiceSessionController, Recorder]:
    store = SessionStateStore()
    recorder = Recorder()
    store.subscribe(recorder)
    kwargs.setdefault("close_timeout_s", 0.05)
    kwargs.setdefault("mute_confirm_timeout_s", 0.05)
    return VoiceSessionController(store=store, client=client, **kwargs), recorder


@pytest.fixture
def emitted(monkeypatch: pytest.MonkeyPatch) -> list[dict[str, Any]]:
    events: list[dict[str, Any]] = []
    monkeypatch.setattr(controller_mod, "log_event", events.append)
    return events


def event_types(emitted: list[dict[str, Any]]) -> list[str]:
    return [e.get("event_type", "") for e in emitted]


# ---------------------------------------------------------------------
# start()
# ---------------------------------------------------------------------

@pytest.mark.asyncio
async def test_start_goes_through_connecting_to_active() -> None:
    client = FakeAgentClient()
    ctl, rec = make_controller(client)

    await ctl.start("agent-1")

    assert client.open_calls == ["agent-1"]
    assert ctl.state.phase is ConnectionPhase.ACTIVE
    assert rec.phases == [
        ConnectionPhase.IDLE,
        ConnectionPhase.CONNECTING,
        ConnectionPhase.ACTIVE,
    ]


@pytest.mark.asyncio
async def test_activity_events_drive_speaking_flags() -> None:
    client = FakeAgentClient()
    ctl, _ = make_controller(client)
    await ctl.start("agent-1")
    remote = client.sessions[0]

    remote.push_activity("agent_speaking")
    await settle()
    assert ctl.state.agent_speaking is True
    assert ctl.state.user_speaking is False

    remote.push_activity("listening")
    await settle()
    assert ctl.state.agent_speaking is False
    assert ctl.state.user_speaking is False


@pytest.mark.asyncio
async def test_open_failure_surfaces_error_and_allows_retry() -> None:
    client = FakeAgentClient()
    client.open_error = RemoteOpenError("network")
    ctl, rec = make_controller(client)

    await ctl.start("agent-1")

    assert ctl.state.phase is ConnectionPhase.IDLE
    assert ctl.state.last_error is not None
    assert ctl.state.last_error.reason == "network"
    assert rec.phases == [
        ConnectionPhase.IDLE,
        ConnectionPhase.CONNECTING,
        ConnectionPhase.ERROR,
        ConnectionPhase.IDLE,
    ]

    client.open_error = None
    await ctl.start("agent-1")

    assert client.open_calls == ["agent-1", "agent-1"]
    assert ctl.state.phase is ConnectionPhase.ACTIVE
    assert ctl.state.last_error is None


@pytest.mark.asyncio
async def test_unexpected_open_exception_is_contained() -> None:
    client = FakeAgentClient()
    client.open_error = ValueError("bad agent")
    ctl, _ = make_controller(client)

    await ctl.start("agent-1")

    assert ctl.state.phase is ConnectionPhase.IDLE
    assert ctl.state.last_error is not None
    assert ctl.state.last_error.kind == "remote_open"
    assert "bad agent" in ctl.state.last_error.reason


@pytest.mark.asyncio
async def test_double_start_opens_once(emitted: list[dict[str, Any]]) -> None:
    client = FakeAgentClient()
    client.gate = asyncio.Event()
    ctl, _ = make_controller(client)

    first = asyncio.create_task(ctl.start("agent-1"))
    await settle()
    second = asyncio.create_task(ctl.start("agent-1"))
    await settle()

    assert client.open_calls == ["agent-1"]
    assert second.done()
    assert "START_IGNORED" in event_types(emitted)

    client.gate.set()
    await first
    assert ctl.state.phase is ConnectionPhase.ACTIVE


@pytest.mark.asyncio
async def test_start_while_active_is_ignored() -> None:
    client = FakeAgentClient()
    ctl, _ = make_controller(client)
    await ctl.start("agent-1")
    revision = ctl.state.revision

    await ctl.start("agent-2")

    assert client.open_calls == ["agent-1"]
    assert ctl.state.revision == revision


# ---------------------------------------------------------------------
# end()
# ---------------------------------------------------------------------

@pytest.mark.asyncio
async def test_end_when_idle_is_a_no_op() -> None:
    client = FakeAgentClient()
    ctl, rec = make_controller(client)

    await ctl.end()

    assert len(rec.states) == 1
    assert ctl.state.revision == 0
    assert not client.sessions


@pytest.mark.asyncio
async def test_end_tears_down_and_resets_flags() -> None:
    client = FakeAgentClient()
    ctl, rec = make_controller(client)
    await ctl.start("agent-1")
    remote = client.sessions[0]
    remote.push_activity("speaking")
    remote.push_mute(True)
    await settle()
    assert ctl.state.agent_speaking and ctl.state.is_muted

    await ctl.end()

    state = ctl.state
    assert state.phase is ConnectionPhase.IDLE
    assert not state.agent_speaking
    assert not state.user_speaking
    assert not state.is_muted
    assert remote.close_calls == 1
    assert ctl.session is None
    rec.assert_invariants()
    assert rec.phases[-2:] == [ConnectionPhase.ENDING, ConnectionPhase.IDLE]


@pytest.mark.asyncio
async def test_end_resets_even_when_close_fails(emitted: list[dict[str, Any]]) -> None:
    client = FakeAgentClient()
    ctl, _ = make_controller(client)
    await ctl.start("agent-1")
    client.sessions[0].close_error = RemoteCloseError("socket gone")

    await ctl.end()

    assert ctl.state.phase is ConnectionPhase.IDLE
    assert ctl.state.last_error is None
    assert "REMOTE_CLOSE_FAILED" in event_types(emitted)


@pytest.mark.asyncio
async def test_end_does_not_wait_forever_for_close(emitted: list[dict[str, Any]]) -> None:
    client = FakeAgentClient()
    ctl, _ = make_controller(client, close_timeout_s=0.01)
    await ctl.start("agent-1")
    client.sessions[0].close_hangs = True

    await ctl.end()

    assert ctl.state.phase is ConnectionPhase.IDLE
    assert "REMOTE_CLOSE_TIMEOUT" in event_types(emitted)


@pytest.mark.asyncio
async def test_end_while_connecting_cancels_open() -> None:
    client = FakeAgentClient()
    client.gate = asyncio.Event()
    ctl, rec = make_controller(client)

    pending = asyncio.create_task(ctl.start("agent-1"))
    await settle()
    assert ctl.state.phase is ConnectionPhase.CONNECTING

    await ctl.end()
    assert ctl.state.phase is ConnectionPhase.IDLE

    client.gate.set()
    await pending
    await settle()

    assert ctl.state.phase is ConnectionPhase.IDLE
    assert not client.sessions
    assert ConnectionPhase.ACTIVE not in rec.phases


@pytest.mark.asyncio
async def test_late_open_success_after_end_is_discarded_and_closed() -> None:
    client = FakeAgentClient()
    client.gate = asyncio.Event()
    client.ignore_cancel = True
    ctl, rec = make_controller(client)

    pending = asyncio.create_task(ctl.start("agent-1"))
    await settle()
    await ctl.end()

    client.gate.set()
    await pending
    await settle()

    assert ctl.state.phase is ConnectionPhase.IDLE
    assert ConnectionPhase.ACTIVE not in rec.phases
    assert len(client.sessions) == 1
    assert client.sessions[0].close_calls == 1


@pytest.mark.asyncio
async def test_events_after_end_are_discarded() -> None:
    client = FakeAgentClient()
    ctl, _ = make_controller(client)
    await ctl.start("agent-1")
    remote = client.sessions[0]

    await ctl.end()
    revision = ctl.state.revision

    remote.push_mute(True)
    remote.push_activity("speaking")
    await settle()

    assert ctl.state.is_muted is False
    assert ctl.state.agent_speaking is False
    assert ctl.state.revision == revision


# ---------------------------------------------------------------------
# toggle_mute()
# ---------------------------------------------------------------------

@pytest.mark.asyncio
async def test_toggle_mute_when_idle_is_a_no_op() -> None:
    client = FakeAgentClient()
    ctl, rec = make_controller(client)

    await ctl.toggle_mute()

    assert len(rec.states) == 1
    assert not client.sessions


@pytest.mark.asyncio
async def test_toggle_mute_applies_only_on_confirmation() -> None:
    client = FakeAgentClient()
    ctl, _ = make_controller(client)
    await ctl.start("agent-1")
    remote = client.sessions[0]
    remote.auto_confirm_mute = False

    await ctl.toggle_mute()

    assert remote.mute_calls == [True]
    assert ctl.state.is_muted is False

    remote.push_mute(True)
    await settle()
    assert ctl.state.is_muted is True


@pytest.mark.asyncio
async def test_second_toggle_while_confirmation_pending_is_ignored(
    emitted: list[dict[str, Any]],
) -> None:
    client = FakeAgentClient()
    ctl, _ = make_controller(client, mute_confirm_timeout_s=1.0)
    await ctl.start("agent-1")
    remote = client.sessions[0]
    remote.auto_confirm_mute = False

    first = asyncio.create_task(ctl.toggle_mute())
    await settle()
    await ctl.toggle_mute()

    assert remote.mute_calls == [True]
    assert any(
        e.get("event_type") == "TOGGLE_MUTE_IGNORED"
        and e.get("reason") == "confirmation_pending"
        for e in emitted
    )

    remote.push_mute(True)
    await first
    assert ctl.state.is_muted is True

    # Confirmed, so the next toggle goes through
    remote.auto_confirm_mute = True
    await ctl.toggle_mute()
    assert remote.mute_calls == [True, False]
    assert ctl.state.is_muted is False


@pytest.mark.asyncio
async def test_toggle_mute_round_trip_and_silences_user() -> None:
    client = FakeAgentClient()
    ctl, _ = make_controller(client)
    await ctl.start("agent-1")
    remote = client.sessions[0]

    remote.push_activity("user_speaking")
    await settle()
    assert ctl.state.user_speaking is True

    await ctl.toggle_mute()
    await settle()
    assert ctl.state.is_muted is True
    assert ctl.state.user_speaking is False

    await ctl.toggle_mute()
    await settle()
    assert remote.mute_calls == [True, False]
    assert ctl.state.is_muted is False


@pytest.mark.asyncio
async def test_mute_failure_leaves_mute_state_and_surfaces_error() -> None:
    client = FakeAgentClient()
    ctl, _ = make_controller(client)
    await ctl.start("agent-1")
    client.sessions[0].mute_error = RemoteMuteError("rejected")

    await ctl.toggle_mute()

    assert ctl.state.is_muted is False
    assert ctl.state.phase is ConnectionPhase.ACTIVE
    assert ctl.state.last_error is not None
    assert ctl.state.last_error.kind == "remote_mute"


# ---------------------------------------------------------------------
# Remote-initiated transitions
# ---------------------------------------------------------------------

@pytest.mark.asyncio
async def test_remote_disconnect_returns_to_idle() -> None:
    client = FakeAgentClient()
    ctl, rec = make_controller(client)
    await ctl.start("agent-1")
    remote = client.sessions[0]
    remote.push_activity("speaking")
    await settle()

    remote.push_status("disconnected")
    await settle()

    assert ctl.state.phase is ConnectionPhase.IDLE
    assert not ctl.state.agent_speaking
    assert remote.close_calls == 1
    assert rec.phases[-2:] == [ConnectionPhase.ENDING, ConnectionPhase.IDLE]


@pytest.mark.asyncio
async def test_remote_error_is_published_then_reset() -> None:
    client = FakeAgentClient()
    ctl, rec = make_controller(client)
    await ctl.start("agent-1")

    client.sessions[0].push_status("error")
    await settle()

    assert ctl.state.phase is ConnectionPhase.IDLE
    assert ctl.state.last_error is not None
    assert ctl.state.last_error.kind == "remote_status"
    assert ConnectionPhase.ERROR in rec.phases

    # Error is not sticky
    await ctl.start("agent-1")
    assert ctl.state.phase is ConnectionPhase.ACTIVE


@pytest.mark.asyncio
async def test_unknown_status_is_ignored() -> None:
    client = FakeAgentClient()
    ctl, _ = make_controller(client)
    await ctl.start("agent-1")
    revision = ctl.state.revision

    client.sessions[0].push_status("warming_up")
    await settle()

    assert ctl.state.phase is ConnectionPhase.ACTIVE
    assert ctl.state.revision == revision


# ---------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------

@pytest.mark.asyncio
async def test_dismiss_error_keeps_phase() -> None:
    client = FakeAgentClient()
    client.open_error = RemoteOpenError("network")
    ctl, _ = make_controller(client)
    await ctl.start("agent-1")

    await ctl.dismiss_error()

    assert ctl.state.last_error is None
    assert ctl.state.phase is ConnectionPhase.IDLE


@pytest.mark.asyncio
async def test_invariant_violation_is_logged_and_dropped(
    emitted: list[dict[str, Any]],
) -> None:
    client = FakeAgentClient()
    ctl, _ = make_controller(client)
    before = ctl.state

    result = ctl._commit(  # pylint: disable=protected-access
        StateMutation(agent_speaking=True),
        source="test",
    )

    assert result is None
    assert ctl.state == before
    assert "STATE_INVARIANT_VIOLATION" in event_types(emitted)


# ---------------------------------------------------------------------
# Mixed command sequences
# ---------------------------------------------------------------------

@pytest.mark.asyncio
async def test_concurrent_command_storm_keeps_invariants() -> None:
    client = FakeAgentClient()
    ctl, rec = make_controller(client)

    for _ in range(3):
        await asyncio.gather(
            ctl.start("agent-1"),
            ctl.toggle_mute(),
            ctl.start("agent-1"),
        )
        if client.sessions:
            client.sessions[-1].push_activity("speaking")
            client.sessions[-1].push_activity("user_speaking")
        await settle()
        await asyncio.gather(ctl.end(), ctl.toggle_mute(), ctl.end())

    await settle()
    assert ctl.state.phase is ConnectionPhase.IDLE
    assert set(s.phase for s in rec.states) <= set(ConnectionPhase)
    rec.assert_invariants()

    # Idle -> Active never skips Connecting
    for prev, nxt in zip(rec.phases, rec.phases[1:]):
        if nxt is ConnectionPhase.ACTIVE:
            assert prev is ConnectionPhase.CONNECTING
