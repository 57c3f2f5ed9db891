"""
UI observer channel.

One ObserverChannel per connected presentation surface (full view,
modal, shortcut snippet). Responsibilities:
- Route inbound JSON commands to the controller
- Run each command as its own task so a pending START never blocks a
  later END from the same surface
- Render snapshots into outbound JSON

Never mutates state directly; the controller is the only writer.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, Awaitable, Callable

from constants import LOG_PREVIEW_CHARS
from observability.logger import log_event
from orchestrator.state_dataclass import SessionState
from session.controller import VoiceSessionController


def state_message(state: SessionState) -> dict[str, Any]:
    return {"type": "STATE", "state": state.to_dict()}


class ObserverChannel:

    def __init__(
        self,
        *,
        controller: VoiceSessionController,
        default_agent_id: str | None = None,
    ) -> None:
        self._controller = controller
        self._default_agent_id = default_agent_id
        self._tasks: set[asyncio.Task[None]] = set()

    async def on_json_message(self, payload: str) -> None:
        """Parse one inbound message and dispatch it."""
        try:
            data = json.loads(payload)
        except json.JSONDecodeError as e:
            log_event({
                "event_type": "JSON_DECODE_ERROR",
                "error": str(e),
                "payload_preview": payload[:LOG_PREVIEW_CHARS],
            })
            return

        if not isinstance(data, dict):
            log_event({
                "event_type": "UNKNOWN_MESSAGE_TYPE",
                "payload_preview": payload[:LOG_PREVIEW_CHARS],
            })
            return

        command = self._resolve(data)
        if command is None:
            return

        task = asyncio.create_task(command())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def close(self) -> None:
        """Wait for commands already issued by this surface."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    def _resolve(self, data: dict[str, Any]) -> Callable[[], Awaitable[None]] | None:
        msg_type = data.get("type")

        if msg_type == "START":
            agent_id = data.get("agent_id") or self._default_agent_id
            if not agent_id:
                log_event({
                    "event_type": "START_WITHOUT_AGENT_ID",
                    "msg_type": msg_type,
                })
                return None
            return lambda: self._controller.start(agent_id)
        if msg_type == "END":
            return self._controller.end
        if msg_type == "TOGGLE_MUTE":
            return self._controller.toggle_mute
        if msg_type == "DISMISS_ERROR":
            return self._controller.dismiss_error

        log_event({
            "event_type": "UNKNOWN_MESSAGE_TYPE",
            "msg_type": msg_type,
        })
        return None
