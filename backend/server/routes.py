"""
Route registration for the voice session API.

Responsibilities:
- Define HTTP and WebSocket endpoints
- Wire UI observers to the store (read side) and controller (commands)
- Expose the system-shortcut entry point
- Pull dependencies from app.state
"""

from __future__ import annotations

import asyncio
from typing import Any

from fastapi import Body, FastAPI, HTTPException, WebSocket, WebSocketDisconnect

from observability.logger import log_event
from server.observer_channel import ObserverChannel, state_message
from session.controller import VoiceSessionController
from session.state_store import SessionStateStore


def register_routes(app: FastAPI) -> None:
    """Register all routes on the FastAPI app."""
    @app.get("/health")
    async def health() -> dict[str, str]: # pyright: ignore[reportUnusedFunction]
        return {"status": "ok"}

    @app.get("/state")
    async def state() -> dict[str, Any]: # pyright: ignore[reportUnusedFunction]
        store: SessionStateStore = app.state.store
        return store.snapshot().to_dict()

    @app.post("/shortcuts/voice-conversation")
    async def voice_shortcut( # pyright: ignore[reportUnusedFunction]
        payload: dict[str, Any] | None = Body(default=None),
    ) -> dict[str, Any]:
        """
        System-shortcut entry point.

        Starts a conversation with the pre-configured agent without any
        UI surface being connected.
        """
        controller: VoiceSessionController = app.state.controller
        agent_id = (payload or {}).get("agent_id") or app.state.config.default_agent_id
        if not agent_id:
            raise HTTPException(status_code=409, detail="DEFAULT_AGENT_ID is not configured")

        log_event({"event_type": "SHORTCUT_INVOKED", "agent_id": agent_id})
        await controller.start(agent_id)
        return controller.state.to_dict()

    @app.websocket("/ws")
    async def websocket_endpoint(ws: WebSocket) -> None: # pyright: ignore[reportUnusedFunction]
        await ws.accept()

        store: SessionStateStore = app.state.store
        channel = ObserverChannel(
            controller=app.state.controller,
            default_agent_id=app.state.config.default_agent_id,
        )
        sender = asyncio.create_task(_send_states(ws, store))

        try:
            while True:
                await channel.on_json_message(await ws.receive_text())

        except WebSocketDisconnect:
            log_event({"event_type": "OBSERVER_DISCONNECTED"})

        except Exception as exc:  # pylint: disable=broad-exception-caught
            log_event({
                "event_type": "WS_FATAL_ERROR",
                "exception": type(exc).__name__,
                "message": str(exc),
            })

        finally:
            sender.cancel()
            await asyncio.gather(sender, return_exceptions=True)
            await channel.close()


async def _send_states(ws: WebSocket, store: SessionStateStore) -> None:
    """Push the current snapshot, then every committed state, in order."""
    async for snapshot in store.stream():
        await ws.send_json(state_message(snapshot))
