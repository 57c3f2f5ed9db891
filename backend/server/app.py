"""
FastAPI app factory.

Responsibilities:
- Create and configure FastAPI app
- Compose the process-wide SessionStateStore and VoiceSessionController
  (exactly one of each per process, injected into routes via app.state)
- Register routes
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from adapters.agent.base import RemoteSessionClient
from adapters.agent.elevenlabs_adapter import ElevenLabsAgentClient
from adapters.agent.simulated import SimulatedAgentClient
from config import AppConfig
from observability import logger
from server.routes import register_routes
from session.controller import VoiceSessionController
from session.state_store import SessionStateStore


def create_app(
    config: AppConfig | None = None,
    client: RemoteSessionClient | None = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    config and client are injectable for tests; by default both are
    built from the environment.
    """
    config = config or AppConfig.load_from_env()
    logger.configure(enabled=config.enable_json_logs)

    store = SessionStateStore()
    controller = VoiceSessionController(
        store=store,
        client=client or build_agent_client(config),
        close_timeout_s=config.remote_close_timeout_s,
        mute_confirm_timeout_s=config.mute_confirm_timeout_s,
    )

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        yield
        await controller.shutdown()

    app = FastAPI(title="Voice Session API", lifespan=lifespan)

    app.state.config = config
    app.state.store = store
    app.state.controller = controller

    # Middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # tighten later
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_routes(app)

    return app


def build_agent_client(config: AppConfig) -> RemoteSessionClient:
    """Build the remote session client selected by AGENT_BACKEND."""
    if config.agent_backend == "simulated":
        return SimulatedAgentClient()

    return ElevenLabsAgentClient(api_key=config.elevenlabs_api_key)
