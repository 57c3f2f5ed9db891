"""
Application configuration.

Responsibilities:
- Load deployment-specific configuration
- Read environment variables
- Provide a typed, immutable config object

Non-responsibilities:
- No session logic
- No behavioural constants (see constants.py)
- No runtime mutation
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from constants import MUTE_CONFIRM_TIMEOUT_S, REMOTE_CLOSE_TIMEOUT_S


AGENT_BACKENDS = ("elevenlabs", "simulated")


@dataclass(frozen=True)
class AppConfig:
    """
    Immutable application configuration.

    Constructed once at process startup.
    Passed downward to the composition root (server.app).
    """

    # ------------------------------------------------------------------
    # Environment
    # ------------------------------------------------------------------

    env: str = "dev"
    log_level: str = "INFO"

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    enable_json_logs: bool = True

    # ------------------------------------------------------------------
    # Voice-agent platform
    # ------------------------------------------------------------------

    agent_backend: str = "elevenlabs"
    elevenlabs_api_key: str | None = None

    # Agent used by the system-shortcut entry point
    default_agent_id: str | None = None

    # ------------------------------------------------------------------
    # Session timing
    # ------------------------------------------------------------------

    remote_close_timeout_s: float = REMOTE_CLOSE_TIMEOUT_S
    mute_confirm_timeout_s: float = MUTE_CONFIRM_TIMEOUT_S

    # ------------------------------------------------------------------
    # Factory
    # ------------------------------------------------------------------

    @staticmethod
    def load_from_env() -> AppConfig:
        """
        Load configuration from environment variables.

        Raises:
            RuntimeError if AGENT_BACKEND names an unknown backend.
            ValueError if a timeout is not a number.
        """
        agent_backend = os.environ.get("AGENT_BACKEND", "elevenlabs").lower()
        if agent_backend not in AGENT_BACKENDS:
            raise RuntimeError(f"Unknown AGENT_BACKEND: {agent_backend}")

        return AppConfig(
            env=os.environ.get("ENV", "dev"),
            log_level=os.environ.get("LOG_LEVEL", "INFO"),

            enable_json_logs=os.environ.get("ENABLE_JSON_LOGS", "1") == "1",

            agent_backend=agent_backend,
            elevenlabs_api_key=os.environ.get("ELEVENLABS_API_KEY"),
            default_agent_id=os.environ.get("DEFAULT_AGENT_ID") or None,

            remote_close_timeout_s=float(
                os.environ.get("REMOTE_CLOSE_TIMEOUT_S", REMOTE_CLOSE_TIMEOUT_S)
            ),
            mute_confirm_timeout_s=float(
                os.environ.get("MUTE_CONFIRM_TIMEOUT_S", MUTE_CONFIRM_TIMEOUT_S)
            ),
        )
