"""
Remote voice-agent session contract.

This module defines the *interface only*. Speech recognition, synthesis,
audio capture/playback and transport all live behind it, inside the
remote platform and its SDK.

Key invariants:
- The controller owns run IDs; adapters never see or generate them.
- Adapters report facts as raw labels on three independent streams.
  Decoding those labels into variants happens in adapters.agent.decoding.
- Adapters raise RemoteOpenError / RemoteCloseError / RemoteMuteError and
  nothing else for expected platform failures.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncIterator


# =============================================================================
# Errors
# =============================================================================

class RemoteError(Exception):
    """Base class for failures reported by the remote platform."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class RemoteOpenError(RemoteError):
    """Opening a conversation failed. Retry is always possible."""


class RemoteCloseError(RemoteError):
    """Closing failed. Non-fatal: local state resets anyway."""


class RemoteMuteError(RemoteError):
    """The mute command was rejected. is_muted stays unchanged."""


# =============================================================================
# Configuration
# =============================================================================

@dataclass(frozen=True)
class ConversationConfig:
    """Per-conversation options forwarded to the platform."""
    dynamic_variables: dict[str, Any] = field(default_factory=dict)


# =============================================================================
# Contract
# =============================================================================

class RemoteSession(ABC):
    """
    Handle to one open conversation on the remote platform.

    The three event streams are lazy, infinite and non-restartable:
    each may be iterated exactly once, by the controller.
    """

    @property
    @abstractmethod
    def status_events(self) -> AsyncIterator[str]:
        """Connection status labels (e.g. "connected", "disconnected")."""
        raise NotImplementedError

    @property
    @abstractmethod
    def activity_events(self) -> AsyncIterator[str]:
        """Activity labels (e.g. "speaking", "listening")."""
        raise NotImplementedError

    @property
    @abstractmethod
    def mute_events(self) -> AsyncIterator[bool]:
        """Authoritative microphone mute state."""
        raise NotImplementedError

    @abstractmethod
    async def set_muted(self, muted: bool) -> None:
        """
        Request a mute state change.

        Contract:
        - Confirmation arrives later on mute_events, never via return value.
        - Raises RemoteMuteError if the platform rejects the request.
        """
        raise NotImplementedError

    @abstractmethod
    async def close(self) -> None:
        """
        End the conversation.

        Contract:
        - Best-effort; raises RemoteCloseError on failure.
        - Must be safe to call more than once.
        """
        raise NotImplementedError


class RemoteSessionClient(ABC):
    """Factory for remote conversations."""

    @abstractmethod
    async def open(
        self,
        agent_id: str,
        config: ConversationConfig | None = None,
    ) -> RemoteSession:
        """
        Open a conversation with the given agent.

        Raises RemoteOpenError on failure. Must tolerate cancellation of
        the awaiting task.
        """
        raise NotImplementedError
