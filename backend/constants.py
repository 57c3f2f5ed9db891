"""
BEHAVIOURAL CONSTANTS
---------------------
Single home for every timing value and label table default that changes
runtime behaviour of the voice session core.

Rules:
- If changing a value changes runtime behavior, it belongs here.
- No magic numbers elsewhere in the codebase.
- Config may override the timeouts per deployment (see config.AppConfig).
"""

from __future__ import annotations

from typing import Final

# =============================================================================
# Session teardown
# =============================================================================

# Upper bound on waiting for the remote platform to acknowledge close.
# Local state resets to IDLE regardless of the outcome.
REMOTE_CLOSE_TIMEOUT_S: Final[float] = 2.0

# =============================================================================
# Mute
# =============================================================================

# How long toggle_mute() waits for the confirming mute event.
MUTE_CONFIRM_TIMEOUT_S: Final[float] = 2.0

# =============================================================================
# ElevenLabs adapter
# =============================================================================

# Agent is considered done speaking once no output audio has arrived
# for this long.
AGENT_AUDIO_IDLE_S: Final[float] = 0.8

# open() only succeeds once the platform has sent its conversation
# initiation metadata; this bounds the wait for it.
ELEVENLABS_READY_TIMEOUT_S: Final[float] = 10.0
ELEVENLABS_READY_POLL_S: Final[float] = 0.05

# =============================================================================
# Simulated adapter
# =============================================================================

SIMULATED_CONNECT_DELAY_S: Final[float] = 1.0
SIMULATED_TURN_S: Final[float] = 3.0

# =============================================================================
# Logging
# =============================================================================

# Longest preview of an inbound payload copied into a log line.
LOG_PREVIEW_CHARS: Final[int] = 100

# =============================================================================
# State streams
# =============================================================================

# Snapshots buffered per stream() consumer. A consumer that falls further
# behind loses the oldest snapshots; each snapshot is complete state.
STATE_STREAM_BUFFER: Final[int] = 32
