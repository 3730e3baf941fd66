"""Normalization of raw realtime events into tagged variants.

The realtime API has shipped several generations of event names for the
same thing; everything downstream only sees the variants defined here.
"""

from dataclasses import dataclass
from typing import Any, Literal

BENIGN_ERROR_CODES = frozenset({"input_audio_buffer_commit_empty"})


@dataclass(frozen=True)
class SessionReady:
    pass


@dataclass(frozen=True)
class AssistantDelta:
    delta: str


@dataclass(frozen=True)
class AssistantFinal:
    text: str | None = None


@dataclass(frozen=True)
class UserDelta:
    text: str


@dataclass(frozen=True)
class UserFinal:
    text: str


@dataclass(frozen=True)
class AudioDelta:
    payload: str


@dataclass(frozen=True)
class AudioDone:
    pass


@dataclass(frozen=True)
class Lifecycle:
    state: Literal["in_progress", "completed", "failed"]
    message: str | None = None


@dataclass(frozen=True)
class ErrorEvent:
    message: str
    code: str | None = None


@dataclass(frozen=True)
class Ignored:
    type: str


RealtimeEvent = (
    SessionReady
    | AssistantDelta
    | AssistantFinal
    | UserDelta
    | UserFinal
    | AudioDelta
    | AudioDone
    | Lifecycle
    | ErrorEvent
    | Ignored
)

ASSISTANT_DELTA_TYPES = frozenset(
    {
        "response.output_text.delta",
        "response.text.delta",
        "response.audio_transcript.delta",
        "response.output_audio_transcript.delta",
    }
)
ASSISTANT_TEXT_DONE_TYPES = frozenset({"response.output_text.done", "response.text.done"})
ASSISTANT_TRANSCRIPT_DONE_TYPES = frozenset(
    {"response.audio_transcript.done", "response.output_audio_transcript.done"}
)
AUDIO_DELTA_TYPES = frozenset({"response.audio.delta", "response.output_audio.delta"})
AUDIO_DONE_TYPES = frozenset({"response.audio.done", "response.output_audio.done"})
IN_PROGRESS_TYPES = frozenset({"response.created", "response.in_progress"})
COMPLETED_TYPES = frozenset({"response.completed", "response.done"})


def _error_message(event: dict[str, Any], fallback: str) -> str:
    error = event.get("error")
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    return fallback


def _text(value: Any) -> str | None:
    return value if isinstance(value, str) else None


def normalize_event(event: dict[str, Any]) -> RealtimeEvent:
    """Map one decoded server event to its variant."""
    event_type = str(event.get("type") or "")

    if event_type == "session.created":
        return SessionReady()

    if event_type in ASSISTANT_DELTA_TYPES:
        return AssistantDelta(_text(event.get("delta")) or "")
    if event_type in ASSISTANT_TEXT_DONE_TYPES:
        return AssistantFinal(_text(event.get("text")))
    if event_type in ASSISTANT_TRANSCRIPT_DONE_TYPES:
        return AssistantFinal(_text(event.get("transcript")))

    if event_type == "conversation.item.input_audio_transcription.delta":
        return UserDelta(_text(event.get("delta")) or _text(event.get("transcript")) or "")
    if event_type == "conversation.item.input_audio_transcription.completed":
        return UserFinal(_text(event.get("transcript")) or "")
    if event_type == "conversation.item.input_audio_transcription.failed":
        return ErrorEvent(_error_message(event, "Input audio transcription failed"))

    if event_type in AUDIO_DELTA_TYPES:
        return AudioDelta(_text(event.get("delta")) or "")
    if event_type in AUDIO_DONE_TYPES:
        return AudioDone()

    if event_type in IN_PROGRESS_TYPES:
        return Lifecycle("in_progress")
    if event_type in COMPLETED_TYPES:
        return Lifecycle("completed")
    if event_type == "response.failed":
        return Lifecycle("failed", _error_message(event, "Response failed"))

    if event_type == "error":
        error = event.get("error")
        code = error.get("code") if isinstance(error, dict) else None
        if code in BENIGN_ERROR_CODES:
            return Ignored(event_type)
        return ErrorEvent(_error_message(event, "Unknown error"), code=code)

    return Ignored(event_type)
