"""Realtime event normalization tests."""

import pytest

from dpp.voice.events import (
    AssistantDelta,
    AssistantFinal,
    AudioDelta,
    AudioDone,
    ErrorEvent,
    Ignored,
    Lifecycle,
    SessionReady,
    UserDelta,
    UserFinal,
    normalize_event,
)


@pytest.mark.parametrize(
    "event,expected",
    [
        ({"type": "session.created"}, SessionReady()),
        ({"type": "response.output_text.delta", "delta": "a"}, AssistantDelta("a")),
        ({"type": "response.text.delta", "delta": "b"}, AssistantDelta("b")),
        ({"type": "response.audio_transcript.delta", "delta": "c"}, AssistantDelta("c")),
        ({"type": "response.output_audio_transcript.delta", "delta": "d"}, AssistantDelta("d")),
        ({"type": "response.output_text.done", "text": "full"}, AssistantFinal("full")),
        ({"type": "response.text.done"}, AssistantFinal(None)),
        ({"type": "response.audio_transcript.done", "transcript": "t"}, AssistantFinal("t")),
        ({"type": "response.output_audio_transcript.done", "transcript": "u"}, AssistantFinal("u")),
        ({"type": "conversation.item.input_audio_transcription.delta", "delta": "he"}, UserDelta("he")),
        ({"type": "conversation.item.input_audio_transcription.delta", "transcript": "hey"}, UserDelta("hey")),
        ({"type": "conversation.item.input_audio_transcription.completed", "transcript": "hello"}, UserFinal("hello")),
        (
            {"type": "conversation.item.input_audio_transcription.failed"},
            ErrorEvent("Input audio transcription failed"),
        ),
        ({"type": "response.audio.delta", "delta": "AAA="}, AudioDelta("AAA=")),
        ({"type": "response.output_audio.delta", "delta": "AAA="}, AudioDelta("AAA=")),
        ({"type": "response.audio.done"}, AudioDone()),
        ({"type": "response.output_audio.done"}, AudioDone()),
        ({"type": "response.created"}, Lifecycle("in_progress")),
        ({"type": "response.in_progress"}, Lifecycle("in_progress")),
        ({"type": "response.completed"}, Lifecycle("completed")),
        ({"type": "response.done"}, Lifecycle("completed")),
        (
            {"type": "response.failed", "error": {"message": "quota"}},
            Lifecycle("failed", "quota"),
        ),
        ({"type": "session.updated"}, Ignored("session.updated")),
        ({"type": "input_audio_buffer.speech_started"}, Ignored("input_audio_buffer.speech_started")),
    ],
)
def test_normalize_event(event, expected):
    assert normalize_event(event) == expected


def test_empty_commit_error_is_benign():
    event = {"type": "error", "error": {"code": "input_audio_buffer_commit_empty", "message": "buffer too small"}}
    assert isinstance(normalize_event(event), Ignored)


def test_other_errors_surface():
    event = {"type": "error", "error": {"code": "invalid_value", "message": "Bad voice"}}
    assert normalize_event(event) == ErrorEvent("Bad voice", code="invalid_value")
    assert normalize_event({"type": "error"}) == ErrorEvent("Unknown error")


def test_event_without_type_is_ignored():
    assert normalize_event({}) == Ignored("")
