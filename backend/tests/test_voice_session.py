"""Voice session tests with a fake socket and fake audio devices."""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import numpy as np
import pytest

from dpp.core.errors import TransportError, UpstreamError
from dpp.models.realtime import ConnectionState, RealtimeToken
from dpp.voice.audio import FRAME_SIZE, decode_frame, encode_frame
from dpp.voice.devices import MicrophoneError
from dpp.voice.session import VoiceCallbacks, VoiceSession, VoiceSessionConfig


class FakeSocket:
    """In-memory stand-in for the realtime socket."""

    def __init__(self, auto_ack: bool = True) -> None:
        self.auto_ack = auto_ack
        self.sent: list[dict] = []
        self.incoming: asyncio.Queue = asyncio.Queue()
        self.close_codes: list[int] = []

    def push(self, event: dict) -> None:
        self.incoming.put_nowait(json.dumps(event))

    def drop(self) -> None:
        """Server side closes the connection."""
        self.incoming.put_nowait(None)

    def types(self) -> list[str]:
        return [message["type"] for message in self.sent]

    async def send(self, data: str) -> None:
        message = json.loads(data)
        self.sent.append(message)
        if message["type"] == "session.update" and self.auto_ack:
            self.push({"type": "session.created"})

    async def recv(self) -> str:
        return await self.incoming.get()

    def __aiter__(self):
        return self

    async def __anext__(self) -> str:
        item = await self.incoming.get()
        if item is None:
            raise StopAsyncIteration
        return item

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.close_codes.append(code)
        self.incoming.put_nowait(None)


class FakeMicrophone:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.starts = 0
        self.stops = 0
        self.on_samples = None

    def start(self, on_samples, loop) -> None:
        if self.fail:
            raise MicrophoneError("Failed to open microphone: no input device")
        self.starts += 1
        self.on_samples = on_samples

    def stop(self) -> None:
        self.stops += 1


class FakeSpeaker:
    def __init__(self, gate: asyncio.Event | None = None) -> None:
        self.gate = gate
        self.played: list[np.ndarray] = []
        self.active = 0
        self.max_active = 0
        self.stops = 0
        self.closed = False

    async def play(self, samples: np.ndarray) -> None:
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.gate is not None:
                await self.gate.wait()
            else:
                await asyncio.sleep(0)
            self.played.append(samples)
        finally:
            self.active -= 1

    def stop(self) -> None:
        self.stops += 1

    def close(self) -> None:
        self.closed = True


class Recorder:
    """Collects everything the session reports."""

    def __init__(self) -> None:
        self.states: list[ConnectionState] = []
        self.transcripts: list[tuple[str, str, bool]] = []
        self.errors: list[str] = []
        self.audio_responses = 0
        self.callbacks = VoiceCallbacks(
            on_transcript=lambda e: self.transcripts.append((e.role, e.text, e.is_final)),
            on_connection_change=self.states.append,
            on_error=self.errors.append,
            on_audio_response=self._audio_done,
        )

    def _audio_done(self, response) -> None:
        assert response.complete is True
        self.audio_responses += 1


def _token_client(error: Exception | None = None) -> MagicMock:
    client = MagicMock()
    client.fetch_realtime_token = AsyncMock(
        return_value=RealtimeToken(token="ek_test", expires_at=1, model="gpt-realtime-mini"),
        side_effect=error,
    )
    return client


def _session(socket=None, microphone=None, speaker=None, client=None, timeout=1.0):
    socket = socket or FakeSocket()
    recorder = Recorder()
    opened: list[tuple[str, list[str]]] = []

    async def connect(url, subprotocols):
        opened.append((url, subprotocols))
        return socket

    config = VoiceSessionConfig(instructions="You are a wool sweater.", connect_timeout=timeout)
    session = VoiceSession(
        config,
        client=client or _token_client(),
        callbacks=recorder.callbacks,
        connect=connect,
        microphone=microphone or FakeMicrophone(),
        speaker=speaker or FakeSpeaker(),
    )
    return session, socket, recorder, opened


async def _settle() -> None:
    for _ in range(20):
        await asyncio.sleep(0)


def _audio(value: int) -> dict:
    return {"type": "response.audio.delta", "delta": encode_frame(np.full(4, value, dtype=np.int16))}


def test_connect_handshake():
    async def scenario():
        session, socket, recorder, opened = _session()
        await session.connect()

        assert session.is_connected
        assert recorder.states == [ConnectionState.CONNECTING, ConnectionState.CONNECTED]

        url, subprotocols = opened[0]
        assert url == "wss://api.openai.com/v1/realtime?model=gpt-realtime-mini"
        assert subprotocols == ["realtime", "openai-insecure-api-key.ek_test", "openai-beta.realtime-v1"]

        update = socket.sent[0]
        assert update["type"] == "session.update"
        assert update["session"]["modalities"] == ["text", "audio"]
        assert update["session"]["instructions"] == "You are a wool sweater."
        assert update["session"]["input_audio_format"] == "pcm16"
        assert update["session"]["input_audio_transcription"] == {"model": "whisper-1"}
        assert update["session"]["turn_detection"] == {
            "type": "server_vad",
            "threshold": 0.5,
            "prefix_padding_ms": 300,
            "silence_duration_ms": 700,
        }
        await session.disconnect()

    asyncio.run(scenario())


def test_connect_timeout_releases_socket():
    async def scenario():
        socket = FakeSocket(auto_ack=False)
        session, _, recorder, _ = _session(socket=socket, timeout=0.05)

        with pytest.raises(TransportError):
            await session.connect()

        assert session.connection_state == ConnectionState.ERROR
        assert socket.close_codes
        assert not session.is_connected

    asyncio.run(scenario())


def test_token_failure_is_raised():
    async def scenario():
        session, _, recorder, opened = _session(client=_token_client(UpstreamError(500, "Server configuration error")))

        with pytest.raises(UpstreamError):
            await session.connect()

        assert recorder.states == [ConnectionState.CONNECTING, ConnectionState.ERROR]
        assert opened == []

    asyncio.run(scenario())


def test_concurrent_connects_share_one_socket():
    async def scenario():
        client = _token_client()

        async def slow_token(*args):
            await asyncio.sleep(0.01)
            return RealtimeToken(token="ek_test", expires_at=1, model="gpt-realtime-mini")

        client.fetch_realtime_token = AsyncMock(side_effect=slow_token)
        session, socket, recorder, opened = _session(client=client)

        await asyncio.gather(session.connect(), session.connect())

        assert len(opened) == 1
        assert client.fetch_realtime_token.await_count == 1
        assert session.is_connected
        assert recorder.states == [ConnectionState.CONNECTING, ConnectionState.CONNECTED]

        await session.disconnect()
        assert socket.close_codes == [1000]

    asyncio.run(scenario())


def test_disconnect_during_handshake_ends_disconnected():
    async def scenario():
        socket = FakeSocket(auto_ack=False)
        session, _, recorder, opened = _session(socket=socket)

        pending = asyncio.create_task(session.connect())
        await _settle()
        assert opened

        await session.disconnect()

        with pytest.raises(TransportError) as exc_info:
            await pending
        assert exc_info.value.message == "Connection cancelled"
        assert session.connection_state == ConnectionState.DISCONNECTED
        assert recorder.states == [ConnectionState.CONNECTING, ConnectionState.DISCONNECTED]
        assert socket.close_codes == [1000]

    asyncio.run(scenario())


def test_disconnect_before_connect():
    async def scenario():
        session, socket, recorder, opened = _session()

        await session.disconnect()
        await session.disconnect()

        assert session.connection_state == ConnectionState.DISCONNECTED
        assert recorder.states == []
        assert recorder.errors == []
        assert opened == []

    asyncio.run(scenario())


def test_socket_error_on_connect_sets_error():
    async def scenario():
        recorder = Recorder()

        async def refuse(url, subprotocols):
            raise OSError("connection refused")

        session = VoiceSession(
            VoiceSessionConfig(instructions="prompt"),
            client=_token_client(),
            callbacks=recorder.callbacks,
            connect=refuse,
            microphone=FakeMicrophone(),
            speaker=FakeSpeaker(),
        )

        with pytest.raises(TransportError) as exc_info:
            await session.connect()

        assert exc_info.value.message == "Connection error"
        assert session.connection_state == ConnectionState.ERROR
        assert recorder.states == [ConnectionState.CONNECTING, ConnectionState.ERROR]
        assert not session.is_connected

    asyncio.run(scenario())


def test_assistant_transcript_assembly():
    async def scenario():
        session, socket, recorder, _ = _session()
        await session.connect()

        socket.push({"type": "response.created"})
        socket.push({"type": "response.output_audio_transcript.delta", "delta": "Sono "})
        socket.push({"type": "response.output_audio_transcript.delta", "delta": "lana"})
        socket.push({"type": "response.done"})
        socket.push({"type": "conversation.item.input_audio_transcription.completed", "transcript": "Chi sei?"})
        await _settle()

        assert recorder.transcripts == [
            ("assistant", "Sono ", False),
            ("assistant", "lana", False),
            ("assistant", "Sono lana", True),
            ("user", "Chi sei?", True),
        ]
        await session.disconnect()

    asyncio.run(scenario())


def test_final_event_text_wins_over_accumulator():
    async def scenario():
        session, socket, recorder, _ = _session()
        await session.connect()

        socket.push({"type": "response.text.delta", "delta": "partial"})
        socket.push({"type": "response.text.done", "text": "complete text"})
        socket.push({"type": "response.completed"})
        await _settle()

        assert recorder.transcripts[-1] == ("assistant", "complete text", True)
        assert len([t for t in recorder.transcripts if t[2]]) == 1
        await session.disconnect()

    asyncio.run(scenario())


def test_playback_is_fifo_with_a_single_loop():
    async def scenario():
        speaker = FakeSpeaker()
        session, socket, recorder, _ = _session(speaker=speaker)
        await session.connect()

        for value in (1, 2, 3):
            socket.push(_audio(value))
        socket.push({"type": "response.audio.done"})
        await _settle()

        assert [int(round(frame[0] * 32768)) for frame in speaker.played] == [1, 2, 3]
        assert speaker.max_active == 1
        assert recorder.audio_responses == 1
        assert not session.is_playing
        await session.disconnect()

    asyncio.run(scenario())


def test_interrupt_discards_cancelled_response():
    async def scenario():
        gate = asyncio.Event()
        speaker = FakeSpeaker(gate=gate)
        session, socket, recorder, _ = _session(speaker=speaker)
        await session.connect()

        socket.push({"type": "response.created"})
        socket.push({"type": "response.audio_transcript.delta", "delta": "Once upon"})
        for value in (1, 2, 3):
            socket.push(_audio(value))
        await _settle()
        assert session.is_playing

        await session.interrupt()
        assert socket.types()[-1] == "response.cancel"
        assert not session.is_playing
        assert speaker.stops == 1

        # Tail of the cancelled response
        socket.push(_audio(4))
        socket.push({"type": "response.audio_transcript.delta", "delta": " a time"})
        socket.push({"type": "response.audio.done"})
        socket.push({"type": "response.done"})
        await _settle()

        gate.set()
        socket.push({"type": "response.created"})
        socket.push(_audio(9))
        await _settle()

        assert [int(round(frame[0] * 32768)) for frame in speaker.played] == [9]
        assert recorder.audio_responses == 0
        assert ("assistant", "Once upon a time", True) not in recorder.transcripts
        await session.disconnect()

    asyncio.run(scenario())


def test_recording_streams_frames_and_commits():
    async def scenario():
        microphone = FakeMicrophone()
        session, socket, recorder, _ = _session(microphone=microphone)
        await session.connect()

        await session.start_recording()
        await session.start_recording()
        assert microphone.starts == 1
        assert session.is_recording

        microphone.on_samples(np.full(FRAME_SIZE - 100, 0.5, dtype=np.float32))
        microphone.on_samples(np.full(200, -0.5, dtype=np.float32))
        await session.stop_recording()
        await session.stop_recording()

        appends = [m for m in socket.sent if m["type"] == "input_audio_buffer.append"]
        assert len(appends) == 1
        frame = decode_frame(appends[0]["audio"])
        assert len(frame) == FRAME_SIZE
        assert frame[0] == 16383
        assert frame[-1] == -16384
        assert socket.types()[-1] == "input_audio_buffer.commit"
        assert socket.types().count("input_audio_buffer.commit") == 1
        assert not session.is_recording
        assert microphone.stops == 1
        await session.disconnect()

    asyncio.run(scenario())


def test_microphone_failure_reports_and_raises():
    async def scenario():
        session, socket, recorder, _ = _session(microphone=FakeMicrophone(fail=True))
        await session.connect()

        with pytest.raises(MicrophoneError):
            await session.start_recording()

        assert not session.is_recording
        assert recorder.errors == ["Failed to open microphone: no input device"]
        await session.disconnect()

    asyncio.run(scenario())


def test_empty_commit_error_is_not_surfaced():
    async def scenario():
        session, socket, recorder, _ = _session()
        await session.connect()

        socket.push({"type": "error", "error": {"code": "input_audio_buffer_commit_empty", "message": "too small"}})
        socket.push({"type": "error", "error": {"code": "invalid_value", "message": "Bad voice"}})
        socket.push({"type": "response.failed"})
        await _settle()

        assert recorder.errors == ["Bad voice", "Response failed"]
        await session.disconnect()

    asyncio.run(scenario())


def test_send_text_message():
    async def scenario():
        session, socket, recorder, _ = _session()
        await session.send_text_message("ignored")
        assert socket.sent == []

        await session.connect()
        await session.send_text_message("Di che colore sei?")

        assert socket.types()[-2:] == ["conversation.item.create", "response.create"]
        item = socket.sent[-2]["item"]
        assert item["role"] == "user"
        assert item["content"] == [{"type": "input_text", "text": "Di che colore sei?"}]
        await session.disconnect()

    asyncio.run(scenario())


def test_disconnect_is_idempotent_and_final():
    async def scenario():
        microphone = FakeMicrophone()
        speaker = FakeSpeaker()
        session, socket, recorder, _ = _session(microphone=microphone, speaker=speaker)
        await session.connect()
        await session.start_recording()

        await session.disconnect()
        await session.disconnect()

        assert recorder.states.count(ConnectionState.DISCONNECTED) == 1
        assert socket.close_codes == [1000]
        assert "input_audio_buffer.commit" in socket.types()
        assert speaker.closed
        assert not session.is_recording
        assert not session.is_connected

        with pytest.raises(RuntimeError):
            await session.connect()

    asyncio.run(scenario())


def test_server_close_cleans_up_once():
    async def scenario():
        speaker = FakeSpeaker()
        session, socket, recorder, _ = _session(speaker=speaker)
        await session.connect()

        socket.drop()
        await _settle()

        assert session.connection_state == ConnectionState.DISCONNECTED
        assert speaker.closed
        await session.disconnect()
        assert recorder.states.count(ConnectionState.DISCONNECTED) == 1

    asyncio.run(scenario())


def test_callback_errors_do_not_break_dispatch():
    async def scenario():
        session, socket, recorder, _ = _session()

        def broken(event):
            raise ValueError("ui exploded")

        session.subscribe(VoiceCallbacks(on_transcript=broken))
        await session.connect()

        socket.push({"type": "conversation.item.input_audio_transcription.completed", "transcript": "ciao"})
        await _settle()

        assert recorder.transcripts == [("user", "ciao", True)]
        await session.disconnect()

    asyncio.run(scenario())


def test_subscribe_is_deduplicated_and_reversible():
    async def scenario():
        session, socket, recorder, _ = _session()
        received: list[str] = []
        extra = VoiceCallbacks(on_transcript=lambda e: received.append(e.text))

        unsubscribe = session.subscribe(extra)
        session.subscribe(extra)
        await session.connect()

        socket.push({"type": "conversation.item.input_audio_transcription.completed", "transcript": "one"})
        await _settle()
        unsubscribe()
        socket.push({"type": "conversation.item.input_audio_transcription.completed", "transcript": "two"})
        await _settle()

        assert received == ["one"]
        assert [t[1] for t in recorder.transcripts] == ["one", "two"]
        await session.disconnect()

    asyncio.run(scenario())


def test_async_callbacks_are_awaited():
    async def scenario():
        session, socket, recorder, _ = _session()
        received: list[str] = []

        async def on_error(message: str) -> None:
            await asyncio.sleep(0)
            received.append(message)

        session.subscribe(VoiceCallbacks(on_error=on_error))
        await session.connect()
        socket.push({"type": "error", "error": {"message": "boom"}})
        await _settle()

        assert received == ["boom"]
        await session.disconnect()

    asyncio.run(scenario())


def test_config_from_settings():
    from dpp.core.config import Settings

    settings = Settings(realtime_default_model="gpt-realtime", realtime_default_voice="verse")
    config = VoiceSessionConfig.from_settings("prompt", settings)
    assert config.model == "gpt-realtime"
    assert config.voice == "verse"
    assert config.instructions == "prompt"
