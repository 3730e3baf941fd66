"""Realtime voice session over the speech-to-speech socket.

One ``VoiceSession`` owns one socket, the microphone capture pipeline and
the playback queue. Lifecycle::

    created -> connect() -> record / commit / receive / play ... -> disconnect() -> inert

A disconnected session cannot be reused; create a new one instead.
"""

import asyncio
import inspect
import json
import logging
import uuid
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

import numpy as np
import websockets
from websockets.exceptions import ConnectionClosed, ConnectionClosedOK

from dpp.client.backend import BackendClient
from dpp.core.config import Settings, get_settings
from dpp.core.errors import AppError, TransportError
from dpp.models.realtime import AudioResponse, ConnectionState, TranscriptEvent
from dpp.voice.audio import FrameAccumulator, decode_frame, encode_frame, float_to_pcm16, pcm16_to_float
from dpp.voice.devices import MicrophoneError, MicrophoneInput, SpeakerOutput, check_microphone_available
from dpp.voice.events import (
    AssistantDelta,
    AssistantFinal,
    AudioDelta,
    AudioDone,
    ErrorEvent,
    Ignored,
    Lifecycle,
    RealtimeEvent,
    SessionReady,
    UserDelta,
    UserFinal,
    normalize_event,
)

logger = logging.getLogger(__name__)

SocketFactory = Callable[[str, list[str]], Awaitable[Any]]


async def open_realtime_socket(url: str, subprotocols: list[str]) -> Any:
    """Open the realtime socket with the browser-style auth subprotocols."""
    return await websockets.connect(url, subprotocols=subprotocols, max_size=None)


@dataclass
class VoiceSessionConfig:
    """Settings for one realtime voice session."""

    instructions: str
    model: str = "gpt-realtime-mini"
    voice: str = "alloy"
    realtime_url: str = "wss://api.openai.com/v1/realtime"
    transcription_model: str = "whisper-1"
    vad_threshold: float = 0.5
    prefix_padding_ms: int = 300
    silence_duration_ms: int = 700
    connect_timeout: float = 10.0

    @classmethod
    def from_settings(cls, instructions: str, settings: Settings | None = None) -> "VoiceSessionConfig":
        settings = settings or get_settings()
        return cls(
            instructions=instructions,
            model=settings.realtime_default_model,
            voice=settings.realtime_default_voice,
            realtime_url=settings.realtime_url,
        )

    def session_update(self) -> dict[str, Any]:
        return {
            "type": "session.update",
            "session": {
                "modalities": ["text", "audio"],
                "instructions": self.instructions,
                "voice": self.voice,
                "input_audio_format": "pcm16",
                "output_audio_format": "pcm16",
                "input_audio_transcription": {"model": self.transcription_model},
                "turn_detection": {
                    "type": "server_vad",
                    "threshold": self.vad_threshold,
                    "prefix_padding_ms": self.prefix_padding_ms,
                    "silence_duration_ms": self.silence_duration_ms,
                },
            },
        }


@dataclass(eq=False)
class VoiceCallbacks:
    """Optional observers of a voice session.

    Handlers may be plain functions or coroutine functions.
    """

    on_transcript: Callable[[TranscriptEvent], Any] | None = None
    on_connection_change: Callable[[ConnectionState], Any] | None = None
    on_error: Callable[[str], Any] | None = None
    on_audio_response: Callable[[AudioResponse], Any] | None = None


class VoiceSession:
    """Duplex voice conversation with the realtime speech API."""

    def __init__(
        self,
        config: VoiceSessionConfig,
        client: BackendClient | None = None,
        callbacks: VoiceCallbacks | None = None,
        connect: SocketFactory = open_realtime_socket,
        microphone: MicrophoneInput | None = None,
        speaker: SpeakerOutput | None = None,
    ) -> None:
        self.session_id = str(uuid.uuid4())
        self.config = config
        self.client = client or BackendClient()
        self._connect = connect
        self._microphone = microphone or MicrophoneInput()
        self._speaker = speaker or SpeakerOutput()

        self._subscribers: list[VoiceCallbacks] = []
        self._callback_tasks: set[asyncio.Future] = set()
        if callbacks is not None:
            self.subscribe(callbacks)

        self._state = ConnectionState.DISCONNECTED
        self._socket: Any = None
        self._receive_task: asyncio.Task | None = None
        self._connect_task: asyncio.Task | None = None
        self._disposed = False

        self._recording = False
        self._frames = FrameAccumulator()
        self._capture_queue: asyncio.Queue | None = None
        self._sender_task: asyncio.Task | None = None

        self._playback_queue: deque[np.ndarray] = deque()
        self._playing = False
        self._playback_task: asyncio.Task | None = None
        self._playback_generation = 0

        self._assistant_text: list[str] = []
        self._discarding = False

    # -- properties ---------------------------------------------------------

    @property
    def connection_state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == ConnectionState.CONNECTED and self._socket is not None

    @property
    def is_recording(self) -> bool:
        return self._recording

    @property
    def is_playing(self) -> bool:
        return self._playing

    @staticmethod
    def check_microphone_available() -> bool:
        return check_microphone_available()

    # -- callbacks ----------------------------------------------------------

    def subscribe(self, callbacks: VoiceCallbacks) -> Callable[[], None]:
        """Register observers; returns a function that unregisters them."""
        if not any(existing is callbacks for existing in self._subscribers):
            self._subscribers.append(callbacks)

        def unsubscribe() -> None:
            self._subscribers = [c for c in self._subscribers if c is not callbacks]

        return unsubscribe

    def _emit(self, slot: str, *args: Any) -> None:
        for callbacks in list(self._subscribers):
            handler = getattr(callbacks, slot)
            if handler is None:
                continue
            try:
                result = handler(*args)
            except Exception as e:
                logger.error(f"{slot} callback failed: {e}", extra={"session_id": self.session_id})
                continue
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._callback_tasks.add(task)
                task.add_done_callback(self._callback_finished)

    def _callback_finished(self, task: asyncio.Future) -> None:
        self._callback_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Async callback failed: {task.exception()}", extra={"session_id": self.session_id})

    def _set_state(self, state: ConnectionState) -> None:
        if state == self._state:
            return
        self._state = state
        logger.info(f"Voice session {state.value}", extra={"session_id": self.session_id})
        self._emit("on_connection_change", state)

    def _report_error(self, message: str) -> None:
        self._emit("on_error", message)

    # -- connection ---------------------------------------------------------

    async def connect(self) -> None:
        """Open the socket and wait for the server to acknowledge the session.

        Raises on token failure, socket failure or handshake timeout; the
        state is then ``error`` and nothing stays open. Concurrent calls
        share one attempt. A ``disconnect()`` during the handshake makes
        it raise ``TransportError("Connection cancelled")``.
        """
        if self._disposed:
            raise RuntimeError("Voice session was disconnected; create a new session")
        if self._connect_task is None:
            if self._socket is not None:
                return
            self._connect_task = asyncio.create_task(self._establish())
            self._connect_task.add_done_callback(self._connect_finished)

        task = self._connect_task
        try:
            await asyncio.shield(task)
        except asyncio.CancelledError:
            if task.cancelled() and self._disposed:
                raise TransportError("Connection cancelled") from None
            raise

    def _connect_finished(self, task: asyncio.Task) -> None:
        if self._connect_task is task:
            self._connect_task = None

    async def _establish(self) -> None:
        self._set_state(ConnectionState.CONNECTING)
        try:
            await asyncio.wait_for(self._handshake(), timeout=self.config.connect_timeout)
        except Exception as e:
            if self._disposed:
                raise TransportError("Connection cancelled") from e
            await self._abort_handshake()
            self._set_state(ConnectionState.ERROR)
            if isinstance(e, asyncio.TimeoutError):
                logger.error("Realtime handshake timed out", extra={"session_id": self.session_id})
                raise TransportError("Connection timeout") from e
            logger.error(f"Realtime connect failed: {e}", extra={"session_id": self.session_id})
            if isinstance(e, AppError):
                raise
            raise TransportError("Connection error") from e

        self._receive_task = asyncio.create_task(self._receive_loop(self._socket))

    async def _handshake(self) -> None:
        token = await self.client.fetch_realtime_token(self.config.model, self.config.voice)
        url = f"{self.config.realtime_url}?model={self.config.model}"
        subprotocols = [
            "realtime",
            f"openai-insecure-api-key.{token.token}",
            "openai-beta.realtime-v1",
        ]
        self._socket = await self._connect(url, subprotocols)
        await self._send(self.config.session_update())

        while self._state != ConnectionState.CONNECTED:
            raw = await self._socket.recv()
            self._handle_raw(raw)

    async def _abort_handshake(self) -> None:
        socket, self._socket = self._socket, None
        if socket is None:
            return
        try:
            await socket.close()
        except Exception as e:
            logger.warning(f"Error closing socket after failed connect: {e}")

    async def _receive_loop(self, socket: Any) -> None:
        try:
            async for raw in socket:
                self._handle_raw(raw)
        except ConnectionClosedOK:
            pass
        except ConnectionClosed as e:
            logger.warning(f"Realtime socket closed abnormally: {e}", extra={"session_id": self.session_id})
            self._report_error("Connection error")
            self._set_state(ConnectionState.ERROR)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Realtime socket error: {e}", extra={"session_id": self.session_id})
            self._report_error("Connection error")
            self._set_state(ConnectionState.ERROR)
        self._on_socket_closed()

    def _on_socket_closed(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        self._socket = None
        self._receive_task = None
        self._teardown_capture()
        self._teardown_playback()
        self._set_state(ConnectionState.DISCONNECTED)

    async def disconnect(self) -> None:
        """Close everything. Safe to call any number of times."""
        if self._disposed:
            return
        self._disposed = True

        connect_task, self._connect_task = self._connect_task, None
        if connect_task is not None and not connect_task.done():
            connect_task.cancel()
            try:
                await connect_task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.debug(f"Pending connect ended with {e}", extra={"session_id": self.session_id})

        await self.stop_recording()

        socket, self._socket = self._socket, None
        receive_task, self._receive_task = self._receive_task, None
        if socket is not None:
            try:
                await socket.close(code=1000, reason="Client disconnect")
            except Exception as e:
                logger.warning(f"Error closing realtime socket: {e}", extra={"session_id": self.session_id})
        if receive_task is not None and receive_task is not asyncio.current_task():
            receive_task.cancel()
            try:
                await receive_task
            except asyncio.CancelledError:
                pass

        self._teardown_capture()
        self._teardown_playback()
        self._set_state(ConnectionState.DISCONNECTED)

    async def _send(self, payload: dict[str, Any]) -> bool:
        if self._socket is None:
            return False
        try:
            await self._socket.send(json.dumps(payload))
        except ConnectionClosed as e:
            logger.warning(f"Dropped {payload.get('type')}: socket closed ({e})", extra={"session_id": self.session_id})
            return False
        return True

    # -- inbound events -----------------------------------------------------

    def _handle_raw(self, raw: str | bytes) -> None:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8", errors="replace")
        try:
            event = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.warning(f"Failed to parse realtime message: {e}", extra={"session_id": self.session_id})
            return
        if not isinstance(event, dict):
            return
        try:
            self._dispatch(normalize_event(event))
        except Exception as e:
            logger.error(f"Failed to handle {event.get('type')}: {e}", extra={"session_id": self.session_id})

    def _dispatch(self, event: RealtimeEvent) -> None:
        if isinstance(event, SessionReady):
            self._set_state(ConnectionState.CONNECTED)

        elif isinstance(event, AssistantDelta):
            if self._discarding or not event.delta:
                return
            self._assistant_text.append(event.delta)
            self._emit("on_transcript", TranscriptEvent(role="assistant", text=event.delta, is_final=False))

        elif isinstance(event, AssistantFinal):
            if self._discarding:
                return
            text = event.text if event.text is not None else "".join(self._assistant_text)
            self._assistant_text.clear()
            if text:
                self._emit("on_transcript", TranscriptEvent(role="assistant", text=text, is_final=True))

        elif isinstance(event, UserDelta):
            if event.text:
                self._emit("on_transcript", TranscriptEvent(role="user", text=event.text, is_final=False))

        elif isinstance(event, UserFinal):
            if event.text:
                self._emit("on_transcript", TranscriptEvent(role="user", text=event.text, is_final=True))

        elif isinstance(event, AudioDelta):
            if self._discarding or not event.payload:
                return
            self._enqueue_audio(decode_frame(event.payload))

        elif isinstance(event, AudioDone):
            if not self._discarding:
                self._emit("on_audio_response", AudioResponse(complete=True))

        elif isinstance(event, Lifecycle):
            if event.state == "in_progress":
                self._discarding = False
            elif event.state == "completed":
                self._dispatch(AssistantFinal())
            else:
                self._report_error(event.message or "Response failed")

        elif isinstance(event, ErrorEvent):
            logger.warning(f"Realtime error event: {event.message}", extra={"session_id": self.session_id})
            self._report_error(event.message)

        elif isinstance(event, Ignored):
            logger.debug(f"Ignored realtime event: {event.type}")

    # -- capture ------------------------------------------------------------

    async def start_recording(self) -> None:
        """Open the microphone and stream PCM16 frames to the socket."""
        if self._recording:
            return
        if self._disposed:
            raise RuntimeError("Voice session was disconnected; create a new session")

        self._recording = True
        self._frames.reset()
        self._capture_queue = asyncio.Queue()
        try:
            self._microphone.start(self._on_samples, asyncio.get_running_loop())
        except MicrophoneError as e:
            self._recording = False
            self._capture_queue = None
            logger.error(f"Microphone error: {e}", extra={"session_id": self.session_id})
            self._report_error(e.message)
            raise

        self._sender_task = asyncio.create_task(self._send_captured(self._capture_queue))

    def _on_samples(self, samples: np.ndarray) -> None:
        if not self._recording or self._capture_queue is None:
            return
        for frame in self._frames.push(samples):
            self._capture_queue.put_nowait(frame)

    async def _send_captured(self, queue: asyncio.Queue) -> None:
        while True:
            frame = await queue.get()
            if frame is None:
                return
            await self._send(
                {
                    "type": "input_audio_buffer.append",
                    "audio": encode_frame(float_to_pcm16(frame)),
                }
            )

    async def stop_recording(self) -> None:
        """Flush captured frames, commit the input buffer, release the microphone."""
        if not self._recording:
            return
        self._recording = False
        self._microphone.stop()

        queue, self._capture_queue = self._capture_queue, None
        sender, self._sender_task = self._sender_task, None
        if queue is not None:
            queue.put_nowait(None)
        if sender is not None:
            await sender

        if self._socket is not None:
            await self._send({"type": "input_audio_buffer.commit"})

    def _teardown_capture(self) -> None:
        self._recording = False
        self._microphone.stop()
        self._capture_queue = None
        sender, self._sender_task = self._sender_task, None
        if sender is not None and not sender.done():
            sender.cancel()

    # -- playback -----------------------------------------------------------

    def _enqueue_audio(self, frame: np.ndarray) -> None:
        if frame.size == 0:
            return
        self._playback_queue.append(frame)
        if not self._playing:
            self._playing = True
            self._playback_task = asyncio.create_task(self._drain_playback(self._playback_generation))

    async def _drain_playback(self, generation: int) -> None:
        try:
            while self._playback_queue and generation == self._playback_generation:
                frame = self._playback_queue.popleft()
                await self._speaker.play(pcm16_to_float(frame))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Playback failed: {e}", extra={"session_id": self.session_id})
            self._playback_queue.clear()
        finally:
            if generation == self._playback_generation:
                self._playing = False
                self._playback_task = None

    def _stop_playback(self) -> None:
        self._playback_generation += 1
        self._playback_queue.clear()
        self._playing = False
        task, self._playback_task = self._playback_task, None
        if task is not None and not task.done():
            task.cancel()
        self._speaker.stop()

    def _teardown_playback(self) -> None:
        self._stop_playback()
        self._assistant_text.clear()
        self._speaker.close()

    # -- controls -----------------------------------------------------------

    async def interrupt(self) -> None:
        """Barge in: cancel the current response and silence playback."""
        if self.is_connected:
            await self._send({"type": "response.cancel"})
        self._stop_playback()
        self._assistant_text.clear()
        self._discarding = True

    async def send_text_message(self, text: str) -> None:
        """Send a typed user message and ask for a response."""
        if not self.is_connected:
            return
        await self._send(
            {
                "type": "conversation.item.create",
                "item": {
                    "type": "message",
                    "role": "user",
                    "content": [{"type": "input_text", "text": text}],
                },
            }
        )
        await self._send({"type": "response.create"})
