"""Microphone and speaker access through sounddevice.

sounddevice is imported lazily so the rest of the package (and the
server) works on machines without PortAudio.
"""

import asyncio
import logging
from typing import Callable

import numpy as np

from dpp.core.errors import TransportError
from dpp.voice.audio import CHANNELS, SAMPLE_RATE

logger = logging.getLogger(__name__)

SampleCallback = Callable[[np.ndarray], None]


class MicrophoneError(TransportError):
    """Microphone could not be opened or stopped delivering audio."""

    public_message = "Microphone unavailable"


def _lazy_import_sounddevice():
    try:
        import sounddevice as sd  # type: ignore
    except (ImportError, OSError) as exc:
        raise MicrophoneError("sounddevice with a working PortAudio is required for audio I/O") from exc
    return sd


class MicrophoneInput:
    """Default input device streaming float32 mono samples.

    The PortAudio callback runs on its own thread; samples are handed
    back to the event loop with ``call_soon_threadsafe``.
    """

    def __init__(self, sample_rate: int = SAMPLE_RATE, channels: int = CHANNELS) -> None:
        self.sample_rate = sample_rate
        self.channels = channels
        self._stream = None

    @property
    def active(self) -> bool:
        return self._stream is not None

    def start(self, on_samples: SampleCallback, loop: asyncio.AbstractEventLoop) -> None:
        if self._stream is not None:
            return
        sd = _lazy_import_sounddevice()

        def callback(indata, frames, time_info, status):
            if status:
                logger.debug(f"Microphone status: {status}")
            loop.call_soon_threadsafe(on_samples, indata[:, 0].copy())

        try:
            stream = sd.InputStream(
                samplerate=self.sample_rate,
                channels=self.channels,
                dtype="float32",
                callback=callback,
            )
            stream.start()
        except Exception as e:
            raise MicrophoneError(f"Failed to open microphone: {e}") from e
        self._stream = stream
        logger.info("Microphone opened")

    def stop(self) -> None:
        stream, self._stream = self._stream, None
        if stream is None:
            return
        try:
            stream.stop()
            stream.close()
        except Exception as e:
            logger.warning(f"Error closing microphone: {e}")
        logger.info("Microphone closed")


class SpeakerOutput:
    """Default output device; ``play`` returns once a frame is written."""

    def __init__(self, sample_rate: int = SAMPLE_RATE, channels: int = CHANNELS) -> None:
        self.sample_rate = sample_rate
        self.channels = channels
        self._stream = None

    def _ensure_stream(self):
        if self._stream is None:
            sd = _lazy_import_sounddevice()
            self._stream = sd.OutputStream(
                samplerate=self.sample_rate,
                channels=self.channels,
                dtype="float32",
            )
            self._stream.start()
        return self._stream

    async def play(self, samples: np.ndarray) -> None:
        stream = self._ensure_stream()
        await asyncio.to_thread(stream.write, samples.reshape(-1, 1))

    def stop(self) -> None:
        """Abort whatever is currently playing."""
        if self._stream is None:
            return
        try:
            self._stream.abort()
            self._stream.start()
        except Exception as e:
            logger.warning(f"Error stopping playback: {e}")

    def close(self) -> None:
        stream, self._stream = self._stream, None
        if stream is None:
            return
        try:
            stream.close()
        except Exception as e:
            logger.warning(f"Error closing speaker: {e}")


def check_microphone_available() -> bool:
    """True when at least one input device is present."""
    try:
        sd = _lazy_import_sounddevice()
        devices = sd.query_devices()
    except Exception as e:
        logger.warning(f"Could not enumerate audio devices: {e}")
        return False
    return any(device.get("max_input_channels", 0) > 0 for device in devices)
