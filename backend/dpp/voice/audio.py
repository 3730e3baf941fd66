"""PCM16 conversion and framing for the realtime voice socket."""

import base64

import numpy as np

SAMPLE_RATE = 24000
CHANNELS = 1
FRAME_SIZE = 4096


def float_to_pcm16(samples: np.ndarray) -> np.ndarray:
    """Quantize float samples to int16.

    Samples are clamped to [-1, 1]; negatives scale by 0x8000 and
    positives by 0x7FFF, truncated toward zero.
    """
    clamped = np.clip(np.asarray(samples, dtype=np.float32), -1.0, 1.0)
    scaled = np.where(clamped < 0, clamped * 0x8000, clamped * 0x7FFF)
    return scaled.astype(np.int16)


def pcm16_to_float(frame: np.ndarray) -> np.ndarray:
    return frame.astype(np.float32) / 32768.0


def encode_frame(frame: np.ndarray) -> str:
    """Base64 of little-endian int16 samples."""
    return base64.b64encode(frame.astype("<i2").tobytes()).decode("ascii")


def decode_frame(payload: str) -> np.ndarray:
    """Decode a base64 PCM16 payload; an odd trailing byte is dropped."""
    raw = base64.b64decode(payload)
    if len(raw) % 2:
        raw = raw[:-1]
    return np.frombuffer(raw, dtype="<i2").astype(np.int16)


class FrameAccumulator:
    """Collects captured samples and releases fixed-size frames in order."""

    def __init__(self, frame_size: int = FRAME_SIZE) -> None:
        self.frame_size = frame_size
        self._buffer = np.zeros(frame_size, dtype=np.float32)
        self._filled = 0

    def push(self, samples: np.ndarray) -> list[np.ndarray]:
        """Add samples and return every frame completed by them."""
        frames: list[np.ndarray] = []
        data = np.asarray(samples, dtype=np.float32).reshape(-1)
        offset = 0
        while offset < len(data):
            take = min(self.frame_size - self._filled, len(data) - offset)
            self._buffer[self._filled:self._filled + take] = data[offset:offset + take]
            self._filled += take
            offset += take
            if self._filled == self.frame_size:
                frames.append(self._buffer.copy())
                self._filled = 0
        return frames

    @property
    def pending(self) -> int:
        return self._filled

    def reset(self) -> None:
        self._filled = 0
