"""
Audio Source Handler Module

Pull-based audio for the detection loop. Each tick reads exactly one buffer of
AUDIO_BUFFER_SIZE mono float samples in [-1, 1], the most recent audio
available, in the same way a browser analyser node exposes its time-domain data.

Sources:
- Microphone (sounddevice InputStream feeding a rolling buffer)
- Browser (samples captured by the dashboard and POSTed as JSON)
"""

import logging
import threading
from enum import Enum
from typing import Optional, Sequence

import numpy as np

import config

logger = logging.getLogger(__name__)


class AudioSourceType(Enum):
    """Enumeration of supported audio source types."""
    MICROPHONE = "microphone"
    BROWSER = "browser"


class RollingAudioBuffer:
    """Fixed-size ring of the newest samples. Thread-safe; writers and the reader may race."""

    def __init__(self, size: Optional[int] = None):
        self.size = int(size or config.AUDIO_BUFFER_SIZE)
        self._buf = np.zeros(self.size, dtype=np.float32)
        self._lock = threading.Lock()

    def clear(self) -> None:
        with self._lock:
            self._buf[:] = 0.0

    def push(self, samples: Sequence[float]) -> None:
        arr = np.asarray(samples, dtype=np.float32).reshape(-1)
        if arr.size == 0:
            return
        arr = np.nan_to_num(np.clip(arr, -1.0, 1.0))
        with self._lock:
            if arr.size >= self.size:
                self._buf[:] = arr[-self.size:]
            else:
                self._buf = np.roll(self._buf, -arr.size)
                self._buf[-arr.size:] = arr

    def snapshot(self) -> np.ndarray:
        with self._lock:
            return self._buf.copy()


# Shared state for the browser source: samples pushed by the dashboard
_browser_audio = RollingAudioBuffer()


def push_browser_audio(samples: Sequence[float]) -> int:
    """
    Append samples received from the browser.

    Returns:
        Number of samples accepted
    """
    arr = np.asarray(samples, dtype=np.float32).reshape(-1)
    _browser_audio.push(arr)
    return int(arr.size)


class AudioSourceHandler:
    """
    Handler for the session's audio source.

    Usage:
        handler = AudioSourceHandler()
        if handler.initialize_source(AudioSourceType.MICROPHONE):
            samples = handler.read_buffer()
    """

    def __init__(self, buffer_size: Optional[int] = None, sample_rate: Optional[int] = None):
        self.buffer_size = int(buffer_size or config.AUDIO_BUFFER_SIZE)
        self.sample_rate = int(sample_rate or config.AUDIO_SAMPLE_RATE)
        self.source_type: Optional[AudioSourceType] = None
        self._stream = None
        self._buffer = RollingAudioBuffer(self.buffer_size)

    def initialize_source(self, source_type: AudioSourceType) -> bool:
        """
        Open an audio source.

        Returns:
            True if the source is ready; False on device failure
        """
        self.release()
        self.source_type = source_type
        try:
            if source_type == AudioSourceType.MICROPHONE:
                # Imported here: PortAudio is only needed when the microphone is used.
                import sounddevice as sd

                self._buffer.clear()

                def callback(indata, frames, time_info, status):
                    if status:
                        logger.debug("Audio input status: %s", status)
                    self._buffer.push(indata[:, 0])

                self._stream = sd.InputStream(
                    callback=callback,
                    channels=1,
                    samplerate=self.sample_rate,
                    blocksize=self.buffer_size,
                    dtype="float32",
                )
                self._stream.start()
                return True

            elif source_type == AudioSourceType.BROWSER:
                _browser_audio.clear()
                return True

            raise ValueError(f"Unsupported audio source type: {source_type}")

        except Exception as e:
            logger.warning("Error initializing audio source: %s", e)
            self.release()
            return False

    def read_buffer(self) -> np.ndarray:
        """Newest buffer_size samples (zeros until enough audio has arrived)."""
        if self.source_type == AudioSourceType.MICROPHONE:
            return self._buffer.snapshot()
        if self.source_type == AudioSourceType.BROWSER:
            data = _browser_audio.snapshot()
            if data.size == self.buffer_size:
                return data
            out = np.zeros(self.buffer_size, dtype=np.float32)
            n = min(self.buffer_size, data.size)
            out[-n:] = data[-n:]
            return out
        return np.zeros(self.buffer_size, dtype=np.float32)

    def release(self) -> None:
        """Stop the input stream and forget the source."""
        if self._stream is not None:
            try:
                self._stream.stop()
                self._stream.close()
            except Exception as e:
                logger.warning("Closing audio stream failed: %s", e)
            self._stream = None
        if self.source_type == AudioSourceType.BROWSER:
            _browser_audio.clear()
        self.source_type = None
