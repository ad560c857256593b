"""Playback of hosted speech clips."""

from __future__ import annotations

import io
import threading
from dataclasses import dataclass

import sounddevice as sd
import soundfile as sf


@dataclass(slots=True)
class PlaybackConfig:
    """Playback configuration."""

    device_name: str | int | None = None


class SpeechPlayback:
    """Decode a compressed clip (mp3/wav/ogg) and play it on the output device."""

    def __init__(self, config: PlaybackConfig | None = None) -> None:
        self.config = config or PlaybackConfig()
        self._lock = threading.Lock()

    def play(self, data: bytes) -> None:
        """Block until the clip has finished playing or ``stop`` was called."""
        if not data:
            return
        samples, sample_rate = sf.read(io.BytesIO(data), dtype="float32")
        with self._lock:
            sd.play(samples, sample_rate, device=self.config.device_name)
        sd.wait()

    def stop(self) -> None:
        with self._lock:
            sd.stop()
