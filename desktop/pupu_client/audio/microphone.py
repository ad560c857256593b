"""Microphone availability probe."""

from __future__ import annotations

import logging

import sounddevice as sd

from ..state.app_state import MicrophoneStatus


logger = logging.getLogger(__name__)

_PERMISSION_HINTS = ("permission", "denied", "not allowed", "access")


def _looks_like_permission_error(exc: Exception) -> bool:
    text = str(exc).lower()
    return any(hint in text for hint in _PERMISSION_HINTS)


def check_microphone_availability(device: int | str | None = None) -> MicrophoneStatus:
    """Find an input device and briefly open it to confirm access."""
    try:
        devices = sd.query_devices()
    except Exception as exc:
        logger.warning("audio device query failed: %s", exc)
        return MicrophoneStatus(False, False, f"Microphone error: {exc}")

    inputs = [d for d in devices if int(d.get("max_input_channels", 0)) > 0]
    if not inputs:
        return MicrophoneStatus(False, False, "No microphone device found.")

    try:
        with sd.InputStream(device=device, channels=1):
            pass
    except sd.PortAudioError as exc:
        if _looks_like_permission_error(exc):
            return MicrophoneStatus(False, True, "Microphone permission denied.")
        logger.warning("microphone open failed: %s", exc)
        return MicrophoneStatus(False, True, f"Microphone error: {exc}")
    return MicrophoneStatus(True, True)


def list_input_devices() -> list[dict[str, object]]:
    return [
        {"index": index, "name": d.get("name"), "channels": d.get("max_input_channels")}
        for index, d in enumerate(sd.query_devices())
        if int(d.get("max_input_channels", 0)) > 0
    ]
