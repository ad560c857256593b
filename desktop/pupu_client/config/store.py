"""Persistence helpers for PUPU client settings."""

from __future__ import annotations

import json
from dataclasses import asdict
from pathlib import Path

from .paths import config_dir
from .settings import AppSettings, AssistantSettings, RecognitionSettings, ServerSettings, VoiceSettings


def settings_path() -> Path:
    return config_dir() / "client_settings.json"


def load_settings(path: Path | None = None) -> AppSettings:
    """Load settings from disk (defaults when missing)."""
    path = path or settings_path()
    if not path.exists():
        return AppSettings()

    data = json.loads(path.read_text(encoding="utf-8").lstrip("\ufeff"))
    recognition = dict(data.get("recognition", {}))
    for key in ("wake_words", "greetings"):
        if key in recognition:
            recognition[key] = tuple(recognition[key])

    return AppSettings(
        server=ServerSettings(**data.get("server", {})),
        assistant=AssistantSettings(**data.get("assistant", {})),
        voice=VoiceSettings(**data.get("voice", {})),
        recognition=RecognitionSettings(**recognition),
    )


def save_settings(settings: AppSettings, path: Path | None = None) -> None:
    """Persist settings to disk. The access token is never written."""
    payload = asdict(settings)
    payload["server"]["access_token"] = None
    path = path or settings_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
