"""Local configuration models for the PUPU client."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal


Provider = Literal["gemini", "openai", "grok"]
VoiceProvider = Literal["browser", "elevenlabs"]

WAKE_WORDS: tuple[str, ...] = (
    "hey pupu",
    "pupu",
    "hey pup",
    "papa",
    "hey papa",
    "hello pupu",
    "hi pupu",
)

GREETINGS: tuple[str, ...] = (
    "hello",
    "hi",
    "hey",
    "hello there",
    "hi there",
    "hey there",
)


@dataclass(slots=True)
class ServerSettings:
    """Connection settings for the PUPU server."""

    base_url: str = "http://127.0.0.1:8000"
    email: str | None = None
    access_token: str | None = None
    verify_ssl: bool = True
    timeout: float = 60.0


@dataclass(slots=True)
class AssistantSettings:
    provider: Provider = "gemini"
    gemini_model: str = "gemini-pro"


@dataclass(slots=True)
class VoiceSettings:
    """Speech output preferences. ``browser`` means the local engine."""

    provider: VoiceProvider = "browser"
    selected_voice_name: str = ""
    language: str = "en"
    rate: float = 0.8
    pitch: float = 0.9
    volume: float = 0.8


@dataclass(slots=True)
class RecognitionSettings:
    """Speech recognition tuning. Delays are in seconds."""

    language: str = "en-US"
    wake_words: tuple[str, ...] = WAKE_WORDS
    greetings: tuple[str, ...] = GREETINGS
    min_confidence: float = 0.3
    short_command_chars: int = 20
    listen_timeout: float = 8.0
    phrase_time_limit: float = 12.0
    input_device: int | None = None
    wake_word_mode: bool = False
    activation_delay: float = 1.0
    wake_handoff_delay: float = 0.3
    after_result_delay: float = 1.0
    after_end_delay: float = 0.5
    wake_no_speech_delay: float = 0.5
    command_no_speech_delay: float = 1.0
    wake_error_delay: float = 3.0
    command_error_delay: float = 2.0
    watchdog_interval: float | None = None


@dataclass(slots=True)
class AppSettings:
    """Full set of settings for the client."""

    server: ServerSettings = field(default_factory=ServerSettings)
    assistant: AssistantSettings = field(default_factory=AssistantSettings)
    voice: VoiceSettings = field(default_factory=VoiceSettings)
    recognition: RecognitionSettings = field(default_factory=RecognitionSettings)
