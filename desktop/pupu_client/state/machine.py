"""Recognition state machine.

A single tagged ``RecognitionState`` replaces separate "wake word running" and
"command running" flags, so both sessions can never be marked live at once.
Every change goes through ``RecognitionMachine.transition`` and is checked
against ``ALLOWED_TRANSITIONS``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Literal

from ..config.settings import GREETINGS, WAKE_WORDS, RecognitionSettings


class RecognitionState(str, Enum):
    IDLE = "idle"
    WAKE_WORD_LISTENING = "wake_word_listening"
    COMMAND_LISTENING = "command_listening"
    SPEAKING = "speaking"
    ERROR = "error"


class SessionKind(str, Enum):
    WAKE_WORD = "wake_word"
    COMMAND = "command"


class Mode(str, Enum):
    VOICE = "voice"
    TEXT = "text"


DisplayStatus = Literal["offline", "online", "listening", "speaking", "error", "text-only"]

_S = RecognitionState

ALLOWED_TRANSITIONS: dict[RecognitionState, frozenset[RecognitionState]] = {
    _S.IDLE: frozenset({_S.WAKE_WORD_LISTENING, _S.COMMAND_LISTENING, _S.SPEAKING, _S.ERROR}),
    _S.WAKE_WORD_LISTENING: frozenset({_S.COMMAND_LISTENING, _S.IDLE, _S.ERROR}),
    _S.COMMAND_LISTENING: frozenset({_S.WAKE_WORD_LISTENING, _S.IDLE, _S.SPEAKING, _S.ERROR}),
    _S.SPEAKING: frozenset({_S.COMMAND_LISTENING, _S.IDLE, _S.ERROR}),
    _S.ERROR: frozenset({_S.IDLE, _S.WAKE_WORD_LISTENING, _S.COMMAND_LISTENING}),
}

LISTENING_STATE: dict[SessionKind, RecognitionState] = {
    SessionKind.WAKE_WORD: _S.WAKE_WORD_LISTENING,
    SessionKind.COMMAND: _S.COMMAND_LISTENING,
}

# Error codes shared by every recognition backend.
NO_SPEECH = "no-speech"
NOT_ALLOWED = "not-allowed"
AUDIO_CAPTURE = "audio-capture"
NETWORK = "network"
ABORTED = "aborted"


class InvalidTransition(RuntimeError):
    def __init__(self, current: RecognitionState, target: RecognitionState) -> None:
        super().__init__(f"illegal recognition transition {current.value} -> {target.value}")
        self.current = current
        self.target = target


def is_wake_word(
    transcript: str,
    wake_words: Iterable[str] = WAKE_WORDS,
    greetings: Iterable[str] = GREETINGS,
) -> bool:
    """True when the transcript contains a wake phrase or opens with a greeting.

    Wake phrases match anywhere in the text. Greetings must be the whole text
    or be followed by a space, so "history" does not count as "hi".
    """
    text = (transcript or "").lower().strip()
    if not text:
        return False
    if any(word in text for word in wake_words):
        return True
    return any(text == greeting or text.startswith(f"{greeting} ") for greeting in greetings)


def accept_command(
    transcript: str,
    confidence: float | None,
    *,
    min_confidence: float = 0.3,
    short_command_chars: int = 20,
) -> bool:
    if not transcript or not transcript.strip():
        return False
    # engines report 0 when they give no score
    if not confidence:
        return True
    return confidence > min_confidence or len(transcript) < short_command_chars


def retry_delay(session: SessionKind, error: str, settings: RecognitionSettings) -> float | None:
    """Seconds before restarting ``session`` after ``error``; None means do not retry."""
    if error == NOT_ALLOWED:
        return None
    wake = session is SessionKind.WAKE_WORD
    if error == NO_SPEECH:
        return settings.wake_no_speech_delay if wake else settings.command_no_speech_delay
    return settings.wake_error_delay if wake else settings.command_error_delay


@dataclass(slots=True)
class TransitionRecord:
    source: RecognitionState
    target: RecognitionState
    reason: str


@dataclass(slots=True)
class RecognitionMachine:
    state: RecognitionState = RecognitionState.IDLE
    mode: Mode = Mode.TEXT
    active: bool = False
    last_error: str | None = None
    history: list[TransitionRecord] = field(default_factory=list)
    history_limit: int = 50

    def can_transition(self, target: RecognitionState) -> bool:
        return target is self.state or target in ALLOWED_TRANSITIONS[self.state]

    def transition(self, target: RecognitionState, *, reason: str = "") -> RecognitionState:
        """Move to ``target``. Re-entering the current state is a no-op."""
        if target is self.state:
            return self.state
        if target not in ALLOWED_TRANSITIONS[self.state]:
            raise InvalidTransition(self.state, target)
        self.history.append(TransitionRecord(self.state, target, reason))
        del self.history[: -self.history_limit]
        self.state = target
        if target is not RecognitionState.ERROR:
            self.last_error = None
        return self.state

    def fail(self, error: str) -> None:
        self.transition(RecognitionState.ERROR, reason=error)
        self.last_error = error

    @property
    def command_running(self) -> bool:
        return self.state is RecognitionState.COMMAND_LISTENING

    @property
    def wake_word_running(self) -> bool:
        return self.state is RecognitionState.WAKE_WORD_LISTENING

    @property
    def running_session(self) -> SessionKind | None:
        if self.command_running:
            return SessionKind.COMMAND
        if self.wake_word_running:
            return SessionKind.WAKE_WORD
        return None

    @property
    def status(self) -> DisplayStatus:
        if not self.active:
            return "offline"
        if self.state is RecognitionState.ERROR:
            return "error"
        if self.state is RecognitionState.SPEAKING:
            return "speaking"
        if self.state is RecognitionState.COMMAND_LISTENING:
            return "listening"
        if self.mode is Mode.TEXT:
            return "text-only"
        return "online"
