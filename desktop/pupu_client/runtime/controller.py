"""Orchestrates recognition sessions, command dispatch and spoken replies.

All state changes happen on the asyncio loop. Recognition workers only post
``RecognitionEvent`` values; the controller consumes them one at a time.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING, Callable, Optional

from ..audio.recognition import EventKind, RecognitionEvent, RecognitionSession, SessionFactory, speech_recognition_factory
from ..services.schemas import ChatMessage
from ..state.app_state import AppState, MicrophoneStatus
from ..state.machine import (
    LISTENING_STATE,
    NO_SPEECH,
    InvalidTransition,
    Mode,
    RecognitionMachine,
    RecognitionState,
    SessionKind,
    accept_command,
    is_wake_word,
    retry_delay,
)
from .dispatcher import CommandDispatcher

if TYPE_CHECKING:
    from ..audio.tts import Speaker


logger = logging.getLogger(__name__)

StatusCallback = Callable[[str], None]
MessageCallback = Callable[[ChatMessage], None]
DebugCallback = Callable[[str], None]
MicrophoneProbe = Callable[[Optional[int]], MicrophoneStatus]

PERMISSION_DENIED_MESSAGE = "Microphone permission denied. Use text mode or allow access and say /listen."


class VoiceController:
    """High-level coordinator for the voice client."""

    def __init__(
        self,
        state: AppState,
        dispatcher: CommandDispatcher,
        speaker: Speaker,
        *,
        session_factory: SessionFactory | None = None,
        microphone_probe: MicrophoneProbe | None = None,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self.state = state
        self.dispatcher = dispatcher
        self.speaker = speaker
        self.loop = loop or asyncio.get_running_loop()
        self.machine = RecognitionMachine()
        self._settings = state.settings.recognition
        self._session_factory = session_factory or speech_recognition_factory(self._settings, self.loop)
        if microphone_probe is None:
            from ..audio.microphone import check_microphone_availability

            microphone_probe = check_microphone_availability
        self._microphone_probe = microphone_probe

        self._session: RecognitionSession | None = None
        self._timer: asyncio.TimerHandle | None = None
        self._events: asyncio.Queue[RecognitionEvent | None] = asyncio.Queue()
        self._consumer: asyncio.Task | None = None
        self._watchdog: asyncio.Task | None = None
        self._last_status: str | None = None

        self._status_callback: StatusCallback | None = None
        self._message_callback: MessageCallback | None = None
        self._debug_callback: DebugCallback | None = None

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #
    def set_status_callback(self, callback: StatusCallback | None) -> None:
        self._status_callback = callback

    def set_message_callback(self, callback: MessageCallback | None) -> None:
        self._message_callback = callback

    def set_debug_callback(self, callback: DebugCallback | None) -> None:
        self._debug_callback = callback

    @property
    def status(self) -> str:
        return self.machine.status

    async def activate(self) -> MicrophoneStatus:
        """Probe the microphone, then enter voice mode if it works and text mode otherwise."""
        if self._consumer is None:
            self._consumer = self.loop.create_task(self._consume())
        microphone = await self.loop.run_in_executor(None, self._microphone_probe, self._settings.input_device)
        self.state.microphone = microphone
        self.machine.active = True
        if microphone.available:
            self.machine.mode = Mode.VOICE
            self._debug("microphone ready, voice mode")
            self._schedule(self._home_session(), self._settings.activation_delay)
        else:
            self.machine.mode = Mode.TEXT
            self._debug(f"microphone unavailable ({microphone.error}), text mode")
        if self._settings.watchdog_interval and self._watchdog is None:
            self._watchdog = self.loop.create_task(self._run_watchdog(self._settings.watchdog_interval))
        self._notify_status()
        return microphone

    async def deactivate(self) -> None:
        self.machine.active = False
        self._cancel_timer()
        self._stop_session()
        self.speaker.cancel()
        self._to_idle("deactivated")
        self._notify_status()

    async def shutdown(self) -> None:
        await self.deactivate()
        if self._watchdog is not None:
            self._watchdog.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._watchdog
            self._watchdog = None
        if self._consumer is not None:
            self._events.put_nowait(None)
            await self._consumer
            self._consumer = None

    def post_event(self, event: RecognitionEvent) -> None:
        """Event sink handed to recognition sessions."""
        self._events.put_nowait(event)

    def start_listening(self) -> bool:
        """Start a command session now. Returns False when it was not started."""
        self._cancel_timer()
        return self._start_session(SessionKind.COMMAND)

    def start_wake_word_listening(self) -> bool:
        self._cancel_timer()
        return self._start_session(SessionKind.WAKE_WORD)

    def stop_listening(self) -> None:
        """Stop whatever session runs without scheduling a restart."""
        self._cancel_timer()
        self._stop_session()
        self._to_idle("stopped by user")
        self._notify_status()

    def toggle_listening(self) -> bool:
        """Stop a running command session, or start one. Returns True when listening."""
        if self.machine.command_running:
            self.stop_listening()
            return False
        return self.start_listening()

    def switch_to_text_mode(self) -> None:
        self.machine.mode = Mode.TEXT
        self._cancel_timer()
        self._stop_session()
        self._to_idle("text mode")
        self._debug("switched to text mode")
        self._notify_status()

    async def switch_to_voice_mode(self) -> bool:
        microphone = self.state.microphone
        if microphone is None or not microphone.available:
            microphone = await self.loop.run_in_executor(None, self._microphone_probe, self._settings.input_device)
            self.state.microphone = microphone
        if not microphone.available:
            self._debug(f"voice mode unavailable: {microphone.error}")
            return False
        self.machine.mode = Mode.VOICE
        self._debug("switched to voice mode")
        started = self.start_listening()
        self._notify_status()
        return started

    async def submit_text(self, text: str) -> ChatMessage | None:
        """Send a typed command. In voice mode the reply is spoken as well."""
        if not text.strip():
            return None
        if self.machine.running_session is not None:
            self._cancel_timer()
            self._stop_session()
            self._to_idle("typed command")
        return await self._dispatch(text)

    # ------------------------------------------------------------------ #
    # Event handling
    # ------------------------------------------------------------------ #
    async def handle_event(self, event: RecognitionEvent) -> None:
        current = self._session
        if (
            current is None
            or event.session_id != current.session_id
            or event.session is not self.machine.running_session
        ):
            logger.debug(
                "ignoring %s event from stale %s session #%s",
                event.kind.value,
                event.session.value,
                event.session_id,
            )
            return

        if event.kind is EventKind.STARTED:
            self._debug(f"{event.session.value} session started")
        elif event.kind is EventKind.RESULT:
            if event.session is SessionKind.WAKE_WORD:
                await self._handle_wake_result(event)
            else:
                await self._handle_command_result(event)
        elif event.kind is EventKind.ERROR:
            self._handle_error(event)
        elif event.kind is EventKind.ENDED:
            self._session = None
            self.machine.transition(RecognitionState.IDLE, reason="session ended")
            self._schedule(self._home_session(), self._settings.after_end_delay)
        self._notify_status()

    async def _handle_wake_result(self, event: RecognitionEvent) -> None:
        settings = self._settings
        if not is_wake_word(event.transcript, settings.wake_words, settings.greetings):
            self._debug(f"not a wake word: {event.transcript!r}")
            return
        self._debug(f"wake word heard: {event.transcript!r}")
        self._stop_session()
        self.machine.transition(RecognitionState.IDLE, reason="wake word")
        self._schedule(SessionKind.COMMAND, settings.wake_handoff_delay)

    async def _handle_command_result(self, event: RecognitionEvent) -> None:
        settings = self._settings
        self._stop_session()
        self.machine.transition(RecognitionState.IDLE, reason="command result")
        accepted = accept_command(
            event.transcript,
            event.confidence,
            min_confidence=settings.min_confidence,
            short_command_chars=settings.short_command_chars,
        )
        if not accepted:
            self._debug(f"discarded low-confidence result: {event.transcript!r} ({event.confidence})")
            self._schedule(self._home_session(), settings.after_result_delay)
            return
        await self._dispatch(event.transcript)

    def _handle_error(self, event: RecognitionEvent) -> None:
        error = event.error or "unknown"
        self._session = None
        self.machine.fail(error)
        delay = retry_delay(event.session, error, self._settings)
        if delay is None:
            self.machine.last_error = PERMISSION_DENIED_MESSAGE
            self._debug(PERMISSION_DENIED_MESSAGE)
            return
        target = event.session
        if error == NO_SPEECH and event.session is SessionKind.COMMAND:
            target = self._home_session()
        self._debug(f"{event.session.value} error {error}, retrying in {delay}s")
        self._schedule(target, delay)

    async def _dispatch(self, text: str) -> ChatMessage:
        message = await self.dispatcher.process(text)
        self._emit_message(message)
        if not self.machine.active or self.machine.mode is not Mode.VOICE:
            return message

        if self.machine.state is RecognitionState.ERROR:
            self._to_idle("reply")
        self.machine.transition(RecognitionState.SPEAKING, reason="reply")
        self._notify_status()
        try:
            strategy = await self.speaker.speak(message.content)
        except Exception as exc:
            logger.warning("speaking reply failed: %s", exc)
            self.machine.fail("tts")
        else:
            self._debug(f"reply spoken with {strategy}")
            self.machine.transition(RecognitionState.IDLE, reason="reply spoken")
        self._schedule(self._home_session(), self._settings.after_result_delay)
        self._notify_status()
        return message

    # ------------------------------------------------------------------ #
    # Sessions
    # ------------------------------------------------------------------ #
    def _home_session(self) -> SessionKind:
        return SessionKind.WAKE_WORD if self._settings.wake_word_mode else SessionKind.COMMAND

    def _can_listen(self) -> bool:
        return (
            self.machine.active
            and self.machine.mode is Mode.VOICE
            and self.machine.state is not RecognitionState.SPEAKING
            and not self.state.processing
        )

    def _start_session(self, kind: SessionKind) -> bool:
        self._timer = None
        if not self._can_listen():
            return False
        if self.machine.running_session is kind:
            return True
        self._stop_session()
        try:
            self.machine.transition(LISTENING_STATE[kind], reason=f"start {kind.value}")
        except InvalidTransition as exc:
            logger.warning("%s", exc)
            return False
        session = self._session_factory(kind, self.post_event)
        try:
            session.start()
        except RuntimeError as exc:
            logger.warning("could not start %s session: %s", kind.value, exc)
            self.machine.transition(RecognitionState.IDLE, reason="start failed")
            self._notify_status()
            return False
        self._session = session
        self._notify_status()
        return True

    def _stop_session(self) -> None:
        if self._session is not None:
            self._session.stop()
            self._session = None

    def _to_idle(self, reason: str) -> None:
        if self.machine.state is not RecognitionState.IDLE:
            self.machine.transition(RecognitionState.IDLE, reason=reason)

    def _schedule(self, kind: SessionKind, delay: float) -> None:
        self._cancel_timer()
        if not self.machine.active or self.machine.mode is not Mode.VOICE:
            return
        self._timer = self.loop.call_later(delay, self._start_session, kind)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    async def _consume(self) -> None:
        while True:
            event = await self._events.get()
            if event is None:
                break
            try:
                await self.handle_event(event)
            except Exception:
                logger.exception("recognition event handling failed")

    async def _run_watchdog(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            if (
                self._can_listen()
                and self.machine.state is RecognitionState.IDLE
                and self._timer is None
            ):
                self._debug("watchdog restarting recognition")
                self._start_session(self._home_session())

    # ------------------------------------------------------------------ #
    # Callbacks
    # ------------------------------------------------------------------ #
    def _notify_status(self) -> None:
        status = self.machine.status
        if status == self._last_status:
            return
        self._last_status = status
        if self._status_callback:
            self._status_callback(status)

    def _emit_message(self, message: ChatMessage) -> None:
        if self._message_callback:
            self._message_callback(message)

    def _debug(self, text: str) -> None:
        logger.debug(text)
        if self._debug_callback:
            self._debug_callback(text)
