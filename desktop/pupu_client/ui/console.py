"""Terminal front-end for the PUPU client."""

from __future__ import annotations

import asyncio
import json
from typing import Callable

import httpx
import typer

from ..config.store import save_settings
from ..runtime.controller import VoiceController
from ..services.api import ApiError, PupuAPI
from ..services.schemas import ChatMessage
from ..state.app_state import AppState

HELP_TEXT = """Commands:
  /voice            switch to voice mode
  /text             switch to text-only mode
  /listen           start or stop listening for a command
  /wake             wait for the wake word
  /clear            clear the conversation
  /provider NAME    gemini | openai | grok
  /model NAME       Gemini model to use
  /keys             show which of your API keys are stored
  /setkey NAME [K]  store (or clear) your openai | gemini | xai | search key
  /rate N           speech rate, 0.5 to 2
  /pitch N          speech pitch, 0.5 to 2
  /volume N         speech volume, 0 to 1
  /voicename [NAME] local voice to use (empty picks one automatically)
  /tts NAME         browser (local engine) | elevenlabs
  /voicetest        speak a test sentence
  /debug            toggle recognition debug output
  /test [SERVICE]   run the server self-test (all, gemini, openai, grok, search)
  /logout           sign out of the server
  /quit             leave
Anything else is sent to the assistant."""

PROVIDERS = ("gemini", "openai", "grok")
KEY_NAMES = ("openai", "gemini", "xai", "search")
TTS_PROVIDERS = ("browser", "elevenlabs")
VOICE_TEST_TEXT = "This is a test of the enhanced text to speech system."

# setting name -> (min, max)
_VOICE_RANGES = {
    "rate": (0.5, 2.0),
    "pitch": (0.5, 2.0),
    "volume": (0.0, 1.0),
}

_STATUS_LABELS = {
    "offline": "offline",
    "online": "online",
    "listening": "listening...",
    "speaking": "speaking...",
    "error": "error",
    "text-only": "text only",
}


class ConsoleUI:
    """Reads lines from stdin and renders controller events."""

    def __init__(
        self,
        state: AppState,
        api: PupuAPI,
        controller: VoiceController,
        *,
        echo: Callable[[str], None] = typer.echo,
        reader: Callable[[str], str] = input,
        persist: bool = True,
    ) -> None:
        self.state = state
        self.api = api
        self.controller = controller
        self._echo = echo
        self._reader = reader
        self._persist = persist
        self.debug = False
        controller.set_status_callback(self._on_status)
        controller.set_message_callback(self._on_message)

    def _on_status(self, status: str) -> None:
        label = _STATUS_LABELS.get(status, status)
        if status == "error" and self.controller.machine.last_error:
            label = f"{label}: {self.controller.machine.last_error}"
        self._echo(f"[{label}]")

    def _on_message(self, message: ChatMessage) -> None:
        name = "PUPU" if message.role == "assistant" else "You"
        self._echo(f"{name}: {message.content}")

    def _on_debug(self, text: str) -> None:
        self._echo(f"[debug] {text}")

    def _save(self) -> None:
        if self._persist:
            save_settings(self.state.settings)

    async def run(self) -> None:
        microphone = await self.controller.activate()
        if microphone.available:
            self._echo("Voice mode. Speak after the prompt, or type a message.")
        else:
            self._echo(f"Text mode ({microphone.error or 'no microphone'}).")
        if self.api.signed_in:
            await self._show_keys()
        self._echo("Type /help for commands.")
        try:
            while True:
                try:
                    line = await asyncio.to_thread(self._reader, "> ")
                except EOFError:
                    break
                if not await self.handle_line(line):
                    break
        finally:
            await self.controller.shutdown()

    async def handle_line(self, line: str) -> bool:
        """Process one input line. Returns False when the session should end."""
        text = line.strip()
        if not text:
            return True
        if not text.startswith("/"):
            await self.controller.submit_text(text)
            return True

        command, _, argument = text[1:].partition(" ")
        argument = argument.strip()
        if command in ("quit", "exit"):
            return False
        if command == "help":
            self._echo(HELP_TEXT)
        elif command == "voice":
            if not await self.controller.switch_to_voice_mode():
                error = self.state.microphone.error if self.state.microphone else None
                self._echo(f"Voice mode unavailable: {error or 'microphone not ready'}")
        elif command == "text":
            self.controller.switch_to_text_mode()
        elif command == "listen":
            self.controller.toggle_listening()
        elif command == "wake":
            self.controller.start_wake_word_listening()
        elif command == "clear":
            self.state.clear_history()
            self._echo("Conversation cleared.")
        elif command == "provider":
            if argument not in PROVIDERS:
                self._echo(f"Unknown provider. Choose one of: {', '.join(PROVIDERS)}")
            else:
                self.state.settings.assistant.provider = argument  # type: ignore[assignment]
                self._save()
                self._echo(f"Provider set to {argument}.")
        elif command == "model":
            if not argument:
                self._echo(f"Gemini model: {self.state.settings.assistant.gemini_model}")
            else:
                self.state.settings.assistant.gemini_model = argument
                self._save()
                self._echo(f"Gemini model set to {argument}.")
        elif command == "keys":
            await self._show_keys()
        elif command == "setkey":
            await self._set_key(argument)
        elif command in _VOICE_RANGES:
            self._set_voice_number(command, argument)
        elif command == "voicename":
            self.state.settings.voice.selected_voice_name = argument
            self._save()
            self._echo(f"Voice set to {argument}." if argument else "Voice will be picked automatically.")
        elif command == "tts":
            if argument not in TTS_PROVIDERS:
                self._echo(f"Unknown voice provider. Choose one of: {', '.join(TTS_PROVIDERS)}")
            else:
                self.state.settings.voice.provider = argument  # type: ignore[assignment]
                self._save()
                self._echo(f"Voice provider set to {argument}.")
        elif command == "voicetest":
            strategy = await self.controller.speaker.speak(VOICE_TEST_TEXT)
            self._echo(f"Voice test played with {strategy}.")
        elif command == "debug":
            self.debug = not self.debug
            self.controller.set_debug_callback(self._on_debug if self.debug else None)
            self._echo(f"Debug output {'on' if self.debug else 'off'}.")
        elif command == "test":
            await self._self_test(argument or "all")
        elif command == "logout":
            await self._logout()
        else:
            self._echo(f"Unknown command /{command}. Type /help.")
        return True

    def _set_voice_number(self, name: str, argument: str) -> None:
        low, high = _VOICE_RANGES[name]
        try:
            value = float(argument)
        except ValueError:
            self._echo(f"Usage: /{name} N (between {low:g} and {high:g})")
            return
        if not low <= value <= high:
            self._echo(f"{name.capitalize()} must be between {low:g} and {high:g}.")
            return
        setattr(self.state.settings.voice, name, value)
        self._save()
        self._echo(f"{name.capitalize()} set to {value:g}.")

    async def _show_keys(self) -> None:
        try:
            data = await self.api.get_keys()
        except (ApiError, httpx.HTTPError) as exc:
            self._echo(f"Could not load API keys: {exc}")
            return
        configured = {name: bool(data.get("configured", {}).get(name)) for name in KEY_NAMES}
        self.state.configured_keys = configured
        summary = ", ".join(f"{name} {'set' if ok else 'not set'}" for name, ok in configured.items())
        self._echo(f"Your API keys: {summary}")

    async def _set_key(self, argument: str) -> None:
        name, _, value = argument.partition(" ")
        if name not in KEY_NAMES:
            self._echo(f"Usage: /setkey NAME [KEY] with NAME one of: {', '.join(KEY_NAMES)}")
            return
        try:
            current = await self.api.get_keys()
            keys = {key: current.get("keys", {}).get(key) or None for key in KEY_NAMES}
            keys[name] = value.strip() or None
            saved = await self.api.save_keys(keys)
        except (ApiError, httpx.HTTPError) as exc:
            self._echo(f"Failed to save API keys: {exc}")
            return
        self.state.configured_keys = {key: bool(saved.get("configured", {}).get(key)) for key in KEY_NAMES}
        self._echo(f"Saved {name} key." if keys[name] else f"Cleared {name} key.")

    async def _logout(self) -> None:
        try:
            await self.api.logout()
        except httpx.HTTPError as exc:
            self._echo(f"Sign-out request failed: {exc}")
        self.state.configured_keys = {}
        self._save()
        self._echo("Signed out.")

    async def _self_test(self, service: str) -> None:
        try:
            result = await self.api.self_test(service, gemini_model=self.state.settings.assistant.gemini_model)
        except (ApiError, httpx.HTTPError) as exc:
            self._echo(f"Self-test failed: {exc}")
            return
        self._echo(json.dumps(result, indent=2, ensure_ascii=False))
