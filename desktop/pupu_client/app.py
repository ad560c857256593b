"""Entry point for the PUPU terminal client."""

from __future__ import annotations

import asyncio

from .audio.tts import HostedSpeech, Speaker
from .config.settings import AppSettings
from .config.store import load_settings
from .runtime.controller import VoiceController
from .runtime.dispatcher import CommandDispatcher
from .services.api import PupuAPI
from .state.app_state import AppState
from .ui.console import ConsoleUI


async def _main(settings: AppSettings, *, password: str | None = None, persist: bool = True) -> None:
    state = AppState(settings=settings)
    api = PupuAPI(settings)
    try:
        state.server_status = "online" if await api.ping() else "offline"
        if settings.server.email and password:
            await api.login(settings.server.email, password)
        speaker = Speaker(settings.voice, hosted=HostedSpeech(api))
        controller = VoiceController(state, CommandDispatcher(api, state), speaker)
        await ConsoleUI(state, api, controller, persist=persist).run()
    finally:
        await api.close()


def run(settings: AppSettings | None = None, *, password: str | None = None, persist: bool = True) -> None:
    """Start the interactive client."""
    asyncio.run(_main(settings or load_settings(), password=password, persist=persist))
