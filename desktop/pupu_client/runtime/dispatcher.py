"""Send a command to the server and record both sides of the exchange."""

from __future__ import annotations

import asyncio
import logging

import httpx

from ..services.api import ApiError, PupuAPI
from ..services.schemas import ChatMessage
from ..state.app_state import AppState


logger = logging.getLogger(__name__)

ERROR_PREFIX = "Sorry, I encountered an error: "


def _describe(exc: Exception) -> str:
    message = str(exc) or exc.__class__.__name__
    if isinstance(exc, ApiError) and message.startswith("HTTP"):
        return message
    if isinstance(exc, httpx.HTTPError):
        return f"Network error: {message}"
    return message


class CommandDispatcher:
    def __init__(self, api: PupuAPI, state: AppState) -> None:
        self.api = api
        self.state = state
        self._lock = asyncio.Lock()

    async def process(self, command: str) -> ChatMessage:
        """Append the user turn, ask the server, append and return the assistant turn.

        Failures never propagate: they come back as an assistant message whose
        ``metadata["error"]`` is set, so voice mode can still speak them.
        """
        text = command.strip()
        async with self._lock:
            prior = list(self.state.history)
            user_message = ChatMessage(role="user", content=text)
            self.state.history.append(user_message)
            self.state.processing = True
            assistant = self.state.settings.assistant
            try:
                reply = await self.api.chat(
                    [*prior, user_message],
                    text,
                    provider=assistant.provider,
                    gemini_model=assistant.gemini_model if assistant.provider == "gemini" else None,
                )
                message = ChatMessage(
                    role="assistant",
                    content=reply.response,
                    metadata={"search_used": reply.search_used},
                )
            except (ApiError, httpx.HTTPError) as exc:
                logger.warning("chat request failed: %s", exc)
                message = ChatMessage(
                    role="assistant",
                    content=f"{ERROR_PREFIX}{_describe(exc)}",
                    metadata={"error": True},
                )
            finally:
                self.state.processing = False
            self.state.history.append(message)
            return message
