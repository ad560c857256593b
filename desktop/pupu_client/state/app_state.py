"""Shared state model for the client."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

from ..config.settings import AppSettings
from ..services.schemas import ChatMessage


ServerStatus = Literal["online", "offline"]


@dataclass(slots=True)
class MicrophoneStatus:
    has_permission: bool
    has_device: bool
    error: str | None = None

    @property
    def available(self) -> bool:
        return self.has_permission and self.has_device


@dataclass(slots=True)
class AppState:
    """Global state for the client. The conversation lives only in memory."""

    settings: AppSettings = field(default_factory=AppSettings)
    server_status: ServerStatus = "offline"
    history: list[ChatMessage] = field(default_factory=list)
    microphone: MicrophoneStatus | None = None
    processing: bool = False
    configured_keys: dict[str, bool] = field(default_factory=dict)

    def clear_history(self) -> None:
        self.history.clear()
