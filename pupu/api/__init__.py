from __future__ import annotations

from .routes_auth import router as auth_router
from .routes_chat import router as chat_router
from .routes_health import router as health_router
from .routes_keys import router as keys_router
from .routes_speech import router as speech_router
from .routes_test import router as test_router

__all__ = [
    "auth_router",
    "chat_router",
    "health_router",
    "keys_router",
    "speech_router",
    "test_router",
]
