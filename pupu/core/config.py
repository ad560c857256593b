"""Unified server configuration."""

from __future__ import annotations

import json
from functools import lru_cache
from pathlib import Path

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_SEARCH_TRIGGERS = [
    "current",
    "latest",
    "news",
    "weather",
    "today",
    "what is",
    "who is",
    "crash",
    "recent",
]

DEFAULT_GEMINI_FALLBACKS = [
    "gemini-pro",
    "gemini-pro-vision",
    "gemini-1.5-flash",
    "gemini-1.5-pro",
]


class Settings(BaseSettings):
    """Global server settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="allow",
        populate_by_name=True,
    )

    # HTTP server
    host: str = "127.0.0.1"
    port: int = 8000
    cors_origins: list[str] = ["*"]
    cookie_samesite: str = "lax"
    cookie_secure: bool = False
    csrf_secret: str = "CHANGE_ME"
    csrf_max_age_seconds: int = 3600

    # Hosted auth (GoTrue) and key table (PostgREST)
    disable_auth: bool = False
    supabase_url: str | None = None
    supabase_anon_key: str | None = None
    supabase_service_role_key: str | None = None
    supabase_jwt_secret: str | None = None
    supabase_jwt_audience: str = "authenticated"
    auth_timeout_sec: float = 10.0
    auth_redirect_url: str = "/"

    # Key store
    keystore_backend: str = "sqlite"
    keystore_table: str = "user_api_keys"
    db_path: str = "pupu/data/pupu.db"

    # Logs
    log_dir: str = "pupu/logs"
    log_rotate_mb: int = 5
    log_retention_days: int = 7

    # Provider keys (environment fallback for users without their own keys)
    openai_api_key: str | None = None
    google_generative_ai_api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("google_generative_ai_api_key", "gemini_api_key"),
    )
    xai_api_key: str | None = None
    searchapi_api_key: str | None = None
    elevenlabs_api_key: str | None = None

    # Generation
    assistant_name: str = "PUPU"
    default_provider: str = "gemini"
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    gemini_default_model: str = "gemini-pro"
    gemini_fallback_models: list[str] = DEFAULT_GEMINI_FALLBACKS
    gemini_history_messages: int = 6
    gemini_top_k: int = 40
    gemini_top_p: float = 0.95
    openai_base_url: str = "https://api.openai.com/v1"
    openai_model: str = "gpt-4o"
    xai_base_url: str = "https://api.x.ai/v1"
    xai_model: str = "grok-1"
    chat_history_messages: int = 4
    llm_max_output_tokens: int = 150
    llm_temperature: float = 0.7
    llm_timeout_sec: float = 30.0

    # Web search
    search_triggers: list[str] = DEFAULT_SEARCH_TRIGGERS
    searchapi_url: str = "https://www.searchapi.io/api/v1/search"
    searchapi_engine: str = "google"
    search_max_results: int = 3
    search_timeout_sec: float = 10.0
    search_duckduckgo_fallback: bool = True
    duckduckgo_region: str = "wt-wt"
    duckduckgo_safe_search: str = "moderate"

    # Hosted speech (ElevenLabs)
    elevenlabs_base_url: str = "https://api.elevenlabs.io/v1"
    elevenlabs_voice_id: str = "21m00Tcm4TlvDq8ikWAM"
    elevenlabs_model_id: str = "eleven_monolingual_v1"
    elevenlabs_stability: float = 0.5
    elevenlabs_similarity_boost: float = 0.5
    elevenlabs_style: float = 0.5
    elevenlabs_speaker_boost: bool = True
    speech_timeout_sec: float = 30.0

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            cls.json_config_settings_source,
            file_secret_settings,
        )

    @staticmethod
    def json_config_settings_source() -> dict[str, object]:
        """Load config.json from the repository root when present."""
        config_path = Path(__file__).resolve().parents[2] / "config.json"
        if config_path.is_file():
            try:
                return json.loads(config_path.read_text())
            except ValueError:
                return {}
        return {}

    def provider_key_flags(self) -> dict[str, bool]:
        """Presence flags for the environment keys, never the values."""
        return {
            "openai": bool(self.openai_api_key),
            "gemini": bool(self.google_generative_ai_api_key),
            "elevenlabs": bool(self.elevenlabs_api_key),
            "search": bool(self.searchapi_api_key),
            "xai": bool(self.xai_api_key),
        }


@lru_cache()
def get_settings() -> Settings:
    """Return a cached Settings instance."""
    return Settings()
