import os
import tempfile

import pytest

# Category loggers open their files on first import, keep them out of the repo.
os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="pupu-logs-"))

from pupu.core.config import get_settings  # noqa: E402


_ENV_KEYS = (
    "OPENAI_API_KEY",
    "GOOGLE_GENERATIVE_AI_API_KEY",
    "GEMINI_API_KEY",
    "XAI_API_KEY",
    "SEARCHAPI_API_KEY",
    "ELEVENLABS_API_KEY",
    "SUPABASE_URL",
    "SUPABASE_ANON_KEY",
    "SUPABASE_SERVICE_ROLE_KEY",
    "SUPABASE_JWT_SECRET",
    "DISABLE_AUTH",
    "KEYSTORE_BACKEND",
)


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch, tmp_path):
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("DB_PATH", str(tmp_path / "pupu.db"))
    monkeypatch.setenv("CSRF_SECRET", "tests-csrf-secret-value")
    get_settings.cache_clear()  # type: ignore[attr-defined]
    yield
    get_settings.cache_clear()  # type: ignore[attr-defined]
