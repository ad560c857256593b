"""Per-user provider key storage.

Two backends share the same small interface:

- ``PostgrestKeyStore`` talks to the hosted ``user_api_keys`` table through
  PostgREST, forwarding the caller's access token so row level security
  applies.
- ``SqliteKeyStore`` keeps the same table in the local SQLite database, for
  development and tests.

Users without their own keys fall back to the server environment keys, see
``resolve_keys``.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from datetime import datetime, timezone
from typing import Any, Protocol

import httpx

from pupu.core.config import Settings
from pupu.core.db import open_db
from pupu.core.errors import KeyStoreError
from pupu.core.logger import get_logger


logger = get_logger("audit")

# PostgREST codes meaning "nothing stored yet" rather than a failure.
NO_ROW_CODES = frozenset({"PGRST116", "42P01", "PGRST205"})

KEY_COLUMNS: tuple[str, ...] = ("openai_key", "gemini_key", "xai_key", "search_key")


@dataclass(slots=True)
class UserApiKeys:
    user_id: str
    openai_key: str | None = None
    gemini_key: str | None = None
    xai_key: str | None = None
    search_key: str | None = None
    updated_at: str | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "UserApiKeys":
        names = {f.name for f in fields(cls)}
        data = {k: v for k, v in dict(row).items() if k in names}
        data["user_id"] = str(data.get("user_id", ""))
        for column in KEY_COLUMNS:
            data[column] = data.get(column) or None
        return cls(**data)

    def to_row(self) -> dict[str, Any]:
        return asdict(self)

    def summary(self) -> dict[str, dict[str, Any]]:
        """Presence flags and a short hint per key, safe to log or display."""
        out: dict[str, dict[str, Any]] = {}
        for column in KEY_COLUMNS:
            value = getattr(self, column)
            out[column] = {"configured": bool(value), "hint": f"...{value[-4:]}" if value and len(value) > 8 else None}
        return out


@dataclass(slots=True)
class ResolvedKeys:
    """Keys actually used for a request: the user's own, else the environment's."""

    openai: str | None = None
    gemini: str | None = None
    xai: str | None = None
    search: str | None = None

    def flags(self) -> dict[str, bool]:
        return {
            "openai": bool(self.openai),
            "gemini": bool(self.gemini),
            "xai": bool(self.xai),
            "search": bool(self.search),
        }


def resolve_keys(record: UserApiKeys | None, settings: Settings) -> ResolvedKeys:
    record = record or UserApiKeys(user_id="")
    return ResolvedKeys(
        openai=record.openai_key or settings.openai_api_key,
        gemini=record.gemini_key or settings.google_generative_ai_api_key,
        xai=record.xai_key or settings.xai_api_key,
        search=record.search_key or settings.searchapi_api_key,
    )


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class KeyStore(Protocol):
    async def get(self, user_id: str) -> UserApiKeys | None: ...

    async def upsert(self, record: UserApiKeys) -> UserApiKeys: ...

    async def ping(self) -> None: ...


_SCHEMA = """
CREATE TABLE IF NOT EXISTS user_api_keys (
    user_id TEXT PRIMARY KEY,
    openai_key TEXT,
    gemini_key TEXT,
    xai_key TEXT,
    search_key TEXT,
    updated_at TEXT
)
"""


class SqliteKeyStore:
    def __init__(self, db_path: str | None = None) -> None:
        self._db_path = db_path

    async def init(self) -> None:
        async with open_db(self._db_path) as db:
            await db.execute(_SCHEMA)
            await db.commit()

    async def get(self, user_id: str) -> UserApiKeys | None:
        async with open_db(self._db_path) as db:
            await db.execute(_SCHEMA)
            cur = await db.execute("SELECT * FROM user_api_keys WHERE user_id = ?", (user_id,))
            row = await cur.fetchone()
        if row is None:
            return None
        return UserApiKeys.from_row(dict(row))

    async def upsert(self, record: UserApiKeys) -> UserApiKeys:
        record.updated_at = _now()
        async with open_db(self._db_path) as db:
            await db.execute(_SCHEMA)
            await db.execute(
                """
                INSERT INTO user_api_keys (user_id, openai_key, gemini_key, xai_key, search_key, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                    openai_key = excluded.openai_key,
                    gemini_key = excluded.gemini_key,
                    xai_key = excluded.xai_key,
                    search_key = excluded.search_key,
                    updated_at = excluded.updated_at
                """,
                (
                    record.user_id,
                    record.openai_key,
                    record.gemini_key,
                    record.xai_key,
                    record.search_key,
                    record.updated_at,
                ),
            )
            await db.commit()
        return record

    async def ping(self) -> None:
        async with open_db(self._db_path) as db:
            await db.execute(_SCHEMA)
            await db.execute("SELECT COUNT(*) FROM user_api_keys")


class PostgrestKeyStore:
    def __init__(
        self,
        settings: Settings,
        *,
        access_token: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not settings.supabase_url or not settings.supabase_anon_key:
            raise KeyStoreError("Hosted key store is not configured (SUPABASE_URL / SUPABASE_ANON_KEY)")
        self._url = f"{settings.supabase_url.rstrip('/')}/rest/v1/{settings.keystore_table}"
        bearer = access_token or settings.supabase_service_role_key or settings.supabase_anon_key
        self._headers = {
            "apikey": settings.supabase_anon_key,
            "Authorization": f"Bearer {bearer}",
            "Content-Type": "application/json",
        }
        self._timeout = settings.auth_timeout_sec
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._timeout, headers=self._headers, transport=self._transport)

    @staticmethod
    def _error_of(resp: httpx.Response) -> KeyStoreError:
        try:
            body = resp.json()
        except ValueError:
            body = {}
        code = body.get("code") if isinstance(body, dict) else None
        message = body.get("message") if isinstance(body, dict) else None
        return KeyStoreError(message or f"HTTP {resp.status_code}", code=code)

    async def get(self, user_id: str) -> UserApiKeys | None:
        try:
            async with self._client() as client:
                resp = await client.get(self._url, params={"user_id": f"eq.{user_id}", "select": "*"})
        except httpx.HTTPError as exc:
            raise KeyStoreError(f"Key store unreachable: {exc.__class__.__name__}") from exc
        if resp.is_error:
            err = self._error_of(resp)
            if err.code in NO_ROW_CODES:
                logger.info("no key row for user", extra={"code": err.code})
                return None
            raise err
        rows = resp.json()
        if not rows:
            return None
        return UserApiKeys.from_row(rows[0])

    async def upsert(self, record: UserApiKeys) -> UserApiKeys:
        record.updated_at = _now()
        headers = {"Prefer": "resolution=merge-duplicates,return=representation"}
        try:
            async with self._client() as client:
                resp = await client.post(
                    self._url,
                    params={"on_conflict": "user_id"},
                    json=record.to_row(),
                    headers=headers,
                )
        except httpx.HTTPError as exc:
            raise KeyStoreError(f"Key store unreachable: {exc.__class__.__name__}") from exc
        if resp.is_error:
            raise self._error_of(resp)
        rows = resp.json()
        return UserApiKeys.from_row(rows[0]) if rows else record

    async def ping(self) -> None:
        try:
            async with self._client() as client:
                resp = await client.get(self._url, params={"select": "user_id", "limit": "1"})
        except httpx.HTTPError as exc:
            raise KeyStoreError(f"Key store unreachable: {exc.__class__.__name__}") from exc
        if resp.is_error:
            raise self._error_of(resp)


def get_key_store(settings: Settings, *, access_token: str | None = None) -> KeyStore:
    backend = (settings.keystore_backend or "sqlite").lower()
    if backend == "supabase":
        return PostgrestKeyStore(settings, access_token=access_token)
    if backend == "sqlite":
        return SqliteKeyStore(settings.db_path)
    raise KeyStoreError(f"Unknown key store backend: {settings.keystore_backend}")


def save_error_message(exc: KeyStoreError) -> str:
    """Human readable reason for a failed save, keyed on the PostgREST code."""
    if exc.code == "42P01":
        return "Database table not found. Please run the user_api_keys migration."
    if exc.code == "42501":
        return "Permission denied. Check the row level security policies on user_api_keys."
    return f"Database error: {exc}"


async def keys_for_user(user_id: str, settings: Settings, *, access_token: str | None = None) -> ResolvedKeys:
    """Fetch the caller's stored keys and merge them over the environment keys."""
    store = get_key_store(settings, access_token=access_token)
    record = await store.get(user_id)
    return resolve_keys(record, settings)
