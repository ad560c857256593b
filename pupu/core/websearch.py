from __future__ import annotations

import asyncio
from typing import Any, Dict, Iterable, List, Tuple

import httpx
from duckduckgo_search import DDGS
from duckduckgo_search.exceptions import RatelimitException

from pupu.core.config import Settings, get_settings
from pupu.core.errors import SearchUnavailableError
from pupu.core.logger import get_logger


logger = get_logger("chat")

Backends = ("auto", "lite")

SEARCH_PLACEHOLDER = "Search temporarily unavailable."
NO_RESULTS_MESSAGE = "No current information found for this query."
NO_BACKEND_MESSAGE = "Web search is currently unavailable."


def needs_search(query: str, triggers: Iterable[str] | None = None) -> bool:
    """True when the query looks time-sensitive enough to warrant a web lookup."""
    lowered = (query or "").lower()
    if not lowered.strip():
        return False
    words = triggers if triggers is not None else get_settings().search_triggers
    return any(trigger.lower() in lowered for trigger in words)


def format_results(items: Iterable[dict[str, Any]], limit: int) -> str:
    parts: List[str] = []
    for item in items:
        title = (item.get("title") or "").strip()
        snippet = (item.get("snippet") or "").strip()
        if not title and not snippet:
            continue
        parts.append(f"{title}: {snippet}")
        if len(parts) >= limit:
            break
    return " | ".join(parts)


async def _search_searchapi(query: str, api_key: str, settings: Settings) -> List[dict[str, Any]]:
    params = {
        "engine": settings.searchapi_engine,
        "q": query,
        "api_key": api_key,
        "num": settings.search_max_results,
    }
    try:
        async with httpx.AsyncClient(timeout=settings.search_timeout_sec) as client:
            resp = await client.get(settings.searchapi_url, params=params)
            resp.raise_for_status()
            data = resp.json()
    except httpx.HTTPStatusError as exc:
        raise SearchUnavailableError(f"Search API error: {exc.response.status_code}") from exc
    except (httpx.RequestError, ValueError) as exc:
        raise SearchUnavailableError(f"Search API unreachable: {exc.__class__.__name__}") from exc
    organic = data.get("organic_results") if isinstance(data, dict) else None
    if not isinstance(organic, list):
        return []
    return [
        {"title": item.get("title"), "snippet": item.get("snippet"), "link": item.get("link")}
        for item in organic
        if isinstance(item, dict)
    ]


def _sync_search(query: str, backend: str, safesearch: str, region: str, max_results: int) -> Tuple[List[dict[str, Any]], str | None]:
    try:
        items: List[dict[str, Any]] = []
        with DDGS() as ddgs:
            for item in ddgs.text(
                query,
                safesearch=safesearch,
                region=region,
                backend=backend,
                max_results=max_results,
            ):
                items.append(
                    {
                        "title": item.get("title"),
                        "snippet": item.get("body"),
                        "link": item.get("href"),
                    }
                )
                if len(items) >= max_results:
                    break
        return items, None
    except RatelimitException:
        return [], "Ratelimit"
    except Exception as exc:  # pragma: no cover - network library raises many types
        return [], exc.__class__.__name__


async def _search_duckduckgo(query: str, settings: Settings) -> Tuple[List[dict[str, Any]], Dict[str, Any]]:
    loop = asyncio.get_running_loop()
    errors: List[dict[str, Any]] = []
    for backend in Backends:
        items, error = await loop.run_in_executor(
            None,
            _sync_search,
            query,
            backend,
            settings.duckduckgo_safe_search,
            settings.duckduckgo_region,
            settings.search_max_results,
        )
        if items:
            return items, {"backend": backend, "status": "ok"}
        if error:
            errors.append({"backend": backend, "error": error})
    return [], {"backend": None, "status": "error" if errors else "empty", "errors": errors}


async def search_web(query: str, api_key: str | None = None, *, settings: Settings | None = None) -> str:
    """Return search snippets as a single line ready to inject in a prompt.

    SearchAPI.io is used when a key is available. Without a key, DuckDuckGo is
    queried if enabled, otherwise a fixed "unavailable" sentence is returned.
    Transport and HTTP failures raise ``SearchUnavailableError``.
    """
    settings = settings or get_settings()
    if api_key:
        items = await _search_searchapi(query, api_key, settings)
        logger.info("searchapi lookup", extra={"count": len(items)})
    elif settings.search_duckduckgo_fallback:
        items, meta = await _search_duckduckgo(query, settings)
        logger.info("duckduckgo lookup", extra={"count": len(items), **meta})
        if not items and meta.get("status") == "error":
            raise SearchUnavailableError("DuckDuckGo search failed on every backend")
    else:
        return NO_BACKEND_MESSAGE
    formatted = format_results(items, settings.search_max_results)
    return formatted or NO_RESULTS_MESSAGE


async def probe_searchapi(api_key: str, *, settings: Settings | None = None) -> int:
    """Run a tiny SearchAPI query, returning the number of results."""
    settings = settings or get_settings()
    items = await _search_searchapi("test", api_key, settings)
    return len(items)
