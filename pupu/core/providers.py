"""Text-generation providers (gemini, openai, grok) and the dispatcher in front of them."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence

import httpx

from pupu.core.config import Settings, get_settings
from pupu.core.errors import ProviderError, UnsupportedProviderError
from pupu.core.keystore import ResolvedKeys
from pupu.core.logger import get_logger
from pupu.core.prompts import (
    GROK_PERSONA,
    OPENAI_PERSONA,
    build_chat_messages,
    build_gemini_prompt,
    build_system_message,
)


logger = get_logger("providers")

PROVIDERS: tuple[str, ...] = ("gemini", "openai", "grok")


@dataclass(frozen=True, slots=True)
class ModelCandidate:
    provider: str
    model: str


@dataclass(slots=True)
class GenerationRequest:
    messages: Sequence[Mapping[str, Any]] = field(default_factory=list)
    query: str = ""
    search_results: str = ""


def _detail_of(resp: httpx.Response) -> str:
    try:
        data = resp.json()
    except ValueError:
        return resp.text.strip()[:200] or resp.reason_phrase
    error = data.get("error") if isinstance(data, dict) else None
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    if isinstance(error, str):
        return error
    return resp.text.strip()[:200] or resp.reason_phrase


class BaseProvider:
    name: str = ""
    label: str = ""
    missing_key_message: str = ""

    def __init__(
        self,
        settings: Settings,
        api_key: str | None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.settings = settings
        self.api_key = api_key
        self._transport = transport

    def candidates(self, model_override: str | None = None) -> list[ModelCandidate]:
        raise NotImplementedError

    async def call_model(self, client: httpx.AsyncClient, candidate: ModelCandidate, request: GenerationRequest) -> str:
        raise NotImplementedError

    def _exhausted(self, failures: list[str]) -> ProviderError:
        last = failures[-1] if failures else "no model configured"
        return ProviderError(f"{self.label} API error: {last}", provider=self.name)

    async def _post(self, client: httpx.AsyncClient, url: str, payload: dict[str, Any], **kwargs: Any) -> dict[str, Any]:
        try:
            resp = await client.post(url, json=payload, **kwargs)
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise ProviderError(
                f"{exc.response.status_code} {exc.response.reason_phrase}: {_detail_of(exc.response)}",
                provider=self.name,
            ) from exc
        except httpx.RequestError as exc:
            raise ProviderError(f"cannot reach {self.label} ({exc.__class__.__name__})", provider=self.name) from exc
        try:
            return resp.json()
        except ValueError as exc:
            raise ProviderError(f"{self.label} returned a non-JSON body", provider=self.name) from exc

    async def generate(self, request: GenerationRequest, *, model_override: str | None = None) -> str:
        """Try every candidate model in order and return the first non-empty reply."""
        if not self.api_key:
            raise ProviderError(self.missing_key_message, provider=self.name)
        failures: list[str] = []
        timeout = httpx.Timeout(self.settings.llm_timeout_sec)
        async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
            for candidate in self.candidates(model_override):
                try:
                    text = await self.call_model(client, candidate, request)
                except ProviderError as exc:
                    logger.warning(
                        "model failed",
                        extra={"provider": self.name, "model": candidate.model, "error": str(exc)},
                    )
                    failures.append(str(exc))
                    continue
                logger.info("model answered", extra={"provider": self.name, "model": candidate.model})
                return text.strip()
        raise self._exhausted(failures)


class GeminiProvider(BaseProvider):
    name = "gemini"
    label = "Gemini"
    missing_key_message = "Google Generative AI API key not found."

    def candidates(self, model_override: str | None = None) -> list[ModelCandidate]:
        ordered: list[ModelCandidate] = []
        for model in [model_override, *self.settings.gemini_fallback_models]:
            if not model:
                continue
            candidate = ModelCandidate(self.name, model)
            if candidate not in ordered:
                ordered.append(candidate)
        return ordered

    def _exhausted(self, failures: list[str]) -> ProviderError:
        return ProviderError(
            "Gemini API error: All configured Gemini models failed to generate a response. "
            "Please ensure your API key is valid and you have access to the selected Gemini model.",
            provider=self.name,
        )

    def build_payload(self, request: GenerationRequest) -> dict[str, Any]:
        prompt = build_gemini_prompt(
            request.messages,
            request.query,
            request.search_results,
            name=self.settings.assistant_name,
            history_limit=self.settings.gemini_history_messages,
        )
        return {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {
                "maxOutputTokens": self.settings.llm_max_output_tokens,
                "temperature": self.settings.llm_temperature,
                "topK": self.settings.gemini_top_k,
                "topP": self.settings.gemini_top_p,
            },
        }

    async def call_model(self, client: httpx.AsyncClient, candidate: ModelCandidate, request: GenerationRequest) -> str:
        url = f"{self.settings.gemini_base_url.rstrip('/')}/models/{candidate.model}:generateContent"
        data = await self._post(
            client,
            url,
            self.build_payload(request),
            headers={"x-goog-api-key": str(self.api_key)},
        )
        candidates = data.get("candidates") or []
        parts = ((candidates[0].get("content") or {}).get("parts") or []) if candidates else []
        text = "".join(str(part.get("text", "")) for part in parts if isinstance(part, dict))
        if not text.strip():
            raise ProviderError(f"{candidate.model} returned an empty reply", provider=self.name)
        return text


class OpenAICompatibleProvider(BaseProvider):
    """Chat-completions wire format shared by OpenAI and xAI."""

    persona: str = OPENAI_PERSONA

    @property
    def base_url(self) -> str:
        raise NotImplementedError

    @property
    def model(self) -> str:
        raise NotImplementedError

    def candidates(self, model_override: str | None = None) -> list[ModelCandidate]:
        return [ModelCandidate(self.name, self.model)]

    def build_payload(self, candidate: ModelCandidate, request: GenerationRequest) -> dict[str, Any]:
        system = build_system_message(self.persona, request.search_results, name=self.settings.assistant_name)
        return {
            "model": candidate.model,
            "messages": build_chat_messages(
                system,
                request.messages,
                request.query,
                history_limit=self.settings.chat_history_messages,
            ),
            "max_tokens": self.settings.llm_max_output_tokens,
            "temperature": self.settings.llm_temperature,
            "stream": False,
        }

    async def call_model(self, client: httpx.AsyncClient, candidate: ModelCandidate, request: GenerationRequest) -> str:
        data = await self._post(
            client,
            f"{self.base_url.rstrip('/')}/chat/completions",
            self.build_payload(candidate, request),
            headers={"Authorization": f"Bearer {self.api_key}"},
        )
        choices = data.get("choices") or []
        choice = choices[0] if choices else {}
        content = (choice.get("message") or {}).get("content") or choice.get("text") or ""
        if not str(content).strip():
            raise ProviderError(f"{candidate.model} returned an empty reply", provider=self.name)
        return str(content)


class OpenAIProvider(OpenAICompatibleProvider):
    name = "openai"
    label = "OpenAI"
    missing_key_message = "OpenAI API key not found."
    persona = OPENAI_PERSONA

    @property
    def base_url(self) -> str:
        return self.settings.openai_base_url

    @property
    def model(self) -> str:
        return self.settings.openai_model


class GrokProvider(OpenAICompatibleProvider):
    name = "grok"
    label = "Grok"
    missing_key_message = "xAI (Grok) API key not found."
    persona = GROK_PERSONA

    @property
    def base_url(self) -> str:
        return self.settings.xai_base_url

    @property
    def model(self) -> str:
        return self.settings.xai_model


def get_provider(
    name: str,
    keys: ResolvedKeys,
    *,
    settings: Settings | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> BaseProvider:
    settings = settings or get_settings()
    if name == "gemini":
        return GeminiProvider(settings, keys.gemini, transport=transport)
    if name == "openai":
        return OpenAIProvider(settings, keys.openai, transport=transport)
    if name == "grok":
        return GrokProvider(settings, keys.xai, transport=transport)
    raise UnsupportedProviderError(f"Unsupported AI provider: {name}", provider=name)


async def generate_ai_response(
    messages: Sequence[Mapping[str, Any]],
    query: str,
    search_results: str,
    provider: str,
    keys: ResolvedKeys,
    gemini_model: str | None = None,
    *,
    settings: Settings | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> str:
    """Route a chat turn to the selected provider.

    Every failure, including an unknown provider name, is re-raised with the
    provider name prefixed so callers can surface it as is.
    """
    request = GenerationRequest(messages=list(messages), query=query, search_results=search_results or "")
    try:
        impl = get_provider(provider, keys, settings=settings, transport=transport)
        return await impl.generate(request, model_override=gemini_model if provider == "gemini" else None)
    except ProviderError as exc:
        logger.error("provider failed", extra={"provider": provider, "error": str(exc)})
        raise exc.__class__(f"AI service error for {provider}: {exc}", provider=provider) from exc


async def probe_provider(
    provider: str,
    keys: ResolvedKeys,
    *,
    gemini_model: str | None = None,
    prompt: str = "test",
    settings: Settings | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> str:
    """One short call against the first candidate only, used by the self-test."""
    settings = settings or get_settings()
    impl = get_provider(provider, keys, settings=settings, transport=transport)
    if not impl.api_key:
        raise ProviderError(impl.missing_key_message, provider=provider)
    candidate = impl.candidates(gemini_model)[0]
    request = GenerationRequest(messages=[], query=prompt)
    async with httpx.AsyncClient(timeout=httpx.Timeout(settings.llm_timeout_sec), transport=transport) as client:
        text = await impl.call_model(client, candidate, request)
    return text.strip()
