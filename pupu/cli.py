from __future__ import annotations

import asyncio
import json
from typing import Any, Optional

import httpx
import typer
import uvicorn

from pupu.core.config import get_settings


cli = typer.Typer(name="pupu", help="PUPU voice assistant")

_SECRET_FIELDS = ("_api_key", "_secret", "_key")


def _client_settings(server: Optional[str], provider: Optional[str], model: Optional[str]) -> Any:
    from desktop.pupu_client.config.store import load_settings

    settings = load_settings()
    if server:
        settings.server.base_url = server
    if provider:
        settings.assistant.provider = provider
    if model:
        settings.assistant.gemini_model = model
    return settings


async def _with_api(settings: Any, email: Optional[str], password: Optional[str], call: Any) -> Any:
    from desktop.pupu_client.services.api import PupuAPI

    api = PupuAPI(settings)
    try:
        if email and password:
            await api.login(email, password)
        return await call(api)
    finally:
        await api.close()


@cli.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host"),
    port: Optional[int] = typer.Option(None, "--port"),
    reload: bool = typer.Option(False, "--reload"),
) -> None:
    """Start the FastAPI server."""
    settings = get_settings()
    uvicorn.run("pupu.main:app", host=host or settings.host, port=port or settings.port, reload=reload)


@cli.command()
def chat(
    query: str = typer.Argument(..., help="Question for the assistant"),
    server: Optional[str] = typer.Option(None, "--server", help="Server base URL"),
    provider: Optional[str] = typer.Option(None, "--provider", help="gemini | openai | grok"),
    model: Optional[str] = typer.Option(None, "--model", help="Gemini model"),
    email: Optional[str] = typer.Option(None, "--email"),
    password: Optional[str] = typer.Option(None, "--password", envvar="PUPU_PASSWORD"),
) -> None:
    """Send one text query to a running server and print the reply."""
    from desktop.pupu_client.services.api import ApiError

    settings = _client_settings(server, provider, model)
    assistant = settings.assistant

    async def _call(api: Any) -> Any:
        from desktop.pupu_client.services.schemas import ChatMessage

        return await api.chat(
            [ChatMessage(role="user", content=query)],
            query,
            provider=assistant.provider,
            gemini_model=assistant.gemini_model if assistant.provider == "gemini" else None,
        )

    try:
        reply = asyncio.run(_with_api(settings, email or settings.server.email, password, _call))
    except ApiError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1)
    except httpx.HTTPError as exc:
        typer.echo(f"Error: could not reach {settings.server.base_url}: {exc}", err=True)
        raise typer.Exit(code=1)
    typer.echo(reply.response)
    if reply.search_used:
        typer.echo("(web search used)")


@cli.command()
def talk(
    server: Optional[str] = typer.Option(None, "--server", help="Server base URL"),
    provider: Optional[str] = typer.Option(None, "--provider", help="gemini | openai | grok"),
    model: Optional[str] = typer.Option(None, "--model", help="Gemini model"),
    voice: Optional[str] = typer.Option(None, "--voice", help="browser | elevenlabs"),
    wake_word: bool = typer.Option(False, "--wake-word", help="Wait for the wake word between commands"),
    email: Optional[str] = typer.Option(None, "--email"),
    password: Optional[str] = typer.Option(None, "--password", envvar="PUPU_PASSWORD"),
    save: bool = typer.Option(True, "--save/--no-save", help="Persist provider and model changes"),
) -> None:
    """Interactive session: voice mode when a microphone works, text mode otherwise."""
    from desktop.pupu_client import run

    settings = _client_settings(server, provider, model)
    if voice:
        settings.voice.provider = voice
    if email:
        settings.server.email = email
    settings.recognition.wake_word_mode = wake_word
    run(settings, password=password, persist=save)


@cli.command()
def voices() -> None:
    """List the local speech synthesis voices."""
    from desktop.pupu_client.audio.tts import LocalSpeechEngine

    for voice in LocalSpeechEngine().list_voices():
        languages = ", ".join(voice.languages) or "-"
        typer.echo(f"{voice.name}\t{languages}\t{voice.id}")


@cli.command()
def mic(device: Optional[int] = typer.Option(None, "--device", help="Input device index")) -> None:
    """Check that a microphone can be opened."""
    from desktop.pupu_client.audio.microphone import check_microphone_availability, list_input_devices

    status = check_microphone_availability(device)
    if status.has_device:
        for item in list_input_devices():
            typer.echo(f"[{item['index']}] {item['name']} ({item['channels']} ch)")
    if status.available:
        typer.echo("Microphone OK")
        return
    typer.echo(status.error or "Microphone unavailable", err=True)
    raise typer.Exit(code=1)


@cli.command("test-apis")
def test_apis(
    service: str = typer.Argument("all", help="all | gemini | openai | grok | search"),
    server: Optional[str] = typer.Option(None, "--server", help="Server base URL"),
    model: Optional[str] = typer.Option(None, "--model", help="Gemini model"),
    email: Optional[str] = typer.Option(None, "--email"),
    password: Optional[str] = typer.Option(None, "--password", envvar="PUPU_PASSWORD"),
) -> None:
    """Run the server self-test for one or all services."""
    from desktop.pupu_client.services.api import ApiError

    settings = _client_settings(server, None, model)

    async def _call(api: Any) -> Any:
        return await api.self_test(service, gemini_model=settings.assistant.gemini_model)

    try:
        result = asyncio.run(_with_api(settings, email or settings.server.email, password, _call))
    except ApiError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1)
    except httpx.HTTPError as exc:
        typer.echo(f"Error: could not reach {settings.server.base_url}: {exc}", err=True)
        raise typer.Exit(code=1)
    typer.echo(json.dumps(result, indent=2, ensure_ascii=False))


@cli.command("config")
def config_print() -> None:
    """Print the server configuration with secrets reduced to presence flags."""
    data = get_settings().model_dump()
    for name in list(data):
        if name.endswith(_SECRET_FIELDS):
            data[name] = bool(data[name])
    typer.echo(json.dumps(data, ensure_ascii=False, default=str, indent=2))


if __name__ == "__main__":
    cli()
