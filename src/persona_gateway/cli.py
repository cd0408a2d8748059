"""CLI entry point for the persona gateway."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, TypeVar

import typer

from .config import AppConfig, ConfigError
from .runtime import GatewayRuntime, perform_healthcheck

app = typer.Typer(help="Chat with persona-scoped LLM assistants and inspect providers.")

T = TypeVar("T")


def _load_config() -> AppConfig:
    try:
        config = AppConfig.from_env()
    except ConfigError as exc:
        typer.secho(f"Configuration error: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=2) from exc
    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return config


def _emit(payload: Any) -> None:
    typer.echo(json.dumps(payload, indent=2, default=str))


def _with_runtime(action: Callable[[GatewayRuntime], Awaitable[T]]) -> T:
    config = _load_config()

    async def _runner() -> T:
        runtime = GatewayRuntime(config=config)
        try:
            return await action(runtime)
        finally:
            await runtime.aclose()

    return asyncio.run(_runner())


@app.command()
def chat(
    persona: str = typer.Argument(..., help="Persona name, e.g. business-licensing."),
    message: str = typer.Argument(..., help="Question to ask."),
    stats: bool = typer.Option(False, "--stats", help="Also print security statistics."),
) -> None:
    """Send one message through the secure chat pipeline."""

    async def _action(runtime: GatewayRuntime):
        reply = await runtime.chat(persona, message)
        return reply, runtime.security_stats()

    reply, security_stats = _with_runtime(_action)
    _emit(reply.body)
    if stats:
        _emit(security_stats)
    if not reply.ok:
        raise typer.Exit(code=1)


@app.command()
def status() -> None:
    """Show the active provider, its health and configuration."""
    result = _with_runtime(lambda runtime: runtime.provider_status())
    _emit(result)
    if not result.get("healthy"):
        raise typer.Exit(code=1)


@app.command()
def providers() -> None:
    """List configured and supported providers."""

    async def _action(runtime: GatewayRuntime):
        return runtime.list_providers()

    _emit(_with_runtime(_action))


@app.command("test-provider")
def test_provider(name: str = typer.Argument(..., help="Provider name from the LLM configuration.")) -> None:
    """Construct and health-check a provider without activating it."""
    result = _with_runtime(lambda runtime: runtime.test_provider(name))
    _emit(result)
    if not result.get("success"):
        raise typer.Exit(code=1)


@app.command()
def personas() -> None:
    """Describe the service and list available personas."""

    async def _action(runtime: GatewayRuntime):
        return runtime.describe()

    _emit(_with_runtime(_action))


@app.command()
def healthcheck() -> None:
    """Check that the active provider is reachable."""
    config = _load_config()

    async def _runner() -> bool:
        return await perform_healthcheck(config)

    healthy = asyncio.run(_runner())
    if not healthy:
        typer.secho("Provider is unhealthy", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    typer.secho("Provider is healthy", fg=typer.colors.GREEN)


def main() -> None:
    """Entry point for console script."""
    app()


if __name__ == "__main__":
    main()
