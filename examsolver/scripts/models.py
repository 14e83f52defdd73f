from __future__ import annotations
import asyncio

import typer

from examsolver.core.chat_client import ChatClient, build_timeout
from examsolver.core.logging_setup import configure_logging
from examsolver.core.settings import Settings
from examsolver.core.types import Mode, ModelListResult

app = typer.Typer(help="List the models a mode's provider exposes.")


async def fetch(settings: Settings, mode: Mode) -> ModelListResult:
    client = ChatClient(settings.config_for(mode), timeout=build_timeout(settings.http))
    try:
        return await client.fetch_models()
    finally:
        await client.aclose()


@app.command()
def main(mode: Mode = typer.Option(Mode.FAST, help="Which mode's provider to query")):
    configure_logging(env="cli")
    settings = Settings.load()
    if not settings.api_key:
        typer.echo("Configuration error: no API key set", err=True)
        raise typer.Exit(code=1)
    result = asyncio.run(fetch(settings, mode))
    if not result.success:
        typer.echo(f"Failed to list models: {result.response_body}", err=True)
        raise typer.Exit(code=1)
    configured = set(settings.model_list(mode))
    for m in result.models:
        mark = "*" if m.id in configured else " "
        owner = f" ({m.owned_by})" if m.owned_by else ""
        typer.echo(f"{mark} {m.id}{owner}")


if __name__ == "__main__":
    app()
