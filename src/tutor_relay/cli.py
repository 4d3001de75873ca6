"""Typer CLI for running and inspecting the tutor relay."""

from __future__ import annotations

import json
from typing import Optional

import typer

from .config_loader import list_env_overrides, load_relay_config

app = typer.Typer(help="Tutor relay server utilities")


@app.command("serve")
def cmd_serve(
    host: Optional[str] = typer.Option(None, "--host", help="Override bind host"),
    port: Optional[int] = typer.Option(None, "--port", help="Override listen port"),
    reload: bool = typer.Option(False, "--reload", help="Reload on code changes"),
):
    """Run the relay under uvicorn."""
    import uvicorn

    cfg = load_relay_config()
    if not cfg.api_key_configured:
        typer.echo("Warning: OPENAI_API_KEY is not set; /api/tutor will return 500.")
    uvicorn.run(
        "tutor_relay.app:app",
        host=host or cfg.host,
        port=port or cfg.port,
        reload=reload,
    )


@app.command("show-config")
def cmd_show_config():
    """Print the effective configuration with the API key redacted."""
    cfg = load_relay_config()
    typer.echo(
        json.dumps(
            {
                "runtime": cfg.redacted(),
                "env_overrides": list_env_overrides(),
            },
            indent=2,
        )
    )


def main():  # pragma: no cover
    app()


if __name__ == "__main__":  # pragma: no cover
    main()
