# zui/cli.py
"""
CLI:
  zui run   --config ./zui.yaml
  zui check --redis redis://0.0.0.0:6379
"""
from __future__ import annotations

import asyncio
from typing import Optional

import typer

from zui.bus import BusClient, Stubs
from zui.config import Config, load_config, setup_logging
from zui.tui import run_dashboard

app = typer.Typer(add_completion=False, help="Live dashboard for a single node")


def _load(config: Optional[str], redis_url: Optional[str]) -> Config:
    try:
        cfg = load_config(config)
    except (OSError, ValueError) as e:
        typer.secho(f"Invalid config: {e}", fg=typer.colors.RED)
        raise typer.Exit(code=2)
    if redis_url:
        cfg.redis_url = redis_url
    return cfg


@app.command()
def run(config: Optional[str] = typer.Option(None, help="Path to zui.yaml"),
        redis: Optional[str] = typer.Option(None, "--redis", help="Bus URL, overrides the config"),
        log_file: Optional[str] = typer.Option(None, help="Log file, overrides the config"),
        log_level: Optional[str] = typer.Option(None, help="Log level, overrides the config")):
    """Run the dashboard until 'q' is pressed."""
    cfg = _load(config, redis)
    if log_file:
        cfg.logging.file = log_file
    if log_level:
        cfg.logging.level = log_level.upper()
    try:
        setup_logging(cfg.logging)
    except (OSError, ValueError) as e:
        typer.secho(f"Cannot set up logging: {e}", fg=typer.colors.RED)
        raise typer.Exit(code=2)
    try:
        asyncio.run(run_dashboard(cfg))
    except KeyboardInterrupt:
        pass
    except Exception as e:
        typer.secho(f"Dashboard failed: {e!r}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)


async def _check(cfg: Config) -> bool:
    client = BusClient(cfg.redis_url, call_timeout=cfg.call_timeout_secs)
    stubs = Stubs.connect(client, cfg.modules)
    calls = [
        ("FarmID", stubs.identity_manager.farm_id),
        ("Farm", stubs.identity_manager.farm),
        ("NodeID", stubs.registrar.node_id),
        ("GetPublicExitDevice", stubs.network.get_public_exit_device),
    ]
    ok = True
    try:
        for label, call in calls:
            try:
                value = await call()
            except Exception as e:
                ok = False
                typer.secho(f"❌ {label}: {e}", fg=typer.colors.RED)
                continue
            typer.secho(f"✓ {label}: {value}", fg=typer.colors.GREEN)
    finally:
        await client.close()
    return ok


@app.command()
def check(config: Optional[str] = typer.Option(None, help="Path to zui.yaml"),
          redis: Optional[str] = typer.Option(None, "--redis", help="Bus URL, overrides the config")):
    """Call the node's one-shot methods once and print the answers."""
    cfg = _load(config, redis)
    typer.echo(f"Checking node services on {cfg.redis_url}…")
    if not asyncio.run(_check(cfg)):
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
