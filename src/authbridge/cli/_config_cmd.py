"""authbridge config: write and inspect the configuration file."""

from __future__ import annotations

import json
import sys
from pathlib import Path

import click
from rich.console import Console

from authbridge.core.constants import ExitCode

console = Console()


@click.group("config")
def config_group() -> None:
    """Configuration file commands."""


@config_group.command("init")
@click.option("--path", "path", type=click.Path(dir_okay=False), default=None)
@click.option("--force", is_flag=True, default=False, help="Overwrite an existing file.")
def config_init(path: str | None, force: bool) -> None:
    """Write a config file with the default settings."""
    from authbridge.core.config import AuthBridgeConfig, config_file_path, save_config
    from authbridge.core.exceptions import ConfigError

    cfg_path = Path(path) if path else config_file_path()
    if cfg_path.exists() and not force:
        console.print(f"[yellow]Config already exists:[/yellow] {cfg_path}")
        console.print("Use [cyan]--force[/cyan] to overwrite.")
        sys.exit(ExitCode.ERROR)

    data = AuthBridgeConfig().model_dump()
    try:
        written = save_config(data, cfg_path)
    except ConfigError as exc:
        console.print(f"[red]Config error:[/red] {exc}")
        sys.exit(ExitCode.CONFIG_ERROR)
    console.print(f"[green]Wrote[/green] {written}")


@config_group.command("show")
@click.option("--path", "path", type=click.Path(dir_okay=False), default=None)
def config_show(path: str | None) -> None:
    """Print the effective configuration (file + environment) as JSON."""
    from authbridge.core.config import load_config
    from authbridge.core.exceptions import ConfigError

    try:
        cfg = load_config(path)
    except ConfigError as exc:
        console.print(f"[red]Config error:[/red] {exc}")
        sys.exit(ExitCode.CONFIG_ERROR)

    data = cfg.model_dump()
    data["helper"]["resolved_path"] = cfg.helper.resolve_path()
    click.echo(json.dumps(data, indent=2))
