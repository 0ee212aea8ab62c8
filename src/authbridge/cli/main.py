"""
AuthBridge CLI entry point.

Commands:
  authbridge run           : register as the polkit agent and serve requests
  authbridge doctor        : environment and configuration health check
  authbridge config init   : write a default config file
  authbridge config show   : print the effective configuration
  authbridge version       : show version and installed extras
"""

from __future__ import annotations

import click
from rich.console import Console

from authbridge import __version__

console = Console()
err_console = Console(stderr=True)


# ---------------------------------------------------------------------------
# Root group
# ---------------------------------------------------------------------------


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(__version__, "--version", "-V", message="authbridge %(version)s")
@click.option("--log-level", default=None, help="Override the configured log level.")
@click.option("--log-json", is_flag=True, default=False, help="Emit JSON log lines.")
@click.pass_context
def cli(ctx: click.Context, log_level: str | None, log_json: bool) -> None:
    """AuthBridge: polkit authentication agent for the desktop session."""
    ctx.ensure_object(dict)
    ctx.obj["log_level"] = log_level
    ctx.obj["log_json"] = log_json


# ---------------------------------------------------------------------------
# run
# ---------------------------------------------------------------------------


@cli.command()
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False),
    default=None,
    help="Config file (default: $XDG_CONFIG_HOME/authbridge/config.toml).",
)
@click.pass_context
def run(ctx: click.Context, config_path: str | None) -> None:
    """Register as the polkit authentication agent and serve requests."""
    from authbridge.cli._run import cmd_run

    cmd_run(
        config_path=config_path,
        log_level=ctx.obj["log_level"],
        log_json=ctx.obj["log_json"],
        console=err_console,
    )


# ---------------------------------------------------------------------------
# doctor
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--json", "as_json", is_flag=True, default=False)
def doctor(as_json: bool) -> None:
    """Environment and configuration health check."""
    from authbridge.cli._doctor import cmd_doctor

    cmd_doctor(as_json=as_json, console=console)


# ---------------------------------------------------------------------------
# version
# ---------------------------------------------------------------------------


@cli.command()
def version() -> None:
    """Show version and installed extras."""
    import importlib.util

    dbus_ok = importlib.util.find_spec("dbus") is not None
    gi_ok = importlib.util.find_spec("gi") is not None
    console.print(f"authbridge [bold]{__version__}[/bold]")
    console.print(f"  D-Bus bindings: {'yes' if dbus_ok and gi_ok else 'no'}")


# ---------------------------------------------------------------------------
# config
# ---------------------------------------------------------------------------

from authbridge.cli._config_cmd import config_group  # noqa: E402

cli.add_command(config_group)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
