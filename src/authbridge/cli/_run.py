"""authbridge run: register with polkitd and serve authentication requests."""

from __future__ import annotations

import asyncio
import sys

from rich.console import Console

from authbridge.core.constants import ExitCode


def cmd_run(
    config_path: str | None,
    log_level: str | None,
    log_json: bool,
    console: Console,
) -> None:
    """Load config, configure logging, and run the agent in the foreground."""
    from authbridge.core.config import load_config
    from authbridge.core.exceptions import ConfigError, RegistrationError
    from authbridge.core.logging import configure_logging

    try:
        config = load_config(config_path)
    except ConfigError as exc:
        console.print(f"[red]Config error:[/red] {exc}")
        sys.exit(ExitCode.CONFIG_ERROR)

    configure_logging(
        level=log_level or config.logging.level,
        json_output=log_json or config.logging.format == "json",
        login_session=config.agent.resolve_session_id(),
    )

    try:
        from authbridge.core.daemon.manager import AgentDaemon

        daemon = AgentDaemon(config)
        asyncio.run(daemon.start())
    except ImportError as exc:
        console.print(f"[red]Missing dependency:[/red] {exc}")
        console.print("Install the D-Bus bindings: [cyan]pip install 'authbridge[dbus]'[/cyan]")
        sys.exit(ExitCode.DEPENDENCY_MISSING)
    except RegistrationError as exc:
        console.print(f"[red]Cannot register agent:[/red] {exc}")
        sys.exit(ExitCode.ENV_ERROR)
    except KeyboardInterrupt:
        pass
