"""authbridge doctor: environment and configuration health check."""

from __future__ import annotations

import importlib.util
import json
import os
import stat
import sys
from pathlib import Path

from rich.console import Console


def _check_python_version() -> dict:
    ver = sys.version_info
    ok = ver >= (3, 11)
    return {
        "name": "Python version",
        "status": "pass" if ok else "fail",
        "detail": f"{ver.major}.{ver.minor}.{ver.micro}" + ("" if ok else " (3.11+ required)"),
    }


def _check_platform() -> dict:
    plat = sys.platform
    if plat.startswith("linux"):
        return {"name": "Platform", "status": "pass", "detail": plat}
    return {"name": "Platform", "status": "fail", "detail": f"{plat} (polkit requires Linux)"}


def _check_dbus_bindings() -> dict:
    missing = [mod for mod in ("dbus", "gi") if importlib.util.find_spec(mod) is None]
    if not missing:
        return {"name": "D-Bus bindings", "status": "pass", "detail": "dbus-python and PyGObject"}
    return {
        "name": "D-Bus bindings",
        "status": "fail",
        "detail": f"missing {', '.join(missing)}; install with: pip install 'authbridge[dbus]'",
    }


def _check_config() -> tuple[dict, object | None]:
    from authbridge.core.config import config_file_path, load_config
    from authbridge.core.exceptions import ConfigError

    cfg_path = config_file_path()
    try:
        cfg = load_config()
    except ConfigError as exc:
        return {"name": "Config file", "status": "fail", "detail": str(exc)}, None

    if not cfg_path.exists():
        detail = f"not found at {cfg_path}, using defaults"
        return {"name": "Config file", "status": "skip", "detail": detail}, cfg
    return {"name": "Config file", "status": "pass", "detail": str(cfg_path)}, cfg


def _check_helper(helper_path: str) -> dict:
    path = Path(helper_path)
    if not path.exists():
        return {"name": "Helper binary", "status": "fail", "detail": f"{path} not found"}
    mode = path.stat().st_mode
    if not os.access(path, os.X_OK):
        return {"name": "Helper binary", "status": "fail", "detail": f"{path} is not executable"}
    if not mode & stat.S_ISUID:
        return {
            "name": "Helper binary",
            "status": "warn",
            "detail": f"{path} is not setuid; it cannot authenticate other users",
        }
    return {"name": "Helper binary", "status": "pass", "detail": str(path)}


def _check_session_id(session_id: str) -> dict:
    if session_id:
        return {"name": "Login session", "status": "pass", "detail": f"session {session_id}"}
    return {
        "name": "Login session",
        "status": "fail",
        "detail": "XDG_SESSION_ID is not set; set agent.session_id or AUTHBRIDGE_SESSION_ID",
    }


def run_checks() -> list[dict]:
    """Run every check and return the result dicts in display order."""
    config_check, cfg = _check_config()
    checks = [
        _check_python_version(),
        _check_platform(),
        _check_dbus_bindings(),
        config_check,
    ]
    if cfg is not None:
        checks.append(_check_helper(cfg.helper.resolve_path()))
        checks.append(_check_session_id(cfg.agent.resolve_session_id()))
    return checks


def cmd_doctor(as_json: bool, console: Console) -> None:
    checks = run_checks()
    all_pass = all(c["status"] in ("pass", "skip") for c in checks)

    if as_json:
        print(json.dumps({"checks": checks, "all_pass": all_pass}, indent=2))
        return

    console.print("[bold]AuthBridge Doctor[/bold]\n")
    for c in checks:
        if c["status"] == "pass":
            icon = "[green]PASS[/green]"
        elif c["status"] == "skip":
            icon = "[dim]SKIP[/dim]"
        elif c["status"] == "warn":
            icon = "[yellow]WARN[/yellow]"
        else:
            icon = "[red]FAIL[/red]"
        console.print(f"  {icon}  {c['name']}: {c['detail']}")

    console.print()
    if all_pass:
        console.print("[green]All checks passed.[/green]")
    elif any(c["status"] == "fail" for c in checks):
        console.print("[red]Some checks failed.[/red]")
    else:
        console.print("[yellow]Some checks have warnings. Review above for details.[/yellow]")
