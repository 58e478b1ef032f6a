"""Typer CLI for roslynwrap."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any

import typer
from rich.console import Console
from rich.logging import RichHandler

# stdout carries the LSP stream; everything human-readable goes to stderr.
console = Console(stderr=True)
app = typer.Typer(
    name="roslynwrap",
    help="LSP proxy that bootstraps the Roslyn language server with your workspace.",
    add_completion=False,
)

_DEFAULTS: dict[str, Any] = {
    "transport": "pipe",
    "log_level": "Information",
    "traffic_log": "",
    "poll_interval": 1.0,
    "extra_args": [],
}


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False, rich_tracebacks=True)],
    )


def _resolve_config(
    project_root: str,
    *,
    lsp: str | None,
    transport: str | None,
    log_level: str | None,
    traffic_log: str | None,
) -> dict[str, Any]:
    """Merge CLI flags over .roslynwrap.yml over defaults."""
    from roslynwrap.config import load_config
    from roslynwrap.errors import ConfigError

    file_cfg = load_config(project_root) or {}

    def pick(key: str, flag: Any) -> Any:
        if flag is not None:
            return flag
        return file_cfg.get(key, _DEFAULTS.get(key))

    extra_args = file_cfg.get("extra_args", _DEFAULTS["extra_args"])
    if not isinstance(extra_args, list):
        extra_args = [str(extra_args)]

    poll_interval = file_cfg.get("poll_interval", _DEFAULTS["poll_interval"])
    try:
        poll_interval = float(poll_interval)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"poll_interval must be a number, got {poll_interval!r}") from e

    return {
        "lsp": pick("lsp", lsp),
        "project_root": project_root,
        "transport": pick("transport", transport),
        "log_level": pick("log_level", log_level),
        "traffic_log": pick("traffic_log", traffic_log) or "",
        "poll_interval": poll_interval,
        "extra_args": [str(a) for a in extra_args],
    }


@app.command()
def run(
    lsp: str | None = typer.Option(
        None,
        "--lsp",
        help="Path to the language server executable",
        envvar="ROSLYNWRAP_LSP",
    ),
    project_root: str = typer.Option(
        ".", "--project-root", "-C", help="Workspace root to scan for solutions and projects"
    ),
    transport: str | None = typer.Option(
        None, "--transport", "-t", help="Server transport: 'pipe' (default) or 'stdio'"
    ),
    log_level: str | None = typer.Option(
        None, "--log-level", help="Log level passed to the language server (default: Information)"
    ),
    traffic_log: str | None = typer.Option(
        None, "--traffic-log", help="Append every frame sent to the server to this file"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging on stderr"),
) -> None:
    """Proxy LSP traffic between the editor (stdio) and the language server.

    The first initialize request is followed by solution/open and
    project/open notifications for the workspace, and diagnostic pulls are
    given a whole-file range.
    """
    from dotenv import load_dotenv

    from roslynwrap.config import ProxyConfig
    from roslynwrap.errors import ConfigError, ProxyError
    from roslynwrap.supervisor import run_proxy

    load_dotenv()
    _configure_logging(verbose)

    resolved_root = str(Path(project_root).resolve())
    try:
        resolved = _resolve_config(
            resolved_root,
            lsp=lsp,
            transport=transport,
            log_level=log_level,
            traffic_log=traffic_log,
        )
        cfg = ProxyConfig(**resolved)
    except (ConfigError, ValueError) as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=2) from e

    try:
        exit_code = asyncio.run(run_proxy(cfg))
    except ProxyError as e:
        console.print(f"[bold red]ERROR: {e}[/bold red]")
        raise typer.Exit(code=1) from e
    except KeyboardInterrupt:
        exit_code = 130

    raise typer.Exit(code=exit_code)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
