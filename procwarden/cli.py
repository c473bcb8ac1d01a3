"""
Command Line Interface for procwarden.

Runs a single process under a deadline, reaps a process tree by hand, and
shows the effective configuration.
"""

import asyncio
import json
import signal
from pathlib import Path
from typing import Optional

import psutil
import typer
import yaml
from dotenv import load_dotenv
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table

from procwarden.core.config import Config, set_config
from procwarden.core.exceptions import (
    ConfigError,
    ProcessCancelledError,
    ProcessLaunchError,
    ProcessRunError,
    ProcessTimeoutError,
)
from procwarden.core.models import ProcessResult
from procwarden.core.observability import configure_observability
from procwarden.core.reaper import ProcessTreeReaper, PsutilProcessDirectory
from procwarden.core.runner import ProcessRunner

EXIT_TIMEOUT = 124
EXIT_LAUNCH_FAILED = 127
EXIT_CANCELLED = 130

console = Console()
app = typer.Typer(help="procwarden - run processes under a deadline without leaking children")


def _load_config(config_path: Optional[Path], log_level: Optional[str]) -> Config:
    """Load configuration from a file or the environment and apply it."""
    load_dotenv()
    try:
        cfg = Config.load_from_file(config_path) if config_path else Config.load_from_env()
    except ConfigError as e:
        console.print(f"[red]Configuration error:[/red] {escape(e.message)}")
        raise typer.Exit(1)

    if log_level:
        cfg.logging.level = log_level.upper()
    set_config(cfg)
    configure_observability(
        log_level=cfg.logging.level,
        log_file=Path(cfg.logging.file) if cfg.logging.file else None,
        enable_metrics=cfg.metrics.enabled,
        namespace=cfg.metrics.namespace,
    )
    return cfg


async def _run_with_interrupt(
    runner: ProcessRunner, cwd: Path, process: str, arguments: str, timeout: float
) -> ProcessResult:
    """Run the process, turning Ctrl-C into the runner's cancellation event."""
    cancellation = asyncio.Event()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, cancellation.set)
    except (NotImplementedError, RuntimeError, ValueError):
        pass
    try:
        return await runner.run(cwd, process, arguments, timeout, cancellation)
    finally:
        try:
            loop.remove_signal_handler(signal.SIGINT)
        except (NotImplementedError, RuntimeError, ValueError):
            pass


def _print_streams(standard_output: str, standard_error: str) -> None:
    if standard_output:
        console.print(Panel(standard_output.rstrip("\n"), title="stdout", border_style="green"))
    if standard_error:
        console.print(Panel(standard_error.rstrip("\n"), title="stderr", border_style="red"))


def _print_failure(error: ProcessRunError, output_format: str) -> None:
    if output_format == "json":
        typer.echo(json.dumps(error.to_dict(), indent=2))
        return
    _print_streams(error.standard_output, error.standard_error)
    console.print(f"[red]{escape(error.message)}[/red]")


@app.command()
def run(
    process: str = typer.Argument(..., help="Executable name or path"),
    arguments: str = typer.Argument("", help="Argument string, quoted as for a shell"),
    cwd: Optional[Path] = typer.Option(
        None, "--cwd", help="Working directory (defaults to the current directory)"
    ),
    timeout: Optional[float] = typer.Option(
        None, help="Deadline in seconds (defaults to runner.default_timeout)"
    ),
    output_format: str = typer.Option("text", help="Output format (text/json)"),
    config_path: Optional[Path] = typer.Option(
        None, "--config", help="YAML or JSON configuration file"
    ),
    log_level: Optional[str] = typer.Option(None, help="Logging level"),
):
    """Run one process and exit with its exit code."""
    cfg = _load_config(config_path, log_level)
    runner = ProcessRunner(cfg.runner)
    deadline = timeout if timeout is not None else cfg.runner.default_timeout
    cwd = cwd or Path.cwd()

    try:
        result = asyncio.run(
            _run_with_interrupt(runner, cwd, process, arguments, deadline)
        )
    except ProcessLaunchError as e:
        console.print(f"[red]{escape(e.message)}[/red]")
        raise typer.Exit(EXIT_LAUNCH_FAILED)
    except ProcessTimeoutError as e:
        _print_failure(e, output_format)
        raise typer.Exit(EXIT_TIMEOUT)
    except ProcessCancelledError as e:
        _print_failure(e, output_format)
        raise typer.Exit(EXIT_CANCELLED)

    if output_format == "json":
        payload = result.model_dump(mode="json", exclude={"duration"})
        payload["duration_seconds"] = result.duration.total_seconds()
        typer.echo(json.dumps(payload, indent=2))
    else:
        _print_streams(result.standard_output, result.standard_error)
        table = Table(show_header=False, box=None)
        table.add_row("exit code", str(result.exit_code))
        table.add_row("duration", f"{result.duration.total_seconds():.3f}s")
        console.print(table)

    raise typer.Exit(result.exit_code)


@app.command()
def reap(
    pid: int = typer.Argument(..., help="Process whose descendants are killed"),
    start_time: Optional[float] = typer.Option(
        None, help="Start time of the process as epoch seconds (looked up if omitted)"
    ),
    config_path: Optional[Path] = typer.Option(
        None, "--config", help="YAML or JSON configuration file"
    ),
):
    """Kill every descendant of a process, leaves first."""
    cfg = _load_config(config_path, None)
    directory = PsutilProcessDirectory()

    if start_time is None:
        try:
            start_time = directory.start_time_of(pid)
        except psutil.Error as e:
            console.print(f"[red]Cannot inspect process {pid}:[/red] {escape(str(e))}")
            raise typer.Exit(1)

    report = ProcessTreeReaper(directory, max_depth=cfg.runner.max_reap_depth).reap(
        pid, start_time
    )
    console.print(
        f"Terminated {report.killed} process(es) below {pid}"
        + (f", {report.failures} could not be terminated" if report.failures else "")
    )


@app.command(name="config")
def show_config(
    config_path: Optional[Path] = typer.Option(
        None, "--config", help="YAML or JSON configuration file"
    ),
):
    """Show the effective configuration."""
    cfg = _load_config(config_path, None)
    rendered = yaml.dump(cfg.model_dump(), default_flow_style=False, indent=2)
    console.print(Syntax(rendered, "yaml"))


def main():
    app()


if __name__ == "__main__":
    main()
