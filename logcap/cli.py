"""Entry point for the logcap CLI."""
from __future__ import annotations

import asyncio
import json
import signal
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from .capture.controller import CaptureController
from .capture.resolver import TargetKind
from .config import LogcapSettings, load_config, parse_subsystem_filter
from .errors import CaptureError
from .log import configure_logging
from .responses import format_start_response, format_stop_response
from .targets import TargetDirectory
from .tui.shell import CaptureShell

app = typer.Typer(add_completion=False, rich_markup_mode="rich")
config_app = typer.Typer(help="Inspect logcap configuration.")
app.add_typer(config_app, name="config")


def _create_console(use_color: bool) -> Console:
    return Console(no_color=not use_color, highlight=use_color)


def _build_controller(settings: LogcapSettings) -> CaptureController:
    directory = TargetDirectory() if settings.verify_targets else None
    return CaptureController(settings, directory=directory)


def _settings(ctx: typer.Context) -> LogcapSettings:
    settings = ctx.obj.get("settings") if ctx.obj else None
    return settings or LogcapSettings()


def _serialize_settings(settings: LogcapSettings) -> str:
    return json.dumps(settings.to_dict(), indent=2, ensure_ascii=False)


@app.callback(invoke_without_command=True)
def _root(
    ctx: typer.Context,
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Configuration file to use"),
    color: Optional[bool] = typer.Option(None, "--color/--no-color", help="Force coloured output on or off"),
    verify: Optional[bool] = typer.Option(None, "--verify/--no-verify", help="Check the target exists before capturing"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log lifecycle events to stderr"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Print the configuration and exit"),
) -> None:
    """Capture simulator and device logs."""
    loaded = load_config(config_path)
    settings = loaded.settings
    updates: dict[str, object] = {}
    if color is not None:
        updates["use_color"] = color
    if verify is not None:
        updates["verify_targets"] = verify
    if verbose:
        updates["log_level"] = "INFO"
    if updates:
        settings = settings.model_copy(update=updates)

    console = _create_console(settings.use_color)
    configure_logging(settings.log_level)
    ctx.obj = {"settings": settings, "console": console, "source": loaded.source}

    if dry_run:
        console.print(Panel(_serialize_settings(settings), title="configuration"))
        raise typer.Exit()
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())


@config_app.command("show")
def config_show(ctx: typer.Context) -> None:
    """Print the active configuration."""
    console: Console = ctx.obj["console"]
    source = ctx.obj.get("source")
    subtitle = f"from {source}" if source else "defaults"
    console.print(Panel(_serialize_settings(_settings(ctx)), title="configuration", subtitle=subtitle))


@app.command()
def capture(
    ctx: typer.Context,
    target_kind: str = typer.Argument(..., help="simulator or device"),
    target_id: str = typer.Argument(..., help="Simulator UUID or device UDID"),
    bundle_id: str = typer.Argument(..., help="Bundle identifier of the app"),
    console_capture: bool = typer.Option(False, "--console", help="Relaunch the app and capture its console"),
    duration: Optional[float] = typer.Option(None, "--duration", "-d", min=0.0, help="Stop after this many seconds"),
    subsystem_filter: Optional[str] = typer.Option(None, "--filter", help="app, all, swiftui or a comma separated list"),
    launch_args: List[str] = typer.Option([], "--arg", help="Argument passed to the relaunched app"),
    as_json: bool = typer.Option(False, "--json", help="Print tool-protocol responses as JSON"),
) -> None:
    """Capture logs until Ctrl-C or --duration, then print them."""
    settings = _settings(ctx)
    console: Console = ctx.obj["console"]
    controller = _build_controller(settings)
    filter_value = parse_subsystem_filter(subsystem_filter) if subsystem_filter else None

    async def _run() -> bool:
        start = await controller.start_capture(
            target_kind,
            target_id,
            bundle_id,
            capture_console=console_capture,
            launch_args=launch_args,
            subsystem_filter=filter_value,
        )
        _emit(console, format_start_response(start, target_kind=target_kind), as_json)
        if not start.ok:
            return False
        assert start.session_id is not None

        await _wait_for_interrupt(duration)
        stop = await controller.stop(start.session_id)
        _emit(console, format_stop_response(stop), as_json)
        return stop.ok

    if not asyncio.run(_run()):
        raise typer.Exit(code=1)


@app.command()
def shell(ctx: typer.Context) -> None:
    """Start an interactive shell that can run several captures at once."""
    controller = _build_controller(_settings(ctx))
    capture_shell = CaptureShell(controller, console=ctx.obj["console"])

    async def _run() -> None:
        try:
            await capture_shell.run()
        finally:
            await capture_shell.shutdown()

    asyncio.run(_run())


@app.command()
def targets(
    ctx: typer.Context,
    target_kind: str = typer.Argument("simulator", help="simulator or device"),
) -> None:
    """List the simulators or devices logcap can capture from."""
    console: Console = ctx.obj["console"]
    try:
        kind = TargetKind.parse(target_kind)
        found = asyncio.run(TargetDirectory().list_targets(kind))
    except CaptureError as exc:
        console.print(Panel(Text(str(exc)), title="targets", style="red"))
        raise typer.Exit(code=1) from None

    if not found:
        console.print(f"No {kind.value}s found.")
        return
    table = Table(title=f"{kind.value}s")
    for column in ("id", "name", "state", "platform"):
        table.add_column(column)
    for target in found:
        table.add_row(target.target_id, target.name, target.state, target.platform or "")
    console.print(table)


def _emit(console: Console, response: dict, as_json: bool) -> None:
    if as_json:
        console.print_json(json.dumps(response, ensure_ascii=False))
        return
    text = "\n".join(item["text"] for item in response["content"])
    console.print(Text(text, style="red" if response["isError"] else ""))


async def _wait_for_interrupt(duration: Optional[float]) -> None:
    stop_requested = asyncio.Event()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, stop_requested.set)
    except (NotImplementedError, RuntimeError):  # pragma: no cover - non-POSIX loops
        pass
    try:
        await asyncio.wait_for(stop_requested.wait(), duration)
    except asyncio.TimeoutError:
        pass
    finally:
        try:
            loop.remove_signal_handler(signal.SIGINT)
        except (NotImplementedError, RuntimeError):  # pragma: no cover
            pass


def entrypoint() -> None:
    """Typer entrypoint for `logcap`."""
    app()


if __name__ == "__main__":  # pragma: no cover
    entrypoint()
