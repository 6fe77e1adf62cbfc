"""Interactive shell that keeps capture sessions alive between commands."""
from __future__ import annotations

import shlex
from typing import List, Optional

from prompt_toolkit import PromptSession
from prompt_toolkit.auto_suggest import AutoSuggestFromHistory
from prompt_toolkit.history import InMemoryHistory
from prompt_toolkit.patch_stdout import patch_stdout
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from ..capture.controller import CaptureController, StartResult, StopResult
from ..config import parse_subsystem_filter

HELP_LINES = [
    "/start <simulator|device> <target-id> <bundle-id> [--console] [--filter app|all|swiftui|a,b] [-- args...]",
    "/stop <session-id> : stop a capture and print its logs",
    "/stop-all : stop every running capture",
    "/list : show running captures",
    "/help : show this list",
    "/quit : stop every capture and leave",
]


class CaptureShell:
    """Prompt loop around a :class:`CaptureController`."""

    def __init__(self, controller: CaptureController, console: Optional[Console] = None) -> None:
        self.controller = controller
        self.console = console or Console()
        self.running = True
        self._session: Optional[PromptSession] = None

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------
    async def run(self) -> None:
        self._session = PromptSession(history=InMemoryHistory(), auto_suggest=AutoSuggestFromHistory())
        self.console.print("[bold green]logcap shell. Type /help for commands.[/]")
        with patch_stdout():
            while self.running:
                try:
                    line = await self._session.prompt_async("logcap> ")
                except EOFError:
                    self.console.print("\n[bold yellow]EOF, leaving the shell.[/]")
                    break
                if not await self.handle_line(line):
                    break

    async def shutdown(self) -> None:
        results = await self.controller.stop_all()
        for result in results:
            self._render_stop(result)

    async def handle_line(self, raw: str) -> bool:
        """Run one command; return ``False`` when the shell should exit."""
        stripped = raw.strip()
        if not stripped:
            return True
        if not stripped.startswith("/"):
            self.console.print("[bold red]Commands start with '/'. Try /help.[/]")
            return True

        try:
            parts = shlex.split(stripped[1:])
        except ValueError as exc:
            self.console.print(f"[bold red]Could not parse command:[/] {exc}")
            return True
        if not parts:
            return True
        command, *rest = parts

        if command in {"quit", "exit"}:
            self.running = False
            return False
        if command == "help":
            self.console.print(Panel("\n".join(HELP_LINES), title="commands"))
            return True
        if command == "start":
            await self._command_start(rest)
            return True
        if command == "stop" and not rest:
            self.console.print("[bold red]/stop needs a session id. Try /list.[/]")
            return True
        if command == "stop":
            self._render_stop(await self.controller.stop(rest[0]))
            return True
        if command == "stop-all":
            await self.shutdown()
            return True
        if command == "list":
            self._command_list()
            return True

        self.console.print(f"[bold red]Unknown command:[/] {command}")
        return True

    # ------------------------------------------------------------------
    # commands
    # ------------------------------------------------------------------
    async def _command_start(self, args: List[str]) -> None:
        launch_args: List[str] = []
        if "--" in args:
            split = args.index("--")
            args, launch_args = args[:split], args[split + 1 :]

        capture_console = False
        subsystem_filter = None
        positional: List[str] = []
        iterator = iter(args)
        for item in iterator:
            if item == "--console":
                capture_console = True
            elif item == "--filter":
                subsystem_filter = parse_subsystem_filter(next(iterator, "app"))
            else:
                positional.append(item)

        if len(positional) != 3:
            self.console.print("[bold red]/start needs a target kind, a target id and a bundle id.[/]")
            return

        kind, target_id, bundle_id = positional
        result = await self.controller.start_capture(
            kind,
            target_id,
            bundle_id,
            capture_console=capture_console,
            launch_args=launch_args,
            subsystem_filter=subsystem_filter,
        )
        self._render_start(result)

    def _command_list(self) -> None:
        sessions = self.controller.list_sessions()
        if not sessions:
            self.console.print("[dim]No running captures.[/]")
            return
        table = Table(title="captures")
        for column in ("session", "target", "bundle", "processes", "log file"):
            table.add_column(column)
        for summary in sessions:
            processes = ", ".join(f"{item['label']}={item['state']}" for item in summary["processes"])
            table.add_row(
                summary["sessionId"],
                f"{summary['targetKind']}:{summary['targetId']}",
                summary["bundleId"],
                processes,
                summary["logFilePath"],
            )
        self.console.print(table)

    # ------------------------------------------------------------------
    # rendering
    # ------------------------------------------------------------------
    def _render_start(self, result: StartResult) -> None:
        if not result.ok:
            self.console.print(Panel(Text(result.error or "unknown error"), title="start failed", style="red"))
            return
        body = f"session: {result.session_id}\nlog file: {result.log_file_path}\nprocesses: {result.process_count}"
        if result.degraded:
            body += f"\n\ndegraded: {result.error}"
        self.console.print(Panel(Text(body), title="capture started"))

    def _render_stop(self, result: StopResult) -> None:
        if not result.ok:
            self.console.print(Panel(Text(result.error or "unknown error"), title=f"stop {result.session_id}", style="red"))
            return
        self.console.print(Panel(Text(result.log_content or "(no output)"), title=f"logs {result.session_id}"))


__all__ = ["CaptureShell"]
