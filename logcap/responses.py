"""Wrap capture results into tool-protocol responses."""
from __future__ import annotations

from typing import Any, Dict

from .capture.controller import StartResult, StopResult


def text_response(text: str, *, is_error: bool = False) -> Dict[str, Any]:
    return {"content": [{"type": "text", "text": text}], "isError": is_error}


def format_start_response(result: StartResult, *, target_kind: str = "simulator") -> Dict[str, Any]:
    if not result.ok:
        return text_response(f"Failed to start {target_kind} log capture: {result.error}", is_error=True)

    lines = [
        f"Log capture started successfully. Session ID: {result.session_id}",
        f"Log file: {result.log_file_path}",
    ]
    if result.console_launched:
        lines.append("The app was relaunched with console output capture enabled.")
    else:
        lines.append("Only structured logs from the app subsystem are being captured.")
    if result.degraded:
        lines.append(f"Warning: capture is degraded ({result.error}).")
    lines.extend(
        [
            "",
            "Next steps:",
            "1. Interact with the app on the target.",
            f"2. Stop the capture with session ID '{result.session_id}' to retrieve the logs.",
        ]
    )
    return text_response("\n".join(lines))


def format_stop_response(result: StopResult) -> Dict[str, Any]:
    if not result.ok:
        return text_response(
            f"Failed to stop log capture session {result.session_id}: {result.error}",
            is_error=True,
        )
    return text_response(
        f"Log capture session {result.session_id} stopped successfully.\n\n"
        f"--- Captured Logs ---\n{result.log_content}"
    )


__all__ = ["format_start_response", "format_stop_response", "text_response"]
