from pathlib import Path

from logcap.capture.controller import StartResult, StopResult
from logcap.responses import format_start_response, format_stop_response


def test_start_response_success():
    result = StartResult(session_id="abc", log_file_path=Path("/tmp/logcap-abc.log"), process_count=2, console_launched=True)

    response = format_start_response(result)

    assert response["isError"] is False
    text = response["content"][0]["text"]
    assert "Session ID: abc" in text
    assert "relaunched with console output" in text


def test_start_response_degraded_mentions_error():
    result = StartResult(
        session_id="abc",
        log_file_path=Path("/tmp/logcap-abc.log"),
        process_count=1,
        degraded=True,
        error="console log capture failed to start: No such file or directory",
    )

    text = format_start_response(result)["content"][0]["text"]

    assert "degraded" in text
    assert "console log capture failed" in text


def test_start_response_failure():
    response = format_start_response(StartResult(error="simulator not found: SIM-404"), target_kind="simulator")

    assert response["isError"] is True
    assert response["content"][0]["text"] == "Failed to start simulator log capture: simulator not found: SIM-404"


def test_stop_responses():
    ok = format_stop_response(StopResult(session_id="abc", log_content="hello\n"))
    failed = format_stop_response(StopResult(session_id="abc", error="session not found: abc"))

    assert ok["isError"] is False
    assert ok["content"][0]["text"].endswith("--- Captured Logs ---\nhello\n")
    assert failed["isError"] is True
    assert "session not found: abc" in failed["content"][0]["text"]
