import asyncio
import os

import pytest

from conftest import (
    IGNORES_TERM,
    SILENT,
    FakeDirectory,
    ScriptResolver,
    wait_for_text,
)
from logcap.capture.process import ProcessSpawner, ProcessStatus
from logcap.capture.resolver import TargetKind
from logcap.capture.session import SessionState


@pytest.mark.asyncio
async def test_start_without_console_spawns_one_process(make_controller, tmp_path):
    controller = make_controller()

    result = await controller.start_capture("simulator", "SIM-1", "com.example.app")

    assert result.ok, result.error
    assert result.error is None
    assert result.process_count == 1
    assert not result.console_launched
    assert result.log_file_path == tmp_path / "logs" / f"logcap-{result.session_id}.log"
    assert result.log_file_path.exists()

    session = controller.registry.get(result.session_id)
    assert session is not None
    assert session.state is SessionState.ACTIVE
    assert len(session.processes) == 1

    await wait_for_text(result.log_file_path, "stream ready")
    stopped = await controller.stop(result.session_id)

    assert stopped.ok
    assert "stream ready" in stopped.log_content
    assert controller.registry.get(result.session_id) is None
    assert session.state is SessionState.STOPPED
    assert result.log_file_path.exists()


@pytest.mark.asyncio
async def test_console_capture_merges_both_processes(make_controller):
    controller = make_controller()

    result = await controller.start_capture("simulator", "SIM-1", "com.example.app", capture_console=True)

    assert result.ok, result.error
    assert result.process_count == 2
    assert result.console_launched
    session = controller.registry.get(result.session_id)
    assert [handle.label for handle in session.processes] == ["console log capture", "os log capture"]

    await wait_for_text(result.log_file_path, "console hello")
    await wait_for_text(result.log_file_path, "stream ready")
    stopped = await controller.stop(result.session_id)

    assert "console hello" in stopped.log_content
    assert "stream ready" in stopped.log_content


@pytest.mark.asyncio
async def test_stop_before_any_output_returns_empty_content(make_controller):
    controller = make_controller(ScriptResolver(stream=SILENT))

    result = await controller.start_capture("simulator", "SIM-1", "com.example.app")
    stopped = await controller.stop(result.session_id)

    assert stopped.ok
    assert stopped.log_content == ""
    assert stopped.to_dict() == {"sessionId": result.session_id, "logContent": ""}


@pytest.mark.asyncio
async def test_stop_unknown_session(make_controller):
    controller = make_controller()

    stopped = await controller.stop("unknown")

    assert not stopped.ok
    assert stopped.error == "session not found: unknown"
    assert stopped.log_content == ""


@pytest.mark.asyncio
async def test_stop_twice_reports_missing_session(make_controller):
    controller = make_controller(ScriptResolver(stream=SILENT))
    result = await controller.start_capture("simulator", "SIM-1", "com.example.app")

    first = await controller.stop(result.session_id)
    second = await controller.stop(result.session_id)

    assert first.ok
    assert not second.ok
    assert "session not found" in second.error


@pytest.mark.asyncio
async def test_concurrent_stops_only_one_succeeds(make_controller):
    controller = make_controller(ScriptResolver(stream=SILENT))
    result = await controller.start_capture("simulator", "SIM-1", "com.example.app")

    first, second = await asyncio.gather(controller.stop(result.session_id), controller.stop(result.session_id))

    assert [first.ok, second.ok].count(True) == 1
    failed = second if first.ok else first
    assert failed.error == f"session not found: {result.session_id}"
    assert len(controller.registry) == 0


@pytest.mark.asyncio
async def test_stop_all_skips_session_already_stopping(make_controller):
    controller = make_controller(ScriptResolver(stream=SILENT))
    result = await controller.start_capture("simulator", "SIM-1", "com.example.app")

    single = asyncio.create_task(controller.stop(result.session_id))
    await asyncio.sleep(0)
    assert controller.registry.get(result.session_id).state is SessionState.STOPPING

    assert await controller.stop_all() == []
    assert (await single).ok


@pytest.mark.asyncio
async def test_unknown_target_registers_nothing(make_controller, tmp_path):
    directory = FakeDirectory(known=["SIM-1"])
    controller = make_controller(directory=directory)

    result = await controller.start_capture("simulator", "SIM-404", "com.example.app")

    assert not result.ok
    assert result.session_id is None
    assert "not found" in result.error
    assert len(controller.registry) == 0
    assert directory.calls == [(TargetKind.SIMULATOR, "SIM-404")]
    assert not (tmp_path / "logs").exists()


@pytest.mark.asyncio
async def test_unknown_target_kind_fails_before_spawning(make_controller, tmp_path):
    controller = make_controller()

    result = await controller.start_capture("watch", "SIM-1", "com.example.app")

    assert not result.ok
    assert "unknown target kind" in result.error
    assert len(controller.registry) == 0
    assert not (tmp_path / "logs").exists()


@pytest.mark.asyncio
async def test_sessions_are_independent(make_controller):
    controller = make_controller()

    first = await controller.start_capture("simulator", "SIM-1", "com.example.one")
    second = await controller.start_capture("simulator", "SIM-2", "com.example.two")

    assert first.session_id != second.session_id
    assert first.log_file_path != second.log_file_path
    await wait_for_text(second.log_file_path, "stream ready")

    stopped = await controller.stop(first.session_id)
    assert stopped.ok
    assert second.session_id in controller.registry
    assert controller.registry.get(second.session_id).state is SessionState.ACTIVE
    assert "stream ready" in second.log_file_path.read_text(encoding="utf-8")

    remaining = await controller.stop(second.session_id)
    assert remaining.ok
    assert len(controller.registry) == 0


@pytest.mark.asyncio
async def test_naturally_exited_process_is_not_signalled(make_controller):
    controller = make_controller(ScriptResolver(stream="print('done', flush=True)"))
    result = await controller.start_capture("simulator", "SIM-1", "com.example.app")
    handle = controller.registry.get(result.session_id).processes[0]

    state = await asyncio.wait_for(handle.wait(), 10)
    assert state.status is ProcessStatus.EXITED
    assert state.exit_code == 0

    stopped = await controller.stop(result.session_id)

    assert stopped.ok
    assert "done" in stopped.log_content
    assert handle.state.status is ProcessStatus.EXITED
    assert result.session_id not in controller.registry


@pytest.mark.asyncio
async def test_console_exit_does_not_truncate_stream(make_controller):
    controller = make_controller()
    result = await controller.start_capture("simulator", "SIM-1", "com.example.app", capture_console=True)
    console, stream = controller.registry.get(result.session_id).processes

    await asyncio.wait_for(console.wait(), 10)
    await wait_for_text(result.log_file_path, "stream ready")
    assert stream.running

    stopped = await controller.stop(result.session_id)
    assert "console hello" in stopped.log_content
    assert "stream ready" in stopped.log_content
    assert console.state.status is ProcessStatus.EXITED
    assert stream.state.status is ProcessStatus.KILLED


@pytest.mark.skipif(os.name != "posix", reason="needs POSIX signals")
@pytest.mark.asyncio
async def test_process_ignoring_sigterm_is_killed(make_controller):
    controller = make_controller(ScriptResolver(stream=IGNORES_TERM), grace_period=0.5, kill_timeout=2.0)
    result = await controller.start_capture("simulator", "SIM-1", "com.example.app")
    await wait_for_text(result.log_file_path, "stubborn")
    handle = controller.registry.get(result.session_id).processes[0]

    loop = asyncio.get_running_loop()
    started = loop.time()
    stopped = await controller.stop(result.session_id)
    elapsed = loop.time() - started

    assert stopped.ok
    assert "stubborn" in stopped.log_content
    assert handle.state.status is ProcessStatus.KILLED
    assert handle.state.exit_code == -9
    assert 0.4 <= elapsed < 0.5 + 3.0


@pytest.mark.asyncio
async def test_console_spawn_failure_registers_degraded_session(make_controller):
    controller = make_controller(ScriptResolver(console=None))

    result = await controller.start_capture("simulator", "SIM-1", "com.example.app", capture_console=True)

    assert result.ok
    assert result.degraded
    assert result.process_count == 1
    assert not result.console_launched
    assert "console log capture failed to start" in result.error
    session = controller.registry.get(result.session_id)
    assert session.failed_commands == ["console log capture"]
    assert result.to_dict()["degraded"] is True

    await controller.stop(result.session_id)


class RecordingSpawner(ProcessSpawner):
    def __init__(self) -> None:
        super().__init__()
        self.outcomes = []

    async def spawn_all(self, commands, writer, outcome=None):
        outcome = await super().spawn_all(commands, writer, outcome)
        self.outcomes.append(outcome)
        return outcome


@pytest.mark.asyncio
async def test_stream_spawn_failure_terminates_sibling(make_controller):
    spawner = RecordingSpawner()
    controller = make_controller(ScriptResolver(stream=None, console=SILENT), spawner=spawner)

    result = await controller.start_capture("simulator", "SIM-1", "com.example.app", capture_console=True)

    assert not result.ok
    assert result.session_id is None
    assert "os log capture failed to start" in result.error
    assert len(controller.registry) == 0
    (outcome,) = spawner.outcomes
    assert len(outcome.processes) == 1
    assert not outcome.processes[0].running


@pytest.mark.asyncio
async def test_total_spawn_failure(make_controller):
    controller = make_controller(ScriptResolver(stream=None, console=None))

    result = await controller.start_capture("simulator", "SIM-1", "com.example.app", capture_console=True)

    assert not result.ok
    assert "console log capture failed to start" in result.error
    assert "os log capture failed to start" in result.error
    assert len(controller.registry) == 0


@pytest.mark.asyncio
async def test_missing_log_file_is_reported_without_content(make_controller):
    controller = make_controller(ScriptResolver(stream=SILENT))
    result = await controller.start_capture("simulator", "SIM-1", "com.example.app")
    result.log_file_path.unlink()

    stopped = await controller.stop(result.session_id)

    assert not stopped.ok
    assert "log file not found" in stopped.error
    assert stopped.log_content == ""
    assert result.session_id not in controller.registry


@pytest.mark.asyncio
async def test_stop_all_and_list_sessions(make_controller):
    controller = make_controller(ScriptResolver(stream=SILENT))
    first = await controller.start_capture("simulator", "SIM-1", "com.example.app")
    second = await controller.start_capture("device", "DEV-1", "com.example.app")

    listed = {item["sessionId"]: item for item in controller.list_sessions()}
    assert set(listed) == {first.session_id, second.session_id}
    assert listed[second.session_id]["targetKind"] == "device"
    assert listed[first.session_id]["processes"][0]["state"] == "running"

    results = await controller.stop_all()

    assert sorted(item.session_id for item in results) == sorted([first.session_id, second.session_id])
    assert all(item.ok for item in results)
    assert len(controller.registry) == 0


@pytest.mark.asyncio
async def test_unexpected_spawn_error_tears_down_started_siblings(make_controller):
    started = []

    async def create(*argv, **kwargs):
        if "\0" in argv[-1]:
            raise ValueError("embedded null byte")
        process = await asyncio.create_subprocess_exec(*argv, **kwargs)
        started.append(process)
        return process

    spawner = ProcessSpawner(create_process=create)
    controller = make_controller(ScriptResolver(stream="print('x')\0", console=SILENT), spawner=spawner)

    with pytest.raises(ValueError):
        await controller.start_capture("simulator", "SIM-1", "com.example.app", capture_console=True)

    (console_process,) = started
    assert console_process.returncode is not None
    assert len(controller.registry) == 0


@pytest.mark.asyncio
async def test_stop_reports_log_write_failure(make_controller):
    controller = make_controller(ScriptResolver(stream=SILENT))
    result = await controller.start_capture("simulator", "SIM-1", "com.example.app")
    session = controller.registry.get(result.session_id)
    session.writer._fail(OSError(28, "No space left on device"))

    stopped = await controller.stop(result.session_id)

    assert not stopped.ok
    assert "log file write failed" in stopped.error
    assert "No space left on device" in stopped.error
    assert result.session_id not in controller.registry
