"""This module provides unit tests for searchcli.processes.supervisor."""

import subprocess
import sys
import threading
from unittest.mock import MagicMock, patch

import pytest

from searchcli.constants.keys import ProcessKind, RunState
from searchcli.exceptions import ProcessSpawnError
from searchcli.processes.output_parsers import OutputParser
from searchcli.processes.supervisor import ProcessRun, ProcessSupervisor
from searchcli.reporting.waiting_handler import WaitingHandler


def _python_command(script: str) -> list[str]:
    return [sys.executable, "-c", script]


class CancelOnLineWaitingHandler(WaitingHandler):
    """Requests cancellation as soon as a given line is reported."""

    def __init__(self, cancel_line: str):
        super().__init__()
        self.cancel_line = cancel_line

    def append_line(self, text, is_error=False, end_of_line=True):
        super().append_line(text, is_error=is_error, end_of_line=end_of_line)
        if text == self.cancel_line:
            self.request_cancel()


def test_process_without_output_completes():
    waiting_handler = WaitingHandler()
    supervisor = ProcessSupervisor("noop", _python_command("pass"), waiting_handler)

    # when
    process_run = supervisor.run()

    assert process_run.state == RunState.COMPLETED
    assert process_run.return_code == 0
    assert process_run.duration_seconds >= 0
    assert waiting_handler.errors == []
    assert waiting_handler.reports[-2].text.startswith("noop finished (")
    assert waiting_handler.reports[-2].text.endswith(" seconds).")


def test_process_output_is_relayed_in_order():
    waiting_handler = WaitingHandler()
    script = "print('one'); print('two'); print('three')"

    # when
    ProcessSupervisor("engine", _python_command(script), waiting_handler).run()

    assert [r.text for r in waiting_handler.reports[:3]] == ["one", "two", "three"]


def test_stderr_is_merged_into_output():
    waiting_handler = WaitingHandler()
    script = "import sys; sys.stderr.write('from stderr\\n')"

    # when
    ProcessSupervisor("engine", _python_command(script), waiting_handler).run()

    assert waiting_handler.reports[0].text == "from stderr"


def test_non_zero_exit_code_is_reported_but_completed():
    waiting_handler = WaitingHandler()

    # when
    process_run = ProcessSupervisor(
        "engine", _python_command("import sys; sys.exit(3)"), waiting_handler
    ).run()

    assert process_run.state == RunState.COMPLETED
    assert process_run.return_code == 3
    assert waiting_handler.errors == ["engine exited with code 3."]


def test_cancel_mid_read_kills_process_once():
    waiting_handler = CancelOnLineWaitingHandler("step 1")
    script = (
        "import time; print('step 1', flush=True); time.sleep(30); print('step 2')"
    )
    supervisor = ProcessSupervisor("engine", _python_command(script), waiting_handler)
    real_kill = subprocess.Popen.kill

    # when
    with patch.object(
        subprocess.Popen, "kill", autospec=True, side_effect=real_kill
    ) as mock_kill:
        process_run = supervisor.run()
        assert not supervisor.terminate()

    assert process_run.state == RunState.CANCELED
    mock_kill.assert_called_once()
    assert process_run.duration_seconds < 30
    assert "step 2" not in waiting_handler.text


class FirstLineThenFailParser(OutputParser):
    """Reads one line of output, then fails as if the pipe broke."""

    def parse(self, stream, waiting_handler):
        waiting_handler.append_line(stream.readline().decode().strip())
        raise OSError("pipe broke")


class FirstLineThenTerminateParser(OutputParser):
    """Reads one line of output, then has the process terminated from another thread."""

    def __init__(self, supervisor: ProcessSupervisor):
        self.supervisor = supervisor

    def parse(self, stream, waiting_handler):
        waiting_handler.append_line(stream.readline().decode().strip())
        threading.Timer(0.2, self.supervisor.terminate).start()


def test_read_failure_is_reported_and_does_not_cancel():
    waiting_handler = WaitingHandler()
    script = "for i in range(200000): print(f'line {i}')"
    supervisor = ProcessSupervisor("engine", _python_command(script), waiting_handler)
    supervisor._parser = FirstLineThenFailParser()
    result = {}

    # when
    thread = threading.Thread(target=lambda: result.update(run=supervisor.run()))
    thread.start()
    thread.join(timeout=30)

    assert not thread.is_alive()
    assert result["run"].state == RunState.COMPLETED
    assert waiting_handler.errors[0] == (
        "Error while reading the output of engine: pipe broke"
    )
    assert not waiting_handler.is_canceled()


def test_terminate_while_waiting_for_exit_cancels_run():
    waiting_handler = WaitingHandler()
    script = "import time; print('ready', flush=True); time.sleep(30)"
    supervisor = ProcessSupervisor("engine", _python_command(script), waiting_handler)
    supervisor._parser = FirstLineThenTerminateParser(supervisor)

    # when
    process_run = supervisor.run()

    assert process_run.state == RunState.CANCELED
    assert process_run.duration_seconds < 30
    assert waiting_handler.errors == []
    assert not any("finished" in r.text for r in waiting_handler.reports)


def test_error_envelope_cancels_process():
    waiting_handler = WaitingHandler()
    script = (
        "import time; print('<CompomicsError>disk full</CompomicsError>', flush=True); "
        "time.sleep(30)"
    )

    # when
    process_run = ProcessSupervisor(
        "engine", _python_command(script), waiting_handler
    ).run()

    assert process_run.state == RunState.CANCELED
    assert waiting_handler.errors == ["disk full"]
    assert waiting_handler.is_canceled()


def test_spawn_failure_raises_and_fails_run(tmp_path):
    waiting_handler = WaitingHandler()
    supervisor = ProcessSupervisor(
        "engine", [str(tmp_path / "does_not_exist")], waiting_handler
    )

    # when
    with pytest.raises(ProcessSpawnError) as exc_info:
        supervisor.run()

    assert isinstance(exc_info.value.__cause__, OSError)
    assert supervisor.process_run.state == RunState.FAILED
    assert len(waiting_handler.errors) == 1
    assert "could not be started" in waiting_handler.errors[0]


def test_run_twice_raises():
    supervisor = ProcessSupervisor("noop", _python_command("pass"), WaitingHandler())
    supervisor.run()

    # when
    with pytest.raises(RuntimeError):
        supervisor.run()


def test_terminate_before_run_is_noop():
    supervisor = ProcessSupervisor("noop", _python_command("pass"), WaitingHandler())

    assert not supervisor.terminate()
    assert supervisor.process_run.state == RunState.CREATED


def test_environment_and_working_directory(tmp_path):
    waiting_handler = WaitingHandler()
    script = "import os; print(os.environ['SEARCHCLI_TEST']); print(os.getcwd())"

    # when
    ProcessSupervisor(
        "engine",
        _python_command(script),
        waiting_handler,
        working_directory=str(tmp_path),
        env={"SEARCHCLI_TEST": "value"},
    ).run()

    assert waiting_handler.reports[0].text == "value"
    assert waiting_handler.reports[1].text == str(tmp_path.resolve())


def test_structured_progress_kind():
    waiting_handler = WaitingHandler()
    script = "print('writing output file: a.csv'); print('1/2'); print('2/2')"

    # when
    ProcessSupervisor(
        "engine",
        _python_command(script),
        waiting_handler,
        kind=ProcessKind.STRUCTURED_PROGRESS,
    ).run()

    assert waiting_handler.secondary_max == 2
    assert waiting_handler.secondary_current == 2
    assert waiting_handler.secondary_indeterminate


def test_reporter_receives_lifecycle_events():
    reporter = MagicMock()

    # when
    process_run = ProcessSupervisor(
        "noop",
        _python_command("pass"),
        WaitingHandler(),
        spectrum_file="/data/run.mgf",
        reporter=reporter,
    ).run()

    event_names = [c.args[0] for c in reporter.log_event.call_args_list]
    assert event_names == ["process_started", "process_finished"]
    assert reporter.log_event.call_args_list[0].args[1]["spectrum_file"] == "run.mgf"
    assert reporter.log_event.call_args_list[1].args[1]["state"] == RunState.COMPLETED
    reporter.log_metric.assert_called_once_with(
        "noop.duration_seconds", process_run.duration_seconds
    )


def test_process_run_invalid_transition_raises():
    process_run = ProcessRun("engine", ["engine"])

    # when
    with pytest.raises(RuntimeError):
        process_run.transition(RunState.COMPLETED)

    assert process_run.state == RunState.CREATED
    assert process_run.duration_seconds is None


def test_process_run_terminal_states():
    process_run = ProcessRun("engine", ["engine"])

    # when
    process_run.transition(RunState.RUNNING)
    process_run.transition(RunState.CANCELED)

    assert process_run.is_terminal
    with pytest.raises(RuntimeError):
        process_run.transition(RunState.RUNNING)
