"""Supervision of a single external process: start, output interpretation, cancellation and completion."""

import logging
import os
import subprocess
import threading
from collections.abc import Mapping

import pandas as pd

from searchcli.constants.keys import ProcessKind, RunState
from searchcli.exceptions import ProcessSpawnError
from searchcli.processes.output_parsers import get_output_parser
from searchcli.reporting import reporting
from searchcli.reporting.waiting_handler import WaitingHandler

logger = logging.getLogger()


class ProcessRun:
    TRANSITIONS = {
        RunState.CREATED: {RunState.RUNNING, RunState.FAILED},
        RunState.RUNNING: {RunState.COMPLETED, RunState.CANCELED, RunState.FAILED},
        RunState.COMPLETED: set(),
        RunState.CANCELED: set(),
        RunState.FAILED: set(),
    }

    def __init__(
        self,
        name: str,
        command: list[str],
        kind: str = ProcessKind.LINE_RELAY,
        working_directory: str | None = None,
        spectrum_file: str | None = None,
    ):
        """State of one invocation of an external process.

        Parameters
        ----------
        name : str
            Name used in reports, e.g. the search engine.

        command : list of str
            Arguments passed to the process spawn.

        kind : str
            One of `ProcessKind`, selects how the output is interpreted.

        working_directory : str, optional
            Working directory of the process.

        spectrum_file : str, optional
            The spectrum file processed by this run.
        """
        self.name = name
        self.command = [str(argument) for argument in command]
        self.kind = kind
        self.working_directory = working_directory
        self.spectrum_file = spectrum_file

        self.state = RunState.CREATED
        self.start_time: pd.Timestamp | None = None
        self.end_time: pd.Timestamp | None = None
        self.return_code: int | None = None

    def transition(self, state: str) -> None:
        if state not in self.TRANSITIONS[self.state]:
            raise RuntimeError(
                f"Invalid state transition for {self.name}: {self.state} -> {state}"
            )
        self.state = state

    @property
    def is_terminal(self) -> bool:
        return not self.TRANSITIONS[self.state]

    @property
    def duration_seconds(self) -> float | None:
        """Elapsed time between start and end, None while the run has not ended."""
        if self.start_time is None or self.end_time is None:
            return None
        return (self.end_time - self.start_time).total_seconds()

    @property
    def spectrum_file_name(self) -> str | None:
        if self.spectrum_file is None:
            return None
        return os.path.basename(self.spectrum_file)

    def __repr__(self):
        return f"ProcessRun(name={self.name!r}, state={self.state!r}, return_code={self.return_code!r})"


class ProcessSupervisor:
    def __init__(
        self,
        name: str,
        command: list[str],
        waiting_handler: WaitingHandler,
        kind: str = ProcessKind.LINE_RELAY,
        working_directory: str | None = None,
        env: Mapping[str, str] | None = None,
        spectrum_file: str | None = None,
        reporter: None | reporting.Pipeline | reporting.Backend = None,
    ):
        """Run an external process and relay its output to a waiting handler.

        The output is read until the process closes it. Cancellation requested on the waiting handler is noticed
        between two lines (or tokens) of output and after the output ended. A canceled process is killed, so the
        delay between a cancellation request and the kill is the time the process takes to print its next line.

        Parameters
        ----------
        name : str
            Name used in reports.

        command : list of str
            Arguments of the process.

        waiting_handler : WaitingHandler
            Shared handler receiving the output and holding the cancellation flag.

        kind : str
            One of `ProcessKind`.

        working_directory : str, optional
            Working directory of the process.

        env : Mapping, optional
            Variables added to the environment of the current process.

        spectrum_file : str, optional
            Spectrum file processed by this run, for reporting.

        reporter : Pipeline or Backend, optional
            Receives lifecycle events, defaults to a `LogBackend`.
        """
        self.process_run = ProcessRun(
            name,
            command,
            kind=kind,
            working_directory=working_directory,
            spectrum_file=spectrum_file,
        )
        self.waiting_handler = waiting_handler
        self.env = env
        self.reporter = reporting.LogBackend() if reporter is None else reporter

        self._parser = get_output_parser(kind)
        self._process: subprocess.Popen | None = None
        self._terminated = False
        self._termination_lock = threading.Lock()

    @property
    def name(self) -> str:
        return self.process_run.name

    def _spawn(self) -> subprocess.Popen:
        env_vars = None
        if self.env:
            env_vars = os.environ.copy()
            env_vars.update({str(key): str(value) for key, value in self.env.items()})

        return subprocess.Popen(
            self.process_run.command,
            cwd=self.process_run.working_directory,
            env=env_vars,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
        )

    def run(self) -> ProcessRun:
        """Start the process and supervise it until it completed or was canceled.

        Returns
        -------
        ProcessRun
            The run in its terminal state.

        Raises
        ------
        ProcessSpawnError
            The process could not be started, the run is marked as failed.
        """
        process_run = self.process_run
        if process_run.state != RunState.CREATED:
            raise RuntimeError(f"{self.name} has already been run")

        process_run.start_time = pd.Timestamp.now()
        self.reporter.log_string(
            f"Starting {self.name}: {' '.join(process_run.command)}", verbosity="debug"
        )

        try:
            self._process = self._spawn()
        except OSError as e:
            process_run.end_time = pd.Timestamp.now()
            process_run.transition(RunState.FAILED)
            self.waiting_handler.append_line(
                f"{self.name} could not be started: {e}", is_error=True
            )
            self.reporter.log_event(
                "process_failed", {"name": self.name, "error": str(e)}
            )
            raise ProcessSpawnError(self.name, process_run.command, str(e)) from e

        process_run.transition(RunState.RUNNING)
        self.reporter.log_event(
            "process_started",
            {
                "name": self.name,
                "pid": self._process.pid,
                "spectrum_file": process_run.spectrum_file_name,
            },
        )

        try:
            read_failed = False
            try:
                self._parser.parse(self._process.stdout, self.waiting_handler)
            except (OSError, ValueError) as e:
                self.waiting_handler.append_line(
                    f"Error while reading the output of {self.name}: {e}",
                    is_error=True,
                )
                read_failed = True

            if read_failed:
                # a process still writing would block on the unread pipe
                self._process.stdout.close()

            if self.waiting_handler.is_canceled() or self._terminated:
                self.terminate()
                process_run.end_time = pd.Timestamp.now()
                process_run.return_code = self._process.returncode
                process_run.transition(RunState.CANCELED)
            else:
                self._complete()
        finally:
            self._process.stdout.close()
            if process_run.state == RunState.RUNNING:
                # unexpected error while supervising
                self.terminate()
                process_run.end_time = pd.Timestamp.now()
                process_run.transition(RunState.FAILED)

        if process_run.duration_seconds is not None:
            self.reporter.log_metric(
                f"{self.name}.duration_seconds", process_run.duration_seconds
            )
        self.reporter.log_event(
            "process_finished",
            {
                "name": self.name,
                "state": process_run.state,
                "return_code": process_run.return_code,
                "duration_seconds": process_run.duration_seconds,
            },
        )
        return process_run

    def _complete(self) -> None:
        process_run = self.process_run

        process_run.return_code = self._process.wait()
        process_run.end_time = pd.Timestamp.now()

        if self._terminated:
            # killed by terminate() from another thread while waiting
            process_run.transition(RunState.CANCELED)
            return

        if process_run.return_code != 0:
            self.waiting_handler.append_line(
                f"{self.name} exited with code {process_run.return_code}.",
                is_error=True,
            )

        self.waiting_handler.append_blank_line()
        self.waiting_handler.append_blank_line()
        self.waiting_handler.append_line(
            f"{self.name} finished ({process_run.duration_seconds:.1f} seconds)."
        )
        self.waiting_handler.append_blank_line()

        process_run.transition(RunState.COMPLETED)

    def terminate(self) -> bool:
        """Kill the process and reap it. Safe to call from any thread, only the first call has an effect.

        Returns
        -------
        bool
            Whether this call issued the kill.
        """
        with self._termination_lock:
            if self._process is None or self._terminated:
                return False
            self._terminated = True

        logger.debug(f"Killing {self.name} (pid {self._process.pid})")
        self._process.kill()
        self._process.wait()
        return True
