"""Progress reporting and cooperative cancellation shared by all running tasks.

A waiting handler is the single object shared between concurrently running supervisors, the validator and the
splitter. Every mutation happens under one lock so a report line (or token) is never interleaved with another one.
Cancellation is cooperative: producers poll `is_canceled()` between units of work.
"""

import logging
import threading
from dataclasses import dataclass

from tqdm import tqdm

logger = logging.getLogger()


class CancellationToken:
    """Thread-safe one-way cancellation flag. Once canceled it stays canceled."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_canceled(self) -> bool:
        return self._event.is_set()


@dataclass(frozen=True)
class ProgressReport:
    text: str
    is_error: bool = False
    end_of_line: bool = True


class WaitingHandler:
    def __init__(self, cancellation_token: CancellationToken | None = None) -> None:
        """In-memory waiting handler keeping every report and the state of the secondary progress counter.

        Parameters
        ----------

        cancellation_token : CancellationToken, optional
            Token shared with other handlers or callers. A new one is created if not given.

        """
        self._lock = threading.Lock()
        self.cancellation_token = (
            cancellation_token
            if cancellation_token is not None
            else CancellationToken()
        )

        self.reports: list[ProgressReport] = []

        self._secondary_max = 0
        self._secondary_current = 0
        self._secondary_indeterminate = True

    def append_line(
        self, text: str, is_error: bool = False, end_of_line: bool = True
    ) -> None:
        """Report a line of text, or a fragment of it if `end_of_line` is False."""
        with self._lock:
            report = ProgressReport(text, is_error=is_error, end_of_line=end_of_line)
            self.reports.append(report)
            self._on_report(report)

    def append_blank_line(self) -> None:
        self.append_line("")

    def is_canceled(self) -> bool:
        return self.cancellation_token.is_canceled

    def request_cancel(self) -> None:
        with self._lock:
            if not self.cancellation_token.is_canceled:
                self.cancellation_token.cancel()
                self._on_cancel()

    @property
    def secondary_max(self) -> int:
        return self._secondary_max

    @property
    def secondary_current(self) -> int:
        return self._secondary_current

    @property
    def secondary_indeterminate(self) -> bool:
        return self._secondary_indeterminate

    def set_secondary_max(self, value: int) -> None:
        with self._lock:
            self._secondary_max = value
            self._on_secondary_update()

    def set_secondary_current(self, value: int) -> None:
        with self._lock:
            self._secondary_current = value
            self._on_secondary_update()

    def reset_secondary_counter(self) -> None:
        with self._lock:
            self._secondary_current = 0
            self._on_secondary_update()

    def set_secondary_indeterminate(self, indeterminate: bool) -> None:
        with self._lock:
            self._secondary_indeterminate = indeterminate
            self._on_secondary_update()

    @property
    def text(self) -> str:
        """All reports joined as they would appear on a console."""
        with self._lock:
            return "".join(
                report.text + ("\n" if report.end_of_line else "")
                for report in self.reports
            )

    @property
    def errors(self) -> list[str]:
        with self._lock:
            return [report.text for report in self.reports if report.is_error]

    # hooks called with the lock held
    def _on_report(self, report: ProgressReport) -> None:
        pass

    def _on_cancel(self) -> None:
        pass

    def _on_secondary_update(self) -> None:
        pass


class CLIWaitingHandler(WaitingHandler):
    def __init__(
        self,
        cancellation_token: CancellationToken | None = None,
        show_progress_bar: bool = True,
    ) -> None:
        """Waiting handler for the command line.

        Complete lines go to the root logger, fragments (`end_of_line=False`) are collected until the line is
        complete. The secondary counter is displayed as a tqdm progress bar while it is determinate.

        Parameters
        ----------

        cancellation_token : CancellationToken, optional
            Token shared with other handlers or callers.

        show_progress_bar : bool, default True
            Whether to display the secondary counter.

        """
        super().__init__(cancellation_token)
        self.show_progress_bar = show_progress_bar
        self._pending: list[str] = []
        self._pending_is_error = False
        self._progress_bar: tqdm | None = None

    def _on_report(self, report: ProgressReport) -> None:
        self._pending.append(report.text)
        self._pending_is_error = self._pending_is_error or report.is_error

        if not report.end_of_line:
            return

        line = "".join(self._pending).rstrip("\r\n")
        if self._pending_is_error:
            logger.error(line)
        else:
            logger.info(line)

        self._pending = []
        self._pending_is_error = False

    def _on_cancel(self) -> None:
        logger.warning("Cancellation requested.")

    def _on_secondary_update(self) -> None:
        if not self.show_progress_bar:
            return

        if self._secondary_indeterminate:
            self._close_progress_bar()
            return

        if self._progress_bar is None:
            self._progress_bar = tqdm(total=self._secondary_max, leave=False)

        if self._progress_bar.total != self._secondary_max:
            self._progress_bar.total = self._secondary_max
        self._progress_bar.n = self._secondary_current
        self._progress_bar.refresh()

    def _close_progress_bar(self) -> None:
        if self._progress_bar is not None:
            self._progress_bar.close()
            self._progress_bar = None

    def close(self) -> None:
        """Flush a pending line fragment and close the progress bar."""
        with self._lock:
            if self._pending:
                self._on_report(ProgressReport(""))
            self._close_progress_bar()
