"""This module provides unit tests for searchcli.reporting.waiting_handler."""

import logging
import threading
from unittest.mock import patch

from searchcli.reporting.waiting_handler import (
    CancellationToken,
    CLIWaitingHandler,
    WaitingHandler,
)


def test_cancellation_token():
    token = CancellationToken()
    assert not token.is_canceled

    # when
    token.cancel()
    token.cancel()

    assert token.is_canceled


def test_waiting_handler_shares_token():
    token = CancellationToken()
    first, second = WaitingHandler(token), WaitingHandler(token)

    # when
    first.request_cancel()

    assert second.is_canceled()


def test_waiting_handler_collects_reports():
    waiting_handler = WaitingHandler()

    # when
    waiting_handler.append_line("progress ", end_of_line=False)
    waiting_handler.append_line("50%")
    waiting_handler.append_blank_line()
    waiting_handler.append_line("failed", is_error=True)

    assert waiting_handler.text == "progress 50%\n\nfailed\n"
    assert waiting_handler.errors == ["failed"]


def test_secondary_counter():
    waiting_handler = WaitingHandler()

    # when
    waiting_handler.set_secondary_max(100)
    waiting_handler.set_secondary_current(40)
    waiting_handler.set_secondary_indeterminate(False)

    assert waiting_handler.secondary_max == 100
    assert waiting_handler.secondary_current == 40
    assert not waiting_handler.secondary_indeterminate

    # when
    waiting_handler.reset_secondary_counter()

    assert waiting_handler.secondary_current == 0
    assert waiting_handler.secondary_max == 100


def test_concurrent_reports_are_not_lost():
    waiting_handler = WaitingHandler()

    def _report(prefix):
        for i in range(200):
            waiting_handler.append_line(f"{prefix} {i}")

    threads = [threading.Thread(target=_report, args=(n,)) for n in range(4)]

    # when
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(waiting_handler.reports) == 800
    for n in range(4):
        own = [r.text for r in waiting_handler.reports if r.text.startswith(f"{n} ")]
        assert own == [f"{n} {i}" for i in range(200)]


def test_request_cancel_calls_hook_once():
    waiting_handler = WaitingHandler()

    # when
    with patch.object(waiting_handler, "_on_cancel") as mock_on_cancel:
        waiting_handler.request_cancel()
        waiting_handler.request_cancel()

    mock_on_cancel.assert_called_once()


def test_cli_waiting_handler_logs_complete_lines(caplog):
    waiting_handler = CLIWaitingHandler(show_progress_bar=False)

    # when
    with caplog.at_level(logging.INFO):
        waiting_handler.append_line("10% ", end_of_line=False)
        waiting_handler.append_line("100% ")
        waiting_handler.append_line("tool crashed", is_error=True)

    messages = [(r.levelno, r.getMessage()) for r in caplog.records]
    assert messages == [
        (logging.INFO, "10% 100% "),
        (logging.ERROR, "tool crashed"),
    ]


def test_cli_waiting_handler_close_flushes_fragment(caplog):
    waiting_handler = CLIWaitingHandler(show_progress_bar=False)

    # when
    with caplog.at_level(logging.INFO):
        waiting_handler.append_line("partial", end_of_line=False)
        waiting_handler.close()

    assert [r.getMessage() for r in caplog.records] == ["partial"]


def test_cli_waiting_handler_progress_bar():
    waiting_handler = CLIWaitingHandler()

    # when
    waiting_handler.set_secondary_max(10)
    waiting_handler.set_secondary_indeterminate(False)
    waiting_handler.set_secondary_current(5)

    assert waiting_handler._progress_bar is not None
    assert waiting_handler._progress_bar.n == 5
    assert waiting_handler._progress_bar.total == 10

    # when
    waiting_handler.set_secondary_indeterminate(True)

    assert waiting_handler._progress_bar is None
