"""Interpretation of the console output of external processes.

Each parser reads a binary output stream until end of input, forwards what it reads to a waiting handler and
stops early as soon as the waiting handler reports a cancellation. Cancellation is only checked between lines
(or tokens), a cancellation request therefore takes effect after at most one more unit of output.
"""

import codecs
import io
import logging
import re
import typing

from searchcli.constants.keys import ProcessKind
from searchcli.reporting.waiting_handler import WaitingHandler

logger = logging.getLogger()

ERROR_ENVELOPE_START = "<CompomicsError>"
ERROR_ENVELOPE_END = "</CompomicsError>"

PROGRESS_OUTPUT_MARKER = "writing output file:"

ENCODING = "utf-8"


def _text_lines(stream: typing.BinaryIO) -> typing.Iterator[str]:
    """Decoded lines of a binary stream, without line terminators."""
    text_stream = io.TextIOWrapper(stream, encoding=ENCODING, errors="replace")
    try:
        for line in text_stream:
            yield line.rstrip("\r\n")
    finally:
        # the caller owns the underlying stream
        text_stream.detach()


class OutputParser:
    """Base class for output parsers, subclasses implement `parse`."""

    def parse(self, stream: typing.BinaryIO, waiting_handler: WaitingHandler) -> None:
        raise NotImplementedError("Subclasses must implement this method")


class LineRelayParser(OutputParser):
    """Relay lines verbatim and extract errors reported inside the error envelope.

    The text between `<CompomicsError>` and `</CompomicsError>` is reported as an error and cancels the run.
    The closing marker may appear on a later line, the lines in between are part of the message.
    """

    def parse(self, stream: typing.BinaryIO, waiting_handler: WaitingHandler) -> None:
        error_lines: list[str] | None = None

        for line in _text_lines(stream):
            if error_lines is not None:
                end = line.find(ERROR_ENVELOPE_END)
                if end == -1:
                    error_lines.append(line)
                else:
                    error_lines.append(line[:end])
                    self._report_error(error_lines, waiting_handler)
                    error_lines = None

            elif (start := line.find(ERROR_ENVELOPE_START)) != -1:
                message = line[start + len(ERROR_ENVELOPE_START) :]
                end = message.find(ERROR_ENVELOPE_END)
                if end == -1:
                    error_lines = [message]
                else:
                    self._report_error([message[:end]], waiting_handler)

            else:
                waiting_handler.append_line(line)

            if waiting_handler.is_canceled():
                return

        if error_lines is not None:
            # envelope never closed
            self._report_error(error_lines, waiting_handler)

    @staticmethod
    def _report_error(lines: list[str], waiting_handler: WaitingHandler) -> None:
        waiting_handler.append_blank_line()
        waiting_handler.append_line("\n".join(lines), is_error=True)
        waiting_handler.request_cancel()


class TokenStreamParser(OutputParser):
    """Relay tokens of tools redrawing their progress in place.

    Tokens are separated by newlines or by a backspace followed by a space. A token contained in the token read
    just before it is a redraw and is suppressed. Tokens with a percent sign stay on the current line unless they
    report 100%.
    """

    DELIMITER = re.compile("\n|\x08 ")
    READ_SIZE = 4096

    def _tokens(self, stream: typing.BinaryIO) -> typing.Iterator[str]:
        decoder = codecs.getincrementaldecoder(ENCODING)(errors="replace")
        read = getattr(stream, "read1", stream.read)
        pending = ""

        while chunk := read(self.READ_SIZE):
            pending += decoder.decode(chunk)
            *tokens, pending = self.DELIMITER.split(pending)
            yield from tokens

        pending += decoder.decode(b"", final=True)
        if pending:
            yield pending

    def parse(self, stream: typing.BinaryIO, waiting_handler: WaitingHandler) -> None:
        last_token = ""

        for token in self._tokens(stream):
            token = token.rstrip("\r")
            if token not in last_token:
                waiting_handler.append_line(
                    token + " ",
                    end_of_line="%" not in token or "100%" in token,
                )
            last_token = token

            if waiting_handler.is_canceled():
                return


class StructuredProgressParser(OutputParser):
    """Relay lines until the progress marker, then turn `current/total` lines into secondary progress.

    Lines after the marker that can not be read as `current/total` are relayed.
    """

    def parse(self, stream: typing.BinaryIO, waiting_handler: WaitingHandler) -> None:
        progress_started = False

        try:
            for line in _text_lines(stream):
                is_progress = (
                    progress_started
                    and "/" in line
                    and self._update(line, waiting_handler)
                )
                if not is_progress:
                    waiting_handler.append_line(line)

                if line.startswith(PROGRESS_OUTPUT_MARKER):
                    progress_started = True
                    waiting_handler.reset_secondary_counter()
                    waiting_handler.set_secondary_indeterminate(False)

                if waiting_handler.is_canceled():
                    return
        finally:
            waiting_handler.set_secondary_indeterminate(True)

    @staticmethod
    def _update(line: str, waiting_handler: WaitingHandler) -> bool:
        current, _, total = line.partition("/")
        try:
            current, total = int(current.strip()), int(total.strip())
        except ValueError:
            return False

        if waiting_handler.secondary_max != total:
            waiting_handler.set_secondary_max(total)
        waiting_handler.set_secondary_current(current)
        return True


OUTPUT_PARSERS: dict[str, type[OutputParser]] = {
    ProcessKind.LINE_RELAY: LineRelayParser,
    ProcessKind.TOKEN_STREAM: TokenStreamParser,
    ProcessKind.STRUCTURED_PROGRESS: StructuredProgressParser,
}


def get_output_parser(kind: str) -> OutputParser:
    """Parser for a process kind.

    Raises
    ------
    ValueError
        The kind is not one of `ProcessKind`.
    """
    try:
        return OUTPUT_PARSERS[kind]()
    except KeyError:
        raise ValueError(
            f"Unknown process kind '{kind}', expected one of {ProcessKind.get_values()}"
        ) from None
