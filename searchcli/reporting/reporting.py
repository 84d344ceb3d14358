import json
import logging
import os
import threading
import time
import traceback
import typing
from datetime import datetime, timedelta

from searchcli.constants.keys import OutputFiles

# tracks whether init_logging() has configured the root logger
__is_initiated__ = False

# PROGRESS sits just above INFO (20), registered at import so `logger.progress()` always exists
PROGRESS_LEVELV_NUM = 21
logging.PROGRESS = PROGRESS_LEVELV_NUM
logging.addLevelName(PROGRESS_LEVELV_NUM, "PROGRESS")


def progress(self, message, *args, **kws):
    if self.isEnabledFor(PROGRESS_LEVELV_NUM):
        self._log(PROGRESS_LEVELV_NUM, message, args, **kws)


logging.Logger.progress = progress


class DefaultFormatter(logging.Formatter):
    template = "%(levelname)s: %(message)s"

    yellow = "\x1b[33;20m"
    red = "\x1b[31;20m"
    bold_red = "\x1b[31;1m"
    green = "\x1b[32;20m"
    reset = "\x1b[0m"

    def __init__(self, use_ansi: bool = True):
        """Formatter prefixing the time elapsed since its creation, optionally colored.

        Parameters
        ----------

        use_ansi : bool, default True
            Whether to use ANSI escape codes to color the output.

        """
        super().__init__()
        self.start_time = time.time()

        colors = {
            logging.DEBUG: "",
            logging.INFO: "",
            logging.PROGRESS: self.green,
            logging.WARNING: self.yellow,
            logging.ERROR: self.red,
            logging.CRITICAL: self.bold_red,
        }
        self.formatter = {
            level: logging.Formatter(
                color + self.template + self.reset
                if use_ansi and color
                else self.template
            )
            for level, color in colors.items()
        }

    def format(self, record: logging.LogRecord):
        elapsed = timedelta(seconds=record.created - self.start_time)
        formatter = self.formatter.get(record.levelno, self.formatter[logging.INFO])

        return f"{elapsed} {formatter.format(record)}"


def init_logging(
    log_folder: str = None, log_level: int = logging.INFO, overwrite: bool = True
):
    """Configure the root logger with a console handler and, if `log_folder` is given, a file handler.

    Parameters
    ----------

    log_folder : str, default None
        Folder for `log.txt`. If None, nothing is written to disk.

    log_level : int, default logging.INFO
        Level of the root logger and its handlers.

    overwrite : bool, default True
        Whether to delete an existing log file first.
    """

    global __is_initiated__

    logger = logging.getLogger()
    logger.handlers = []
    logger.setLevel(log_level)

    ch = logging.StreamHandler()
    ch.setLevel(log_level)
    ch.setFormatter(DefaultFormatter(use_ansi=True))
    logger.addHandler(ch)

    if log_folder is not None:
        os.makedirs(log_folder, exist_ok=True)
        log_name = os.path.join(log_folder, OutputFiles.LOG)
        if os.path.exists(log_name) and overwrite:
            os.remove(log_name)
        fh = logging.FileHandler(log_name, encoding="utf-8")
        fh.setLevel(log_level)
        fh.setFormatter(DefaultFormatter(use_ansi=False))
        logger.addHandler(fh)

    __is_initiated__ = True


def move_existing_file(file_path: str) -> str | None:
    """Move an existing file aside by appending the first free `.N` suffix.

    Returns
    -------
    str | None
        The new location of the file, None if there was no file to move.
    """
    if not os.path.exists(file_path):
        return None

    n = 1
    while os.path.exists(new_path := f"{file_path}.{n}"):
        n += 1

    os.rename(file_path, new_path)
    return new_path


class Backend:
    """Generic backend for logging strings and events.

    Backends needing a context implement `__enter__` and `__exit__` and set `REQUIRES_CONTEXT`,
    the `Pipeline` enters and exits them together.
    """

    REQUIRES_CONTEXT = False

    def log_metric(self, name: str, value: float, *args, **kwargs):
        pass

    def log_string(self, value: str, *args, **kwargs):
        pass

    def log_event(self, name: str, value: typing.Any, *args, **kwargs):
        pass


class JSONLBackend(Backend):
    REQUIRES_CONTEXT = True

    def __init__(self, path: str = None) -> None:
        """Backend writing events, metrics and strings to `events.jsonl`.

        Writes only while inside its context, outside of it every call is a no-op.

        Parameters
        ----------

        path : str
            Folder in which `events.jsonl` is created.

        """
        if path is None:
            raise ValueError(
                "JSONLBackend requires an output folder to be set with the path parameter."
            )
        self.path = path
        self.events_path = os.path.join(self.path, OutputFiles.EVENTS)
        self.entered_context = False
        self.start_time = 0
        self._write_lock = threading.Lock()

    def relative_time(self) -> float:
        """Seconds since the context was entered."""
        return datetime.now().timestamp() - self.start_time

    def __enter__(self):
        self.entered_context = True
        self.start_time = datetime.now().timestamp()

        with open(self.events_path, "w"):
            pass

        self.log_event("start", {})
        return self

    def __exit__(
        self, exc_type: typing.Any, exc_value: typing.Any, exc_traceback: typing.Any
    ):
        if exc_type is not None:
            exc_str = "".join(
                traceback.format_exception(exc_type, exc_value, exc_traceback)
            )
            self.log_event("stop", {"error": exc_str})
        else:
            self.log_event("stop", {})

        self.entered_context = False
        self.start_time = 0

    def _write(self, type_: str, name: str, value: typing.Any, verbosity="info"):
        if not self.entered_context:
            return

        message = {
            "absolute_time": datetime.now().isoformat(),
            "relative_time": self.relative_time(),
            "type": type_,
            "name": name,
            "value": value,
            "verbosity": verbosity,
        }
        with self._write_lock, open(self.events_path, "a") as f:
            f.write(json.dumps(message) + "\n")

    def log_event(self, name: str, value: typing.Any):
        self._write("event", name, value)

    def log_metric(self, name: str, value: float):
        self._write("metric", name, value)

    def log_string(self, value: str, verbosity: str = "info"):
        self._write("string", "string", value, verbosity=verbosity)


class LogBackend(Backend):
    def __init__(self, path: str = None) -> None:
        if not __is_initiated__ or path is not None:
            init_logging(path)

        self.logger = logging.getLogger()
        super().__init__()

    def log_string(self, value: str, verbosity: str = "info"):
        if verbosity == "progress":
            self.logger.progress(value)
        elif verbosity == "info":
            self.logger.info(value)
        elif verbosity == "debug":
            self.logger.debug(value)
        elif verbosity == "warning":
            self.logger.warning(value)
        elif verbosity == "error":
            self.logger.error(value)
        elif verbosity == "critical":
            self.logger.critical(value)
        else:
            raise ValueError(f"Unknown verbosity level {verbosity}")


class Pipeline:
    def __init__(self, backends: list[Backend] = None):
        """Fan out strings, metrics and events to several backends.

        Parameters
        ----------

        backends : list of Backend, default []
            Backend instances receiving every call.
        """
        self.backends = backends if backends is not None else []

    def __enter__(self):
        for backend in self.backends:
            if backend.REQUIRES_CONTEXT:
                backend.__enter__()
        return self

    def __exit__(self, exc_type, exc_value, exc_traceback):
        for backend in self.backends:
            if backend.REQUIRES_CONTEXT:
                backend.__exit__(exc_type, exc_value, exc_traceback)

    def log_metric(self, name: str, value: float, *args, **kwargs):
        for backend in self.backends:
            backend.log_metric(name, value, *args, **kwargs)

    def log_string(self, value: str, *args, verbosity="info", **kwargs):
        for backend in self.backends:
            backend.log_string(value, *args, verbosity=verbosity, **kwargs)

    def log_event(self, name: str, value: typing.Any, *args, **kwargs):
        for backend in self.backends:
            backend.log_event(name, value, *args, **kwargs)
