class ConstantsClass(type):
    """A metaclass for classes that should only contain string constants."""

    def __setattr__(self, name, value):
        raise TypeError("Constants class cannot be modified")

    def get_values(cls):
        """Get all user-defined string values of the class."""
        return [
            value
            for key, value in cls.__dict__.items()
            if not key.startswith("__") and isinstance(value, str)
        ]


class ConfigKeys(metaclass=ConstantsClass):
    """String constants for accessing the config."""

    OUTPUT_DIRECTORY = "output_directory"
    SPECTRUM_PATHS = "spectrum_paths"
    PATH_SETTINGS_FILE = "path_settings_file"

    GENERAL = "general"
    THREAD_COUNT = "thread_count"
    PARALLEL_PROCESSES = "parallel_processes"
    LOG_LEVEL = "log_level"

    SPECTRUM_FILES = "spectrum_files"
    MISSING_TITLES = "missing_titles"
    DUPLICATE_TITLES = "duplicate_titles"
    MAX_FILE_SIZE_MB = "max_file_size_mb"
    MAX_SPECTRA_PER_CHUNK = "max_spectra_per_chunk"

    SEARCH_ENGINES = "search_engines"


class EngineKeys(metaclass=ConstantsClass):
    """String constants for accessing a single entry of `search_engines` in the config."""

    NAME = "name"
    ENABLED = "enabled"
    KIND = "kind"
    COMMAND = "command"
    WORKING_DIRECTORY = "working_directory"
    PARAMETERS = "parameters"


class MissingTitlePolicy(metaclass=ConstantsClass):
    """How spectra without a title are handled."""

    FAIL = "fail"
    INSERT = "insert"


class DuplicateTitlePolicy(metaclass=ConstantsClass):
    """How spectra sharing a title are handled."""

    FAIL = "fail"
    RENAME = "rename"
    DROP = "drop"


class ProcessKind(metaclass=ConstantsClass):
    """Output parsing strategy of an external process."""

    LINE_RELAY = "line_relay"
    TOKEN_STREAM = "token_stream"
    STRUCTURED_PROGRESS = "structured_progress"


class RunState(metaclass=ConstantsClass):
    """Lifecycle states of a process run."""

    CREATED = "created"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELED = "canceled"
    FAILED = "failed"


class SpectrumFileSuffixes(metaclass=ConstantsClass):
    MGF = ".mgf"
    INDEX = ".cui"
    REWRITE = ".tmp"


class OutputFiles(metaclass=ConstantsClass):
    LOG = "log.txt"
    EVENTS = "events.jsonl"
    FROZEN_CONFIG = "frozen_config.yaml"
    SPECTRUM_INPUT = "spectrum_input.txt"
    RUN_SUMMARY = "run_summary.tsv"


class RunSummaryCols(metaclass=ConstantsClass):
    """Columns of the run summary table."""

    ENGINE = "engine"
    SPECTRUM_FILE = "spectrum_file"
    STATE = "state"
    RETURN_CODE = "return_code"
    DURATION = "duration_seconds"


class PathKeys(metaclass=ConstantsClass):
    """Identifiers of the folders managed by the path settings."""

    CONFIGURATION = "configuration"
    TEMP = "temp"
    LOG = "log"
    SEARCH_PARAMETERS = "search_parameters"
