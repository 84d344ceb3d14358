"""Module containing custom exceptions."""


class CustomError(Exception):
    """Custom searchcli error class."""

    _error_code = ""
    _msg = ""
    _detail_msg = ""
    _user_msg = ""

    @property
    def error_code(self):
        return self._error_code

    @property
    def msg(self):
        return self._msg

    @property
    def detail_msg(self):
        return self._detail_msg

    def __init__(self, msg: str = ""):
        self._user_msg = msg

        super().__init__(self._msg)

    def __str__(self):
        return (
            f"{self._error_code}: {self._msg}\n'{self._user_msg}'\n{self._detail_msg}"
        )


class BusinessError(CustomError):
    """Custom error class for 'business' errors.

    A 'business' error is an error that is caused while processing the input (spectrum files, external tools, ...)
    and not by a malfunction in searchcli.
    """


class UserError(CustomError):
    """Custom error class for 'user' errors.

    A 'user' error is an error that is caused by incompatible user input (files, configuration, ...) and not by a
    malfunction in searchcli.
    """



class NoSpectrumFilesError(UserError):
    """Raise when no spectrum file is left to be searched."""

    _error_code = "NO_SPECTRUM_FILES"

    _msg = "No valid spectrum files to search."

    _detail_msg = """All spectrum files were rejected or none were provided.

    Check the log for the reason each file was excluded. Missing spectrum titles can be added with the
    'missing_titles: insert' option, files without MS2 spectra can not be searched."""


class SpectrumFileFormatError(BusinessError):
    """Raise when a spectrum file can not be parsed."""

    _error_code = "SPECTRUM_FILE_FORMAT"

    _msg = "Malformed MGF file."

    def __init__(self, path: str, detail_msg: str = ""):
        self._user_msg = str(path)
        self._detail_msg = detail_msg


class ProcessSpawnError(BusinessError):
    """Raise when an external process could not be started."""

    _error_code = "PROCESS_SPAWN_FAILED"

    _msg = "The external process could not be started."

    def __init__(self, name: str, command: list[str], reason: str = ""):
        self._user_msg = name
        self._detail_msg = f"command={command}, reason='{reason}'"


class InvalidCommandTemplateError(UserError):
    """Raise when a search engine command template can not be filled."""

    _error_code = "INVALID_COMMAND_TEMPLATE"

    _msg = "Search engine command template could not be filled."

    def __init__(self, engine_name: str, placeholder: str):
        self._user_msg = engine_name
        self._detail_msg = (
            f"Unknown placeholder '{{{placeholder}}}' in the command of search engine '{engine_name}'. "
            f"Define it in the 'parameters' of the engine or remove it."
        )


class ConfigError(BusinessError):
    """Raise when something is wrong with the provided configuration."""

    _error_code = "CONFIG_ERROR"

    _msg = "Malformed or invalid configuration."
    _key = ""
    _config_name = ""
    _detail_msg = ""

    def __init__(
        self,
        key: str = "",
        value: str = "",
        config_name: str = "",
        detail_msg: str = "",
    ):
        self._key = key
        self._value = value
        self._config_name = config_name
        self._detail_msg = detail_msg


class KeyAddedConfigError(ConfigError):
    """Raise when a key should be added to a config."""

    def __init__(self, key: str, value: str, config_name: str):
        super().__init__(key, value, config_name)
        self._detail_msg = (
            f"Defining new keys is not allowed when updating a config: "
            f"key='{self._key}', value='{self._value}', config_name='{self._config_name}'"
        )


class TypeMismatchConfigError(ConfigError):
    """Raise when the type of a value does not match the default type."""

    def __init__(self, key: str, value: str, config_name: str, extra_msg: str):
        super().__init__(key, value, config_name)
        self._detail_msg = (
            f"Types of values must match default config: "
            f"key='{self._key}', value='{self._value}', config_name='{self._config_name}', types='{extra_msg}'"
        )


class InvalidPolicyConfigError(ConfigError):
    """Raise when a spectrum file handling policy is not one of the allowed values."""

    def __init__(self, key: str, value: str, allowed: list[str]):
        super().__init__(key, value, "")
        self._detail_msg = (
            f"Invalid value for '{self._key}': '{self._value}'. Allowed values: {allowed}"
        )
