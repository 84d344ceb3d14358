"""Creation and layering of the run configuration.

The default configuration is read from `constants/default.yaml` and updated by one or more other configuration
objects (config file, `--config-dict`, command line parameters). Later configs overwrite earlier ones.
Lists are always replaced completely, new keys and changed value types are rejected.
"""

import json
import logging
import os
from collections import UserDict, defaultdict
from copy import deepcopy

import yaml

from searchcli.constants.keys import (
    ConfigKeys,
    DuplicateTitlePolicy,
    EngineKeys,
    MissingTitlePolicy,
    ProcessKind,
)
from searchcli.exceptions import (
    ConfigError,
    InvalidPolicyConfigError,
    KeyAddedConfigError,
    TypeMismatchConfigError,
)

logger = logging.getLogger()

DEFAULT = "default"
USER_DEFINED = "user defined"
USER_DEFINED_CLI_PARAM = "user defined (cli)"

DEFAULT_CONFIG_PATH = os.path.join(
    os.path.dirname(os.path.dirname(__file__)), "constants", "default.yaml"
)


class Config(UserDict):
    """Dict-like config that reads from and writes to yaml and json and can be updated with other configs."""

    def __init__(self, data: dict = None, name: str = DEFAULT) -> None:
        # UserDict.__init__ would call our update()
        self.data = {**data} if data is not None else {}
        self.name = name

    @classmethod
    def from_default(cls) -> "Config":
        """Load the default config shipped with the package."""
        logger.info(f"loading default config from {DEFAULT_CONFIG_PATH}")
        config = cls()
        config.from_yaml(DEFAULT_CONFIG_PATH)
        return config

    def from_yaml(self, path: str) -> None:
        with open(path) as f:
            self.data = yaml.safe_load(f)

    def from_json(self, path: str) -> None:
        with open(path) as f:
            self.data = json.load(f)

    def to_yaml(self, path: str) -> None:
        with open(path, "w") as f:
            yaml.dump(self.data, f, sort_keys=False)

    def to_json(self, path: str) -> None:
        with open(path, "w") as f:
            json.dump(self.data, f)

    def __setitem__(self, key, item):
        if key != ConfigKeys.OUTPUT_DIRECTORY:
            raise NotImplementedError("Use update() to update the config.")
        return super().__setitem__(key, item)

    def __delitem__(self, key):
        raise NotImplementedError("Use update() to update the config.")

    def copy(self):
        raise NotImplementedError("Use deepcopy() to copy the config.")

    def update(self, configs: list["Config"], do_print: bool = False):
        """Update the config with one or more other config objects, the last one wins.

        Parameters
        ----------
        configs : list of Config
            Configs to apply in order.

        do_print : bool, optional
            Log the resulting config, marking values that differ from the current one with their source.
        """
        previous_config = deepcopy(self.data)

        def _nested():
            return defaultdict(_nested)

        sources = defaultdict(_nested)

        current_config = deepcopy(self.data)
        for config in configs:
            logger.info(f"Updating config with '{config.name}'")
            _update(current_config, config.data, sources, config.name)

        self.data = current_config

        if do_print:
            _log_config(current_config, previous_config, sources)

    def validate(self) -> None:
        """Check the values that have a closed set of allowed values and the search engine entries."""
        spectrum_config = self.data[ConfigKeys.SPECTRUM_FILES]

        for key, allowed in [
            (ConfigKeys.MISSING_TITLES, MissingTitlePolicy.get_values()),
            (ConfigKeys.DUPLICATE_TITLES, DuplicateTitlePolicy.get_values()),
        ]:
            if spectrum_config[key] not in allowed:
                raise InvalidPolicyConfigError(
                    f"{ConfigKeys.SPECTRUM_FILES}.{key}", spectrum_config[key], allowed
                )

        names = set()
        for i, engine in enumerate(self.data[ConfigKeys.SEARCH_ENGINES]):
            key = f"{ConfigKeys.SEARCH_ENGINES}[{i}]"
            if not isinstance(engine, dict):
                raise ConfigError(
                    key, engine, self.name, "Search engine entries must be mappings."
                )

            unknown_keys = set(engine) - set(EngineKeys.get_values())
            if unknown_keys:
                raise ConfigError(
                    key,
                    engine,
                    self.name,
                    f"Unknown search engine keys: {sorted(unknown_keys)}",
                )

            name = engine.get(EngineKeys.NAME)
            if not name:
                raise ConfigError(
                    key, engine, self.name, "Search engines need a 'name'."
                )
            if name in names:
                raise ConfigError(
                    key, engine, self.name, f"Search engine name '{name}' is used twice."
                )
            names.add(name)

            command = engine.get(EngineKeys.COMMAND)
            if not isinstance(command, list) or not command:
                raise ConfigError(
                    key,
                    engine,
                    self.name,
                    f"The 'command' of search engine '{name}' must be a non-empty list of arguments.",
                )

            kind = engine.get(EngineKeys.KIND, ProcessKind.LINE_RELAY)
            if kind not in ProcessKind.get_values():
                raise InvalidPolicyConfigError(
                    f"{key}.{EngineKeys.KIND}", kind, ProcessKind.get_values()
                )


def _update(
    target_config: dict,
    update_config: dict,
    sources: dict,
    config_name: str,
    parent_keys: str = "",
) -> None:
    """Recursively update `target_config` in place with `update_config`.

    Every overwritten leaf is recorded in `sources` with `config_name`.

    Raises
    ------
    KeyAddedConfigError
        A key of `update_config` does not exist in `target_config`.
    TypeMismatchConfigError
        The type of an update value differs from the type of the target value.
    """
    for key, update_value in update_config.items():
        full_key = f"{parent_keys}.{key}" if parent_keys else key

        if key not in target_config:
            raise KeyAddedConfigError(full_key, update_value, config_name)

        target_value = target_config[key]

        # "true"/"false" strings mostly come from --config-dict
        if isinstance(update_value, str) and update_value.lower() in ("true", "false"):
            update_value = update_value.lower() == "true"

        if (
            target_value is not None
            and update_value is not None
            and type(target_value) is not type(update_value)
            and not (
                isinstance(target_value, int | float)
                and isinstance(update_value, int | float)
            )
        ):
            raise TypeMismatchConfigError(
                full_key,
                update_value,
                config_name,
                f"{type(update_value)} != {type(target_value)}",
            )

        if isinstance(target_value, dict):
            _update(
                target_value,
                update_value,
                sources[key],
                config_name,
                parent_keys=full_key,
            )
        else:
            target_config[key] = update_value
            sources[key] = config_name


def _log_config(config: dict, previous: dict | None, sources: dict | str, prefix: str = ""):
    """Log the config as a tree, appending source and previous value to changed entries."""
    items = list(config.items())
    for i, (key, value) in enumerate(items):
        is_last = i == len(items) - 1
        branch = "└──" if is_last else "├──"
        child_prefix = prefix + ("    " if is_last else "│   ")

        previous_value = previous.get(key) if isinstance(previous, dict) else None
        source = sources if isinstance(sources, str) else sources.get(key, DEFAULT)

        if isinstance(value, dict):
            logger.info(f"{prefix}{branch}{key}")
            _log_config(value, previous_value, source, prefix=child_prefix)
        elif value != previous_value:
            logger.info(
                f"{prefix}{branch}{key}: {value} [{source}, default: {previous_value}]"
            )
        else:
            logger.info(f"{prefix}{branch}{key}: {value}")
