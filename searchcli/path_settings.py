"""Folders used by searchcli for configuration, temporary and log files."""

import logging
import os

import yaml

from searchcli.constants.keys import PathKeys

logger = logging.getLogger()

DEFAULT_SETTINGS_FOLDER = os.path.join(os.path.expanduser("~"), ".searchcli")
DEFAULT_PATH_SETTINGS_FILE = os.path.join(DEFAULT_SETTINGS_FOLDER, "paths.yaml")

PATH_DESCRIPTIONS = {
    PathKeys.CONFIGURATION: "Folder containing the user configuration files.",
    PathKeys.TEMP: "Folder for temporary files, available as {temp_folder} in search engine commands.",
    PathKeys.LOG: "Folder where the log files of the search engines are written.",
    PathKeys.SEARCH_PARAMETERS: "Folder containing the search parameter files.",
}


class PathSettings:
    def __init__(self, paths: dict[str, str] | None = None) -> None:
        """Named folders with defaults under `~/.searchcli`.

        Parameters
        ----------
        paths : dict, optional
            Overrides for the default folders, keys are `PathKeys` values.

        Raises
        ------
        KeyError
            A key of `paths` is not a `PathKeys` value.
        """
        self.paths = {
            key: os.path.join(DEFAULT_SETTINGS_FOLDER, key)
            for key in PathKeys.get_values()
        }
        for key, path in (paths or {}).items():
            if not self.set_path(key, path):
                raise KeyError(f"Path id '{key}' not recognized.")

    def __getitem__(self, key: str) -> str:
        return self.paths[key]

    def set_path(self, key: str, path: str) -> bool:
        """Set one folder, unknown ids are reported and ignored.

        Returns
        -------
        bool
            Whether the id was recognized.
        """
        if key not in self.paths:
            logger.warning(f"Path id '{key}' not recognized.")
            return False
        self.paths[key] = os.path.abspath(os.path.expanduser(str(path)))
        return True

    def set_all_paths_in(self, folder: str) -> None:
        """Put every folder in a subfolder of `folder`, named after its id."""
        folder = os.path.abspath(os.path.expanduser(str(folder)))
        for key in self.paths:
            self.paths[key] = os.path.join(folder, key)

    def get_error_keys(self) -> list[str]:
        """Ids of the folders that can not be created or are not writable."""
        error_keys = []
        for key, path in self.paths.items():
            try:
                os.makedirs(path, exist_ok=True)
            except OSError as e:
                logger.debug(f"Could not create folder for '{key}': {e}")
                error_keys.append(key)
                continue

            if not os.access(path, os.W_OK):
                error_keys.append(key)
        return error_keys

    def to_yaml(self, path: str = DEFAULT_PATH_SETTINGS_FILE) -> None:
        os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
        with open(path, "w") as f:
            yaml.dump(self.paths, f, sort_keys=False)

    @classmethod
    def from_yaml(cls, path: str = DEFAULT_PATH_SETTINGS_FILE) -> "PathSettings":
        """Load settings written by `to_yaml`, unknown ids in the file are reported and skipped."""
        with open(path) as f:
            paths = yaml.safe_load(f) or {}

        settings = cls()
        for key, folder in paths.items():
            settings.set_path(key, folder)
        return settings

    @classmethod
    def load(cls, path: str | None = None) -> "PathSettings":
        """Settings from `path` (or the default file) if it exists, the defaults otherwise."""
        path = DEFAULT_PATH_SETTINGS_FILE if path is None else path
        if os.path.exists(path):
            logger.info(f"Loading path settings from {path}")
            return cls.from_yaml(path)
        return cls()

    def log(self) -> None:
        for key, path in self.paths.items():
            logger.info(f"  {key}: {path}")
