#!python
"""CLI for searchcli.

Ideally the CLI module should have as little logic as possible so that a search behaves the same from the CLI or a jupyter notebook.
"""

import argparse
import json
import logging
import os
import re
from pathlib import Path

import yaml

from searchcli import __version__
from searchcli.constants.keys import ConfigKeys, PathKeys
from searchcli.path_settings import PATH_DESCRIPTIONS

logger = logging.getLogger()

EXIT_CODE_USER_ERROR = 1
EXIT_CODE_WRONG_CLI_PARAM = 126
EXIT_CODE_UNKNOWN_ERROR = 127

epilog = "Parameters passed via CLI will overwrite parameters from config file (except for '--spectrum-file': will be merged)."

parser = argparse.ArgumentParser(
    description="Validate spectrum files and run search engines on them with searchcli",
    epilog=epilog,
)
parser.add_argument(
    "--version",
    "-v",
    action="store_true",
    help="Print version and exit",
)
parser.add_argument(
    "--check",
    action="store_true",
    help="Check if package can be imported",
)
parser.add_argument(
    "--output",
    "--output-directory",
    "-o",
    type=str,
    help="Output directory.",
    nargs="?",
    default=None,
)
parser.add_argument(
    "--spectrum-file",
    "--file",
    "-f",
    type=str,
    help="Path to a spectrum file (mgf). Can be passed multiple times.",
    action="append",
    default=[],
)
parser.add_argument(
    "--directory",
    "-d",
    type=str,
    help="Directory containing spectrum files.",
    action="append",
    default=[],
)
parser.add_argument(
    "--regex",
    "-r",
    type=str,
    help="Regex to match spectrum files in 'directory'.",
    nargs="?",
    default=r".*\.mgf$",
)
parser.add_argument(
    "--config",
    "-c",
    type=str,
    help="Path to config yaml file which will be used to update the default config.",
    nargs="?",
    default=None,
)
parser.add_argument(
    "--config-dict",
    type=str,
    help="Python dictionary which will be used to update the default config. Keys and string values need to be surrounded by "
    'escaped double quotes, e.g. "{\\"key1\\": \\"value1\\"}".',
    nargs="?",
    default="{}",
)
parser.add_argument(
    "--path-settings",
    type=str,
    help="Path settings file written by 'searchcli-paths'.",
    nargs="?",
    default=None,
)

path_settings_parser = argparse.ArgumentParser(
    description="Set the folders used by searchcli for configuration, temporary and log files",
    epilog="Path ids:\n"
    + "\n".join(
        f"  {key:<20} {description}" for key, description in PATH_DESCRIPTIONS.items()
    ),
    formatter_class=argparse.RawDescriptionHelpFormatter,
)
path_settings_parser.add_argument(
    "--temp-folder",
    type=str,
    help="A folder in which all other folders are created. Use only if you encounter problems with the default configuration.",
    default=None,
)
path_settings_parser.add_argument(
    "--path",
    "-p",
    type=str,
    help=f"Set a single folder as 'id=folder', ids: {PathKeys.get_values()}. Can be passed multiple times.",
    action="append",
    default=[],
)
path_settings_parser.add_argument(
    "--settings-file",
    type=str,
    help="File to write the path settings to, defaults to ~/.searchcli/paths.yaml.",
    default=None,
)


def _recursive_update(full_dict: dict, update_dict: dict):
    """recursively update a dict with a second dict. The dict is updated inplace.

    Parameters
    ----------
    full_dict : dict
        dict to be updated, is updated inplace.

    update_dict : dict
        dict with new values

    """
    for key, value in update_dict.items():
        if key in full_dict and isinstance(value, dict):
            _recursive_update(full_dict[key], update_dict[key])
        else:
            full_dict[key] = value


def _get_config_from_args(
    args: argparse.Namespace,
) -> tuple[dict, str | None, str | None]:
    """Parse config file from `args.config` if given and update with optional JSON string `args.config_dict`."""

    config = {}
    if args.config is not None:
        with open(args.config) as f:
            config = yaml.safe_load(f) or {}

    if args.config_dict:
        try:
            _recursive_update(config, json.loads(args.config_dict))
        except json.JSONDecodeError as e:
            print(f"Could not parse config update: {e}")

    return config, args.config, args.config_dict


def _get_from_args_or_config(
    args: argparse.Namespace, config: dict, *, args_key: str, config_key: str
) -> str:
    """Get a value from command line arguments (key: `args_key`) or config file (key: `config_key`), the former taking precedence."""
    value_from_args = args.__dict__.get(args_key)
    return value_from_args if value_from_args is not None else config.get(config_key)


def _get_spectrum_path_list_from_args_and_config(
    args: argparse.Namespace, config: dict
) -> list:
    """
    Generate a list of spectrum file paths based on command-line arguments and configuration.

    Files listed in the configuration and passed with `--spectrum-file` are kept, files found in the `--directory`
    folders are filtered with `--regex`, matched against the file name.

    Parameters
    ----------
    args : argparse.Namespace
        Command-line arguments containing file and directory paths, as well as a regex pattern for filtering.
    config : dict
        Configuration dictionary that may include a list of spectrum paths.

    Returns
    -------
        list: a list of spectrum file paths.
    """

    spectrum_path_list = list(config.get(ConfigKeys.SPECTRUM_PATHS, []))
    spectrum_path_list += args.spectrum_file

    directory_path_list = []
    for directory in args.directory:
        directory_path_list += [
            os.path.join(directory, f) for f in sorted(os.listdir(directory))
        ]

    len_before = len(directory_path_list)
    directory_path_list = [
        f
        for f in directory_path_list
        if re.search(args.regex, os.path.basename(f)) is not None
    ]

    if len_removed := len_before - len(directory_path_list):
        print(
            f"Ignoring {len_removed} / {len_before} file(s) from --directory due to --regex."
        )

    return spectrum_path_list + directory_path_list


def run(*args, **kwargs):
    args, unknown = parser.parse_known_args()

    if unknown:
        print(f"Unknown arguments: {unknown}")
        parser.print_help()
        return EXIT_CODE_WRONG_CLI_PARAM

    if args.version:
        print(f"{__version__}")
        return

    # load modules only here to speed up -v and -h commands
    from searchcli.exceptions import CustomError
    from searchcli.search_plan import SearchPlan

    if args.check:
        print(f"{__version__}")
        print("Importing searchcli works!")
        return

    user_config, config_file_path, extra_config_dict = _get_config_from_args(args)

    output_directory = _get_from_args_or_config(
        args, user_config, args_key="output", config_key=ConfigKeys.OUTPUT_DIRECTORY
    )

    if output_directory is None:
        parser.print_help()

        print("No output directory specified. Please do so via CL-argument or config.")
        return EXIT_CODE_WRONG_CLI_PARAM

    spectrum_paths = _get_spectrum_path_list_from_args_and_config(args, user_config)
    cli_params_config = {
        **({ConfigKeys.SPECTRUM_PATHS: spectrum_paths} if spectrum_paths else {}),
        **(
            {ConfigKeys.PATH_SETTINGS_FILE: args.path_settings}
            if args.path_settings is not None
            else {}
        ),
    }

    try:
        search_plan = SearchPlan(output_directory, user_config, cli_params_config)

        logger.info(
            f"Output directory: {Path(output_directory).absolute()}, cwd: {os.getcwd()}."
        )
        if config_file_path:
            logger.info(f"User provided config file: {config_file_path}.")
        if extra_config_dict:
            logger.info(f"User provided config dict: {extra_config_dict}.")

        search_plan.run_plan()

    except Exception as e:
        if isinstance(e, CustomError):
            logger.error(f"{e.error_code} {e.msg}")
            logger.error(e.detail_msg)
            return EXIT_CODE_USER_ERROR

        import traceback

        logger.info(traceback.format_exc())
        logger.error(e)
        return EXIT_CODE_UNKNOWN_ERROR

    if search_plan.has_failed_runs:
        logger.error("At least one search engine could not be started.")
        return EXIT_CODE_USER_ERROR


def _parse_path_arguments(path_arguments: list[str]) -> dict[str, str]:
    """Split `id=folder` arguments."""
    paths = {}
    for argument in path_arguments:
        key, separator, folder = argument.partition("=")
        if not separator or not key or not folder:
            raise ValueError(f"Expected 'id=folder', got '{argument}'")
        paths[key.strip()] = folder.strip()
    return paths


def run_path_settings(*args, **kwargs):
    args, unknown = path_settings_parser.parse_known_args()

    if unknown:
        print(f"Unknown arguments: {unknown}")
        path_settings_parser.print_help()
        return EXIT_CODE_WRONG_CLI_PARAM

    if args.temp_folder is None and not args.path:
        path_settings_parser.print_help()
        return

    from searchcli.path_settings import DEFAULT_PATH_SETTINGS_FILE, PathSettings
    from searchcli.reporting import reporting

    reporting.init_logging()

    try:
        paths = _parse_path_arguments(args.path)
    except ValueError as e:
        print(e)
        return EXIT_CODE_WRONG_CLI_PARAM

    settings_file = (
        args.settings_file
        if args.settings_file is not None
        else DEFAULT_PATH_SETTINGS_FILE
    )
    path_settings = PathSettings.load(settings_file)

    if args.temp_folder is not None:
        path_settings.set_all_paths_in(args.temp_folder)

    for key, folder in paths.items():
        path_settings.set_path(key, folder)

    try:
        path_settings.to_yaml(settings_file)
    except OSError as e:
        logger.error(f"Could not save the path settings to {settings_file}: {e}")
        return EXIT_CODE_USER_ERROR

    for key in path_settings.get_error_keys():
        logger.warning(f"Folder '{key}' is not writable: {path_settings[key]}")

    path_settings.log()
    logger.info("Path configuration completed.")


if __name__ == "__main__" and os.getenv("RUN_MAIN") == "1":
    run()
