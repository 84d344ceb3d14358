"""Search plan: validate and split the spectrum files, then run every enabled search engine on them."""

import logging
import os
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import pandas as pd

from searchcli.constants.keys import (
    ConfigKeys,
    EngineKeys,
    OutputFiles,
    PathKeys,
    ProcessKind,
    RunState,
    RunSummaryCols,
)
from searchcli.exceptions import (
    InvalidCommandTemplateError,
    NoSpectrumFilesError,
    ProcessSpawnError,
)
from searchcli.path_settings import PathSettings
from searchcli.processes.supervisor import ProcessRun, ProcessSupervisor
from searchcli.reporting import reporting
from searchcli.reporting.logging import print_environment, print_logo
from searchcli.reporting.reporting import init_logging, move_existing_file
from searchcli.reporting.waiting_handler import CLIWaitingHandler, WaitingHandler
from searchcli.spectrum.splitting import SpectrumSplitter
from searchcli.spectrum.validation import SpectrumValidator
from searchcli.workflow.config import USER_DEFINED, USER_DEFINED_CLI_PARAM, Config

logger = logging.getLogger()


def build_command(
    engine: dict,
    spectrum_file: str,
    output_folder: str,
    thread_count: int,
    temp_folder: str,
) -> list[str]:
    """Fill the command template of a search engine for one spectrum file.

    Parameters
    ----------
    engine : dict
        Entry of `search_engines` in the config.

    spectrum_file : str
        Spectrum file to search.

    output_folder : str
        Output folder of the engine.

    thread_count : int
        Number of threads the engine may use.

    temp_folder : str
        Folder for temporary files.

    Returns
    -------
    list of str
        The arguments of the process.

    Raises
    ------
    InvalidCommandTemplateError
        The template uses a placeholder that has no value.
    """
    name = engine[EngineKeys.NAME]
    values = {
        "spectrum_file": os.path.abspath(spectrum_file),
        "spectrum_name": Path(spectrum_file).stem,
        "output_folder": os.path.abspath(output_folder),
        "thread_count": thread_count,
        "temp_folder": temp_folder,
        **(engine.get(EngineKeys.PARAMETERS) or {}),
    }

    command = []
    for argument in engine[EngineKeys.COMMAND]:
        try:
            command.append(str(argument).format_map(values))
        except KeyError as e:
            raise InvalidCommandTemplateError(name, e.args[0]) from e
        except (IndexError, ValueError) as e:
            raise InvalidCommandTemplateError(name, str(argument)) from e
    return command


class SearchPlan:
    def __init__(
        self,
        output_directory: str,
        config: dict | Config | None = None,
        cli_params_config: dict | None = None,
        waiting_handler: WaitingHandler | None = None,
    ) -> None:
        """Highest level class to run the search engines on a set of spectrum files.

        Owns the config, the spectrum file list and the waiting handler shared by all tasks.

        Parameters
        ----------
        output_directory : str
            Output folder, each search engine writes to a subfolder named after it.

        config : dict, optional
            Values to update the default config. Overrides values in `default.yaml`.

        cli_params_config : dict, optional
            Config values from command line parameters. Overrides values in `config`.

        waiting_handler : WaitingHandler, optional
            Receives all progress and errors, defaults to a `CLIWaitingHandler`.
        """
        self.output_folder = str(output_directory)
        os.makedirs(self.output_folder, exist_ok=True)
        init_logging(self.output_folder)

        self._config = self._init_config(config, cli_params_config, self.output_folder)
        self._save_config(self.output_folder)

        logger.setLevel(
            logging.getLevelName(self._config[ConfigKeys.GENERAL][ConfigKeys.LOG_LEVEL])
        )

        self.waiting_handler = (
            waiting_handler if waiting_handler is not None else CLIWaitingHandler()
        )
        self.path_settings = PathSettings.load(
            self._config[ConfigKeys.PATH_SETTINGS_FILE]
        )

        self.spectrum_paths: list[str] = [
            str(path) for path in self._config[ConfigKeys.SPECTRUM_PATHS]
        ]
        self.spectrum_files: list[str] = []
        self.runs: list[ProcessRun] = []

        self._log_inputs()

    @property
    def config(self) -> Config:
        return self._config

    @property
    def has_failed_runs(self) -> bool:
        return any(run.state == RunState.FAILED for run in self.runs)

    @staticmethod
    def _init_config(
        user_config: dict | Config | None,
        cli_config: dict | None,
        output_folder: str,
    ) -> Config:
        """Initialize the config with default values and update with user defined values."""
        config = Config.from_default()

        config_updates = []
        if user_config:
            logger.info("loading additional config provided via CLI")
            if isinstance(user_config, Config):
                config_updates.append(user_config)
            else:
                config_updates.append(Config(user_config, name=USER_DEFINED))

        if cli_config:
            logger.info("loading additional config provided via CLI parameters")
            config_updates.append(Config(cli_config, name=USER_DEFINED_CLI_PARAM))

        if config_updates:
            config.update(config_updates, do_print=True)

        if (
            config_output_folder := config.get(ConfigKeys.OUTPUT_DIRECTORY)
        ) is not None and config_output_folder != output_folder:
            logger.warning(
                f"Using output directory '{output_folder}', the value specified in config ('{config_output_folder}') will be ignored."
            )
        config[ConfigKeys.OUTPUT_DIRECTORY] = output_folder

        config.validate()
        return config

    def _save_config(self, output_folder: str) -> None:
        """Save the config to a file in the output folder, moving an existing file if necessary."""
        file_path = os.path.join(output_folder, OutputFiles.FROZEN_CONFIG)
        moved_path = move_existing_file(file_path)
        self._config.to_yaml(file_path)
        if moved_path:
            logger.info(f"Moved existing config file {file_path} to {moved_path}")

    def _log_inputs(self) -> None:
        logger.info(f"Searching {len(self.spectrum_paths)} spectrum file(s):")
        for path in self.spectrum_paths:
            logger.info(f"  {os.path.basename(path)}")

        engines = self.enabled_engines
        logger.info(f"Using {len(engines)} search engine(s):")
        for engine in engines:
            logger.info(
                f"  {engine[EngineKeys.NAME]} ({engine.get(EngineKeys.KIND, ProcessKind.LINE_RELAY)})"
            )

        logger.info("Using folders:")
        self.path_settings.log()
        logger.info(f"Saving output to: {self.output_folder}")

    @property
    def enabled_engines(self) -> list[dict]:
        return [
            engine
            for engine in self._config[ConfigKeys.SEARCH_ENGINES]
            if engine.get(EngineKeys.ENABLED, True)
        ]

    def run_plan(self) -> list[ProcessRun]:
        """Run the search plan.

        1. Validate all spectrum files, repairing them where the config allows it
        2. Split oversized spectrum files
        3. Run every enabled search engine on every remaining spectrum file

        Returns
        -------
        list of ProcessRun
            All runs, in the order they were planned.

        Raises
        ------
        NoSpectrumFilesError
            No spectrum file is left after validation and splitting.
        """
        print_logo()
        print_environment()

        self._check_path_settings()

        reporter = reporting.Pipeline(
            backends=[
                reporting.LogBackend(),
                reporting.JSONLBackend(path=self.output_folder),
            ]
        )

        try:
            with reporter:
                logger.progress("Preparing spectrum files")
                self.spectrum_files = self.prepare_spectrum_files()
                reporter.log_event(
                    "spectrum_files_prepared", {"n_files": len(self.spectrum_files)}
                )

                if not self.spectrum_files:
                    raise NoSpectrumFilesError()
                self._write_spectrum_input()

                logger.progress("Starting search engines")
                self.runs = self.run_search_engines(self.spectrum_files, reporter)
        finally:
            if isinstance(self.waiting_handler, CLIWaitingHandler):
                self.waiting_handler.close()

        self._write_run_summary()

        if self.waiting_handler.is_canceled():
            logger.warning("=================== Search Canceled ===================")
        else:
            logger.progress("=================== Search Finished ===================")
        return self.runs

    def _check_path_settings(self) -> None:
        if error_keys := self.path_settings.get_error_keys():
            for key in error_keys:
                logger.warning(
                    f"Folder '{key}' is not writable: {self.path_settings[key]}"
                )

    def prepare_spectrum_files(self) -> list[str]:
        """Validate and split the spectrum files.

        Rejected files and files that could not be split are excluded, the others are replaced by their chunks.
        """
        spectrum_config = self._config[ConfigKeys.SPECTRUM_FILES]

        validator = SpectrumValidator(
            self.waiting_handler,
            missing_title_policy=spectrum_config[ConfigKeys.MISSING_TITLES],
            duplicate_title_policy=spectrum_config[ConfigKeys.DUPLICATE_TITLES],
        )
        splitter = SpectrumSplitter(
            self.waiting_handler,
            max_file_size_mb=spectrum_config[ConfigKeys.MAX_FILE_SIZE_MB],
            max_spectra_per_chunk=spectrum_config[ConfigKeys.MAX_SPECTRA_PER_CHUNK],
        )

        results = validator.validate_files(self.spectrum_paths)
        accepted = [result.path for result in results if result.accepted]
        logger.info(
            f"{len(accepted)} of {len(self.spectrum_paths)} spectrum file(s) passed validation."
        )

        oversized = [path for path in accepted if splitter.is_oversized(path)]
        split_results = splitter.split_files(oversized) if oversized else {}

        spectrum_files = []
        for path in accepted:
            if path not in split_results:
                if path in oversized:
                    # splitting stopped by cancellation
                    continue
                spectrum_files.append(path)
            elif (chunks := split_results[path]) is None:
                logger.warning(
                    f"{os.path.basename(path)} could not be split and will be ignored."
                )
            else:
                spectrum_files.extend(chunk.path for chunk in chunks)

        return spectrum_files

    def _write_spectrum_input(self) -> None:
        """Write the list of searched spectrum files to the output folder."""
        file_path = os.path.join(self.output_folder, OutputFiles.SPECTRUM_INPUT)
        with open(file_path, "w") as f:
            for path in self.spectrum_files:
                f.write(os.path.abspath(path) + "\n")

    def _create_supervisors(
        self, spectrum_files: list[str], reporter: reporting.Pipeline
    ) -> list[ProcessSupervisor]:
        thread_count = self._config[ConfigKeys.GENERAL][ConfigKeys.THREAD_COUNT]
        temp_folder = self.path_settings[PathKeys.TEMP]

        supervisors = []
        for engine in self.enabled_engines:
            name = engine[EngineKeys.NAME]
            engine_output_folder = os.path.join(self.output_folder, name)
            os.makedirs(engine_output_folder, exist_ok=True)

            for spectrum_file in spectrum_files:
                command = build_command(
                    engine, spectrum_file, engine_output_folder, thread_count, temp_folder
                )
                supervisors.append(
                    ProcessSupervisor(
                        name,
                        command,
                        self.waiting_handler,
                        kind=engine.get(EngineKeys.KIND, ProcessKind.LINE_RELAY),
                        working_directory=engine.get(EngineKeys.WORKING_DIRECTORY),
                        spectrum_file=spectrum_file,
                        reporter=reporter,
                    )
                )
        return supervisors

    def run_search_engines(
        self, spectrum_files: list[str], reporter: reporting.Pipeline
    ) -> list[ProcessRun]:
        """Run every enabled search engine on every spectrum file.

        Up to `general.parallel_processes` processes run at the same time. Once the waiting handler is canceled
        no new process is started, the runs that were not started stay in state `created`.
        """
        supervisors = self._create_supervisors(spectrum_files, reporter)
        if not supervisors:
            logger.warning("No search engine enabled, nothing to run.")
            return []

        parallel_processes = self._config[ConfigKeys.GENERAL][
            ConfigKeys.PARALLEL_PROCESSES
        ]
        with ThreadPoolExecutor(max_workers=max(1, parallel_processes)) as executor:
            futures = [
                executor.submit(self._run_supervisor, supervisor)
                for supervisor in supervisors
            ]
            try:
                for future in futures:
                    future.result()
            except KeyboardInterrupt:
                logger.warning("Interrupted, stopping all search engines.")
                self.waiting_handler.request_cancel()
                for supervisor in supervisors:
                    supervisor.terminate()
                raise

        return [supervisor.process_run for supervisor in supervisors]

    def _run_supervisor(self, supervisor: ProcessSupervisor) -> ProcessRun:
        run_description = supervisor.name
        if supervisor.process_run.spectrum_file_name is not None:
            run_description += f" on {supervisor.process_run.spectrum_file_name}"

        if self.waiting_handler.is_canceled():
            logger.info(f"Canceled, not starting {run_description}")
            return supervisor.process_run

        logger.progress(f"Running {run_description}")
        try:
            return supervisor.run()
        except ProcessSpawnError as e:
            logger.error(f"Error: {e.error_code} {e.msg}")
            logger.error(e.detail_msg)
            return supervisor.process_run

    def _write_run_summary(self) -> None:
        """Write one row per run with its state, return code and duration."""
        run_summary_df = pd.DataFrame(
            [
                {
                    RunSummaryCols.ENGINE: run.name,
                    RunSummaryCols.SPECTRUM_FILE: run.spectrum_file_name,
                    RunSummaryCols.STATE: run.state,
                    RunSummaryCols.RETURN_CODE: run.return_code,
                    RunSummaryCols.DURATION: run.duration_seconds,
                }
                for run in self.runs
            ],
            columns=RunSummaryCols.get_values(),
        )
        file_path = os.path.join(self.output_folder, OutputFiles.RUN_SUMMARY)
        run_summary_df.to_csv(file_path, sep="\t", index=False)
        logger.info(f"Saved run summary to {file_path}")
