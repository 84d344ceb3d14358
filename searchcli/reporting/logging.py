import logging
import os
import platform
import socket
from datetime import datetime

import numpy as np
import pandas as pd
import tqdm
import yaml

import searchcli

logger = logging.getLogger()


def print_logo() -> None:
    """Print the searchcli logo and version."""
    logger.progress("                         _          _ _ ")
    logger.progress("  ___  ___  __ _ _ __ ___| |__   ___| (_)")
    logger.progress(" / __|/ _ \\/ _` | '__/ __| '_ \\ / __| | |")
    logger.progress(" \\__ \\  __/ (_| | | | (__| | | | (__| | |")
    logger.progress(" |___/\\___|\\__,_|_|  \\___|_| |_|\\___|_|_|")
    logger.progress("")
    logger.progress(f"version: {searchcli.__version__}")


def print_environment() -> None:
    """Log information about the python environment."""

    logger.info(f"hostname: {socket.gethostname()}")
    logger.progress(
        f"os: {platform.system()} {platform.release()} ({platform.machine()})"
    )
    logger.progress(
        f"python: {platform.python_version()} ({platform.python_implementation()})"
    )
    if slurm_job_id := os.environ.get("SLURM_JOB_ID"):
        logger.info(f"slurm_job_id: {slurm_job_id}")

    now = datetime.today().strftime("%Y-%m-%d %H:%M:%S")
    logger.info(f"date: {now}")

    logger.info("=================== Environment ===================")
    logger.info(f"{'numpy':<15} : {np.__version__}")
    logger.info(f"{'pandas':<15} : {pd.__version__}")
    logger.info(f"{'pyyaml':<15} : {yaml.__version__}")
    logger.info(f"{'tqdm':<15} : {tqdm.__version__}")
    logger.info("===================================================")
