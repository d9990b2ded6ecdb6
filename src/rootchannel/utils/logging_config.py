"""Logging setup for the rootchannel CLI.

Diagnostics go to stderr in a short form and, when a log file is given, to
that file with timestamps. Lines streamed back from privileged commands are
logged under ``rootchannel.output`` so an embedding application can route
them apart from diagnostics.
"""
import logging
import sys
from collections.abc import Callable
from pathlib import Path
from typing import Optional

OUTPUT_LOGGER_NAME = 'rootchannel.output'

CONSOLE_FORMAT = '%(levelname)s: %(message)s'
FILE_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_logging(level: int = logging.INFO, log_file: Optional[Path] = None) -> None:
    """Replace the root handlers with a stderr handler and an optional file handler."""
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT))
    root_logger.addHandler(console_handler)

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
        root_logger.addHandler(file_handler)


def setup_cli_logging(verbose: bool = False, quiet: bool = False, log_file: Optional[Path] = None) -> None:
    """Map the CLI's -v/-q flags to a level; verbose wins over quiet."""
    if verbose:
        level = logging.DEBUG
    elif quiet:
        level = logging.WARNING
    else:
        level = logging.INFO
    setup_logging(level=level, log_file=log_file)


def output_sink(level: int = logging.INFO) -> Callable[[str], None]:
    """Return a callable that logs each output line of a privileged command."""
    out = logging.getLogger(OUTPUT_LOGGER_NAME)

    def _sink(line: str) -> None:
        out.log(level, line)

    return _sink
