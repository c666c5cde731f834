"""Utility functions for the differential expression pipeline."""

import logging
from pathlib import Path
from typing import Optional, Union

LOG_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'


def setup_logging(log_dir: Optional[Union[str, Path]] = None, level=logging.INFO):
    """Set up logging configuration.

    Args:
        log_dir: Directory to store the pipeline.log file
        level: Logging level

    Returns:
        The package logger
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    if log_dir:
        log_dir = ensure_dir(Path(log_dir))
        file_handler = logging.FileHandler(log_dir / 'pipeline.log', mode='w')
        file_handler.setFormatter(logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        ))
        root_logger.addHandler(file_handler)
        # Write straight away so the file exists even for runs that fail early
        root_logger.info("Logging initialized")

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root_logger.addHandler(console_handler)

    return logging.getLogger('diffexpr')


def ensure_dir(path: Path) -> Path:
    """Ensure a directory exists, creating it if necessary.

    Args:
        path: Directory path

    Returns:
        Path object for the directory
    """
    path.mkdir(parents=True, exist_ok=True)
    return path
