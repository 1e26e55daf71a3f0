# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_builder

import sys
from pathlib import Path

from loguru import logger

__all__ = ["configure_logging", "logger"]


def configure_logging(level: str = "INFO", log_dir: str | Path = "logs") -> Path:
    """Install the stderr sink and the JSON file sink.

    Replaces any previously configured sinks.

    Returns:
        Path: The log file path.
    """
    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)
    log_file = log_path / "app.log"

    logger.remove()
    logger.add(sys.stderr, level=level)
    logger.add(
        log_file,
        level=level,
        rotation="10 MB",
        retention="7 days",
        serialize=True,
        enqueue=True,
    )
    return log_file
