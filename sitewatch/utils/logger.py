"""
Logging Configuration
"""

import sys
from pathlib import Path
from loguru import logger


def setup_logger(log_dir: Path = None, level: str = "INFO"):
    """Setup application logger."""
    logger.remove()

    if log_dir is None:
        log_dir = Path("data/logs")
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)

    # Console (absent when running detached)
    if sys.stderr is not None:
        logger.add(
            sys.stderr,
            format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <level>{message}</level>",
            level=level.upper(),
            colorize=True
        )

    # File
    logger.add(
        log_dir / "sitewatch_{time:YYYY-MM-DD}.log",
        format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{line} | {message}",
        level="DEBUG",
        rotation="5 MB",
        retention="7 days",
        enqueue=True
    )

    return logger
