"""
Tests for the loguru setup.
"""

from loguru import logger

from sitewatch.utils.logger import setup_logger


def test_setup_logger_writes_daily_file(tmp_path):
    log_dir = tmp_path / "logs"
    try:
        configured = setup_logger(log_dir, level="debug")
        configured.info("probe loop started")
        logger.complete()
    finally:
        logger.remove()

    files = list(log_dir.glob("sitewatch_*.log"))
    assert len(files) == 1
    assert "probe loop started" in files[0].read_text()
