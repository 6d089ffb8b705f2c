"""Tests for package logging configuration."""

from __future__ import annotations

import logging
from pathlib import Path

from code_acceptance.logging_utils import configure_logging, get_logger


def test_configure_logging_overwrites_previous_run_log(tmp_path: Path) -> None:
    """Each configure call should start a fresh log file for the new run."""
    log_path = tmp_path / "pipeline.log"

    first_logger = configure_logging(log_file=log_path, verbose=False)
    first_logger.info("from first run")

    second_logger = configure_logging(log_file=log_path, verbose=False)
    second_logger.info("from second run")

    content = log_path.read_text(encoding="utf-8")

    assert "from second run" in content
    assert "from first run" not in content


def test_module_loggers_propagate_into_package_log(tmp_path: Path) -> None:
    log_path = tmp_path / "nested" / "pipeline.log"
    configure_logging(log_file=log_path, verbose=True)

    logging.getLogger("code_acceptance.agent.sandbox.local").debug("gate finished")

    assert "gate finished" in log_path.read_text(encoding="utf-8")


def test_get_logger_returns_package_logger() -> None:
    logger = get_logger()

    assert logger.name == "code_acceptance"
    assert logger.handlers
