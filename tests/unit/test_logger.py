"""
Tests for logging setup.

Tests cover:
1. Subsystem logger naming
2. Repeated setup replaces handlers
3. Optional file output
"""

import logging

import pytest

from leasebid.utils.logger import get_logger, setup_logging


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture(autouse=True)
def restore_root():
    root = logging.getLogger("leasebid")
    saved_handlers, saved_level = list(root.handlers), root.level
    yield
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    for handler in saved_handlers:
        root.addHandler(handler)
    root.setLevel(saved_level)


class TestLogger:
    """Tests for the package logger."""

    def test_subsystem_name(self):
        assert get_logger("lease").name == "leasebid.lease"

    def test_setup_is_repeatable(self):
        setup_logging(logging.INFO)
        root = setup_logging(logging.DEBUG)
        assert len(root.handlers) == 1
        assert root.level == logging.DEBUG

    def test_file_handler(self, tmp_path):
        log_file = tmp_path / "logs" / "leasebid.log"
        root = setup_logging(logging.INFO, log_file=str(log_file))
        assert len(root.handlers) == 2

        get_logger("bounty").warning("criteria oracle unavailable")
        for handler in root.handlers:
            handler.flush()

        content = log_file.read_text()
        assert "[leasebid.bounty] WARNING" in content
        assert "criteria oracle unavailable" in content
