"""Tests for the host logging helper."""

import logging

import pytest

from ptyvisor.logging_setup import configure_logging


@pytest.fixture
def package_logger():
    logger = logging.getLogger("ptyvisor")
    saved_handlers, saved_level = list(logger.handlers), logger.level
    logger.handlers.clear()
    yield logger
    logger.handlers[:] = saved_handlers
    logger.setLevel(saved_level)


def test_attaches_single_handler(package_logger):
    """Test repeated calls only update the level."""
    configure_logging(logging.DEBUG)
    configure_logging("WARNING")

    assert len(package_logger.handlers) == 1
    assert package_logger.level == logging.WARNING


def test_module_loggers_propagate(package_logger):
    configure_logging(logging.INFO)
    assert logging.getLogger("ptyvisor.session").getEffectiveLevel() == logging.INFO
