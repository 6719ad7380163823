"""Tests for CLI logging configuration."""

import logging
from collections.abc import Iterator

import pytest

from portaqemu._logging import LIBRARY_LOGGER_NAME, _ClickHandler, configure_logging, get_logger


@pytest.fixture
def lib_logger() -> Iterator[logging.Logger]:
    """Library logger restored to its original handlers and level afterwards."""
    logger = logging.getLogger(LIBRARY_LOGGER_NAME)
    handlers, level = list(logger.handlers), logger.level
    yield logger
    logger.handlers = handlers
    logger.setLevel(level)


class TestConfigureLogging:
    def test_idempotent_handler(self, lib_logger: logging.Logger) -> None:
        """Repeated calls add a single click handler."""
        configure_logging()
        configure_logging()
        assert sum(isinstance(h, _ClickHandler) for h in lib_logger.handlers) == 1

    def test_quiet_beats_level(self, lib_logger: logging.Logger) -> None:
        """quiet wins over an explicit level."""
        configure_logging(level=logging.DEBUG, quiet=True)
        assert lib_logger.level == logging.ERROR

    def test_explicit_level(self, lib_logger: logging.Logger) -> None:
        configure_logging(level="DEBUG")
        assert lib_logger.level == logging.DEBUG

    def test_unknown_level_rejected(self, lib_logger: logging.Logger) -> None:
        """Unknown level names raise."""
        with pytest.raises(ValueError):
            configure_logging(level="LOUD")

    def test_records_reach_stderr(self, lib_logger: logging.Logger, capsys: pytest.CaptureFixture[str]) -> None:
        """Module loggers propagate to the CLI handler."""
        configure_logging(level=logging.INFO)
        get_logger("portaqemu.vm_manager").info("VM started")
        err = capsys.readouterr().err
        assert "INFO" in err
        assert "portaqemu.vm_manager - VM started" in err

    def test_extra_fields_appended(self, lib_logger: logging.Logger, capsys: pytest.CaptureFixture[str]) -> None:
        """Structured extra= fields are rendered as key=value."""
        configure_logging(level=logging.INFO)
        get_logger("portaqemu.launcher").info("QEMU spawned", extra={"pid": 4242, "accel": "kvm"})
        err = capsys.readouterr().err
        assert "QEMU spawned pid=4242 accel=kvm" in err

    def test_no_trailing_space_without_extras(
        self, lib_logger: logging.Logger, capsys: pytest.CaptureFixture[str]
    ) -> None:
        configure_logging(level=logging.INFO)
        get_logger("portaqemu.cli").info("plain")
        assert capsys.readouterr().err.rstrip("\n").endswith("portaqemu.cli - plain")
