"""Logging setup shared by the library and the CLI.

The `portaqemu` logger only carries a NullHandler until the CLI calls
configure_logging(). Embedding applications keep full control over
handlers; PORTAQEMU_LOG_LEVEL still sets the level at import time.

CLI records go to stderr, dimmed, with the structured fields passed via
`extra=` appended as key=value pairs:

    WARNING [2026-02-25 10:02:54] portaqemu.vm_manager - Hardware acceleration failed, retrying with TCG accel=kvm failed_pid=4242

Records are written synchronously. Each invocation exits shortly after
spawning QEMU, and nothing may be lost at exit.
"""

import logging
import os

import click

LIBRARY_LOGGER_NAME: str = "portaqemu"

logging.getLogger(LIBRARY_LOGGER_NAME).addHandler(logging.NullHandler())

# e.g. PORTAQEMU_LOG_LEVEL=DEBUG
_env_level = logging.getLevelNamesMapping().get(os.environ.get("PORTAQEMU_LOG_LEVEL", "").strip().upper())
if _env_level:  # NOTSET and unknown names leave the level alone
    logging.getLogger(LIBRARY_LOGGER_NAME).setLevel(_env_level)

_FMT = "%(levelname)s [%(asctime)s] %(name)s - %(message)s"
_DATEFMT = "%Y-%m-%d %H:%M:%S"

# Attributes every LogRecord has; anything else came from `extra=`
_RECORD_ATTRS = frozenset(logging.LogRecord("", 0, "", 0, "", None, None).__dict__) | {"message", "asctime"}


class _ExtraFormatter(logging.Formatter):
    """Standard format followed by the record's `extra` fields."""

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        extras = [f"{key}={value}" for key, value in record.__dict__.items() if key not in _RECORD_ATTRS]
        return f"{line} {' '.join(extras)}" if extras else line


class _ClickHandler(logging.Handler):
    """Emits records on stderr through click.echo, dimmed.

    click drops the ANSI styling itself when stderr is not a terminal.
    """

    def __init__(self) -> None:
        super().__init__()
        self.setFormatter(_ExtraFormatter(fmt=_FMT, datefmt=_DATEFMT))

    def emit(self, record: logging.LogRecord) -> None:
        try:
            click.echo(click.style(self.format(record), dim=True), err=True)
        except Exception:  # noqa: BLE001
            self.handleError(record)


def get_logger(name: str) -> logging.Logger:
    """Module logger under the `portaqemu` hierarchy (pass __name__)."""
    return logging.getLogger(name)


def configure_logging(
    *,
    level: int | str | None = None,
    quiet: bool = False,
) -> None:
    """Send library logs to stderr for the CLI.

    Installs the click handler once, however often it is called.

    Args:
        level: Explicit level (int or name); beats PORTAQEMU_LOG_LEVEL.
            Unknown names raise ValueError.
        quiet: Only ERROR and above; beats level.
    """
    lib_logger = logging.getLogger(LIBRARY_LOGGER_NAME)

    if not any(isinstance(h, _ClickHandler) for h in lib_logger.handlers):
        lib_logger.addHandler(_ClickHandler())

    if quiet:
        lib_logger.setLevel(logging.ERROR)
    elif level is not None:
        lib_logger.setLevel(level)
    elif lib_logger.level == logging.NOTSET:
        lib_logger.setLevel(logging.WARNING)
