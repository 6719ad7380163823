"""Crash-safe persistence of the managed VM's state.

The state file is the single shared mutable resource between invocations.
Writes go to a temporary file in the target's directory, are flushed and
fsynced, then renamed over the target. Readers therefore see either the old
or the new document in full, and a crash before the rename leaves the old
state intact.
"""

import contextlib
import os
from pathlib import Path

from pydantic import ValidationError

from portaqemu._logging import get_logger
from portaqemu.exceptions import StateParseError, StateWriteError
from portaqemu.models import VmState

logger = get_logger(__name__)


def load_state(path: Path) -> VmState:
    """Load persisted state.

    Args:
        path: State file path

    Returns:
        Parsed state, or the default (not running) state if the file is absent

    Raises:
        StateParseError: File exists but is not a valid state document
    """
    try:
        raw = path.read_bytes()
    except FileNotFoundError:
        return VmState()
    except OSError as e:
        raise StateParseError(f"Cannot read state file {path}: {e}", {"path": str(path)}) from e

    try:
        return VmState.model_validate_json(raw)
    except ValidationError as e:
        raise StateParseError(
            f"Corrupted state file {path}; fix or delete it",
            {"path": str(path), "errors": e.error_count()},
        ) from e


def atomic_write_bytes(path: Path, data: bytes) -> None:
    """Write data to path via same-directory temp file + fsync + rename.

    Raises:
        OSError: Any step failed; the temp file is removed and path is untouched
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(f".{path.name}.tmp")
    try:
        with tmp.open("wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        tmp.replace(path)
    except OSError:
        with contextlib.suppress(OSError):
            tmp.unlink()
        raise


def save_state(path: Path, state: VmState) -> None:
    """Persist state atomically.

    Raises:
        StateWriteError: Temp write, fsync or rename failed (prior file untouched)
    """
    data = state.model_dump_json(indent=2).encode()
    try:
        atomic_write_bytes(path, data)
    except OSError as e:
        raise StateWriteError(f"Failed to write state file {path}: {e}", {"path": str(path)}) from e
    logger.debug(
        "State saved",
        extra={"path": str(path), "running": state.running, "qemu_pid": state.qemu_pid},
    )
