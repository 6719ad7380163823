"""PID-file mutual exclusion across controller invocations.

Each invocation is a fresh process, so the only coordination primitive is a
lock file holding the decimal PID of the current holder. A lock file naming
a dead (or unparsable) PID is left over from a killed invocation and is
reclaimed on the next acquire.

Usage:
    with PidLock(paths.lock_file, process_control):
        state = load_state(paths.state_file)
        ...
        save_state(paths.state_file, state)

The lock covers the whole read-modify-write span of a mutating command.
"""

import contextlib
import os
from pathlib import Path
from types import TracebackType
from typing import Self

from portaqemu._logging import get_logger
from portaqemu.exceptions import AlreadyLockedError, LockError
from portaqemu.platform_utils import ProcessControl

logger = get_logger(__name__)


def _parse_pid(content: bytes) -> int | None:
    try:
        return int(content)
    except ValueError:
        return None


def read_lock_pid(path: Path) -> int | None:
    """PID recorded in a lock file, or None if missing or unparsable."""
    try:
        return _parse_pid(path.read_bytes())
    except FileNotFoundError:
        return None


class PidLock:
    """Context manager holding the controller lock file.

    Acquisition never blocks: a live holder raises AlreadyLockedError
    immediately.
    """

    def __init__(self, path: Path, process_control: ProcessControl) -> None:
        self.path = path
        self._process_control = process_control
        self._held = False

    def acquire(self) -> None:
        """Create the lock file with our PID.

        The PID is written to a private temp file first and hard-linked into
        place, so the lock file is never observed empty or half-written.

        Raises:
            AlreadyLockedError: Lock file names a live process
            LockError: Lock file could not be created
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._reclaim_stale()

        pid = os.getpid()
        tmp = self.path.with_name(f"{self.path.name}.{pid}.tmp")
        try:
            fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o644)
            try:
                os.write(fd, str(pid).encode())
                os.fsync(fd)
            finally:
                os.close(fd)
            # Fails with FileExistsError if another invocation got there first
            os.link(tmp, self.path)
        except FileExistsError as e:
            raise self._locked_error(read_lock_pid(self.path)) from e
        except OSError as e:
            raise LockError(f"Cannot create lock file {self.path}: {e}", {"lock_file": str(self.path)}) from e
        finally:
            with contextlib.suppress(OSError):
                tmp.unlink()

        self._held = True
        logger.debug("Lock acquired", extra={"lock_file": str(self.path), "pid": pid})

    def _locked_error(self, holder: int | None) -> AlreadyLockedError:
        return AlreadyLockedError(
            f"Another portaqemu invocation holds the lock (PID {holder})",
            holder_pid=holder or 0,
            context={"lock_file": str(self.path)},
        )

    def _reclaim_stale(self) -> None:
        """Remove a lock file whose holder is dead.

        The file is first renamed to a name private to this process, then
        re-read. It is deleted only if it still carries the content judged
        stale; a lock re-created by a concurrent reclaimer in between is put
        back and reported as held.
        """
        try:
            stale_content = self.path.read_bytes()
        except FileNotFoundError:
            return

        holder = _parse_pid(stale_content)
        if holder is not None and self._process_control.is_alive(holder):
            raise self._locked_error(holder)

        aside = self.path.with_name(f"{self.path.name}.stale-{os.getpid()}")
        try:
            os.replace(self.path, aside)
        except FileNotFoundError:
            # Another invocation reclaimed it first; the link in acquire() decides
            return

        moved_content = aside.read_bytes()
        if moved_content == stale_content:
            logger.debug(
                "Reclaimed stale lock file",
                extra={"lock_file": str(self.path), "stale_pid": holder},
            )
            aside.unlink()
            return

        try:
            os.link(aside, self.path)
        except FileExistsError:
            logger.warning(
                "Concurrent lock holder displaced during stale reclaim",
                extra={"lock_file": str(self.path), "displaced_pid": _parse_pid(moved_content)},
            )
        finally:
            aside.unlink()
        raise self._locked_error(_parse_pid(moved_content))

    def release(self) -> None:
        """Delete the lock file. Safe to call more than once."""
        if not self._held:
            return
        self._held = False
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            # Next acquire reclaims it through the liveness check
            logger.warning(
                "Failed to remove lock file",
                extra={"lock_file": str(self.path), "error": str(e)},
            )

    @property
    def held(self) -> bool:
        return self._held

    def __enter__(self) -> Self:
        self.acquire()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.release()
