"""QEMU process spawning and the startup grace-period watch.

The spawned process is detached from the controller's standard streams and
session, and outlives the invocation. No supervising thread is kept: later
invocations find QEMU again through the persisted PID.
"""

import subprocess  # noqa: S404
import time
from dataclasses import dataclass, field
from pathlib import Path

from portaqemu import constants
from portaqemu._logging import get_logger
from portaqemu.exceptions import QemuExitedError, SpawnError
from portaqemu.models import AccelChoice
from portaqemu.platform_utils import HostOS, detect_host_os
from portaqemu.system_probes import is_accel_failure_output

logger = get_logger(__name__)


@dataclass
class RunningProcess:
    """A QEMU process spawned by this invocation.

    Only valid while the spawning invocation runs. Afterwards the process is
    tracked solely by its PID.

    Attributes:
        pid: Native process ID
        cmd: Full command it was started with
        accel: Backend on its command line
        handle: Popen handle (None when reconstructed from a bare PID)
    """

    pid: int
    cmd: list[str]
    accel: AccelChoice
    handle: subprocess.Popen[bytes] | None = field(default=None, repr=False)

    def poll(self) -> int | None:
        """Exit status if the process has exited, else None."""
        if self.handle is None:
            return None
        return self.handle.poll()

    def reap(self, timeout: float = 1.0) -> None:
        """Collect the exit status of an exited child so it leaves no zombie."""
        if self.handle is None:
            return
        try:
            self.handle.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            logger.debug("Process not reaped within timeout", extra={"pid": self.pid})


def _detach_kwargs(host_os: HostOS) -> dict[str, object]:
    """Popen kwargs that decouple the child from the controller's session."""
    if host_os == HostOS.WINDOWS:
        return {
            "creationflags": subprocess.DETACHED_PROCESS | subprocess.CREATE_NEW_PROCESS_GROUP,  # type: ignore[attr-defined]
        }
    # New session: no controlling terminal, immune to the shell's Ctrl+C
    return {"start_new_session": True}


def spawn_qemu(
    cmd: list[str],
    log_file: Path,
    accel: AccelChoice,
    host_os: HostOS | None = None,
) -> RunningProcess:
    """Start QEMU with stdout and stderr merged into a fresh log file.

    Returns immediately after the process is created.

    Args:
        cmd: Full command (binary first), from build_qemu_cmd()
        log_file: Log path; parent is created, file is truncated
        accel: Backend on the command line
        host_os: Host OS (detected if None)

    Raises:
        SpawnError: Log file could not be opened or the OS refused to start the process
    """
    try:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        with log_file.open("wb") as log:
            handle = subprocess.Popen(  # noqa: S603
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=log,
                stderr=subprocess.STDOUT,
                close_fds=True,
                **_detach_kwargs(host_os or detect_host_os()),  # type: ignore[arg-type]
            )
    except OSError as e:
        raise SpawnError(
            f"Failed to launch QEMU: {e}",
            {"qemu_bin": cmd[0] if cmd else None, "log_file": str(log_file)},
        ) from e

    logger.info(
        "QEMU spawned",
        extra={"pid": handle.pid, "accel": accel.value, "log_file": str(log_file)},
    )
    return RunningProcess(pid=handle.pid, cmd=cmd, accel=accel, handle=handle)


def read_log_tail(log_file: Path, max_bytes: int = constants.ACCEL_FAILURE_OUTPUT_MAX_BYTES) -> str:
    """Last max_bytes of a log file, decoded leniently. Missing file reads as ""."""
    try:
        with log_file.open("rb") as f:
            f.seek(0, 2)
            size = f.tell()
            f.seek(max(0, size - max_bytes))
            return f.read().decode(errors="replace")
    except FileNotFoundError:
        return ""


def watch_startup(
    process: RunningProcess,
    log_file: Path,
    *,
    grace_seconds: float = constants.ACCEL_GRACE_PERIOD_SECONDS,
    poll_interval: float = constants.ACCEL_POLL_INTERVAL_SECONDS,
) -> bool:
    """Poll a hardware-accelerated launch through the grace period.

    Args:
        process: Freshly spawned QEMU (must carry a Popen handle)
        log_file: QEMU log, scanned for acceleration-failure output
        grace_seconds: Bounded wait before the backend is accepted
        poll_interval: Exit-status poll interval

    Returns:
        True if QEMU is still running when the grace period ends,
        False if it exited non-zero blaming the accelerator

    Raises:
        QemuExitedError: QEMU exited during the grace period for any other reason
    """
    deadline = time.monotonic() + grace_seconds
    while True:
        exit_code = process.poll()
        if exit_code is not None:
            break
        if time.monotonic() >= deadline:
            logger.debug(
                "QEMU survived startup grace period",
                extra={"pid": process.pid, "accel": process.accel.value, "grace_seconds": grace_seconds},
            )
            return True
        time.sleep(poll_interval)

    output = read_log_tail(log_file)
    if exit_code != 0 and is_accel_failure_output(output, process.accel):
        logger.warning(
            "QEMU exited during startup: accelerator unavailable",
            extra={"pid": process.pid, "accel": process.accel.value, "exit_code": exit_code},
        )
        return False

    last_line = next((line for line in reversed(output.splitlines()) if line.strip()), "")
    message = f"QEMU exited during startup with code {exit_code}"
    if last_line:
        message = f"{message}: {last_line.strip()}"
    raise QemuExitedError(message, exit_code=exit_code, context={"pid": process.pid, "log_file": str(log_file)})
