"""Cross-platform OS detection and process/path capabilities.

Uses psutil's built-in OS detection constants for platform identification.
Everything that differs between operating systems sits behind two small
capabilities, selected once at the entry point:

- ProcessControl: is_alive(pid) / terminate(pid)
- PathResolver: home_dir() / data_dir()

The orchestration code in vm_manager never branches on platform.
"""

import contextlib
import os
from enum import Enum, auto
from functools import cache
from pathlib import Path
from typing import Protocol

import psutil

from portaqemu._logging import get_logger
from portaqemu.models import AccelChoice

logger = get_logger(__name__)

TERMINATE_TIMEOUT_SECONDS = 5.0
KILL_TIMEOUT_SECONDS = 2.0


class HostOS(Enum):
    """Supported host operating systems."""

    LINUX = auto()
    """Linux (KVM acceleration)."""

    MACOS = auto()
    """macOS (HVF acceleration)."""

    WINDOWS = auto()
    """Windows (WHPX acceleration)."""

    UNKNOWN = auto()
    """Unrecognized OS, software emulation only."""


@cache
def detect_host_os() -> HostOS:
    """Detect current host operating system using psutil constants."""
    if psutil.LINUX:
        return HostOS.LINUX
    if psutil.MACOS:
        return HostOS.MACOS
    if psutil.WINDOWS:
        return HostOS.WINDOWS
    return HostOS.UNKNOWN


def hardware_accel_for(host_os: HostOS) -> AccelChoice:
    """Hardware accelerator QEMU uses on the given host.

    Hosts without a known hardware accelerator map to TCG, which makes the
    hardware backend never "available" for them.
    """
    match host_os:
        case HostOS.LINUX:
            return AccelChoice.KVM
        case HostOS.MACOS:
            return AccelChoice.HVF
        case HostOS.WINDOWS:
            return AccelChoice.WHPX
        case _:
            return AccelChoice.TCG


# ============================================================================
# Process control
# ============================================================================


class TerminateResult(Enum):
    """Outcome of ProcessControl.terminate()."""

    REQUESTED = auto()
    """Termination was requested for a live process."""

    NOT_RUNNING = auto()
    """Nothing to do; callers treat this as success."""


class ProcessControl(Protocol):
    """Liveness query and termination keyed solely by PID."""

    def is_alive(self, pid: int) -> bool: ...

    def terminate(self, pid: int) -> TerminateResult: ...


class _PsutilProcessControl:
    """Shared psutil implementation.

    PID reuse is accepted as a best-effort approximation: a recycled PID
    reads as alive.
    """

    def is_alive(self, pid: int) -> bool:
        if pid <= 0:
            return False
        try:
            return psutil.Process(pid).is_running()
        except psutil.NoSuchProcess:
            return False
        except psutil.AccessDenied:
            # Exists but belongs to another user
            return True

    def _request_stop(self, proc: psutil.Process) -> None:
        proc.terminate()

    def terminate(self, pid: int) -> TerminateResult:
        """Stop the process: graceful request, then force kill on timeout.

        Returns:
            TerminateResult.NOT_RUNNING if the PID was not alive,
            TerminateResult.REQUESTED otherwise
        """
        if not self.is_alive(pid):
            return TerminateResult.NOT_RUNNING

        try:
            proc = psutil.Process(pid)
            self._request_stop(proc)
        except psutil.NoSuchProcess:
            # Exited between the liveness check and the signal
            return TerminateResult.NOT_RUNNING

        try:
            # Reaps the process if it is our child
            proc.wait(timeout=TERMINATE_TIMEOUT_SECONDS)
        except psutil.TimeoutExpired:
            logger.warning(
                "Process didn't exit after termination request, force killing",
                extra={"pid": pid, "timeout": TERMINATE_TIMEOUT_SECONDS},
            )
            with contextlib.suppress(psutil.NoSuchProcess):
                proc.kill()
            with contextlib.suppress(psutil.TimeoutExpired, psutil.NoSuchProcess):
                proc.wait(timeout=KILL_TIMEOUT_SECONDS)
        except psutil.NoSuchProcess:
            pass
        return TerminateResult.REQUESTED


class PosixProcessControl(_PsutilProcessControl):
    """Linux/macOS: SIGTERM first, zombies count as dead."""

    def is_alive(self, pid: int) -> bool:
        if not super().is_alive(pid):
            return False
        try:
            return psutil.Process(pid).status() != psutil.STATUS_ZOMBIE
        except psutil.NoSuchProcess:
            return False
        except psutil.AccessDenied:
            return True


class WindowsProcessControl(_PsutilProcessControl):
    """Windows: no signals, TerminateProcess directly."""

    def _request_stop(self, proc: psutil.Process) -> None:
        proc.kill()


def get_process_control(host_os: HostOS | None = None) -> ProcessControl:
    """Select the ProcessControl implementation for the host."""
    if (host_os or detect_host_os()) == HostOS.WINDOWS:
        return WindowsProcessControl()
    return PosixProcessControl()


# ============================================================================
# Path resolution
# ============================================================================


class PathResolver(Protocol):
    """Source of ambient per-user directories (injectable for tests)."""

    def home_dir(self) -> Path: ...

    def data_dir(self) -> Path: ...


class SystemPathResolver:
    """Per-user directories following each platform's convention.

    - Linux: $XDG_DATA_HOME or ~/.local/share
    - macOS: ~/Library/Application Support
    - Windows: %LOCALAPPDATA% or ~/AppData/Local
    """

    def __init__(self, host_os: HostOS | None = None) -> None:
        self.host_os = host_os or detect_host_os()

    def home_dir(self) -> Path:
        return Path.home()

    def data_dir(self) -> Path:
        if self.host_os == HostOS.WINDOWS:
            if local_app_data := os.environ.get("LOCALAPPDATA"):
                return Path(local_app_data)
            return self.home_dir() / "AppData" / "Local"
        if self.host_os == HostOS.MACOS:
            return self.home_dir() / "Library" / "Application Support"
        if xdg_data := os.environ.get("XDG_DATA_HOME"):
            return Path(xdg_data)
        return self.home_dir() / ".local" / "share"
