"""VM lifecycle orchestration: up, down and status.

Every invocation is a fresh process. Mutating commands hold the PID lock for
their whole read-modify-write span; status reads without it.

Start flow:
    lock → load state → (already running? done) → resolve config →
    port check → locate QEMU → detect + choose accelerator → build →
    spawn (+ hardware→TCG rollback) → persist → optional readiness wait → unlock

Architecture:
- Platform differences live behind ProcessControl/PathResolver, injected here
- Accelerator rollback: with preference AUTO and a hardware backend chosen,
  the launch itself is the capability probe. An early non-zero exit blaming
  the accelerator triggers exactly one relaunch on TCG.
"""

from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

from portaqemu import constants
from portaqemu._logging import get_logger
from portaqemu.exceptions import LaunchError, StateError, StateWriteError
from portaqemu.launcher import RunningProcess, spawn_qemu, watch_startup
from portaqemu.lock import PidLock
from portaqemu.models import AccelChoice, AccelPreference, ResolvedVmConfig, VmState, VmStatus
from portaqemu.paths import ControllerPaths
from portaqemu.platform_utils import HostOS, ProcessControl, TerminateResult, detect_host_os, get_process_control
from portaqemu.port_probe import ensure_ports_available, wait_until_connectable
from portaqemu.qemu_cmd import build_qemu_cmd, hash_qemu_args
from portaqemu.settings import Settings, load_settings, resolve_vm_config
from portaqemu.state_store import load_state, save_state
from portaqemu.system_probes import choose_accel, detect_availability, locate_qemu

logger = get_logger(__name__)


@dataclass
class UpResult:
    """Outcome of VmManager.up().

    Attributes:
        pid: QEMU process ID
        already_running: True if a live VM was found and nothing was launched
        accel: Backend of the new launch (None when already running)
        fell_back: True if hardware acceleration failed and TCG was used
        ssh_host_port: Host port forwarded to guest SSH (None when already running)
    """

    pid: int
    already_running: bool = False
    accel: AccelChoice | None = None
    fell_back: bool = False
    ssh_host_port: int | None = None


@dataclass
class DownResult:
    """Outcome of VmManager.down()."""

    was_running: bool
    pid: int | None = None
    terminated: bool = False


class VmManager:
    """Controls the single VM recorded under a controller root.

    Usage:
        manager = VmManager(paths, settings)  # settings optional for down/status
        result = manager.up(wait=True)
        manager.status()
        manager.down()
    """

    def __init__(
        self,
        paths: ControllerPaths,
        settings: Settings | None = None,
        *,
        process_control: ProcessControl | None = None,
        host_os: HostOS | None = None,
    ) -> None:
        self.paths = paths
        self._settings = settings
        self.host_os = host_os or detect_host_os()
        self.process_control = process_control or get_process_control(self.host_os)

    @property
    def settings(self) -> Settings:
        """VM settings, loaded from the environment on first use.

        down() and status() never read them.
        """
        if self._settings is None:
            self._settings = load_settings(root=self.paths.root)
        return self._settings

    def _lock(self) -> PidLock:
        return PidLock(self.paths.lock_file, self.process_control)

    # =========================================================================
    # Commands
    # =========================================================================

    def up(
        self,
        *,
        wait: bool = True,
        timeout: float | None = None,
        on_started: Callable[[UpResult], None] | None = None,
    ) -> UpResult:
        """Start the VM unless a live one is already recorded.

        Args:
            wait: Block until the guest SSH port accepts connections
            timeout: Readiness budget (defaults to settings.wait_timeout_seconds)
            on_started: Called after state is persisted, before the readiness wait

        Returns:
            UpResult for the running VM

        Raises:
            AlreadyLockedError: Another invocation holds the lock
            ConfigError: Invalid configuration or missing disk image
            PortInUseError: A host port is occupied
            QemuNotFoundError: QEMU binary not found
            AccelError: Preferred accelerator unavailable
            LaunchError: QEMU could not be started (recorded as last_error)
            StateError: State file unreadable or unwritable
            ReadinessTimeoutError: Guest not reachable in time (VM keeps running)
        """
        with self._lock():
            state = load_state(self.paths.state_file)
            if state.running and state.qemu_pid is not None:
                if self.process_control.is_alive(state.qemu_pid):
                    logger.info("VM already running", extra={"pid": state.qemu_pid})
                    return UpResult(pid=state.qemu_pid, already_running=True)
                logger.warning(
                    "Recorded QEMU process is gone, starting a new one",
                    extra={"stale_pid": state.qemu_pid},
                )

            config = resolve_vm_config(self.settings, self.paths)
            ensure_ports_available(config.host_ports)
            qemu_bin = locate_qemu(self.paths.root, self.host_os, self.settings.qemu_bin)
            availability = detect_availability(qemu_bin, self.host_os)
            accel = choose_accel(config.accel, availability)

            try:
                process, fell_back = self._launch(config, qemu_bin, accel)
            except LaunchError as e:
                self._record_launch_failure(state, e)
                raise

            new_state = VmState(
                running=True,
                qemu_pid=process.pid,
                started_at=datetime.now(UTC),
                qemu_args_hash=hash_qemu_args(process.cmd),
                last_error=None,
            )
            try:
                save_state(self.paths.state_file, new_state)
            except StateWriteError:
                # Untracked QEMU would hold the ports and the disk image
                self.process_control.terminate(process.pid)
                raise

            result = UpResult(
                pid=process.pid,
                accel=process.accel,
                fell_back=fell_back,
                ssh_host_port=config.ssh_host_port,
            )
            logger.info(
                "VM started",
                extra={"pid": process.pid, "accel": process.accel.value, "fell_back": fell_back},
            )
            if on_started is not None:
                on_started(result)

            if wait:
                wait_until_connectable(
                    constants.LOOPBACK_HOST,
                    config.ssh_host_port,
                    timeout if timeout is not None else self.settings.wait_timeout_seconds,
                )
            return result

    def down(self) -> DownResult:
        """Stop the VM if the state says it is running.

        No-op (no state write) when nothing is recorded as running. Otherwise
        terminates the process if still alive and records running=false.
        started_at, qemu_args_hash and last_error are preserved.

        Raises:
            AlreadyLockedError: Another invocation holds the lock
            StateError: State file unreadable or unwritable
        """
        with self._lock():
            state = load_state(self.paths.state_file)
            if not state.running:
                return DownResult(was_running=False)

            pid = state.qemu_pid
            terminated = False
            if pid is not None:
                terminated = self.process_control.terminate(pid) == TerminateResult.REQUESTED
                if not terminated:
                    logger.info("Recorded QEMU process was not running", extra={"pid": pid})

            save_state(
                self.paths.state_file,
                state.model_copy(update={"running": False, "qemu_pid": None}),
            )
            return DownResult(was_running=True, pid=pid, terminated=terminated)

    def status(self) -> VmStatus:
        """Report the VM status, re-verifying the recorded PID's liveness.

        Reads without taking the lock.

        Raises:
            StateParseError: State file is corrupted
        """
        state = load_state(self.paths.state_file)
        running = state.qemu_pid is not None and self.process_control.is_alive(state.qemu_pid)
        return VmStatus(running=running, pid=state.qemu_pid, started_at=state.started_at)

    # =========================================================================
    # Launch
    # =========================================================================

    def _spawn(self, config: ResolvedVmConfig, qemu_bin: Path, accel: AccelChoice) -> RunningProcess:
        cmd = build_qemu_cmd(config, qemu_bin, accel)
        logger.debug("QEMU command", extra={"cmd": cmd})
        return spawn_qemu(cmd, self.paths.log_file, accel, self.host_os)

    def _launch(
        self,
        config: ResolvedVmConfig,
        qemu_bin: Path,
        accel: AccelChoice,
    ) -> tuple[RunningProcess, bool]:
        """Spawn QEMU, rolling back hardware→TCG once for AUTO preference.

        Returns:
            (process, fell_back)

        Raises:
            SpawnError: OS refused to start QEMU
            QemuExitedError: Hardware launch died for a non-accelerator reason
        """
        process = self._spawn(config, qemu_bin, accel)
        if config.accel != AccelPreference.AUTO or not accel.is_hardware:
            return process, False

        if watch_startup(process, self.paths.log_file, grace_seconds=self.settings.accel_grace_seconds):
            return process, False

        # Exited already: collect it before relaunching
        process.reap()
        logger.warning(
            "Hardware acceleration failed, retrying with TCG",
            extra={"accel": accel.value, "failed_pid": process.pid},
        )
        return self._spawn(config, qemu_bin, AccelChoice.TCG), True

    def _record_launch_failure(self, state: VmState, error: LaunchError) -> None:
        failed = state.model_copy(update={"running": False, "qemu_pid": None, "last_error": error.message})
        try:
            save_state(self.paths.state_file, failed)
        except StateError as e:
            logger.warning(
                "Failed to record launch failure",
                extra={"error": str(e), "launch_error": error.message},
            )
