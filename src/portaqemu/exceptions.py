"""Exception hierarchy for portaqemu.

All exceptions inherit from PortaQemuError base class.

Hierarchy:
    PortaQemuError (base)
    ├── LockError
    │   └── AlreadyLockedError        ← another invocation holds the lock
    ├── AccelError
    │   ├── AccelUnavailableError     ← explicit accelerator preference unmet
    │   └── NoAccelAvailableError     ← no accelerator at all
    ├── ConfigError                   ← invalid resolved VM configuration
    ├── QemuNotFoundError             ← QEMU binary could not be located
    ├── PortInUseError                ← host port occupied before launch
    ├── ReadinessTimeoutError         ← guest service not reachable in time
    ├── SshClientError                ← ssh client could not be started
    ├── LaunchError
    │   ├── SpawnError                ← OS failed to create the QEMU process
    │   └── QemuExitedError           ← QEMU died during startup (non-accel cause)
    └── StateError
        ├── StateParseError           ← corrupted state file
        └── StateWriteError           ← atomic write failed, prior file intact
"""

from __future__ import annotations

from typing import Any


class PortaQemuError(Exception):
    """Base exception for all controller errors with structured context.

    Attributes:
        message: Human-readable error message
        context: Dictionary of structured error context for logging/debugging
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}


# =============================================================================
# Locking
# =============================================================================


class LockError(PortaQemuError):
    """Lock file could not be created or inspected."""


class AlreadyLockedError(LockError):
    """Another live invocation holds the controller lock.

    Raised immediately, never retried: a second mutating invocation fails
    fast rather than queueing behind the first.

    Attributes:
        holder_pid: PID recorded in the lock file
    """

    def __init__(self, message: str, holder_pid: int, context: dict[str, Any] | None = None):
        ctx = context or {}
        ctx.update({"holder_pid": holder_pid})
        super().__init__(message, ctx)
        self.holder_pid = holder_pid


# =============================================================================
# Acceleration
# =============================================================================


class AccelError(PortaQemuError):
    """Accelerator negotiation failed."""


class AccelUnavailableError(AccelError):
    """The explicitly preferred accelerator is not available.

    There is no automatic substitution for an explicit preference.

    Attributes:
        backend: "hardware" or "software"
    """

    def __init__(self, backend: str, context: dict[str, Any] | None = None):
        ctx = context or {}
        ctx.update({"backend": backend})
        super().__init__(f"{backend} acceleration not available", ctx)
        self.backend = backend


class NoAccelAvailableError(AccelError):
    """Neither hardware nor software acceleration is available."""


# =============================================================================
# Configuration and environment
# =============================================================================


class ConfigError(PortaQemuError):
    """Resolved VM configuration is invalid (bad sizes, ports, missing disk)."""


class QemuNotFoundError(PortaQemuError):
    """QEMU executable not found in the controller root or on PATH."""


class PortInUseError(PortaQemuError):
    """A host port required by the VM is already bound.

    Raised before any process is spawned.

    Attributes:
        port: First occupied port found
    """

    def __init__(self, port: int, context: dict[str, Any] | None = None):
        ctx = context or {}
        ctx.update({"port": port})
        super().__init__(f"Port {port} is already in use", ctx)
        self.port = port


class ReadinessTimeoutError(PortaQemuError):
    """Guest service did not accept connections within the timeout.

    Non-fatal for the VM lifecycle: the process keeps running and the
    persisted state is left unchanged.
    """

    def __init__(self, host: str, port: int, timeout: float):
        super().__init__(
            f"Timeout waiting for {host}:{port} to accept connections after {timeout}s",
            {"host": host, "port": port, "timeout": timeout},
        )
        self.host = host
        self.port = port
        self.timeout = timeout


class SshClientError(PortaQemuError):
    """The ssh client could not be started."""


# =============================================================================
# Launch
# =============================================================================


class LaunchError(PortaQemuError):
    """QEMU launch failed."""


class SpawnError(LaunchError):
    """The operating system failed to create the QEMU process."""


class QemuExitedError(LaunchError):
    """QEMU exited during the startup grace period for a non-accelerator reason.

    Attributes:
        exit_code: Process exit status
    """

    def __init__(self, message: str, exit_code: int, context: dict[str, Any] | None = None):
        ctx = context or {}
        ctx.update({"exit_code": exit_code})
        super().__init__(message, ctx)
        self.exit_code = exit_code


# =============================================================================
# State persistence
# =============================================================================


class StateError(PortaQemuError):
    """State file could not be read or written."""


class StateParseError(StateError):
    """State file exists but is not a valid state document.

    Never guessed at or auto-repaired.
    """


class StateWriteError(StateError):
    """Atomic state write failed; the previous state file is untouched."""
