"""portaqemu: single-VM QEMU lifecycle controller.

Starts, stops and tracks one QEMU virtual machine across independent,
short-lived command invocations. State lives on disk under a controller
root; a PID lock file serializes mutating commands.

Quick Start:
    ```python
    from pathlib import Path

    from portaqemu import ControllerPaths, VmManager, load_settings

    settings = load_settings(root=Path("~/PortaQEMU").expanduser())
    manager = VmManager(ControllerPaths(settings.root), settings)
    manager.up(wait=True)
    print(manager.status())
    manager.down()
    ```

Acceleration:
    With the default "auto" preference, the host's hardware accelerator
    (KVM, HVF or WHPX) is tried first. If QEMU exits within the grace period
    blaming the accelerator, the VM is relaunched once with TCG.

Requirements:
    - qemu-system-x86_64 in <root>/bin/, <root>/bin/qemu/ or on PATH
    - A disk image (default <root>/vm/disk.qcow2)
    - Python 3.12+
"""

from portaqemu.exceptions import (
    AccelError,
    AccelUnavailableError,
    AlreadyLockedError,
    ConfigError,
    LaunchError,
    LockError,
    NoAccelAvailableError,
    PortaQemuError,
    PortInUseError,
    QemuExitedError,
    QemuNotFoundError,
    ReadinessTimeoutError,
    SpawnError,
    SshClientError,
    StateError,
    StateParseError,
    StateWriteError,
)
from portaqemu.models import (
    AccelAvailability,
    AccelChoice,
    AccelPreference,
    PortForward,
    ResolvedVmConfig,
    VmState,
    VmStatus,
)
from portaqemu.paths import ControllerPaths
from portaqemu.settings import Settings, load_settings, resolve_vm_config
from portaqemu.vm_manager import DownResult, UpResult, VmManager

__all__ = [
    "AccelAvailability",
    "AccelChoice",
    "AccelError",
    "AccelPreference",
    "AccelUnavailableError",
    "AlreadyLockedError",
    "ConfigError",
    "ControllerPaths",
    "DownResult",
    "LaunchError",
    "LockError",
    "NoAccelAvailableError",
    "PortForward",
    "PortInUseError",
    "PortaQemuError",
    "QemuExitedError",
    "QemuNotFoundError",
    "ReadinessTimeoutError",
    "ResolvedVmConfig",
    "Settings",
    "SpawnError",
    "SshClientError",
    "StateError",
    "StateParseError",
    "StateWriteError",
    "UpResult",
    "VmManager",
    "VmState",
    "VmStatus",
    "load_settings",
    "resolve_vm_config",
]

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("portaqemu")
except PackageNotFoundError:
    __version__ = "0.0.0.dev0"
