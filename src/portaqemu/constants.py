"""Constants for portaqemu configuration and limits."""

from typing import Final

# ============================================================================
# Controller Root Layout
# ============================================================================

ROOT_DIR_NAME: Final[str] = "PortaQEMU"
"""Directory name of the controller root under the per-user data directory."""

STATE_FILE_NAME: Final[str] = "state.json"
"""VM state file, stored under <root>/config/."""

LOCK_FILE_NAME: Final[str] = "portaqemu.lock"
"""PID lock file, colocated with the state file."""

LOG_FILE_NAME: Final[str] = "qemu.log"
"""Merged QEMU stdout/stderr log, stored under <root>/logs/ and truncated on each launch."""

DEFAULT_DISK_RELPATH: Final[str] = "vm/disk.qcow2"
"""Default disk image location relative to the controller root."""

DEFAULT_IDENTITY_RELPATH: Final[str] = "config/ssh/id_ed25519"
"""Default SSH private key location relative to the controller root."""

# ============================================================================
# VM Defaults
# ============================================================================

DEFAULT_VM_NAME: Final[str] = "devvm"
DEFAULT_MEMORY_MB: Final[int] = 4096
DEFAULT_CPUS: Final[int] = 4
DEFAULT_SSH_HOST_PORT: Final[int] = 2222
DEFAULT_SSH_USER: Final[str] = "dev"

SSH_GUEST_PORT: Final[int] = 22
"""Guest-side port of the mandatory SSH forward."""

LOOPBACK_HOST: Final[str] = "127.0.0.1"
"""Host address used for port checks, readiness probes and hostfwd rules."""

MIN_PORT: Final[int] = 1
MAX_PORT: Final[int] = 65535

# ============================================================================
# QEMU Launch
# ============================================================================

QEMU_BINARY_NAME: Final[str] = "qemu-system-x86_64"
"""QEMU system emulator name (".exe" is appended on Windows)."""

MACHINE_TYPE: Final[str] = "q35"

SOFTWARE_CPU_MODEL: Final[str] = "qemu64"
"""Fixed generic CPU model for TCG so software-mode guests see a reproducible CPU."""

HARDWARE_CPU_MODEL: Final[str] = "host"
"""Host CPU passthrough for hardware-accelerated guests."""

RTC_BASE: Final[str] = "base=localtime"

INPUT_DEVICES: Final[tuple[str, ...]] = ("qemu-xhci", "usb-tablet")
"""USB controller + absolute pointer, attached in this order."""

NETDEV_ID: Final[str] = "n0"
NIC_MODEL: Final[str] = "virtio-net-pci"

ACCEL_PROBE_TIMEOUT_SECONDS: Final[float] = 5.0
"""Timeout for `qemu-system-x86_64 -accel help`."""

ACCEL_GRACE_PERIOD_SECONDS: Final[float] = 3.0
"""Window during which an early QEMU exit is attributed to hardware acceleration."""

ACCEL_POLL_INTERVAL_SECONDS: Final[float] = 0.1
"""Exit-status poll interval inside the grace period."""

ACCEL_FAILURE_OUTPUT_MAX_BYTES: Final[int] = 64 * 1024
"""Maximum bytes of the QEMU log scanned for acceleration-failure signatures."""

ACCEL_FAILURE_PHRASES: Final[tuple[str, ...]] = (
    "failed to initialize",
    "could not access",
    "not available",
    "not supported",
)
"""Failure wording that, next to the backend name, blames the accelerator."""

# ============================================================================
# Readiness
# ============================================================================

READINESS_TIMEOUT_SECONDS: Final[float] = 30.0
"""Default time budget for the guest SSH port to accept connections."""

READINESS_POLL_INTERVAL_SECONDS: Final[float] = 0.1
"""Fixed interval between connection attempts."""

READINESS_CONNECT_TIMEOUT_SECONDS: Final[float] = 1.0
"""Per-attempt TCP connect timeout."""
