"""Environment diagnostics for the `doctor` command.

Each check reports pass, warn or fail with an optional hint. Checks never
raise for the condition they diagnose.
"""

from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from portaqemu._logging import get_logger
from portaqemu.exceptions import AccelError, QemuNotFoundError
from portaqemu.paths import ControllerPaths
from portaqemu.platform_utils import HostOS
from portaqemu.port_probe import is_port_available
from portaqemu.settings import Settings, resolve_disk_path, resolve_identity_file
from portaqemu.system_probes import choose_accel, detect_availability, locate_qemu

logger = get_logger(__name__)


class CheckStatus(str, Enum):
    PASS = "pass"
    WARN = "warn"
    FAIL = "fail"


class CheckResult(BaseModel):
    """Outcome of one diagnostic check."""

    model_config = ConfigDict(frozen=True)

    id: str
    status: CheckStatus
    message: str
    hint: str | None = None


class DoctorSummary(BaseModel):
    passed: int = Field(serialization_alias="pass")
    warned: int = Field(serialization_alias="warn")
    failed: int = Field(serialization_alias="fail")


class DoctorReport(BaseModel):
    checks: list[CheckResult]

    @property
    def summary(self) -> DoctorSummary:
        return DoctorSummary(
            passed=sum(c.status == CheckStatus.PASS for c in self.checks),
            warned=sum(c.status == CheckStatus.WARN for c in self.checks),
            failed=sum(c.status == CheckStatus.FAIL for c in self.checks),
        )

    @property
    def ok(self) -> bool:
        return self.summary.failed == 0


def check_qemu_binary(qemu_bin: Path | None, error: QemuNotFoundError | None) -> CheckResult:
    if qemu_bin is not None:
        return CheckResult(id="qemu_binary", status=CheckStatus.PASS, message=f"QEMU found: {qemu_bin}")
    return CheckResult(
        id="qemu_binary",
        status=CheckStatus.FAIL,
        message=error.message if error else "QEMU binary not found",
        hint="Install QEMU, place it in <root>/bin/, or set PORTAQEMU_QEMU_BIN",
    )


def check_disk_image(disk: Path) -> CheckResult:
    if disk.is_file():
        return CheckResult(id="disk_image", status=CheckStatus.PASS, message=f"Disk image found: {disk}")
    return CheckResult(
        id="disk_image",
        status=CheckStatus.FAIL,
        message=f"Disk image not found: {disk}",
        hint="Create or download a VM disk image, or set PORTAQEMU_DISK",
    )


def check_acceleration(settings: Settings, qemu_bin: Path | None, host_os: HostOS | None) -> CheckResult:
    if qemu_bin is None:
        return CheckResult(
            id="acceleration",
            status=CheckStatus.FAIL,
            message="Cannot check acceleration: QEMU not found",
        )

    availability = detect_availability(qemu_bin, host_os)
    try:
        accel = choose_accel(settings.accel, availability)
    except AccelError as e:
        return CheckResult(
            id="acceleration",
            status=CheckStatus.WARN,
            message=f"Preferred acceleration not available: {e.message}",
            hint=f"Enable {availability.hardware_backend.value} on this host or set PORTAQEMU_ACCEL=auto",
        )
    return CheckResult(
        id="acceleration",
        status=CheckStatus.PASS,
        message=f"Acceleration available: {accel.value.upper()}",
    )


def check_ports(ports: list[int]) -> CheckResult:
    in_use: list[int] = []
    for port in ports:
        try:
            if not is_port_available(port):
                in_use.append(port)
        except OSError as e:
            logger.debug("Port probe failed", extra={"port": port, "error": str(e)})

    if not in_use:
        return CheckResult(id="ports", status=CheckStatus.PASS, message="All required ports are available")
    return CheckResult(
        id="ports",
        status=CheckStatus.WARN,
        message=f"Ports in use: {', '.join(str(p) for p in in_use)}",
        hint="Stop conflicting services or change the port configuration (a running VM holds its own ports)",
    )


def check_ssh_key(identity_file: Path) -> CheckResult:
    if identity_file.is_file():
        return CheckResult(id="ssh_key", status=CheckStatus.PASS, message=f"SSH key found: {identity_file}")
    return CheckResult(
        id="ssh_key",
        status=CheckStatus.WARN,
        message=f"SSH key not found: {identity_file}",
        hint="Generate a key pair with: ssh-keygen -t ed25519, or set PORTAQEMU_IDENTITY_FILE",
    )


def run_checks(settings: Settings, paths: ControllerPaths, host_os: HostOS | None = None) -> DoctorReport:
    """Run all diagnostics in display order."""
    qemu_bin: Path | None = None
    qemu_error: QemuNotFoundError | None = None
    try:
        qemu_bin = locate_qemu(paths.root, host_os, settings.qemu_bin)
    except QemuNotFoundError as e:
        qemu_error = e

    ports = [settings.ssh_host_port, *(fwd.host for fwd in settings.forwards)]
    return DoctorReport(
        checks=[
            check_qemu_binary(qemu_bin, qemu_error),
            check_disk_image(resolve_disk_path(settings, paths)),
            check_acceleration(settings, qemu_bin, host_os),
            check_ports(ports),
            check_ssh_key(resolve_identity_file(settings, paths)),
        ]
    )
