"""Accelerator negotiation and QEMU binary discovery.

Detection asks the QEMU binary itself (`-accel help`) which accelerators it
was built with. TCG is always reported available: it is the universal
fallback, whatever the probe says.
"""

import shutil
import subprocess  # noqa: S404
from pathlib import Path

from portaqemu import constants
from portaqemu._logging import get_logger
from portaqemu.exceptions import AccelUnavailableError, NoAccelAvailableError, QemuNotFoundError
from portaqemu.models import AccelAvailability, AccelChoice, AccelPreference
from portaqemu.platform_utils import HostOS, detect_host_os, hardware_accel_for

logger = get_logger(__name__)


def qemu_executable_name(host_os: HostOS | None = None) -> str:
    """QEMU system emulator file name for the host."""
    if (host_os or detect_host_os()) == HostOS.WINDOWS:
        return f"{constants.QEMU_BINARY_NAME}.exe"
    return constants.QEMU_BINARY_NAME


def locate_qemu(root: Path, host_os: HostOS | None = None, explicit: Path | None = None) -> Path:
    """Find the QEMU binary.

    Search order:
        1. explicit (PORTAQEMU_QEMU_BIN), which must exist when given
        2. <root>/bin/qemu/<exe>
        3. <root>/bin/<exe>
        4. PATH

    Raises:
        QemuNotFoundError: Not found in any location
    """
    if explicit is not None:
        if explicit.is_file():
            return explicit
        raise QemuNotFoundError(f"Configured QEMU binary not found: {explicit}", {"qemu_bin": str(explicit)})

    exe = qemu_executable_name(host_os)
    for candidate in (root / "bin" / "qemu" / exe, root / "bin" / exe):
        if candidate.is_file():
            return candidate

    if found := shutil.which(exe):
        return Path(found)

    raise QemuNotFoundError(
        f"{exe} not found under {root / 'bin'} or on PATH",
        {"root": str(root), "executable": exe},
    )


def parse_accel_help(output: str) -> set[str]:
    """Accelerator names from `-accel help` output.

    Output looks like "Accelerators supported in QEMU binary:\\ntcg\\nkvm\\n".
    """
    accels: set[str] = set()
    for raw_line in output.splitlines():
        name = raw_line.strip().lower()
        # Skip header line and empty lines
        if name and not name.startswith("accelerator"):
            accels.add(name)
    return accels


def detect_availability(qemu_bin: Path, host_os: HostOS | None = None) -> AccelAvailability:
    """Probe QEMU for the host's hardware accelerator.

    Probe failures (missing binary, timeout, non-zero exit) are logged and
    reported as "no hardware"; software is always available.

    Args:
        qemu_bin: QEMU system emulator path
        host_os: Host OS (detected if None); selects kvm, hvf or whpx

    Returns:
        AccelAvailability for this host
    """
    hardware_backend = hardware_accel_for(host_os or detect_host_os())

    try:
        proc = subprocess.run(  # noqa: S603
            [str(qemu_bin), "-accel", "help"],
            capture_output=True,
            text=True,
            errors="replace",
            timeout=constants.ACCEL_PROBE_TIMEOUT_SECONDS,
            check=False,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.warning(
            "QEMU accelerator probe failed",
            extra={"qemu_bin": str(qemu_bin), "error": str(e)},
        )
        return AccelAvailability(hardware_backend=hardware_backend, hardware=False)

    accels = parse_accel_help(f"{proc.stdout}\n{proc.stderr}")
    hardware = hardware_backend.is_hardware and hardware_backend.value in accels
    logger.debug(
        "QEMU accelerator probe complete",
        extra={
            "qemu_bin": str(qemu_bin),
            "returncode": proc.returncode,
            "accelerators": sorted(accels),
            "hardware_backend": hardware_backend.value,
        },
    )
    return AccelAvailability(hardware_backend=hardware_backend, hardware=hardware)


def choose_accel(preference: AccelPreference, availability: AccelAvailability) -> AccelChoice:
    """Select the backend for a launch.

    - HARDWARE: hardware if available, else AccelUnavailableError("hardware")
    - SOFTWARE: TCG if available, else AccelUnavailableError("software")
    - AUTO: hardware, then TCG, else NoAccelAvailableError

    Raises:
        AccelUnavailableError: Explicit preference cannot be met
        NoAccelAvailableError: AUTO with nothing available
    """
    hardware_ok = availability.hardware and availability.hardware_backend.is_hardware

    match preference:
        case AccelPreference.HARDWARE:
            if hardware_ok:
                return availability.hardware_backend
            raise AccelUnavailableError("hardware", {"hardware_backend": availability.hardware_backend.value})
        case AccelPreference.SOFTWARE:
            if availability.software:
                return AccelChoice.TCG
            raise AccelUnavailableError("software")
        case AccelPreference.AUTO:
            if hardware_ok:
                return availability.hardware_backend
            if availability.software:
                return AccelChoice.TCG
            raise NoAccelAvailableError("No acceleration available")


def is_accel_failure_output(output: str, backend: AccelChoice) -> bool:
    """Whether QEMU's diagnostic output blames the accelerator.

    Matches, case-insensitively:
        - the backend name (e.g. "kvm") alongside failure wording such as
          "failed to initialize" or "could not access"
        - "acceleration" together with "not available"
        - "no accelerator found"

    The backend name alone is not enough: disk paths or VM names may
    contain it.
    """
    text = output.lower()
    if backend.value in text and any(phrase in text for phrase in constants.ACCEL_FAILURE_PHRASES):
        return True
    if "acceleration" in text and "not available" in text:
        return True
    return "no accelerator found" in text
