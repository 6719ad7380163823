"""QEMU command line building.

build_qemu_cmd() is pure: no I/O and no validation. Identical inputs give a
byte-identical command, which is what makes hash_qemu_args() meaningful.
"""

import hashlib
from collections.abc import Sequence
from pathlib import Path

from portaqemu import constants
from portaqemu.models import AccelChoice, PortForward, ResolvedVmConfig

# Disk format by lowercase file extension; anything else is qcow2
_DISK_FORMATS: dict[str, str] = {
    ".qcow2": "qcow2",
    ".raw": "raw",
    ".img": "raw",
}
_DEFAULT_DISK_FORMAT = "qcow2"


def detect_disk_format(disk: Path) -> str:
    """Infer the QEMU disk format from the image's file extension."""
    return _DISK_FORMATS.get(disk.suffix.lower(), _DEFAULT_DISK_FORMAT)


def _hostfwd(host_port: int, guest_port: int) -> str:
    return f"hostfwd=tcp:{constants.LOOPBACK_HOST}:{host_port}-:{guest_port}"


def build_netdev(ssh_host_port: int, forwards: Sequence[PortForward]) -> str:
    """User-mode netdev spec: SSH forward first, then extra forwards in order.

    Example:
        user,id=n0,hostfwd=tcp:127.0.0.1:2222-:22,hostfwd=tcp:127.0.0.1:8080-:80
    """
    rules = [_hostfwd(ssh_host_port, constants.SSH_GUEST_PORT)]
    rules.extend(_hostfwd(fwd.host, fwd.guest) for fwd in forwards)
    return ",".join(["user", f"id={constants.NETDEV_ID}", *rules])


def build_qemu_cmd(config: ResolvedVmConfig, qemu_bin: Path, accel: AccelChoice) -> list[str]:
    """Build the QEMU command for the managed VM.

    Args:
        config: Resolved VM configuration
        qemu_bin: QEMU binary, emitted as the first element
        accel: Backend chosen for this launch

    Returns:
        Full command (binary followed by arguments)
    """
    # Host passthrough needs hardware virtualization; TCG gets a fixed model
    cpu_model = constants.HARDWARE_CPU_MODEL if accel.is_hardware else constants.SOFTWARE_CPU_MODEL

    cmd = [
        str(qemu_bin),
        "-name",
        config.name,
        "-machine",
        constants.MACHINE_TYPE,
        "-accel",
        accel.value,
        "-cpu",
        cpu_model,
        "-m",
        str(config.memory_mb),
        "-smp",
        str(config.cpus),
        "-rtc",
        constants.RTC_BASE,
    ]

    for device in constants.INPUT_DEVICES:
        cmd.extend(["-device", device])

    cmd.extend(
        [
            "-drive",
            f"file={config.disk},if=virtio,format={detect_disk_format(config.disk)}",
            "-netdev",
            build_netdev(config.ssh_host_port, config.forwards),
            "-device",
            f"{constants.NIC_MODEL},netdev={constants.NETDEV_ID}",
        ]
    )

    return cmd


def hash_qemu_args(cmd: Sequence[str]) -> str:
    """SHA-256 hex digest over each argument followed by a NUL byte."""
    digest = hashlib.sha256()
    for arg in cmd:
        digest.update(arg.encode())
        digest.update(b"\0")
    return digest.hexdigest()
