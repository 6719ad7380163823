"""Data models for portaqemu."""

from datetime import datetime
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, model_validator

from portaqemu import constants


class AccelPreference(str, Enum):
    """Configured acceleration preference."""

    AUTO = "auto"
    HARDWARE = "hardware"
    SOFTWARE = "software"

    @classmethod
    def _missing_(cls, value: object) -> "AccelPreference | None":
        # Backend names are accepted as shorthands for the matching preference
        if isinstance(value, str):
            name = value.strip().lower()
            if name in ("kvm", "hvf", "whpx"):
                return cls.HARDWARE
            if name == "tcg":
                return cls.SOFTWARE
            for member in cls:
                if member.value == name:
                    return member
        return None


class AccelChoice(str, Enum):
    """Accelerator actually passed to QEMU via `-accel`."""

    KVM = "kvm"
    """Linux Kernel-based Virtual Machine."""

    HVF = "hvf"
    """macOS Hypervisor.framework."""

    WHPX = "whpx"
    """Windows Hypervisor Platform."""

    TCG = "tcg"
    """Tiny Code Generator (software emulation, always available)."""

    @property
    def is_hardware(self) -> bool:
        return self is not AccelChoice.TCG


class AccelAvailability(BaseModel):
    """Accelerators reported by the QEMU binary.

    hardware_backend names the hardware accelerator that applies to this
    host (kvm, hvf or whpx); hardware says whether QEMU reported it.
    """

    model_config = ConfigDict(frozen=True)

    hardware_backend: AccelChoice
    hardware: bool
    software: bool = True


class PortForward(BaseModel):
    """Host TCP port forwarded to a guest TCP port."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    host: int = Field(ge=constants.MIN_PORT, le=constants.MAX_PORT, description="Port on the controlling machine")
    guest: int = Field(ge=constants.MIN_PORT, le=constants.MAX_PORT, description="Port inside the VM")


class ResolvedVmConfig(BaseModel):
    """Fully resolved VM configuration, immutable once built.

    Attributes:
        name: VM name passed to QEMU `-name`
        disk: Canonical disk image path
        memory_mb: Guest memory in MB
        cpus: Guest vCPU count
        ssh_host_port: Host port forwarded to guest port 22
        forwards: Extra forwards, in configured order
        accel: Acceleration preference
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(min_length=1)
    disk: Path
    memory_mb: int = Field(gt=0, description="Guest memory in MB")
    cpus: int = Field(gt=0, description="Guest vCPU count")
    ssh_host_port: int = Field(ge=constants.MIN_PORT, le=constants.MAX_PORT)
    forwards: tuple[PortForward, ...] = ()
    accel: AccelPreference = AccelPreference.AUTO

    @model_validator(mode="after")
    def _check_unique_host_ports(self) -> "ResolvedVmConfig":
        seen: set[int] = set()
        for port in self.host_ports:
            if port in seen:
                raise ValueError(f"Duplicate host port: {port}")
            seen.add(port)
        return self

    @property
    def host_ports(self) -> list[int]:
        """SSH host port followed by every forward's host port."""
        return [self.ssh_host_port, *(f.host for f in self.forwards)]


class VmState(BaseModel):
    """Last-known status of the single managed VM, persisted between invocations.

    Field names match the on-disk JSON document. Unknown fields are ignored
    so newer state files stay readable.

    A present qemu_pid never proves the process is alive; readers re-verify
    liveness with an OS query before trusting it.
    """

    model_config = ConfigDict(extra="ignore")

    running: bool = False
    qemu_pid: int | None = Field(default=None, ge=0)
    started_at: datetime | None = None
    qemu_args_hash: str | None = None
    last_error: str | None = None

    @model_validator(mode="after")
    def _running_requires_pid(self) -> "VmState":
        if self.running and self.qemu_pid is None:
            raise ValueError("running state requires qemu_pid")
        return self


class VmStatus(BaseModel):
    """Result of a status query after liveness re-verification."""

    running: bool
    pid: int | None = None
    started_at: datetime | None = None
