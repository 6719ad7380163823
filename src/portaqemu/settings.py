"""Runtime configuration from environment variables."""

from pathlib import Path
from typing import TypeVar

from pydantic import ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict, SettingsError

from portaqemu import constants
from portaqemu.exceptions import ConfigError
from portaqemu.models import AccelPreference, PortForward, ResolvedVmConfig
from portaqemu.paths import ControllerPaths


class RootSettings(BaseSettings):
    """Controller root only.

    Loaded by commands that never launch QEMU (down, status), so a malformed
    VM variable cannot keep them from finding the state file.
    """

    model_config = SettingsConfigDict(
        env_prefix="PORTAQEMU_",
        extra="ignore",
    )

    root: Path | None = None  # None = per-user data dir / PortaQEMU


class Settings(RootSettings):
    """Runtime configuration from environment variables.

    All settings can be overridden via environment variables with PORTAQEMU_ prefix.
    Example: PORTAQEMU_ACCEL=software
    """

    # Layout
    qemu_bin: Path | None = None  # None = located under root, then PATH

    # VM
    vm_name: str = constants.DEFAULT_VM_NAME
    disk: Path | None = None  # None = <root>/vm/disk.qcow2; relative = against root
    memory_mb: int = constants.DEFAULT_MEMORY_MB
    cpus: int = constants.DEFAULT_CPUS
    ssh_host_port: int = constants.DEFAULT_SSH_HOST_PORT
    forwards: list[PortForward] = []  # JSON: [{"host": 8080, "guest": 80}]

    # SSH client
    ssh_user: str = constants.DEFAULT_SSH_USER
    identity_file: Path | None = None  # None = <root>/config/ssh/id_ed25519; relative = against root

    # Acceleration
    accel: AccelPreference = AccelPreference.AUTO
    """auto, hardware or software. Backend names (kvm, hvf, whpx, tcg) are accepted."""
    accel_grace_seconds: float = constants.ACCEL_GRACE_PERIOD_SECONDS

    # Readiness
    wait_timeout_seconds: float = constants.READINESS_TIMEOUT_SECONDS

    @field_validator("accel", mode="before")
    @classmethod
    def _parse_accel(cls, value: object) -> object:
        if isinstance(value, str):
            return AccelPreference(value)
        return value


_SettingsT = TypeVar("_SettingsT", bound=RootSettings)


def _describe(exc: ValidationError) -> str:
    """First validation error as a one-line message."""
    err = exc.errors()[0]
    loc = ".".join(str(part) for part in err["loc"])
    return f"{loc}: {err['msg']}" if loc else err["msg"]


def _load(cls: type[_SettingsT], overrides: dict[str, object]) -> _SettingsT:
    try:
        return cls(**overrides)  # type: ignore[arg-type]
    except ValidationError as e:
        raise ConfigError(f"Invalid setting {_describe(e)}", {"errors": e.error_count()}) from e
    except SettingsError as e:
        # Raised for env values that are not valid JSON for complex fields
        raise ConfigError(f"Invalid setting: {e}") from e


def load_settings(**overrides: object) -> Settings:
    """Build Settings from the environment plus explicit overrides.

    Raises:
        ConfigError: An environment value or override failed validation
    """
    return _load(Settings, overrides)


def load_root_settings(**overrides: object) -> RootSettings:
    """Like load_settings(), reading only PORTAQEMU_ROOT.

    Raises:
        ConfigError: The root value failed validation
    """
    return _load(RootSettings, overrides)


def _anchor(path: Path, paths: ControllerPaths) -> Path:
    return path if path.is_absolute() else paths.root / path


def resolve_disk_path(settings: Settings, paths: ControllerPaths) -> Path:
    """Disk image path before the existence check, relative paths anchored at root."""
    return _anchor(settings.disk or paths.default_disk, paths)


def resolve_identity_file(settings: Settings, paths: ControllerPaths) -> Path:
    """SSH private key path, relative paths anchored at root. Not required to exist."""
    return _anchor(settings.identity_file or paths.default_identity_file, paths)


def resolve_vm_config(settings: Settings, paths: ControllerPaths) -> ResolvedVmConfig:
    """Resolve settings into an immutable, validated VM configuration.

    Args:
        settings: Loaded settings
        paths: Controller file layout (anchors the default and relative disk paths)

    Returns:
        ResolvedVmConfig with a canonical disk path

    Raises:
        ConfigError: Invalid sizes or ports, duplicate host ports, or missing disk image
    """
    disk = resolve_disk_path(settings, paths)
    try:
        config = ResolvedVmConfig(
            name=settings.vm_name,
            disk=disk,
            memory_mb=settings.memory_mb,
            cpus=settings.cpus,
            ssh_host_port=settings.ssh_host_port,
            forwards=tuple(settings.forwards),
            accel=settings.accel,
        )
    except ValidationError as e:
        raise ConfigError(f"Invalid VM configuration: {_describe(e)}") from e

    if not disk.is_file():
        raise ConfigError(f"Disk image not found: {disk}", {"disk": str(disk)})

    return config.model_copy(update={"disk": disk.resolve()})
