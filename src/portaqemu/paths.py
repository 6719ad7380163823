"""Controller root resolution and file layout.

All controller files live under a single root directory:

    <root>/
    ├── bin/            optional bundled QEMU (bin/qemu/ or bin/)
    ├── config/
    │   ├── ssh/id_ed25519  default SSH identity for `portaqemu ssh`
    │   ├── state.json      persisted VmState
    │   └── portaqemu.lock  PID lock, colocated with the state file
    ├── logs/
    │   └── qemu.log        merged QEMU stdout/stderr, truncated per launch
    └── vm/
        └── disk.qcow2      default disk image
"""

from dataclasses import dataclass
from pathlib import Path

from portaqemu import constants
from portaqemu.platform_utils import PathResolver


@dataclass(frozen=True, slots=True)
class ControllerPaths:
    """File locations derived from the controller root."""

    root: Path

    @property
    def config_dir(self) -> Path:
        return self.root / "config"

    @property
    def state_file(self) -> Path:
        return self.config_dir / constants.STATE_FILE_NAME

    @property
    def lock_file(self) -> Path:
        return self.config_dir / constants.LOCK_FILE_NAME

    @property
    def logs_dir(self) -> Path:
        return self.root / "logs"

    @property
    def log_file(self) -> Path:
        return self.logs_dir / constants.LOG_FILE_NAME

    @property
    def bin_dir(self) -> Path:
        return self.root / "bin"

    @property
    def default_disk(self) -> Path:
        return self.root / constants.DEFAULT_DISK_RELPATH

    @property
    def default_identity_file(self) -> Path:
        return self.root / constants.DEFAULT_IDENTITY_RELPATH


def resolve_root(explicit: Path | None, resolver: PathResolver) -> Path:
    """Resolve the controller root directory.

    Args:
        explicit: Root from --root or PORTAQEMU_ROOT, if any. A leading "~"
            expands to the resolver's home directory.
        resolver: Source of the per-user data directory fallback

    Returns:
        Absolute root path (not required to exist yet)
    """
    if explicit is None:
        return resolver.data_dir() / constants.ROOT_DIR_NAME

    parts = explicit.parts
    if parts and parts[0] == "~":
        explicit = resolver.home_dir().joinpath(*parts[1:])
    return explicit.absolute()


def resolve_paths(explicit: Path | None, resolver: PathResolver) -> ControllerPaths:
    """Shorthand for ControllerPaths(resolve_root(...))."""
    return ControllerPaths(resolve_root(explicit, resolver))
