"""Shared pytest fixtures for portaqemu tests."""

import contextlib
import json
import os
import socket
import stat
import sys
import time
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from pathlib import Path

import psutil
import pytest

from portaqemu.paths import ControllerPaths
from portaqemu.platform_utils import HostOS, TerminateResult, detect_host_os
from portaqemu.settings import Settings

# ============================================================================
# Shared Skip Markers
# ============================================================================

# Stand-in QEMU is a shebang script: needs a POSIX exec
skip_on_windows = pytest.mark.skipif(
    detect_host_os() == HostOS.WINDOWS,
    reason="Stand-in QEMU script needs a POSIX shebang",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the developer's PORTAQEMU_* variables out of Settings."""
    for name in list(os.environ):
        if name.startswith("PORTAQEMU_"):
            monkeypatch.delenv(name)


# ============================================================================
# Controller Layout
# ============================================================================


@pytest.fixture
def root(tmp_path: Path) -> Path:
    return tmp_path / "PortaQEMU"


@pytest.fixture
def paths(root: Path) -> Iterator[ControllerPaths]:
    """Controller layout under a temp root; kills any VM left recorded in state."""
    controller_paths = ControllerPaths(root)
    yield controller_paths

    try:
        state = json.loads(controller_paths.state_file.read_text())
    except (FileNotFoundError, ValueError):
        return
    pid = state.get("qemu_pid")
    if pid:
        with contextlib.suppress(psutil.NoSuchProcess):
            proc = psutil.Process(pid)
            proc.kill()
            proc.wait(timeout=5)


@pytest.fixture
def disk_image(root: Path) -> Path:
    disk = root / "vm" / "disk.qcow2"
    disk.parent.mkdir(parents=True, exist_ok=True)
    disk.write_bytes(b"QFI\xfb")
    return disk


def get_free_port() -> int:
    """Port that was free on 127.0.0.1 a moment ago."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest.fixture
def ssh_port() -> int:
    return get_free_port()


@pytest.fixture
def make_settings(root: Path, disk_image: Path, ssh_port: int) -> Callable[..., Settings]:
    """Settings factory rooted at the temp root with a real disk image."""

    def _make(**overrides: object) -> Settings:
        values: dict[str, object] = {
            "root": root,
            "disk": disk_image,
            "ssh_host_port": ssh_port,
            "memory_mb": 4096,
            "cpus": 4,
            "accel_grace_seconds": 0.5,
            "wait_timeout_seconds": 5.0,
        }
        values.update(overrides)
        return Settings(**values)  # type: ignore[arg-type]

    return _make


# ============================================================================
# Stand-in QEMU
# ============================================================================

_FAKE_QEMU_TEMPLATE = """#!{python}
import json
import socket
import sys
import time
from pathlib import Path

ACCELS = {accels!r}
FAIL_ACCEL = {fail_accel!r}
EXIT_CODE = {exit_code!r}
LISTEN = {listen!r}
INVOCATIONS = Path({invocations!r})

args = sys.argv[1:]
if args == ["-accel", "help"]:
    print("Accelerators supported in QEMU binary:")
    for name in ACCELS:
        print(name)
    sys.exit(0)

with INVOCATIONS.open("a") as f:
    f.write(json.dumps(args) + "\\n")

accel = args[args.index("-accel") + 1]
if accel == FAIL_ACCEL:
    sys.stderr.write("qemu-system-x86_64: -accel " + accel + ": failed to initialize " + accel + ": No such file or directory\\n")
    sys.exit(1)
if EXIT_CODE is not None:
    sys.stderr.write("qemu-system-x86_64: -drive if=virtio: Could not open image: Permission denied\\n")
    sys.exit(EXIT_CODE)

print("VNC server running on 127.0.0.1:5900", flush=True)
if LISTEN:
    netdev = args[args.index("-netdev") + 1]
    port = int(netdev.split("hostfwd=tcp:127.0.0.1:")[1].split("-")[0])
    server = socket.create_server(("127.0.0.1", port))
while True:
    time.sleep(0.1)
"""


@dataclass
class FakeQemu:
    """Stand-in qemu-system-x86_64 script and its invocation record."""

    path: Path
    invocations_file: Path

    def invocations(self) -> list[list[str]]:
        """Argument lists of every launch (the -accel help probe excluded)."""
        if not self.invocations_file.exists():
            return []
        return [json.loads(line) for line in self.invocations_file.read_text().splitlines() if line]

    def accels(self) -> list[str]:
        return [args[args.index("-accel") + 1] for args in self.invocations()]

    def wait_for_invocations(self, count: int, timeout: float = 10.0) -> list[list[str]]:
        """Poll until `count` launches are recorded (an unwatched launch returns before the script runs)."""
        deadline = time.monotonic() + timeout
        while len(invocations := self.invocations()) < count:
            if time.monotonic() > deadline:
                raise AssertionError(f"expected {count} launches, got {len(invocations)}")
            time.sleep(0.02)
        return invocations


@pytest.fixture
def make_fake_qemu(tmp_path: Path) -> Callable[..., FakeQemu]:
    """Write a stand-in QEMU.

    Options:
        accels: Names printed by `-accel help`
        fail_accel: Backend that makes it exit 1 with an init failure
        exit_code: Exit immediately with this code for any backend
        listen: Listen on the SSH host port from the hostfwd rule
    """
    counter = iter(range(1000))

    def _make(
        accels: tuple[str, ...] = ("tcg",),
        fail_accel: str | None = None,
        exit_code: int | None = None,
        listen: bool = False,
    ) -> FakeQemu:
        bin_dir = tmp_path / f"fake-qemu-{next(counter)}"
        bin_dir.mkdir()
        script = bin_dir / "qemu-system-x86_64"
        invocations = bin_dir / "invocations.jsonl"
        script.write_text(
            _FAKE_QEMU_TEMPLATE.format(
                python=sys.executable,
                accels=list(accels),
                fail_accel=fail_accel,
                exit_code=exit_code,
                listen=listen,
                invocations=str(invocations),
            )
        )
        script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return FakeQemu(path=script, invocations_file=invocations)

    return _make


# ============================================================================
# Process Control Double
# ============================================================================


@dataclass
class FakeProcessControl:
    """ProcessControl over a fixed set of "alive" PIDs."""

    alive: set[int] = field(default_factory=set)
    terminated: list[int] = field(default_factory=list)

    def is_alive(self, pid: int) -> bool:
        return pid in self.alive

    def terminate(self, pid: int) -> TerminateResult:
        if pid not in self.alive:
            return TerminateResult.NOT_RUNNING
        self.alive.discard(pid)
        self.terminated.append(pid)
        return TerminateResult.REQUESTED


@pytest.fixture
def process_control() -> FakeProcessControl:
    return FakeProcessControl(alive={os.getpid()})
