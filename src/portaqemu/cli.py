"""Command-line interface for portaqemu.

Usage:
    portaqemu up                    # Start the VM and wait for SSH
    portaqemu up --no-wait          # Start the VM and return immediately
    portaqemu status                # Running / stopped, re-verified
    portaqemu --output json status  # Machine-readable status
    portaqemu down                  # Stop the VM
    portaqemu doctor                # Diagnose the environment
    portaqemu ssh [--exec]          # Print (or run) the ssh command
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, NoReturn

import click

from portaqemu import __version__
from portaqemu._logging import configure_logging
from portaqemu.doctor import CheckStatus, DoctorReport, run_checks
from portaqemu.exceptions import (
    AccelError,
    AlreadyLockedError,
    ConfigError,
    LaunchError,
    PortaQemuError,
    PortInUseError,
    QemuNotFoundError,
    ReadinessTimeoutError,
    SshClientError,
    StateError,
)
from portaqemu.paths import ControllerPaths, resolve_paths
from portaqemu.platform_utils import PathResolver, SystemPathResolver
from portaqemu.settings import Settings, load_root_settings, load_settings, resolve_identity_file
from portaqemu.ssh_cmd import build_ssh_cmd, format_ssh_cmd, run_ssh
from portaqemu.vm_manager import DownResult, UpResult, VmManager

if TYPE_CHECKING:
    from portaqemu.models import VmStatus

# Exit codes following Unix conventions
EXIT_SUCCESS = 0
EXIT_ERROR = 1
EXIT_CLI_ERROR = 2
EXIT_TIMEOUT = 124  # Matches `timeout` command

_STATUS_SYMBOLS: dict[CheckStatus, tuple[str, str]] = {
    CheckStatus.PASS: ("✓", "green"),
    CheckStatus.WARN: ("⚠", "yellow"),
    CheckStatus.FAIL: ("✗", "red"),
}


@dataclass
class AppContext:
    """Options shared by all subcommands (stored on click's ctx.obj)."""

    root: Path | None
    json_output: bool
    path_resolver: PathResolver

    def _overrides(self) -> dict[str, Any]:
        return {"root": self.root} if self.root is not None else {}

    def load(self) -> tuple[Settings, ControllerPaths]:
        """Full VM settings plus the file layout."""
        settings = load_settings(**self._overrides())
        return settings, resolve_paths(settings.root, self.path_resolver)

    def load_paths(self) -> ControllerPaths:
        """File layout only; VM settings are not read or validated."""
        root_settings = load_root_settings(**self._overrides())
        return resolve_paths(root_settings.root, self.path_resolver)


def format_error(title: str, message: str, suggestions: list[str] | None = None) -> str:
    """Format an error message following What → Why → Fix pattern.

    Args:
        title: Short error title
        message: Detailed explanation
        suggestions: Optional list of suggestions to fix the issue

    Returns:
        Formatted error string
    """
    lines = [
        click.style(f"Error: {title}", fg="red", bold=True),
        "",
        f"  {message}",
    ]

    if suggestions:
        lines.extend(["", "  Suggestions:"])
        lines.extend(f"    • {suggestion}" for suggestion in suggestions)

    return "\n".join(lines)


def describe_error(error: PortaQemuError, paths: ControllerPaths | None = None) -> tuple[str, list[str]]:
    """Title and suggestions for a controller error."""
    log_hint = f"Check the QEMU log: {paths.log_file}" if paths else "Check the QEMU log under <root>/logs/"
    match error:
        case AlreadyLockedError():
            return "Another portaqemu command is running", [
                "Wait for it to finish and retry",
                f"If PID {error.holder_pid} is not portaqemu, delete the lock file",
            ]
        case PortInUseError():
            return "Port already in use", [
                f"Stop the service listening on 127.0.0.1:{error.port}",
                "Change PORTAQEMU_SSH_HOST_PORT or PORTAQEMU_FORWARDS",
            ]
        case AccelError():
            return "Acceleration unavailable", [
                "Set PORTAQEMU_ACCEL=auto to fall back to software emulation",
                "Run `portaqemu doctor` to see detected accelerators",
            ]
        case QemuNotFoundError():
            return "QEMU not found", [
                "Install QEMU (qemu-system-x86_64)",
                "Place it in <root>/bin/ or set PORTAQEMU_QEMU_BIN",
            ]
        case ConfigError():
            return "Invalid configuration", ["Check PORTAQEMU_* environment variables", "Run `portaqemu doctor`"]
        case LaunchError():
            return "QEMU failed to start", [log_hint]
        case SshClientError():
            return "Cannot start ssh", ["Install an OpenSSH client and make sure `ssh` is on PATH"]
        case StateError():
            return "State file error", [
                "Inspect or delete the state file" + (f": {paths.state_file}" if paths else ""),
            ]
        case _:
            return "portaqemu error", []


def fail(ctx: click.Context, error: PortaQemuError, paths: ControllerPaths | None = None) -> NoReturn:
    """Print a controller error and exit with the matching code."""
    if isinstance(error, ReadinessTimeoutError):
        click.echo(
            format_error(
                "VM started but SSH is not reachable",
                error.message,
                [
                    "The VM keeps running; the guest may still be booting",
                    "Retry with a longer --timeout or use --no-wait",
                    f"Check the QEMU log: {paths.log_file}" if paths else "Check the QEMU log",
                ],
            ),
            err=True,
        )
        ctx.exit(EXIT_TIMEOUT)

    title, suggestions = describe_error(error, paths)
    click.echo(format_error(title, error.message, suggestions), err=True)
    ctx.exit(EXIT_ERROR)


def echo_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


# ============================================================================
# Output formatting
# ============================================================================


def format_status(status: VmStatus) -> str:
    """Human-readable status block."""
    if status.running:
        lines = [f"Status: Running (PID: {status.pid})"]
    else:
        lines = ["Status: Stopped"]
    if status.started_at is not None:
        lines.append(f"Started at: {status.started_at.isoformat()}")
    return "\n".join(lines)


def format_status_json(status: VmStatus) -> str:
    return status.model_dump_json(indent=2)


def format_doctor_report(report: DoctorReport) -> str:
    """Human-readable doctor report with a pass/warn/fail summary."""
    lines = ["PortaQEMU Diagnostics", "=====================", ""]
    for check in report.checks:
        symbol, color = _STATUS_SYMBOLS[check.status]
        lines.append(f"{click.style(symbol, fg=color)} {check.id}: {check.message}")
        if check.hint:
            lines.append(f"  Hint: {check.hint}")
    summary = report.summary
    lines.extend(["", f"Summary: {summary.passed} pass, {summary.warned} warn, {summary.failed} fail"])
    return "\n".join(lines)


def format_doctor_json(report: DoctorReport) -> str:
    return json.dumps(
        {
            "checks": [c.model_dump(mode="json", exclude_none=True) for c in report.checks],
            "summary": report.summary.model_dump(by_alias=True),
        },
        indent=2,
    )


# ============================================================================
# Commands
# ============================================================================


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.option(
    "--root",
    type=click.Path(file_okay=False, path_type=Path),
    help="Controller root directory (default: $PORTAQEMU_ROOT or per-user data dir)",
)
@click.option(
    "--output",
    type=click.Choice(["human", "json"], case_sensitive=False),
    default="human",
    show_default=True,
    help="Output format",
)
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.option("-q", "--quiet", is_flag=True, help="Only log errors")
@click.version_option(__version__, "-V", "--version", prog_name="portaqemu")
@click.pass_context
def main(ctx: click.Context, root: Path | None, output: str, verbose: bool, quiet: bool) -> None:
    """Start, stop and inspect a local QEMU development VM."""
    configure_logging(level=logging.DEBUG if verbose else None, quiet=quiet)
    ctx.obj = AppContext(root=root, json_output=output.lower() == "json", path_resolver=SystemPathResolver())


@main.command()
@click.option("--no-wait", is_flag=True, help="Return without waiting for SSH to accept connections")
@click.option("-t", "--timeout", type=float, default=None, help="Seconds to wait for SSH (default: 30)")
@click.pass_context
def up(ctx: click.Context, no_wait: bool, timeout: float | None) -> None:
    """Start the VM (no-op if already running)."""
    app: AppContext = ctx.obj
    paths: ControllerPaths | None = None

    def on_started(result: UpResult) -> None:
        if app.json_output:
            return
        if result.fell_back:
            click.echo(click.style("Hardware acceleration failed, using TCG", fg="yellow"), err=True)
        accel = result.accel.value if result.accel else "?"
        click.echo(f"VM started (PID: {result.pid}, accel: {accel})")
        if not no_wait:
            click.echo(f"Waiting for SSH on 127.0.0.1:{result.ssh_host_port}...")

    try:
        settings, paths = app.load()
        result = VmManager(paths, settings).up(wait=not no_wait, timeout=timeout, on_started=on_started)
    except PortaQemuError as e:
        fail(ctx, e, paths)

    if app.json_output:
        echo_json(
            {
                "pid": result.pid,
                "already_running": result.already_running,
                "accel": result.accel.value if result.accel else None,
                "fell_back": result.fell_back,
            }
        )
    elif result.already_running:
        click.echo(f"VM is already running (PID: {result.pid})")
    elif not no_wait:
        click.echo(click.style("SSH is ready!", fg="green"))


@main.command()
@click.pass_context
def down(ctx: click.Context) -> None:
    """Stop the VM (no-op if not running)."""
    app: AppContext = ctx.obj
    paths: ControllerPaths | None = None
    try:
        paths = app.load_paths()
        result: DownResult = VmManager(paths).down()
    except PortaQemuError as e:
        fail(ctx, e, paths)

    if app.json_output:
        echo_json({"was_running": result.was_running, "pid": result.pid, "terminated": result.terminated})
    elif not result.was_running:
        click.echo("VM is not running")
    elif result.terminated:
        click.echo(f"VM stopped (PID: {result.pid})")
    else:
        click.echo(f"VM process not found (PID: {result.pid})")


@main.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show whether the VM is running."""
    app: AppContext = ctx.obj
    paths: ControllerPaths | None = None
    try:
        paths = app.load_paths()
        vm_status = VmManager(paths).status()
    except PortaQemuError as e:
        fail(ctx, e, paths)

    click.echo(format_status_json(vm_status) if app.json_output else format_status(vm_status))


@main.command()
@click.pass_context
def doctor(ctx: click.Context) -> None:
    """Check QEMU, disk image, acceleration, ports and SSH key."""
    app: AppContext = ctx.obj
    try:
        settings, paths = app.load()
    except PortaQemuError as e:
        fail(ctx, e)

    report = run_checks(settings, paths)
    click.echo(format_doctor_json(report) if app.json_output else format_doctor_report(report))
    ctx.exit(EXIT_SUCCESS if report.ok else EXIT_ERROR)


@main.command()
@click.option("--exec", "exec_", is_flag=True, help="Run ssh instead of printing the command")
@click.pass_context
def ssh(ctx: click.Context, exec_: bool) -> None:
    """Print (or run) the ssh command for the VM."""
    app: AppContext = ctx.obj
    paths: ControllerPaths | None = None
    try:
        settings, paths = app.load()
        cmd = build_ssh_cmd(settings.ssh_host_port, settings.ssh_user, resolve_identity_file(settings, paths))
        if not exec_:
            click.echo(format_ssh_cmd(cmd))
            return
        returncode = run_ssh(cmd)
    except PortaQemuError as e:
        fail(ctx, e, paths)

    ctx.exit(returncode)


if __name__ == "__main__":
    main()
