"""SSH client command for connecting to the VM through its forwarded port."""

import shlex
import subprocess  # noqa: S404
from pathlib import Path

from portaqemu._logging import get_logger
from portaqemu.exceptions import SshClientError

logger = get_logger(__name__)

SSH_CLIENT = "ssh"


def build_ssh_cmd(ssh_host_port: int, user: str, identity_file: Path) -> list[str]:
    """Argument list for `ssh -p <port> <user>@localhost -i <identity>`."""
    return [SSH_CLIENT, "-p", str(ssh_host_port), f"{user}@localhost", "-i", str(identity_file)]


def format_ssh_cmd(cmd: list[str]) -> str:
    """Shell-quoted command line, suitable for copy and paste."""
    return shlex.join(cmd)


def run_ssh(cmd: list[str]) -> int:
    """Run ssh interactively in the foreground and return its exit status.

    Raises:
        SshClientError: The ssh client is not installed or cannot be executed
    """
    logger.debug("Running ssh", extra={"cmd": cmd})
    try:
        # Interactive session: inherit the terminal, no capture
        return subprocess.run(cmd, check=False).returncode  # noqa: S603
    except OSError as e:
        raise SshClientError(f"Cannot run {cmd[0]}: {e}", {"cmd": cmd}) from e
