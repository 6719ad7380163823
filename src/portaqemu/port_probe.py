"""Host port availability checks and guest readiness waits.

"QEMU process exists" says nothing about whether the guest finished
booting. Readiness means the forwarded guest service accepts TCP
connections.
"""

import errno
import socket
from collections.abc import Iterable

from tenacity import Retrying, retry_if_exception_type, stop_after_delay, wait_fixed

from portaqemu import constants
from portaqemu._logging import get_logger
from portaqemu.exceptions import PortInUseError, ReadinessTimeoutError

logger = get_logger(__name__)

# WSAEADDRINUSE is reported as winerror, not errno, on Windows
_ADDR_IN_USE_WINERRORS = frozenset({10048})


def _is_addr_in_use(exc: OSError) -> bool:
    if exc.errno == errno.EADDRINUSE:
        return True
    return getattr(exc, "winerror", None) in _ADDR_IN_USE_WINERRORS


def is_port_available(port: int, host: str = constants.LOOPBACK_HOST) -> bool:
    """Check whether a TCP port can be bound on the loopback address.

    The probe socket is released immediately.

    Returns:
        True if bind succeeded, False if the address is in use

    Raises:
        OSError: Any bind failure other than "address in use"
    """
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        try:
            sock.bind((host, port))
        except OSError as e:
            if _is_addr_in_use(e):
                return False
            raise
    return True


def ensure_ports_available(ports: Iterable[int], host: str = constants.LOOPBACK_HOST) -> None:
    """Check ports in order before launching anything.

    Raises:
        PortInUseError: First occupied port
    """
    for port in ports:
        if not is_port_available(port, host):
            raise PortInUseError(port, {"host": host})


def wait_until_connectable(
    host: str,
    port: int,
    timeout: float = constants.READINESS_TIMEOUT_SECONDS,
    *,
    poll_interval: float = constants.READINESS_POLL_INTERVAL_SECONDS,
) -> None:
    """Block until host:port accepts a TCP connection.

    Args:
        host: Address to connect to
        port: TCP port
        timeout: Overall time budget in seconds
        poll_interval: Fixed delay between attempts

    Raises:
        ReadinessTimeoutError: No connection succeeded within timeout
    """
    try:
        for attempt in Retrying(
            stop=stop_after_delay(timeout),
            wait=wait_fixed(poll_interval),
            retry=retry_if_exception_type(OSError),
            reraise=True,
        ):
            with attempt:
                with socket.create_connection((host, port), timeout=constants.READINESS_CONNECT_TIMEOUT_SECONDS):
                    pass
                logger.debug(
                    "Port accepted connection",
                    extra={"host": host, "port": port, "attempts": attempt.retry_state.attempt_number},
                )
    except OSError as e:
        raise ReadinessTimeoutError(host, port, timeout) from e
