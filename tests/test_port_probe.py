"""Tests for port availability checks and readiness waits."""

import errno
import socket
import threading
import time
from collections.abc import Iterator
from unittest.mock import patch

import pytest

from portaqemu.exceptions import PortInUseError, ReadinessTimeoutError
from portaqemu.port_probe import ensure_ports_available, is_port_available, wait_until_connectable
from tests.conftest import get_free_port


@pytest.fixture
def listener() -> Iterator[socket.socket]:
    """Listening socket on a loopback port."""
    sock = socket.create_server(("127.0.0.1", 0))
    try:
        yield sock
    finally:
        sock.close()


class TestIsPortAvailable:
    """Bind-based availability probe."""

    def test_free_port(self) -> None:
        """An unbound port is available."""
        assert is_port_available(get_free_port()) is True

    def test_held_port(self, listener: socket.socket) -> None:
        """A port with a live listener is not available."""
        assert is_port_available(listener.getsockname()[1]) is False

    def test_available_again_after_release(self) -> None:
        """Binding then releasing a port makes it available again."""
        sock = socket.create_server(("127.0.0.1", 0))
        port = sock.getsockname()[1]
        assert is_port_available(port) is False
        sock.close()
        assert is_port_available(port) is True

    def test_probe_releases_port(self) -> None:
        """The probe itself leaves the port free."""
        port = get_free_port()
        assert is_port_available(port)
        assert is_port_available(port)

    def test_other_os_errors_propagate(self) -> None:
        """Errors other than "address in use" are raised."""
        with (
            patch.object(socket.socket, "bind", side_effect=OSError(errno.EACCES, "Permission denied")),
            pytest.raises(OSError, match="Permission denied"),
        ):
            is_port_available(80)

    def test_windows_addr_in_use(self) -> None:
        """WSAEADDRINUSE (winerror 10048) counts as in use."""
        err = OSError(errno.EPERM, "in use")
        err.winerror = 10048  # type: ignore[attr-defined]
        with patch.object(socket.socket, "bind", side_effect=err):
            assert is_port_available(2222) is False


class TestEnsurePortsAvailable:
    """Pre-launch port check over several ports."""

    def test_all_free(self) -> None:
        """No error when every port is free."""
        ensure_ports_available([get_free_port(), get_free_port()])

    def test_first_occupied_port_reported(self, listener: socket.socket) -> None:
        """The first occupied port in order is reported."""
        busy = listener.getsockname()[1]
        with pytest.raises(PortInUseError) as exc_info:
            ensure_ports_available([get_free_port(), busy])
        assert exc_info.value.port == busy
        assert str(busy) in exc_info.value.message


class TestWaitUntilConnectable:
    """Readiness polling."""

    def test_already_listening(self, listener: socket.socket) -> None:
        """Returns as soon as a connection succeeds."""
        start = time.monotonic()
        wait_until_connectable("127.0.0.1", listener.getsockname()[1], timeout=5.0)
        assert time.monotonic() - start < 2.0

    def test_listener_appears_later(self) -> None:
        """Keeps polling until the port starts accepting."""
        port = get_free_port()
        server: list[socket.socket] = []

        def start_listener() -> None:
            time.sleep(0.3)
            server.append(socket.create_server(("127.0.0.1", port)))

        thread = threading.Thread(target=start_listener)
        thread.start()
        try:
            wait_until_connectable("127.0.0.1", port, timeout=5.0, poll_interval=0.05)
        finally:
            thread.join()
            for sock in server:
                sock.close()

    def test_timeout(self) -> None:
        """Nothing listening raises ReadinessTimeoutError after the budget."""
        port = get_free_port()
        start = time.monotonic()
        with pytest.raises(ReadinessTimeoutError) as exc_info:
            wait_until_connectable("127.0.0.1", port, timeout=0.3, poll_interval=0.05)
        assert time.monotonic() - start < 3.0
        assert exc_info.value.port == port
        assert exc_info.value.timeout == 0.3
