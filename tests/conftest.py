"""
pytest configuration and fixtures.
"""

import dataclasses
import socket
import threading
from typing import Callable, Generator, List, Optional, Tuple
import pytest

# Add src to path for imports
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from sysrelay import ListenerConfig, SysRelayServer
from sysrelay.core import Connection
from sysrelay.handlers import MailRelay, StatusReporter


class FakeStatusReporter(StatusReporter):
    """Status reporter with a fixed, tiny report."""

    def __init__(self, lines: Tuple[str, ...] = ("=== Fake ===", "all good")):
        self.lines = lines
        self.calls = 0

    def report(self, sink) -> None:
        self.calls += 1
        for line in self.lines:
            sink.write(line + "\n")


class FakeMailRelay(MailRelay):
    """Records every send; returns ``result`` or raises ``error``."""

    def __init__(self, result: bool = True, error: Optional[Exception] = None):
        self.result = result
        self.error = error
        self.sent: List[Tuple[str, str, str]] = []

    def send(self, to: str, subject: str, body: str) -> bool:
        self.sent.append((to, subject, body))
        if self.error is not None:
            raise self.error
        return self.result


@pytest.fixture
def config() -> ListenerConfig:
    """Test configuration: thread isolation, short timeouts, free port."""
    return ListenerConfig(
        host="127.0.0.1",
        port=0,  # Let OS pick a free port
        read_timeout=1.0,
        accept_poll_interval=0.05,
        isolation="thread",
    )


@pytest.fixture
def free_port() -> int:
    """Get a free port for testing."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(('127.0.0.1', 0))
        return s.getsockname()[1]


@pytest.fixture
def status_reporter() -> FakeStatusReporter:
    return FakeStatusReporter()


@pytest.fixture
def mail_relay() -> FakeMailRelay:
    return FakeMailRelay()


@pytest.fixture
def conn_pair() -> Generator[Tuple[Connection, socket.socket], None, None]:
    """
    A server-side Connection and the client socket talking to it.

    Uses socketpair(), so no port is needed.
    """
    server_sock, client_sock = socket.socketpair()
    client_sock.settimeout(5.0)
    conn = Connection(socket=server_sock, address=("127.0.0.1", 50000))

    yield conn, client_sock

    client_sock.close()
    conn.close()


def read_until_closed(sock: socket.socket) -> bytes:
    """Read until the peer closes."""
    chunks = []
    while True:
        chunk = sock.recv(4096)
        if not chunk:
            break
        chunks.append(chunk)
    return b"".join(chunks)


class RunningServer:
    """Runs a SysRelayServer in a background thread."""

    def __init__(self, server: SysRelayServer):
        self.server = server
        self.host, self.port = server.open()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> "RunningServer":
        """Start the accept loop in a background thread."""
        self._thread = threading.Thread(target=self.server.serve_forever, daemon=True)
        self._thread.start()

        if not self.server.wait_until_listening(timeout=5.0):
            raise RuntimeError("Server failed to start")
        return self

    def stop(self):
        """Stop the server."""
        self.server.shutdown()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=5.0)

    @property
    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def connect(self, timeout: float = 5.0) -> socket.socket:
        return socket.create_connection((self.host, self.port), timeout=timeout)

    def request(self, payload: bytes, timeout: float = 5.0) -> bytes:
        """Send ``payload``, half-close, return everything the server sent."""
        with self.connect(timeout) as sock:
            if payload:
                sock.sendall(payload)
            sock.shutdown(socket.SHUT_WR)
            return read_until_closed(sock)


@pytest.fixture
def make_server(
    config: ListenerConfig,
    status_reporter: FakeStatusReporter,
    mail_relay: FakeMailRelay,
) -> Generator[Callable[..., RunningServer], None, None]:
    """
    Factory for running test servers.

    Keyword arguments override ListenerConfig fields; status_reporter and
    mail_relay default to the fakes above.
    """
    started: List[RunningServer] = []

    def factory(reporter=None, relay=None, **overrides) -> RunningServer:
        server = SysRelayServer(
            dataclasses.replace(config, **overrides),
            status_reporter=reporter or status_reporter,
            mail_relay=relay or mail_relay,
        )
        running = RunningServer(server).start()
        started.append(running)
        return running

    yield factory

    for running in started:
        running.stop()


@pytest.fixture
def running_server(make_server) -> RunningServer:
    """A started server with default test settings."""
    return make_server()


@pytest.fixture
def recv_all() -> Callable[[socket.socket], bytes]:
    """Helper that reads a socket until the peer closes."""
    return read_until_closed
