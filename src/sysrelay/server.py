"""
=============================================================================
SYSRELAY SERVER - MAIN ORCHESTRATOR
=============================================================================

Wires the components together and runs them.

=============================================================================
ARCHITECTURE
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                         SysRelayServer                               │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   ┌──────────────────┐                                               │
    │   │  SocketServer    │  accept() loop, signals, shutdown flag        │
    │   └────────┬─────────┘                                               │
    │            │ (client_socket, address)                                │
    │            ▼                                                         │
    │   ┌──────────────────┐                                               │
    │   │  WorkerSpawner   │  fork() or daemon thread                      │
    │   └────────┬─────────┘                                               │
    │            ▼                                                         │
    │   ┌──────────────────┐      ┌──────────────────┐                     │
    │   │ ConnectionWorker │ ───► │  CommandParser   │                     │
    │   └────────┬─────────┘      └──────────────────┘                     │
    │            ▼                                                         │
    │   ┌──────────────────┐      ┌──────────────────────────────────┐     │
    │   │CommandDispatcher │ ───► │ StatusReporter  /  MailRelay     │     │
    │   └──────────────────┘      └──────────────────────────────────┘     │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

Everything except the SocketServer is built once, before the first
accept(), and is read-only afterwards. Forked children and worker
threads share it without locks.

=============================================================================
"""

import logging
from typing import Optional, Tuple

from .config import ListenerConfig
from .logconfig import LogConfig
from .core import (
    ConnectionWorker,
    ServerState,
    ShutdownSignal,
    SocketServer,
    create_spawner,
)
from .handlers import MailRelay, SendGridRelay, StatusReporter, SystemStatusReporter
from .protocol import CommandDispatcher


logger = logging.getLogger(__name__)


class SysRelayServer:
    """
    The status and mail relay server.

    Example:
        server = SysRelayServer(ListenerConfig(port=9734))
        server.run()    # blocks until SIGTERM

    Tests swap the capabilities and use thread isolation:

        server = SysRelayServer(
            ListenerConfig(port=0, isolation="thread"),
            mail_relay=FakeRelay(),
        )
        host, port = server.open()
        threading.Thread(target=server.serve_forever, daemon=True).start()
        ...
        server.shutdown()
    """

    def __init__(
        self,
        config: Optional[ListenerConfig] = None,
        log_config: Optional[LogConfig] = None,
        status_reporter: Optional[StatusReporter] = None,
        mail_relay: Optional[MailRelay] = None,
        shutdown_signal: Optional[ShutdownSignal] = None,
    ):
        self.config = config or ListenerConfig()
        self.config.validate()
        self.log_config = log_config or LogConfig()

        self.dispatcher = CommandDispatcher(
            status_reporter or SystemStatusReporter(),
            mail_relay or SendGridRelay(),
            unknown_policy=self.config.unknown_policy,
        )
        self.worker = ConnectionWorker(self.config, self.dispatcher, self.log_config)
        self.spawner = create_spawner(self.config, self.worker)
        self._socket_server = SocketServer(self.config, self.spawner, shutdown_signal)

    @property
    def state(self) -> ServerState:
        return self._socket_server.state

    @property
    def address(self) -> Tuple[str, int]:
        return self._socket_server.address

    # =========================================================================
    # SERVER LIFECYCLE
    # =========================================================================

    def open(self) -> Tuple[str, int]:
        """Bind and listen. Raises StartupError. Returns the bound address."""
        return self._socket_server.open()

    def serve_forever(self) -> None:
        """Accept connections until shutdown. Requires open()."""
        self._socket_server.serve()

    def run(self) -> None:
        """
        Start the server (blocking).

        Raises:
            StartupError: The port could not be bound.
        """
        logger.info(
            f"Starting sysrelay on {self.config.host}:{self.config.port} "
            f"(isolation={self.config.isolation}, unknown={self.config.unknown_policy.value})"
        )
        self._socket_server.start()
        logger.info("Server stopped")

    def shutdown(self) -> None:
        self._socket_server.shutdown()

    def wait_until_listening(self, timeout: Optional[float] = None) -> bool:
        return self._socket_server.wait_until_listening(timeout)

    def wait_for_shutdown(self, timeout: Optional[float] = None) -> bool:
        return self._socket_server.wait_for_shutdown(timeout)


def create_app(
    config: Optional[ListenerConfig] = None,
    log_config: Optional[LogConfig] = None,
    **capabilities,
) -> SysRelayServer:
    """
    Factory for SysRelayServer.

    Example:
        app = create_app(ListenerConfig(port=3000), mail_relay=MyRelay())
        app.run()
    """
    return SysRelayServer(config, log_config, **capabilities)
