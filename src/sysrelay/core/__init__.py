"""
=============================================================================
CORE SERVER COMPONENTS
=============================================================================

The networking layer: everything below the line protocol.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                        SOCKET SERVER                                 │
    │  • Creates, binds and listens on the TCP socket                     │
    │  • Runs the accept() loop in the main thread                        │
    │  • Ignores SIGPIPE/SIGINT, turns SIGTERM into a shutdown flag       │
    └─────────────────────────────────────────────────────────────────────┘
                                    │
                                    │ spawner.spawn(client, address)
                                    ▼
    ┌─────────────────────────────────────────────────────────────────────┐
    │                   SPAWNER + CONNECTION WORKER                        │
    │  • One forked process (or daemon thread) per connection             │
    │  • Read → Parse → Dispatch → Respond → Close                        │
    └─────────────────────────────────────────────────────────────────────┘
                                    │
                                    ▼
    ┌─────────────────────────────────────────────────────────────────────┐
    │                          CONNECTION                                  │
    │  • Bounded line reader with one read-phase deadline                 │
    │  • Buffered writer, close sequence that runs exactly once           │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
"""

# Order matters: protocol.command imports core.connection, and worker
# imports protocol.
from .connection import (
    NO_DATA,
    Connection,
    ConnectionState,
    RawLine,
    ReadTimeout,
    TransportError,
)
from .worker import (
    ConnectionWorker,
    ProcessSpawner,
    ThreadSpawner,
    WorkerSpawner,
    create_spawner,
)
from .socket_server import ServerState, ShutdownSignal, SocketServer, StartupError

__all__ = [
    "Connection",
    "ConnectionState",
    "RawLine",
    "NO_DATA",
    "TransportError",
    "ReadTimeout",
    "ConnectionWorker",
    "WorkerSpawner",
    "ThreadSpawner",
    "ProcessSpawner",
    "create_spawner",
    "SocketServer",
    "ServerState",
    "ShutdownSignal",
    "StartupError",
]
