"""
=============================================================================
CONNECTION WORKERS
=============================================================================

A Worker owns exactly one accepted connection from the first byte to the
final close(). Spawners decide WHERE a Worker runs.

=============================================================================
WORKER STATE MACHINE
=============================================================================

    Accepted
       │
       ▼
    Reading ──── nothing readable within read_timeout ─────────┐
       │                                                       │
       ├──────── NoCommand / EmptyCommand / OversizedCommand ──┤
       ▼                                                       │
    Parsed                                                     │
       │                                                       │
       ▼                                                       │
    Dispatching   (capability failures become response text)   │
       │                                                       │
       ▼                                                       │
    Responding ────────────────────────────────────────────────┤
                                                               ▼
                                                            Closed

Timeouts and protocol errors close the connection WITHOUT a response.
Closed is reached on every path, exceptions included, because the
Connection is used as a context manager.

=============================================================================
ISOLATION: PROCESS OR THREAD
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │ ProcessSpawner (fork)          │ ThreadSpawner                      │
    ├─────────────────────────────────────────────────────────────────────┤
    │ child closes listening socket  │ Worker never sees the listener     │
    │ parent closes client socket    │ Connection built inside the thread │
    │ child always ends in _exit()   │ daemon thread, never joined        │
    │ SIGCHLD ignored: no zombies    │                                    │
    │ POSIX only                     │ portable, used by the test suite   │
    └─────────────────────────────────────────────────────────────────────┘

In both modes the Connection object is created inside the Worker's own
execution context, so no other Worker can ever hold a reference to it.

=============================================================================
"""

import logging
import os
import signal
import socket
import threading
import time
from abc import ABC, abstractmethod
from typing import Optional

from ..config import ListenerConfig
from ..logconfig import CommandLog, LogConfig
from ..protocol.command import CommandParser, ProtocolError
from ..protocol.dispatcher import CommandDispatcher
from .connection import Connection, ConnectionState, ReadTimeout, TransportError


logger = logging.getLogger(__name__)


class ConnectionWorker:
    """
    Serves one connection: read, parse, dispatch, respond, close.

    The worker object itself holds only read-only collaborators (config,
    parser, dispatcher), so one instance can serve any number of
    connections, each in its own thread or process.
    """

    def __init__(
        self,
        config: ListenerConfig,
        dispatcher: CommandDispatcher,
        log_config: Optional[LogConfig] = None,
    ):
        self.config = config
        self.dispatcher = dispatcher
        self.log_config = log_config or LogConfig()
        self.parser = CommandParser(config)

    def handle(self, client_socket: socket.socket, address: tuple) -> CommandLog:
        """Take ownership of an accepted socket and serve it."""
        conn = Connection(
            socket=client_socket,
            address=address,
            buffer_size=self.config.buffer_size,
        )
        return self.serve(conn)

    def serve(self, conn: Connection) -> CommandLog:
        """
        Run the state machine for ``conn`` and close it.

        Never raises for connection-scoped failures; returns the
        connection's log record instead.
        """
        start = time.monotonic()
        record = CommandLog(
            connection_id=conn.id,
            client_ip=str(conn.client_ip),
            client_port=int(conn.client_port),
        )

        with conn:
            try:
                record.outcome = self._run(conn, record)
            except ReadTimeout:
                logger.info(f"[{conn.id}] Read timed out, closing")
                record.outcome = "timeout"
            except TransportError as e:
                logger.warning(f"[{conn.id}] Transport error: {e}")
                record.outcome = "error"
            except Exception as e:
                logger.exception(f"[{conn.id}] Worker error: {e}")
                record.outcome = "error"

        record.bytes_written = conn.bytes_written
        record.duration_ms = (time.monotonic() - start) * 1000
        record.emit(self.log_config.log_format)
        return record

    def _run(self, conn: Connection, record: CommandLog) -> str:
        # ─────────────────────────────────────────────────────────────────
        # READING (timeout-guarded)
        # ─────────────────────────────────────────────────────────────────
        conn.start_read_phase(self.config.read_timeout)

        if not conn.wait_readable():
            logger.info(
                f"[{conn.id}] Nothing received from {conn.client_ip} "
                f"within {self.config.read_timeout}s, closing"
            )
            return "timeout"

        try:
            command = self.parser.parse(conn)
        except ProtocolError as e:
            # Hostile and idle clients get the same silent close; only the
            # log tells them apart.
            logger.info(f"[{conn.id}] Rejected command from {conn.client_ip}: {e.reason} ({e})")
            return e.reason

        conn.end_read_phase()

        # ─────────────────────────────────────────────────────────────────
        # PARSED → DISPATCHING
        # ─────────────────────────────────────────────────────────────────
        conn.state = ConnectionState.PARSED
        record.command = command.keyword
        logger.debug(f"[{conn.id}] Parsed {command!r}")

        conn.state = ConnectionState.DISPATCHING
        result = self.dispatcher.dispatch(command, conn)

        # ─────────────────────────────────────────────────────────────────
        # RESPONDING
        # ─────────────────────────────────────────────────────────────────
        conn.state = ConnectionState.RESPONDING
        if not conn.flush():
            return "write-failed"
        return result.outcome


# =============================================================================
# SPAWNERS
# =============================================================================

class WorkerSpawner(ABC):
    """Starts an isolated Worker for each accepted socket, fire-and-forget."""

    def __init__(self, worker: ConnectionWorker):
        self.worker = worker

    def install_signals(self) -> dict:
        """
        Install spawner-specific signal dispositions (main thread only).

        Returns:
            Previous handlers, keyed by signal, for later restoration.
        """
        return {}

    @abstractmethod
    def spawn(self, client_socket: socket.socket, address: tuple, listener: socket.socket) -> None:
        """
        Hand ``client_socket`` to a new Worker and return immediately.

        ``listener`` is passed only so a forked child can release it.
        """
        pass


class ThreadSpawner(WorkerSpawner):
    """One daemon thread per connection."""

    def spawn(self, client_socket: socket.socket, address: tuple, listener: socket.socket) -> None:
        thread = threading.Thread(
            target=self._run,
            args=(client_socket, address),
            name=f"Worker-{address[0]}:{address[1]}",
            daemon=True,
        )
        thread.start()

    def _run(self, client_socket: socket.socket, address: tuple) -> None:
        try:
            self.worker.handle(client_socket, address)
        except Exception as e:
            logger.exception(f"Worker thread for {address} crashed: {e}")


class ProcessSpawner(WorkerSpawner):
    """
    One forked child process per connection.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                         fork()                                       │
    │           ┌───────────────┴───────────────┐                          │
    │           ▼                               ▼                          │
    │   PARENT (pid > 0)                CHILD (pid == 0)                   │
    │   close(client_socket)            close(listener)                    │
    │   back to accept()                worker.handle(client_socket)       │
    │                                   os._exit()   ← always             │
    └─────────────────────────────────────────────────────────────────────┘

    os._exit() skips atexit hooks and pytest/interpreter teardown that
    belong to the parent; the child flushes its log handlers first.
    """

    def install_signals(self) -> dict:
        previous = {}
        # Ignoring SIGCHLD makes the kernel reap exited children itself.
        if hasattr(signal, "SIGCHLD"):
            previous[signal.SIGCHLD] = signal.signal(signal.SIGCHLD, signal.SIG_IGN)
        return previous

    def spawn(self, client_socket: socket.socket, address: tuple, listener: socket.socket) -> None:
        try:
            pid = os.fork()
        except OSError as e:
            logger.error(f"fork() failed for {address[0]}:{address[1]}: {e}")
            client_socket.close()
            return

        if pid == 0:
            self._run_child(client_socket, address, listener)
            return  # not reached

        # Parent: the child owns the connection now.
        client_socket.close()
        logger.debug(f"Spawned worker pid {pid} for {address[0]}:{address[1]}")

    def _run_child(self, client_socket: socket.socket, address: tuple, listener: socket.socket) -> None:
        # The child must never return into the parent's accept loop.
        try:
            listener.close()
            self.worker.handle(client_socket, address)
        except BaseException as e:
            logger.exception(f"Worker process for {address} crashed: {e}")
        finally:
            try:
                for handler in logging.getLogger().handlers:
                    handler.flush()
            finally:
                os._exit(0)


def create_spawner(config: ListenerConfig, worker: ConnectionWorker) -> WorkerSpawner:
    """Pick the spawner for ``config.isolation``."""
    if config.isolation == "process":
        return ProcessSpawner(worker)
    if config.isolation == "thread":
        return ThreadSpawner(worker)
    raise ValueError(f"Unknown isolation mode: {config.isolation}")
