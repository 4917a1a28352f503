"""
=============================================================================
SERVER LIFECYCLE MANAGER
=============================================================================

Owns the listening socket: bind, listen, accept, hand off, shut down.
It never reads from or writes to a client connection. Every accepted
socket goes straight to a WorkerSpawner and the loop goes back to
accept().

=============================================================================
LIFECYCLE
=============================================================================

    Starting ──bind/listen fails──► StartupError (nothing is served)
       │
       ▼
    Listening ◄──────────────┐
       │                     │
       ├── accept() ─► spawner.spawn() ─┘   (never waits for the Worker)
       ├── accept() timed out ───────────►  re-check the shutdown flag
       │
       ▼  shutdown flag set (SIGTERM or shutdown())
    ShuttingDown ──► listener closed, handlers restored
       │
       ▼
    Stopped

In-flight Workers are not waited for: their own read timeout bounds how
long they can live after the listener is gone.

=============================================================================
SIGNALS
=============================================================================

    ┌──────────┬──────────────────┬───────────────────────────────────────┐
    │ Signal   │ Disposition      │ Effect                                │
    ├──────────┼──────────────────┼───────────────────────────────────────┤
    │ SIGPIPE  │ ignored          │ writes to a dead peer raise EPIPE     │
    │ SIGINT   │ ignored          │ Ctrl+C does NOT stop the server       │
    │ SIGTERM  │ sets the flag    │ graceful stop at the next poll        │
    │ SIGCHLD  │ ignored          │ (process isolation) kernel reaps kids │
    └──────────┴──────────────────┴───────────────────────────────────────┘

The SIGTERM handler only assigns one attribute. No locks, no logging,
no socket calls: the accept loop notices the flag within
accept_poll_interval and does the rest in normal code.

Python only allows signal.signal() from the main thread. A server started
from any other thread (the test suite does this) skips installation and
is stopped with shutdown() instead.

=============================================================================
"""

import errno
import logging
import signal
import socket
import threading
import time
from enum import Enum, auto
from typing import Optional, Tuple

from ..config import ListenerConfig
from .worker import WorkerSpawner


logger = logging.getLogger(__name__)


# accept() failures that concern one pending connection, or a momentary
# resource shortage, rather than the listener itself.
TRANSIENT_ACCEPT_ERRORS = frozenset({
    errno.ECONNABORTED,
    errno.ECONNRESET,
    errno.EPROTO,
    errno.EPERM,
    errno.EAGAIN,
    errno.EMFILE,
    errno.ENFILE,
    errno.ENOBUFS,
    errno.ENOMEM,
})

# Retrying these immediately would spin; back off for one poll interval.
RESOURCE_ERRORS = frozenset({errno.EMFILE, errno.ENFILE, errno.ENOBUFS, errno.ENOMEM})


class StartupError(Exception):
    """The listening socket could not be created, bound or put in listen mode."""


class ServerState(Enum):
    STARTING = auto()
    LISTENING = auto()
    SHUTTING_DOWN = auto()
    STOPPED = auto()


class ShutdownSignal:
    """
    Monotonic "please stop" flag.

    Once triggered it stays triggered. Safe to trigger from a signal
    handler, another thread, or the accept loop itself.

    The flag is a plain attribute and trigger() takes no lock: a signal
    handler runs on the main thread between bytecodes, possibly while
    that thread holds any lock it could try to take.
    """

    POLL_INTERVAL = 0.05

    def __init__(self):
        self._triggered = False

    def trigger(self) -> None:
        self._triggered = True

    def is_set(self) -> bool:
        return self._triggered

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Poll until triggered or ``timeout`` elapses. Never call from a signal handler."""
        deadline = None if timeout is None else time.monotonic() + timeout
        while not self._triggered:
            if deadline is None:
                time.sleep(self.POLL_INTERVAL)
                continue
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            time.sleep(min(self.POLL_INTERVAL, remaining))
        return self._triggered


class SocketServer:
    """
    Accept loop with signal-driven graceful shutdown.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                      SocketServer Internals                          │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │    open()            socket(), SO_REUSEADDR, bind(), listen()        │
    │        │             any failure ──► StartupError                    │
    │        ▼                                                             │
    │    serve()           install signals, then accept loop (BLOCKS)      │
    │        │                                                             │
    │        └──► while not shutdown_signal.is_set():                      │
    │                 accept()    timeout = accept_poll_interval           │
    │                 spawner.spawn(client, address, listener)             │
    │                                                                      │
    │    shutdown()        trigger the flag (idempotent)                   │
    │                                                                      │
    │    _cleanup()        restore handlers, close listener                │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

    Usage:
        server = SocketServer(config, ThreadSpawner(worker))
        server.start()      # open() + serve(); blocks until SIGTERM
    """

    def __init__(
        self,
        config: ListenerConfig,
        spawner: WorkerSpawner,
        shutdown_signal: Optional[ShutdownSignal] = None,
    ):
        self.config = config
        self.spawner = spawner
        self.shutdown_signal = shutdown_signal or ShutdownSignal()

        self._socket: Optional[socket.socket] = None
        self._state = ServerState.STARTING
        self._listening = threading.Event()
        self._stopped = threading.Event()

        # Restored on cleanup so an embedding application gets its own
        # handlers back.
        self._original_handlers: dict = {}

    @property
    def state(self) -> ServerState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state is ServerState.LISTENING

    @property
    def address(self) -> Tuple[str, int]:
        """Bound (host, port); the real port once port 0 has been bound."""
        if self._socket is not None:
            host, port = self._socket.getsockname()[:2]
            return (host, port)
        return (self.config.host, self.config.port)

    # =========================================================================
    # STARTUP
    # =========================================================================

    def _create_socket(self) -> socket.socket:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)

        # Restart without waiting out TIME_WAIT.
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)

        # accept() wakes up this often to look at the shutdown flag.
        sock.settimeout(self.config.accept_poll_interval)
        return sock

    def open(self) -> Tuple[str, int]:
        """
        Create, bind and listen.

        Returns:
            The bound address.

        Raises:
            StartupError: Socket creation, bind or listen failed.
        """
        host, port = self.config.host, self.config.port
        try:
            sock = self._create_socket()
        except OSError as e:
            raise StartupError(f"cannot create socket: {e}") from e

        try:
            sock.bind((host, port))
            sock.listen(self.config.backlog)
        except OSError as e:
            sock.close()
            self._state = ServerState.STOPPED
            raise StartupError(f"cannot listen on {host}:{port}: {e}") from e

        self._socket = sock
        return self.address

    def _setup_signals(self) -> None:
        if threading.current_thread() is not threading.main_thread():
            logger.debug("Not on the main thread, signal handlers not installed")
            return

        def shutdown_handler(signum, frame):
            self.shutdown_signal.trigger()

        if hasattr(signal, "SIGPIPE"):
            self._original_handlers[signal.SIGPIPE] = signal.signal(signal.SIGPIPE, signal.SIG_IGN)
        self._original_handlers[signal.SIGINT] = signal.signal(signal.SIGINT, signal.SIG_IGN)
        self._original_handlers[signal.SIGTERM] = signal.signal(signal.SIGTERM, shutdown_handler)
        self._original_handlers.update(self.spawner.install_signals())

    def _restore_signals(self) -> None:
        for sig, handler in self._original_handlers.items():
            signal.signal(sig, handler)
        self._original_handlers.clear()

    # =========================================================================
    # RUNNING
    # =========================================================================

    def start(self) -> None:
        """open() then serve(). Blocks until shutdown."""
        self.open()
        self.serve()

    def serve(self) -> None:
        """
        Run the accept loop on an already opened socket. Blocks until the
        shutdown flag is set.
        """
        if self._socket is None:
            raise StartupError("serve() called before open()")

        self._setup_signals()
        self._state = ServerState.LISTENING
        self._listening.set()

        host, port = self.address
        logger.info(f"server listening on {host}:{port}")

        try:
            self._accept_loop()
        finally:
            self._cleanup()

    def _accept_loop(self) -> None:
        while not self.shutdown_signal.is_set():
            try:
                client_socket, client_address = self._socket.accept()
            except socket.timeout:
                continue
            except InterruptedError:
                continue
            except OSError as e:
                if self.shutdown_signal.is_set():
                    break
                if e.errno in TRANSIENT_ACCEPT_ERRORS:
                    logger.warning(f"Accept error (retrying): {e}")
                    if e.errno in RESOURCE_ERRORS:
                        time.sleep(self.config.accept_poll_interval)
                    continue
                logger.error(f"Accept failed: {e}")
                raise

            if self.shutdown_signal.is_set():
                # Accepted in the same instant the flag was set.
                client_socket.close()
                break

            logger.debug(f"Accepted connection from {client_address[0]}:{client_address[1]}")
            self._spawn(client_socket, client_address)

        logger.info("Shutdown requested, no longer accepting connections")

    def _spawn(self, client_socket: socket.socket, client_address: tuple) -> None:
        try:
            self.spawner.spawn(client_socket, client_address, self._socket)
        except Exception as e:
            logger.exception(f"Could not start worker for {client_address}: {e}")
            client_socket.close()

    # =========================================================================
    # SHUTDOWN
    # =========================================================================

    def shutdown(self) -> None:
        """
        Ask the server to stop. Safe from any thread and safe to call
        more than once. Takes effect within accept_poll_interval.
        """
        if not self.shutdown_signal.is_set():
            logger.info("Shutting down socket server...")
        self.shutdown_signal.trigger()

    def _cleanup(self) -> None:
        self._state = ServerState.SHUTTING_DOWN
        self._restore_signals()

        if self._socket is not None:
            try:
                self._socket.close()
            except OSError as e:
                logger.debug(f"Closing listener: {e}")
            self._socket = None

        self._state = ServerState.STOPPED
        self._stopped.set()
        logger.info("Socket server stopped")

    def wait_until_listening(self, timeout: Optional[float] = None) -> bool:
        return self._listening.wait(timeout)

    def wait_for_shutdown(self, timeout: Optional[float] = None) -> bool:
        """Wait until the listener is closed. True if it closed in time."""
        return self._stopped.wait(timeout)
