"""
=============================================================================
CONNECTION AND LINE FRAMING
=============================================================================

This module wraps one accepted client socket with everything a Worker
needs to speak the line protocol: a deadline-scoped buffered reader that
frames bytes into bounded lines, a write buffer, and a close sequence
that runs exactly once.

=============================================================================
TCP IS A BYTE STREAM, NOT A LINE PROTOCOL!
=============================================================================

TCP does NOT preserve message boundaries. A client that writes

    send("SENDMAIL\\nalice@example.com\\n")
    send("Hello\\nBody text\\n")

may be read by the server as

    recv() → "SEND"
    recv() → "MAIL\\nalice@exa"
    recv() → "mple.com\\nHello\\nBody text\\n"

So we keep a receive buffer and cut it into lines at line-feed bytes.
Carriage returns are dropped, so "SYSINFO\\r\\n" and "SYSINFO\\n" read the
same.

=============================================================================
BOUNDED LINES
=============================================================================

A line reader without a bound is a memory exhaustion bug: a client that
never sends "\\n" makes the server buffer forever. Every read_line() call
takes a bound N and stops after N-1 payload bytes:

    ┌─────────────────────────────────────────────────────────────────┐
    │                    read_line(N) Outcomes                         │
    ├─────────────────────────────────────────────────────────────────┤
    │                                                                  │
    │  (a) "SYSINFO\\n"              → RawLine(b"SYSINFO",             │
    │                                   terminated=True)               │
    │                                                                  │
    │  (b) N-1 bytes, no "\\n"        → RawLine(<N-1 bytes>,            │
    │                                   truncated=True)                │
    │      rest of the line stays buffered: call discard_line()        │
    │      before reading the next logical line                        │
    │                                                                  │
    │  (c) clean EOF before a byte   → NO_DATA                         │
    │      (distinct from an empty but terminated line "\\n")           │
    │                                                                  │
    │  (d) deadline / recv error     → ReadTimeout / TransportError    │
    │                                                                  │
    └─────────────────────────────────────────────────────────────────┘

A line of exactly N-1 bytes followed by "\\n" is case (a): the bound
only trips when the byte after the (N-1)th is not a line feed.

NO_DATA means the peer finished sending. A stalled or broken peer is
never reported as NO_DATA, so callers cannot mistake it for a line the
client chose not to send.

=============================================================================
THE READ PHASE DEADLINE
=============================================================================

The read timeout covers the whole read phase of a connection, not each
recv(). A client trickling one byte every few seconds must not keep a
Worker alive forever:

    start_read_phase(10.0)     deadline = now + 10s
        │
        ├── read_line()        recv(timeout = deadline - now)
        ├── read_line()        recv(timeout = deadline - now)
        └── ...                ReadTimeout once the budget is spent

Writes are NOT deadline-guarded. A stalled reader on the other end can
hold one Worker, but never the accept loop.

=============================================================================
CONNECTION STATE MACHINE
=============================================================================

    ACCEPTED ──► READING ──► PARSED ──► DISPATCHING ──► RESPONDING ──┐
        │           │          │             │                       │
        └───────────┴──────────┴─────────────┴───────────────────────┤
                                                                     ▼
                                                                  CLOSED

CLOSED is reachable from every state, including on error, and close()
performs its work only once.

=============================================================================
"""

import logging
import select
import socket
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Union


logger = logging.getLogger(__name__)

LF = 0x0A
CR = 0x0D

# Lingering close: how long to wait for the peer's FIN after ours.
DRAIN_TIMEOUT = 0.5
# Upper bound on bytes discarded while lingering.
DRAIN_LIMIT = 64 * 1024


class TransportError(Exception):
    """A read or write on the client socket failed."""


class ReadTimeout(TransportError):
    """The read phase budget ran out."""


class ConnectionState(Enum):
    """
    Per-connection lifecycle states.

    Used for logging and to make close() idempotent.
    """
    ACCEPTED = "accepted"        # Just accepted, nothing read yet
    READING = "reading"          # Waiting for / reading the command
    PARSED = "parsed"            # Command parsed successfully
    DISPATCHING = "dispatching"  # Handler is running
    RESPONDING = "responding"    # Flushing the response
    CLOSED = "closed"            # Socket released


@dataclass(frozen=True)
class RawLine:
    """
    One framed line.

    Attributes:
        data: Payload bytes, carriage returns removed, line feed excluded.
        terminated: A line feed ended the line.
        truncated: The bound was hit before a line feed.
    """

    data: bytes
    terminated: bool = False
    truncated: bool = False

    @property
    def no_data(self) -> bool:
        """True when the peer closed its side before sending a single byte."""
        return not self.data and not self.terminated and not self.truncated

    def text(self) -> str:
        """Decode as UTF-8, replacing undecodable bytes."""
        return self.data.decode("utf-8", errors="replace")


NO_DATA = RawLine(b"")


@dataclass
class Connection:
    """
    An accepted client socket, owned by exactly one Worker.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    Connection Responsibilities                       │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │  1. BOUNDED LINE READING                                             │
    │     └── read_line(N) frames the byte stream into lines               │
    │     └── discard_line() drops the rest of a truncated line            │
    │                                                                      │
    │  2. READ PHASE DEADLINE                                              │
    │     └── wait_readable() and every recv() share one budget            │
    │                                                                      │
    │  3. BUFFERED WRITING                                                 │
    │     └── write() collects output, flush() uses sendall()              │
    │     └── a failed write is logged once, later writes are dropped      │
    │                                                                      │
    │  4. CLOSE EXACTLY ONCE                                               │
    │     └── flush, FIN, short linger, close()                            │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

    Attributes:
        socket: The client socket.
        address: Peer (ip, port).
        id: Short identifier used in log lines.
        state: Current ConnectionState.
        bytes_written: Response bytes successfully sent.
    """

    socket: socket.socket
    address: tuple

    id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])
    state: ConnectionState = ConnectionState.ACCEPTED
    created_at: float = field(default_factory=time.monotonic)
    bytes_written: int = 0

    buffer_size: int = 4096

    _rbuf: bytearray = field(default_factory=bytearray, repr=False)
    _wbuf: bytearray = field(default_factory=bytearray, repr=False)
    _deadline: Optional[float] = field(default=None, repr=False)
    _write_failed: bool = field(default=False, repr=False)

    def __post_init__(self):
        self.socket.setblocking(True)

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def client_ip(self) -> str:
        return self.address[0]

    @property
    def client_port(self) -> int:
        return self.address[1]

    @property
    def age(self) -> float:
        """Seconds since the connection was accepted."""
        return time.monotonic() - self.created_at

    @property
    def is_closed(self) -> bool:
        return self.state == ConnectionState.CLOSED

    @property
    def write_failed(self) -> bool:
        return self._write_failed

    # =========================================================================
    # READING
    # =========================================================================

    def start_read_phase(self, timeout: float) -> None:
        """Start the read budget shared by every read until the phase ends."""
        self.state = ConnectionState.READING
        self._deadline = time.monotonic() + timeout

    def _remaining(self) -> Optional[float]:
        if self._deadline is None:
            return None
        return self._deadline - time.monotonic()

    def wait_readable(self) -> bool:
        """
        Wait until the socket has data (or EOF) within the read budget.

        Returns:
            True if a read will not block, False if the budget ran out or
            the wait itself failed.
        """
        if self._rbuf:
            return True

        remaining = self._remaining()
        if remaining is not None and remaining <= 0:
            return False

        try:
            readable, _, _ = select.select([self.socket], [], [], remaining)
        except (OSError, ValueError) as e:
            logger.warning(f"[{self.id}] Readability wait failed: {e}")
            return False

        return bool(readable)

    def _fill(self) -> bytes:
        """
        Receive one chunk into the read buffer.

        Returns:
            The chunk, or b"" on EOF.

        Raises:
            ReadTimeout: The read budget is spent.
            TransportError: recv() failed.
        """
        remaining = self._remaining()
        if remaining is not None:
            if remaining <= 0:
                raise ReadTimeout("read phase timed out")
            self.socket.settimeout(remaining)

        try:
            chunk = self.socket.recv(self.buffer_size)
        except socket.timeout as e:
            raise ReadTimeout("read phase timed out") from e
        except OSError as e:
            raise TransportError(f"recv failed: {e}") from e

        self._rbuf += chunk
        return chunk

    def read_line(self, max_length: int) -> RawLine:
        """
        Read one line of at most ``max_length - 1`` payload bytes.

        Args:
            max_length: The bound N (must be >= 2).

        Returns:
            A RawLine; see the module docstring for the outcomes.

        Raises:
            ReadTimeout: The read budget ran out before the line ended.
            TransportError: recv() failed before the line ended.
        """
        if max_length < 2:
            raise ValueError("max_length must be >= 2")

        limit = max_length - 1
        line = bytearray()

        while True:
            # ─────────────────────────────────────────────────────────────
            # Scan what is already buffered
            # ─────────────────────────────────────────────────────────────
            consumed = 0
            for byte in self._rbuf:
                if byte == LF:
                    del self._rbuf[:consumed + 1]
                    return RawLine(bytes(line), terminated=True)
                if byte == CR:
                    consumed += 1
                    continue
                if len(line) >= limit:
                    # Bound reached and the next byte is not a line feed.
                    # It stays buffered for discard_line().
                    del self._rbuf[:consumed]
                    return RawLine(bytes(line), truncated=True)
                line.append(byte)
                consumed += 1
            del self._rbuf[:consumed]

            # ─────────────────────────────────────────────────────────────
            # Need more bytes
            # ─────────────────────────────────────────────────────────────
            try:
                chunk = self._fill()
            except TransportError:
                if len(line) >= limit:
                    return RawLine(bytes(line), truncated=True)
                raise

            if not chunk:
                # EOF: whatever we hold is the last (unterminated) line.
                if len(line) >= limit:
                    return RawLine(bytes(line), truncated=True)
                return RawLine(bytes(line))

    def discard_line(self) -> int:
        """
        Drop bytes up to and including the next line feed.

        Used after a truncated read so the spillover of an overlong line
        is never read as the next line. Stops at EOF.

        Returns:
            Number of bytes discarded.

        Raises:
            ReadTimeout, TransportError: as for read_line().
        """
        discarded = 0
        while True:
            index = self._rbuf.find(b"\n")
            if index >= 0:
                del self._rbuf[:index + 1]
                return discarded + index + 1

            discarded += len(self._rbuf)
            self._rbuf.clear()

            if not self._fill():
                return discarded

    def end_read_phase(self) -> None:
        """Stop applying the read budget (writes are not timeout-guarded)."""
        self._deadline = None

    # =========================================================================
    # WRITING
    # =========================================================================

    def write(self, data: Union[bytes, str]) -> None:
        """
        Queue response data; flushes once the buffer reaches buffer_size.

        After a failed send the connection is broken: further writes are
        dropped silently (the failure was already logged).
        """
        if self._write_failed or self.is_closed:
            return

        if isinstance(data, str):
            data = data.encode("utf-8", errors="replace")

        self._wbuf += data
        if len(self._wbuf) >= self.buffer_size:
            self.flush()

    def writeline(self, text: str = "") -> None:
        self.write(text + "\n")

    def flush(self) -> bool:
        """
        Send everything buffered.

        sendall() keeps calling send() until every byte is out, so partial
        writes never leave half a response behind.

        Returns:
            True if the buffer was sent (or empty), False on failure.
        """
        if not self._wbuf:
            return not self._write_failed
        if self._write_failed:
            self._wbuf.clear()
            return False

        data = bytes(self._wbuf)
        self._wbuf.clear()

        try:
            self.socket.settimeout(None)
            self.socket.sendall(data)
        except OSError as e:
            # BrokenPipeError / ConnectionResetError: the client left early.
            logger.warning(f"[{self.id}] Send failed: {e}")
            self._write_failed = True
            return False

        self.bytes_written += len(data)
        return True

    # =========================================================================
    # CLOSING
    # =========================================================================

    def close(self) -> None:
        """
        Flush and close the connection. Safe to call more than once.

        ┌─────────────────────────────────────────────────────────────────┐
        │                    Close Sequence                                │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                  │
        │   1. flush()            failures logged, not retried             │
        │   2. shutdown(SHUT_WR)  send FIN: "response complete"            │
        │   3. linger             read and drop what the peer still sends  │
        │                         (bounded by DRAIN_TIMEOUT/DRAIN_LIMIT)   │
        │   4. close()            release the file descriptor              │
        │                                                                  │
        └─────────────────────────────────────────────────────────────────┘

        Closing with unread input makes the kernel answer with RST, which
        can destroy a response the client has not read yet. The linger in
        step 3 avoids that.
        """
        if self.state == ConnectionState.CLOSED:
            return

        try:
            if not self.flush():
                logger.debug(f"[{self.id}] Response not fully delivered")
        finally:
            self._rbuf.clear()
            self._wbuf.clear()

            try:
                self.socket.shutdown(socket.SHUT_WR)
            except OSError:
                pass  # Peer already gone

            self._linger()

            try:
                self.socket.close()
            except OSError as e:
                logger.debug(f"[{self.id}] close() failed: {e}")

            self.state = ConnectionState.CLOSED
            logger.debug(f"[{self.id}] Connection closed after {self.age:.3f}s")

    def _linger(self) -> None:
        deadline = time.monotonic() + DRAIN_TIMEOUT
        drained = 0
        try:
            while drained < DRAIN_LIMIT:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                self.socket.settimeout(remaining)
                chunk = self.socket.recv(self.buffer_size)
                if not chunk:
                    break
                drained += len(chunk)
        except OSError:
            pass  # timeout or reset, we are closing anyway

    # =========================================================================
    # CONTEXT MANAGER
    # =========================================================================

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


# =============================================================================
# MODULE SUMMARY
# =============================================================================
#
# 1. RawLine keeps the terminated/truncated flags the parser relies on
# 2. read_line() never holds more than N-1 payload bytes of one line
# 3. The read budget spans the whole read phase, not one recv()
# 4. close() is idempotent and always releases the socket
# =============================================================================
