"""
Unit tests for Connection: bounded line framing, read deadline, writes, close.
"""

import socket
import time

import pytest

from sysrelay.core.connection import (
    NO_DATA,
    Connection,
    ConnectionState,
    RawLine,
    ReadTimeout,
    TransportError,
)


class TestReadLine:
    """Tests for Connection.read_line()."""

    def test_terminated_line(self, conn_pair):
        conn, client = conn_pair
        client.sendall(b"SYSINFO\n")

        line = conn.read_line(256)

        assert line == RawLine(b"SYSINFO", terminated=True)
        assert not line.no_data

    def test_carriage_return_dropped(self, conn_pair):
        conn, client = conn_pair
        client.sendall(b"SYS\rINFO\r\n")

        assert conn.read_line(256).data == b"SYSINFO"

    def test_several_lines_in_one_chunk(self, conn_pair):
        conn, client = conn_pair
        client.sendall(b"SENDMAIL\nalice@example.com\nHi\n")

        assert conn.read_line(256).data == b"SENDMAIL"
        assert conn.read_line(256).data == b"alice@example.com"
        assert conn.read_line(256).data == b"Hi"

    def test_line_split_across_sends(self, conn_pair):
        conn, client = conn_pair
        client.sendall(b"SYS")
        time.sleep(0.05)
        client.sendall(b"INFO\n")

        assert conn.read_line(256) == RawLine(b"SYSINFO", terminated=True)

    def test_exact_fit_is_not_truncated(self, conn_pair):
        """N-1 payload bytes followed by a line feed is a complete line."""
        conn, client = conn_pair
        client.sendall(b"ABCD\n")

        line = conn.read_line(5)

        assert line == RawLine(b"ABCD", terminated=True)

    def test_bound_reached_without_line_feed(self, conn_pair):
        conn, client = conn_pair
        client.sendall(b"ABCDEFG\nNEXT\n")

        line = conn.read_line(5)

        assert line.data == b"ABCD"
        assert line.truncated
        assert not line.terminated

    def test_discard_line_drops_spillover(self, conn_pair):
        conn, client = conn_pair
        client.sendall(b"ABCDEFG\nNEXT\n")

        conn.read_line(5)
        dropped = conn.discard_line()

        assert dropped == 4  # "EFG\n"
        assert conn.read_line(5) == RawLine(b"NEXT", terminated=True)

    def test_eof_before_any_byte_is_no_data(self, conn_pair):
        conn, client = conn_pair
        client.shutdown(socket.SHUT_WR)

        line = conn.read_line(256)

        assert line == NO_DATA
        assert line.no_data

    def test_blank_line_is_not_no_data(self, conn_pair):
        conn, client = conn_pair
        client.sendall(b"\n")

        line = conn.read_line(256)

        assert line.data == b""
        assert line.terminated
        assert not line.no_data

    def test_eof_after_partial_line(self, conn_pair):
        conn, client = conn_pair
        client.sendall(b"SYSINFO")
        client.shutdown(socket.SHUT_WR)

        line = conn.read_line(256)

        assert line == RawLine(b"SYSINFO")
        assert not line.no_data

    def test_invalid_bound(self, conn_pair):
        conn, _ = conn_pair
        with pytest.raises(ValueError):
            conn.read_line(1)


class TestReadDeadline:
    """The read budget covers the whole read phase."""

    def test_wait_readable_times_out(self, conn_pair):
        conn, _ = conn_pair
        conn.start_read_phase(0.1)

        start = time.monotonic()
        assert conn.wait_readable() is False
        assert time.monotonic() - start < 2.0
        assert conn.state == ConnectionState.READING

    def test_wait_readable_with_data(self, conn_pair):
        conn, client = conn_pair
        client.sendall(b"x")
        conn.start_read_phase(1.0)

        assert conn.wait_readable() is True

    def test_silent_peer_times_out(self, conn_pair):
        """A stalled peer is a timeout, never a missing line."""
        conn, _ = conn_pair
        conn.start_read_phase(0.1)

        with pytest.raises(ReadTimeout):
            conn.read_line(256)

    def test_recv_error_before_any_byte_raises(self, conn_pair, monkeypatch):
        conn, _ = conn_pair

        def reset():
            raise TransportError("recv failed: connection reset")

        monkeypatch.setattr(conn, "_fill", reset)

        with pytest.raises(TransportError):
            conn.read_line(256)

    def test_discard_line_times_out(self, conn_pair):
        conn, client = conn_pair
        client.sendall(b"ABCDEFG")
        conn.start_read_phase(0.2)

        assert conn.read_line(5).truncated
        with pytest.raises(ReadTimeout):
            conn.discard_line()

    def test_timeout_mid_line_raises(self, conn_pair):
        conn, client = conn_pair
        client.sendall(b"SYS")
        conn.start_read_phase(0.2)

        with pytest.raises(ReadTimeout):
            conn.read_line(256)

    def test_end_read_phase_clears_deadline(self, conn_pair):
        conn, client = conn_pair
        conn.start_read_phase(0.01)
        time.sleep(0.05)
        conn.end_read_phase()

        client.sendall(b"late\n")
        assert conn.read_line(256).data == b"late"


class TestWriting:
    """Tests for buffered writes."""

    def test_write_and_flush(self, conn_pair):
        conn, client = conn_pair

        conn.write("hello ")
        conn.write(b"world\n")
        assert conn.bytes_written == 0

        assert conn.flush() is True
        assert conn.bytes_written == 12
        assert client.recv(100) == b"hello world\n"

    def test_writeline(self, conn_pair):
        conn, client = conn_pair

        conn.writeline("one")
        conn.flush()

        assert client.recv(100) == b"one\n"

    def test_auto_flush_at_buffer_size(self):
        server_sock, client_sock = socket.socketpair()
        conn = Connection(socket=server_sock, address=("127.0.0.1", 1), buffer_size=64)

        conn.write(b"x" * 64)

        assert conn.bytes_written == 64
        client_sock.close()
        conn.close()

    def test_failed_write_is_recorded_and_later_writes_dropped(self, conn_pair):
        conn, client = conn_pair
        client.close()

        conn.write(b"x" * 10)
        assert conn.flush() is False
        assert conn.write_failed

        conn.write(b"more")
        assert conn.flush() is False
        assert conn.bytes_written == 0


class TestClose:
    """Tests for the close sequence."""

    def test_close_flushes_and_sends_eof(self, conn_pair, recv_all):
        conn, client = conn_pair
        conn.write("bye\n")
        client.shutdown(socket.SHUT_WR)

        conn.close()

        assert conn.is_closed
        assert recv_all(client) == b"bye\n"

    def test_close_is_idempotent(self, conn_pair):
        conn, client = conn_pair
        client.shutdown(socket.SHUT_WR)

        conn.close()
        conn.close()

        assert conn.state == ConnectionState.CLOSED

    def test_close_with_unread_input(self, conn_pair, recv_all):
        """Unread input is drained so the response is not reset away."""
        conn, client = conn_pair
        client.sendall(b"garbage" * 100)
        conn.write("response\n")
        client.shutdown(socket.SHUT_WR)

        conn.close()

        assert recv_all(client) == b"response\n"

    def test_linger_is_bounded(self, conn_pair):
        conn, client = conn_pair

        start = time.monotonic()
        conn.close()  # client never closes

        assert time.monotonic() - start < 2.0
        assert conn.is_closed

    def test_writes_after_close_are_dropped(self, conn_pair):
        conn, client = conn_pair
        client.shutdown(socket.SHUT_WR)
        conn.close()

        conn.write("late")
        assert conn.bytes_written == 0

    def test_context_manager_closes(self):
        server_sock, client_sock = socket.socketpair()
        client_sock.shutdown(socket.SHUT_WR)

        with Connection(socket=server_sock, address=("127.0.0.1", 1)) as conn:
            assert not conn.is_closed

        assert conn.is_closed
        client_sock.close()


class TestProperties:
    def test_address_parts(self, conn_pair):
        conn, _ = conn_pair
        assert conn.client_ip == "127.0.0.1"
        assert conn.client_port == 50000
        assert conn.state == ConnectionState.ACCEPTED
        assert len(conn.id) == 8
        assert conn.age >= 0
