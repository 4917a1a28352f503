"""
=============================================================================
LINE PROTOCOL CLIENT
=============================================================================

A small client for talking to a sysrelay server from scripts and the
shell.

=============================================================================
USAGE
=============================================================================

    # Status report (the default command)
    sysrelay-client

    # Relay an email
    sysrelay-client SENDMAIL alice@example.com "Hello" "Body text"

    # Any other single command line
    sysrelay-client "SENDMAIL|alice@example.com|Hello|Body text"

    # Another server
    sysrelay-client --host 10.0.0.5 --port 9000

Every request is one connection: send the lines, half-close, read the
reply until the server closes.

=============================================================================
"""

import argparse
import socket
import sys
from typing import Iterable, Optional

from . import __version__
from .config import ListenerConfig
from .protocol.command import SENDMAIL_KEYWORD, STATUS_KEYWORD


DEFAULT_HOST = ListenerConfig.host
DEFAULT_PORT = ListenerConfig.port
DEFAULT_TIMEOUT = 30.0

DEFAULT_SUBJECT = "Test Subject"
DEFAULT_BODY = "Hello from socket client"

SEPARATOR = "-" * 40


def send_lines(
    lines: Iterable[str],
    host: str = DEFAULT_HOST,
    port: int = DEFAULT_PORT,
    timeout: Optional[float] = DEFAULT_TIMEOUT,
    half_close: bool = True,
) -> str:
    """
    Send ``lines`` (each followed by a line feed) and return the whole reply.

    Args:
        half_close: Send FIN after the last line so the server sees EOF
            instead of waiting for more continuation lines.

    Raises:
        OSError: Connection refused, reset, or timed out.
    """
    payload = "".join(f"{line}\n" for line in lines).encode("utf-8")

    with socket.create_connection((host, port), timeout=timeout) as sock:
        if payload:
            sock.sendall(payload)
        if half_close:
            sock.shutdown(socket.SHUT_WR)

        chunks = []
        while True:
            chunk = sock.recv(4096)
            if not chunk:
                break
            chunks.append(chunk)

    return b"".join(chunks).decode("utf-8", errors="replace")


def request_status(host: str = DEFAULT_HOST, port: int = DEFAULT_PORT, **kwargs) -> str:
    """Ask for the status report."""
    return send_lines([STATUS_KEYWORD], host, port, **kwargs)


def request_sendmail(
    to: str,
    subject: str = DEFAULT_SUBJECT,
    body: str = DEFAULT_BODY,
    host: str = DEFAULT_HOST,
    port: int = DEFAULT_PORT,
    **kwargs,
) -> str:
    """Ask the server to relay one email; returns the server's echo and result."""
    return send_lines([SENDMAIL_KEYWORD, to, subject, body], host, port, **kwargs)


def main(argv: Optional[list] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="sysrelay-client",
        description="Send one command to a sysrelay server and print the reply",
    )
    parser.add_argument(
        "command",
        nargs="?",
        default=STATUS_KEYWORD,
        help=f"Command line to send (default: {STATUS_KEYWORD})",
    )
    parser.add_argument("to", nargs="?", help="SENDMAIL recipient")
    parser.add_argument("subject", nargs="?", default=DEFAULT_SUBJECT, help="SENDMAIL subject")
    parser.add_argument("body", nargs="?", default=DEFAULT_BODY, help="SENDMAIL body")
    parser.add_argument("--host", "-H", default=DEFAULT_HOST, help=f"Server host (default: {DEFAULT_HOST})")
    parser.add_argument("--port", "-p", type=int, default=DEFAULT_PORT, help=f"Server port (default: {DEFAULT_PORT})")
    parser.add_argument(
        "--timeout", "-t",
        type=float,
        default=DEFAULT_TIMEOUT,
        help=f"Socket timeout in seconds (default: {DEFAULT_TIMEOUT:g})",
    )
    parser.add_argument("--version", "-v", action="version", version=f"sysrelay-client {__version__}")

    args = parser.parse_args(argv)

    if args.command == SENDMAIL_KEYWORD:
        if not args.to:
            parser.error("SENDMAIL needs a recipient")
        lines = [SENDMAIL_KEYWORD, args.to, args.subject, args.body]
    else:
        lines = [args.command]

    try:
        reply = send_lines(lines, args.host, args.port, timeout=args.timeout)
    except OSError as e:
        print(f"Error: cannot talk to {args.host}:{args.port}: {e}", file=sys.stderr)
        return 1

    print(f"Connected to server {args.host}:{args.port}")
    if args.command == SENDMAIL_KEYWORD:
        print("Sent mail request:")
        print(f"  To: {args.to}")
        print(f"  Subject: {args.subject}")
        print(f"  Body: {args.body}")

    print()
    print("Server reply:")
    print(SEPARATOR)
    print(reply, end="" if reply.endswith("\n") or not reply else "\n")
    print(SEPARATOR)
    return 0


if __name__ == "__main__":
    sys.exit(main())
