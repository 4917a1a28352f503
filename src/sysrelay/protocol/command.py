"""
=============================================================================
COMMAND PARSING
=============================================================================

Turns the first line a client sends (plus, for SENDMAIL, the lines that
follow it) into a typed, immutable Command.

=============================================================================
THE WIRE FORMAT
=============================================================================

Every line ends with "\\n"; "\\r" bytes are ignored.

    SYSINFO\\n                           → StatusCommand()

    SENDMAIL\\n                          → SendMailCommand(
    alice@example.com\\n                       to="alice@example.com",
    Hello\\n                                   subject="Hello",
    Body text\\n                               body="Body text")

    SENDMAIL|alice@example.com|Hello|Body text\\n   (single-line framing)

    anything else\\n                     → UnknownCommand(raw="anything else")

Keywords are compared CASE-SENSITIVELY: "sysinfo" is an unknown command.

=============================================================================
PARSING ALGORITHM
=============================================================================

    ┌─────────────────────────────────────────────────────────────────┐
    │                                                                  │
    │   read_line(max_command_length)                                  │
    │        │                                                         │
    │        ├── no data ───────────────────────► NoCommand            │
    │        ├── truncated (bound filled) ──────► OversizedCommand     │
    │        │                                                         │
    │   strip()                                                        │
    │        ├── "" ────────────────────────────► EmptyCommand         │
    │        ├── "SYSINFO" ─────────────────────► StatusCommand        │
    │        ├── "SENDMAIL" ──► read 3 lines ───► SendMailCommand      │
    │        ├── "SENDMAIL|..." ► split on "|" ─► SendMailCommand      │
    │        └── other ─────────────────────────► UnknownCommand       │
    │                                                                  │
    └─────────────────────────────────────────────────────────────────┘

Nothing is retried. Every ProtocolError ends the connection, silently.

=============================================================================
"""

import logging
from dataclasses import dataclass
from typing import Union

from ..config import ListenerConfig
from ..core.connection import Connection, RawLine, TransportError


logger = logging.getLogger(__name__)

STATUS_KEYWORD = "SYSINFO"
SENDMAIL_KEYWORD = "SENDMAIL"
FIELD_SEPARATOR = "|"


# =============================================================================
# PROTOCOL ERRORS
# =============================================================================

class ProtocolError(Exception):
    """
    Raised when the command cannot be parsed.

    ``reason`` is a short token for logs. It lets operators tell hostile
    or broken clients ("oversized") from idle ones ("no-command",
    "empty"); the server answers all of them the same way, by closing.
    """

    reason = "protocol-error"

    def __init__(self, message: str):
        super().__init__(message)


class NoCommand(ProtocolError):
    """The peer closed (or failed) before sending a single byte."""
    reason = "no-command"


class EmptyCommand(ProtocolError):
    """The command line was blank."""
    reason = "empty"


class OversizedCommand(ProtocolError):
    """The command line filled its bound without a line feed."""
    reason = "oversized"


# =============================================================================
# COMMANDS
# =============================================================================

@dataclass(frozen=True)
class StatusCommand:
    """SYSINFO: stream the status report."""

    keyword = STATUS_KEYWORD


@dataclass(frozen=True)
class SendMailCommand:
    """SENDMAIL: relay one email. Missing fields arrive as ""."""

    to: str = ""
    subject: str = ""
    body: str = ""

    keyword = SENDMAIL_KEYWORD


@dataclass(frozen=True)
class UnknownCommand:
    """Any other first line, kept verbatim (stripped) for logging."""

    raw: str

    keyword = "UNKNOWN"


Command = Union[StatusCommand, SendMailCommand, UnknownCommand]


class CommandParser:
    """
    Reads and parses one command from a connection.

    Example:
        parser = CommandParser(config)
        try:
            command = parser.parse(conn)
        except ProtocolError as e:
            logger.info(f"rejected: {e.reason}")
    """

    def __init__(self, config: ListenerConfig):
        self.max_command_length = config.max_command_length
        self.max_field_length = config.max_field_length
        self.max_body_length = config.max_body_length

    def parse(self, conn: Connection) -> Command:
        """
        Parse the command at the head of ``conn``'s input.

        Raises:
            NoCommand, OversizedCommand, EmptyCommand: see ProtocolError.
            ReadTimeout: The read budget ran out while reading SENDMAIL fields.
            TransportError: A SENDMAIL field read failed.
        """
        try:
            line = conn.read_line(self.max_command_length)
        except TransportError as e:
            # Stalled or broken before a complete first line.
            raise NoCommand(f"no complete command line: {e}") from e

        if line.no_data:
            raise NoCommand("connection closed before any command byte")

        if line.truncated:
            raise OversizedCommand(
                f"command line exceeds {self.max_command_length - 1} bytes"
            )

        text = line.text().strip()
        if not text:
            raise EmptyCommand("blank command line")

        return self.parse_text(text, conn)

    def parse_text(self, text: str, conn: Connection) -> Command:
        if text == STATUS_KEYWORD:
            return StatusCommand()

        if text == SENDMAIL_KEYWORD:
            return SendMailCommand(
                to=self._read_field(conn, self.max_field_length),
                subject=self._read_field(conn, self.max_field_length),
                body=self._read_field(conn, self.max_body_length),
            )

        if text.startswith(SENDMAIL_KEYWORD + FIELD_SEPARATOR):
            return self.parse_inline_sendmail(text)

        return UnknownCommand(raw=text)

    @staticmethod
    def parse_inline_sendmail(text: str) -> SendMailCommand:
        """
        Parse the single-line framing ``SENDMAIL|to|subject|body``.

        The body is everything after the third separator, so it may itself
        contain "|". Missing fields become "".

        The whole line, body included, is bounded by max_command_length,
        not by max_field_length or max_body_length: longer mail has to use
        the multi-line form.
        """
        parts = text.split(FIELD_SEPARATOR, 3)[1:]
        parts += [""] * (3 - len(parts))
        to, subject, body = (p.strip() for p in parts)
        return SendMailCommand(to=to, subject=subject, body=body)

    def _read_field(self, conn: Connection, max_length: int) -> str:
        """
        Read one SENDMAIL continuation line.

        A line missing because the client closed its side early is ""
        (the mail relay rejects an empty recipient). A stalled or failed
        read raises instead, so nothing is dispatched after the read
        budget is spent.
        An overlong line keeps its first max_length-1 bytes; the rest is
        discarded so it cannot be read as the following field.
        """
        line: RawLine = conn.read_line(max_length)

        if line.no_data:
            return ""

        if line.truncated:
            dropped = conn.discard_line()
            logger.debug(
                f"[{conn.id}] Field truncated to {len(line.data)} bytes ({dropped} dropped)"
            )

        return line.text().strip()
