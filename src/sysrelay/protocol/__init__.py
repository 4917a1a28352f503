"""
=============================================================================
LINE PROTOCOL
=============================================================================

    command.py      CommandParser, Command types, ProtocolError family
    dispatcher.py   CommandDispatcher, DispatchResult

The parser reads from a Connection; the dispatcher writes to it. Neither
knows how the connection was accepted or which Worker owns it.

=============================================================================
"""

from .command import (
    Command,
    CommandParser,
    EmptyCommand,
    NoCommand,
    OversizedCommand,
    ProtocolError,
    SendMailCommand,
    StatusCommand,
    UnknownCommand,
)
from .dispatcher import (
    MAIL_FAILURE_LINE,
    MAIL_SUCCESS_LINE,
    CommandDispatcher,
    DispatchResult,
)

__all__ = [
    "Command",
    "CommandParser",
    "StatusCommand",
    "SendMailCommand",
    "UnknownCommand",
    "ProtocolError",
    "NoCommand",
    "EmptyCommand",
    "OversizedCommand",
    "CommandDispatcher",
    "DispatchResult",
    "MAIL_SUCCESS_LINE",
    "MAIL_FAILURE_LINE",
]
