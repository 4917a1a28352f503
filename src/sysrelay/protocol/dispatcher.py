"""
=============================================================================
COMMAND DISPATCHER
=============================================================================

Maps a parsed Command to the code that answers it.

=============================================================================
DISPATCH TABLE
=============================================================================

    ┌───────────────────┬─────────────────────────────────────────────────┐
    │ Command           │ Response                                        │
    ├───────────────────┼─────────────────────────────────────────────────┤
    │ StatusCommand     │ status_reporter.report(sink)                    │
    ├───────────────────┼─────────────────────────────────────────────────┤
    │ SendMailCommand   │ Command: SENDMAIL                               │
    │                   │ To: alice@example.com                           │
    │                   │ Subject: Hello                                  │
    │                   │ Body: Body text                                 │
    │                   │ Email sent successfully                         │
    │                   │   (or: Error: Failed to send email)             │
    ├───────────────────┼─────────────────────────────────────────────────┤
    │ UnknownCommand    │ policy CLOSE  → nothing                         │
    │                   │ policy STATUS → same as StatusCommand           │
    └───────────────────┴─────────────────────────────────────────────────┘

Every dispatch is one-shot: the Worker closes the connection afterwards.

=============================================================================
CAPABILITY FAILURES NEVER ESCAPE
=============================================================================

A capability that returns False, or raises, turns into response text.
dispatch() itself only raises for programming errors (an unhandled
command type), so the Worker's state machine always moves on to
Responding.

=============================================================================
"""

import logging
from dataclasses import dataclass
from typing import Callable, Dict, Type

from ..config import UnknownCommandPolicy
from ..handlers.base import MailRelay, ResponseSink, StatusReporter
from .command import Command, SendMailCommand, StatusCommand, UnknownCommand


logger = logging.getLogger(__name__)

MAIL_SUCCESS_LINE = "Email sent successfully"
MAIL_FAILURE_LINE = "Error: Failed to send email"
STATUS_FAILURE_LINE = "Error: Status report failed"


@dataclass(frozen=True)
class DispatchResult:
    """
    Outcome of one dispatch, for the connection log.

    Attributes:
        command: Keyword that was served ("SYSINFO", "SENDMAIL", "UNKNOWN").
        outcome: "ok", "mail-failed", "status-failed" or "closed".
    """

    command: str
    outcome: str = "ok"


class CommandDispatcher:
    """
    Routes commands to the status reporter or the mail relay.

    Example:
        dispatcher = CommandDispatcher(
            SystemStatusReporter(),
            SendGridRelay(),
            unknown_policy=UnknownCommandPolicy.STATUS,
        )
        result = dispatcher.dispatch(StatusCommand(), conn)
    """

    def __init__(
        self,
        status_reporter: StatusReporter,
        mail_relay: MailRelay,
        unknown_policy: UnknownCommandPolicy = UnknownCommandPolicy.CLOSE,
    ):
        self.status_reporter = status_reporter
        self.mail_relay = mail_relay
        self.unknown_policy = unknown_policy

        self._handlers: Dict[Type, Callable[[Command, ResponseSink], DispatchResult]] = {
            StatusCommand: self._handle_status,
            SendMailCommand: self._handle_sendmail,
            UnknownCommand: self._handle_unknown,
        }

    def dispatch(self, command: Command, sink: ResponseSink) -> DispatchResult:
        handler = self._handlers.get(type(command))
        if handler is None:
            raise TypeError(f"No handler for {type(command).__name__}")
        return handler(command, sink)

    # =========================================================================
    # HANDLERS
    # =========================================================================

    def _handle_status(self, command: Command, sink: ResponseSink) -> DispatchResult:
        try:
            self.status_reporter.report(sink)
        except Exception:
            logger.exception("Status reporter failed")
            sink.write(STATUS_FAILURE_LINE + "\n")
            return DispatchResult(StatusCommand.keyword, "status-failed")
        return DispatchResult(StatusCommand.keyword)

    def _handle_sendmail(self, command: SendMailCommand, sink: ResponseSink) -> DispatchResult:
        # Echo first so the client sees what was received even if the
        # relay takes a while.
        sink.write(f"Command: {SendMailCommand.keyword}\n")
        sink.write(f"To: {command.to}\n")
        sink.write(f"Subject: {command.subject}\n")
        sink.write(f"Body: {command.body}\n")

        try:
            sent = bool(self.mail_relay.send(command.to, command.subject, command.body))
        except Exception:
            logger.exception("Mail relay raised")
            sent = False

        if sent:
            sink.write(MAIL_SUCCESS_LINE + "\n")
            return DispatchResult(SendMailCommand.keyword)

        sink.write(MAIL_FAILURE_LINE + "\n")
        return DispatchResult(SendMailCommand.keyword, "mail-failed")

    def _handle_unknown(self, command: UnknownCommand, sink: ResponseSink) -> DispatchResult:
        if self.unknown_policy is UnknownCommandPolicy.STATUS:
            logger.debug(f"Unknown command {command.raw!r}, answering with status")
            result = self._handle_status(command, sink)
            return DispatchResult(UnknownCommand.keyword, result.outcome)

        logger.debug(f"Unknown command {command.raw!r}, closing")
        return DispatchResult(UnknownCommand.keyword, "closed")
