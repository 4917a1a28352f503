"""
=============================================================================
CAPABILITY INTERFACES
=============================================================================

The dispatcher talks to two external collaborators through deliberately
narrow interfaces:

    ┌─────────────────────────────────────────────────────────────────────┐
    │ Capability       │ Contract                                        │
    ├─────────────────────────────────────────────────────────────────────┤
    │ StatusReporter   │ report(sink) - write a multi-section text       │
    │                  │ report; never raises for a single bad section   │
    ├─────────────────────────────────────────────────────────────────────┤
    │ MailRelay        │ send(to, subject, body) -> bool                 │
    │                  │ why a send failed stays inside the relay        │
    └─────────────────────────────────────────────────────────────────────┘

Neither capability knows about sockets, framing or concurrency. That is
what makes them easy to replace in tests:

    class FakeRelay(MailRelay):
        def send(self, to, subject, body):
            return to.endswith("@example.com")

=============================================================================
"""

from abc import ABC, abstractmethod
from typing import Protocol


class CapabilityError(Exception):
    """A capability failed. Absorbed by the dispatcher, never fatal."""


class ResponseSink(Protocol):
    """Anything text can be written to (a Connection, io.StringIO, ...)."""

    def write(self, data: str) -> object:
        ...


class StatusReporter(ABC):
    """Produces the diagnostic report sent for SYSINFO."""

    @abstractmethod
    def report(self, sink: ResponseSink) -> None:
        """Write the full report to ``sink``."""
        pass


class MailRelay(ABC):
    """Delivers one plain-text email."""

    @abstractmethod
    def send(self, to: str, subject: str, body: str) -> bool:
        """
        Send an email.

        Returns:
            True on success, False on any failure.
        """
        pass
