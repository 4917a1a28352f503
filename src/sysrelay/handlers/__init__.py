"""
=============================================================================
CAPABILITIES
=============================================================================

The external collaborators the dispatcher calls into.

    ┌─────────────────────────────────────────────────────────────────────┐
    │ Module       │ Provides                                             │
    ├─────────────────────────────────────────────────────────────────────┤
    │ base.py      │ StatusReporter / MailRelay interfaces,               │
    │              │ CapabilityError                                      │
    │ sysinfo.py   │ SystemStatusReporter (psutil + platform)             │
    │ mail.py      │ SendGridRelay (requests), credential lookup          │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
"""

from .base import CapabilityError, MailRelay, ResponseSink, StatusReporter
from .sysinfo import SystemStatusReporter
from .mail import (
    MailConfigError,
    MailCredentials,
    MailRelayError,
    SendGridRelay,
    resolve_credentials,
)

__all__ = [
    "CapabilityError",
    "MailRelay",
    "ResponseSink",
    "StatusReporter",
    "SystemStatusReporter",
    "SendGridRelay",
    "MailCredentials",
    "MailConfigError",
    "MailRelayError",
    "resolve_credentials",
]
