"""
=============================================================================
LISTENER CONFIGURATION
=============================================================================

Centralized configuration for the sysrelay server.

=============================================================================
WHY A FROZEN DATACLASS?
=============================================================================

The listener configuration is read ONCE at startup and never changes while
the server runs. Every Worker receives the same object, so it must be
impossible to mutate it from inside a connection:

    config = ListenerConfig(port=9734)
    config.port = 80        # dataclasses.FrozenInstanceError!

A frozen dataclass gives us:
1. Typed fields - IDE autocomplete and error detection
2. Immutability - safe to hand to any Worker
3. Cheap copies - dataclasses.replace() for CLI overrides

=============================================================================
CONFIGURATION SOURCES
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    CONFIGURATION HIERARCHY                          │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   Priority (highest to lowest):                                     │
    │                                                                      │
    │   1. Command-line arguments                                         │
    │      └── sysrelay --port 9000                                       │
    │                                                                      │
    │   2. Environment variables                                          │
    │      └── SYSRELAY_PORT=9000 sysrelay                                │
    │                                                                      │
    │   3. Default values (in this dataclass)                             │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

Mail credentials are NOT part of this object. They belong to the mail
relay and are looked up by it (see sysrelay.env and handlers.mail).

=============================================================================
"""

import os
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class UnknownCommandPolicy(Enum):
    """
    What to do with a command keyword the server does not know.

    CLOSE   Close the connection without writing anything (default).
    STATUS  Answer as if the client had sent SYSINFO.
    """
    CLOSE = "close"
    STATUS = "status"

    @classmethod
    def parse(cls, value: str) -> "UnknownCommandPolicy":
        """Parse a policy name, case-insensitively."""
        try:
            return cls(value.strip().lower())
        except ValueError:
            choices = ", ".join(p.value for p in cls)
            raise ValueError(f"Invalid unknown-command policy: {value!r} (choose from {choices})")


ISOLATION_MODES = ("process", "thread")


@dataclass(frozen=True)
class ListenerConfig:
    """
    Configuration for the listening socket and every connection it accepts.

    =========================================================================
    CONFIGURATION GROUPS
    =========================================================================

    NETWORK SETTINGS
    - host, port, backlog, accept_poll_interval

    PROTOCOL LIMITS
    - read_timeout, max_command_length, max_field_length, max_body_length

    BEHAVIOUR
    - unknown_policy, isolation, buffer_size

    =========================================================================
    """

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    host: str = "127.0.0.1"
    """Address to bind. "0.0.0.0" exposes the server on every interface."""

    port: int = 9734
    """TCP port. 0 asks the OS for a free port (used by the test suite)."""

    backlog: int = 10
    """Queued, not yet accepted connections before the kernel refuses more."""

    accept_poll_interval: float = 0.5
    """
    How long accept() blocks before the loop re-checks the shutdown flag.
    Bounds the delay between SIGTERM and the listener closing.
    """

    # ─────────────────────────────────────────────────────────────────────
    # PROTOCOL LIMITS
    # ─────────────────────────────────────────────────────────────────────

    read_timeout: float = 10.0
    """Budget in seconds for the WHOLE read phase of one connection."""

    max_command_length: int = 256
    """
    Bound N for the command line. At most N-1 bytes are kept; a line that
    fills the bound without a line feed is rejected as oversized.

    This also bounds the whole single-line SENDMAIL|to|subject|body form,
    so its body can be far shorter than max_body_length allows for the
    multi-line form.
    """

    max_field_length: int = 256
    """Bound for the SENDMAIL recipient and subject lines."""

    max_body_length: int = 4096
    """Bound for the SENDMAIL body line."""

    # ─────────────────────────────────────────────────────────────────────
    # BEHAVIOUR
    # ─────────────────────────────────────────────────────────────────────

    unknown_policy: UnknownCommandPolicy = UnknownCommandPolicy.CLOSE
    """See UnknownCommandPolicy."""

    isolation: str = "process"
    """
    "process" - fork one child process per connection (POSIX only)
    "thread"  - one daemon thread per connection
    """

    buffer_size: int = 4096
    """recv() chunk size and write buffer flush threshold."""

    @classmethod
    def from_env(cls, environ: Optional[dict] = None) -> "ListenerConfig":
        """
        Create configuration from environment variables.

        =====================================================================
        ENVIRONMENT VARIABLES
        =====================================================================

        SYSRELAY_HOST                Bind address (default: 127.0.0.1)
        SYSRELAY_PORT                Port (default: 9734)
        SYSRELAY_BACKLOG             Listen backlog (default: 10)
        SYSRELAY_READ_TIMEOUT        Read phase timeout in seconds (default: 10)
        SYSRELAY_MAX_COMMAND_LENGTH  Command line bound (default: 256)
        SYSRELAY_UNKNOWN_POLICY      close | status (default: close)
        SYSRELAY_ISOLATION           process | thread (default: process)

        =====================================================================
        """
        env = os.environ if environ is None else environ
        defaults = cls()
        return cls(
            host=env.get("SYSRELAY_HOST", defaults.host),
            port=int(env.get("SYSRELAY_PORT", defaults.port)),
            backlog=int(env.get("SYSRELAY_BACKLOG", defaults.backlog)),
            read_timeout=float(env.get("SYSRELAY_READ_TIMEOUT", defaults.read_timeout)),
            max_command_length=int(
                env.get("SYSRELAY_MAX_COMMAND_LENGTH", defaults.max_command_length)
            ),
            unknown_policy=UnknownCommandPolicy.parse(
                env.get("SYSRELAY_UNKNOWN_POLICY", defaults.unknown_policy.value)
            ),
            isolation=env.get("SYSRELAY_ISOLATION", defaults.isolation),
        )

    def validate(self) -> None:
        """
        Validate configuration values.

        Fail fast at startup instead of failing inside the first Worker.

        Raises:
            ValueError: If any value is out of range.
        """
        if not 0 <= self.port < 65536:
            raise ValueError(f"Invalid port: {self.port}. Must be 0-65535.")

        if self.backlog < 1:
            raise ValueError("backlog must be >= 1")

        if self.read_timeout <= 0:
            raise ValueError("read_timeout must be > 0")

        if self.accept_poll_interval <= 0:
            raise ValueError("accept_poll_interval must be > 0")

        # A bound of 1 leaves room for zero payload bytes.
        for name in ("max_command_length", "max_field_length", "max_body_length"):
            if getattr(self, name) < 2:
                raise ValueError(f"{name} must be >= 2")

        if self.buffer_size < 64:
            raise ValueError("buffer_size must be >= 64")

        if not isinstance(self.unknown_policy, UnknownCommandPolicy):
            raise ValueError(f"Invalid unknown_policy: {self.unknown_policy!r}")

        if self.isolation not in ISOLATION_MODES:
            raise ValueError(
                f"Invalid isolation: {self.isolation!r} (choose from {', '.join(ISOLATION_MODES)})"
            )

        if self.isolation == "process" and not hasattr(os, "fork"):
            raise ValueError("process isolation requires os.fork (POSIX only)")


# =============================================================================
# MODULE SUMMARY
# =============================================================================
#
# 1. ListenerConfig is frozen: built once, shared read-only by every Worker
# 2. from_env() follows the 12-factor "config in the environment" rule
# 3. validate() runs before the socket is created
# =============================================================================
