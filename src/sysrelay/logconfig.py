"""
=============================================================================
LOGGING CONFIGURATION AND CONNECTION LOGS
=============================================================================

Process-wide diagnostic settings plus the one structured record every
connection emits when it closes.

=============================================================================
EXPLICIT LOG CONFIGURATION
=============================================================================

Diagnostic verbosity (is debug on? which level?) is decided ONCE at startup
from the command line and the environment, captured in a LogConfig, and
applied to the standard logging module:

    ┌────────────┐     ┌────────────┐     ┌─────────────────┐
    │ CLI flags  │────▶│ LogConfig  │────▶│ setup_logging() │
    │ SYSRELAY_* │     │ (frozen)   │     │ root + sysrelay │
    └────────────┘     └────────────┘     └─────────────────┘

Nothing flips verbosity while connections are being served, so a forked
Worker inherits exactly the settings its parent had.

=============================================================================
CONNECTION LOG FORMATS
=============================================================================

    TEXT (default):
    ┌─────────────────────────────────────────────────────────────────────┐
    │ 127.0.0.1:53012 [19/Oct/2026:10:55:36 +0000] SYSINFO ok 812B 3.10ms │
    └─────────────────────────────────────────────────────────────────────┘

    JSON (for log aggregators):
    ┌─────────────────────────────────────────────────────────────────────┐
    │ {"connection_id": "a1b2c3d4", "client_ip": "127.0.0.1", ...}        │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
"""

import json
import logging
import os
import time
from dataclasses import dataclass, field
from typing import Optional


# Connection summaries go to their own namespaced logger so operators can
# route or silence them independently:
#   logging.getLogger("sysrelay.access").setLevel(logging.WARNING)
access_logger = logging.getLogger("sysrelay.access")

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s[%(process)d]: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_TRUE_VALUES = ("1", "true", "yes", "on")


@dataclass(frozen=True)
class LogConfig:
    """
    Diagnostic configuration.

    Attributes:
        level: Logging level name (DEBUG, INFO, WARNING, ERROR).
        debug: Force DEBUG regardless of level.
        log_format: "text" or "json" for connection summaries.
    """

    level: str = "INFO"
    debug: bool = False
    log_format: str = "text"

    @property
    def effective_level(self) -> int:
        """Numeric level after applying the debug switch."""
        if self.debug:
            return logging.DEBUG
        return getattr(logging, self.level.upper(), logging.INFO)

    @classmethod
    def from_env(cls, environ: Optional[dict] = None) -> "LogConfig":
        """
        Read SYSRELAY_LOG_LEVEL, SYSRELAY_DEBUG and SYSRELAY_LOG_FORMAT.
        """
        env = os.environ if environ is None else environ
        return cls(
            level=env.get("SYSRELAY_LOG_LEVEL", "INFO").upper(),
            debug=env.get("SYSRELAY_DEBUG", "").strip().lower() in _TRUE_VALUES,
            log_format=env.get("SYSRELAY_LOG_FORMAT", "text").lower(),
        )

    def validate(self) -> None:
        if self.level.upper() not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Invalid log level: {self.level}")
        if self.log_format not in ("text", "json"):
            raise ValueError(f"Invalid log format: {self.log_format}")


def setup_logging(config: LogConfig) -> None:
    """Configure the root logger and the sysrelay namespace."""
    level = config.effective_level

    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        datefmt=DATE_FORMAT,
    )

    logging.getLogger("sysrelay").setLevel(level)

    # urllib3 is chatty at DEBUG; only surface its warnings.
    logging.getLogger("urllib3").setLevel(max(level, logging.WARNING))


@dataclass
class CommandLog:
    """
    Structured summary of one connection, written when it reaches Closed.

    outcome values:
        ok          Command dispatched and the response written
        closed      Unknown command closed by policy
        timeout     Nothing readable within read_timeout
        no-command  Peer sent nothing before EOF
        empty       Blank command line
        oversized   Command line filled the bound without a line feed
        write-failed  Client went away before the response was sent
        error       Transport or unexpected failure
    """

    connection_id: str
    client_ip: str
    client_port: int
    command: str = "-"
    outcome: str = "ok"
    bytes_written: int = 0
    duration_ms: float = 0.0
    timestamp: str = field(default_factory=lambda: time.strftime("%d/%b/%Y:%H:%M:%S %z"))

    def to_dict(self) -> dict:
        return {
            "connection_id": self.connection_id,
            "client_ip": self.client_ip,
            "client_port": self.client_port,
            "command": self.command,
            "outcome": self.outcome,
            "bytes_written": self.bytes_written,
            "duration_ms": round(self.duration_ms, 2),
            "timestamp": self.timestamp,
        }

    def to_text(self) -> str:
        return (
            f"{self.client_ip}:{self.client_port} [{self.timestamp}] "
            f"{self.command} {self.outcome} {self.bytes_written}B {self.duration_ms:.2f}ms"
        )

    def emit(self, log_format: str = "text", level: int = logging.INFO) -> None:
        """Write the record to the access logger."""
        if log_format == "json":
            access_logger.log(level, json.dumps(self.to_dict()))
        else:
            access_logger.log(level, self.to_text())
