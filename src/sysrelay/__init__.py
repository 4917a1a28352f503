"""
=============================================================================
SYSRELAY
=============================================================================

A line-protocol TCP server that answers two commands:

    SYSINFO                         → plain-text system status report
    SENDMAIL\\n<to>\\n<subject>\\n<body>  → relay one email via SendGrid
    SENDMAIL|<to>|<subject>|<body>  → same, on a single line

One command per connection. The server replies, then closes.

=============================================================================
PROJECT STRUCTURE
=============================================================================

    sysrelay/
    ├── config.py          ListenerConfig, UnknownCommandPolicy
    ├── logconfig.py       LogConfig, setup_logging, CommandLog
    ├── env.py             KEY=VALUE env-file loading
    ├── server.py          SysRelayServer orchestrator
    ├── client.py          sysrelay-client
    ├── __main__.py        sysrelay (server CLI)
    ├── core/
    │   ├── connection.py      Connection, bounded line reader
    │   ├── worker.py          ConnectionWorker, process/thread spawners
    │   └── socket_server.py   accept loop, signals, shutdown flag
    ├── protocol/
    │   ├── command.py         CommandParser, Command types
    │   └── dispatcher.py      CommandDispatcher
    └── handlers/
        ├── base.py            StatusReporter, MailRelay interfaces
        ├── sysinfo.py         SystemStatusReporter (psutil)
        └── mail.py            SendGridRelay (requests)

=============================================================================
"""

__version__ = "1.0.0"

# core must be imported before protocol (see core/__init__.py).
from .config import ListenerConfig, UnknownCommandPolicy
from .logconfig import LogConfig
from .core import StartupError
from .server import SysRelayServer, create_app

__all__ = [
    "SysRelayServer",
    "create_app",
    "ListenerConfig",
    "UnknownCommandPolicy",
    "LogConfig",
    "StartupError",
    "__version__",
]
