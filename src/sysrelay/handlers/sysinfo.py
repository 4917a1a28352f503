"""
=============================================================================
SYSTEM STATUS REPORT
=============================================================================

Builds the plain-text report returned for SYSINFO.

=============================================================================
REPORT LAYOUT
=============================================================================

One labeled section per diagnostic, in a fixed order:

    === Hostname ===
    Hostname: build-01

    === Local Time ===
    Local Time: Mon Oct 19 10:55:36 2026

    === Operating System ===
    OS: Linux
    Release: 6.8.0
    ...

    === Network Interfaces ===
    eth0:
      IPv4: 10.0.0.12
      MAC: 02:42:ac:11:00:02

=============================================================================
FAILURE ISOLATION
=============================================================================

Sections are independent. If one raises (no /proc, permission denied,
unsupported platform...) the exception is logged, the section body
becomes a single error line, and the report carries on:

    === Disk ===
    Error: Disk unavailable

The connection never fails because a diagnostic did.

=============================================================================
SECRETS IN THE ENVIRONMENT
=============================================================================

The environment section lists every variable, but values whose names look
like credentials (SENDGRID_API_KEY, DB_PASSWORD, ...) are masked. The
server holds mail credentials in its environment and the report is sent
to anyone who can connect.

=============================================================================
"""

import getpass
import logging
import os
import platform
import re
import socket
import time
from typing import Callable, Dict, List, Optional

import psutil

from .base import ResponseSink, StatusReporter


logger = logging.getLogger(__name__)

# A section returns its body lines.
Section = Callable[[], List[str]]

SECRET_NAME_PATTERN = re.compile(r"KEY|TOKEN|SECRET|PASSWORD|PASSWD|CREDENTIAL", re.IGNORECASE)
MASK = "****"


# =============================================================================
# SECTIONS
# =============================================================================

def hostname_section() -> List[str]:
    return [f"Hostname: {socket.gethostname()}"]


def local_time_section() -> List[str]:
    return [f"Local Time: {time.asctime(time.localtime())}"]


def os_section() -> List[str]:
    uname = platform.uname()
    return [
        f"OS: {uname.system}",
        f"Release: {uname.release}",
        f"Version: {uname.version}",
        f"Machine: {uname.machine}",
    ]


def memory_section() -> List[str]:
    """Uptime, load averages and RAM usage."""
    uptime = int(time.time() - psutil.boot_time())
    load1, load5, load15 = psutil.getloadavg()
    vm = psutil.virtual_memory()
    used = vm.total - vm.free
    usage = used / vm.total * 100 if vm.total else 0.0

    return [
        f"Uptime:      {uptime} seconds",
        f"Load Avg:    {load1:.2f} {load5:.2f} {load15:.2f} (1/5/15 min)",
        f"Total RAM:   {vm.total} bytes",
        f"Free RAM:    {vm.free} bytes",
        f"Used RAM:    {used} bytes",
        f"Memory Usage: {usage:.2f}%",
    ]


def user_section() -> List[str]:
    return [
        f"User: {getpass.getuser()}",
        f"Home: {os.path.expanduser('~')}",
    ]


def disk_section(path: str = "/") -> List[str]:
    usage = psutil.disk_usage(path)
    used = usage.total - usage.free
    percent = used / usage.total * 100 if usage.total else 0.0

    return [
        f"Disk Usage : {percent:.2f}%",
        f"Total Space: {usage.total} bytes",
        f"Free Space : {usage.free} bytes",
        f"Used Space : {used} bytes",
    ]


def mask_env_value(name: str, value: str) -> str:
    """Mask values of variables whose names look like credentials."""
    if SECRET_NAME_PATTERN.search(name):
        return MASK
    return value


def environment_section(environ: Optional[Dict[str, str]] = None) -> List[str]:
    env = os.environ if environ is None else environ
    return [f"{name}={mask_env_value(name, value)}" for name, value in sorted(env.items())]


def network_section() -> List[str]:
    """List every interface with its IPv4, IPv6 and MAC addresses."""
    lines: List[str] = []
    labels = {
        socket.AF_INET: "IPv4",
        socket.AF_INET6: "IPv6",
        psutil.AF_LINK: "MAC",
    }

    for name, addresses in sorted(psutil.net_if_addrs().items()):
        lines.append(f"{name}:")
        for addr in addresses:
            label = labels.get(addr.family)
            if label is None:
                continue
            lines.append(f"  {label}: {addr.address}")

    return lines or ["(no interfaces)"]


DEFAULT_SECTIONS = (
    ("Hostname", hostname_section),
    ("Local Time", local_time_section),
    ("Operating System", os_section),
    ("Memory", memory_section),
    ("User", user_section),
    ("Disk", disk_section),
    ("Environment Variables", environment_section),
    ("Network Interfaces", network_section),
)


# =============================================================================
# REPORTER
# =============================================================================

class SystemStatusReporter(StatusReporter):
    """
    Writes the multi-section status report.

    Usage:
        reporter = SystemStatusReporter()
        reporter.report(conn)

        # Custom section
        reporter.add_section("Python", lambda: [f"Version: {sys.version}"])
    """

    def __init__(self, sections: Optional[Dict[str, Section]] = None):
        if sections is None:
            sections = dict(DEFAULT_SECTIONS)
        self._sections: Dict[str, Section] = dict(sections)

    def add_section(self, name: str, section: Section) -> "SystemStatusReporter":
        """Append a section. Returns self for chaining."""
        self._sections[name] = section
        return self

    @property
    def section_names(self) -> List[str]:
        return list(self._sections)

    def report(self, sink: ResponseSink) -> None:
        for name, section in self._sections.items():
            sink.write(f"=== {name} ===\n")
            try:
                lines = section()
            except Exception:
                logger.exception(f"Status section '{name}' failed")
                lines = [f"Error: {name} unavailable"]

            for line in lines:
                sink.write(line + "\n")
            sink.write("\n")
