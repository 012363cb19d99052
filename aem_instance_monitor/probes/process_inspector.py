#!/usr/bin/env python3
"""
AEM Instance Monitor - Process Inspection
Second detection layer: which process owns the listening socket on a port?

One ProcessInspector implementation exists per platform family and is
selected once via select_process_inspector(). Only sockets in the LISTEN
state are considered; an unrelated process holding an outbound connection
from an ephemeral port is never reported as the owner. When ownership cannot
be determined the inspector returns None, which callers must treat as
inconclusive rather than as a conflict.
"""

import subprocess
import sys
from abc import ABC, abstractmethod
from typing import Optional, Tuple

import psutil

from ..core.models import UnsupportedPlatformError

import structlog
logger = structlog.get_logger()

ListenerInfo = Tuple[int, str]

JAVA_NAME_MARKERS = ("java", "jdk", "jre")
COMMAND_TIMEOUT_SECONDS = 5


def is_java_like(name: str) -> bool:
    """
    Heuristic check that a process name looks like a JVM.

    Case-insensitive substring match on "java", "jdk" or "jre", plus an exact
    "java" or a ".../java" path. A renamed launcher will not be recognised
    and an unrelated binary with "jre" in its name will be; this is a hint,
    not a guarantee.
    """
    lowered = (name or "").strip().lower()
    if not lowered:
        return False
    return (
        any(marker in lowered for marker in JAVA_NAME_MARKERS)
        or lowered == "java"
        or lowered.endswith("/java")
    )


class ProcessInspector(ABC):
    """Platform-specific lookup and termination of listening processes."""

    @abstractmethod
    def find_listener(self, port: int) -> Optional[ListenerInfo]:
        """Return (pid, process_name) of the process listening on port, or None."""

    def terminate(self, pid: int, grace_period: float = 10.0) -> None:
        """
        Stop a process: graceful signal first, forced kill if it persists.

        Raises:
            psutil.NoSuchProcess: if pid does not exist
            psutil.AccessDenied: if the caller may not signal the process
        """
        process = psutil.Process(pid)
        logger.info("terminating_process", pid=pid, name=process.name())
        process.terminate()
        try:
            process.wait(timeout=grace_period)
        except psutil.TimeoutExpired:
            logger.warning("process_survived_terminate", pid=pid, grace_period=grace_period)
            process.kill()
            process.wait(timeout=grace_period)

    @staticmethod
    def _process_name(pid: int) -> Optional[str]:
        try:
            return psutil.Process(pid).name()
        except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
            return None


class PsutilProcessInspector(ProcessInspector):
    """Reads the kernel socket table through psutil (Linux and BSD-likes)."""

    def find_listener(self, port: int) -> Optional[ListenerInfo]:
        try:
            connections = psutil.net_connections(kind="tcp")
        except psutil.AccessDenied:
            logger.debug("socket_table_access_denied", port=port)
            return None

        for conn in connections:
            if conn.status != psutil.CONN_LISTEN or not conn.laddr:
                continue
            if conn.laddr.port != port or conn.pid is None:
                continue
            name = self._process_name(conn.pid)
            if name is not None:
                return conn.pid, name
        return None


class LsofProcessInspector(ProcessInspector):
    """macOS: lsof restricted to TCP LISTEN sockets, then ps for the name."""

    def find_listener(self, port: int) -> Optional[ListenerInfo]:
        try:
            output = subprocess.run(
                ["lsof", "-ti", f"TCP:{port}", "-sTCP:LISTEN"],
                capture_output=True, text=True, timeout=COMMAND_TIMEOUT_SECONDS
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.debug("lsof_failed", port=port, error=str(e))
            return None

        if output.returncode != 0:
            return None

        lines = output.stdout.strip().splitlines()
        if not lines:
            return None
        try:
            pid = int(lines[0].strip())
        except ValueError:
            return None

        try:
            name_output = subprocess.run(
                ["ps", "-p", str(pid), "-o", "comm="],
                capture_output=True, text=True, timeout=COMMAND_TIMEOUT_SECONDS
            )
        except (OSError, subprocess.TimeoutExpired):
            return None

        # ps fails when the process exited after lsof saw it
        name = name_output.stdout.strip()
        if name_output.returncode != 0 or not name:
            logger.debug("listener_name_unavailable", port=port, pid=pid)
            return None
        return pid, name


class NetstatProcessInspector(ProcessInspector):
    """Windows: netstat LISTENING rows, then tasklist for the image name."""

    def find_listener(self, port: int) -> Optional[ListenerInfo]:
        try:
            output = subprocess.run(
                ["netstat", "-ano", "-p", "TCP"],
                capture_output=True, text=True, timeout=COMMAND_TIMEOUT_SECONDS
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.debug("netstat_failed", port=port, error=str(e))
            return None

        if output.returncode != 0:
            return None

        pid = parse_netstat_listener(output.stdout, port)
        if pid is None:
            return None

        try:
            name_output = subprocess.run(
                ["tasklist", "/FI", f"PID eq {pid}", "/FO", "CSV", "/NH"],
                capture_output=True, text=True, timeout=COMMAND_TIMEOUT_SECONDS
            )
        except (OSError, subprocess.TimeoutExpired):
            return None

        if name_output.returncode != 0:
            return None

        name = parse_tasklist_image_name(name_output.stdout)
        if name is None:
            logger.debug("listener_name_unavailable", port=port, pid=pid)
            return None
        return pid, name


class NullProcessInspector(ProcessInspector):
    """Used where no lookup mechanism exists. Detection stays optimistic."""

    def find_listener(self, port: int) -> Optional[ListenerInfo]:
        return None

    def terminate(self, pid: int, grace_period: float = 10.0) -> None:
        raise UnsupportedPlatformError(
            f"Process termination is not supported on platform {sys.platform}"
        )


def parse_netstat_listener(text: str, port: int) -> Optional[int]:
    """Find the pid of the LISTENING row whose local address ends in :port."""
    suffix = f":{port}"
    for line in text.splitlines():
        parts = line.split()
        # Proto  Local Address  Foreign Address  State  PID
        if len(parts) < 5 or parts[3] != "LISTENING":
            continue
        if not parts[1].endswith(suffix):
            continue
        try:
            return int(parts[-1])
        except ValueError:
            continue
    return None


def parse_tasklist_image_name(text: str) -> Optional[str]:
    """
    Image name from the first tasklist CSV row, e.g.
    "java.exe","900","Console","1","512,000 K". The plain-text
    "INFO: No tasks are running..." reply yields None.
    """
    line = text.strip().splitlines()[0] if text.strip() else ""
    if not line.startswith('"'):
        return None
    name = line.split(",")[0].strip('"').strip()
    return name or None


def select_process_inspector(platform: Optional[str] = None) -> ProcessInspector:
    """Pick the inspector for the running platform."""
    platform = platform or sys.platform
    if platform == "darwin":
        inspector = LsofProcessInspector()
    elif platform.startswith("win"):
        inspector = NetstatProcessInspector()
    elif platform.startswith(("linux", "freebsd")):
        inspector = PsutilProcessInspector()
    else:
        inspector = NullProcessInspector()

    logger.debug("process_inspector_selected",
                 platform=platform,
                 inspector=type(inspector).__name__)
    return inspector
