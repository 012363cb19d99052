#!/usr/bin/env python3
"""
AEM Instance Monitor - Core Data Model
Instance records, detection/health result values and the error taxonomy.

Results are created fresh on every detection or health call. Instance records
are owned by the instance store; the detection engine only reads them.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Any, Optional


# =============================================================================
# ERRORS
# =============================================================================

class InstanceMonitorError(Exception):
    """Base class for errors surfaced to callers of the monitor."""


class InstanceNotFoundError(InstanceMonitorError):
    """Raised when an instance id is not present in the instance store."""

    def __init__(self, instance_id: str):
        super().__init__(f"Instance {instance_id} not found")
        self.instance_id = instance_id


class UnsupportedPlatformError(InstanceMonitorError):
    """Raised when an OS-level process operation is not available here."""


class StopFailedError(InstanceMonitorError):
    """Raised when neither graceful HTTP shutdown nor an OS kill could be used."""


class InstanceStoreError(InstanceMonitorError):
    """Raised when the backing instance/credential files cannot be read or written."""


# =============================================================================
# ENUMERATIONS
# =============================================================================

class InstanceStatus(Enum):
    """
    Lifecycle status of an application instance.

    Passive detection only ever yields STOPPED, PORT_CONFLICT, STARTING or
    RUNNING. STOPPING and ERROR are set by the lifecycle controller; UNKNOWN
    marks a record that has never been probed or a probe that faulted.
    """
    RUNNING = "running"
    STOPPED = "stopped"
    STARTING = "starting"
    STOPPING = "stopping"
    ERROR = "error"
    UNKNOWN = "unknown"
    PORT_CONFLICT = "port_conflict"

    @classmethod
    def parse(cls, value: str) -> "InstanceStatus":
        """Parse a wire value, rejecting anything outside the seven states."""
        try:
            return cls(value)
        except ValueError:
            raise ValueError(f"Unknown instance status: {value!r}") from None


class InstanceType(Enum):
    """Declared role of an instance. Carried through, never used by detection."""
    AUTHOR = "author"
    PUBLISH = "publish"
    DISPATCHER = "dispatcher"


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def http_base_url(host: str, port: int) -> str:
    """http://host:port, with IPv6 literals bracketed."""
    if ":" in host and not host.startswith("["):
        host = f"[{host}]"
    return f"http://{host}:{port}"


# =============================================================================
# INSTANCE RECORD
# =============================================================================

@dataclass
class Instance:
    """A locally configured application instance."""
    id: str                                   # Opaque identifier
    name: str                                 # Display name
    instance_type: InstanceType               # author / publish / dispatcher
    host: str                                 # Network host, e.g. "localhost"
    port: int                                 # TCP port of the HTTP listener
    path: str = ""                            # Local distribution artifact (jar or dir)
    java_opts: Optional[str] = None           # JVM options used when launching
    run_modes: list = field(default_factory=list)
    status: InstanceStatus = InstanceStatus.UNKNOWN  # Cached status, never trusted by detection
    profile_id: Optional[str] = None
    created_at: str = field(default_factory=utc_now)
    updated_at: str = field(default_factory=utc_now)

    def __post_init__(self):
        if not isinstance(self.port, int) or isinstance(self.port, bool) or not 0 < self.port <= 65535:
            raise ValueError(f"Invalid TCP port: {self.port!r}")

    @property
    def base_url(self) -> str:
        return http_base_url(self.host, self.port)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Instance":
        return cls(
            id=data.get("id", ""),
            name=data["name"],
            instance_type=InstanceType(data.get("instance_type", "author")),
            host=data.get("host", "localhost"),
            port=data["port"],
            path=data.get("path", ""),
            java_opts=data.get("java_opts"),
            run_modes=list(data.get("run_modes") or []),
            status=InstanceStatus.parse(data.get("status", "stopped")),
            profile_id=data.get("profile_id"),
            created_at=data.get("created_at") or utc_now(),
            updated_at=data.get("updated_at") or utc_now(),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "instance_type": self.instance_type.value,
            "host": self.host,
            "port": self.port,
            "path": self.path,
            "java_opts": self.java_opts,
            "run_modes": list(self.run_modes),
            "status": self.status.value,
            "profile_id": self.profile_id,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


# =============================================================================
# DETECTION AND HEALTH RESULTS
# =============================================================================

@dataclass(frozen=True)
class StatusDetectionResult:
    """
    Outcome of one status detection pass for one instance.

    PORT_CONFLICT always carries both process_id and process_name.
    """
    instance_id: str
    status: InstanceStatus
    checked_at: str                           # ISO 8601 UTC
    duration_ms: int                          # Wall-clock duration of the whole check
    process_id: Optional[int] = None          # Listening process, when identified
    process_name: Optional[str] = None
    error: Optional[str] = None               # Diagnostic message

    def to_dict(self) -> Dict[str, Any]:
        return {
            "instance_id": self.instance_id,
            "status": self.status.value,
            "checked_at": self.checked_at,
            "duration_ms": self.duration_ms,
            "process_id": self.process_id,
            "process_name": self.process_name,
            "error": self.error,
        }


@dataclass
class BundleStatus:
    """Bundle counts by lifecycle state. active + resolved + installed <= total."""
    total: int
    active: int
    resolved: int
    installed: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "active": self.active,
            "resolved": self.resolved,
            "installed": self.installed,
        }


@dataclass
class MemoryStatus:
    """JVM heap usage in bytes."""
    heap_used: int
    heap_max: int
    heap_percentage: float

    @classmethod
    def from_bytes(cls, heap_used: int, heap_max: int) -> "MemoryStatus":
        percentage = (heap_used / heap_max) * 100.0 if heap_max > 0 else 0.0
        return cls(heap_used=heap_used, heap_max=heap_max, heap_percentage=percentage)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "heap_used": self.heap_used,
            "heap_max": self.heap_max,
            "heap_percentage": round(self.heap_percentage, 2),
        }


@dataclass
class VersionInfo:
    """Product and runtime versions reported by the application."""
    product_name: str
    product_version: str
    oak_version: Optional[str] = None
    java_version: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "product_name": self.product_name,
            "product_version": self.product_version,
            "oak_version": self.oak_version,
            "java_version": self.java_version,
        }


@dataclass
class HealthCheckResult:
    """
    Health snapshot of one instance. Every optional field is independently
    absent when its sub-fetch failed; absence is not an error.
    """
    instance_id: str
    timestamp: str
    status: InstanceStatus
    response_time: Optional[int] = None       # ms for the bundles request
    bundle_status: Optional[BundleStatus] = None
    memory_status: Optional[MemoryStatus] = None
    aem_version: Optional[str] = None
    oak_version: Optional[str] = None
    java_version: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "instance_id": self.instance_id,
            "timestamp": self.timestamp,
            "status": self.status.value,
            "response_time": self.response_time,
            "bundle_status": self.bundle_status.to_dict() if self.bundle_status else None,
            "memory_status": self.memory_status.to_dict() if self.memory_status else None,
            "aem_version": self.aem_version,
            "oak_version": self.oak_version,
            "java_version": self.java_version,
        }
