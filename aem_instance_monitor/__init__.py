#!/usr/bin/env python3
"""
AEM Instance Monitor
Status detection and lifecycle probing for local AEM development instances.

Determines whether an instance is stopped, starting, running or blocked by
another process on its port, without depending on the instance's own
management console being reachable or authenticated.
"""

__version__ = "1.0.0"
__author__ = "AEM Instance Monitor Team"

from .core.models import (
    Instance,
    InstanceType,
    InstanceStatus,
    StatusDetectionResult,
    HealthCheckResult,
    BundleStatus,
    MemoryStatus,
    VersionInfo,
    InstanceMonitorError,
    InstanceNotFoundError,
    StopFailedError,
    UnsupportedPlatformError,
    InstanceStoreError,
)

from .core.status_detector import StatusDetector
from .core.lifecycle import LifecycleController

__all__ = [
    # Data model
    'Instance',
    'InstanceType',
    'InstanceStatus',
    'StatusDetectionResult',
    'HealthCheckResult',
    'BundleStatus',
    'MemoryStatus',
    'VersionInfo',

    # Errors
    'InstanceMonitorError',
    'InstanceNotFoundError',
    'StopFailedError',
    'UnsupportedPlatformError',
    'InstanceStoreError',

    # Engine
    'StatusDetector',
    'LifecycleController',

    # Version info
    '__version__',
    '__author__',
]
