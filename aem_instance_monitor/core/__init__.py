#!/usr/bin/env python3
"""
AEM Instance Monitor - Core Module
"""

from .models import (
    Instance,
    InstanceType,
    InstanceStatus,
    StatusDetectionResult,
    HealthCheckResult,
)
from .status_detector import StatusDetector
from .lifecycle import LifecycleController

__all__ = [
    'Instance',
    'InstanceType',
    'InstanceStatus',
    'StatusDetectionResult',
    'HealthCheckResult',
    'StatusDetector',
    'LifecycleController',
]
