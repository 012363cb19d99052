#!/usr/bin/env python3
"""
AEM Instance Monitor - Detection Probes
"""

from .port_probe import PortProbe
from .process_inspector import ProcessInspector, select_process_inspector, is_java_like
from .http_readiness import HttpReadinessProbe

__all__ = [
    'PortProbe',
    'ProcessInspector',
    'select_process_inspector',
    'is_java_like',
    'HttpReadinessProbe',
]
