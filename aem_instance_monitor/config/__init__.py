#!/usr/bin/env python3
"""
AEM Instance Monitor - Configuration Management Module
"""

from .config_manager import ConfigManager, ConfigValidationError

__all__ = ['ConfigManager', 'ConfigValidationError']
