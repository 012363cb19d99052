#!/usr/bin/env python3
"""
AEM Instance Monitor - System Console Clients
"""

from .health_client import AuthenticatedHealthClient, Credentials

__all__ = ['AuthenticatedHealthClient', 'Credentials']
