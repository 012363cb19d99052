#!/usr/bin/env python3
"""
AEM Instance Monitor - File-Backed Stores
"""

from .instance_store import JsonInstanceStore
from .credential_store import CredentialStore, CredentialResolver

__all__ = ['JsonInstanceStore', 'CredentialStore', 'CredentialResolver']
