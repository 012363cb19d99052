#!/usr/bin/env python3
"""
AEM Instance Monitor - Credentials
Per-instance console credentials and their resolution at call time.

Credentials are kept in a plain JSON map ({instance_id: [username, password]})
in the data directory, readable only by the owning user.
"""

import os
from pathlib import Path
from typing import Optional, Tuple, Union

from ..clients.health_client import Credentials
from .json_file import JsonFile

import structlog
logger = structlog.get_logger()

CREDENTIALS_FILE = ".credentials"
DEFAULT_USERNAME = "admin"
DEFAULT_PASSWORD = "admin"


class CredentialStore:
    """JSON-file credential map keyed by instance id."""

    def __init__(self, data_dir: Union[str, Path]):
        self._file = JsonFile(Path(data_dir).expanduser() / CREDENTIALS_FILE, empty=dict)

    async def get(self, instance_id: str) -> Optional[Tuple[str, str]]:
        entries = await self._file.read()
        entry = entries.get(instance_id) if isinstance(entries, dict) else None
        if not isinstance(entry, (list, tuple)) or len(entry) != 2:
            return None
        return entry[0], entry[1]

    async def save(self, instance_id: str, username: str, password: str) -> None:
        def mutate(entries: dict) -> None:
            entries[instance_id] = [username, password]

        await self._file.update(mutate)
        os.chmod(self._file.path, 0o600)
        logger.info("credentials_stored", instance_id=instance_id, username=username)

    async def delete(self, instance_id: str) -> None:
        if not self._file.path.exists():
            return
        await self._file.update(lambda entries: entries.pop(instance_id, None))


class CredentialResolver:
    """
    Resolve credentials for an instance, falling back to the conventional
    admin/admin pair used by local development instances.
    """

    def __init__(self, store: CredentialStore,
                 default_username: str = DEFAULT_USERNAME,
                 default_password: str = DEFAULT_PASSWORD):
        self.store = store
        self.default_username = default_username
        self.default_password = default_password

    async def resolve(self, instance_id: str, declared_username: Optional[str] = None) -> Credentials:
        try:
            stored = await self.store.get(instance_id)
        except Exception as e:
            # Unreadable store degrades to the default pair
            logger.warning("credential_lookup_failed", instance_id=instance_id, error=str(e))
            stored = None

        if stored is not None:
            username, password = stored
            return Credentials(username=username or declared_username or self.default_username,
                               password=password)

        return Credentials(username=declared_username or self.default_username,
                           password=self.default_password)
