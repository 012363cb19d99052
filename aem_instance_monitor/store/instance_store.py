#!/usr/bin/env python3
"""
AEM Instance Monitor - Instance Store
JSON-file persistence of instance records (instances.json in the data dir).
"""

import uuid
from pathlib import Path
from typing import List, Union

from ..core.models import (
    Instance, InstanceStatus, InstanceNotFoundError, InstanceStoreError, utc_now
)
from .json_file import JsonFile

import structlog
logger = structlog.get_logger()

INSTANCES_FILE = "instances.json"


class JsonInstanceStore:
    """
    Instance records stored as a JSON array.

    The cached status written through update_status() is informational only;
    status detection always re-probes.
    """

    def __init__(self, data_dir: Union[str, Path]):
        self.data_dir = Path(data_dir).expanduser()
        self._file = JsonFile(self.data_dir / INSTANCES_FILE, empty=list)

    async def list(self) -> List[Instance]:
        records = await self._file.read()
        if not isinstance(records, list):
            raise InstanceStoreError(f"{self._file.path} does not contain a list of instances")
        try:
            return [Instance.from_dict(record) for record in records]
        except (KeyError, TypeError, ValueError) as e:
            raise InstanceStoreError(f"Invalid instance record in {self._file.path}: {e}") from e

    async def get(self, instance_id: str) -> Instance:
        for instance in await self.list():
            if instance.id == instance_id:
                return instance
        raise InstanceNotFoundError(instance_id)

    async def add(self, instance: Instance) -> Instance:
        if not instance.id:
            instance.id = str(uuid.uuid4())
        instance.status = InstanceStatus.UNKNOWN

        def mutate(records: list) -> Instance:
            if any(record.get("id") == instance.id for record in records):
                raise InstanceStoreError(f"Instance with ID {instance.id} already exists")
            records.append(instance.to_dict())
            return instance

        added = await self._file.update(mutate)
        logger.info("instance_added", instance_id=instance.id, port=instance.port)
        return added

    async def save(self, instance: Instance) -> Instance:
        """Replace the stored record with the same id."""
        instance.updated_at = utc_now()

        def mutate(records: list) -> Instance:
            for index, record in enumerate(records):
                if record.get("id") == instance.id:
                    records[index] = instance.to_dict()
                    return instance
            raise InstanceNotFoundError(instance.id)

        return await self._file.update(mutate)

    async def update_status(self, instance_id: str, status: InstanceStatus) -> None:
        """Cache the latest status; only the status and timestamp fields change."""
        def mutate(records: list) -> None:
            for record in records:
                if record.get("id") == instance_id:
                    record["status"] = status.value
                    record["updated_at"] = utc_now()
                    return
            raise InstanceNotFoundError(instance_id)

        await self._file.update(mutate)

    async def delete(self, instance_id: str) -> None:
        def mutate(records: list) -> None:
            remaining = [record for record in records if record.get("id") != instance_id]
            if len(remaining) == len(records):
                raise InstanceNotFoundError(instance_id)
            records[:] = remaining

        await self._file.update(mutate)
        logger.info("instance_deleted", instance_id=instance_id)
