#!/usr/bin/env python3
"""
AEM Instance Monitor - Locked JSON Files
Shared read-modify-write machinery for the file-backed stores.

Writers are serialized twice: an asyncio.Lock covers concurrent coroutines in
this process, and an exclusive flock on a sidecar ".lock" file covers other
processes (POSIX only). Data is written to a temporary file in the same
directory and moved into place with os.replace, so readers never observe a
half-written document.
"""

import asyncio
import json
import os
import tempfile
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Callable

import aiofiles

from ..core.models import InstanceStoreError

try:
    import fcntl
except ImportError:  # Windows: in-process locking only
    fcntl = None

import structlog
logger = structlog.get_logger()


class JsonFile:
    """A JSON document on disk with locked, atomic updates."""

    def __init__(self, path: Path, empty: Callable[[], Any]):
        self.path = Path(path)
        self.lock_path = self.path.with_name(self.path.name + ".lock")
        self._empty = empty
        self._lock = asyncio.Lock()

    async def read(self) -> Any:
        if not self.path.exists():
            return self._empty()
        try:
            async with aiofiles.open(self.path, "r") as f:
                content = await f.read()
        except OSError as e:
            raise InstanceStoreError(f"Failed to read {self.path}: {e}") from e

        if not content.strip():
            return self._empty()
        try:
            return json.loads(content)
        except ValueError as e:
            raise InstanceStoreError(f"Failed to parse {self.path}: {e}") from e

    @asynccontextmanager
    async def locked(self):
        """Hold both the in-process and the cross-process write lock."""
        async with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            handle = open(self.lock_path, "a")
            try:
                if fcntl is not None:
                    await asyncio.get_running_loop().run_in_executor(
                        None, fcntl.flock, handle.fileno(), fcntl.LOCK_EX
                    )
                yield
            finally:
                if fcntl is not None:
                    fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
                handle.close()

    async def update(self, mutate: Callable[[Any], Any]) -> Any:
        """
        Read, apply mutate(data) and write back under the lock.

        mutate may modify data in place; its return value is passed through
        to the caller. Exceptions from mutate abort the write.
        """
        async with self.locked():
            data = await self.read()
            result = mutate(data)
            await self._write(data)
            return result

    async def _write(self, data: Any) -> None:
        fd, tmp_name = tempfile.mkstemp(prefix=f".{self.path.name}.", dir=str(self.path.parent))
        os.close(fd)
        try:
            async with aiofiles.open(tmp_name, "w") as f:
                await f.write(json.dumps(data, indent=2))
            os.replace(tmp_name, self.path)
        except OSError as e:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise InstanceStoreError(f"Failed to write {self.path}: {e}") from e
