#!/usr/bin/env python3
"""
AEM Instance Monitor - Lifecycle Controller
Id-based entry points for detection, health checks and stopping instances.

The controller loads instance records, runs the detector and health client,
and hands the resulting status back to the instance store as a cache. The
cache is never read back by detection.
"""

import asyncio
import time
from typing import Dict, List

import psutil

from .models import (
    Instance, InstanceStatus, HealthCheckResult, StatusDetectionResult,
    InstanceMonitorError, StopFailedError, utc_now
)
from .status_detector import StatusDetector
from ..clients.health_client import AuthenticatedHealthClient
from ..probes.process_inspector import ProcessInspector, is_java_like
from ..store.credential_store import CredentialResolver
from ..store.instance_store import JsonInstanceStore

import structlog
logger = structlog.get_logger()

DEFAULT_KILL_GRACE_PERIOD = 10.0

CONSOLE_PATHS = {
    "home": "/aem/start.html",
    "crxde": "/crx/de/index.jsp",
    "package_manager": "/crx/packmgr/index.jsp",
    "console": "/system/console",
    "sites": "/sites.html/content",
    "assets": "/assets.html/content/dam",
    "users": "/security/users.html",
    "workflow": "/libs/cq/workflow/admin/console/content/instances.html",
}


class LifecycleController:
    """
    Stop instances and report their status and health.

    Only InstanceNotFoundError and StopFailedError (plus
    UnsupportedPlatformError from an OS kill) reach the caller; every other
    sub-probe failure is folded into the returned result.
    """

    def __init__(self, store: JsonInstanceStore,
                 detector: StatusDetector,
                 health_client: AuthenticatedHealthClient,
                 credentials: CredentialResolver,
                 process_inspector: ProcessInspector,
                 kill_grace_period: float = DEFAULT_KILL_GRACE_PERIOD):
        self.store = store
        self.detector = detector
        self.health_client = health_client
        self.credentials = credentials
        self.process_inspector = process_inspector
        self.kill_grace_period = kill_grace_period

    # -------------------------------------------------------------------------
    # STATUS DETECTION
    # -------------------------------------------------------------------------

    async def detect_status(self, instance_id: str) -> StatusDetectionResult:
        instance = await self.store.get(instance_id)
        result = await self.detector.detect(instance)
        await self._cache_status(instance_id, result.status)
        return result

    async def detect_all(self) -> List[StatusDetectionResult]:
        instances = await self.store.list()
        results = await self.detector.detect_many(instances)
        for result in results:
            if result.status != InstanceStatus.UNKNOWN:
                await self._cache_status(result.instance_id, result.status)
        return results

    # -------------------------------------------------------------------------
    # HEALTH CHECK
    # -------------------------------------------------------------------------

    async def check_health(self, instance_id: str) -> HealthCheckResult:
        """
        Detect the status and, for a running instance, collect bundle, memory
        and version details. A 401 from the console still means RUNNING; the
        detail fields are simply left empty.
        """
        instance = await self.store.get(instance_id)
        detection = await self.detector.detect(instance)
        result = HealthCheckResult(
            instance_id=instance.id,
            timestamp=utc_now(),
            status=detection.status,
        )

        if detection.status == InstanceStatus.RUNNING:
            await self._collect_health_details(instance, result)

        result.timestamp = utc_now()
        await self._cache_status(instance_id, result.status)

        logger.info("health_check_complete",
                    instance_id=instance_id,
                    status=result.status.value,
                    response_time=result.response_time,
                    bundles=result.bundle_status is not None,
                    memory=result.memory_status is not None)
        return result

    async def _collect_health_details(self, instance: Instance, result: HealthCheckResult) -> None:
        creds = await self.credentials.resolve(instance.id)
        base_url = instance.base_url

        bundle_probe = await self.health_client.probe_bundles(base_url, creds)
        if bundle_probe.responded:
            result.response_time = bundle_probe.response_time_ms

        if bundle_probe.unauthorized:
            logger.warning("health_check_credentials_rejected",
                           instance_id=instance.id,
                           username=creds.username)
            return

        if bundle_probe.authorized:
            result.bundle_status = bundle_probe.bundles
            result.memory_status = await self.health_client.fetch_memory(base_url, creds)

        version = await self.health_client.fetch_version(base_url, creds)
        if version is not None:
            result.aem_version = version.product_version
            result.oak_version = version.oak_version
            result.java_version = version.java_version

    # -------------------------------------------------------------------------
    # STOP
    # -------------------------------------------------------------------------

    async def stop(self, instance_id: str) -> bool:
        """
        Stop an instance: graceful HTTP shutdown, else terminate the listener.

        A shutdown request that got any response counts as success and the
        instance is marked STOPPING without waiting for the port to close.

        Only a Java-like listener is terminated. A port held by any other
        process is left alone and reported through StopFailedError naming
        that process, instead of "no process found to stop".

        Raises:
            InstanceNotFoundError: unknown instance id
            StopFailedError: nothing could be stopped, the listener is not a
                JVM, or the process survived the kill
        """
        instance = await self.store.get(instance_id)
        creds = await self.credentials.resolve(instance.id)

        if await self.health_client.request_shutdown(instance.base_url, creds):
            await self._cache_status(instance_id, InstanceStatus.STOPPING)
            return True

        logger.info("falling_back_to_process_kill", instance_id=instance_id, port=instance.port)
        loop = asyncio.get_running_loop()
        listener = await loop.run_in_executor(
            None, self.process_inspector.find_listener, instance.port
        )
        if listener is None:
            raise StopFailedError(f"Could not stop instance {instance_id}: no process found to stop")

        pid, name = listener
        if not is_java_like(name):
            raise StopFailedError(
                f"Port {instance.port} is occupied by non-Java process {name} (pid {pid}); "
                f"refusing to terminate it"
            )

        start_time = time.monotonic()
        try:
            await loop.run_in_executor(
                None, self.process_inspector.terminate, pid, self.kill_grace_period
            )
        except psutil.NoSuchProcess:
            logger.info("process_already_exited", instance_id=instance_id, pid=pid)
        except psutil.AccessDenied as e:
            raise StopFailedError(f"Not permitted to terminate process {pid} ({name}): {e}") from e
        except psutil.TimeoutExpired as e:
            raise StopFailedError(f"Process {pid} ({name}) did not exit after kill") from e

        logger.info("instance_process_terminated",
                    instance_id=instance_id,
                    pid=pid,
                    elapsed_ms=int((time.monotonic() - start_time) * 1000))
        await self._cache_status(instance_id, InstanceStatus.STOPPED)
        return True

    # -------------------------------------------------------------------------
    # HELPERS
    # -------------------------------------------------------------------------

    async def instance_urls(self, instance_id: str) -> Dict[str, str]:
        instance = await self.store.get(instance_id)
        return {name: f"{instance.base_url}{path}" for name, path in CONSOLE_PATHS.items()}

    async def _cache_status(self, instance_id: str, status: InstanceStatus) -> None:
        try:
            await self.store.update_status(instance_id, status)
        except InstanceMonitorError as e:
            logger.warning("status_cache_update_failed",
                           instance_id=instance_id,
                           status=status.value,
                           error=str(e))
