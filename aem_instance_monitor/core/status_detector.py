#!/usr/bin/env python3
"""
AEM Instance Monitor - Status Detection
Layered, timeout-bounded detection of an instance's lifecycle status.

Detection runs three layers and stops at the first conclusive one:
1. TCP port probe (short timeout). Closed port -> STOPPED.
2. Listening-process lookup. A non-Java owner -> PORT_CONFLICT.
   An unknown owner is treated like a Java one.
3. Unauthenticated login page request (long timeout).
   Serving -> RUNNING, otherwise STARTING.

No layer is retried, so a check costs at most port + HTTP timeout plus the
process lookup. Cached statuses are never consulted.
"""

import asyncio
import time
from typing import List, Optional

from .models import Instance, InstanceStatus, StatusDetectionResult, utc_now
from ..probes.port_probe import PortProbe
from ..probes.process_inspector import ProcessInspector, ListenerInfo, is_java_like
from ..probes.http_readiness import HttpReadinessProbe

import structlog
logger = structlog.get_logger()

DEFAULT_MAX_CONCURRENCY = 8


class StatusDetector:
    """Orchestrates the port, process and HTTP probes into a single status."""

    def __init__(self, port_probe: PortProbe,
                 process_inspector: ProcessInspector,
                 http_probe: HttpReadinessProbe,
                 max_concurrency: int = DEFAULT_MAX_CONCURRENCY):
        self.port_probe = port_probe
        self.process_inspector = process_inspector
        self.http_probe = http_probe
        self.max_concurrency = max(1, max_concurrency)

    async def detect(self, instance: Instance) -> StatusDetectionResult:
        start_time = time.monotonic()
        log = logger.bind(instance_id=instance.id, port=instance.port)

        def result(status: InstanceStatus, listener: Optional[ListenerInfo] = None,
                   error: Optional[str] = None) -> StatusDetectionResult:
            return StatusDetectionResult(
                instance_id=instance.id,
                status=status,
                checked_at=utc_now(),
                duration_ms=int((time.monotonic() - start_time) * 1000),
                process_id=listener[0] if listener else None,
                process_name=listener[1] if listener else None,
                error=error,
            )

        # Layer 1: port
        if not await self.port_probe.probe(instance.host, instance.port):
            log.debug("instance_port_closed")
            return result(InstanceStatus.STOPPED)

        # Layer 2: process identity
        listener = await self._find_listener(instance.port)
        if listener is not None and not is_java_like(listener[1]):
            message = f"Port {instance.port} is occupied by non-Java process: {listener[1]}"
            log.warning("port_conflict_detected", pid=listener[0], process_name=listener[1])
            return result(InstanceStatus.PORT_CONFLICT, listener, message)

        # Layer 3: HTTP readiness
        if await self.http_probe.is_ready(instance.host, instance.port):
            status = InstanceStatus.RUNNING
        else:
            status = InstanceStatus.STARTING

        detection = result(status, listener)
        log.debug("instance_status_detected",
                  status=status.value,
                  pid=detection.process_id,
                  duration_ms=detection.duration_ms)
        return detection

    async def detect_many(self, instances: List[Instance]) -> List[StatusDetectionResult]:
        """
        Detect every instance concurrently, at most max_concurrency at a time.

        Returns exactly one result per input, in input order. A probe that
        raises is reported as UNKNOWN with the error text.
        """
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def guarded(instance: Instance) -> StatusDetectionResult:
            async with semaphore:
                try:
                    return await self.detect(instance)
                except Exception as e:
                    logger.error("instance_detection_error",
                                 instance_id=instance.id,
                                 error=str(e))
                    return unknown_result(instance.id, str(e))

        return list(await asyncio.gather(*(guarded(instance) for instance in instances)))

    async def _find_listener(self, port: int) -> Optional[ListenerInfo]:
        # psutil and the lsof/netstat fallbacks block; keep them off the loop
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.process_inspector.find_listener, port)


def unknown_result(instance_id: str, error: str) -> StatusDetectionResult:
    return StatusDetectionResult(
        instance_id=instance_id,
        status=InstanceStatus.UNKNOWN,
        checked_at=utc_now(),
        duration_ms=0,
        error=error,
    )
