#!/usr/bin/env python3
"""
AEM Instance Monitor - TCP Port Probe
First detection layer: is anything accepting connections on host:port?
"""

import asyncio
import socket
from typing import Optional

import structlog
logger = structlog.get_logger()

DEFAULT_PORT_TIMEOUT_MS = 500


class PortProbe:
    """
    Bounded-time TCP connect check.

    The host is resolved to every matching socket address ("localhost" may
    yield both ::1 and 127.0.0.1) and each is tried in turn with the full
    timeout. Resolution or connection failure is reported as False, never
    raised.
    """

    def __init__(self, timeout_ms: int = DEFAULT_PORT_TIMEOUT_MS):
        self.timeout_ms = timeout_ms

    async def probe(self, host: str, port: int, timeout_ms: Optional[int] = None) -> bool:
        timeout = (timeout_ms if timeout_ms is not None else self.timeout_ms) / 1000.0
        loop = asyncio.get_running_loop()

        try:
            addresses = await asyncio.wait_for(
                loop.getaddrinfo(host, port, type=socket.SOCK_STREAM),
                timeout=timeout
            )
        except (OSError, asyncio.TimeoutError) as e:
            logger.debug("port_probe_resolution_failed", host=host, port=port, error=str(e))
            return False

        for family, _, _, _, sockaddr in addresses:
            if await self._try_connect(family, sockaddr, timeout):
                logger.debug("port_probe_open", host=host, port=port, address=sockaddr[0])
                return True

        logger.debug("port_probe_closed", host=host, port=port)
        return False

    async def _try_connect(self, family: int, sockaddr: tuple, timeout: float) -> bool:
        try:
            _, writer = await asyncio.wait_for(
                asyncio.open_connection(sockaddr[0], sockaddr[1], family=family),
                timeout=timeout
            )
        except (OSError, asyncio.TimeoutError):
            return False

        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass
        return True
