#!/usr/bin/env python3
"""
AEM Instance Monitor - HTTP Readiness Probe
Third detection layer: has the application started serving HTTP?
"""

import asyncio
from typing import Optional

import aiohttp

from ..core.models import http_base_url

import structlog
logger = structlog.get_logger()

DEFAULT_HTTP_TIMEOUT_MS = 3000
LOGIN_PAGE_PATH = "/libs/granite/core/content/login.html"

# 401 still proves the application is up: it challenged for credentials.
READY_STATUS_CODES = frozenset({200, 302, 401})


class HttpReadinessProbe:
    """
    Unauthenticated GET against the login page.

    Redirects are not followed so a 302 is observed as such. Any other
    status, a connection failure or a timeout means "not ready yet".
    """

    def __init__(self, timeout_ms: int = DEFAULT_HTTP_TIMEOUT_MS,
                 login_path: str = LOGIN_PAGE_PATH):
        self.timeout_ms = timeout_ms
        self.login_path = login_path

    def login_url(self, host: str, port: int) -> str:
        return f"{http_base_url(host, port)}{self.login_path}"

    async def is_ready(self, host: str, port: int, timeout_ms: Optional[int] = None) -> bool:
        timeout = aiohttp.ClientTimeout(
            total=(timeout_ms if timeout_ms is not None else self.timeout_ms) / 1000.0
        )
        url = self.login_url(host, port)

        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.get(url, allow_redirects=False) as response:
                    ready = response.status in READY_STATUS_CODES
                    logger.debug("http_readiness_response",
                                 url=url,
                                 status=response.status,
                                 ready=ready)
                    return ready
        except asyncio.TimeoutError:
            logger.debug("http_readiness_timeout", url=url)
            return False
        except aiohttp.ClientError as e:
            logger.debug("http_readiness_error", url=url, error=str(e))
            return False
