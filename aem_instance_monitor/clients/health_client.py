#!/usr/bin/env python3
"""
AEM Instance Monitor - Authenticated Health Client
Basic-Auth calls against the application's system console.

This client provides:
1. Bundle status counts from the bundle listing (JSON)
2. Heap usage scraped from the memory usage page (HTML)
3. Product, repository and Java versions from the product info dump (text)
4. Graceful shutdown requests

Every fetch is best-effort: transport errors, non-success responses and
unparsable bodies are logged and reported as None so a health check can be
composed from whatever parts succeeded.
"""

import asyncio
import json
import time
from dataclasses import dataclass
from typing import Dict, Any, Optional, Tuple

import aiohttp

from ..core.models import BundleStatus, MemoryStatus, VersionInfo

import structlog
logger = structlog.get_logger()

BUNDLES_PATH = "/system/console/bundles.json"
MEMORY_USAGE_PATH = "/system/console/memoryusage"
PRODUCT_INFO_PATH = "/system/console/status-productinfo.txt"
SHUTDOWN_PATH = "/system/console/vmstat?shutdown_type=Stop"

HEAP_USED_LABEL = "Heap Memory used"
HEAP_MAX_LABEL = "Heap Memory maximum"
DEFAULT_PRODUCT_NAME = "Adobe Experience Manager"

DEFAULT_REQUEST_TIMEOUT_MS = 10000
BYTES_PER_MB = 1024 * 1024


@dataclass
class Credentials:
    """Username/password pair resolved per call, never stored on an Instance."""
    username: str
    password: str

    def as_basic_auth(self) -> aiohttp.BasicAuth:
        return aiohttp.BasicAuth(self.username, self.password)


@dataclass
class BundleProbe:
    """Raw outcome of the bundles request, used to decide the health status."""
    http_status: Optional[int]                # None when no response was received
    response_time_ms: int
    bundles: Optional[BundleStatus] = None

    @property
    def responded(self) -> bool:
        return self.http_status is not None

    @property
    def authorized(self) -> bool:
        return self.http_status is not None and 200 <= self.http_status < 300

    @property
    def unauthorized(self) -> bool:
        return self.http_status == 401


# =============================================================================
# RESPONSE PARSERS
# =============================================================================

def parse_bundles(payload: Dict[str, Any]) -> Optional[BundleStatus]:
    """
    Count bundles by state from a bundles.json document.

    Entries in states other than Active/Resolved/Installed (e.g. Fragment)
    count toward the total only. A missing "data" array or an entry without a
    string state makes the whole document unusable.
    """
    if not isinstance(payload, dict):
        return None
    bundles = payload.get("data")
    if not isinstance(bundles, list):
        return None

    counts = {"Active": 0, "Resolved": 0, "Installed": 0}
    for bundle in bundles:
        state = bundle.get("state") if isinstance(bundle, dict) else None
        if not isinstance(state, str):
            return None
        if state in counts:
            counts[state] += 1

    return BundleStatus(
        total=len(bundles),
        active=counts["Active"],
        resolved=counts["Resolved"],
        installed=counts["Installed"],
    )


def extract_memory_value(text: str, label: str) -> Optional[int]:
    """
    Find label in text and read the first number after it as megabytes.

    Returns the value in bytes, or None when the label or number is missing.
    """
    position = text.find(label)
    if position < 0:
        return None

    after = text[position + len(label):]
    start = next((i for i, ch in enumerate(after) if ch.isdigit()), None)
    if start is None:
        return None

    end = start
    while end < len(after) and (after[end].isdigit() or after[end] == "."):
        end += 1

    try:
        megabytes = float(after[start:end].rstrip("."))
    except ValueError:
        return None
    return int(megabytes * BYTES_PER_MB)


def parse_memory_usage(html: str) -> Optional[MemoryStatus]:
    heap_used = extract_memory_value(html, HEAP_USED_LABEL)
    heap_max = extract_memory_value(html, HEAP_MAX_LABEL)
    if heap_used is None or heap_max is None:
        return None
    return MemoryStatus.from_bytes(heap_used, heap_max)


def parse_product_info(text: str) -> Optional[VersionInfo]:
    """Parse the plaintext product info dump. No product version means None."""
    product_name = DEFAULT_PRODUCT_NAME
    product_version = ""
    oak_version = None
    java_version = None

    for raw_line in text.splitlines():
        line = raw_line.strip()
        if line.startswith("Product Name:"):
            product_name = line[len("Product Name:"):].strip() or product_name
        elif line.startswith("Product Version:"):
            product_version = line[len("Product Version:"):].strip()
        elif "Oak" in line and "Version" in line:
            tokens = line.split()
            if tokens:
                oak_version = tokens[-1]
        elif "java.version" in line and "=" in line:
            java_version = line.split("=", 1)[1].strip() or None

    if not product_version:
        return None

    return VersionInfo(
        product_name=product_name,
        product_version=product_version,
        oak_version=oak_version,
        java_version=java_version,
    )


# =============================================================================
# HTTP CLIENT
# =============================================================================

class AuthenticatedHealthClient:
    """Basic-Auth client for the system console endpoints."""

    def __init__(self, timeout_ms: int = DEFAULT_REQUEST_TIMEOUT_MS):
        self.timeout = aiohttp.ClientTimeout(total=timeout_ms / 1000.0)

    def _session(self) -> aiohttp.ClientSession:
        return aiohttp.ClientSession(
            timeout=self.timeout,
            headers={"User-Agent": "aem-instance-monitor"}
        )

    async def _get_text(self, url: str, creds: Credentials) -> Optional[Tuple[int, str]]:
        try:
            async with self._session() as session:
                async with session.get(url, auth=creds.as_basic_auth()) as response:
                    return response.status, await response.text()
        except asyncio.TimeoutError:
            logger.debug("health_request_timeout", url=url)
        except aiohttp.ClientError as e:
            logger.debug("health_request_error", url=url, error=str(e))
        return None

    async def probe_bundles(self, base_url: str, creds: Credentials) -> BundleProbe:
        """GET the bundle listing, keeping the HTTP status for the caller."""
        url = f"{base_url}{BUNDLES_PATH}"
        start_time = time.monotonic()
        outcome = await self._get_text(url, creds)
        response_time_ms = int((time.monotonic() - start_time) * 1000)

        if outcome is None:
            return BundleProbe(http_status=None, response_time_ms=response_time_ms)

        status, body = outcome
        probe = BundleProbe(http_status=status, response_time_ms=response_time_ms)
        if probe.unauthorized:
            logger.warning("bundles_unauthorized", url=url, username=creds.username)
        elif probe.authorized:
            try:
                probe.bundles = parse_bundles(json.loads(body))
            except ValueError as e:
                logger.warning("bundles_parse_error", url=url, error=str(e))
        return probe

    async def fetch_bundles(self, base_url: str, creds: Credentials) -> Optional[BundleStatus]:
        return (await self.probe_bundles(base_url, creds)).bundles

    async def fetch_memory(self, base_url: str, creds: Credentials) -> Optional[MemoryStatus]:
        url = f"{base_url}{MEMORY_USAGE_PATH}"
        outcome = await self._get_text(url, creds)
        if outcome is None or not 200 <= outcome[0] < 300:
            return None

        memory = parse_memory_usage(outcome[1])
        if memory is None:
            logger.debug("memory_values_not_found", url=url)
        return memory

    async def fetch_version(self, base_url: str, creds: Credentials) -> Optional[VersionInfo]:
        url = f"{base_url}{PRODUCT_INFO_PATH}"
        outcome = await self._get_text(url, creds)
        if outcome is None or not 200 <= outcome[0] < 300:
            return None
        return parse_product_info(outcome[1])

    async def request_shutdown(self, base_url: str, creds: Credentials) -> bool:
        """
        POST the shutdown control request.

        True means a response came back, whatever its status. Whether the
        instance actually stops is for a later status detection to confirm.
        """
        url = f"{base_url}{SHUTDOWN_PATH}"
        try:
            async with self._session() as session:
                async with session.post(url, auth=creds.as_basic_auth()) as response:
                    logger.info("shutdown_requested", url=url, status=response.status)
                    return True
        except asyncio.TimeoutError:
            logger.warning("shutdown_request_timeout", url=url)
        except aiohttp.ClientError as e:
            logger.warning("shutdown_request_failed", url=url, error=str(e))
        return False
