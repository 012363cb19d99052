"""Shared helpers: fake probes, throwaway aiohttp servers, free ports."""

import socket
from contextlib import asynccontextmanager
from typing import Dict, List, Optional, Tuple

import pytest
from aiohttp import web

from aem_instance_monitor.core.models import Instance, InstanceType
from aem_instance_monitor.probes.process_inspector import ProcessInspector


class FakeProcessInspector(ProcessInspector):
    def __init__(self, listener: Optional[Tuple[int, str]] = None, terminate_error: Exception = None):
        self.listener = listener
        self.terminate_error = terminate_error
        self.lookups: List[int] = []
        self.terminated: List[Tuple[int, float]] = []

    def find_listener(self, port):
        self.lookups.append(port)
        return self.listener

    def terminate(self, pid, grace_period=10.0):
        self.terminated.append((pid, grace_period))
        if self.terminate_error is not None:
            raise self.terminate_error


class FakePortProbe:
    """Reports a fixed answer per port; raises for ports listed in `broken`."""

    def __init__(self, open_ports=(), broken=()):
        self.open_ports = set(open_ports)
        self.broken = set(broken)
        self.calls: List[Tuple[str, int]] = []

    async def probe(self, host, port, timeout_ms=None):
        self.calls.append((host, port))
        if port in self.broken:
            raise RuntimeError(f"probe exploded for {port}")
        return port in self.open_ports


class FakeHttpProbe:
    def __init__(self, ready: bool):
        self.ready = ready
        self.calls: List[Tuple[str, int]] = []

    async def is_ready(self, host, port, timeout_ms=None):
        self.calls.append((host, port))
        return self.ready


def free_port() -> int:
    """A port that nothing is listening on (bound briefly, then released)."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def make_instance(instance_id: str = "author", port: int = 4502, host: str = "localhost") -> Instance:
    return Instance(
        id=instance_id,
        name=f"{instance_id} instance",
        instance_type=InstanceType.AUTHOR,
        host=host,
        port=port,
    )


@asynccontextmanager
async def serve_app(app: web.Application):
    """Run app on an ephemeral 127.0.0.1 port and yield the port."""
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, "127.0.0.1", 0)
    await site.start()
    port = site._server.sockets[0].getsockname()[1]
    try:
        yield port
    finally:
        await runner.cleanup()


BUNDLES_JSON = {
    "status": "Bundle information: 5 bundles in total",
    "data": [
        {"id": 0, "name": "System Bundle", "state": "Active"},
        {"id": 1, "name": "org.apache.sling.api", "state": "Active"},
        {"id": 2, "name": "com.adobe.granite.ui", "state": "Resolved"},
        {"id": 3, "name": "com.example.core", "state": "Installed"},
        {"id": 4, "name": "org.apache.sling.fragment", "state": "Fragment"},
    ],
}

MEMORY_HTML = """
<html><body><table>
<tr><td>Heap Memory used</td><td>512 MB</td></tr>
<tr><td>Heap Memory maximum</td><td>2048 MB</td></tr>
</table></body></html>
"""

PRODUCT_INFO_TEXT = """*** Product Information ***
Product Name: Adobe Experience Manager
Product Version: 6.5.21.0
Oak Repository Version 1.22.20
System properties:
java.version = 11.0.22
"""


def console_app(username: str = "admin", password: str = "admin",
                login_status: int = 302, calls: Optional[Dict[str, int]] = None) -> web.Application:
    """A fake application exposing the login page and the system console."""
    import base64
    expected = "Basic " + base64.b64encode(f"{username}:{password}".encode()).decode()
    calls = calls if calls is not None else {}

    def authorized(request):
        return request.headers.get("Authorization") == expected

    def count(name):
        calls[name] = calls.get(name, 0) + 1

    async def login(request):
        count("login")
        if login_status == 302:
            raise web.HTTPFound("/libs/granite/core/content/login.html/j_security_check")
        return web.Response(status=login_status, text="login")

    async def bundles(request):
        count("bundles")
        if not authorized(request):
            return web.Response(status=401)
        return web.json_response(BUNDLES_JSON)

    async def memory(request):
        count("memory")
        if not authorized(request):
            return web.Response(status=401)
        return web.Response(text=MEMORY_HTML, content_type="text/html")

    async def product_info(request):
        count("productinfo")
        if not authorized(request):
            return web.Response(status=401)
        return web.Response(text=PRODUCT_INFO_TEXT)

    async def shutdown(request):
        count("shutdown")
        if not authorized(request):
            return web.Response(status=401)
        return web.Response(text="Shutting down")

    app = web.Application()
    app.router.add_get("/libs/granite/core/content/login.html", login)
    app.router.add_get("/system/console/bundles.json", bundles)
    app.router.add_get("/system/console/memoryusage", memory)
    app.router.add_get("/system/console/status-productinfo.txt", product_info)
    app.router.add_post("/system/console/vmstat", shutdown)
    return app


@pytest.fixture
def fake_inspector():
    return FakeProcessInspector()
