"""Tests for the login-page readiness probe."""

import asyncio

import pytest
from aiohttp import web

from aem_instance_monitor.probes.http_readiness import LOGIN_PAGE_PATH, HttpReadinessProbe

from conftest import free_port, serve_app


def login_app(status: int = 200, delay: float = 0.0) -> web.Application:
    async def login(request):
        if delay:
            await asyncio.sleep(delay)
        if status == 302:
            raise web.HTTPFound("/elsewhere")
        return web.Response(status=status, text="login")

    async def elsewhere(request):
        return web.Response(status=500)

    app = web.Application()
    app.router.add_get(LOGIN_PAGE_PATH, login)
    app.router.add_get("/elsewhere", elsewhere)
    return app


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [200, 302, 401])
async def test_ready_statuses(status):
    async with serve_app(login_app(status)) as port:
        assert await HttpReadinessProbe().is_ready("127.0.0.1", port) is True


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [404, 500, 503])
async def test_other_statuses_are_not_ready(status):
    async with serve_app(login_app(status)) as port:
        assert await HttpReadinessProbe().is_ready("127.0.0.1", port) is False


@pytest.mark.asyncio
async def test_redirect_is_not_followed():
    # Following the redirect would land on a 500.
    async with serve_app(login_app(302)) as port:
        assert await HttpReadinessProbe().is_ready("127.0.0.1", port) is True


@pytest.mark.asyncio
async def test_timeout_is_not_ready():
    async with serve_app(login_app(200, delay=1.0)) as port:
        probe = HttpReadinessProbe(timeout_ms=100)
        assert await probe.is_ready("127.0.0.1", port) is False


@pytest.mark.asyncio
async def test_connection_refused_is_not_ready():
    assert await HttpReadinessProbe().is_ready("127.0.0.1", free_port()) is False


def test_login_url():
    probe = HttpReadinessProbe()
    assert probe.login_url("localhost", 4502) == \
        "http://localhost:4502/libs/granite/core/content/login.html"


def test_login_url_brackets_ipv6_literal():
    probe = HttpReadinessProbe()
    assert probe.login_url("::1", 4502) == \
        "http://[::1]:4502/libs/granite/core/content/login.html"
