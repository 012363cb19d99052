"""Tests for the system console parsers and the authenticated client."""

import pytest

from aem_instance_monitor.clients.health_client import (
    BYTES_PER_MB,
    AuthenticatedHealthClient,
    Credentials,
    extract_memory_value,
    parse_bundles,
    parse_memory_usage,
    parse_product_info,
)

from conftest import BUNDLES_JSON, MEMORY_HTML, PRODUCT_INFO_TEXT, console_app, free_port, serve_app

ADMIN = Credentials("admin", "admin")


# =============================================================================
# PARSERS
# =============================================================================

def test_parse_bundles_counts_states():
    bundles = parse_bundles(BUNDLES_JSON)

    assert bundles.total == 5
    assert bundles.active == 2
    assert bundles.resolved == 1
    assert bundles.installed == 1
    assert bundles.active + bundles.resolved + bundles.installed <= bundles.total


@pytest.mark.parametrize("payload", [
    {},
    {"data": "nope"},
    {"data": [{"id": 1}]},
    {"data": [{"id": 1, "state": 3}]},
    [],
])
def test_parse_bundles_rejects_malformed_documents(payload):
    assert parse_bundles(payload) is None


def test_parse_bundles_empty_listing():
    bundles = parse_bundles({"data": []})
    assert (bundles.total, bundles.active, bundles.resolved, bundles.installed) == (0, 0, 0, 0)


def test_extract_memory_value_reads_megabytes():
    assert extract_memory_value(MEMORY_HTML, "Heap Memory used") == 512 * BYTES_PER_MB
    assert extract_memory_value(MEMORY_HTML, "Heap Memory maximum") == 2048 * BYTES_PER_MB


def test_extract_memory_value_missing_label_or_number():
    assert extract_memory_value(MEMORY_HTML, "Non-Heap Memory") is None
    assert extract_memory_value("Heap Memory used: n/a", "Heap Memory used") is None


def test_parse_memory_usage_percentage():
    memory = parse_memory_usage(MEMORY_HTML)

    assert memory.heap_used == 512 * BYTES_PER_MB
    assert memory.heap_max == 2048 * BYTES_PER_MB
    assert memory.heap_percentage == pytest.approx(25.0)


def test_parse_memory_usage_incomplete_page():
    assert parse_memory_usage("<tr><td>Heap Memory used</td><td>512 MB</td></tr>") is None


def test_parse_product_info():
    info = parse_product_info(PRODUCT_INFO_TEXT)

    assert info.product_name == "Adobe Experience Manager"
    assert info.product_version == "6.5.21.0"
    assert info.oak_version == "1.22.20"
    assert info.java_version == "11.0.22"


def test_parse_product_info_defaults_product_name():
    info = parse_product_info("Product Version: 6.5.0\n")

    assert info.product_name == "Adobe Experience Manager"
    assert info.oak_version is None
    assert info.java_version is None


def test_parse_product_info_without_version_is_none():
    assert parse_product_info("Product Name: Something\nOak Version 1.0\n") is None


# =============================================================================
# CLIENT
# =============================================================================

@pytest.mark.asyncio
async def test_probe_bundles_authorized():
    async with serve_app(console_app()) as port:
        probe = await AuthenticatedHealthClient().probe_bundles(f"http://127.0.0.1:{port}", ADMIN)

    assert probe.authorized
    assert probe.http_status == 200
    assert probe.bundles.total == 5
    assert probe.response_time_ms >= 0


@pytest.mark.asyncio
async def test_probe_bundles_wrong_credentials():
    async with serve_app(console_app(password="secret")) as port:
        probe = await AuthenticatedHealthClient().probe_bundles(f"http://127.0.0.1:{port}", ADMIN)

    assert probe.responded
    assert probe.unauthorized
    assert probe.bundles is None


@pytest.mark.asyncio
async def test_probe_bundles_no_response():
    probe = await AuthenticatedHealthClient(timeout_ms=1000).probe_bundles(
        f"http://127.0.0.1:{free_port()}", ADMIN
    )

    assert not probe.responded
    assert probe.bundles is None


@pytest.mark.asyncio
async def test_fetch_memory_and_version():
    client = AuthenticatedHealthClient()
    async with serve_app(console_app()) as port:
        base_url = f"http://127.0.0.1:{port}"
        memory = await client.fetch_memory(base_url, ADMIN)
        version = await client.fetch_version(base_url, ADMIN)

    assert memory.heap_percentage == pytest.approx(25.0)
    assert version.product_version == "6.5.21.0"


@pytest.mark.asyncio
async def test_fetch_version_unauthorized_is_none():
    async with serve_app(console_app(password="secret")) as port:
        version = await AuthenticatedHealthClient().fetch_version(f"http://127.0.0.1:{port}", ADMIN)

    assert version is None


@pytest.mark.asyncio
async def test_request_shutdown_any_response_is_success():
    calls = {}
    # Wrong credentials still produce a response.
    async with serve_app(console_app(password="secret", calls=calls)) as port:
        accepted = await AuthenticatedHealthClient().request_shutdown(f"http://127.0.0.1:{port}", ADMIN)

    assert accepted is True
    assert calls["shutdown"] == 1


@pytest.mark.asyncio
async def test_request_shutdown_without_listener():
    accepted = await AuthenticatedHealthClient(timeout_ms=1000).request_shutdown(
        f"http://127.0.0.1:{free_port()}", ADMIN
    )

    assert accepted is False


@pytest.mark.asyncio
async def test_fetch_bundles():
    async with serve_app(console_app()) as port:
        bundles = await AuthenticatedHealthClient().fetch_bundles(f"http://127.0.0.1:{port}", ADMIN)

    assert (bundles.total, bundles.active, bundles.resolved, bundles.installed) == (5, 2, 1, 1)
