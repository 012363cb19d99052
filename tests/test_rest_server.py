"""Tests for the REST API surface."""

import json

import pytest
from fastapi.testclient import TestClient

from aem_instance_monitor.api.rest_server import RestAPIServer
from aem_instance_monitor.clients.health_client import AuthenticatedHealthClient
from aem_instance_monitor.core.lifecycle import LifecycleController
from aem_instance_monitor.core.status_detector import StatusDetector
from aem_instance_monitor.store.credential_store import CredentialResolver, CredentialStore
from aem_instance_monitor.store.instance_store import INSTANCES_FILE, JsonInstanceStore

from conftest import FakeHttpProbe, FakePortProbe, FakeProcessInspector, free_port, make_instance


@pytest.fixture
def api(tmp_path):
    stopped_port = free_port()
    records = [make_instance("author", host="127.0.0.1", port=stopped_port).to_dict()]
    (tmp_path / INSTANCES_FILE).write_text(json.dumps(records))

    inspector = FakeProcessInspector()
    credential_store = CredentialStore(tmp_path)
    controller = LifecycleController(
        store=JsonInstanceStore(tmp_path),
        detector=StatusDetector(FakePortProbe(), inspector, FakeHttpProbe(ready=False)),
        health_client=AuthenticatedHealthClient(timeout_ms=1000),
        credentials=CredentialResolver(credential_store),
        process_inspector=inspector,
    )
    server = RestAPIServer(controller, credential_store, {"host": "127.0.0.1", "port": 8765})

    with TestClient(server.app) as client:
        yield client


def test_service_health(api):
    response = api.get("/api/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_list_instances(api):
    response = api.get("/api/instances")

    assert response.status_code == 200
    assert [record["id"] for record in response.json()] == ["author"]


def test_instance_status(api):
    response = api.get("/api/instances/author/status")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "stopped"
    assert body["process_id"] is None


def test_all_statuses(api):
    response = api.get("/api/instances/status")

    assert response.status_code == 200
    assert [r["status"] for r in response.json()] == ["stopped"]


def test_unknown_instance_is_404(api):
    response = api.get("/api/instances/missing/status")

    assert response.status_code == 404
    assert response.json()["detail"] == "Instance missing not found"


def test_stop_with_nothing_to_stop_is_409(api):
    response = api.post("/api/instances/author/stop")

    assert response.status_code == 409
    assert "no process found to stop" in response.json()["detail"]


def test_urls(api):
    response = api.get("/api/instances/author/urls")

    assert response.status_code == 200
    assert response.json()["console"].endswith("/system/console")


def test_store_credentials(api, tmp_path):
    response = api.put("/api/instances/author/credentials",
                       json={"username": "ops", "password": "secret"})

    assert response.status_code == 200
    assert json.loads((tmp_path / ".credentials").read_text()) == {"author": ["ops", "secret"]}


def test_store_credentials_for_unknown_instance(api):
    response = api.put("/api/instances/missing/credentials",
                       json={"username": "ops", "password": "secret"})

    assert response.status_code == 404
