#!/usr/bin/env python3
"""Tests for the FastAPI façade.

Uses FastAPI's TestClient over a Dispatcher backed by the scripted pool.
"""
import sys

import pytest
from fastapi.testclient import TestClient

sys.path.insert(0, str(__file__).rsplit("/tests", 1)[0])
from conftest import FailingHandler, ScriptedHandler
from src.perfex.tools import Dispatcher, build_registry
from src.perfex.transport.rest import create_app


@pytest.fixture
def make_client(make_manager):
    def factory(handler=None):
        db, pool = make_manager(handler)
        app = create_app(Dispatcher(build_registry(), db), db)
        return TestClient(app), pool

    return factory


class TestHealth:
    def test_healthy(self, make_client):
        client, _ = make_client(ScriptedHandler(default=[{"test": 1}]))

        response = client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["database"]["max_size"] == 10
        assert "database" not in body["database"]
        assert "client_id" not in body["database"]
        assert "perfex_crm_test" not in response.text
        assert "timestamp" in body

    def test_unhealthy(self, make_client):
        client, _ = make_client(FailingHandler(10, ConnectionRefusedError("refused")))

        response = client.get("/health")

        assert response.status_code == 503
        assert response.json()["status"] == "unhealthy"


class TestToolRoutes:
    """Test tool invocation over HTTP."""

    def test_list_tools(self, make_client):
        client, _ = make_client()

        body = client.get("/api/tools").json()

        assert body["count"] == len(build_registry())
        assert {"name", "description", "inputSchema"} <= set(body["tools"][0])

    def test_invoke_success(self, make_client):
        client, _ = make_client(ScriptedHandler([("FROM tblleads l", [{"id": 3, "name": "Jane"}])]))

        response = client.post("/api/tools/get_lead", json={"arguments": {"lead_id": 3}})

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["tool"] == "get_lead"
        assert body["data"] == {"lead": {"id": 3, "name": "Jane"}}

    def test_unknown_tool(self, make_client):
        client, pool = make_client()

        response = client.post("/api/tools/drop_tables", json={"arguments": {}})

        assert response.status_code == 404
        body = response.json()
        assert body["success"] is False
        assert body["error"]["code"] == "TOOL_NOT_FOUND"
        assert pool.calls == []

    def test_invalid_arguments(self, make_client):
        client, _ = make_client()

        response = client.post("/api/tools/get_customer", json={"arguments": {"client_id": "abc"}})

        assert response.status_code == 400
        assert response.json()["error"]["details"]["errors"][0]["field"] == "client_id"

    def test_not_found(self, make_client):
        client, _ = make_client()

        response = client.post("/api/tools/get_invoice", json={"arguments": {"invoice_id": 5}})

        assert response.status_code == 404
        assert response.json()["error"]["message"] == "Invoice '5' not found"

    def test_database_failure_is_500(self, make_client):
        client, _ = make_client(FailingHandler(10, ConnectionRefusedError("refused")))

        response = client.post("/api/tools/get_lead", json={"arguments": {"lead_id": 3}})

        assert response.status_code == 500
        error = response.json()["error"]
        assert error["code"] == "QUERY_EXECUTION_ERROR"
        assert "sql" not in error.get("details", {})

    def test_body_optional(self, make_client):
        client, _ = make_client(ScriptedHandler([("SELECT COUNT(*)", [{"count": 0}])]))
        response = client.post("/api/tools/get_leads")
        assert response.status_code == 200

    def test_list_route_query_params(self, make_client):
        client, pool = make_client(ScriptedHandler([("SELECT COUNT(*) FROM tblclients", [{"count": 0}])]))

        response = client.get("/api/customers", params={"limit": "5", "active": "true"})

        assert response.status_code == 200
        assert response.json()["data"]["pagination"]["limit"] == 5
        assert pool.calls[-1][2] == (1, 5, 0)

    def test_list_route_bad_query_param(self, make_client):
        client, _ = make_client()
        response = client.get("/api/invoices", params={"status": "lost"})
        assert response.status_code == 400
