"""
Tests for the audit, report and health routes.
The AuditService dependency is overridden with one crawling a MockTransport site.
"""

import asyncio
import json

import httpx
import pytest
from fastapi.testclient import TestClient

from seo_audit.engines.crawler.engine import CrawlConfig
from seo_audit.main import app
from seo_audit.services.audit_service import AuditService, get_audit_service
from seo_audit.services.progress import InMemoryProgressStore
from seo_audit.services.repository import InMemoryAuditRepository

HOME = (
    "<html><head><title>Acme Widgets - Quality Widgets for Every Home</title></head>"
    "<body><h1>Acme</h1><p>Widgets for everyone.</p><a href='/about'>About</a></body></html>"
)


def handler(request: httpx.Request) -> httpx.Response:
    if request.url.path == "/":
        return httpx.Response(200, html=HOME)
    if request.url.path == "/about":
        return httpx.Response(200, html="<html><head><title>About</title></head><body><a href='/'>Home</a></body></html>")
    return httpx.Response(404)


@pytest.fixture
def service():
    return AuditService(
        InMemoryAuditRepository(),
        InMemoryProgressStore(grace_seconds=60),
        crawl_config=CrawlConfig(respect_robots=False),
        transport=httpx.MockTransport(handler),
    )


@pytest.fixture
def client(service):
    app.dependency_overrides[get_audit_service] = lambda: service
    yield TestClient(app)
    app.dependency_overrides.clear()


def sse_events(body: str) -> list[dict]:
    return [json.loads(line[len("data: "):]) for line in body.splitlines() if line.startswith("data: ")]


class TestCreateAudit:

    def test_starts_audit_and_runs_it_in_background(self, client):
        response = client.post("/api/v1/audits", json={"url": "example.com"})

        assert response.status_code == 202
        body = response.json()
        assert body["url"] == "https://example.com"
        assert body["status"] == "pending"

        # Background tasks finish before TestClient returns
        audit = client.get(f"/api/v1/audits/{body['id']}").json()["audit"]
        assert audit["status"] == "complete"
        assert audit["pages_crawled"] == 2
        assert 0 <= audit["site_health_score"] <= 100

    def test_missing_url(self, client):
        response = client.post("/api/v1/audits", json={})
        assert response.status_code == 400
        assert response.json()["detail"] == "URL is required"

    def test_private_address_rejected(self, client):
        response = client.post("/api/v1/audits", json={"url": "http://10.0.0.1"})
        assert response.status_code == 400
        assert response.json()["detail"] == "Cannot audit localhost or private IP addresses"


class TestGetAudit:

    def test_unknown_audit(self, client):
        assert client.get("/api/v1/audits/does-not-exist").status_code == 404


class TestProgressStream:

    def test_completed_audit_streams_terminal_event(self, client):
        audit_id = client.post("/api/v1/audits", json={"url": "https://example.com"}).json()["id"]

        response = client.get(f"/api/v1/audits/{audit_id}/progress")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        events = sse_events(response.text)
        assert events[-1]["status"] == "complete"
        assert events[-1]["percent_complete"] == 100

    def test_failed_audit_without_progress_entry(self, client, service):
        audit = asyncio.run(service.repository.create("https://example.com"))
        asyncio.run(service.repository.fail(audit.id, "boom"))

        events = sse_events(client.get(f"/api/v1/audits/{audit.id}/progress").text)

        assert events == [{
            "status": "failed",
            "pages_crawled": 0,
            "total_pages_found": 0,
            "current_url": "",
            "percent_complete": 0,
            "error": "boom",
        }]

    def test_unknown_audit(self, client):
        assert client.get("/api/v1/audits/nope/progress").status_code == 404


class TestCancelAudit:

    def test_unknown_audit(self, client):
        assert client.post("/api/v1/audits/nope/cancel").status_code == 404

    def test_audit_not_running(self, client, service):
        audit = asyncio.run(service.repository.create("https://example.com"))

        response = client.post(f"/api/v1/audits/{audit.id}/cancel")

        assert response.status_code == 409
        assert "pending" in response.json()["detail"]


class TestReports:

    def test_completed_report(self, client):
        audit_id = client.post("/api/v1/audits", json={"url": "https://example.com"}).json()["id"]

        response = client.get(f"/api/v1/reports/{audit_id}")

        assert response.status_code == 200
        audit = response.json()["audit"]
        assert audit["id"] == audit_id
        assert len(audit["pages"]) == 2
        assert {"errors", "warnings", "crawled_pages"} <= audit.keys()

    def test_incomplete_audit(self, client, service):
        audit = asyncio.run(service.repository.create("https://example.com"))

        response = client.get(f"/api/v1/reports/{audit.id}")

        assert response.status_code == 400
        assert response.json()["detail"] == "Audit is not complete"

    def test_unknown_audit(self, client):
        assert client.get("/api/v1/reports/nope").status_code == 404


class TestHealth:

    def test_health(self, client):
        body = client.get("/health").json()
        assert body["status"] == "healthy"
        assert body["checks"]["progress_store"] == "memory"

    def test_kubernetes_health_endpoints(self, client):
        assert client.get("/health/ready").json() == {"ready": True}
        assert client.get("/health/live").json() == {"alive": True}
