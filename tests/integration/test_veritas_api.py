"""
============================================================================
Veritas Protocol v1.0.0
Integration Test: Validation, Monitoring and Alert Review API
============================================================================

Reliability Level: L6 Critical (Sovereign Tier)
Input Constraints: FastAPI TestClient, in-memory orchestrator
Side Effects: None (in-memory stores, fake notifier)

COVERAGE:
- POST /validate returns the report for clean and impossible datasets
- Malformed input is rejected with 422
- Metrics dashboard and reliability summary reflect prior validations
- Alert review: 401 without token, 403 with a wrong or unset token,
  404 for unknown alerts, 409 on double review

Python 3.8 Compatible - No union type hints (X | None)
============================================================================
"""

import os
import sys
from typing import Any, Dict

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))

from conftest import FakeNotifier
from app.api.alerts import get_config, router as alerts_router
from app.api.monitoring import router as monitoring_router
from app.api.validation import router as validation_router
from services.validation_orchestrator import (
    ValidationOrchestrator,
    build_orchestrator,
    get_validation_orchestrator,
)
from services.veritas_config import VeritasConfig

ADMIN_TOKEN = "review-secret"


# ============================================================================
# Test App Setup
# ============================================================================

def create_test_app() -> FastAPI:
    """Create FastAPI test application with the Veritas routers."""
    app = FastAPI(title="Veritas API Test")
    app.include_router(validation_router, prefix="/api/veritas")
    app.include_router(monitoring_router, prefix="/api/veritas")
    app.include_router(alerts_router, prefix="/api/veritas/alerts")
    return app


def clean_payload(symbol: str = "BTC") -> Dict[str, Any]:
    return {
        "symbol": symbol,
        "domainDataset": {
            "market": [
                {"src": "coingecko", "price": "90000", "volume24h": "600000000"},
                {"src": "kraken", "price": "90900", "volume24h": "400000000"},
            ],
            "social": {
                "provider": "lunarcrush",
                "sentimentScore": "62",
                "mentionCount": 1200,
                "distribution": {"positive": 55, "negative": 20, "neutral": 25},
                "secondary": {"provider": "santiment", "score": "58"},
            },
            "onchain": {
                "provider": "glassnode",
                "exchangeDeposits": "100000000",
                "exchangeWithdrawals": "100000000",
                "peerTransfers": "50000000",
                "reportedVolume24h": "1000000000",
            },
            "news": [{"source": "coindesk", "title": "BTC holds above 90k"}],
        },
    }


def impossible_payload() -> Dict[str, Any]:
    payload = clean_payload()
    payload["domainDataset"]["social"] = {
        "provider": "lunarcrush",
        "mentionCount": 0,
        "distribution": {"positive": 60, "negative": 10, "neutral": 30},
    }
    return payload


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def config() -> VeritasConfig:
    return VeritasConfig(admin_token=ADMIN_TOKEN)


@pytest.fixture
def orchestrator(config: VeritasConfig, notifier: FakeNotifier) -> ValidationOrchestrator:
    return build_orchestrator(config, notifier=notifier, async_delivery=False)


@pytest.fixture
def client(config: VeritasConfig, orchestrator: ValidationOrchestrator):
    app = create_test_app()
    app.dependency_overrides[get_validation_orchestrator] = lambda: orchestrator
    app.dependency_overrides[get_config] = lambda: config
    with TestClient(app) as test_client:
        yield test_client


def admin_headers(token: str = ADMIN_TOKEN) -> Dict[str, str]:
    return {"X-Veritas-Admin-Token": token}


# ============================================================================
# Validation Endpoint
# ============================================================================

class TestValidateEndpoint:

    def test_clean_dataset(self, client):
        response = client.post("/api/veritas/validate", json=clean_payload())
        assert response.status_code == 200
        body = response.json()
        assert body["isValid"] is True
        assert body["confidenceScore"] == "100.00"
        assert body["alerts"] == []
        assert body["validationSkipped"] is False
        assert body["correlationId"]
        assert body["data"]["news"][0]["provider"] == "coindesk"

    def test_impossible_social_is_fatal(self, client, notifier):
        response = client.post("/api/veritas/validate", json=impossible_payload())
        assert response.status_code == 200
        body = response.json()
        assert body["isValid"] is False
        assert body["alerts"][0]["severity"] == "fatal"
        assert body["alerts"][0]["domain"] == "social"
        assert body["data"]["social"] is None
        assert len(notifier.alerts) == 1

    def test_blank_symbol_rejected(self, client):
        response = client.post("/api/veritas/validate", json=clean_payload("   "))
        assert response.status_code == 422

    def test_negative_price_rejected(self, client):
        payload = clean_payload()
        payload["domainDataset"]["market"][0]["price"] = "-1"
        response = client.post("/api/veritas/validate", json=payload)
        assert response.status_code == 422

    def test_enabled_domains_option(self, client):
        payload = impossible_payload()
        payload["options"] = {"enabledDomains": ["market"], "timeoutMs": 2000}
        body = client.post("/api/veritas/validate", json=payload).json()
        assert body["isValid"] is True
        assert set(body["dataQualitySummary"]) == {"market", "social", "onchain"}
        assert body["dataQualitySummary"]["social"]["evaluated"] is False

    def test_feature_flag_off(self, notifier):
        orchestrator = build_orchestrator(
            VeritasConfig(enabled=False), notifier=notifier, async_delivery=False
        )
        payload = impossible_payload()
        payload["domainDataset"]["social"]["posts"] = ["BTC breakout incoming", "selling here"]
        payload["domainDataset"]["onchain"]["transactions"] = [
            {"hash": "0x1", "from": "0xA", "to": "0xB", "valueUsd": "250"},
        ]
        app = create_test_app()
        app.dependency_overrides[get_validation_orchestrator] = lambda: orchestrator
        with TestClient(app) as test_client:
            body = test_client.post("/api/veritas/validate", json=payload).json()
        assert body["validationSkipped"] is True
        assert body["confidenceScore"] is None
        # Input comes back whole, raw posts and transfers included
        social = body["data"]["social"]
        assert social["mention_count"] == 0
        assert social["posts"] == ["BTC breakout incoming", "selling here"]
        assert body["data"]["onchain"]["transactions"] == [
            {"hash": "0x1", "from": "0xA", "to": "0xB", "value_usd": "250"},
        ]


# ============================================================================
# Monitoring Endpoints
# ============================================================================

class TestMonitoringEndpoints:

    def test_metrics_dashboard(self, client):
        client.post("/api/veritas/validate", json=clean_payload())
        client.post("/api/veritas/validate", json=clean_payload("ETH"))

        response = client.get("/api/veritas/metrics", params={"recent": 1})
        assert response.status_code == 200
        body = response.json()
        assert body["aggregatedMetrics"]["total_validations"] == 2
        assert body["aggregatedMetrics"]["symbols_validated"] == ["BTC", "ETH"]
        assert [r["symbol"] for r in body["recentValidations"]] == ["ETH"]
        # Below the minimum sample size no rule fires
        assert body["healthStatus"] == "healthy"

    def test_reliability_summary(self, client):
        client.post("/api/veritas/validate", json=clean_payload())
        body = client.get("/api/veritas/reliability").json()
        providers = {s["provider"] for s in body["sources"]}
        assert {"coingecko", "kraken", "lunarcrush", "santiment"} <= providers


# ============================================================================
# Alert Review Endpoints
# ============================================================================

class TestAlertReviewEndpoints:

    def _raise_fatal(self, client) -> str:
        body = client.post("/api/veritas/validate", json=impossible_payload()).json()
        return body["alerts"][0]["id"]

    def test_missing_token_401(self, client):
        response = client.get("/api/veritas/alerts/pending")
        assert response.status_code == 401
        assert response.json()["detail"]["error_code"] == "SEC-001"

    def test_wrong_token_403(self, client):
        response = client.get("/api/veritas/alerts/pending", headers=admin_headers("nope"))
        assert response.status_code == 403

    def test_unset_token_disables_review(self, orchestrator):
        app = create_test_app()
        app.dependency_overrides[get_validation_orchestrator] = lambda: orchestrator
        app.dependency_overrides[get_config] = lambda: VeritasConfig()
        with TestClient(app) as test_client:
            response = test_client.get("/api/veritas/alerts/pending", headers=admin_headers())
        assert response.status_code == 403

    def test_review_flow(self, client):
        alert_id = self._raise_fatal(client)

        pending = client.get("/api/veritas/alerts/pending", headers=admin_headers()).json()
        assert [r["alert_id"] for r in pending] == [alert_id]

        response = client.post(
            f"/api/veritas/alerts/{alert_id}/review",
            json={"reviewer": "ops-lead", "notes": "provider glitch"},
            headers=admin_headers(),
        )
        assert response.status_code == 200
        assert response.json()["status"] == "reviewed"

        assert client.get("/api/veritas/alerts/pending", headers=admin_headers()).json() == []
        stats = client.get("/api/veritas/alerts/statistics", headers=admin_headers()).json()
        assert stats["reviewed"] == 1
        assert stats["by_domain"] == {"social": 1}

    def test_double_review_409(self, client):
        alert_id = self._raise_fatal(client)
        url = f"/api/veritas/alerts/{alert_id}/review"
        client.post(url, json={"reviewer": "a"}, headers=admin_headers())
        response = client.post(url, json={"reviewer": "b"}, headers=admin_headers())
        assert response.status_code == 409

    def test_unknown_alert_404(self, client):
        response = client.post(
            "/api/veritas/alerts/missing/review",
            json={"reviewer": "ops"},
            headers=admin_headers(),
        )
        assert response.status_code == 404


# ============================================================================
# System Endpoints
# ============================================================================

class TestSystemEndpoints:

    def test_health_without_database(self):
        from app.main import app
        response = TestClient(app).get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "database": "not_configured"}

    def test_prometheus_scrape(self):
        from app.main import app
        response = TestClient(app).get("/metrics")
        assert response.status_code == 200
        assert "veritas_" in response.text
