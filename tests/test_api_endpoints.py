"""
Tests for API Endpoints

Tests the FastAPI endpoints for the LedgerSort API against an in-memory engine.
"""

import pytest
from fastapi.testclient import TestClient

from ledgersort.di.container import EngineContext
from main import create_app
from factories import FakeClock, NeverRandom, make_pattern


@pytest.fixture
def engine():
    return EngineContext(rng=NeverRandom(), breaker_clock=FakeClock())


@pytest.fixture
def client(engine):
    return TestClient(create_app(engine))


class TestHealthEndpoints:
    """Test health check endpoints."""

    def test_health_check(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert "timestamp" in data

    def test_categorization_health(self, client):
        response = client.get("/v1/categorization/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["pattern_store"] == "ok"
        assert data["circuit_breaker"] == "closed"


class TestCategorizeEndpoints:
    """Test single and batch categorization."""

    def test_categorize_known_merchant(self, client, engine):
        engine.repository.seed([make_pattern("starbucks", usage_count=10, success_count=9)])
        response = client.post("/v1/categorization/categorize", json={
            "merchant_name": "Starbucks #1234",
            "amount": 5.75,
        })
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "success"
        assert data["category_id"] == "food"
        assert data["explanation"].startswith("Confidence")
        assert "Usage frequency: frequent (10 times)" in data["explanation"]
        assert data["usage_count"] == 10
        assert "alternatives_summary" in data

    def test_categorize_unknown_merchant(self, client):
        response = client.post("/v1/categorization/categorize", json={"merchant_name": "Nowhere Inc"})
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "no_match"
        assert "explanation" not in data

    def test_empty_record_is_an_error_result(self, client):
        response = client.post("/v1/categorization/categorize", json={"amount": 12.0})
        assert response.status_code == 200
        assert response.json()["status"] == "error"

    def test_unknown_fields_rejected(self, client):
        response = client.post("/v1/categorization/categorize", json={
            "merchant_name": "Starbucks",
            "vendor_tier": "gold",
        })
        assert response.status_code == 422

    def test_batch_keeps_order(self, client, engine):
        engine.repository.seed([make_pattern("uber", category_id="travel")])
        response = client.post("/v1/categorization/batch", json={"records": [
            {"merchant_name": "Uber Trip"},
            {"merchant_name": "Nowhere Inc"},
        ]})
        assert response.status_code == 200
        data = response.json()
        assert data["count"] == 2
        assert [r["status"] for r in data["results"]] == ["success", "no_match"]


class TestLearningEndpoints:
    """Test corrections and decay."""

    def test_learn_then_categorize(self, client):
        response = client.post("/v1/categorization/learn", json={"corrections": [
            {"record": {"merchant_name": "Blue Bottle", "amount": 6.5}, "correct_category": "coffee"},
        ]})
        assert response.status_code == 200
        data = response.json()
        assert data["successful"] == 1
        assert data["patterns_created"] == 1

        response = client.post("/v1/categorization/categorize", json={"merchant_name": "Blue Bottle"})
        assert response.json()["category_id"] == "coffee"

    def test_learn_requires_category(self, client):
        response = client.post("/v1/categorization/learn", json={"corrections": [
            {"record": {"merchant_name": "Blue Bottle"}, "correct_category": ""},
        ]})
        assert response.status_code == 422

    def test_decay(self, client, engine):
        engine.repository.seed([make_pattern("starbucks")])
        response = client.post("/v1/categorization/decay", json={"inactivity_days": 0, "decay_factor": 0.5})
        assert response.status_code == 200
        data = response.json()
        assert data["error"] is None
        assert data["examined"] == 1

    def test_decay_rejects_bad_factor(self, client):
        response = client.post("/v1/categorization/decay", json={"decay_factor": 1.5})
        assert response.status_code == 422


class TestAdminEndpoints:
    """Test metrics and runtime configuration."""

    def test_metrics(self, client):
        client.post("/v1/categorization/categorize", json={"merchant_name": "Nowhere Inc"})
        response = client.get("/v1/categorization/metrics")
        assert response.status_code == 200
        data = response.json()
        assert data["categorization"]["total"] == 1
        assert "circuit_breaker" in data
        assert "pattern_cache" in data

    def test_update_config(self, client, engine):
        response = client.put("/v1/categorization/config", json={"options": {"min_confidence": 0.4}})
        assert response.status_code == 200
        assert response.json()["config"]["min_confidence"] == 0.4
        assert engine.orchestrator().config.min_confidence == 0.4

    def test_unknown_config_option(self, client):
        response = client.put("/v1/categorization/config", json={"options": {"turbo": True}})
        assert response.status_code == 400
        assert response.json()["detail"]["error"] == "INVALID_CONFIG"

    def test_empty_config_update(self, client):
        response = client.put("/v1/categorization/config", json={"options": {}})
        assert response.status_code == 422
