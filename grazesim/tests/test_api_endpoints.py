"""
Tests for API endpoints
"""

from datetime import date

import pytest
from fastapi.testclient import TestClient
from grazesim.api import app, get_farm_data, get_today, status_for_error
from grazesim.exceptions import (
    DataSourceError,
    InsufficientHistoryError,
    ModelInvalidError,
    SimulationError,
    UnknownPaddockError,
)

client = TestClient(app)

TANK_MODEL = {
    "name": "tank",
    "stocks": {"tank": {"initial": 100}},
    "flows": {"drain": {"from": "tank", "to": "external", "rate": "10"}},
}


@pytest.fixture
def farm_overrides(farm_data, today):
    app.dependency_overrides[get_farm_data] = lambda: farm_data
    app.dependency_overrides[get_today] = lambda: today
    yield
    app.dependency_overrides.clear()


# ============================================================================
# Info
# ============================================================================


def test_root_endpoint():
    """Test root endpoint"""
    response = client.get("/")
    assert response.status_code == 200
    data = response.json()
    assert "message" in data
    assert "version" in data
    assert data["endpoints"]["optimize"] == "/optimize"


def test_health_endpoint():
    """Test health check endpoint"""
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"


def test_request_id_header():
    """Test that a supplied request ID is echoed back"""
    response = client.get("/health", headers={"X-Request-ID": "abc-123"})
    assert response.headers["X-Request-ID"] == "abc-123"

    response = client.get("/health")
    assert response.headers["X-Request-ID"]


# ============================================================================
# Models
# ============================================================================


def test_list_models_endpoint():
    """Test stored model listing"""
    response = client.get("/models")
    assert response.status_code == 200
    data = response.json()
    assert "grazing-rotation" in data["models"]
    assert data["default"] == "grazing-rotation"


def test_get_model_endpoint():
    """Test loading a stored model with aliases preserved"""
    response = client.get("/models/grazing-rotation")
    assert response.status_code == 200
    data = response.json()
    assert data["summary"]["stocks"] == 15
    assert data["summary"]["flows"] == 40
    assert data["model"]["flows"]["big_grazing"]["from"] == "big_forage"


def test_get_model_not_found():
    """Test unknown model name"""
    response = client.get("/models/no-such-model")
    assert response.status_code == 404
    assert response.json()["code"] == "model_not_found"


def test_get_model_path_traversal():
    """Test that path traversal in model names is rejected"""
    response = client.get("/models/..secrets")
    assert response.status_code == 400
    assert response.json()["code"] == "http_400"


# ============================================================================
# Validation and Simulation
# ============================================================================


def test_validate_endpoint_valid():
    """Test validation endpoint with valid model"""
    response = client.post("/validate", json={"model": TANK_MODEL})
    assert response.status_code == 200
    data = response.json()
    assert data["valid"] is True
    assert data["errors"] == []
    assert data["summary"]["stocks"] == 1


def test_validate_endpoint_invalid():
    """Test validation endpoint with undefined variable"""
    model = dict(TANK_MODEL, flows={"drain": {"from": "tank", "to": "external", "rate": "tank * k"}})
    response = client.post("/validate", json={"model": model})
    assert response.status_code == 200
    data = response.json()
    assert data["valid"] is False
    assert data["errors"][0]["code"] == "undefined_variable"
    assert data["summary"]["error_count"] == 1

    response = client.post("/validate", json={"model": model, "time_series_keys": ["k"]})
    assert response.json()["valid"] is True


def test_simulate_inline_model():
    """Test simulation of an inline model"""
    response = client.post("/simulate", json={"model": TANK_MODEL, "steps": 5, "dt": 1.0})
    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["stocks"]["tank"] == [100.0, 90.0, 80.0, 70.0, 60.0, 50.0]
    assert data["summary"]["stocks"]["tank"]["change"] == -50.0


def test_simulate_stored_model_with_params():
    """Test parameter overrides on the default stored model"""
    response = client.post("/simulate", json={"steps": 3, "params": {"daily_intake": 0}})
    assert response.status_code == 200
    data = response.json()
    assert data["flows"]["big_grazing"] == [0.0, 0.0, 0.0]
    assert len(data["stocks"]) == 15


def test_simulate_time_series():
    """Test per-step parameter overrides through the API"""
    model = dict(TANK_MODEL, flows={"drain": {"from": "tank", "to": "external", "rate": "outflow"}})
    response = client.post(
        "/simulate", json={"model": model, "steps": 2, "time_series": {"outflow": [5, 15]}}
    )
    assert response.status_code == 200
    assert response.json()["stocks"]["tank"] == [100.0, 95.0, 80.0]


def test_simulate_invalid_model():
    """Test that model validation errors map to 400"""
    model = dict(TANK_MODEL, flows={"drain": {"from": "tnak", "to": "external", "rate": "1"}})
    response = client.post("/simulate", json={"model": model, "steps": 5})
    assert response.status_code == 400
    data = response.json()
    assert data["code"] == "model_invalid"
    assert data["details"]["error_count"] == 1


def test_simulate_request_validation():
    """Test that non-positive steps are rejected by request validation"""
    response = client.post("/simulate", json={"model": TANK_MODEL, "steps": 0})
    assert response.status_code == 422
    data = response.json()
    assert data["code"] == "validation_error"
    assert data["details"]["errors"][0]["loc"][-1] == "steps"


def test_simulate_unknown_model_name():
    """Test that an unknown stored model maps to 404"""
    response = client.post("/simulate", json={"model_name": "no-such-model", "steps": 5})
    assert response.status_code == 404


# ============================================================================
# Farm Endpoints
# ============================================================================


def test_weather_endpoint(farm_overrides):
    """Test preprocessed weather for a date range"""
    response = client.get("/weather", params={"start": "2025-01-01", "days": 10})
    assert response.status_code == 200
    data = response.json()
    assert data["steps"] == 10
    assert data["dates"][0] == "2025-01-01"
    assert len(data["moisture_stress"]) == 10


def test_weather_endpoint_defaults_to_latest(farm_overrides):
    """Test that the default range ends at the archive end"""
    response = client.get("/weather")
    assert response.status_code == 200
    data = response.json()
    assert data["steps"] == 30
    assert data["dates"][-1] == "2025-03-31"


def test_weather_endpoint_unknown_start(farm_overrides):
    """Test a start date outside the archive"""
    response = client.get("/weather", params={"start": "2030-01-01"})
    assert response.status_code == 422
    assert response.json()["code"] == "insufficient_weather_coverage"


def test_state_endpoint(farm_overrides):
    """Test current state with paddock status"""
    response = client.get("/state")
    assert response.status_code == 200
    data = response.json()
    assert data["end_date"] == "2025-03-01"
    assert data["current_paddock"]["id"] == "big"
    assert data["current_paddock"]["days_since"] == 19
    assert set(data["paddocks"]) == {"cce", "ccw", "big", "hog", "south"}
    assert data["paddocks"]["big"]["status"]["status"] in {
        "critical",
        "low",
        "marginal",
        "healthy",
        "excellent",
    }
    assert "results" not in data

    response = client.get("/state", params={"include_results": True})
    data = response.json()
    assert len(data["dates"]) == 61
    assert "stocks" in data["results"]


def test_state_endpoint_insufficient_history(farm_data):
    """Test that a short archive maps to 422"""
    app.dependency_overrides[get_farm_data] = lambda: farm_data
    app.dependency_overrides[get_today] = lambda: date(2024, 1, 15)
    try:
        response = client.get("/state")
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 422
    assert response.json()["code"] == "insufficient_history"


def test_missing_farm_records():
    """Test that unreadable farm records map to 404"""

    def missing():
        raise DataSourceError("Data file not found: data/weather-archive.json")

    app.dependency_overrides[get_farm_data] = missing
    try:
        response = client.get("/state")
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 404
    assert response.json()["code"] == "data_source_error"


def test_optimize_endpoint(farm_overrides):
    """Test ranked rotation candidates"""
    response = client.post("/optimize", json={"moves_ahead": 1, "days_per_rotation": 7})
    assert response.status_code == 200
    data = response.json()
    assert data["candidate_count"] == 4
    assert [r["rank"] for r in data["ranked"]] == [1, 2, 3, 4]
    assert data["best_move"] == data["ranked"][0]["candidate"]["moves"][0]["paddock_key"]
    assert data["ranked"][0]["results"] is None
    assert data["ranked_by"][0] == "fewest hay_days"


def test_optimize_endpoint_rejects_three_moves(farm_overrides):
    """Test request validation on moves_ahead"""
    response = client.post("/optimize", json={"moves_ahead": 3})
    assert response.status_code == 422


def test_project_endpoint(farm_overrides):
    """Test three projected scenarios"""
    response = client.post("/project", json={"days": 30, "hay_factor": 0.5})
    assert response.status_code == 200
    data = response.json()
    assert data["focus_paddock"] == "big"
    assert len(data["scenarios"]) == 3
    assert data["scenarios"][1]["hay_factor"] == 0.5
    assert len(data["scenarios"][0]["forage"]) == 31


def test_project_endpoint_unknown_paddock(farm_overrides):
    """Test that an unknown focus paddock maps to 404"""
    response = client.post("/project", json={"paddock": "north", "days": 10})
    assert response.status_code == 404
    data = response.json()
    assert data["code"] == "unknown_paddock"
    assert "big" in data["details"]["known_paddocks"]


def test_planting_endpoint(farm_overrides):
    """Test planting recommendations"""
    response = client.get("/planting", params={"season": "cool"})
    assert response.status_code == 200
    data = response.json()
    assert data["season"] == "cool"
    assert len(data["scenarios"]) == 3

    response = client.get("/planting", params={"season": "spring"})
    assert response.status_code == 422


# ============================================================================
# Error Mapping
# ============================================================================


def test_status_for_error():
    """Test HTTP status lookup along the exception hierarchy"""
    assert status_for_error(ModelInvalidError([])) == 400
    assert status_for_error(UnknownPaddockError("north")) == 404
    assert status_for_error(InsufficientHistoryError("short")) == 422
    assert status_for_error(SimulationError("other", "Something else")) == 500
