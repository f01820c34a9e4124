"""Tests for the HTTP surface."""

import pytest
from fastapi.testclient import TestClient

from accessbridge.config import MASK
from accessbridge.main import create_app
from accessbridge.models import AppConfig
from accessbridge.schemas import ConfigValueType
from accessbridge.vendor import DYNAMIC_QR_PATH, PERSON_ADD_PATH, VERSION_PATH, VISITOR_REGISTER_PATH

from .conftest import envelope

ADMIN = {"Authorization": "Bearer admin-token"}

RESIDENT = {
    "name": "Jane Doe",
    "email": "jane@example.com",
    "community": "maple",
    "unit_id": "A-101",
    "valid_from": "2025-01-01",
    "valid_to": "2040-01-01",
}


@pytest.fixture
def client(services, monkeypatch):
    monkeypatch.setenv("ADMIN_TOKEN", "admin-token")
    return TestClient(create_app(services))


class TestResidentRoutes:

    def test_health(self, client):
        assert client.get("/").json()["status"] == "ok"

    def test_create_and_fetch(self, client):
        response = client.post("/residents", json=RESIDENT)

        assert response.status_code == 201
        body = response.json()
        assert body["owner_id"] == "1"
        assert body["valid_to"] == "2035-01-01T00:00:00+02:00"
        assert body["date_adjustment"]["original_to"] == "2040-01-01T00:00:00+02:00"

        [fetched] = client.get("/residents", params={"owner_id": "1"}).json()
        assert fetched["vendor_id"] == body["vendor_id"]
        assert fetched["date_adjustment"] is None

    def test_invalid_range(self, client):
        response = client.post("/residents", json={**RESIDENT, "valid_from": "2041-01-01"})
        assert response.status_code == 400
        assert response.json()["error"] == "INVALID_RANGE"

    def test_malformed_body(self, client):
        response = client.post("/residents", json={**RESIDENT, "email": "not-an-email"})
        assert response.status_code == 422

    def test_vendor_rejection(self, client, vendor_stub):
        vendor_stub.responses[PERSON_ADD_PATH] = envelope(code="0x02401007", msg="person code exists")

        response = client.post("/residents", json=RESIDENT)

        assert response.status_code == 502
        assert response.json() == {
            "success": False,
            "error": "VENDOR_ERROR",
            "message": "Vendor rejected request to create person: person code exists",
            "vendor_code": "0x02401007",
        }

    def test_delete_twice(self, client):
        client.post("/residents", json=RESIDENT)

        first = client.delete("/residents", params={"owner_id": "1"})
        second = client.delete("/residents", params={"owner_id": "1"})

        assert first.status_code == 200
        assert first.json()["vendor_deleted"] is True
        assert second.status_code == 404
        assert second.json()["error"] == "NOT_FOUND"


class TestCredentialRoutes:

    def test_identity(self, client, vendor_stub):
        client.post("/residents", json=RESIDENT)
        vendor_stub.responses[DYNAMIC_QR_PATH] = envelope({"qrcode": "QR"})

        response = client.get("/identity", params={"owner_id": "1"})

        assert response.status_code == 200
        assert response.json()["qr_code"] == "QR"

    def test_identity_unsynced(self, client, seed_resident):
        seed_resident("9", vendor_id=None)
        response = client.get("/identity", params={"owner_id": "9"})
        assert response.status_code == 409
        assert response.json()["error"] == "NOT_SYNCED"

    def test_visitor_qr(self, client, vendor_stub):
        client.post("/residents", json=RESIDENT)
        vendor_stub.responses[VISITOR_REGISTER_PATH] = envelope({"appointRecordId": "V1"})

        response = client.get(
            "/visitor-qr",
            params={"owner_id": "1", "visitor_name": "Bob Smith", "visit_date": "2025-07-04"},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["qr_code"] == "VISITOR_V1"
        assert body["visit_date"] == "2025-07-04"

    def test_visitor_qr_requires_date(self, client):
        response = client.get("/visitor-qr", params={"owner_id": "1", "visitor_name": "Bob Smith"})
        assert response.status_code == 422

    def test_vendor_version(self, client, vendor_stub):
        vendor_stub.responses[VERSION_PATH] = envelope("V1.7")
        body = client.get("/vendor/version").json()
        assert body["connected"] is True
        assert body["version"] == "V1.7"


class TestAdminRoutes:

    def test_token_required(self, client):
        assert client.get("/admin/config").status_code == 401

    def test_wrong_token(self, client):
        response = client.get("/admin/config", headers={"Authorization": "Bearer nope"})
        assert response.status_code == 403

    def test_config_masks_secret(self, client):
        config = client.get("/admin/config", headers=ADMIN).json()["config"]
        assert config["VENDOR_APP_SECRET"]["value"] == MASK
        assert config["VENDOR_APP_KEY"]["value"] == "test-key"

    def test_update_config(self, client, services):
        response = client.put(
            "/admin/config",
            headers=ADMIN,
            json={"key": "max_resident_duration_years", "value": "5", "type": "number"},
        )

        assert response.status_code == 200
        assert services.config.max_duration_years() == 5
        created = client.post("/residents", json=RESIDENT).json()
        assert created["valid_to"] == "2030-01-01T00:00:00+02:00"

    def test_reload(self, client):
        assert client.post("/admin/config/reload", headers=ADMIN).json()["success"] is True

    def test_audit(self, client):
        client.post("/residents", json=RESIDENT)
        rows = client.get("/admin/audit", headers=ADMIN, params={"change_type": "create"}).json()
        assert [(r["table_name"], r["record_key"]) for r in rows] == [("residents", "1")]

    @pytest.mark.parametrize("value,value_type", [
        ("ten", "number"),
        ("0", "number"),
        ("0", "string"),
    ])
    def test_unusable_duration_refused(self, client, services, value, value_type):
        """A bad duration is refused up front and resident creation keeps working."""
        response = client.put(
            "/admin/config",
            headers=ADMIN,
            json={"key": "MAX_RESIDENT_DURATION_YEARS", "value": value, "type": value_type},
        )

        assert response.status_code == 422
        assert "MAX_RESIDENT_DURATION_YEARS" not in services.config.all()
        created = client.post("/residents", json=RESIDENT)
        assert created.status_code == 201
        assert created.json()["valid_to"] == "2035-01-01T00:00:00+02:00"

    def test_corrupt_duration_reported_as_configuration_error(self, client, session_factory):
        with session_factory() as db:
            db.add(AppConfig(key="MAX_RESIDENT_DURATION_YEARS", value="ten", type=ConfigValueType.NUMBER))
            db.commit()

        response = client.post("/residents", json=RESIDENT)

        assert response.status_code == 500
        assert response.json()["error"] == "CONFIGURATION_ERROR"

    def test_admin_health(self, client):
        response = client.get("/admin/health", headers=ADMIN)

        assert response.status_code == 200
        health = response.json()["health"]
        assert health["status"] == "healthy"
        assert health["config_keys"] == 3
        assert health["recent_changes"] == 3
        assert health["uptime_seconds"] >= 0

    def test_health_requires_token(self, client):
        assert client.get("/admin/health").status_code == 401
