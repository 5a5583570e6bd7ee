"""
Tests for API endpoints.
"""

import asyncio
import csv
import io
from datetime import datetime, timedelta
from unittest.mock import patch

from sqlalchemy.exc import OperationalError, TimeoutError as PoolTimeoutError

from hive_monitor.core.config import settings
from hive_monitor.core.database import utcnow
from hive_monitor.services.query import QueryService
from hive_monitor.services.readings import ReadingStore


class TestIngestEndpoint:
    """Tests for POST /readings."""

    def test_accepted_reading_echoes_policy(self, client, alpha):
        response = client.post("/readings", json={"credential": "alpha_abc", "temperature": 34.5})

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert body["disconnect_voltage"] == 3.30
        assert body["reconnect_voltage"] == 3.60
        assert body["enabled"] is True

        devices = client.get("/devices").json()["devices"]
        assert devices[0]["latest"]["temperature"] == 34.5
        assert devices[0]["is_online"] is True

    def test_unknown_credential_401(self, client, alpha, run):
        response = client.post("/readings", json={"credential": "not_a_real_key", "temperature": 30})

        assert response.status_code == 401
        assert response.json()["kind"] == "unauthorized"
        assert run(lambda s: ReadingStore(s).latest_for(alpha.id)) is None

    def test_out_of_range_400(self, client, alpha, run):
        response = client.post("/readings", json={"credential": "alpha_abc", "temperature": 200})

        assert response.status_code == 400
        body = response.json()
        assert body["kind"] == "out_of_range"
        assert body["field"] == "temperature"
        assert run(lambda s: ReadingStore(s).latest_for(alpha.id)) is None

    def test_missing_temperature_400(self, client, alpha):
        response = client.post("/readings", json={"credential": "alpha_abc", "humidity": 55})

        assert response.status_code == 400
        assert response.json()["kind"] == "invalid_payload"

    def test_malformed_number_400(self, client, alpha):
        response = client.post("/readings", json={"credential": "alpha_abc", "temperature": "hot"})

        assert response.status_code == 400
        assert response.json()["kind"] == "invalid_payload"

    def test_legacy_field_names(self, client, alpha, run):
        response = client.post("/readings", json={
            "api_key": "alpha_abc",
            "mcp_temp": 34.2,
            "hdc_temp": 28.5,
            "hdc_humidity": 62.3,
            "weight_kg": -0.2,
            "voltage": 3.85,
            "lvd_status": 1,
        })

        assert response.status_code == 200
        assert response.json()["battery_percent"] == 71

        latest = run(lambda s: ReadingStore(s).latest_for(alpha.id))
        assert latest.temperature == 34.2
        assert latest.secondary_temperature == 28.5
        assert latest.humidity == 62.3
        assert latest.weight == 0.0
        assert latest.relay_connected is True

    def test_future_backfill_400(self, client, alpha):
        ahead = (utcnow() + timedelta(days=365)).isoformat()
        response = client.post(
            "/readings", json={"credential": "alpha_abc", "temperature": 30, "recorded_at": ahead}
        )

        assert response.status_code == 400
        body = response.json()
        assert body["kind"] == "invalid_payload"
        assert body["field"] == "recorded_at"

    def test_backfilled_timestamp(self, client, alpha, run):
        response = client.post("/readings", json={
            "credential": "alpha_abc",
            "temperature": 30,
            "recorded_at": "2026-01-01T10:00:00+01:00",
        })

        assert response.status_code == 200
        latest = run(lambda s: ReadingStore(s).latest_for(alpha.id))
        assert latest.recorded_at == datetime(2026, 1, 1, 9, 0, 0)


class TestLvdSettingsEndpoint:
    """Tests for GET/PUT /lvd/settings."""

    def test_get_defaults_without_auth(self, client):
        response = client.get("/lvd/settings")

        assert response.status_code == 200
        assert response.json() == {
            "status": "ok",
            "disconnect_voltage": 3.30,
            "reconnect_voltage": 3.60,
            "enabled": True,
        }

    def test_put_requires_operator(self, client):
        response = client.put("/lvd/settings", json={"enabled": False})
        assert response.status_code == 401

    def test_put_bad_token(self, client):
        response = client.put(
            "/lvd/settings", json={"enabled": False}, headers={"Authorization": "Bearer forged.token"}
        )
        assert response.status_code == 401

    def test_put_partial_update(self, client, operator_headers):
        response = client.put("/lvd/settings", json={"reconnect_voltage": 3.9}, headers=operator_headers)

        assert response.status_code == 200
        assert response.json()["settings"]["reconnect_voltage"] == 3.9
        assert client.get("/lvd/settings").json()["reconnect_voltage"] == 3.9

    def test_put_inverted_band_rejected(self, client, operator_headers):
        response = client.put(
            "/lvd/settings",
            json={"disconnect_voltage": 3.8, "reconnect_voltage": 3.6},
            headers=operator_headers,
        )

        assert response.status_code == 400
        assert response.json()["kind"] == "policy_invariant_violation"

        settings = client.get("/lvd/settings").json()
        assert settings["disconnect_voltage"] == 3.30
        assert settings["reconnect_voltage"] == 3.60

    def test_put_legacy_field_names(self, client, operator_headers):
        response = client.put(
            "/lvd/settings",
            json={"disconnect_volt": 3.2, "lvd_enabled": False},
            headers=operator_headers,
        )

        assert response.status_code == 200
        settings = client.get("/lvd/settings").json()
        assert settings["disconnect_voltage"] == 3.2
        assert settings["enabled"] is False

    def test_lvd_status(self, client, alpha):
        client.post("/readings", json={"credential": "alpha_abc", "temperature": 30, "battery_voltage": 3.6})

        body = client.get("/lvd").json()
        assert body["lvd"]["battery_percent"] == 50
        assert body["settings"]["enabled"] is True


class TestLvdHistoryEndpoint:
    """Tests for GET /lvd/history."""

    def test_history_only_battery_readings(self, client, alpha):
        client.post("/readings", json={"credential": "alpha_abc", "temperature": 30, "battery_voltage": 3.7})
        client.post("/readings", json={"credential": "alpha_abc", "temperature": 30})
        client.post("/readings", json={"credential": "alpha_abc", "temperature": 30, "battery_voltage": 3.6})

        body = client.get("/lvd/history").json()

        assert body["count"] == 2
        assert [r["battery_voltage"] for r in body["readings"]] == [3.6, 3.7]
        assert body["readings"][0]["battery_percent"] == 50

    def test_history_limit(self, client, alpha):
        for voltage in (3.5, 3.6, 3.7):
            client.post("/readings", json={"credential": "alpha_abc", "temperature": 30, "battery_voltage": voltage})

        body = client.get("/lvd/history?limit=1").json()
        assert [r["battery_voltage"] for r in body["readings"]] == [3.7]

    def test_history_unknown_device(self, client):
        assert client.get("/lvd/history?device_id=999").status_code == 404


class TestDeviceEndpoints:
    """Tests for /devices."""

    def test_list_hides_credential_from_anonymous(self, client, alpha, operator_headers):
        assert "credential" not in client.get("/devices").json()["devices"][0]

        devices = client.get("/devices", headers=operator_headers).json()["devices"]
        assert devices[0]["credential"] == "alpha_abc"

    def test_detail_with_range(self, client, alpha, run):
        now = utcnow()
        run(lambda s: ReadingStore(s).append(alpha.id, {"temperature": 30}, now - timedelta(hours=1)))
        run(lambda s: ReadingStore(s).append(alpha.id, {"temperature": 32}, now - timedelta(days=3)))

        day = client.get(f"/devices/{alpha.id}?range=24h").json()["device"]
        week = client.get(f"/devices/{alpha.id}?range=7d").json()["device"]

        assert len(day["readings"]) == 1
        assert len(week["readings"]) == 2
        assert week["stats"]["temperature"]["avg"] == 31.0

    def test_detail_unknown_range(self, client, alpha):
        response = client.get(f"/devices/{alpha.id}?range=1y")
        assert response.status_code == 400

    def test_detail_unknown_device(self, client):
        response = client.get("/devices/999")
        assert response.status_code == 404
        assert response.json()["kind"] == "not_found"

    def test_create_rename_regenerate_deactivate(self, client, operator_headers):
        created = client.post("/devices", json={"name": "Echo"}, headers=operator_headers)
        assert created.status_code == 201
        device = created.json()["device"]
        old_key = device["credential"]

        renamed = client.put(f"/devices/{device['id']}", json={"name": "Echo 2"}, headers=operator_headers)
        assert renamed.json()["device"]["name"] == "Echo 2"

        regenerated = client.post(f"/devices/{device['id']}/regenerate-key", headers=operator_headers)
        new_key = regenerated.json()["credential"]
        assert new_key != old_key

        assert client.post("/readings", json={"credential": old_key, "temperature": 30}).status_code == 401
        assert client.post("/readings", json={"credential": new_key, "temperature": 30}).status_code == 200

        client.delete(f"/devices/{device['id']}", headers=operator_headers)
        assert client.post("/readings", json={"credential": new_key, "temperature": 30}).status_code == 401
        assert client.get("/devices").json()["devices"] == []

    def test_rename_blank_rejected(self, client, alpha, operator_headers):
        response = client.put(f"/devices/{alpha.id}", json={"name": "  "}, headers=operator_headers)
        assert response.status_code == 400

    def test_management_requires_operator(self, client, alpha):
        assert client.post("/devices", json={"name": "Echo"}).status_code == 401
        assert client.post(f"/devices/{alpha.id}/regenerate-key").status_code == 401
        assert client.delete(f"/devices/{alpha.id}").status_code == 401

    def test_chart_png(self, client, alpha):
        client.post("/readings", json={"credential": "alpha_abc", "temperature": 34, "humidity": 60})

        response = client.get(f"/devices/{alpha.id}/chart.png")
        assert response.status_code == 200
        assert response.headers["content-type"] == "image/png"
        assert response.content.startswith(b"\x89PNG")


class TestReadingEndpoints:
    """Tests for /readings listing, chart series and stats."""

    def test_list_newest_first_with_limit(self, client, alpha):
        for temp in (30, 31, 32):
            client.post("/readings", json={"credential": "alpha_abc", "temperature": temp})

        body = client.get("/readings?limit=2").json()
        assert body["count"] == 2
        assert [r["temperature"] for r in body["readings"]] == [32, 31]

    def test_list_bounds_with_offset(self, client, alpha, run):
        run(lambda s: ReadingStore(s).append(alpha.id, {"temperature": 30}, datetime(2026, 3, 1, 10, 0)))

        # 10:30+01:00 is 09:30 UTC, before the reading
        body = client.get("/readings", params={"start": "2026-03-01T10:30:00+01:00"}).json()
        assert body["count"] == 1

        body = client.get("/readings", params={"start": "2026-03-01T10:30:00Z"}).json()
        assert body["count"] == 0

        body = client.get("/readings", params={"end": "2026-03-01T10:30:00+01:00"}).json()
        assert body["count"] == 0

    def test_chart_series_downsampled(self, client, alpha, run):
        now = utcnow()

        async def fill(session):
            store = ReadingStore(session)
            for minute in range(450):
                await store.append(alpha.id, {"temperature": 30}, now - timedelta(minutes=minute))

        run(fill)
        body = client.get(f"/readings/chart?device_id={alpha.id}&hours=24").json()
        assert body["count"] == 150  # stride ceil(450 / 200) = 3

    def test_stats(self, client, alpha):
        for temp in (30, 34):
            client.post("/readings", json={"credential": "alpha_abc", "temperature": temp})

        stats = client.get("/readings/stats").json()["stats"]
        assert stats["count"] == 2
        assert stats["temperature"]["avg"] == 32.0


class TestExportEndpoints:
    """Tests for /export."""

    def test_requires_operator(self, client):
        assert client.get("/export").status_code == 401

    def test_csv_export(self, client, alpha, operator_headers):
        client.post("/readings", json={"credential": "alpha_abc", "temperature": 34.5, "weight": 40})

        response = client.get("/export?format=csv", headers=operator_headers)

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        assert "attachment" in response.headers["content-disposition"]

        rows = list(csv.DictReader(io.StringIO(response.text)))
        assert len(rows) == 1
        assert rows[0]["device_name"] == "Alpha"
        assert rows[0]["temperature_c"] == "34.5"
        assert rows[0]["humidity_pct"] == ""

    def test_json_export_date_filter(self, client, alpha, operator_headers, run):
        run(lambda s: ReadingStore(s).append(alpha.id, {"temperature": 30}, datetime(2026, 3, 1, 23, 59)))
        run(lambda s: ReadingStore(s).append(alpha.id, {"temperature": 31}, datetime(2026, 3, 2, 0, 1)))

        body = client.get(
            "/export?format=json&start_date=2026-03-01&end_date=2026-03-01", headers=operator_headers
        ).json()

        assert body["total_readings"] == 1
        assert body["readings"][0]["temperature"] == 30

    def test_export_device_filter(self, client, alpha, operator_headers):
        client.post("/readings", json={"credential": "alpha_abc", "temperature": 30})

        assert client.get("/export?format=json&device_id=999", headers=operator_headers).json()["total_readings"] == 0
        assert client.get(f"/export?format=json&device_id={alpha.id}", headers=operator_headers).json()["total_readings"] == 1
        assert client.get("/export?device_id=abc", headers=operator_headers).status_code == 400

    def test_export_stats(self, client, alpha, operator_headers):
        client.post("/readings", json={"credential": "alpha_abc", "temperature": 30})

        stats = client.get("/export/stats", headers=operator_headers).json()["stats"]
        assert stats["total_readings"] == 1
        assert stats["devices_with_data"] == 1


class TestAuthEndpoints:
    """Tests for /auth."""

    def test_login_wrong_password(self, client, operator_headers):
        response = client.post("/auth/login", json={"username": "admin", "password": "wrong"})
        assert response.status_code == 401

    def test_me(self, client, operator_headers):
        assert client.get("/auth/me", headers=operator_headers).json()["user"]["username"] == "admin"

    def test_change_password(self, client, operator_headers):
        response = client.post(
            "/auth/change-password",
            json={"current_password": "secret", "new_password": "newsecret"},
            headers=operator_headers,
        )
        assert response.status_code == 200

        assert client.post("/auth/login", json={"username": "admin", "password": "newsecret"}).status_code == 200
        assert client.post("/auth/login", json={"username": "admin", "password": "secret"}).status_code == 401

    def test_change_password_too_short(self, client, operator_headers):
        response = client.post(
            "/auth/change-password",
            json={"current_password": "secret", "new_password": "abc"},
            headers=operator_headers,
        )
        assert response.status_code == 400


class TestHealthEndpoint:
    """Tests for /health endpoint."""

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"


class TestMalformedTokens:
    """Tests for bearer tokens that cannot be decoded."""

    NON_ASCII = {"Authorization": "Bearer éé.éé".encode("latin-1")}

    def test_public_listing_ignores_bad_token(self, client, alpha):
        response = client.get("/devices", headers=self.NON_ASCII)

        assert response.status_code == 200
        assert "credential" not in response.json()["devices"][0]

    def test_public_detail_ignores_bad_token(self, client, alpha):
        assert client.get(f"/devices/{alpha.id}", headers=self.NON_ASCII).status_code == 200

    def test_operator_route_rejects_bad_token(self, client):
        response = client.put("/lvd/settings", json={"enabled": False}, headers=self.NON_ASCII)

        assert response.status_code == 401
        assert response.json()["kind"] == "unauthorized"


class TestTransientErrors:
    """Tests for timeouts and storage failures surfacing as retryable errors."""

    def assert_transient(self, response):
        assert response.status_code == 503
        body = response.json()
        assert body["kind"] == "transient"
        assert body["retryable"] is True
        return body

    def test_request_timeout(self, client):
        async def slow_status(self):
            await asyncio.sleep(0.5)
            return {}

        with patch.object(settings, "request_timeout_seconds", 0.05), \
                patch.object(QueryService, "lvd_status", slow_status):
            response = client.get("/lvd")

        self.assert_transient(response)

    def test_driver_error_hides_details(self, client):
        error = OperationalError("SELECT 1", {}, Exception("could not connect to db-internal:5432"))

        with patch.object(QueryService, "list_devices_with_status", side_effect=error):
            response = client.get("/devices")

        body = self.assert_transient(response)
        assert "db-internal" not in body["message"]
        assert "SELECT" not in body["message"]

    def test_pool_exhausted(self, client):
        error = PoolTimeoutError("QueuePool limit of size 5 overflow 10 reached")

        with patch.object(QueryService, "list_devices_with_status", side_effect=error):
            response = client.get("/devices")

        body = self.assert_transient(response)
        assert "QueuePool" not in body["message"]
