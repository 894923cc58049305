"""Tests for the status API endpoints."""
from datetime import date, datetime
from unittest.mock import patch, MagicMock

import pytest

from bot_state import BotState
from conftest import make_snapshot
from growatt import ConnectivityError


@pytest.fixture
def client(state_file):
    """Create a Flask test client with mocked services (configured mode)."""
    import app as app_module

    app_module.app.config["TESTING"] = True

    # Store originals
    orig_state = app_module.bot_state
    orig_telemetry = app_module.telemetry
    orig_aggregator = app_module.aggregator
    orig_configured = app_module._configured

    state = BotState(state_file=state_file)
    telemetry = MagicMock()
    telemetry.fetch.return_value = make_snapshot(pac=1500, e_total=2100.0)
    telemetry.cached.return_value = (None, datetime(2026, 6, 10, 12, 4))

    app_module.bot_state = state
    app_module.telemetry = telemetry
    app_module.aggregator = MagicMock()
    app_module._configured = True

    with app_module.app.test_client() as c:
        yield c, app_module

    # Restore originals
    app_module.bot_state = orig_state
    app_module.telemetry = orig_telemetry
    app_module.aggregator = orig_aggregator
    app_module._configured = orig_configured


@pytest.fixture
def unconfigured_client():
    """Create a Flask test client without credentials."""
    import app as app_module

    app_module.app.config["TESTING"] = True

    orig_configured = app_module._configured
    app_module._configured = False

    with app_module.app.test_client() as c:
        yield c, app_module

    app_module._configured = orig_configured


class TestState:
    def test_returns_persisted_groups(self, client):
        c, app_module = client
        app_module.bot_state.status.mark_down(datetime(2026, 6, 10, 11, 0))
        resp = c.get("/api/state")
        assert resp.status_code == 200
        data = resp.get_json()
        assert set(data) == {"config", "stats", "status"}
        assert data["config"]["language"] == "en"
        assert data["status"]["is_system_down"] is True
        assert data["status"]["outage_start_time"] == "2026-06-10T11:00:00"


class TestStatus:
    def test_returns_snapshot_summary(self, client):
        c, _ = client
        resp = c.get("/api/status")
        assert resp.status_code == 200
        data = resp.get_json()
        assert data["pac"] == 1500.0
        assert data["e_total"] == 2100.0
        assert data["fetched_at"] == "2026-06-10T12:04:00"

    def test_missing_fields_are_null(self, client):
        c, app_module = client
        snapshot = make_snapshot()
        snapshot.raw["1001"]["plantData"] = {}
        app_module.telemetry.fetch.return_value = snapshot
        data = c.get("/api/status").get_json()
        assert data["e_total"] is None
        assert data["pac"] == 1500.0

    def test_unreachable_source(self, client):
        c, app_module = client
        app_module.telemetry.fetch.side_effect = ConnectivityError("login rejected")
        resp = c.get("/api/status")
        assert resp.status_code == 503


class TestHistory:
    def test_period_total(self, client):
        c, app_module = client
        app_module.aggregator.period_total.return_value = 321.456
        resp = c.get("/api/history?granularity=month&date=2026-05-14")
        assert resp.status_code == 200
        assert resp.get_json() == {"date": "2026-05-14", "granularity": "month", "kwh": 321.46}
        app_module.aggregator.period_total.assert_called_once_with(date(2026, 5, 14), "month")

    def test_invalid_granularity(self, client):
        c, _ = client
        assert c.get("/api/history?granularity=decade").status_code == 400

    def test_invalid_date(self, client):
        c, _ = client
        assert c.get("/api/history?date=14/05/2026").status_code == 400


class TestFirstRunGuards:
    @pytest.mark.parametrize("path", ["/api/state", "/api/status", "/api/history"])
    def test_returns_503_when_unconfigured(self, unconfigured_client, path):
        c, _ = unconfigured_client
        resp = c.get(path)
        assert resp.status_code == 503
        assert resp.get_json()["error"] == "not configured"


class TestIsConfigured:
    def test_all_credentials_present(self):
        from app import is_configured
        env = {"GROWATT_USER": "u", "GROWATT_PASSWORD": "p",
               "TELEGRAM_BOT_TOKEN": "t", "TELEGRAM_GROUP_ID": "-1"}
        with patch.dict("os.environ", env, clear=True):
            assert is_configured() is True

    def test_blank_value(self):
        from app import is_configured
        env = {"GROWATT_USER": "u", "GROWATT_PASSWORD": " ",
               "TELEGRAM_BOT_TOKEN": "t", "TELEGRAM_GROUP_ID": "-1"}
        with patch.dict("os.environ", env, clear=True):
            assert is_configured() is False

    def test_missing_values(self):
        from app import is_configured
        with patch.dict("os.environ", {}, clear=True):
            assert is_configured() is False
