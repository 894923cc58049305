"""Shared fixtures: fake clock, snapshot builder, state and translator."""
from datetime import datetime, timedelta

import pytest

from bot_state import BotState
from growatt import Snapshot
from i18n import Translator


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)
        return self.now


def make_snapshot(pac=1500, temperature=45, vacr=230.5, e_today=12.3, e_total=950,
                  eac_today=None, last_update=None, weather=None, target_date=None):
    """Build a Snapshot shaped like the Growatt portal response."""
    last_update = last_update or datetime(2026, 6, 10, 12, 0)
    history = {
        "pac": pac,
        "vacr": vacr,
        "temperature": temperature,
        "eacToday": e_today if eac_today is None else eac_today,
    }
    plant = {
        "plantName": "Home",
        "plantData": {"eTotal": e_total},
        "devices": {
            "ABC123": {
                "deviceData": {
                    "eToday": e_today,
                    "lastUpdateTime": last_update.strftime("%Y-%m-%d %H:%M:%S"),
                },
                "historyLast": history,
            },
        },
        "weather": weather or {},
    }
    return Snapshot(raw={"1001": plant}, target_date=target_date)


class FakeTelemetry:
    """Telemetry cache stand-in returning a fixed snapshot or per-day energy."""

    def __init__(self, snapshot=None, daily=None):
        self.snapshot = snapshot or make_snapshot()
        self.daily = daily or {}
        self.calls = []

    def fetch(self, force_refresh=False, target_date=None):
        self.calls.append((force_refresh, target_date))
        if target_date is not None and target_date in self.daily:
            return make_snapshot(eac_today=self.daily[target_date], target_date=target_date)
        if target_date is not None and self.daily:
            return Snapshot(raw={}, target_date=target_date)
        return self.snapshot


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 6, 10, 12, 5))


@pytest.fixture
def state_file(tmp_path):
    return str(tmp_path / "bot_state.json")


@pytest.fixture
def state(state_file):
    return BotState(state_file=state_file)


@pytest.fixture(scope="session")
def translator():
    return Translator()


@pytest.fixture
def sent():
    """List collecting every notification text."""
    return []
