"""Tests for the snapshot cache and period aggregation."""
from datetime import date, timedelta
from unittest.mock import MagicMock

import pytest

from conftest import FakeTelemetry, make_snapshot
from growatt import ConnectivityError
from telemetry import (
    TelemetryCache, PeriodAggregator, week_days, month_days, previous_month,
)


def client_factory(snapshot=None, error=None):
    """Return (factory, clients) where each factory call builds a mocked client."""
    clients = []

    def factory():
        client = MagicMock()
        if error is not None:
            client.fetch_snapshot.side_effect = error
        else:
            client.fetch_snapshot.return_value = snapshot or make_snapshot()
        clients.append(client)
        return client

    return factory, clients


class TestTelemetryCache:
    def test_serves_fresh_snapshot_from_cache(self, clock):
        factory, clients = client_factory()
        cache = TelemetryCache(factory, clock=clock)
        first = cache.fetch()
        clock.advance(seconds=119)
        assert cache.fetch() is first
        assert len(clients) == 1

    def test_refetches_after_freshness_window(self, clock):
        factory, clients = client_factory()
        cache = TelemetryCache(factory, clock=clock)
        cache.fetch()
        clock.advance(seconds=120)
        cache.fetch()
        assert len(clients) == 2

    def test_force_refresh_bypasses_cache(self, clock):
        factory, clients = client_factory()
        cache = TelemetryCache(factory, clock=clock)
        cache.fetch()
        cache.fetch(force_refresh=True)
        assert len(clients) == 2

    def test_live_fetch_logs_in_queries_and_logs_out(self, clock):
        factory, clients = client_factory()
        cache = TelemetryCache(factory, clock=clock)
        cache.fetch()
        client = clients[0]
        assert [c[0] for c in client.method_calls] == ["login", "fetch_snapshot", "logout"]
        client.fetch_snapshot.assert_called_once_with(clock().date())

    def test_past_date_is_not_cached(self, clock):
        factory, clients = client_factory()
        cache = TelemetryCache(factory, clock=clock)
        yesterday = clock().date() - timedelta(days=1)
        cache.fetch(target_date=yesterday)
        assert cache.cached() == (None, None)
        cache.fetch(target_date=yesterday)
        assert len(clients) == 2

    def test_forced_today_fetch_refreshes_cache(self, clock):
        factory, clients = client_factory()
        cache = TelemetryCache(factory, clock=clock)
        cache.fetch()
        clock.advance(seconds=30)
        refreshed = cache.fetch(force_refresh=True)
        assert cache.cached() == (refreshed, clock())

    def test_failure_raises_connectivity_error(self, clock):
        factory, _ = client_factory(error=ConnectivityError("login rejected"))
        cache = TelemetryCache(factory, clock=clock)
        with pytest.raises(ConnectivityError):
            cache.fetch()

    def test_unexpected_failure_wrapped(self, clock):
        factory, _ = client_factory(error=RuntimeError("boom"))
        cache = TelemetryCache(factory, clock=clock)
        with pytest.raises(ConnectivityError, match="boom"):
            cache.fetch()

    def test_failure_does_not_poison_cache(self, clock):
        good = make_snapshot()
        clients = []
        responses = [good, ConnectivityError("down")]

        def factory():
            client = MagicMock()
            response = responses.pop(0)
            if isinstance(response, Exception):
                client.fetch_snapshot.side_effect = response
            else:
                client.fetch_snapshot.return_value = response
            clients.append(client)
            return client

        cache = TelemetryCache(factory, clock=clock)
        cache.fetch()
        clock.advance(seconds=10)
        with pytest.raises(ConnectivityError):
            cache.fetch(force_refresh=True)
        assert cache.fetch() is good
        assert len(clients) == 2

    def test_logout_called_when_query_fails(self, clock):
        factory, clients = client_factory(error=ConnectivityError("timeout"))
        cache = TelemetryCache(factory, clock=clock)
        with pytest.raises(ConnectivityError):
            cache.fetch()
        clients[0].logout.assert_called_once()


class TestCalendarHelpers:
    def test_week_days_monday_to_sunday(self):
        days = week_days(date(2026, 10, 15))  # Thursday
        assert days[0] == date(2026, 10, 12)
        assert days[-1] == date(2026, 10, 18)
        assert len(days) == 7

    def test_month_days_leap_february(self):
        days = month_days(date(2028, 2, 10))
        assert len(days) == 29
        assert days[-1] == date(2028, 2, 29)

    def test_previous_month_across_year(self):
        assert previous_month(date(2026, 1, 31)) == date(2025, 12, 31)


class TestPeriodAggregator:
    def test_day_uses_forced_fetch_for_date(self):
        telemetry = FakeTelemetry(daily={date(2026, 5, 3): 14.2})
        aggregator = PeriodAggregator(telemetry)
        assert aggregator.period_total(date(2026, 5, 3), "day") == pytest.approx(14.2)
        assert telemetry.calls == [(True, date(2026, 5, 3))]

    def test_missing_structure_counts_as_zero(self):
        telemetry = FakeTelemetry(daily={date(2026, 5, 3): 14.2})
        aggregator = PeriodAggregator(telemetry)
        assert aggregator.period_total(date(2020, 1, 1), "day") == 0.0

    def test_missing_history_counts_as_zero(self):
        snapshot = make_snapshot()
        snapshot.raw["1001"]["devices"]["ABC123"]["historyLast"] = {}
        telemetry = MagicMock()
        telemetry.fetch.return_value = snapshot
        assert PeriodAggregator(telemetry).day_total(date(2026, 5, 3)) == 0.0

    def test_week_sums_iso_week(self):
        daily = {date(2026, 10, 12) + timedelta(days=i): 10.0 + i for i in range(7)}
        daily[date(2026, 10, 11)] = 99.0  # previous Sunday
        telemetry = FakeTelemetry(daily=daily)
        total = PeriodAggregator(telemetry).period_total(date(2026, 10, 14), "week")
        assert total == pytest.approx(sum(10.0 + i for i in range(7)))

    def test_month_equals_sum_of_days(self):
        daily = {date(2026, 4, d): d * 0.7 for d in range(1, 31)}
        telemetry = FakeTelemetry(daily=daily)
        aggregator = PeriodAggregator(telemetry)
        month = aggregator.period_total(date(2026, 4, 17), "month")
        days = sum(aggregator.period_total(d, "day") for d in month_days(date(2026, 4, 1)))
        assert month == days
        assert len([c for c in telemetry.calls if c[1].month == 4]) == 60

    def test_year_skips_empty_months(self):
        daily = {date(2025, 3, 1): 5.0, date(2025, 3, 2): 6.0, date(2025, 11, 30): 2.5}
        aggregator = PeriodAggregator(FakeTelemetry(daily=daily))
        breakdown = aggregator.monthly_breakdown(2025)
        assert breakdown == [(date(2025, 3, 1), 11.0), (date(2025, 11, 1), 2.5)]
        assert aggregator.period_total(date(2025, 6, 1), "year") == pytest.approx(13.5)

    def test_unknown_granularity(self):
        with pytest.raises(ValueError):
            PeriodAggregator(FakeTelemetry()).period_total(date(2026, 1, 1), "decade")
