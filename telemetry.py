"""Snapshot cache and energy aggregation over calendar periods."""
from calendar import monthrange
from datetime import datetime, date, timedelta
import logging
import threading

from growatt import ConnectivityError

logger = logging.getLogger(__name__)

CACHE_MAX_AGE = 120  # seconds – serve today's snapshot from cache if fresher

GRANULARITIES = ("day", "week", "month", "year")


class TelemetryCache:
    """Fetches snapshots, deduplicating same-day reads within CACHE_MAX_AGE.

    ``client_factory`` returns a fresh client exposing ``login()``,
    ``fetch_snapshot(day)`` and ``logout()``.
    """

    def __init__(self, client_factory, clock=datetime.now, max_age=CACHE_MAX_AGE):
        self.client_factory = client_factory
        self.clock = clock
        self.max_age = max_age
        self._snapshot = None
        self._timestamp = None
        self._lock = threading.Lock()

    def cached(self):
        """Return (snapshot, fetched_at) of the last today-snapshot, if any."""
        with self._lock:
            return self._snapshot, self._timestamp

    def fetch(self, force_refresh=False, target_date=None):
        now = self.clock()
        target_date = target_date or now.date()
        is_today = target_date == now.date()

        if not force_refresh and is_today:
            with self._lock:
                if (self._snapshot is not None
                        and (now - self._timestamp).total_seconds() < self.max_age):
                    return self._snapshot

        snapshot = self._fetch_live(target_date)

        if is_today:
            with self._lock:
                self._snapshot = snapshot
                self._timestamp = self.clock()
        return snapshot

    def _fetch_live(self, target_date):
        client = self.client_factory()
        try:
            client.login()
            try:
                return client.fetch_snapshot(target_date)
            finally:
                client.logout()
        except ConnectivityError:
            logger.error("Failed to get Growatt data for %s", target_date, exc_info=True)
            raise
        except Exception as e:
            logger.exception("Failed to get Growatt data for %s", target_date)
            raise ConnectivityError(str(e)) from e


def week_days(day):
    """Monday..Sunday of the ISO week containing ``day``."""
    monday = day - timedelta(days=day.weekday())
    return [monday + timedelta(days=i) for i in range(7)]


def month_days(day):
    """Every calendar day of the month containing ``day``."""
    _, last = monthrange(day.year, day.month)
    return [date(day.year, day.month, d) for d in range(1, last + 1)]


def previous_month(day):
    """A date inside the calendar month before ``day``'s month."""
    return day.replace(day=1) - timedelta(days=1)


class PeriodAggregator:
    """Sums daily production over day/week/month/year periods.

    Every granularity above ``day`` is a plain sum of daily figures, so a
    month total always equals the sum of its days.
    """

    def __init__(self, telemetry):
        self.telemetry = telemetry

    def day_total(self, day) -> float:
        snapshot = self.telemetry.fetch(force_refresh=True, target_date=day)
        return snapshot.day_energy()

    def days_total(self, days) -> float:
        total = 0.0
        for day in days:
            total += self.day_total(day)
        return total

    def monthly_breakdown(self, year):
        """Return [(first_of_month, kwh), ...] for the months that produced energy."""
        results = []
        for month in range(1, 13):
            first = date(year, month, 1)
            kwh = self.days_total(month_days(first))
            if kwh > 0:
                results.append((first, kwh))
        return results

    def period_total(self, day, granularity="day") -> float:
        if isinstance(day, datetime):
            day = day.date()
        if granularity == "day":
            return self.day_total(day)
        if granularity == "week":
            return self.days_total(week_days(day))
        if granularity == "month":
            return self.days_total(month_days(day))
        if granularity == "year":
            return sum(kwh for _, kwh in self.monthly_breakdown(day.year))
        raise ValueError(f"Unknown granularity: {granularity}")
