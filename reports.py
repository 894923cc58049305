"""Weekly and monthly production reports."""
from datetime import datetime, timedelta
import logging

from telemetry import week_days, month_days, previous_month

logger = logging.getLogger(__name__)

WEEKDAY_KEYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


class ReportService:
    """Builds and sends the periodic production summaries."""

    def __init__(self, state, aggregator, translator, notify, clock=datetime.now):
        self.state = state
        self.aggregator = aggregator
        self.translator = translator
        self.notify = notify
        self.clock = clock

    def _t(self, key, **variables):
        return self.translator.t(key, self.state.settings.language, **variables)

    def weekly_report(self):
        """Report the previous Monday..Sunday week. Returns the total kWh."""
        today = self.clock().date()
        total = 0.0
        best_kwh = 0.0
        best_day = ""
        for day in week_days(today - timedelta(days=7)):
            kwh = self.aggregator.day_total(day)
            total += kwh
            if kwh > best_kwh:
                best_kwh = kwh
                best_day = self._t(WEEKDAY_KEYS[day.weekday()])
        if total > 0:
            self.notify(self._t(
                "WEEKLY_REPORT",
                kwh=f"{total:.2f}", best_day=best_day, best_day_kwh=f"{best_kwh:.2f}",
            ))
        else:
            logger.info("Weekly report skipped: no production last week")
        return total

    def monthly_report(self):
        """Report the previous calendar month. Returns the total kWh."""
        days = month_days(previous_month(self.clock().date()))
        total = self.aggregator.days_total(days)
        if total > 0:
            self.notify(self._t(
                "MONTHLY_REPORT",
                kwh=f"{total:.2f}", avg_kwh=f"{total / len(days):.2f}",
            ))
        else:
            logger.info("Monthly report skipped: no production last month")
        return total
