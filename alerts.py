"""Outage, overheat, liveness and daily milestone alerts."""
from datetime import datetime, timedelta
import logging
import os

from bot_state import MILESTONE_STEP_KWH

logger = logging.getLogger(__name__)

ACTIVE_HOUR_START = int(os.environ.get("ACTIVE_HOUR_START", "10"))
ACTIVE_HOUR_END = int(os.environ.get("ACTIVE_HOUR_END", "15"))
URGENT_ALERT_DELAY = timedelta(minutes=15)
LIVENESS_THRESHOLD = timedelta(hours=2)
ALERT_COOLDOWN = timedelta(hours=6)


def _cooled_down(last_alert, now):
    return last_alert is None or now - last_alert >= ALERT_COOLDOWN


class AlertMonitor:
    """Derives alerts from telemetry snapshots and the persisted bot state.

    ``notify`` is called with the rendered message text; it must not raise.
    """

    def __init__(self, state, telemetry, translator, notify, clock=datetime.now,
                 active_hours=(ACTIVE_HOUR_START, ACTIVE_HOUR_END)):
        self.state = state
        self.telemetry = telemetry
        self.translator = translator
        self.notify = notify
        self.clock = clock
        self.active_hours = active_hours

    def _t(self, key, **variables):
        return self.translator.t(key, self.state.settings.language, **variables)

    def in_active_window(self, now):
        start, end = self.active_hours
        return start <= now.hour <= end

    def hourly_check(self):
        """Fetch a fresh snapshot and run the daytime checks.

        Outside the active window, an outage flag is cleared without an alert.
        """
        now = self.clock()
        if not self.in_active_window(now):
            logger.info("Outside active window, resetting daytime alerts")
            with self.state.lock:
                if self.state.status.is_system_down:
                    self.state.status.clear()
                    self.state.save()
            return

        logger.info("Inside active window, performing daytime checks")
        snapshot = self.telemetry.fetch(force_refresh=True)
        self.evaluate(snapshot, now)

    def _send_all(self, messages):
        for message in messages:
            self.notify(message)

    def evaluate(self, snapshot, now=None):
        """Apply the liveness, overheat, recovery and outage rules to ``snapshot``.

        State changes are made and saved under the lock; messages go out after it
        is released.
        """
        now = now or self.clock()
        pac = snapshot.pac
        temp = snapshot.temperature
        since_update = now - snapshot.last_update
        hours_since_update = int(since_update.total_seconds() // 3600)
        logger.info("Hourly check: temp=%s°C pac=%sW last_update=%dh ago",
                    temp, pac, hours_since_update)

        messages = []
        with self.state.lock:
            stats = self.state.stats
            status = self.state.status

            if since_update >= LIVENESS_THRESHOLD and _cooled_down(stats.last_liveness_alert, now):
                messages.append(self._t("LIVENESS_ALERT", hours=hours_since_update))
                stats.last_liveness_alert = now

            threshold = self.state.settings.temp_threshold
            if temp >= threshold and _cooled_down(stats.last_temp_alert, now):
                messages.append(self._t("TEMP_ALERT", temp=temp, threshold=threshold))
                stats.last_temp_alert = now

            if pac > 0 and status.is_system_down:
                messages.append(self._t("RECOVERY_MESSAGE", pac=pac))
                status.clear()
                logger.info("System recovered (pac=%sW)", pac)
            elif pac == 0 and not status.is_system_down:
                messages.append(self._t("OUTAGE_MESSAGE"))
                status.mark_down(now)
                logger.info("System down, outage started at %s", now)

            if messages:
                self.state.save()
        self._send_all(messages)

    def check_urgent(self):
        """Escalate an outage that has lasted URGENT_ALERT_DELAY. No network call."""
        now = self.clock()
        with self.state.lock:
            status = self.state.status
            if not status.is_system_down or status.urgent_alert_sent or not status.outage_start_time:
                return False
            if now - status.outage_start_time < URGENT_ALERT_DELAY:
                return False
            status.urgent_alert_sent = True
            self.state.save()
        minutes = int(URGENT_ALERT_DELAY.total_seconds() // 60)
        self.notify(self._t("URGENT_ALERT_MESSAGE", minutes=minutes))
        logger.warning("Urgent outage alert sent")
        return True

    def daily_checks(self):
        """Best-day record, lifetime milestone and cleaning reminder."""
        now = self.clock()
        snapshot = self.telemetry.fetch(force_refresh=True)
        e_today = snapshot.e_today
        e_total = snapshot.e_total

        messages = []
        with self.state.lock:
            stats = self.state.stats
            settings = self.state.settings

            best = stats.best_day
            if e_today > (best.kwh or 0):
                messages.append(self._t("BEST_DAY_MESSAGE", kwh=e_today, old_kwh=best.kwh or 0))
                best.date = now.strftime("%Y-%m-%d")
                best.kwh = e_today

            if e_total >= stats.next_milestone_kwh:
                messages.append(self._t("MILESTONE_MESSAGE", milestone=stats.next_milestone_kwh))
                stats.next_milestone_kwh = (
                    int(e_total // MILESTONE_STEP_KWH) * MILESTONE_STEP_KWH + MILESTONE_STEP_KWH
                )

            if (now - stats.last_reminder_date).days >= settings.cleaning_interval_weeks * 7:
                messages.append(self._t("CLEANING_REMINDER", weeks=settings.cleaning_interval_weeks))
                stats.last_reminder_date = now

            self.state.save()
        self._send_all(messages)
