"""Persistent bot state: settings, stats and outage status."""
from dataclasses import dataclass, field, asdict, fields
from datetime import datetime
import json
import logging
import os
import re
import threading

logger = logging.getLogger(__name__)

DEFAULT_LANGUAGE = "en"
DEFAULT_COST_PER_KWH = 0.32
DEFAULT_CURRENCY_SYMBOL = "TND"
DEFAULT_CLEANING_WEEKS = 4
DEFAULT_TEMP_THRESHOLD_C = 60
MILESTONE_STEP_KWH = 1000
EPOCH = datetime(1970, 1, 1)

LANGUAGES = ("en", "fr")


def _to_datetime(value):
    if value is None or isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00")).replace(tzinfo=None)
    except ValueError:
        logger.warning("Ignoring unparsable timestamp %r in state file", value)
        return None


def _to_iso(value):
    return value.isoformat() if isinstance(value, datetime) else value


@dataclass
class Settings:
    """User-configurable behaviour, changed by admin commands only."""
    language: str = DEFAULT_LANGUAGE
    cost_per_kwh: float = DEFAULT_COST_PER_KWH
    currency_symbol: str = DEFAULT_CURRENCY_SYMBOL
    cleaning_interval_weeks: int = DEFAULT_CLEANING_WEEKS
    temp_threshold: int = DEFAULT_TEMP_THRESHOLD_C


@dataclass
class BestDay:
    date: str = None
    kwh: float = 0.0


@dataclass
class Stats:
    last_reminder_date: datetime = EPOCH
    next_milestone_kwh: int = MILESTONE_STEP_KWH
    best_day: BestDay = field(default_factory=BestDay)
    last_liveness_alert: datetime = None
    last_temp_alert: datetime = None


@dataclass
class OutageStatus:
    """Outage flag; ``outage_start_time`` is set iff ``is_system_down``."""
    is_system_down: bool = False
    outage_start_time: datetime = None
    urgent_alert_sent: bool = False

    def mark_down(self, now):
        self.is_system_down = True
        self.outage_start_time = now
        self.urgent_alert_sent = False

    def clear(self):
        self.is_system_down = False
        self.outage_start_time = None
        self.urgent_alert_sent = False


def _snake_case(key):
    return re.sub(r"(?<!^)(?=[A-Z])", "_", key).lower()


def _coerce(f, value):
    """Convert a persisted scalar to the field's declared type."""
    if f.type not in (bool, int, float, str) or (value is None and f.default is None):
        return value
    if f.type is bool:
        if not isinstance(value, bool):
            raise ValueError(f"expected a boolean, got {value!r}")
        return value
    return f.type(value)


def _merge(cls, data):
    """Build a dataclass from ``data`` ignoring unknown keys, defaults for the rest.

    camelCase keys are accepted as aliases of the snake_case field names;
    values that cannot be converted to the field's type fall back to the default.
    """
    if not isinstance(data, dict):
        return cls()
    values = {_snake_case(k): v for k, v in data.items() if k != _snake_case(k)}
    values.update((k, v) for k, v in data.items() if k == _snake_case(k))
    kwargs = {}
    for f in fields(cls):
        if f.name not in values:
            continue
        try:
            kwargs[f.name] = _coerce(f, values[f.name])
        except (TypeError, ValueError):
            logger.warning("Ignoring invalid %s.%s=%r in state file, using default",
                           cls.__name__, f.name, values[f.name])
    return cls(**kwargs)


class BotState:
    """Single owned state object shared by every handler.

    Mutations must happen while holding ``lock`` and be followed by
    ``save()``; the lock is re-entrant so ``save()`` can be called inside it.
    """

    def __init__(self, state_file=None, settings=None, stats=None, status=None,
                 last_update_id=0):
        self.state_file = state_file
        self.settings = settings or Settings()
        self.stats = stats or Stats()
        self.status = status or OutageStatus()
        self.last_update_id = last_update_id
        self.lock = threading.RLock()

    @classmethod
    def load(cls, state_file):
        """Load state from file, filling any missing field with its default."""
        state = cls(state_file=state_file)
        if not state_file or not os.path.exists(state_file):
            logger.info("State file %s not found, using defaults", state_file)
            return state
        try:
            with open(state_file, "r") as f:
                raw = json.load(f)
        except Exception:
            logger.exception("Failed to load bot state from %s, using defaults", state_file)
            return state
        if not isinstance(raw, dict):
            logger.warning("State file %s has unexpected layout, using defaults", state_file)
            return state

        state.settings = _merge(Settings, raw.get("config"))

        stats = _merge(Stats, raw.get("stats"))
        stats.best_day = _merge(BestDay, stats.best_day)
        stats.last_reminder_date = _to_datetime(stats.last_reminder_date) or EPOCH
        stats.last_liveness_alert = _to_datetime(stats.last_liveness_alert)
        stats.last_temp_alert = _to_datetime(stats.last_temp_alert)
        state.stats = stats

        status = _merge(OutageStatus, raw.get("status"))
        status.outage_start_time = _to_datetime(status.outage_start_time)
        if status.is_system_down and status.outage_start_time is None:
            logger.warning("State file marks system down without a start time, clearing")
            status.clear()
        elif not status.is_system_down:
            status.clear()
        state.status = status

        telegram = raw.get("telegram") or {}
        try:
            state.last_update_id = int(telegram.get("last_update_id", 0) or 0)
        except (TypeError, ValueError, AttributeError):
            logger.warning("Ignoring invalid Telegram cursor in state file")
        logger.info("Loaded bot state from %s", state_file)
        return state

    def to_dict(self):
        with self.lock:
            stats = asdict(self.stats)
            status = asdict(self.status)
            settings = asdict(self.settings)
            last_update_id = self.last_update_id
        for key in ("last_reminder_date", "last_liveness_alert", "last_temp_alert"):
            stats[key] = _to_iso(stats[key])
        status["outage_start_time"] = _to_iso(status["outage_start_time"])
        return {
            "config": settings,
            "stats": stats,
            "status": status,
            "telegram": {"last_update_id": last_update_id},
        }

    def save(self):
        """Persist the full state to file."""
        if not self.state_file:
            return
        with self.lock:
            state = self.to_dict()
            try:
                with open(self.state_file, "w") as f:
                    json.dump(state, f, indent=2)
            except Exception:
                logger.exception("Failed to save bot state to %s", self.state_file)
