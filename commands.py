"""Chat command parsing and handlers."""
from datetime import datetime, timedelta
import logging
import math
import re

from bot_state import LANGUAGES
from growatt import ConnectivityError, MissingDataError
from telemetry import previous_month

logger = logging.getLogger(__name__)


class ValidationError(Exception):
    """Malformed command argument."""


class AuthorizationError(Exception):
    """Non-admin invoking a settings command."""


# keyword -> (command, reply language)
COMMAND_MAP = {
    "status": ("GET_STATUS", "en"), "statut": ("GET_STATUS", "fr"),
    "today": ("GET_TODAY", "en"), "production": ("GET_TODAY", "en"),
    "aujourd'hui": ("GET_TODAY", "fr"),
    "total": ("GET_TOTAL", "en"),
    "money": ("GET_MONEY_TODAY", "en"), "argent": ("GET_MONEY_TODAY", "fr"),
    "total money": ("GET_MONEY_TOTAL", "en"), "argent total": ("GET_MONEY_TOTAL", "fr"),
    "cleaned": ("MARK_CLEANED", "en"), "nettoyé": ("MARK_CLEANED", "fr"),
    "cleaning": ("GET_CLEANING_STATUS", "en"), "nettoyage": ("GET_CLEANING_STATUS", "fr"),
    "compare": ("GET_COMPARISON", "en"), "comparer": ("GET_COMPARISON", "fr"),
    "weather": ("GET_WEATHER", "en"), "meteo": ("GET_WEATHER", "fr"),
    "history": ("GET_HISTORY", "en"), "historique": ("GET_HISTORY", "fr"),
    "help": ("GET_HELP", "en"), "aide": ("GET_HELP", "fr"),
    "/setlang": ("SET_LANG", "en"),
    "/setcost": ("SET_COST", "en"),
    "/setcleaning": ("SET_CLEANING_WEEKS", "en"),
    "/settemp": ("SET_TEMP_THRESHOLD", "en"),
}

WEATHER_ICONS = {
    "100": "☀️", "101": "☁️", "102": "☁️", "103": "🌤️", "104": "☁️",
    "300": "🌧️", "305": "🌧️", "306": "🌧️", "307": "🌧️", "400": "❄️",
}

HELP_KEYS = (
    "HELP_COMMAND_STATUS", "HELP_COMMAND_TODAY", "HELP_COMMAND_TOTAL",
    "HELP_COMMAND_MONEY", "HELP_COMMAND_TOTAL_MONEY", "HELP_COMMAND_CLEANING",
    "HELP_COMMAND_CLEANED", "HELP_COMMAND_COMPARE", "HELP_COMMAND_WEATHER",
    "HELP_COMMAND_HISTORY", "HELP_COMMAND_HELP",
)

YEAR_RE = re.compile(r"^\d{4}$")
MONTH_RE = re.compile(r"^\d{4}-\d{2}$")
DAY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
SHORT_DAY_RE = re.compile(r"^\d{2}-\d{2}$")


def parse_command(text):
    """Resolve ``text`` to (command, lang, args), or None if not a command.

    A two-word keyword takes precedence over a one-word keyword.
    """
    words = text.strip().split()
    if not words:
        return None
    lowered = [w.lower() for w in words]
    if len(lowered) > 1:
        two_word = f"{lowered[0]} {lowered[1]}"
        if two_word in COMMAND_MAP:
            cmd, lang = COMMAND_MAP[two_word]
            return cmd, lang, words[2:]
    if lowered[0] in COMMAND_MAP:
        cmd, lang = COMMAND_MAP[lowered[0]]
        return cmd, lang, words[1:]
    return None


def _first_arg(args):
    if not args:
        raise ValidationError("missing argument")
    return args[0]


class CommandDispatcher:
    """Routes chat commands to read queries or admin-only settings changes.

    ``reply`` sends a text to the group, ``is_admin`` tells whether a user id
    belongs to a group administrator.
    """

    def __init__(self, state, telemetry, aggregator, translator, reply, is_admin,
                 clock=datetime.now):
        self.state = state
        self.telemetry = telemetry
        self.aggregator = aggregator
        self.translator = translator
        self.reply = reply
        self.is_admin = is_admin
        self.clock = clock
        self.handlers = {
            "GET_STATUS": self.get_status,
            "GET_TODAY": self.get_today,
            "GET_TOTAL": self.get_total,
            "GET_MONEY_TODAY": self.get_money_today,
            "GET_MONEY_TOTAL": self.get_money_total,
            "MARK_CLEANED": self.mark_cleaned,
            "GET_CLEANING_STATUS": self.get_cleaning_status,
            "GET_COMPARISON": self.get_comparison,
            "GET_WEATHER": self.get_weather,
            "GET_HISTORY": self.get_history,
            "GET_HELP": self.get_help,
            "SET_LANG": self.set_lang,
            "SET_COST": self.set_cost,
            "SET_CLEANING_WEEKS": self.set_cleaning_weeks,
            "SET_TEMP_THRESHOLD": self.set_temp_threshold,
        }

    def t(self, key, lang, **variables):
        return self.translator.t(key, lang, **variables)

    def dispatch(self, text, user_id=None, sender=None):
        """Handle one inbound message. Returns the command name, or None if ignored."""
        parsed = parse_command(text or "")
        if parsed is None:
            return None
        cmd, lang, args = parsed
        logger.info('Command received: "%s" from %s in lang: %s', cmd, sender or user_id, lang)

        try:
            if cmd.startswith("SET_") and not self.is_admin(user_id):
                raise AuthorizationError(f"user {user_id} is not an admin")
            self.handlers[cmd](args, lang)
        except AuthorizationError:
            logger.info("Rejected %s from non-admin %s", cmd, user_id)
            self.reply(self.t("ERROR_NOT_ADMIN", lang))
        except ValidationError as e:
            logger.info("Invalid %s arguments %s: %s", cmd, args, e)
            self.reply(self.t("ERROR_INVALID_COMMAND", lang))
        except ConnectivityError:
            self.reply(self.t("ERROR_GENERIC", lang,
                              error_message=self.t("ERROR_API_CONNECTION", lang)))
        except MissingDataError as e:
            logger.warning("%s: incomplete snapshot (%s)", cmd, e)
            self.reply(self.t("ERROR_GENERIC", lang,
                              error_message=self.t("ERROR_MISSING_DATA", lang)))
        except Exception as e:
            logger.exception("Error in %s", cmd)
            self.reply(self.t("ERROR_GENERIC", lang, error_message=str(e)))
        return cmd

    # --- Read commands ---

    def get_status(self, args, lang):
        snapshot = self.telemetry.fetch()
        self.reply(self.t(
            "STATUS_REPLY", lang,
            pac=snapshot.pac, vacr=snapshot.vacr,
            temperature=snapshot.temperature, e_today=snapshot.e_today,
        ))

    def get_today(self, args, lang):
        snapshot = self.telemetry.fetch()
        self.reply(self.t("TODAY_REPLY", lang, e_today=snapshot.e_today))

    def get_total(self, args, lang):
        snapshot = self.telemetry.fetch()
        self.reply(self.t("TOTAL_REPLY", lang, e_total=snapshot.e_total))

    def _money(self, kwh):
        return f"{kwh * self.state.settings.cost_per_kwh:.2f}"

    def get_money_today(self, args, lang):
        snapshot = self.telemetry.fetch()
        self.reply(self.t(
            "MONEY_TODAY_REPLY", lang,
            symbol=self.state.settings.currency_symbol,
            money_saved=self._money(snapshot.e_today),
        ))

    def get_money_total(self, args, lang):
        snapshot = self.telemetry.fetch()
        self.reply(self.t(
            "MONEY_TOTAL_REPLY", lang,
            symbol=self.state.settings.currency_symbol,
            money_saved=self._money(snapshot.e_total),
        ))

    def mark_cleaned(self, args, lang):
        with self.state.lock:
            self.state.stats.last_reminder_date = self.clock()
            self.state.save()
            days = self.state.settings.cleaning_interval_weeks * 7
        self.reply(self.t("CLEANED_REPLY", lang, next_reminder_days=days))

    def get_cleaning_status(self, args, lang):
        with self.state.lock:
            interval_days = self.state.settings.cleaning_interval_weeks * 7
            days_passed = (self.clock() - self.state.stats.last_reminder_date).days
        days_left = interval_days - days_passed
        if days_left <= 0:
            self.reply(self.t("CLEANING_OVERDUE_REPLY", lang, days_overdue=-days_left))
        else:
            self.reply(self.t("CLEANING_STATUS_REPLY", lang, days_left=days_left))

    def compare_values(self, current, previous, lang):
        if previous > 0:
            diff = (current - previous) / previous * 100
            return self.t("COMPARE_PERFORMANCE", lang,
                          current=f"{current:.2f}", previous=f"{previous:.2f}",
                          sign="+" if diff >= 0 else "", diff=f"{diff:.0f}")
        if current > 0:
            return self.t("COMPARE_PERFORMANCE", lang,
                          current=f"{current:.2f}", previous=f"{previous:.2f}",
                          sign="+", diff="∞")
        return self.t("COMPARE_NOT_ENOUGH_DATA", lang)

    def get_comparison(self, args, lang):
        today = self.clock().date()
        total = self.aggregator.period_total
        day = self.compare_values(total(today, "day"),
                                  total(today - timedelta(days=1), "day"), lang)
        week = self.compare_values(total(today, "week"),
                                   total(today - timedelta(weeks=1), "week"), lang)
        month = self.compare_values(total(today, "month"),
                                    total(previous_month(today), "month"), lang)
        self.reply(self.t("COMPARE_REPLY", lang, day_comparison=day,
                          week_comparison=week, month_comparison=month))

    def get_weather(self, args, lang):
        now = self.telemetry.fetch().weather_now
        self.reply(self.t(
            "WEATHER_REPLY", lang,
            icon=WEATHER_ICONS.get(str(now.get("cond_code")), "🌡️"),
            condition=now.get("cond_txt", ""), temp=now.get("tmp", ""),
            feels_like=now.get("fl", ""), humidity=now.get("hum", ""),
        ))

    def get_history(self, args, lang):
        today = self.clock().date()
        arg = args[0] if args else today.strftime("%Y-%m")
        if SHORT_DAY_RE.match(arg):
            arg = f"{today.year}-{arg}"

        try:
            if YEAR_RE.match(arg):
                self._history_year(int(arg), lang)
                return
            if MONTH_RE.match(arg):
                target = datetime.strptime(arg, "%Y-%m").date()
                kwh = self.aggregator.period_total(target, "month")
            elif DAY_RE.match(arg):
                target = datetime.strptime(arg, "%Y-%m-%d").date()
                kwh = self.aggregator.period_total(target, "day")
            else:
                self.reply(self.t("ERROR_HISTORY_FORMAT", lang))
                return
        except ValueError:
            self.reply(self.t("ERROR_HISTORY_FORMAT", lang))
            return

        if kwh > 0:
            self.reply(self.t("HISTORY_REPLY", lang, date=arg, kwh=f"{kwh:.2f}"))
        else:
            self.reply(self.t("HISTORY_NOT_FOUND", lang, date=arg))

    def _history_year(self, year, lang):
        if year < 1:
            raise ValueError(f"invalid year {year}")
        self.reply(self.t("HISTORY_YEAR_PENDING", lang))
        breakdown = self.aggregator.monthly_breakdown(year)
        total = sum(kwh for _, kwh in breakdown)
        if total <= 0:
            self.reply(self.t("HISTORY_NOT_FOUND", lang, date=str(year)))
            return
        lines = [self.t("HISTORY_YEAR_TOTAL", lang, year=year, kwh=f"{total:.2f}")]
        for month, kwh in breakdown:
            lines.append(self.t("HISTORY_YEAR_MONTH", lang,
                                month=month.strftime("%Y-%m"), kwh=f"{kwh:.2f}"))
        self.reply("\n".join(lines))

    def get_help(self, args, lang):
        lines = [self.t("HELP_HEADER", lang), self.t("HELP_INTRO", lang),
                 self.t("HELP_COLUMNS", lang), "-----------------------------"]
        lines.extend(self.t(key, lang) for key in HELP_KEYS)
        self.reply("\n".join(lines))

    # --- Admin commands ---

    def set_lang(self, args, lang):
        new_lang = _first_arg(args).lower()
        if new_lang not in LANGUAGES:
            raise ValidationError(f"unsupported language {new_lang}")
        with self.state.lock:
            self.state.settings.language = new_lang
            self.state.save()
        self.reply(self.t("SET_LANG_SUCCESS", new_lang))

    def set_cost(self, args, lang):
        try:
            cost = float(_first_arg(args))
        except ValueError:
            raise ValidationError("cost is not a number")
        if not math.isfinite(cost) or cost <= 0:
            raise ValidationError("cost must be positive")
        with self.state.lock:
            self.state.settings.cost_per_kwh = cost
            self.state.save()
        self.reply(self.t("SET_COST_SUCCESS", lang, cost=f"{cost:.3f}"))

    def set_cleaning_weeks(self, args, lang):
        try:
            weeks = int(_first_arg(args))
        except ValueError:
            raise ValidationError("weeks is not an integer")
        if weeks <= 0:
            raise ValidationError("weeks must be positive")
        with self.state.lock:
            self.state.settings.cleaning_interval_weeks = weeks
            self.state.save()
        self.reply(self.t("SET_CLEANING_WEEKS_SUCCESS", lang, weeks=weeks))

    def set_temp_threshold(self, args, lang):
        try:
            temp = int(_first_arg(args))
        except ValueError:
            raise ValidationError("temperature is not an integer")
        if temp <= 30:
            raise ValidationError("temperature threshold must exceed 30")
        with self.state.lock:
            self.state.settings.temp_threshold = temp
            self.state.save()
        self.reply(self.t("SET_TEMP_THRESHOLD_SUCCESS", lang, temp=temp))
