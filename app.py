"""Growatt Telegram Bot - solar plant alerts and queries for a Telegram group."""
from dotenv import load_dotenv

load_dotenv()

from datetime import datetime
import logging
import os

from flask import Flask, jsonify, request

from alerts import AlertMonitor
from bot_state import BotState
from commands import CommandDispatcher
from growatt import ConnectivityError, MissingDataError, GrowattClient, DEFAULT_SERVER_URL
from i18n import Translator
from reports import ReportService
from scheduler import build_scheduler
from telegram_bot import TelegramBot
from telemetry import TelemetryCache, PeriodAggregator, GRANULARITIES

logger = logging.getLogger(__name__)

GROWATT_USER = os.environ.get("GROWATT_USER", "")
GROWATT_PASSWORD = os.environ.get("GROWATT_PASSWORD", "")
GROWATT_SERVER_URL = os.environ.get("GROWATT_SERVER_URL", DEFAULT_SERVER_URL)
TELEGRAM_BOT_TOKEN = os.environ.get("TELEGRAM_BOT_TOKEN", "")
TELEGRAM_GROUP_ID = os.environ.get("TELEGRAM_GROUP_ID", "")
BOT_STATE_FILE = os.environ.get("BOT_STATE_FILE", "bot_state.json")


def is_configured():
    """Check if the environment has every required credential."""
    required = ("GROWATT_USER", "GROWATT_PASSWORD", "TELEGRAM_BOT_TOKEN", "TELEGRAM_GROUP_ID")
    return all(os.environ.get(name, "").strip() for name in required)


app = Flask(__name__)

# Service variables, initialised by init_services() when configured
bot_state = None
translator = None
telemetry = None
aggregator = None
telegram_bot = None
monitor = None
reports = None
dispatcher = None
scheduler = None

_configured = is_configured()


def init_services():
    """Wire the state, telemetry, bot, alerting and scheduling services."""
    global bot_state, translator, telemetry, aggregator, telegram_bot
    global monitor, reports, dispatcher, scheduler

    bot_state = BotState.load(BOT_STATE_FILE)
    translator = Translator()
    telemetry = TelemetryCache(
        lambda: GrowattClient(GROWATT_USER, GROWATT_PASSWORD, server_url=GROWATT_SERVER_URL)
    )
    aggregator = PeriodAggregator(telemetry)
    telegram_bot = TelegramBot(TELEGRAM_BOT_TOKEN, TELEGRAM_GROUP_ID, bot_state)
    notify = telegram_bot.send_to_group

    monitor = AlertMonitor(bot_state, telemetry, translator, notify)
    reports = ReportService(bot_state, aggregator, translator, notify)
    dispatcher = CommandDispatcher(
        bot_state, telemetry, aggregator, translator,
        reply=notify, is_admin=telegram_bot.is_admin,
    )
    telegram_bot.handler = dispatcher.dispatch
    scheduler = build_scheduler(monitor, reports)


if _configured:
    init_services()


def _snapshot_summary(snapshot, fetched_at):
    summary = {"fetched_at": fetched_at.isoformat() if fetched_at else None}
    for name in ("pac", "vacr", "temperature", "e_today", "e_total"):
        try:
            summary[name] = getattr(snapshot, name)
        except MissingDataError:
            summary[name] = None
    try:
        summary["last_update"] = snapshot.last_update.isoformat()
    except MissingDataError:
        summary["last_update"] = None
    return summary


@app.route("/api/state")
def get_state():
    """Persisted settings, stats and outage status."""
    if not _configured:
        return jsonify({"error": "not configured"}), 503
    data = bot_state.to_dict()
    data.pop("telegram", None)
    return jsonify(data)


@app.route("/api/status")
def get_status():
    """Current plant snapshot (served from the telemetry cache when fresh)."""
    if not _configured:
        return jsonify({"error": "not configured"}), 503
    try:
        snapshot = telemetry.fetch()
    except ConnectivityError as e:
        return jsonify({"error": str(e)}), 503
    _, fetched_at = telemetry.cached()
    return jsonify(_snapshot_summary(snapshot, fetched_at))


@app.route("/api/history")
def get_history():
    """Energy total for ?granularity=day|week|month|year&date=YYYY-MM-DD."""
    if not _configured:
        return jsonify({"error": "not configured"}), 503
    granularity = request.args.get("granularity", "day")
    if granularity not in GRANULARITIES:
        return jsonify({"error": f"invalid granularity: {granularity}"}), 400
    date_param = request.args.get("date", datetime.now().strftime("%Y-%m-%d"))
    try:
        target = datetime.strptime(date_param, "%Y-%m-%d").date()
    except ValueError:
        return jsonify({"error": f"invalid date: {date_param}"}), 400
    try:
        kwh = aggregator.period_total(target, granularity)
    except ConnectivityError as e:
        return jsonify({"error": str(e)}), 503
    return jsonify({"date": date_param, "granularity": granularity, "kwh": round(kwh, 2)})


def start_bot():
    """Start the Telegram poller and the scheduler, then greet the group."""
    telegram_bot.start()
    scheduler.start()
    telegram_bot.send_to_group(translator.t("WELCOME", bot_state.settings.language))
    logger.info("Growatt Telegram Bot started")


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    logger.info("=== Growatt Telegram Bot starting ===")
    logger.info("GROWATT_SERVER_URL=%s  BOT_STATE_FILE=%s", GROWATT_SERVER_URL, BOT_STATE_FILE)

    if _configured:
        logger.info("Settings: %s", bot_state.to_dict()["config"])
        logger.info("TELEGRAM_GROUP_ID=%s", TELEGRAM_GROUP_ID)
        start_bot()
    else:
        logger.warning("GROWATT_USER, GROWATT_PASSWORD, TELEGRAM_BOT_TOKEN and "
                       "TELEGRAM_GROUP_ID must be set; running the status API only")

    app.run(host="0.0.0.0", port=int(os.environ.get("PORT", 8080)))
