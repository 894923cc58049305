"""Telegram transport for the solar monitoring group."""
import logging
import threading
import time

import requests

logger = logging.getLogger(__name__)

SEND_TIMEOUT = 10
LONG_POLL_TIMEOUT = 20


class TelegramBot:
    """Sends messages to one group chat and feeds its messages to a handler.

    ``handler(text, user_id, sender)`` is called for every human text message
    posted in the group.
    """

    def __init__(self, token, group_id, state, handler=None):
        self.token = token
        self.group_id = str(group_id)
        self.state = state
        self.handler = handler
        self.api_url = f"https://api.telegram.org/bot{token}"
        self._poll_failures = 0
        self._running = False
        self._thread = None

    def send_message(self, chat_id, text):
        """Send a Markdown message. Failures are logged, not retried or raised."""
        payload = {"chat_id": chat_id, "text": text, "parse_mode": "Markdown"}
        try:
            resp = requests.post(f"{self.api_url}/sendMessage", json=payload, timeout=SEND_TIMEOUT)
            if resp.ok:
                return True
            logger.error("Failed to send message: %s", resp.text)
        except Exception:
            logger.exception("Error sending Telegram message to chat %s", chat_id)
        return False

    def send_to_group(self, text):
        """Send a message to the monitored group."""
        return self.send_message(self.group_id, text)

    def is_admin(self, user_id):
        """Return True if ``user_id`` is an administrator of the group."""
        try:
            resp = requests.get(
                f"{self.api_url}/getChatAdministrators",
                params={"chat_id": self.group_id},
                timeout=SEND_TIMEOUT,
            )
            if not resp.ok:
                logger.warning("getChatAdministrators failed: %s", resp.status_code)
                return False
            admins = resp.json().get("result", [])
        except Exception:
            logger.exception("Error fetching group administrators")
            return False
        return any(admin.get("user", {}).get("id") == user_id for admin in admins)

    def poll_commands(self, timeout=LONG_POLL_TIMEOUT):
        """Fetch pending updates and pass group text messages to the handler."""
        try:
            resp = requests.get(
                f"{self.api_url}/getUpdates",
                params={"offset": self.state.last_update_id + 1, "timeout": timeout},
                timeout=timeout + SEND_TIMEOUT,
            )
            if not resp.ok:
                logger.warning("Telegram getUpdates failed: %s", resp.status_code)
                self._poll_failures += 1
                return
            updates = resp.json().get("result", [])
        except Exception:
            logger.warning("Error polling Telegram updates", exc_info=True)
            self._poll_failures += 1
            return
        self._poll_failures = 0

        for update in updates:
            with self.state.lock:
                self.state.last_update_id = update["update_id"]
                self.state.save()
            message = update.get("message")
            if not message or not message.get("text"):
                continue
            sender = message.get("from") or {}
            if sender.get("is_bot"):
                continue
            if str(message.get("chat", {}).get("id")) != self.group_id:
                logger.debug("Ignoring message from chat %s", message.get("chat", {}).get("id"))
                continue
            if self.handler is None:
                continue
            try:
                self.handler(message["text"], sender.get("id"), sender.get("first_name"))
            except Exception:
                logger.exception("Unhandled error processing update %s", update["update_id"])

    def run(self, poll_interval=1):
        """Main loop: long-poll for commands, backing off while Telegram is unreachable."""
        self._running = True
        logger.info("Telegram bot started for group %s", self.group_id)
        while self._running:
            self.poll_commands()
            if self._poll_failures:
                time.sleep(min(poll_interval * (2 ** self._poll_failures), 60))
            else:
                time.sleep(poll_interval)

    def start(self):
        """Start the bot in a background thread."""
        self._thread = threading.Thread(target=self.run, daemon=True)
        self._thread.start()
        return self._thread

    def stop(self):
        """Stop the bot."""
        self._running = False
