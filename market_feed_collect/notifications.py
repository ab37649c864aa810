"""Outbound alerts through Pushover."""

import logging
from typing import Optional

import requests

logger = logging.getLogger(__name__)

PUSHOVER_URL = "https://api.pushover.net/1/messages.json"


class PushoverNotifier:
    """
    Sends push notifications. Best-effort: failures are logged and reported
    through the return value, never raised.
    """

    def __init__(self, token: Optional[str], user: Optional[str],
                 session: Optional[requests.Session] = None, timeout: float = 10):
        self.token = token
        self.user = user
        self.session = session or requests.Session()
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self.token and self.user)

    def send_notification(self, message: str, title: Optional[str] = None, url: Optional[str] = None,
                          url_title: Optional[str] = None, priority: Optional[int] = None) -> bool:
        if not self.configured:
            logger.warning(f"Pushover credentials not configured, notification dropped: {message}")
            return False

        payload = {"token": self.token, "user": self.user, "message": message}
        optional = {"title": title, "url": url, "url_title": url_title, "priority": priority}
        payload.update({key: value for key, value in optional.items() if value not in (None, "")})

        try:
            response = self.session.post(PUSHOVER_URL, data=payload, timeout=self.timeout)
            response.raise_for_status()
        except requests.exceptions.RequestException as exc:
            logger.error(f"Pushover send failed: {exc}")
            return False
        logger.info(f"Sent notification '{title or message[:40]}'")
        return True
