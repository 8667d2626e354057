from __future__ import annotations

import requests

from core.models import Notification
from links import ntfy_view_action


class NotificationError(Exception):
    pass


class NtfyClient:
    def __init__(self, url: str, topic: str, token: str, timeout: float = 5.0):
        self.endpoint = f"{url.strip().rstrip('/')}/{topic.strip()}"
        self.token = token.strip()
        self.timeout = timeout
        self.session = requests.Session()

    def send(self, notification: Notification) -> None:
        headers = {"Authorization": f"Bearer {self.token}"}
        action = ntfy_view_action(notification.url)
        if action:
            headers["Actions"] = action

        try:
            r = self.session.post(
                self.endpoint,
                data=notification.message.encode("utf-8"),
                headers=headers,
                timeout=self.timeout,
            )
            r.raise_for_status()
        except requests.RequestException as e:
            raise NotificationError(f"ntfy push failed: {e}") from e
