import asyncio
import logging
from collections import deque

import httpx

from . import config
from .errors import WalletError
from .schemas import Notification

logger = logging.getLogger(__name__)

_LOG_LEVELS = {
    "success": logging.INFO,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def send_push_notification(title: str, body: str, recipients: list[str] | None = None) -> bool:
    """Send a notification via Push Protocol if configured."""
    if not config.PUSH_CHANNEL:
        logger.info("Push Protocol not configured; skipping notification")
        return False
    chain = config.REQUIRED_CHAIN_ID
    payload = {
        "senderType": 0,
        "type": 4 if recipients else 1,
        "identityType": 2,
        "notification": {"title": title, "body": body},
        "payload": {"title": title, "body": body, "cta": "", "img": ""},
        "recipients": [f"eip155:{chain}:{r}" for r in recipients] if recipients else None,
        "channel": f"eip155:{chain}:{config.PUSH_CHANNEL}",
        "env": config.PUSH_ENV,
    }
    try:
        resp = httpx.post(config.PUSH_API_URL, json=payload, timeout=10)
        resp.raise_for_status()
        return True
    except httpx.HTTPError as exc:
        logger.error(f"Push notification failed: {exc}")
        return False


def _log_push_failure(future: asyncio.Future) -> None:
    if future.cancelled():
        return
    exc = future.exception()
    if exc is not None:
        logger.error(f"Push notification crashed: {exc!r}")


class Notifier:
    """User-facing notifications.

    Every notification is logged, kept in a bounded history and fanned out to
    subscriber queues (the WebSocket channel reads from one). Success and error
    notifications are also forwarded to Push Protocol when ``push`` is on.
    """

    def __init__(self, history_size: int = 50, push: bool = False):
        self.history: deque[Notification] = deque(maxlen=history_size)
        self.push = push
        self._subscribers: list[asyncio.Queue] = []

    def notify(self, level: str, title: str, description: str = "") -> Notification:
        note = Notification(level=level, title=title, description=description)
        self.history.append(note)
        logger.log(_LOG_LEVELS[level], f"{title}: {description}" if description else title)
        for queue in self._subscribers:
            queue.put_nowait(note)
        if self.push and level in ("success", "error"):
            self._forward(note)
        return note

    def success(self, title: str, description: str = "") -> Notification:
        return self.notify("success", title, description)

    def info(self, title: str, description: str = "") -> Notification:
        return self.notify("info", title, description)

    def warning(self, title: str, description: str = "") -> Notification:
        return self.notify("warning", title, description)

    def error(self, title: str, description: str = "") -> Notification:
        return self.notify("error", title, description)

    def failure(self, exc: WalletError, title: str | None = None) -> Notification:
        """Report a normalized failure; transient kinds are notices, not errors."""
        level = "info" if exc.transient else "error"
        return self.notify(level, title or exc.title, exc.message)

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    def _forward(self, note: Notification) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            send_push_notification(note.title, note.description)
            return
        future = loop.run_in_executor(None, send_push_notification, note.title, note.description)
        future.add_done_callback(_log_push_failure)
