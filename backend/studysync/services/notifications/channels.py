"""Fire-and-forget user notification channels."""

import asyncio
import logging
from typing import List, Optional, Protocol

import aiohttp

from studysync.core.config import settings

logger = logging.getLogger(__name__)


class NotificationChannel(Protocol):
    async def notify(self, title: str, body: str) -> None: ...


class LogNotifier:
    """Writes notifications to the application log."""

    async def notify(self, title: str, body: str) -> None:
        logger.info(f"Notification: {title} - {body}")


class WebhookNotifier:
    """
    Posts ``{"title", "body"}`` to a webhook.

    Delivery failures are logged and swallowed: a notification must never
    fail the sync that produced it.
    """

    def __init__(self, url: Optional[str] = None, timeout: float = 10.0):
        self.url = url if url is not None else settings.NOTIFY_WEBHOOK_URL
        self.timeout = timeout

    async def notify(self, title: str, body: str) -> None:
        if not self.url:
            return
        try:
            timeout = aiohttp.ClientTimeout(total=self.timeout)
            async with aiohttp.ClientSession(
                timeout=timeout,
                headers={'User-Agent': 'StudySync/1.0', 'Content-Type': 'application/json'}
            ) as session:
                async with session.post(self.url, json={'title': title, 'body': body}) as response:
                    if response.status >= 400:
                        error_text = await response.text()
                        logger.warning(f"Notification webhook returned {response.status}: {error_text}")
                        return
            logger.debug(f"Notification delivered to webhook: {title}")
        except aiohttp.ClientError as e:
            logger.warning(f"Notification webhook error: {e}")
        except asyncio.TimeoutError:
            logger.warning(f"Notification webhook timed out after {self.timeout}s")


class CompositeNotifier:
    """Sends every notification to all configured channels."""

    def __init__(self, channels: List[NotificationChannel]):
        self.channels = channels

    async def notify(self, title: str, body: str) -> None:
        for channel in self.channels:
            await channel.notify(title, body)


def default_notifier() -> NotificationChannel:
    channels: List[NotificationChannel] = [LogNotifier()]
    if settings.NOTIFY_WEBHOOK_URL:
        channels.append(WebhookNotifier(settings.NOTIFY_WEBHOOK_URL))
    return CompositeNotifier(channels)
