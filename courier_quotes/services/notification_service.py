import asyncio
from abc import ABC, abstractmethod
from typing import List, Optional

import aiohttp

from courier_quotes.core.config import settings
from courier_quotes.core.errors import DeliveryFailed
from courier_quotes.core.logger import get_logger

logger = get_logger(__name__)


class Notifier(ABC):
    @abstractmethod
    async def send_email(
        self,
        to: List[str],
        body: str,
        cc: Optional[List[str]] = None,
        subject: Optional[str] = None,
    ) -> Optional[str]:
        """Hand an email to the delivery service; raises ``DeliveryFailed``."""


class EmailNotifier(Notifier):
    """Posts outgoing emails to the mail delivery service."""

    def __init__(
        self,
        url: str = settings.NOTIFICATION_URL,
        token: str = settings.SERVICE_TOKEN,
        timeout: float = settings.HTTP_TIMEOUT_SECONDS,
    ):
        self.url = url
        self.headers = {"Authorization": f"Bearer {token}"} if token else {}
        self.timeout = aiohttp.ClientTimeout(total=timeout)

    async def send_email(
        self,
        to: List[str],
        body: str,
        cc: Optional[List[str]] = None,
        subject: Optional[str] = None,
    ) -> Optional[str]:
        if not to:
            raise DeliveryFailed("Email has no recipients")

        request_payload = {
            "to": to,
            "cc": cc or [],
            "subject": subject or "",
            "body": body,
        }
        logger.info(f"Sending email to {', '.join(to)} with subject '{subject}'")

        try:
            async with aiohttp.ClientSession(headers=self.headers, timeout=self.timeout) as session:
                async with session.post(self.url, json=request_payload) as response:
                    response.raise_for_status()
                    try:
                        data = await response.json()
                    except aiohttp.ContentTypeError:
                        data = {}
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"Email delivery failed: {e}")
            raise DeliveryFailed(f"Email delivery failed: {e}") from e

        message_id = data.get("id")
        logger.info(f"Email accepted for delivery: {message_id}")
        return message_id
