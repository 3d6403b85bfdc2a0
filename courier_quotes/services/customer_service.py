from abc import ABC, abstractmethod
from typing import Optional

import httpx

from courier_quotes.core.config import settings
from courier_quotes.core.errors import TransientError
from courier_quotes.core.logger import get_logger

logger = get_logger("customer_service")


class CustomerDirectory(ABC):
    @abstractmethod
    async def get_contact_email(self, customer_id: str) -> Optional[str]:
        """Primary contact email of a customer, or None when it has none."""


class HttpCustomerDirectory(CustomerDirectory):
    """Looks customers up in the customer master-data service."""

    def __init__(
        self,
        base_url: str = settings.CUSTOMER_DIRECTORY_URL,
        token: str = settings.SERVICE_TOKEN,
        timeout: float = settings.HTTP_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.headers = {"Authorization": f"Bearer {token}"} if token else {}
        self.timeout = timeout
        self.transport = transport

    async def get_contact_email(self, customer_id: str) -> Optional[str]:
        url = f"{self.base_url}/customers/{customer_id}"
        logger.info(f"Fetching contact details for customer {customer_id}")

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                resp = await client.get(url, headers=self.headers)
        except httpx.HTTPError as e:
            raise TransientError(f"Customer directory request failed: {e}") from e

        if resp.status_code == 404:
            logger.warning(f"Customer {customer_id} not found in directory")
            return None
        if resp.status_code >= 400:
            logger.error(f"Customer directory error {resp.status_code}: {resp.text}")
            raise TransientError(f"Customer directory returned {resp.status_code}")

        data = resp.json()
        contact = data.get("primary_contact") or {}
        email = (contact.get("email") or data.get("email") or "").strip()
        return email or None
