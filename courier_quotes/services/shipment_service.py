from abc import ABC, abstractmethod
from typing import Optional

import httpx

from courier_quotes.core.config import settings
from courier_quotes.core.errors import TransientError
from courier_quotes.core.logger import get_logger
from courier_quotes.models.quote import Quote

logger = get_logger(__name__)


class ShipmentClient(ABC):
    @abstractmethod
    async def create_shipment(self, quote: Quote) -> str:
        """Create a shipment from an accepted quote snapshot and return its id."""


class HttpShipmentClient(ShipmentClient):
    def __init__(
        self,
        base_url: str = settings.SHIPMENT_SERVICE_URL,
        token: str = settings.SERVICE_TOKEN,
        timeout: float = settings.HTTP_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.headers = {"Content-Type": "application/json"}
        if token:
            self.headers["Authorization"] = f"Bearer {token}"
        self.timeout = timeout
        self.transport = transport

    async def create_shipment(self, quote: Quote) -> str:
        payload = {
            "quote_id": quote.id,
            "quote_number": quote.quote_number,
            "quote": quote.model_dump(mode="json", exclude={"status_history"}),
        }
        logger.info(f"Creating shipment for quote {quote.quote_number}")

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                resp = await client.post(f"{self.base_url}/shipments", headers=self.headers, json=payload)
                resp.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"Shipment creation failed for quote {quote.quote_number}: {e}")
            raise TransientError(f"Shipment service request failed: {e}") from e

        shipment_id = resp.json().get("id")
        if not shipment_id:
            raise TransientError(f"Shipment service returned no id: {resp.text}")

        logger.info(f"Shipment {shipment_id} created for quote {quote.quote_number}")
        return str(shipment_id)
