import asyncio
import uuid
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple

import httpx
from pydantic_core import to_jsonable_python

from courier_quotes.core.config import settings
from courier_quotes.core.errors import NotFound, StaleWriteError, StoreRejected, TransientError
from courier_quotes.core.logger import get_logger
from courier_quotes.models.quote import ObcService, Quote
from courier_quotes.models.quote_request import QuoteFilters

logger = get_logger(__name__)


# -------------------------------------------------------------------
# Filtering shared by every store that filters in process
# -------------------------------------------------------------------
def matches_term(quote: Quote, term: str) -> bool:
    term = term.lower()
    haystack = [quote.quote_number, quote.description, quote.customer_reference, quote.notes]
    return any(term in value.lower() for value in haystack if value)


def matches_filters(quote: Quote, filters: QuoteFilters) -> bool:
    if filters.status and quote.status not in filters.status:
        return False
    if filters.service_type and quote.service_type not in filters.service_type:
        return False
    if filters.priority and quote.priority not in filters.priority:
        return False
    if filters.customer_id and quote.customer_id != filters.customer_id:
        return False
    if filters.assigned_courier_id:
        if not isinstance(quote.service, ObcService):
            return False
        if quote.service.assigned_courier_id != filters.assigned_courier_id:
            return False
    if filters.search and not matches_term(quote, filters.search):
        return False

    ranges = (
        (quote.created_at, filters.created_from, filters.created_to),
        (quote.valid_until, filters.valid_until_from, filters.valid_until_to),
        (quote.deadline, filters.deadline_from, filters.deadline_to),
    )
    for value, lower, upper in ranges:
        if lower is not None and value < lower:
            return False
        if upper is not None and value > upper:
            return False
    return True


class QuoteRepository(ABC):
    """
    Document store for quotes keyed by opaque id.

    ``update`` is a conditional write when ``expected_version`` is given:
    it raises ``StaleWriteError`` instead of overwriting a newer version.
    Any method may raise ``TransientError``.
    """

    @abstractmethod
    async def create(self, quote: Quote) -> Quote:
        ...

    @abstractmethod
    async def get(self, quote_id: str) -> Optional[Quote]:
        ...

    @abstractmethod
    async def update(
        self, quote_id: str, changes: Dict[str, Any], expected_version: Optional[int] = None
    ) -> Quote:
        ...

    @abstractmethod
    async def delete(self, quote_id: str) -> None:
        ...

    @abstractmethod
    async def query(self, filters: Optional[QuoteFilters] = None) -> List[Quote]:
        """All quotes matching ``filters``, oldest first, without pagination."""

    @abstractmethod
    async def search(self, term: str) -> List[Quote]:
        ...


# -------------------------------------------------------------------
# In-process store
# -------------------------------------------------------------------
class InMemoryQuoteRepository(QuoteRepository):
    def __init__(self, quote_number_prefix: str = settings.QUOTE_NUMBER_PREFIX):
        self._documents: Dict[str, Dict[str, Any]] = {}
        self._lock = asyncio.Lock()
        self._sequence = 0
        self._prefix = quote_number_prefix

    async def create(self, quote: Quote) -> Quote:
        async with self._lock:
            self._sequence += 1
            stored = quote.model_copy(update={
                "id": uuid.uuid4().hex,
                "quote_number": f"{self._prefix}-{quote.created_at.year}-{self._sequence:05d}",
                "version": 1,
            })
            self._documents[stored.id] = stored.model_dump()
            return stored

    async def get(self, quote_id: str) -> Optional[Quote]:
        document = self._documents.get(quote_id)
        return Quote.model_validate(document) if document is not None else None

    async def update(
        self, quote_id: str, changes: Dict[str, Any], expected_version: Optional[int] = None
    ) -> Quote:
        async with self._lock:
            document = self._documents.get(quote_id)
            if document is None:
                raise NotFound("Quote", quote_id)
            current = Quote.model_validate(document)
            if expected_version is not None and current.version != expected_version:
                raise StaleWriteError(quote_id, expected_version, current.version)

            updated = current.model_copy(update={**changes, "version": current.version + 1})
            # Round-trip through validation so the stored document stays well-formed
            updated = Quote.model_validate(updated.model_dump())
            self._documents[quote_id] = updated.model_dump()
            return updated

    async def delete(self, quote_id: str) -> None:
        async with self._lock:
            if self._documents.pop(quote_id, None) is None:
                raise NotFound("Quote", quote_id)

    async def query(self, filters: Optional[QuoteFilters] = None) -> List[Quote]:
        quotes = [Quote.model_validate(document) for document in self._documents.values()]
        if filters is not None:
            quotes = [quote for quote in quotes if matches_filters(quote, filters)]
        return sorted(quotes, key=lambda quote: quote.created_at)

    async def search(self, term: str) -> List[Quote]:
        return [quote for quote in await self.query() if matches_term(quote, term)]


# -------------------------------------------------------------------
# Remote document store over HTTP
# -------------------------------------------------------------------
def _conflict_version(resp: httpx.Response) -> int:
    # Conflict bodies are not guaranteed to be JSON
    try:
        return int(resp.json().get("version", -1))
    except (ValueError, TypeError, AttributeError):
        return -1


class HttpQuoteRepository(QuoteRepository):
    def __init__(
        self,
        base_url: str,
        token: str = "",
        timeout: float = settings.HTTP_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.headers = {"Content-Type": "application/json"}
        if token:
            self.headers["Authorization"] = f"Bearer {token}"
        self.timeout = timeout
        self.transport = transport

    async def _request(
        self, method: str, endpoint: str, params=None, json=None, handled: Tuple[int, ...] = ()
    ) -> httpx.Response:
        """Send one request; statuses in ``handled`` are left for the caller to interpret."""
        full_url = f"{self.base_url}{endpoint}"
        logger.info(f"Quote store {method} request to {full_url}")

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                resp = await client.request(method, full_url, headers=self.headers, params=params, json=json)
        except httpx.HTTPError as e:
            logger.error(f"Quote store unreachable: {e}")
            raise TransientError(f"Quote store request failed: {e}") from e

        if resp.status_code >= 500:
            logger.error(f"Quote store error {resp.status_code}: {resp.text}")
            raise TransientError(f"Quote store returned {resp.status_code}")
        if resp.status_code >= 400 and resp.status_code not in handled:
            logger.error(f"Quote store rejected {method} {endpoint}: {resp.status_code} {resp.text}")
            raise StoreRejected(f"Quote store rejected the request ({resp.status_code})", resp.status_code)
        return resp

    async def create(self, quote: Quote) -> Quote:
        payload = quote.model_dump(mode="json", exclude={"id", "quote_number", "version", "service_type"})
        resp = await self._request("POST", "/quotes", json=payload)
        return Quote.model_validate(resp.json())

    async def get(self, quote_id: str) -> Optional[Quote]:
        resp = await self._request("GET", f"/quotes/{quote_id}", handled=(404,))
        if resp.status_code == 404:
            return None
        return Quote.model_validate(resp.json())

    async def update(
        self, quote_id: str, changes: Dict[str, Any], expected_version: Optional[int] = None
    ) -> Quote:
        payload = {"changes": to_jsonable_python(changes), "expected_version": expected_version}
        resp = await self._request("PATCH", f"/quotes/{quote_id}", json=payload, handled=(404, 409))
        if resp.status_code == 404:
            raise NotFound("Quote", quote_id)
        if resp.status_code == 409:
            raise StaleWriteError(quote_id, expected_version or 0, _conflict_version(resp))
        return Quote.model_validate(resp.json())

    async def delete(self, quote_id: str) -> None:
        resp = await self._request("DELETE", f"/quotes/{quote_id}", handled=(404,))
        if resp.status_code == 404:
            raise NotFound("Quote", quote_id)

    async def query(self, filters: Optional[QuoteFilters] = None) -> List[Quote]:
        params = {}
        if filters is not None:
            params = filters.model_dump(mode="json", exclude_none=True, exclude={"limit", "offset"})
            params = {key: value for key, value in params.items() if value != []}
        resp = await self._request("GET", "/quotes", params=params)
        return [Quote.model_validate(item) for item in resp.json().get("items", [])]

    async def search(self, term: str) -> List[Quote]:
        resp = await self._request("GET", "/quotes/search", params={"q": term})
        return [Quote.model_validate(item) for item in resp.json().get("items", [])]
