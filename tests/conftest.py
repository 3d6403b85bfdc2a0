# tests/conftest.py
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import httpx
import pytest
import pytest_asyncio

from courier_quotes.core.config import Settings
from courier_quotes.core.errors import DeliveryFailed, TransientError
from courier_quotes.core.permissions import Actor
from courier_quotes.main import create_app
from courier_quotes.models.quote import (
    Address,
    CurrencyAmount,
    Dimensions,
    NfoService,
    ObcService,
    PartnerQuote,
    Quote,
    QuoteStatus,
)
from courier_quotes.models.quote_request import QuoteDraft
from courier_quotes.services.customer_service import CustomerDirectory
from courier_quotes.services.notification_service import Notifier
from courier_quotes.services.quote_repository import InMemoryQuoteRepository
from courier_quotes.services.quote_service import QuoteService
from courier_quotes.services.shipment_service import ShipmentClient

NOW = datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)


# ==========================
# Fake collaborators
# ==========================
class FakeClock:
    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeNotifier(Notifier):
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: List[dict] = []

    async def send_email(self, to, body, cc=None, subject=None):
        if self.fail:
            raise DeliveryFailed("mail service down")
        self.sent.append({"to": list(to), "body": body, "cc": cc, "subject": subject})
        return f"msg-{len(self.sent)}"


class FakeShipments(ShipmentClient):
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.created: List[str] = []

    async def create_shipment(self, quote: Quote) -> str:
        if self.fail:
            raise TransientError("shipment service down")
        shipment_id = f"SHP-{len(self.created) + 1}"
        self.created.append(quote.id)
        return shipment_id


class FakeCustomers(CustomerDirectory):
    def __init__(self, emails: Optional[Dict[str, str]] = None):
        self.emails = emails if emails is not None else {"cust-1": "ops@acme.example"}

    async def get_contact_email(self, customer_id: str) -> Optional[str]:
        return self.emails.get(customer_id)


# ==========================
# Builders
# ==========================
def address(city: str, country: str, code: str) -> Address:
    return Address(city=city, country=country, country_code=code)


def partner(partner_id: str, amount: float, selected: bool = False) -> PartnerQuote:
    return PartnerQuote(
        partner_id=partner_id,
        partner_name=f"Partner {partner_id}",
        quoted_price=CurrencyAmount(amount=amount),
        is_selected=selected,
    )


def make_draft(service_type: str = "OBC", **overrides) -> QuoteDraft:
    service = ObcService() if service_type == "OBC" else NfoService()
    data = dict(
        customer_id="cust-1",
        service=service,
        origin=address("Frankfurt", "Germany", "DE"),
        destination=address("Chicago", "United States", "US"),
        dimensions=Dimensions(length=40, width=30, height=20, weight=12.5),
        description="Replacement turbine blade",
        deadline=NOW + timedelta(days=5),
        valid_until=NOW + timedelta(days=10),
    )
    data.update(overrides)
    return QuoteDraft(**data)


def make_quote(status: QuoteStatus = QuoteStatus.DRAFT, **overrides) -> Quote:
    data = make_draft().model_dump(exclude_none=True)
    data.update(
        id="q-1",
        quote_number="QT-2025-00001",
        version=1,
        status=status,
        created_at=NOW,
        updated_at=NOW,
    )
    data.update(overrides)
    return Quote.model_validate(data)


# ==========================
# Fixtures
# ==========================
@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def config() -> Settings:
    return Settings()


@pytest.fixture
def repository() -> InMemoryQuoteRepository:
    return InMemoryQuoteRepository("QT")


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def shipments() -> FakeShipments:
    return FakeShipments()


@pytest.fixture
def customers() -> FakeCustomers:
    return FakeCustomers()


@pytest.fixture
def quote_service(repository, notifier, shipments, customers, config, clock) -> QuoteService:
    return QuoteService(
        repository=repository,
        notifier=notifier,
        shipments=shipments,
        customers=customers,
        config=config,
        clock=clock,
    )


@pytest.fixture
def sales() -> Actor:
    return Actor(id="u-sales", role="sales")


@pytest.fixture
def admin() -> Actor:
    return Actor(id="u-admin", role="admin")


@pytest.fixture
def finance() -> Actor:
    return Actor(id="u-finance", role="finance")


@pytest.fixture
def viewer() -> Actor:
    return Actor(id="u-ops", role="operations")


@pytest_asyncio.fixture
async def client(quote_service):
    app = create_app(quote_service)
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app),
        base_url="http://testserver",
    ) as ac:
        yield ac
