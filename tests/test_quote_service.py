from datetime import timedelta

import pytest

from conftest import NOW, FakeCustomers, FakeNotifier, FakeShipments, address, make_draft, partner

from courier_quotes.core.errors import (
    ConflictError,
    ConversionIncompleteError,
    DeliveryFailed,
    IllegalTransition,
    NotFound,
    PermissionDenied,
    SelectionLimitReached,
    StaleWriteError,
    TransientError,
    ValidationError,
)
from courier_quotes.models.quote import CurrencyAmount, NfoService, QuoteStatus
from courier_quotes.models.quote_request import EmailOptions, QuoteFilters, QuoteUpdate
from courier_quotes.services.quote_repository import InMemoryQuoteRepository
from courier_quotes.services.quote_service import QuoteService


class LinkFailingRepository(InMemoryQuoteRepository):
    """Fails the write that links a quote to its shipment."""

    def __init__(self):
        super().__init__("QT")
        self.fail_link = True

    async def update(self, quote_id, changes, expected_version=None):
        if self.fail_link and "converted_to_shipment_id" in changes:
            raise TransientError("store timed out")
        return await super().update(quote_id, changes, expected_version)


class RacingRepository(InMemoryQuoteRepository):
    """Lets a concurrent writer slip in before each service write."""

    def __init__(self, races: int):
        super().__init__("QT")
        self.races = races

    async def update(self, quote_id, changes, expected_version=None):
        if self.races and "service" in changes:
            self.races -= 1
            await super().update(quote_id, {"notes": "concurrent edit"})
        return await super().update(quote_id, changes, expected_version)


def build_service(repository, clock, config, **overrides) -> QuoteService:
    collaborators = dict(notifier=FakeNotifier(), shipments=FakeShipments(), customers=FakeCustomers())
    collaborators.update(overrides)
    return QuoteService(repository=repository, config=config, clock=clock, **collaborators)


def priced_draft(**overrides):
    return make_draft(base_cost=CurrencyAmount(amount=500), markup=20, **overrides)


def nfo_draft(*offers):
    return make_draft("NFO", service=NfoService(partner_quotes=list(offers)))


async def accepted_quote(service, actor, draft=None) -> str:
    created = await service.create(actor, draft or priced_draft())
    await service.send(actor, created.id)
    await service.accept(actor, created.id)
    return created.id


# ==========================
# End to end
# ==========================
async def test_quote_lifecycle_end_to_end(quote_service, sales, notifier, shipments):
    created = await quote_service.create(sales, priced_draft())
    assert created.quote_number == "QT-2025-00001"

    quote = await quote_service.get(sales, created.id)
    assert quote.status == QuoteStatus.DRAFT
    assert quote.total_price.amount == 600.00
    assert quote.version == 1

    quote = await quote_service.send(sales, created.id)
    assert quote.status == QuoteStatus.SENT
    assert quote.sent_at == NOW
    assert "600.00 EUR" in quote.quote_text
    assert notifier.sent[0]["to"] == ["ops@acme.example"]
    assert notifier.sent[0]["subject"] == "OBC Quote QT-2025-00001 - Frankfurt to Chicago"

    quote = await quote_service.accept(sales, created.id)
    assert quote.status == QuoteStatus.ACCEPTED

    shipment_id = await quote_service.convert(sales, created.id)
    assert shipment_id == "SHP-1"
    assert shipments.created == [created.id]

    quote = await quote_service.get(sales, created.id)
    assert quote.converted_to_shipment_id == "SHP-1"
    assert quote.status == QuoteStatus.ACCEPTED
    assert not quote.conversion_pending
    assert [(c.from_status, c.to_status) for c in quote.status_history] == [
        (QuoteStatus.DRAFT, QuoteStatus.SENT),
        (QuoteStatus.SENT, QuoteStatus.ACCEPTED),
    ]

    with pytest.raises(IllegalTransition):
        await quote_service.update(sales, created.id, QuoteUpdate(notes="late change"))
    with pytest.raises(ConflictError):
        await quote_service.convert(sales, created.id)
    assert len(shipments.created) == 1


# ==========================
# Create / update / delete
# ==========================
async def test_create_collects_all_validation_errors(quote_service, sales, repository):
    draft = make_draft(description="", deadline=NOW - timedelta(days=1))

    with pytest.raises(ValidationError) as exc:
        await quote_service.create(sales, draft)

    assert {e.field for e in exc.value.errors} == {"description", "deadline"}
    assert await repository.query() == []


async def test_roles_without_create_capability(quote_service, finance, viewer):
    for actor in (finance, viewer):
        with pytest.raises(PermissionDenied):
            await quote_service.create(actor, make_draft())


async def test_pricing_redacted_for_roles_without_pricing_access(quote_service, sales, finance, viewer):
    created = await quote_service.create(sales, priced_draft())

    hidden = await quote_service.get(viewer, created.id)
    assert not hidden.pricing_visible
    assert hidden.base_cost is None and hidden.markup is None and hidden.total_price is None

    shown = await quote_service.get(finance, created.id)
    assert shown.pricing_visible
    assert shown.total_price.amount == 600.00


async def test_sent_quote_text_hidden_without_pricing_access(quote_service, sales, finance, viewer):
    created = await quote_service.create(sales, priced_draft())
    await quote_service.send(sales, created.id)

    hidden = await quote_service.get(viewer, created.id)
    assert hidden.quote_text is None
    assert all("600.00" not in (change.notes or "") for change in hidden.status_history)

    listed = await quote_service.list_quotes(viewer)
    assert listed.items[0].quote_text is None

    shown = await quote_service.get(finance, created.id)
    assert "600.00 EUR" in shown.quote_text


async def test_partner_prices_redacted(quote_service, sales, viewer):
    created = await quote_service.create(sales, nfo_draft(partner("a", 100)))

    quote = await quote_service.get(viewer, created.id)

    assert quote.service.partner_quotes[0].quoted_price is None
    with pytest.raises(PermissionDenied):
        await quote_service.compare_partners(viewer, created.id)


async def test_update_recomputes_total_price(quote_service, sales):
    created = await quote_service.create(sales, priced_draft())

    quote = await quote_service.update(sales, created.id, QuoteUpdate(markup=10))

    assert quote.total_price.amount == 550.00
    assert quote.version == 2
    assert quote.updated_by == sales.id


async def test_update_rules(quote_service, sales, finance):
    created = await quote_service.create(sales, make_draft())

    with pytest.raises(PermissionDenied):
        await quote_service.update(finance, created.id, QuoteUpdate(notes="x"))
    with pytest.raises(ValidationError):
        await quote_service.update(sales, created.id, QuoteUpdate())
    with pytest.raises(ValidationError) as exc:
        await quote_service.update(sales, created.id, QuoteUpdate(service=NfoService()))
    assert exc.value.errors[0].field == "service.service_type"


async def test_sent_quote_stays_editable(quote_service, sales):
    created = await quote_service.create(sales, make_draft())
    await quote_service.send(sales, created.id)

    quote = await quote_service.update(sales, created.id, QuoteUpdate(notes="Customer asked for Monday pickup"))

    assert quote.notes == "Customer asked for Monday pickup"
    assert quote.status == QuoteStatus.SENT


async def test_delete_requires_admin(quote_service, sales, admin):
    created = await quote_service.create(sales, make_draft())

    with pytest.raises(PermissionDenied):
        await quote_service.delete(sales, created.id)
    await quote_service.delete(admin, created.id)
    with pytest.raises(NotFound):
        await quote_service.get(admin, created.id)


async def test_stale_write_is_refused(repository, quote_service, sales):
    created = await quote_service.create(sales, make_draft())
    await repository.update(created.id, {"notes": "first"}, expected_version=1)

    with pytest.raises(StaleWriteError):
        await repository.update(created.id, {"notes": "second"}, expected_version=1)


# ==========================
# Lifecycle
# ==========================
async def test_send_without_contact_email(quote_service, sales, notifier):
    created = await quote_service.create(sales, make_draft(customer_id="cust-unknown"))

    with pytest.raises(ValidationError) as exc:
        await quote_service.send(sales, created.id)

    assert exc.value.errors[0].field == "email.to"
    assert notifier.sent == []
    assert (await quote_service.get(sales, created.id)).status == QuoteStatus.DRAFT


async def test_send_to_explicit_recipients(quote_service, sales, notifier):
    created = await quote_service.create(sales, make_draft(customer_id="cust-unknown"))
    email = EmailOptions(to=["buyer@northwind-traders.com"], cc=["desk@northwind-traders.com"], subject="Your quote", message="Hi Sam,")

    quote = await quote_service.send(sales, created.id, quote_text="Custom text", email=email)

    assert quote.status == QuoteStatus.SENT
    assert quote.quote_text == "Custom text"
    assert notifier.sent[0]["to"] == ["buyer@northwind-traders.com"]
    assert notifier.sent[0]["cc"] == ["desk@northwind-traders.com"]
    assert notifier.sent[0]["body"] == "Hi Sam,\n\nCustom text"


async def test_delivery_failure_keeps_draft(quote_service, sales, notifier):
    created = await quote_service.create(sales, make_draft())
    notifier.fail = True

    with pytest.raises(DeliveryFailed):
        await quote_service.send(sales, created.id)

    quote = await quote_service.get(sales, created.id)
    assert quote.status == QuoteStatus.DRAFT
    assert quote.sent_at is None


async def test_status_only_send_generates_text(quote_service, sales, notifier):
    created = await quote_service.create(sales, priced_draft())

    quote = await quote_service.update_status(sales, created.id, QuoteStatus.SENT)

    assert quote.status == QuoteStatus.SENT
    assert quote.quote_text.startswith("Dear Valued Customer")
    assert notifier.sent == []


async def test_status_only_send_refuses_oversized_text(quote_service, sales):
    long_city = "Llanfair" * 150
    draft = make_draft(
        origin=address(long_city, "United Kingdom", "GB"),
        destination=address(long_city, "United Kingdom", "GB"),
    )
    created = await quote_service.create(sales, draft)

    with pytest.raises(ValidationError) as exc:
        await quote_service.update_status(sales, created.id, QuoteStatus.SENT)

    assert exc.value.errors[0].field == "quote_text"
    assert (await quote_service.get(sales, created.id)).status == QuoteStatus.DRAFT


async def test_illegal_status_moves(quote_service, sales):
    created = await quote_service.create(sales, make_draft())

    with pytest.raises(IllegalTransition):
        await quote_service.accept(sales, created.id)
    with pytest.raises(IllegalTransition):
        await quote_service.reject(sales, created.id)


async def test_reject_records_reason(quote_service, sales):
    created = await quote_service.create(sales, make_draft())
    await quote_service.send(sales, created.id)

    quote = await quote_service.reject(sales, created.id, reason="Went with another forwarder", notes="lost")

    assert quote.status == QuoteStatus.REJECTED
    assert quote.rejection_reason == "Went with another forwarder"
    assert quote.status_history[-1].notes == "lost"


async def test_expire_only_after_validity(quote_service, sales, clock):
    created = await quote_service.create(sales, make_draft())

    with pytest.raises(IllegalTransition):
        await quote_service.expire(sales, created.id)

    clock.advance(days=11)
    assert [q.id for q in await quote_service.overdue(sales)] == [created.id]

    quote = await quote_service.expire(sales, created.id)
    assert quote.status == QuoteStatus.EXPIRED
    assert await quote_service.overdue(sales) == []


# ==========================
# Conversion
# ==========================
async def test_convert_requires_accepted(quote_service, sales, shipments):
    created = await quote_service.create(sales, make_draft())

    with pytest.raises(IllegalTransition):
        await quote_service.convert(sales, created.id)
    assert shipments.created == []


async def test_shipment_failure_releases_claim(repository, clock, config, sales):
    shipments = FakeShipments(fail=True)
    service = build_service(repository, clock, config, shipments=shipments)
    quote_id = await accepted_quote(service, sales)

    with pytest.raises(TransientError):
        await service.convert(sales, quote_id)
    quote = await service.get(sales, quote_id)
    assert not quote.conversion_pending
    assert quote.converted_to_shipment_id is None

    shipments.fail = False
    assert await service.convert(sales, quote_id) == "SHP-1"


async def test_link_failure_needs_reconciliation(clock, config, sales, admin):
    repository = LinkFailingRepository()
    shipments = FakeShipments()
    service = build_service(repository, clock, config, shipments=shipments)
    quote_id = await accepted_quote(service, sales)

    with pytest.raises(ConversionIncompleteError) as exc:
        await service.convert(sales, quote_id)
    assert exc.value.shipment_id == "SHP-1"

    quote = await service.get(sales, quote_id)
    assert quote.conversion_pending
    assert quote.converted_to_shipment_id is None

    # the claim blocks a second shipment
    with pytest.raises(ConflictError):
        await service.convert(sales, quote_id)
    assert len(shipments.created) == 1

    repository.fail_link = False
    with pytest.raises(PermissionDenied):
        await service.reconcile_conversion(sales, quote_id, shipment_id="SHP-1")
    quote = await service.reconcile_conversion(admin, quote_id, shipment_id="SHP-1")
    assert quote.converted_to_shipment_id == "SHP-1"
    assert not quote.conversion_pending

    with pytest.raises(ConflictError):
        await service.reconcile_conversion(admin, quote_id)


# ==========================
# Partner quotes
# ==========================
async def test_partner_selection_cap(quote_service, sales):
    created = await quote_service.create(sales, nfo_draft(partner("a", 300), partner("b", 100), partner("c", 200)))

    await quote_service.select_partner(sales, created.id, "a")
    quote = await quote_service.select_partner(sales, created.id, "b")
    assert quote.service.selected_partner_quote == "a"

    with pytest.raises(SelectionLimitReached):
        await quote_service.select_partner(sales, created.id, "c")

    comparison = await quote_service.compare_partners(sales, created.id)
    assert comparison.selected_count == 2
    assert comparison.lowest.partner_id == "b"

    quote = await quote_service.deselect_partner(sales, created.id, "a")
    assert quote.service.selected_partner_quote == "b"


async def test_add_and_remove_partner_quotes(quote_service, sales):
    created = await quote_service.create(sales, nfo_draft())

    quote = await quote_service.add_partner_quote(sales, created.id, partner("a", 150))
    assert quote.service.partner_quotes[0].received_at == NOW

    with pytest.raises(ValidationError):
        await quote_service.add_partner_quote(sales, created.id, partner("a", 140))

    quote = await quote_service.remove_partner_quote(sales, created.id, "a")
    assert quote.service.partner_quotes == []
    with pytest.raises(NotFound):
        await quote_service.remove_partner_quote(sales, created.id, "a")


async def test_partner_quotes_only_on_nfo(quote_service, sales):
    created = await quote_service.create(sales, make_draft())

    with pytest.raises(ValidationError):
        await quote_service.add_partner_quote(sales, created.id, partner("a", 150))


async def test_selection_retries_after_concurrent_write(clock, config, sales):
    repository = RacingRepository(races=1)
    service = build_service(repository, clock, config)
    created = await service.create(sales, nfo_draft(partner("a", 100), partner("b", 200)))

    quote = await service.select_partner(sales, created.id, "a")

    assert quote.service.partner_quotes[0].is_selected
    assert quote.notes == "concurrent edit"


async def test_selection_gives_up_after_repeated_conflicts(clock, config, sales):
    repository = RacingRepository(races=5)
    service = build_service(repository, clock, config)
    created = await service.create(sales, nfo_draft(partner("a", 100)))

    with pytest.raises(StaleWriteError):
        await service.select_partner(sales, created.id, "a")


# ==========================
# Read-only views
# ==========================
async def test_quote_text(quote_service, sales, viewer):
    created = await quote_service.create(sales, priced_draft())

    text = await quote_service.quote_text(sales, created.id)
    assert "On Board Courier" in text
    assert "Frankfurt → Chicago" in text
    assert "600.00 EUR" in text

    with pytest.raises(PermissionDenied):
        await quote_service.quote_text(viewer, created.id)


async def test_list_paginates(quote_service, sales):
    for _ in range(3):
        await quote_service.create(sales, make_draft())

    page = await quote_service.list_quotes(sales, QuoteFilters(limit=2))
    assert len(page.items) == 2
    assert page.total == 3
    assert page.has_more

    page = await quote_service.list_quotes(sales, QuoteFilters(limit=2, offset=2))
    assert len(page.items) == 1
    assert not page.has_more


async def test_list_filters_by_status_and_type(quote_service, sales):
    obc = await quote_service.create(sales, make_draft())
    nfo = await quote_service.create(sales, nfo_draft())
    await quote_service.send(sales, obc.id)

    sent = await quote_service.list_quotes(sales, QuoteFilters(status=[QuoteStatus.SENT]))
    assert [q.id for q in sent.items] == [obc.id]

    nfo_only = await quote_service.list_quotes(sales, QuoteFilters(service_type=["NFO"]))
    assert [q.id for q in nfo_only.items] == [nfo.id]


async def test_search(quote_service, sales, clock):
    created = await quote_service.create(sales, make_draft(customer_reference="PO-7781"))
    await quote_service.create(sales, make_draft(description="Engine part"))

    assert [q.id for q in await quote_service.search(sales, "po-77")] == [created.id]
    with pytest.raises(ValidationError):
        await quote_service.search(sales, "p")

    clock.advance(days=11)
    assert await quote_service.search(sales, "po-77") == []
    assert len(await quote_service.search(sales, "po-77", include_expired=True)) == 1


async def test_expiring(quote_service, sales):
    soon = await quote_service.create(sales, make_draft(valid_until=NOW + timedelta(days=2)))
    await quote_service.create(sales, make_draft())

    assert [q.id for q in await quote_service.expiring(sales)] == [soon.id]


async def test_stats(quote_service, sales, viewer):
    priced = await quote_service.create(sales, priced_draft())
    await quote_service.create(sales, nfo_draft())
    await quote_service.send(sales, priced.id)

    stats = await quote_service.stats(sales)
    assert stats.total == 2
    assert stats.by_status["sent"] == 1
    assert stats.by_status["draft"] == 1
    assert stats.by_service_type == {"OBC": 1, "NFO": 1}
    assert stats.by_priority["standard"] == 2
    assert stats.total_value == 600.0
    assert stats.average_value == 300.0
    assert stats.conversion_rate == 0.0

    hidden = await quote_service.stats(viewer)
    assert hidden.total == 2
    assert hidden.total_value is None
    assert hidden.average_value is None
