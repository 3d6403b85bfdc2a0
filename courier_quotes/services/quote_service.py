"""
Quote service façade.

Every public operation takes the calling actor explicitly, checks its
capability and validates input before touching the store, and writes with
the version it read so concurrent edits surface as conflicts instead of
overwriting each other.
"""

from datetime import datetime, timezone
from typing import Callable, List, Optional

from courier_quotes.core.config import Settings, settings as default_settings
from courier_quotes.core.errors import (
    ConflictError,
    ConversionIncompleteError,
    FieldError,
    NotFound,
    QuoteError,
    SelectionLimitReached,
    StaleWriteError,
    ValidationError,
)
from courier_quotes.core.logger import get_logger
from courier_quotes.core.permissions import Actor, Capability, has_capability, require_capability
from courier_quotes.models.quote import (
    NfoService,
    PartnerQuote,
    Priority,
    Quote,
    QuoteStatus,
    ServiceType,
    StatusChange,
)
from courier_quotes.models.quote_request import EmailOptions, QuoteDraft, QuoteFilters, QuoteUpdate
from courier_quotes.models.quote_response import (
    CreatedResponse,
    PartnerComparison,
    QuoteListResponse,
    QuoteResponse,
    QuoteStats,
)
from courier_quotes.services import lifecycle
from courier_quotes.services.customer_service import CustomerDirectory
from courier_quotes.services.insights_service import compute_insights
from courier_quotes.services.lifecycle import QuoteEvent
from courier_quotes.services.notification_service import Notifier
from courier_quotes.services.partner_service import (
    compare_partner_quotes,
    deselect_partner_quote,
    select_partner_quote,
)
from courier_quotes.services.pricing_service import price_total, round2
from courier_quotes.services.quote_repository import QuoteRepository
from courier_quotes.services.shipment_service import ShipmentClient
from courier_quotes.services.template_service import default_subject, generate_quote_text
from courier_quotes.services.validation_service import (
    MAX_NOTES_LENGTH,
    MAX_QUOTE_TEXT_LENGTH,
    validate_partner_quotes,
    validate_quote_data,
    validate_rejection_reason,
)

logger = get_logger(__name__)

PRICING_FIELDS = frozenset({"base_cost", "markup", "total_price"})
PARTNER_WRITE_ATTEMPTS = 3
MIN_SEARCH_TERM_LENGTH = 2


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _stamp_partner_quotes(partner_quotes: List[PartnerQuote], now: datetime) -> List[PartnerQuote]:
    return [
        pq if pq.received_at is not None else pq.model_copy(update={"received_at": now})
        for pq in partner_quotes
    ]


def _primary_selection(current: Optional[str], partner_quotes: List[PartnerQuote]) -> Optional[str]:
    selected = [pq.partner_id for pq in partner_quotes if pq.is_selected]
    if current in selected:
        return current
    return selected[0] if selected else None


class QuoteService:
    def __init__(
        self,
        repository: QuoteRepository,
        notifier: Notifier,
        shipments: ShipmentClient,
        customers: CustomerDirectory,
        config: Settings = default_settings,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.repository = repository
        self.notifier = notifier
        self.shipments = shipments
        self.customers = customers
        self.config = config
        self.clock = clock

    # -------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------
    async def _load(self, quote_id: str) -> Quote:
        quote = await self.repository.get(quote_id)
        if quote is None:
            raise NotFound("Quote", quote_id)
        return quote

    def _present(self, actor: Actor, quote: Quote, now: datetime) -> QuoteResponse:
        pricing_visible = has_capability(actor, Capability.VIEW_PRICING)
        data = quote.model_dump()
        if not pricing_visible:
            # Stored quote text quotes the total price
            data.update(base_cost=None, markup=None, total_price=None, quote_text=None)
            for partner_quote in data["service"].get("partner_quotes", []):
                partner_quote["quoted_price"] = None
        return QuoteResponse.model_validate({
            **data,
            "pricing_visible": pricing_visible,
            "insights": compute_insights(quote, now, self.config),
        })

    def _prepare_service(self, service, now: datetime):
        if isinstance(service, NfoService):
            partner_quotes = _stamp_partner_quotes(service.partner_quotes, now)
            return service.model_copy(update={
                "partner_quotes": partner_quotes,
                "selected_partner_quote": _primary_selection(service.selected_partner_quote, partner_quotes),
            })
        return service

    async def _apply_transition(
        self,
        actor: Actor,
        quote: Quote,
        event: QuoteEvent,
        notes: Optional[str] = None,
        extra: Optional[dict] = None,
    ) -> Quote:
        now = self.clock()
        target = lifecycle.transition(quote, event, now)

        if notes is not None and len(notes) > MAX_NOTES_LENGTH:
            raise ValidationError.single("notes", f"Notes must be at most {MAX_NOTES_LENGTH} characters")

        change = StatusChange(
            from_status=quote.status,
            to_status=target,
            changed_at=now,
            changed_by=actor.id,
            notes=notes,
        )
        fields = {
            "status": target,
            "status_history": [*quote.status_history, change],
            "updated_at": now,
            "updated_by": actor.id,
            **(extra or {}),
        }
        if target == QuoteStatus.SENT:
            fields["sent_at"] = now

        updated = await self.repository.update(quote.id, fields, expected_version=quote.version)
        logger.info(f"Quote {quote.quote_number} moved {quote.status.value} -> {target.value} by {actor.id}")
        return updated

    # -------------------------------------------------------------------
    # Create / read / update / delete
    # -------------------------------------------------------------------
    async def create(self, actor: Actor, draft: QuoteDraft) -> CreatedResponse:
        require_capability(actor, Capability.CREATE)
        touches_pricing = (
            draft.base_cost is not None
            or draft.markup is not None
            or draft.total_price is not None
            or isinstance(draft.service, NfoService) and bool(draft.service.partner_quotes)
        )
        if touches_pricing:
            require_capability(actor, Capability.EDIT_PRICING)

        now = self.clock()
        errors = validate_quote_data(
            draft, now=now, max_selected_partner_quotes=self.config.MAX_SELECTED_PARTNER_QUOTES
        )
        if errors:
            logger.warning(f"Rejected quote draft from {actor.id}: {len(errors)} validation error(s)")
            raise ValidationError(errors)

        total_price = draft.total_price
        if draft.base_cost is not None and draft.markup is not None:
            total_price = price_total(draft.base_cost, draft.markup)

        quote = Quote(
            customer_id=draft.customer_id,
            customer_reference=draft.customer_reference,
            inquiry_source_id=draft.inquiry_source_id,
            priority=draft.priority,
            service=self._prepare_service(draft.service, now),
            origin=draft.origin,
            destination=draft.destination,
            dimensions=draft.dimensions,
            description=draft.description,
            special_instructions=draft.special_instructions,
            quote_text=draft.quote_text,
            notes=draft.notes,
            base_cost=draft.base_cost,
            markup=draft.markup,
            total_price=total_price,
            deadline=draft.deadline,
            valid_until=draft.valid_until,
            status=QuoteStatus.DRAFT,
            created_at=now,
            updated_at=now,
            created_by=actor.id,
            updated_by=actor.id,
        )
        stored = await self.repository.create(quote)
        logger.info(f"Created {stored.service_type.value} quote {stored.quote_number} ({stored.id}) by {actor.id}")
        return CreatedResponse(id=stored.id, quote_number=stored.quote_number)

    async def get(self, actor: Actor, quote_id: str) -> QuoteResponse:
        require_capability(actor, Capability.VIEW)
        quote = await self._load(quote_id)
        return self._present(actor, quote, self.clock())

    async def update(self, actor: Actor, quote_id: str, changes: QuoteUpdate) -> QuoteResponse:
        require_capability(actor, Capability.EDIT)
        fields = changes.changes()
        if not fields:
            raise ValidationError.single("update", "No changes supplied")
        if PRICING_FIELDS & fields.keys() or isinstance(changes.service, NfoService):
            require_capability(actor, Capability.EDIT_PRICING)

        quote = await self._load(quote_id)
        lifecycle.ensure_editable(quote)

        now = self.clock()
        errors = validate_quote_data(
            changes, now=now, partial=True, max_selected_partner_quotes=self.config.MAX_SELECTED_PARTNER_QUOTES
        )
        if changes.service is not None and changes.service.service_type != quote.service_type.value:
            errors.append(FieldError(
                field="service.service_type",
                message="Service type cannot be changed after creation",
            ))
        if errors:
            logger.warning(f"Rejected update of quote {quote.quote_number}: {len(errors)} validation error(s)")
            raise ValidationError(errors)

        if "service" in fields:
            fields["service"] = self._prepare_service(changes.service, now)

        if PRICING_FIELDS & fields.keys():
            base_cost = fields.get("base_cost", quote.base_cost)
            markup = fields.get("markup", quote.markup)
            if base_cost is not None and markup is not None:
                fields["total_price"] = price_total(base_cost, markup)

        fields.update(updated_at=now, updated_by=actor.id)
        updated = await self.repository.update(quote.id, fields, expected_version=quote.version)
        logger.info(f"Updated quote {quote.quote_number} ({', '.join(sorted(changes.changes()))}) by {actor.id}")
        return self._present(actor, updated, now)

    async def delete(self, actor: Actor, quote_id: str) -> None:
        require_capability(actor, Capability.DELETE)
        quote = await self._load(quote_id)
        await self.repository.delete(quote.id)
        logger.info(f"Deleted quote {quote.quote_number} ({quote.id}) by {actor.id}")

    # -------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------
    async def update_status(
        self,
        actor: Actor,
        quote_id: str,
        status: QuoteStatus,
        notes: Optional[str] = None,
        rejection_reason: Optional[str] = None,
    ) -> QuoteResponse:
        require_capability(actor, Capability.EDIT)
        quote = await self._load(quote_id)
        if quote.is_converted:
            lifecycle.ensure_editable(quote)
        event = lifecycle.event_for_target(quote.status, status)

        extra = {}
        if event is QuoteEvent.SEND:
            # Status-only path: no email goes out, but the send guard still holds
            require_capability(actor, Capability.SEND)
            if not await self.customers.get_contact_email(quote.customer_id):
                raise ValidationError.single("customer_id", "Customer has no contact email")
            text = quote.quote_text or generate_quote_text(quote)
            if len(text) > MAX_QUOTE_TEXT_LENGTH:
                raise ValidationError.single(
                    "quote_text", f"Quote text must be at most {MAX_QUOTE_TEXT_LENGTH} characters"
                )
            extra["quote_text"] = text
        elif event is QuoteEvent.REJECT:
            errors = validate_rejection_reason(rejection_reason)
            if errors:
                raise ValidationError(errors)
            extra["rejection_reason"] = rejection_reason

        updated = await self._apply_transition(actor, quote, event, notes=notes, extra=extra)
        return self._present(actor, updated, self.clock())

    async def accept(self, actor: Actor, quote_id: str, notes: Optional[str] = None) -> QuoteResponse:
        return await self.update_status(actor, quote_id, QuoteStatus.ACCEPTED, notes=notes)

    async def reject(
        self, actor: Actor, quote_id: str, reason: Optional[str] = None, notes: Optional[str] = None
    ) -> QuoteResponse:
        return await self.update_status(actor, quote_id, QuoteStatus.REJECTED, notes=notes, rejection_reason=reason)

    async def expire(self, actor: Actor, quote_id: str, notes: Optional[str] = None) -> QuoteResponse:
        return await self.update_status(actor, quote_id, QuoteStatus.EXPIRED, notes=notes)

    async def send(
        self,
        actor: Actor,
        quote_id: str,
        quote_text: Optional[str] = None,
        email: Optional[EmailOptions] = None,
    ) -> QuoteResponse:
        require_capability(actor, Capability.SEND)
        quote = await self._load(quote_id)
        lifecycle.transition(quote, QuoteEvent.SEND, self.clock())

        text = quote_text or quote.quote_text or generate_quote_text(quote)
        errors: List[FieldError] = []
        if len(text) > MAX_QUOTE_TEXT_LENGTH:
            errors.append(FieldError(
                field="quote_text",
                message=f"Quote text must be at most {MAX_QUOTE_TEXT_LENGTH} characters",
            ))

        recipients = list(email.to) if email and email.to else []
        if not recipients:
            contact = await self.customers.get_contact_email(quote.customer_id)
            if contact:
                recipients = [contact]
            else:
                errors.append(FieldError(
                    field="email.to",
                    message="Customer has no contact email and no recipients were given",
                ))
        if errors:
            raise ValidationError(errors)

        subject = email.subject if email and email.subject else default_subject(quote)
        body = f"{email.message}\n\n{text}" if email and email.message else text
        cc = list(email.cc) if email else None

        # Delivery first: a failed hand-off leaves the quote in draft
        await self.notifier.send_email(recipients, body, cc=cc, subject=subject)

        try:
            updated = await self._apply_transition(
                actor, quote, QuoteEvent.SEND,
                notes=f"Sent to {', '.join(recipients)}",
                extra={"quote_text": text},
            )
        except StaleWriteError:
            logger.error(f"Quote {quote.quote_number} was emailed but changed concurrently; status not recorded")
            raise
        return self._present(actor, updated, self.clock())

    async def convert(self, actor: Actor, quote_id: str) -> str:
        """
        Turn an accepted quote into a shipment and return the shipment id.

        Three steps: claim the quote with a conditional write, create the
        shipment, record the link. A failure in the last step leaves an
        orphan shipment and raises ``ConversionIncompleteError``; the claim
        stays in place so the quote cannot be converted a second time.
        """
        require_capability(actor, Capability.CONVERT)
        quote = await self._load(quote_id)
        lifecycle.transition(quote, QuoteEvent.CONVERT)

        try:
            claimed = await self.repository.update(
                quote.id,
                {"conversion_pending": True, "updated_at": self.clock(), "updated_by": actor.id},
                expected_version=quote.version,
            )
        except StaleWriteError as e:
            raise ConflictError(f"Quote '{quote.id}' changed while conversion was starting") from e

        try:
            shipment_id = await self.shipments.create_shipment(claimed)
        except Exception:
            await self._release_claim(claimed)
            raise

        try:
            await self.repository.update(
                quote.id,
                {
                    "converted_to_shipment_id": shipment_id,
                    "conversion_pending": False,
                    "updated_at": self.clock(),
                    "updated_by": actor.id,
                },
                expected_version=claimed.version,
            )
        except Exception as e:
            logger.error(
                f"Shipment {shipment_id} created for quote {quote.quote_number} ({quote.id}) "
                f"but the link was not recorded: {e}. Manual reconciliation required."
            )
            raise ConversionIncompleteError(quote.id, shipment_id, str(e)) from e

        logger.info(f"Converted quote {quote.quote_number} to shipment {shipment_id} by {actor.id}")
        return shipment_id

    async def _release_claim(self, claimed: Quote) -> None:
        try:
            await self.repository.update(
                claimed.id,
                {"conversion_pending": False, "updated_at": self.clock()},
                expected_version=claimed.version,
            )
        except QuoteError as e:
            logger.error(f"Could not release conversion claim on quote {claimed.id}: {e}")

    async def reconcile_conversion(
        self, actor: Actor, quote_id: str, shipment_id: Optional[str] = None
    ) -> QuoteResponse:
        """Resolve a stuck conversion: link the orphan shipment, or release the claim."""
        require_capability(actor, Capability.RECONCILE)
        quote = await self._load(quote_id)
        if not quote.conversion_pending or quote.is_converted:
            raise ConflictError(f"Quote '{quote.id}' has no conversion awaiting reconciliation")

        now = self.clock()
        fields = {"conversion_pending": False, "updated_at": now, "updated_by": actor.id}
        if shipment_id:
            fields["converted_to_shipment_id"] = shipment_id
        updated = await self.repository.update(quote.id, fields, expected_version=quote.version)
        logger.info(f"Reconciled conversion of quote {quote.quote_number} (shipment={shipment_id}) by {actor.id}")
        return self._present(actor, updated, now)

    # -------------------------------------------------------------------
    # Partner quotes (NFO)
    # -------------------------------------------------------------------
    async def _mutate_partner_quotes(self, actor: Actor, quote_id: str, mutate) -> QuoteResponse:
        require_capability(actor, Capability.EDIT_PRICING)
        limit = self.config.MAX_SELECTED_PARTNER_QUOTES

        for attempt in range(1, PARTNER_WRITE_ATTEMPTS + 1):
            quote = await self._load(quote_id)
            lifecycle.ensure_editable(quote)
            if not isinstance(quote.service, NfoService):
                raise ValidationError.single("service.service_type", "Partner quotes are only available for NFO quotes")

            now = self.clock()
            partner_quotes = _stamp_partner_quotes(mutate(quote.service.partner_quotes), now)
            if sum(1 for pq in partner_quotes if pq.is_selected) > limit:
                raise SelectionLimitReached(limit)

            service = quote.service.model_copy(update={
                "partner_quotes": partner_quotes,
                "selected_partner_quote": _primary_selection(quote.service.selected_partner_quote, partner_quotes),
            })
            errors: List[FieldError] = []
            validate_partner_quotes(service, errors, limit)
            if errors:
                raise ValidationError(errors)

            try:
                updated = await self.repository.update(
                    quote.id,
                    {"service": service, "updated_at": now, "updated_by": actor.id},
                    expected_version=quote.version,
                )
            except StaleWriteError:
                if attempt == PARTNER_WRITE_ATTEMPTS:
                    raise
                logger.warning(f"Partner quotes of {quote.quote_number} changed concurrently, retrying ({attempt})")
                continue
            return self._present(actor, updated, now)

    async def add_partner_quote(self, actor: Actor, quote_id: str, partner_quote: PartnerQuote) -> QuoteResponse:
        def mutate(partner_quotes: List[PartnerQuote]) -> List[PartnerQuote]:
            if any(pq.partner_id == partner_quote.partner_id for pq in partner_quotes):
                raise ValidationError.single(
                    "partner_id", f"A quote from partner '{partner_quote.partner_id}' already exists"
                )
            return [*partner_quotes, partner_quote]

        return await self._mutate_partner_quotes(actor, quote_id, mutate)

    async def remove_partner_quote(self, actor: Actor, quote_id: str, partner_id: str) -> QuoteResponse:
        def mutate(partner_quotes: List[PartnerQuote]) -> List[PartnerQuote]:
            remaining = [pq for pq in partner_quotes if pq.partner_id != partner_id]
            if len(remaining) == len(partner_quotes):
                raise NotFound("Partner quote", partner_id)
            return remaining

        return await self._mutate_partner_quotes(actor, quote_id, mutate)

    async def select_partner(self, actor: Actor, quote_id: str, partner_id: str) -> QuoteResponse:
        limit = self.config.MAX_SELECTED_PARTNER_QUOTES
        return await self._mutate_partner_quotes(
            actor, quote_id, lambda partner_quotes: select_partner_quote(partner_quotes, partner_id, limit)
        )

    async def deselect_partner(self, actor: Actor, quote_id: str, partner_id: str) -> QuoteResponse:
        return await self._mutate_partner_quotes(
            actor, quote_id, lambda partner_quotes: deselect_partner_quote(partner_quotes, partner_id)
        )

    async def compare_partners(self, actor: Actor, quote_id: str) -> PartnerComparison:
        require_capability(actor, Capability.VIEW_PRICING)
        quote = await self._load(quote_id)
        if not isinstance(quote.service, NfoService):
            raise ValidationError.single("service.service_type", "Partner quotes are only available for NFO quotes")
        return compare_partner_quotes(quote.service.partner_quotes)

    # -------------------------------------------------------------------
    # Read-only views
    # -------------------------------------------------------------------
    async def quote_text(self, actor: Actor, quote_id: str) -> str:
        require_capability(actor, Capability.VIEW_PRICING)
        quote = await self._load(quote_id)
        return quote.quote_text or generate_quote_text(quote)

    async def list_quotes(self, actor: Actor, filters: Optional[QuoteFilters] = None) -> QuoteListResponse:
        require_capability(actor, Capability.VIEW)
        filters = filters or QuoteFilters()
        quotes = await self.repository.query(filters)

        now = self.clock()
        end = filters.offset + filters.limit
        return QuoteListResponse(
            items=[self._present(actor, quote, now) for quote in quotes[filters.offset:end]],
            total=len(quotes),
            has_more=len(quotes) > end,
        )

    async def search(
        self, actor: Actor, term: str, limit: int = 20, include_expired: bool = False
    ) -> List[QuoteResponse]:
        require_capability(actor, Capability.VIEW)
        term = (term or "").strip()
        if len(term) < MIN_SEARCH_TERM_LENGTH:
            raise ValidationError.single(
                "term", f"Search term must be at least {MIN_SEARCH_TERM_LENGTH} characters"
            )

        now = self.clock()
        quotes = await self.repository.search(term)
        if not include_expired:
            quotes = [
                quote for quote in quotes
                if quote.status != QuoteStatus.EXPIRED and not lifecycle.is_expired(quote, now)
            ]
        return [self._present(actor, quote, now) for quote in quotes[:limit]]

    async def expiring(self, actor: Actor, limit: int = 50) -> List[QuoteResponse]:
        require_capability(actor, Capability.VIEW)
        now = self.clock()
        quotes = [
            quote for quote in await self.repository.query()
            if quote.status in lifecycle.NON_TERMINAL and compute_insights(quote, now, self.config).is_expiring
        ]
        return [self._present(actor, quote, now) for quote in quotes[:limit]]

    async def overdue(self, actor: Actor, limit: int = 50) -> List[QuoteResponse]:
        """Quotes past their validity date that have not been expired yet."""
        require_capability(actor, Capability.VIEW)
        now = self.clock()
        quotes = [quote for quote in await self.repository.query() if lifecycle.is_expired(quote, now)]
        return [self._present(actor, quote, now) for quote in quotes[:limit]]

    async def stats(self, actor: Actor) -> QuoteStats:
        require_capability(actor, Capability.VIEW)
        now = self.clock()
        quotes = await self.repository.query()
        total = len(quotes)

        by_status = {status.value: 0 for status in QuoteStatus}
        by_service_type = {service_type.value: 0 for service_type in ServiceType}
        by_priority = {priority.value: 0 for priority in Priority}
        expiring_quotes = 0
        total_value = 0.0
        for quote in quotes:
            by_status[quote.status.value] += 1
            by_service_type[quote.service_type.value] += 1
            by_priority[quote.priority.value] += 1
            if quote.status in lifecycle.NON_TERMINAL and compute_insights(quote, now, self.config).is_expiring:
                expiring_quotes += 1
            if quote.total_price is not None:
                total_value += quote.total_price.amount

        pricing_visible = has_capability(actor, Capability.VIEW_PRICING)
        accepted = by_status[QuoteStatus.ACCEPTED.value]
        return QuoteStats(
            total=total,
            by_status=by_status,
            by_service_type=by_service_type,
            by_priority=by_priority,
            expiring_quotes=expiring_quotes,
            total_value=round2(total_value) if pricing_visible else None,
            average_value=round2(total_value / total if total else 0.0) if pricing_visible else None,
            conversion_rate=round2(accepted / total * 100) if total else 0.0,
        )
