from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request

from courier_quotes.core.logger import get_logger
from courier_quotes.core.permissions import Actor
from courier_quotes.models.quote import PartnerQuote, Priority, QuoteStatus, ServiceType
from courier_quotes.models.quote_request import (
    QuoteDraft,
    QuoteFilters,
    QuoteUpdate,
    ReconcileRequest,
    RejectQuoteRequest,
    SendQuoteRequest,
    StatusUpdateRequest,
)
from courier_quotes.models.quote_response import (
    ConversionResponse,
    CreatedResponse,
    MessageResponse,
    PartnerComparison,
    QuoteListResponse,
    QuoteResponse,
    QuoteStats,
    QuoteTextResponse,
)
from courier_quotes.services.quote_service import QuoteService

quote_router = APIRouter(prefix="/quotes", tags=["Quote"])

logger = get_logger(__name__)


def get_quote_service(request: Request) -> QuoteService:
    return request.app.state.quote_service


def get_current_actor(
    x_actor_id: Optional[str] = Header(None),
    x_actor_role: Optional[str] = Header(None),
    x_actor_name: Optional[str] = Header(None),
) -> Actor:
    """The caller as resolved by the authenticating gateway in front of this service."""
    if not x_actor_id or not x_actor_role:
        raise HTTPException(status_code=401, detail="Missing actor headers")
    return Actor(id=x_actor_id, role=x_actor_role.strip().lower(), name=x_actor_name)


def get_filters(
    status: List[QuoteStatus] = Query([]),
    service_type: List[ServiceType] = Query([]),
    priority: List[Priority] = Query([]),
    customer_id: Optional[str] = None,
    assigned_courier_id: Optional[str] = None,
    search: Optional[str] = None,
    created_from: Optional[datetime] = None,
    created_to: Optional[datetime] = None,
    valid_until_from: Optional[datetime] = None,
    valid_until_to: Optional[datetime] = None,
    deadline_from: Optional[datetime] = None,
    deadline_to: Optional[datetime] = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
) -> QuoteFilters:
    return QuoteFilters(
        status=status,
        service_type=service_type,
        priority=priority,
        customer_id=customer_id,
        assigned_courier_id=assigned_courier_id,
        search=search,
        created_from=created_from,
        created_to=created_to,
        valid_until_from=valid_until_from,
        valid_until_to=valid_until_to,
        deadline_from=deadline_from,
        deadline_to=deadline_to,
        limit=limit,
        offset=offset,
    )


# -------------------------------------------------------------------
# Collection
# -------------------------------------------------------------------
@quote_router.post("", response_model=CreatedResponse, status_code=201)
async def create_quote(
    payload: QuoteDraft,
    actor: Actor = Depends(get_current_actor),
    service: QuoteService = Depends(get_quote_service),
):
    return await service.create(actor, payload)


@quote_router.get("", response_model=QuoteListResponse)
async def list_quotes(
    filters: QuoteFilters = Depends(get_filters),
    actor: Actor = Depends(get_current_actor),
    service: QuoteService = Depends(get_quote_service),
):
    return await service.list_quotes(actor, filters)


@quote_router.get("/search", response_model=List[QuoteResponse])
async def search_quotes(
    term: str = Query(..., min_length=1),
    limit: int = Query(20, ge=1, le=100),
    include_expired: bool = False,
    actor: Actor = Depends(get_current_actor),
    service: QuoteService = Depends(get_quote_service),
):
    return await service.search(actor, term, limit=limit, include_expired=include_expired)


@quote_router.get("/stats", response_model=QuoteStats)
async def quote_stats(
    actor: Actor = Depends(get_current_actor),
    service: QuoteService = Depends(get_quote_service),
):
    return await service.stats(actor)


@quote_router.get("/expiring", response_model=List[QuoteResponse])
async def expiring_quotes(
    limit: int = Query(50, ge=1, le=200),
    actor: Actor = Depends(get_current_actor),
    service: QuoteService = Depends(get_quote_service),
):
    return await service.expiring(actor, limit=limit)


@quote_router.get("/overdue", response_model=List[QuoteResponse])
async def overdue_quotes(
    limit: int = Query(50, ge=1, le=200),
    actor: Actor = Depends(get_current_actor),
    service: QuoteService = Depends(get_quote_service),
):
    return await service.overdue(actor, limit=limit)


# -------------------------------------------------------------------
# Single quote
# -------------------------------------------------------------------
@quote_router.get("/{quote_id}", response_model=QuoteResponse)
async def get_quote(
    quote_id: str,
    actor: Actor = Depends(get_current_actor),
    service: QuoteService = Depends(get_quote_service),
):
    return await service.get(actor, quote_id)


@quote_router.patch("/{quote_id}", response_model=QuoteResponse)
async def update_quote(
    quote_id: str,
    payload: QuoteUpdate,
    actor: Actor = Depends(get_current_actor),
    service: QuoteService = Depends(get_quote_service),
):
    return await service.update(actor, quote_id, payload)


@quote_router.delete("/{quote_id}", response_model=MessageResponse)
async def delete_quote(
    quote_id: str,
    actor: Actor = Depends(get_current_actor),
    service: QuoteService = Depends(get_quote_service),
):
    await service.delete(actor, quote_id)
    return MessageResponse(message=f"Quote {quote_id} deleted")


@quote_router.get("/{quote_id}/text", response_model=QuoteTextResponse)
async def quote_text(
    quote_id: str,
    actor: Actor = Depends(get_current_actor),
    service: QuoteService = Depends(get_quote_service),
):
    return QuoteTextResponse(quote_text=await service.quote_text(actor, quote_id))


# -------------------------------------------------------------------
# Lifecycle
# -------------------------------------------------------------------
@quote_router.post("/{quote_id}/status", response_model=QuoteResponse)
async def update_quote_status(
    quote_id: str,
    payload: StatusUpdateRequest,
    actor: Actor = Depends(get_current_actor),
    service: QuoteService = Depends(get_quote_service),
):
    return await service.update_status(
        actor, quote_id, payload.status, notes=payload.notes, rejection_reason=payload.rejection_reason
    )


@quote_router.post("/{quote_id}/send", response_model=QuoteResponse)
async def send_quote(
    quote_id: str,
    payload: SendQuoteRequest,
    actor: Actor = Depends(get_current_actor),
    service: QuoteService = Depends(get_quote_service),
):
    logger.info(f"Sending quote {quote_id}")
    return await service.send(actor, quote_id, quote_text=payload.quote_text, email=payload.email)


@quote_router.post("/{quote_id}/accept", response_model=QuoteResponse)
async def accept_quote(
    quote_id: str,
    actor: Actor = Depends(get_current_actor),
    service: QuoteService = Depends(get_quote_service),
):
    return await service.accept(actor, quote_id)


@quote_router.post("/{quote_id}/reject", response_model=QuoteResponse)
async def reject_quote(
    quote_id: str,
    payload: Optional[RejectQuoteRequest] = None,
    actor: Actor = Depends(get_current_actor),
    service: QuoteService = Depends(get_quote_service),
):
    payload = payload or RejectQuoteRequest()
    return await service.reject(actor, quote_id, reason=payload.reason, notes=payload.notes)


@quote_router.post("/{quote_id}/expire", response_model=QuoteResponse)
async def expire_quote(
    quote_id: str,
    actor: Actor = Depends(get_current_actor),
    service: QuoteService = Depends(get_quote_service),
):
    return await service.expire(actor, quote_id)


@quote_router.post("/{quote_id}/convert", response_model=ConversionResponse)
async def convert_quote(
    quote_id: str,
    actor: Actor = Depends(get_current_actor),
    service: QuoteService = Depends(get_quote_service),
):
    shipment_id = await service.convert(actor, quote_id)
    return ConversionResponse(quote_id=quote_id, shipment_id=shipment_id)


@quote_router.post("/{quote_id}/reconcile", response_model=QuoteResponse)
async def reconcile_conversion(
    quote_id: str,
    payload: ReconcileRequest,
    actor: Actor = Depends(get_current_actor),
    service: QuoteService = Depends(get_quote_service),
):
    return await service.reconcile_conversion(actor, quote_id, shipment_id=payload.shipment_id)


# -------------------------------------------------------------------
# Partner quotes (NFO)
# -------------------------------------------------------------------
@quote_router.post("/{quote_id}/partners", response_model=QuoteResponse)
async def add_partner_quote(
    quote_id: str,
    payload: PartnerQuote,
    actor: Actor = Depends(get_current_actor),
    service: QuoteService = Depends(get_quote_service),
):
    return await service.add_partner_quote(actor, quote_id, payload)


@quote_router.delete("/{quote_id}/partners/{partner_id}", response_model=QuoteResponse)
async def remove_partner_quote(
    quote_id: str,
    partner_id: str,
    actor: Actor = Depends(get_current_actor),
    service: QuoteService = Depends(get_quote_service),
):
    return await service.remove_partner_quote(actor, quote_id, partner_id)


@quote_router.post("/{quote_id}/partners/{partner_id}/selection", response_model=QuoteResponse)
async def select_partner_quote(
    quote_id: str,
    partner_id: str,
    actor: Actor = Depends(get_current_actor),
    service: QuoteService = Depends(get_quote_service),
):
    return await service.select_partner(actor, quote_id, partner_id)


@quote_router.delete("/{quote_id}/partners/{partner_id}/selection", response_model=QuoteResponse)
async def deselect_partner_quote(
    quote_id: str,
    partner_id: str,
    actor: Actor = Depends(get_current_actor),
    service: QuoteService = Depends(get_quote_service),
):
    return await service.deselect_partner(actor, quote_id, partner_id)


@quote_router.get("/{quote_id}/partners/comparison", response_model=PartnerComparison)
async def compare_partner_quotes(
    quote_id: str,
    actor: Actor = Depends(get_current_actor),
    service: QuoteService = Depends(get_quote_service),
):
    return await service.compare_partners(actor, quote_id)
