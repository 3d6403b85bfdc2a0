r"""Quote lifecycle state machine.

    draft --send--> sent --accept--> accepted --convert--> accepted + shipment link
                         \--reject--> rejected
    draft/sent --expire (now > valid_until)--> expired

Conversion has no status of its own: the quote stays ``accepted`` and
becomes read-only once ``converted_to_shipment_id`` is set. Transitions are
only ever taken on explicit request, never inferred from data.
"""

from datetime import datetime
from enum import Enum
from typing import Dict, Optional, Tuple

from courier_quotes.core.errors import ConflictError, IllegalTransition
from courier_quotes.models.quote import Quote, QuoteStatus


class QuoteEvent(str, Enum):
    SEND = "send"
    ACCEPT = "accept"
    REJECT = "reject"
    EXPIRE = "expire"
    CONVERT = "convert"


TRANSITIONS: Dict[Tuple[QuoteStatus, QuoteEvent], QuoteStatus] = {
    (QuoteStatus.DRAFT, QuoteEvent.SEND): QuoteStatus.SENT,
    (QuoteStatus.SENT, QuoteEvent.ACCEPT): QuoteStatus.ACCEPTED,
    (QuoteStatus.SENT, QuoteEvent.REJECT): QuoteStatus.REJECTED,
    (QuoteStatus.DRAFT, QuoteEvent.EXPIRE): QuoteStatus.EXPIRED,
    (QuoteStatus.SENT, QuoteEvent.EXPIRE): QuoteStatus.EXPIRED,
}

NON_TERMINAL = frozenset({QuoteStatus.DRAFT, QuoteStatus.SENT})
EDITABLE = NON_TERMINAL


def _status_label(quote: Quote) -> str:
    if quote.is_converted:
        return f"{quote.status.value} (converted)"
    return quote.status.value


def is_expired(quote: Quote, now: datetime) -> bool:
    """True once a non-terminal quote has passed its validity date."""
    return quote.status in NON_TERMINAL and now > quote.valid_until


def is_editable(quote: Quote) -> bool:
    return quote.status in EDITABLE and not quote.is_converted


def ensure_editable(quote: Quote) -> None:
    if not is_editable(quote):
        reason = "converted quotes are read-only" if quote.is_converted else "only draft and sent quotes can be edited"
        raise IllegalTransition(_status_label(quote), "edit", reason)


def transition(quote: Quote, event: QuoteEvent, now: Optional[datetime] = None) -> QuoteStatus:
    """Return the status ``event`` leads to, or raise ``IllegalTransition``."""
    if event is QuoteEvent.CONVERT:
        ensure_convertible(quote)
        return quote.status

    if quote.is_converted:
        raise IllegalTransition(_status_label(quote), event.value, "converted quotes are read-only")

    target = TRANSITIONS.get((quote.status, event))
    if target is None:
        raise IllegalTransition(quote.status.value, event.value)

    if event is QuoteEvent.EXPIRE and (now is None or now <= quote.valid_until):
        raise IllegalTransition(quote.status.value, event.value, "quote is still within its validity period")

    return target


def event_for_target(status: QuoteStatus, target: QuoteStatus) -> QuoteEvent:
    """Map a requested target status to the one event that reaches it."""
    for (source, event), destination in TRANSITIONS.items():
        if source == status and destination == target:
            return event
    raise IllegalTransition(status.value, f"move to '{target.value}'")


def ensure_convertible(quote: Quote) -> None:
    if quote.is_converted:
        raise ConflictError(
            f"Quote '{quote.id}' was already converted to shipment '{quote.converted_to_shipment_id}'"
        )
    if quote.status != QuoteStatus.ACCEPTED:
        raise IllegalTransition(quote.status.value, QuoteEvent.CONVERT.value, "only accepted quotes can be converted")
    if quote.conversion_pending:
        raise ConflictError(f"Quote '{quote.id}' has a conversion in progress or awaiting reconciliation")
