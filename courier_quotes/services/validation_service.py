"""Field-level validation rules for quote drafts and partial updates.

The same function serves both paths. On a partial update only the fields the
caller actually supplied are checked, so a date that has since slipped into
the past is not re-validated by an unrelated edit.
"""

from datetime import datetime
from typing import List, Optional, Union

from courier_quotes.core.errors import FieldError
from courier_quotes.models.quote import Address, CurrencyAmount, Dimensions, NfoService
from courier_quotes.models.quote_request import QuoteDraft, QuoteUpdate

MAX_DESCRIPTION_LENGTH = 500
MAX_SPECIAL_INSTRUCTIONS_LENGTH = 1000
MAX_QUOTE_TEXT_LENGTH = 2000
MAX_NOTES_LENGTH = 2000
MAX_CUSTOMER_REFERENCE_LENGTH = 50
MAX_REJECTION_REASON_LENGTH = 500

MIN_DIMENSION, MAX_DIMENSION = 0.1, 10000
MIN_WEIGHT, MAX_WEIGHT = 0.1, 1000
MIN_MARKUP, MAX_MARKUP = 0, 100

DEFAULT_MAX_SELECTED_PARTNER_QUOTES = 2

TEXT_LIMITS = {
    "customer_reference": MAX_CUSTOMER_REFERENCE_LENGTH,
    "special_instructions": MAX_SPECIAL_INSTRUCTIONS_LENGTH,
    "quote_text": MAX_QUOTE_TEXT_LENGTH,
    "notes": MAX_NOTES_LENGTH,
}


def _blank(value: Optional[str]) -> bool:
    return value is None or not value.strip()


def _check_address(prefix: str, address: Address, errors: List[FieldError]) -> None:
    label = prefix.capitalize()
    if _blank(address.city):
        errors.append(FieldError(field=f"{prefix}.city", message=f"{label} city is required"))
    if _blank(address.country):
        errors.append(FieldError(field=f"{prefix}.country", message=f"{label} country is required"))
    if _blank(address.country_code):
        errors.append(FieldError(field=f"{prefix}.country_code", message=f"{label} country code is required"))


def _check_dimensions(dimensions: Dimensions, errors: List[FieldError]) -> None:
    for name in ("length", "width", "height"):
        value = getattr(dimensions, name)
        if value < MIN_DIMENSION or value > MAX_DIMENSION:
            errors.append(FieldError(
                field=f"dimensions.{name}",
                message=f"{name.capitalize()} must be between {MIN_DIMENSION} and {MAX_DIMENSION}",
            ))
    if dimensions.weight < MIN_WEIGHT or dimensions.weight > MAX_WEIGHT:
        errors.append(FieldError(
            field="dimensions.weight",
            message=f"Weight must be between {MIN_WEIGHT} and {MAX_WEIGHT}",
        ))


def _check_amount(field: str, label: str, money: CurrencyAmount, errors: List[FieldError]) -> None:
    if money.amount < 0:
        errors.append(FieldError(field=f"{field}.amount", message=f"{label} cannot be negative"))
    if money.exchange_rate is not None and money.exchange_rate <= 0:
        errors.append(FieldError(field=f"{field}.exchange_rate", message="Exchange rate must be positive"))


def validate_partner_quotes(
    service: NfoService, errors: List[FieldError], max_selected: int = DEFAULT_MAX_SELECTED_PARTNER_QUOTES
) -> None:
    seen = set()
    for index, partner_quote in enumerate(service.partner_quotes):
        field = f"service.partner_quotes[{index}]"
        if _blank(partner_quote.partner_id):
            errors.append(FieldError(field=f"{field}.partner_id", message="Partner is required"))
        elif partner_quote.partner_id in seen:
            errors.append(FieldError(
                field=f"{field}.partner_id",
                message=f"Duplicate quote for partner '{partner_quote.partner_id}'",
            ))
        seen.add(partner_quote.partner_id)

        if partner_quote.quoted_price is None:
            errors.append(FieldError(field=f"{field}.quoted_price", message="Quoted price is required"))
        else:
            _check_amount(f"{field}.quoted_price", "Quoted price", partner_quote.quoted_price, errors)

    selected = sum(1 for pq in service.partner_quotes if pq.is_selected)
    if selected > max_selected:
        errors.append(FieldError(
            field="service.partner_quotes",
            message=f"At most {max_selected} partner quotes can be selected",
        ))


def validate_quote_data(
    data: Union[QuoteDraft, QuoteUpdate],
    *,
    now: datetime,
    partial: bool = False,
    max_selected_partner_quotes: int = DEFAULT_MAX_SELECTED_PARTNER_QUOTES,
) -> List[FieldError]:
    """Return every rule violation in ``data``; an empty list means valid."""
    errors: List[FieldError] = []

    # Presence
    if not partial:
        if _blank(getattr(data, "customer_id", None)):
            errors.append(FieldError(field="customer_id", message="Customer is required"))
        for name, label in (
            ("service", "Service type"),
            ("origin", "Origin"),
            ("destination", "Destination"),
            ("dimensions", "Dimensions"),
            ("deadline", "Deadline"),
            ("valid_until", "Valid until date"),
        ):
            if getattr(data, name) is None:
                errors.append(FieldError(field=name, message=f"{label} is required"))

    if data.description is not None or not partial:
        if _blank(data.description):
            errors.append(FieldError(field="description", message="Description is required"))
        elif len(data.description) > MAX_DESCRIPTION_LENGTH:
            errors.append(FieldError(
                field="description",
                message=f"Description must be at most {MAX_DESCRIPTION_LENGTH} characters",
            ))

    if data.origin is not None:
        _check_address("origin", data.origin, errors)
    if data.destination is not None:
        _check_address("destination", data.destination, errors)

    # Length ceilings
    for name, limit in TEXT_LIMITS.items():
        value = getattr(data, name)
        if value is not None and len(value) > limit:
            label = name.replace("_", " ").capitalize()
            errors.append(FieldError(field=name, message=f"{label} must be at most {limit} characters"))

    # Numeric ranges
    if data.dimensions is not None:
        _check_dimensions(data.dimensions, errors)

    if data.markup is not None and (data.markup < MIN_MARKUP or data.markup > MAX_MARKUP):
        errors.append(FieldError(
            field="markup",
            message=f"Markup must be between {MIN_MARKUP} and {MAX_MARKUP} percent",
        ))
    if data.base_cost is not None:
        _check_amount("base_cost", "Base cost", data.base_cost, errors)
    if data.total_price is not None:
        _check_amount("total_price", "Total price", data.total_price, errors)

    if isinstance(data.service, NfoService):
        validate_partner_quotes(data.service, errors, max_selected_partner_quotes)

    # Temporal
    if data.deadline is not None and data.deadline <= now:
        errors.append(FieldError(field="deadline", message="Deadline must be in the future"))
    if data.valid_until is not None and data.valid_until <= now:
        errors.append(FieldError(field="valid_until", message="Valid until date must be in the future"))

    return errors


def validate_rejection_reason(reason: Optional[str]) -> List[FieldError]:
    if reason is not None and len(reason) > MAX_REJECTION_REASON_LENGTH:
        return [FieldError(
            field="rejection_reason",
            message=f"Rejection reason must be at most {MAX_REJECTION_REASON_LENGTH} characters",
        )]
    return []
