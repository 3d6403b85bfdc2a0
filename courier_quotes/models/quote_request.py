from datetime import datetime
from typing import List, Optional

from pydantic import EmailStr, Field

from courier_quotes.models.quote import (
    Address,
    Currency,
    CurrencyAmount,
    Dimensions,
    Priority,
    QuoteModel,
    QuoteStatus,
    ServicePayload,
    ServiceType,
)


class QuoteDraft(QuoteModel):
    """Input for creating a quote.

    Everything is optional at the type level so that the validation rules
    can report every missing field at once instead of failing on the first.
    """

    customer_id: Optional[str] = None
    customer_reference: Optional[str] = None
    inquiry_source_id: Optional[str] = None
    priority: Priority = Priority.STANDARD
    service: Optional[ServicePayload] = None
    origin: Optional[Address] = None
    destination: Optional[Address] = None
    dimensions: Optional[Dimensions] = None
    description: Optional[str] = None
    special_instructions: Optional[str] = None
    quote_text: Optional[str] = None
    notes: Optional[str] = None
    base_cost: Optional[CurrencyAmount] = None
    markup: Optional[float] = None
    total_price: Optional[CurrencyAmount] = None
    deadline: Optional[datetime] = None
    valid_until: Optional[datetime] = None


class QuoteUpdate(QuoteModel):
    """Partial update. Fields left as None are not touched and not re-validated."""

    customer_reference: Optional[str] = None
    inquiry_source_id: Optional[str] = None
    priority: Optional[Priority] = None
    service: Optional[ServicePayload] = None
    origin: Optional[Address] = None
    destination: Optional[Address] = None
    dimensions: Optional[Dimensions] = None
    description: Optional[str] = None
    special_instructions: Optional[str] = None
    quote_text: Optional[str] = None
    notes: Optional[str] = None
    base_cost: Optional[CurrencyAmount] = None
    markup: Optional[float] = None
    total_price: Optional[CurrencyAmount] = None
    deadline: Optional[datetime] = None
    valid_until: Optional[datetime] = None

    def changes(self) -> dict:
        return {
            name: getattr(self, name)
            for name in type(self).model_fields
            if getattr(self, name) is not None
        }


class StatusUpdateRequest(QuoteModel):
    status: QuoteStatus
    notes: Optional[str] = None
    rejection_reason: Optional[str] = None


class RejectQuoteRequest(QuoteModel):
    reason: Optional[str] = None
    notes: Optional[str] = None


class EmailOptions(QuoteModel):
    to: List[EmailStr] = Field(default_factory=list)
    cc: List[EmailStr] = Field(default_factory=list)
    subject: Optional[str] = None
    message: Optional[str] = None


class SendQuoteRequest(QuoteModel):
    quote_text: Optional[str] = None
    email: Optional[EmailOptions] = None


class QuoteFilters(QuoteModel):
    status: List[QuoteStatus] = Field(default_factory=list)
    service_type: List[ServiceType] = Field(default_factory=list)
    priority: List[Priority] = Field(default_factory=list)
    customer_id: Optional[str] = None
    assigned_courier_id: Optional[str] = None
    search: Optional[str] = None
    created_from: Optional[datetime] = None
    created_to: Optional[datetime] = None
    valid_until_from: Optional[datetime] = None
    valid_until_to: Optional[datetime] = None
    deadline_from: Optional[datetime] = None
    deadline_to: Optional[datetime] = None
    limit: int = Field(50, ge=1, le=200)
    offset: int = Field(0, ge=0)


class PricingRequest(QuoteModel):
    base_cost: float = Field(..., ge=0)
    markup: float = Field(..., ge=0, le=100)
    currency: Currency = Currency.EUR


class ReconcileRequest(QuoteModel):
    shipment_id: Optional[str] = None
