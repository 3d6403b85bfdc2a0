from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator


class ServiceType(str, Enum):
    OBC = "OBC"  # on-board courier
    NFO = "NFO"  # next flight out


class Priority(str, Enum):
    STANDARD = "standard"
    URGENT = "urgent"
    CRITICAL = "critical"


class QuoteStatus(str, Enum):
    DRAFT = "draft"
    SENT = "sent"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    EXPIRED = "expired"


class Currency(str, Enum):
    EUR = "EUR"
    USD = "USD"


class LengthUnit(str, Enum):
    CM = "cm"
    INCH = "inch"


class WeightUnit(str, Enum):
    KG = "kg"
    LB = "lb"


class QuoteModel(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    @field_validator("*", mode="after")
    @classmethod
    def _assume_utc(cls, value):
        # Naive timestamps are taken to be UTC
        if isinstance(value, datetime) and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class Address(QuoteModel):
    street: Optional[str] = None
    city: str = ""
    postal_code: Optional[str] = None
    country: str = ""
    country_code: str = ""


class Dimensions(QuoteModel):
    length: float
    width: float
    height: float
    weight: float
    unit: LengthUnit = LengthUnit.CM
    weight_unit: WeightUnit = WeightUnit.KG


class CurrencyAmount(QuoteModel):
    amount: float
    currency: Currency = Currency.EUR
    exchange_rate: Optional[float] = None


class FlightDetails(QuoteModel):
    flight_number: Optional[str] = None
    airline: Optional[str] = None
    departure_time: Optional[datetime] = None
    arrival_time: Optional[datetime] = None


class PartnerQuote(QuoteModel):
    """A competing offer from a partner carrier (NFO only)."""

    partner_id: str
    partner_name: str
    quoted_price: Optional[CurrencyAmount] = None
    transit_time: Optional[float] = Field(None, description="Transit time in hours")
    valid_until: Optional[datetime] = None
    received_at: Optional[datetime] = None
    notes: Optional[str] = None
    is_selected: bool = False


class ObcService(QuoteModel):
    service_type: Literal["OBC"] = "OBC"
    flight_details: Optional[FlightDetails] = None
    assigned_courier_id: Optional[str] = None


class NfoService(QuoteModel):
    service_type: Literal["NFO"] = "NFO"
    partner_quotes: List[PartnerQuote] = Field(default_factory=list)
    selected_partner_quote: Optional[str] = None


ServicePayload = Annotated[Union[ObcService, NfoService], Field(discriminator="service_type")]


class StatusChange(QuoteModel):
    from_status: QuoteStatus
    to_status: QuoteStatus
    changed_at: datetime
    changed_by: str
    notes: Optional[str] = None


class Quote(QuoteModel):
    id: str = ""
    quote_number: str = ""
    version: int = 0

    customer_id: str
    customer_reference: Optional[str] = None
    inquiry_source_id: Optional[str] = None
    priority: Priority = Priority.STANDARD
    service: ServicePayload

    origin: Address
    destination: Address
    dimensions: Dimensions
    description: str
    special_instructions: Optional[str] = None
    quote_text: Optional[str] = None
    notes: Optional[str] = None

    base_cost: Optional[CurrencyAmount] = None
    markup: Optional[float] = None
    total_price: Optional[CurrencyAmount] = None

    deadline: datetime
    valid_until: datetime

    status: QuoteStatus = QuoteStatus.DRAFT
    status_history: List[StatusChange] = Field(default_factory=list)
    sent_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    converted_to_shipment_id: Optional[str] = None
    conversion_pending: bool = False

    created_at: datetime
    updated_at: datetime
    created_by: Optional[str] = None
    updated_by: Optional[str] = None

    @computed_field
    @property
    def service_type(self) -> ServiceType:
        return ServiceType(self.service.service_type)

    @property
    def is_converted(self) -> bool:
        return self.converted_to_shipment_id is not None

    @property
    def partner_quotes(self) -> List[PartnerQuote]:
        if isinstance(self.service, NfoService):
            return self.service.partner_quotes
        return []
