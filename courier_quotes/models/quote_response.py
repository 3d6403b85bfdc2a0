from typing import Dict, List, Literal, Optional

from pydantic import BaseModel

from courier_quotes.models.quote import Currency, PartnerQuote, Quote


class PricingCalculation(BaseModel):
    base_cost: float
    markup: float
    markup_amount: float
    total_price: float
    currency: Currency
    # Share of the final price, not of the base cost
    profit_margin: float


class QuoteInsights(BaseModel):
    quote_age_days: int
    days_until_expiry: int
    is_expiring: bool
    is_overdue: bool
    has_competitive_price: bool
    needs_follow_up: bool
    conversion_probability: Literal["high", "medium", "low"]


class RankedPartnerQuote(PartnerQuote):
    is_lowest: bool = False
    is_highest: bool = False


class PartnerComparison(BaseModel):
    count: int
    lowest: Optional[RankedPartnerQuote] = None
    highest: Optional[RankedPartnerQuote] = None
    average_price: float = 0.0
    selected_count: int = 0
    entries: List[RankedPartnerQuote]


class QuoteResponse(Quote):
    pricing_visible: bool = True
    insights: QuoteInsights


class QuoteListResponse(BaseModel):
    items: List[QuoteResponse]
    total: int
    has_more: bool


class QuoteStats(BaseModel):
    total: int
    by_status: Dict[str, int]
    by_service_type: Dict[str, int]
    by_priority: Dict[str, int]
    expiring_quotes: int
    # None when the caller may not see pricing
    total_value: Optional[float] = None
    average_value: Optional[float] = None
    conversion_rate: float


class CreatedResponse(BaseModel):
    id: str
    quote_number: str


class ConversionResponse(BaseModel):
    quote_id: str
    shipment_id: str


class QuoteTextResponse(BaseModel):
    quote_text: str


class MessageResponse(BaseModel):
    message: str
