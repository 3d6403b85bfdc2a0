from fastapi import APIRouter

from courier_quotes.models.quote_request import PricingRequest
from courier_quotes.models.quote_response import PricingCalculation
from courier_quotes.services.pricing_service import calculate_pricing

pricing_router = APIRouter(prefix="/pricing", tags=["Pricing"])


@pricing_router.post("/calculate", response_model=PricingCalculation)
async def calculate(payload: PricingRequest):
    """
    Preview markup amount, total price and profit margin for a base cost.
    Nothing is stored.
    """
    return calculate_pricing(payload.base_cost, payload.markup, payload.currency)
