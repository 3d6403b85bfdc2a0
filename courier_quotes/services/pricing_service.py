from decimal import ROUND_HALF_UP, Decimal

from courier_quotes.models.quote import Currency, CurrencyAmount
from courier_quotes.models.quote_response import PricingCalculation

CENT = Decimal("0.01")


def round2(value: float) -> float:
    """Round half-up to the cent, working on the decimal string of the value."""
    return float(Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP))


def calculate_pricing(
    base_cost: float, markup: float, currency: Currency = Currency.EUR
) -> PricingCalculation:
    markup_amount = round2(base_cost * markup / 100)
    total_price = round2(base_cost + markup_amount)
    profit_margin = round2(markup_amount / total_price * 100) if base_cost > 0 else 0.0

    return PricingCalculation(
        base_cost=base_cost,
        markup=markup,
        markup_amount=markup_amount,
        total_price=total_price,
        currency=currency,
        profit_margin=profit_margin,
    )


def price_total(base_cost: CurrencyAmount, markup: float) -> CurrencyAmount:
    """Authoritative total price for a base cost and markup pair."""
    calculation = calculate_pricing(base_cost.amount, markup, base_cost.currency)
    return CurrencyAmount(
        amount=calculation.total_price,
        currency=base_cost.currency,
        exchange_rate=base_cost.exchange_rate,
    )
