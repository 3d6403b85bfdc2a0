import math
from datetime import datetime, timedelta

from courier_quotes.core.config import Settings, settings as default_settings
from courier_quotes.models.quote import Quote, QuoteStatus
from courier_quotes.models.quote_response import QuoteInsights

DAY = timedelta(days=1)


def compute_insights(quote: Quote, now: datetime, config: Settings = default_settings) -> QuoteInsights:
    """
    Derive time and risk signals for a quote as of ``now``.

    Recomputed on every read and never stored.
    """
    quote_age_days = math.floor((now - quote.created_at) / DAY)
    days_until_expiry = math.ceil((quote.valid_until - now) / DAY)

    is_expiring = 0 < days_until_expiry <= config.EXPIRING_SOON_DAYS
    is_overdue = now > quote.valid_until

    # Placeholder heuristic until market comparison data is available
    has_competitive_price = (
        quote.total_price is not None
        and quote.total_price.amount < config.COMPETITIVE_PRICE_THRESHOLD
    )

    is_sent = quote.status == QuoteStatus.SENT
    needs_follow_up = is_sent and quote_age_days > config.FOLLOW_UP_AFTER_DAYS

    conversion_probability = "medium"
    if is_sent and not is_expiring and quote_age_days <= config.HIGH_CONVERSION_MAX_AGE_DAYS:
        conversion_probability = "high"
    elif is_expiring or quote_age_days > config.LOW_CONVERSION_MIN_AGE_DAYS:
        conversion_probability = "low"

    return QuoteInsights(
        quote_age_days=quote_age_days,
        days_until_expiry=days_until_expiry,
        is_expiring=is_expiring,
        is_overdue=is_overdue,
        has_competitive_price=has_competitive_price,
        needs_follow_up=needs_follow_up,
        conversion_probability=conversion_probability,
    )
