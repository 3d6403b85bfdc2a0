from typing import List

from courier_quotes.core.errors import NotFound, SelectionLimitReached
from courier_quotes.models.quote import PartnerQuote
from courier_quotes.models.quote_response import PartnerComparison, RankedPartnerQuote
from courier_quotes.services.validation_service import DEFAULT_MAX_SELECTED_PARTNER_QUOTES


def _price(partner_quote: PartnerQuote) -> float:
    return partner_quote.quoted_price.amount if partner_quote.quoted_price else 0.0


def compare_partner_quotes(partner_quotes: List[PartnerQuote]) -> PartnerComparison:
    """
    Rank partner offers by quoted amount, cheapest first.

    Amounts are compared as quoted, without currency conversion.
    """
    if not partner_quotes:
        return PartnerComparison(count=0, entries=[])

    lowest = min(partner_quotes, key=_price)
    highest = max(partner_quotes, key=_price)
    average = sum(_price(pq) for pq in partner_quotes) / len(partner_quotes)

    entries = [
        RankedPartnerQuote(
            **pq.model_dump(),
            is_lowest=pq.partner_id == lowest.partner_id,
            is_highest=pq.partner_id == highest.partner_id,
        )
        for pq in sorted(partner_quotes, key=_price)
    ]
    by_id = {entry.partner_id: entry for entry in entries}

    return PartnerComparison(
        count=len(entries),
        lowest=by_id[lowest.partner_id],
        highest=by_id[highest.partner_id],
        average_price=average,
        selected_count=sum(1 for entry in entries if entry.is_selected),
        entries=entries,
    )


def _find(partner_quotes: List[PartnerQuote], partner_id: str) -> int:
    for index, pq in enumerate(partner_quotes):
        if pq.partner_id == partner_id:
            return index
    raise NotFound("Partner quote", partner_id)


def select_partner_quote(
    partner_quotes: List[PartnerQuote],
    partner_id: str,
    limit: int = DEFAULT_MAX_SELECTED_PARTNER_QUOTES,
) -> List[PartnerQuote]:
    """
    Return a copy of ``partner_quotes`` with ``partner_id`` selected.

    Refuses with ``SelectionLimitReached`` rather than evicting an existing
    selection; the input list is never modified.
    """
    index = _find(partner_quotes, partner_id)
    if partner_quotes[index].is_selected:
        return [pq.model_copy() for pq in partner_quotes]

    selected = sum(1 for pq in partner_quotes if pq.is_selected)
    if selected >= limit:
        raise SelectionLimitReached(limit)

    return [
        pq.model_copy(update={"is_selected": True}) if i == index else pq.model_copy()
        for i, pq in enumerate(partner_quotes)
    ]


def deselect_partner_quote(partner_quotes: List[PartnerQuote], partner_id: str) -> List[PartnerQuote]:
    index = _find(partner_quotes, partner_id)
    return [
        pq.model_copy(update={"is_selected": False}) if i == index else pq.model_copy()
        for i, pq in enumerate(partner_quotes)
    ]
