from typing import Union

from courier_quotes.models.quote import Quote, ServiceType

SERVICE_LABELS = {
    ServiceType.OBC: "On Board Courier",
    ServiceType.NFO: "Next Flight Out",
}


def format_price(quote: Quote) -> str:
    if quote.total_price is None:
        return "Price on request"
    return f"{quote.total_price.amount:,.2f} {quote.total_price.currency.value}"


def service_label(service_type: Union[ServiceType, str]) -> str:
    return SERVICE_LABELS[ServiceType(service_type)]


def generate_quote_text(quote: Quote) -> str:
    """Default customer-facing text for a quote without an authored quote text."""
    label = service_label(quote.service_type)
    origin, destination = quote.origin, quote.destination

    return (
        "Dear Valued Customer,\n"
        "\n"
        f"Thank you for your inquiry regarding {label} service from "
        f"{origin.city}, {origin.country} to {destination.city}, {destination.country}.\n"
        "\n"
        "Service Details:\n"
        f"- Item: {quote.description}\n"
        f"- Service Type: {label}\n"
        f"- Route: {origin.city} → {destination.city}\n"
        f"- Delivery Deadline: {quote.deadline.date().isoformat()}\n"
        "\n"
        "Quote Details:\n"
        f"- Total Price: {format_price(quote)}\n"
        f"- Quote Valid Until: {quote.valid_until.date().isoformat()}\n"
        "\n"
        "This quote includes all necessary arrangements for secure and timely delivery "
        "of your shipment.\n"
        "\n"
        "Please let us know if you have any questions or if you would like to proceed "
        "with this shipment.\n"
        "\n"
        "Best regards,\n"
        "Your Logistics Team"
    )


def default_subject(quote: Quote) -> str:
    return (
        f"{quote.service_type.value} Quote {quote.quote_number} - "
        f"{quote.origin.city} to {quote.destination.city}"
    )
