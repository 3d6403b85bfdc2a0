from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from courier_quotes.core.config import settings
from courier_quotes.core.errors import register_exception_handlers
from courier_quotes.core.logger import get_logger
from courier_quotes.core.middleware import log_requests
from courier_quotes.routes.pricing_router import pricing_router
from courier_quotes.routes.quote_router import quote_router
from courier_quotes.services.customer_service import HttpCustomerDirectory
from courier_quotes.services.notification_service import EmailNotifier
from courier_quotes.services.quote_repository import HttpQuoteRepository, InMemoryQuoteRepository
from courier_quotes.services.quote_service import QuoteService
from courier_quotes.services.shipment_service import HttpShipmentClient

logger = get_logger(__name__)


def build_quote_service() -> QuoteService:
    if settings.QUOTE_STORE_URL:
        repository = HttpQuoteRepository(settings.QUOTE_STORE_URL, token=settings.SERVICE_TOKEN)
    else:
        logger.warning("QUOTE_STORE_URL not set, quotes are kept in memory only")
        repository = InMemoryQuoteRepository()

    return QuoteService(
        repository=repository,
        notifier=EmailNotifier(),
        shipments=HttpShipmentClient(),
        customers=HttpCustomerDirectory(),
    )


def create_app(quote_service: Optional[QuoteService] = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if getattr(app.state, "quote_service", None) is None:
            app.state.quote_service = build_quote_service()

        logger.info(f" {settings.APP_NAME} startup complete")

        yield

        logger.info(f" {settings.APP_NAME} shutdown initiated")

    app = FastAPI(title=settings.APP_NAME, lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.middleware("http")(log_requests)
    register_exception_handlers(app)
    app.include_router(quote_router)
    app.include_router(pricing_router)
    if quote_service is not None:
        app.state.quote_service = quote_service
    return app


app = create_app()
