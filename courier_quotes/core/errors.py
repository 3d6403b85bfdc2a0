from typing import List, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from courier_quotes.core.logger import get_logger

logger = get_logger(__name__)


class FieldError(BaseModel):
    field: str
    message: str


# -------------------------------------------------------------------
# Error hierarchy
# -------------------------------------------------------------------
class QuoteError(Exception):
    """Base class for every error the quote service surfaces to callers."""

    kind = "quote_error"
    status_code = 400
    retryable = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def payload(self) -> dict:
        return {"error": self.kind, "detail": self.message, "retryable": self.retryable}


class ValidationError(QuoteError):
    kind = "validation_error"
    status_code = 422

    def __init__(self, errors: List[FieldError]):
        self.errors = list(errors)
        summary = "; ".join(f"{e.field}: {e.message}" for e in self.errors)
        super().__init__(f"Validation failed: {summary}")

    @classmethod
    def single(cls, field: str, message: str) -> "ValidationError":
        return cls([FieldError(field=field, message=message)])

    def payload(self) -> dict:
        data = super().payload()
        data["errors"] = [e.model_dump() for e in self.errors]
        return data


class PermissionDenied(QuoteError):
    kind = "permission_denied"
    status_code = 403

    def __init__(self, capability: str, role: Optional[str]):
        self.capability = capability
        self.role = role
        super().__init__(f"Role '{role}' lacks the '{capability}' capability")

    def payload(self) -> dict:
        data = super().payload()
        data.update(capability=self.capability, role=self.role)
        return data


class IllegalTransition(QuoteError):
    kind = "illegal_transition"
    status_code = 409

    def __init__(self, current_status: str, attempted: str, reason: Optional[str] = None):
        self.current_status = current_status
        self.attempted = attempted
        message = f"Cannot {attempted} a quote in status '{current_status}'"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)

    def payload(self) -> dict:
        data = super().payload()
        data.update(current_status=self.current_status, attempted=self.attempted)
        return data


class NotFound(QuoteError):
    kind = "not_found"
    status_code = 404

    def __init__(self, entity: str, entity_id: str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} '{entity_id}' not found")

    def payload(self) -> dict:
        data = super().payload()
        data.update(entity=self.entity, entity_id=self.entity_id)
        return data


class ConflictError(QuoteError):
    kind = "conflict"
    status_code = 409


class StaleWriteError(ConflictError):
    """A conditional write lost against a concurrent writer."""

    kind = "stale_write"

    def __init__(self, quote_id: str, expected_version: int, actual_version: int):
        self.quote_id = quote_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Quote '{quote_id}' changed concurrently "
            f"(expected version {expected_version}, found {actual_version})"
        )


class SelectionLimitReached(ConflictError):
    kind = "selection_limit_reached"

    def __init__(self, limit: int):
        self.limit = limit
        super().__init__(f"Selection limit reached: at most {limit} partner quotes can be selected")

    def payload(self) -> dict:
        data = super().payload()
        data["limit"] = self.limit
        return data


class TransientError(QuoteError):
    kind = "transient_error"
    status_code = 503
    retryable = True


class DeliveryFailed(TransientError):
    kind = "delivery_failed"


class StoreRejected(QuoteError):
    """A backing service refused the request; retrying unchanged will not help."""

    kind = "store_rejected"
    status_code = 502

    def __init__(self, message: str, upstream_status: int):
        self.upstream_status = upstream_status
        super().__init__(message)

    def payload(self) -> dict:
        data = super().payload()
        data["upstream_status"] = self.upstream_status
        return data


class ConversionIncompleteError(QuoteError):
    """The shipment exists but could not be linked back to its quote.

    Retrying would create a second shipment, so this needs manual
    reconciliation.
    """

    kind = "conversion_incomplete"
    status_code = 500

    def __init__(self, quote_id: str, shipment_id: str, cause: Optional[str] = None):
        self.quote_id = quote_id
        self.shipment_id = shipment_id
        message = f"Shipment '{shipment_id}' was created but quote '{quote_id}' was not linked to it"
        if cause:
            message = f"{message} ({cause})"
        super().__init__(message)

    def payload(self) -> dict:
        data = super().payload()
        data.update(quote_id=self.quote_id, shipment_id=self.shipment_id)
        return data


# -------------------------------------------------------------------
# FastAPI wiring
# -------------------------------------------------------------------
async def quote_error_handler(request: Request, exc: QuoteError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    else:
        logger.warning(f"{request.method} {request.url.path} refused: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.payload())


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(QuoteError, quote_error_handler)
