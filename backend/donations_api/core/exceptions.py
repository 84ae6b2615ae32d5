"""RFC 7807 Problem Details error handling and the donation error taxonomy."""

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException


class ProblemDetailError(Exception):
    """Raise for RFC 7807 problem+json responses."""

    def __init__(
        self,
        status: int,
        title: str,
        detail: str,
        error_type: str | None = None,
    ):
        super().__init__(detail)
        self.status = status
        self.title = title
        self.detail = detail
        self.error_type = error_type or "about:blank"


class DonationServiceError(ProblemDetailError):
    """Base for errors raised by the ledger, reconciler and collaborators."""

    status = 500
    title = "Internal Error"

    def __init__(self, detail: str):
        super().__init__(
            status=type(self).status,
            title=type(self).title,
            detail=detail,
            error_type=f"urn:donations:{type(self).__name__}",
        )


class ValidationError(DonationServiceError):
    """Bad input the caller can correct."""

    status = 422
    title = "Validation Error"


class NotFoundError(DonationServiceError):
    status = 404
    title = "Not Found"


class ConflictError(DonationServiceError):
    """Illegal state transition: hijacked session or post-terminal event."""

    status = 409
    title = "Conflict"


class UnknownPaymentError(DonationServiceError):
    """A provider event references an id the ledger does not know (yet)."""

    status = 404
    title = "Unknown Payment"


class ProviderUnavailableError(DonationServiceError):
    """Network failure or timeout talking to a payment or rate provider."""

    status = 503
    title = "Provider Unavailable"


class WebhookSignatureError(DonationServiceError):
    status = 400
    title = "Invalid Webhook Signature"


class EmailDeliveryError(DonationServiceError):
    status = 502
    title = "Email Delivery Failed"


async def problem_detail_handler(request: Request, exc: ProblemDetailError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status,
        content={
            "type": exc.error_type,
            "title": exc.title,
            "status": exc.status,
            "detail": exc.detail,
            "instance": str(request.url.path),
        },
        media_type="application/problem+json",
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "type": "about:blank",
            "title": exc.detail if isinstance(exc.detail, str) else "Error",
            "status": exc.status_code,
            "detail": exc.detail,
            "instance": str(request.url.path),
        },
        media_type="application/problem+json",
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content={
            "type": "about:blank",
            "title": "Validation Error",
            "status": 422,
            "detail": jsonable_encoder(exc.errors()),
            "instance": str(request.url.path),
        },
        media_type="application/problem+json",
    )
