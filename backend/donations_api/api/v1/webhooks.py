"""Provider webhook receivers.

An invalid signature or an unparsable payload is rejected (400); a signature
that cannot be checked because the provider is unreachable is a 503 so the
provider redelivers. Every verified event is acknowledged with 200, including
ones that could not be matched or applied, and ones the provider itself
refused to look up or capture.
"""

import logging

from fastapi import APIRouter, Depends, Request

from donations_api.core.dependencies import get_providers, get_reconciler
from donations_api.core.exceptions import ValidationError
from donations_api.schemas.common import ErrorResponse
from donations_api.schemas.payment import WebhookAck
from donations_api.services.providers.base import PaymentProvider
from donations_api.services.reconciler import ReconcileOutcome, Reconciler

logger = logging.getLogger(__name__)

router = APIRouter()

ERROR_RESPONSES = {400: {"model": ErrorResponse}, 503: {"model": ErrorResponse}}


async def _receive(
    request: Request,
    provider: PaymentProvider,
    reconciler: Reconciler,
) -> WebhookAck:
    payload = await request.body()
    try:
        event = await provider.normalize_webhook_event(payload, request.headers)
    except ValidationError as exc:
        logger.error("Verified %s webhook could not be processed: %s", provider.name, exc.detail)
        return WebhookAck(result=ReconcileOutcome.ERROR.value)
    if event is None:
        return WebhookAck(result="ignored")
    result = await reconciler.handle(event)
    logger.info(
        "%s webhook %s for %s: %s",
        provider.name,
        event.event_type,
        event.provider_payment_id,
        result.outcome.value,
    )
    return WebhookAck(result=result.outcome.value)


@router.post("/stripe", response_model=WebhookAck, responses=ERROR_RESPONSES)
async def stripe_webhook(
    request: Request,
    providers: dict[str, PaymentProvider] = Depends(get_providers),
    reconciler: Reconciler = Depends(get_reconciler),
) -> WebhookAck:
    """Stripe card, Apple Pay and Google Pay events share one endpoint."""
    return await _receive(request, providers["stripe"], reconciler)


@router.post("/paypal", response_model=WebhookAck, responses=ERROR_RESPONSES)
async def paypal_webhook(
    request: Request,
    providers: dict[str, PaymentProvider] = Depends(get_providers),
    reconciler: Reconciler = Depends(get_reconciler),
) -> WebhookAck:
    return await _receive(request, providers["paypal"], reconciler)
