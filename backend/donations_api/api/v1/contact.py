"""Contact form: forwarded to the charity's inbox in the background."""

import logging

from fastapi import APIRouter, Depends

from donations_api.core.dependencies import get_dispatcher
from donations_api.schemas.contact import ContactAck, ContactMessageCreate
from donations_api.services import email
from donations_api.services.side_effects import SideEffectDispatcher

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("", response_model=ContactAck, status_code=202)
async def submit_contact_message(
    body: ContactMessageCreate,
    dispatcher: SideEffectDispatcher = Depends(get_dispatcher),
) -> ContactAck:
    logger.info("Contact message from %s: %s", body.email, body.subject)
    dispatcher.dispatch("contact-message", lambda: email.send_contact_message(body))
    return ContactAck()
