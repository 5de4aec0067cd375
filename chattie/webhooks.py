"""
Provider webhooks

Inbound WhatsApp messages (Twilio form posts, Unipile JSON events), delivery
receipts and a manual trigger for the email poll. Providers are acknowledged
immediately; orchestration continues as a background task.
"""
import logging
from typing import List

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request
from fastapi.responses import Response
from pydantic import ValidationError

from chattie.models import Channel, TwilioWhatsAppMessage, UnipileWebhook
from chattie.services import Services, get_services
from chattie.whatsapp_client import (
    TwilioWhatsAppClient,
    extract_phone_from_provider_id,
    is_own_message,
    parse_twilio_phone,
)

logger = logging.getLogger(__name__)

EMPTY_TWIML = "<Response></Response>"

whatsapp_router = APIRouter(prefix="/whatsapp", tags=["whatsapp"])
gmail_router = APIRouter(prefix="/gmail", tags=["gmail"])


async def handle_twilio_message(services: Services, message: TwilioWhatsAppMessage, media: List[str]):
    """Background handler for a Twilio WhatsApp message"""
    phone = parse_twilio_phone(message.From)
    try:
        await services.orchestrator.handle_inbound(
            Channel.CHAT,
            phone,
            message.Body or "",
            media=media,
            display_name=message.ProfileName,
            external_message_id=message.MessageSid,
        )
    except Exception as e:
        logger.error(f"Error processing Twilio message {message.MessageSid} from {phone}: {e}")


async def handle_unipile_message(services: Services, payload: UnipileWebhook):
    """Background handler for a Unipile WhatsApp message"""
    phone = extract_phone_from_provider_id(payload.sender.attendee_provider_id)
    try:
        await services.orchestrator.handle_inbound(
            Channel.CHAT,
            phone,
            payload.message or "",
            media=[a.url for a in payload.attachments if a.url],
            display_name=payload.sender.attendee_name,
            external_message_id=payload.message_id,
            thread_id=payload.chat_id,
        )
    except Exception as e:
        logger.error(f"Error processing Unipile message {payload.message_id} from {phone}: {e}")


@whatsapp_router.post("/webhook")
async def twilio_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    services: Services = Depends(get_services),
):
    """
    Incoming WhatsApp message from Twilio

    Acknowledged with empty TwiML before the message is processed.
    """
    form = dict(await request.form())

    if services.settings.twilio_validate_signature and isinstance(services.chat, TwilioWhatsAppClient):
        signature = request.headers.get("X-Twilio-Signature", "")
        if not services.chat.validate_signature(signature, str(request.url), form):
            logger.warning("Rejected Twilio webhook with invalid signature")
            raise HTTPException(status_code=403, detail="Invalid signature")

    try:
        message = TwilioWhatsAppMessage.model_validate(form)
    except ValidationError as e:
        # Twilio retries on errors; a malformed post is only logged
        logger.error(f"Malformed Twilio webhook: {e}")
        return Response(content=EMPTY_TWIML, media_type="text/xml")

    media = [form[f"MediaUrl{i}"] for i in range(message.NumMedia) if form.get(f"MediaUrl{i}")]
    logger.info(f"Incoming WhatsApp from {parse_twilio_phone(message.From)}: {message.Body[:50]}")

    background_tasks.add_task(handle_twilio_message, services, message, media)
    return Response(content=EMPTY_TWIML, media_type="text/xml")


@whatsapp_router.post("/status")
async def twilio_status(request: Request):
    """Delivery receipt from Twilio"""
    form = await request.form()
    logger.info(f"Message {form.get('MessageSid')} status: {form.get('MessageStatus')}")
    return Response(status_code=200)


@whatsapp_router.post("/unipile")
async def unipile_webhook(
    payload: UnipileWebhook,
    background_tasks: BackgroundTasks,
    services: Services = Depends(get_services),
):
    """
    Incoming event from Unipile

    Only received messages from other people are processed.
    """
    if payload.event != "message_received":
        logger.info(f"Unipile event: {payload.event} (ignored)")
        return {"status": "received"}

    if not payload.sender:
        logger.warning(f"Unipile message {payload.message_id} without sender (ignored)")
        return {"status": "received"}

    if is_own_message(payload):
        logger.info("Ignoring own message from Unipile")
        return {"status": "received"}

    background_tasks.add_task(handle_unipile_message, services, payload)
    return {"status": "received"}


@gmail_router.post("/check")
async def check_email(services: Services = Depends(get_services)):
    """
    Manually run one email poll (new customer mail + approval replies)
    """
    if not services.email:
        raise HTTPException(status_code=503, detail="Email channel not configured")

    try:
        resolved = await services.check_email()
        return {"success": True, "resolved": resolved}
    except Exception as e:
        logger.error(f"Error checking emails: {e}")
        raise HTTPException(status_code=500, detail="Failed to check emails")
