"""
Admin API

Operator endpoints behind the dashboard: statistics, business configuration,
contacts, conversations and pending approvals.
"""
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends

from chattie.models import (
    AlreadyResolvedError,
    ApproveRequest,
    BusinessConfigResponse,
    BusinessConfigUpdate,
    Channel,
    ContactResponse,
    ConversationDetail,
    ConversationStatus,
    ConversationSummary,
    MessageDirection,
    NotFoundError,
    PendingResponseOut,
    PendingWithContext,
    ScrapedContentUpdate,
    SendMessageRequest,
    StatsResponse,
)
from chattie.services import Services, get_services

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/stats", response_model=StatsResponse)
async def get_stats(services: Services = Depends(get_services)):
    """Dashboard statistics"""
    return StatsResponse(**services.db.get_statistics())


@router.get("/config", response_model=BusinessConfigResponse)
async def get_config(services: Services = Depends(get_services)):
    return BusinessConfigResponse.model_validate(services.db.get_business_config())


@router.put("/config", response_model=BusinessConfigResponse)
async def update_config(update: BusinessConfigUpdate, services: Services = Depends(get_services)):
    """
    Update the business configuration

    Only the fields present in the request body are changed.
    """
    updates = update.model_dump(exclude_unset=True)
    config = services.db.update_business_config(updates)
    logger.info(f"Business configuration updated: {', '.join(updates) or 'no changes'}")
    return BusinessConfigResponse.model_validate(config)


@router.put("/scraped-content", response_model=BusinessConfigResponse)
async def update_scraped_content(update: ScrapedContentUpdate, services: Services = Depends(get_services)):
    """Replace the cached website knowledge used in prompts"""
    config = services.db.set_scraped_content(update.content)
    return BusinessConfigResponse.model_validate(config)


@router.get("/contacts", response_model=List[ContactResponse])
async def list_contacts(services: Services = Depends(get_services)):
    return [ContactResponse.model_validate(c) for c in services.db.list_contacts()]


@router.delete("/contacts/{contact_id}")
async def reset_contact(contact_id: str, services: Services = Depends(get_services)):
    """
    Reset a contact

    Deletes the contact with all its conversations, messages and pending responses.
    """
    services.db.delete_contact(contact_id)
    logger.info(f"Contact {contact_id} reset")
    return {"success": True}


@router.get("/conversations", response_model=List[ConversationSummary])
async def list_conversations(
    status: Optional[ConversationStatus] = None,
    channel: Optional[Channel] = None,
    services: Services = Depends(get_services),
):
    conversations = services.db.list_conversations(status=status, channel=channel)
    return [ConversationSummary.model_validate(c) for c in conversations]


@router.get("/conversations/{conversation_id}", response_model=ConversationDetail)
async def get_conversation(conversation_id: str, services: Services = Depends(get_services)):
    """Conversation with contact, messages and pending responses"""
    conversation = services.db.get_conversation_detail(conversation_id)
    if not conversation:
        raise NotFoundError(f"Conversation {conversation_id} not found")
    return ConversationDetail.model_validate(conversation)


def _toggle(services: Services, conversation_id: str, from_status: ConversationStatus, to_status: ConversationStatus):
    if not services.db.transition_conversation(conversation_id, from_status, to_status):
        conversation = services.db.get_conversation(conversation_id)
        if not conversation:
            raise NotFoundError(f"Conversation {conversation_id} not found")
        raise AlreadyResolvedError(
            f"Conversation {conversation_id} is {conversation.status}, expected {from_status.value}"
        )
    logger.info(f"Conversation {conversation_id} {from_status.value} -> {to_status.value}")
    return ConversationSummary.model_validate(services.db.get_conversation(conversation_id))


@router.post("/conversations/{conversation_id}/pause", response_model=ConversationSummary)
async def pause_conversation(conversation_id: str, services: Services = Depends(get_services)):
    """Owner takes over: inbound messages are stored but no longer answered"""
    return _toggle(services, conversation_id, ConversationStatus.ACTIVE, ConversationStatus.PAUSED)


@router.post("/conversations/{conversation_id}/resume", response_model=ConversationSummary)
async def resume_conversation(conversation_id: str, services: Services = Depends(get_services)):
    return _toggle(services, conversation_id, ConversationStatus.PAUSED, ConversationStatus.ACTIVE)


@router.post("/conversations/{conversation_id}/follow-up", response_model=ConversationSummary)
async def mark_follow_up(conversation_id: str, services: Services = Depends(get_services)):
    """Record an unanswered call attempt"""
    await services.follow_up.mark_follow_up(conversation_id)
    return ConversationSummary.model_validate(services.db.get_conversation(conversation_id))


@router.get("/pending", response_model=List[PendingWithContext])
async def list_pending(services: Services = Depends(get_services)):
    """Pending responses awaiting a decision, newest first"""
    return [
        PendingWithContext(
            **PendingResponseOut.model_validate(pending).model_dump(),
            channel=pending.conversation.channel,
            contact=ContactResponse.model_validate(pending.conversation.contact),
        )
        for pending in services.db.list_pending_responses()
    ]


@router.post("/pending/{pending_id}/approve", response_model=PendingResponseOut)
async def approve_pending(
    pending_id: str,
    request: Optional[ApproveRequest] = None,
    services: Services = Depends(get_services),
):
    """
    Approve a pending response

    With modifiedMessage the owner's text is sent instead of the suggestion.
    """
    modified = request.modified_message if request else None
    pending = await services.approval.approve(pending_id, modified)
    return PendingResponseOut.model_validate(pending)


@router.post("/pending/{pending_id}/reject", response_model=PendingResponseOut)
async def reject_pending(pending_id: str, services: Services = Depends(get_services)):
    return PendingResponseOut.model_validate(services.approval.reject(pending_id))


@router.post("/send")
async def send_message(request: SendMessageRequest, services: Services = Depends(get_services)):
    """
    Send a manual WhatsApp message

    Recorded as OUTBOUND in the contact's WhatsApp conversation.
    """
    db = services.db
    contact = db.find_or_create_contact(phone=request.phone.strip())
    conversation = db.get_or_create_conversation(contact.id, Channel.CHAT)

    delivery_id = await services.approval.deliver(conversation, contact, request.message)
    message = db.save_message(
        conversation.id, contact.id, MessageDirection.OUTBOUND, request.message, external_id=delivery_id
    )
    logger.info(f"Manual message sent to {contact.phone}")
    return {"success": True, "message_id": message.id, "delivery_id": delivery_id}
