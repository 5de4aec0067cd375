"""
Conversation Orchestrator

Turns one inbound channel event into a stored message and, unless the
conversation is paused, an AI-suggested reply handed to the approval workflow.
"""
import logging
from typing import List, Optional

from chattie.ai_responder import AIResponder
from chattie.approval import ApprovalWorkflow
from chattie.database import ContactDB, DatabaseManager, MessageDB
from chattie.models import (
    Channel,
    ConversationContext,
    ConversationStatus,
    DeliveryError,
    HistoryEntry,
    InboundResult,
    MessageDirection,
)

logger = logging.getLogger(__name__)

MEDIA_PLACEHOLDERS = {
    Channel.CHAT: "[Foto ontvangen]",
    Channel.EMAIL: "[Bijlage ontvangen]",
}


def build_context(contact: ContactDB, history: List[MessageDB]) -> ConversationContext:
    """
    Build the AI context from the contact record and the prior message window.

    Args:
        contact: Contact the conversation belongs to
        history: Prior messages, oldest first

    Returns:
        ConversationContext
    """
    return ConversationContext(
        contact_phone=contact.phone,
        contact_email=contact.email,
        contact_name=contact.name,
        garden_size=contact.garden_size,
        has_photos=bool(contact.garden_photos),
        custom_fields={key: str(value) for key, value in (contact.custom_fields or {}).items()},
        message_history=[
            HistoryEntry(
                role="customer" if message.direction == MessageDirection.INBOUND.value else "assistant",
                content=message.content,
            )
            for message in history
        ],
    )


class ConversationOrchestrator:
    """Handles inbound customer messages on every channel"""

    def __init__(
        self,
        db_manager: DatabaseManager,
        ai_responder: AIResponder,
        approval: ApprovalWorkflow,
        context_window: int = 20,
    ):
        self.db = db_manager
        self.ai = ai_responder
        self.approval = approval
        self.context_window = context_window

    async def handle_inbound(
        self,
        channel: Channel,
        sender: str,
        content: str,
        media: Optional[List[str]] = None,
        display_name: Optional[str] = None,
        external_message_id: Optional[str] = None,
        thread_id: Optional[str] = None,
        subject: Optional[str] = None,
    ) -> InboundResult:
        """
        Handle one inbound message.

        Args:
            channel: Channel the message arrived on
            sender: Normalized phone number (CHAT) or email address (EMAIL)
            content: Message text, may be empty when only media was sent
            media: Media references (photo URLs)
            display_name: Name reported by the channel
            external_message_id: Message ID on the channel
            thread_id: Provider chat handle or mail thread reference
            subject: Email subject

        Returns:
            InboundResult describing what happened

        Raises:
            Exception: If the inbound message could not be stored
        """
        media = [m for m in (media or []) if m]
        logger.info(f"Incoming {channel.value} message from {sender}: {content[:50]}")

        if channel == Channel.CHAT:
            contact = self.db.find_or_create_contact(phone=sender, name=display_name)
        else:
            contact = self.db.find_or_create_contact(email=sender, name=display_name)

        conversation = self.db.get_or_create_conversation(contact.id, channel)

        thread_updates = {}
        if thread_id and thread_id != conversation.external_thread_id:
            thread_updates["external_thread_id"] = thread_id
        if subject and not conversation.subject:
            thread_updates["subject"] = subject
        if thread_updates:
            conversation = self.db.update_conversation(conversation.id, **thread_updates)

        if media:
            contact = self.db.add_contact_photos(contact.id, media)

        message_content = MEDIA_PLACEHOLDERS[channel] if media and not content.strip() else content
        message = self.db.save_message(
            conversation.id,
            contact.id,
            MessageDirection.INBOUND,
            message_content,
            external_id=external_message_id,
        )

        result = InboundResult(
            contact_id=contact.id,
            conversation_id=conversation.id,
            message_id=message.id,
            outcome="no_reply",
        )

        # Owner took over the conversation
        if conversation.status == ConversationStatus.PAUSED.value:
            logger.info(f"Conversation {conversation.id} paused for {sender} - skipping AI response")
            result.outcome = "paused"
            return result

        history = self.db.get_recent_messages(conversation.id, limit=self.context_window, before_id=message.id)
        context = build_context(contact, history)
        business = self.db.get_business_config()

        try:
            ai_response = await self.ai.suggest_reply(context, message_content, business)
        except Exception as e:
            logger.error(f"AI response failed for conversation {conversation.id}: {e}")
            return result

        if ai_response.collected_info and not ai_response.collected_info.is_empty():
            contact = self.db.update_contact_info(contact.id, ai_response.collected_info) or contact
            logger.info(f"Updated contact {contact.id} with collected info")

        if ai_response.conversation_complete:
            logger.info(f"All information collected in conversation {conversation.id}")

        try:
            outcome, pending_id = await self.approval.dispatch(
                conversation, contact, message_content, ai_response.message
            )
        except DeliveryError as e:
            logger.error(f"Failed to send response in conversation {conversation.id}: {e}")
            return result

        result.outcome = outcome
        result.pending_id = pending_id
        return result


def get_orchestrator(settings, db_manager, ai_responder, approval) -> ConversationOrchestrator:
    """
    Get conversation orchestrator instance from settings.

    Returns:
        ConversationOrchestrator instance
    """
    return ConversationOrchestrator(
        db_manager=db_manager,
        ai_responder=ai_responder,
        approval=approval,
        context_window=settings.context_window,
    )
