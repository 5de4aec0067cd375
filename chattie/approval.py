"""
Approval Workflow

Decides whether a suggested reply ships immediately or waits for the
business owner, and resolves pending responses:
1. Dispatch a suggestion (auto-send or create a pending response + approval email)
2. Approve / modify / reject from the dashboard
3. Approve / modify from owner email replies
4. Deliver the final text over the conversation's channel
"""
import logging
from typing import Optional, Tuple

from chattie.database import ContactDB, ConversationDB, DatabaseManager, PendingResponseDB
from chattie.email_client import EmailClient, format_approval_email
from chattie.models import (
    AlreadyResolvedError,
    Channel,
    DeliveryError,
    MessageDirection,
    NotFoundError,
    PendingStatus,
    ResponseMode,
)
from chattie.reply_parser import ApprovalReplyParser

logger = logging.getLogger(__name__)


def reply_subject(subject: Optional[str]) -> str:
    subject = subject or "Uw bericht"
    return subject if subject.lower().startswith("re:") else f"Re: {subject}"


class ApprovalWorkflow:
    """Moves suggested replies through auto-send or owner approval"""

    def __init__(
        self,
        db_manager: DatabaseManager,
        chat_client,
        email_client: Optional[EmailClient],
        response_mode: ResponseMode,
        owner_email: str,
    ):
        """
        Initialize approval workflow.

        Args:
            db_manager: Database manager
            chat_client: WhatsApp client (send / send_to_thread)
            email_client: Mailbox client, None when no mailbox is configured
            response_mode: auto or approval
            owner_email: Address that receives approval requests
        """
        self.db = db_manager
        self.chat = chat_client
        self.email = email_client
        self.response_mode = response_mode
        self.owner_email = owner_email.lower()
        self.reply_parser = ApprovalReplyParser()

    async def dispatch(
        self,
        conversation: ConversationDB,
        contact: ContactDB,
        original_message: str,
        suggestion: str,
    ) -> Tuple[str, Optional[str]]:
        """
        Apply the response mode to a fresh AI suggestion.

        Args:
            conversation: Conversation the suggestion answers
            contact: Contact of the conversation
            original_message: Inbound message text
            suggestion: AI-suggested reply

        Returns:
            Tuple of (outcome, pending_id): ("sent", None) in auto mode,
            ("pending", id) in approval mode
        """
        if self.response_mode == ResponseMode.AUTO:
            delivery_id = await self.deliver(conversation, contact, suggestion)
            self.db.save_message(
                conversation.id, contact.id, MessageDirection.OUTBOUND, suggestion, external_id=delivery_id
            )
            logger.info(f"Auto-sent response in conversation {conversation.id}")
            return "sent", None

        pending = self.db.create_pending_response(conversation.id, original_message, suggestion)
        await self.request_approval(pending, conversation, contact)
        return "pending", pending.id

    async def request_approval(
        self,
        pending: PendingResponseDB,
        conversation: ConversationDB,
        contact: ContactDB,
    ):
        """Email the owner an approval request for a pending response"""
        if not self.email:
            logger.warning(f"No mailbox configured, pending response {pending.id} is only visible on the dashboard")
            return

        channel = Channel(conversation.channel)
        sender = (contact.phone if channel == Channel.CHAT else contact.email) or contact.email or contact.phone
        subject, body = format_approval_email(
            original_from=sender or "Onbekend",
            original_message=pending.original_message,
            suggested_response=pending.suggested_response,
            channel=channel,
            pending_id=pending.id,
        )

        try:
            email_id = await self.email.send(self.owner_email, subject, body)
        except Exception as e:
            # The pending response stays approvable from the dashboard
            logger.error(f"Error sending approval email for {pending.id}: {e}")
            return

        self.db.set_approval_email(pending.id, email_id)
        logger.info(f"Sent approval email for pending response {pending.id}")

    async def deliver(self, conversation: ConversationDB, contact: ContactDB, text: str) -> Optional[str]:
        """
        Send text to the contact over the conversation's channel.

        Returns:
            Delivery ID, or None when the contact cannot be reached on the channel

        Raises:
            DeliveryError: If the channel adapter fails
        """
        if conversation.channel == Channel.CHAT.value:
            if conversation.external_thread_id:
                return await self.chat.send_to_thread(conversation.external_thread_id, text)
            if contact.phone:
                return await self.chat.send(contact.phone, text)
            logger.warning(f"Contact {contact.id} has no phone number, WhatsApp send skipped")
            return None

        if not contact.email:
            logger.warning(f"Contact {contact.id} has no email address, email send skipped")
            return None
        if not self.email:
            raise DeliveryError("No mailbox configured for email replies")

        try:
            return await self.email.send(
                contact.email,
                reply_subject(conversation.subject),
                text,
                thread_id=conversation.external_thread_id,
            )
        except DeliveryError:
            raise
        except Exception as e:
            logger.error(f"Error sending email to {contact.email}: {e}")
            raise DeliveryError(f"Email send failed: {e}") from e

    async def approve(self, pending_id: str, modified_text: Optional[str] = None) -> PendingResponseDB:
        """
        Approve a pending response, optionally with the owner's own text.

        The row is resolved before delivery, so a second trigger for the same
        pending response never sends twice. A failed delivery puts it back to
        PENDING so it can be approved again.

        Args:
            pending_id: Pending response ID
            modified_text: Replacement text; blank means use the suggestion

        Returns:
            The resolved pending response

        Raises:
            NotFoundError: If the pending response does not exist
            AlreadyResolvedError: If it was already approved, modified or rejected
            DeliveryError: If sending the final text fails
        """
        pending = self.db.get_pending_response(pending_id)
        if not pending:
            raise NotFoundError(f"Pending response {pending_id} not found")

        modified = bool(modified_text and modified_text.strip())
        text = modified_text.strip() if modified else pending.suggested_response
        status = PendingStatus.MODIFIED if modified else PendingStatus.APPROVED

        if not self.db.resolve_pending_response(pending_id, status):
            raise AlreadyResolvedError(f"Pending response {pending_id} is already resolved")

        conversation = pending.conversation
        contact = conversation.contact
        try:
            delivery_id = await self.deliver(conversation, contact, text)
        except DeliveryError as e:
            logger.error(f"Failed to deliver approved response {pending_id}: {e}")
            if self.db.reopen_pending_response(pending_id, status):
                logger.info(f"Pending response {pending_id} is pending again")
            raise

        self.db.save_message(conversation.id, contact.id, MessageDirection.OUTBOUND, text, external_id=delivery_id)
        logger.info(f"Pending response {pending_id} {status.value.lower()} and sent")
        return self.db.get_pending_response(pending_id)

    def reject(self, pending_id: str) -> PendingResponseDB:
        """
        Reject a pending response. Nothing is sent.

        Raises:
            NotFoundError: If the pending response does not exist
            AlreadyResolvedError: If it was already resolved
        """
        pending = self.db.get_pending_response(pending_id)
        if not pending:
            raise NotFoundError(f"Pending response {pending_id} not found")

        if not self.db.resolve_pending_response(pending_id, PendingStatus.REJECTED):
            raise AlreadyResolvedError(f"Pending response {pending_id} is already resolved")

        logger.info(f"Pending response {pending_id} rejected")
        return self.db.get_pending_response(pending_id)

    async def process_email_replies(self) -> int:
        """
        Resolve pending responses from the owner's email replies.

        Unread mail from the owner carrying a "Ref: <id>" of a still pending
        response is parsed: an approve word sends the suggestion, other text is
        sent instead of it, and an empty reply leaves the response pending.

        Returns:
            Number of pending responses resolved
        """
        if not self.email:
            return 0

        pending_by_id = {p.id: p for p in self.db.list_pending_responses(awaiting_email_only=True)}
        if not pending_by_id:
            return 0

        logger.info("Checking for approval replies...")
        emails = await self.email.list_unread()
        resolved = 0

        for email in emails:
            if email.from_address.lower() != self.owner_email:
                continue

            pending_id = self.reply_parser.find_reference(email.body)
            pending = pending_by_id.get(pending_id) if pending_id else None
            # Our own approval request can land in the inbox when the owner is the mailbox
            if not pending or email.message_id == pending.approval_email_id:
                continue

            try:
                parsed = self.reply_parser.parse(email.body)
                logger.info(f"Owner reply for {pending_id}: {parsed.command_type}")

                if parsed.command_type == 'ignore':
                    continue

                modified_text = parsed.reply_text if parsed.command_type == 'modify' else None
                try:
                    await self.approve(pending_id, modified_text)
                    resolved += 1
                except AlreadyResolvedError:
                    logger.info(f"Pending response {pending_id} was already resolved")

                del pending_by_id[pending_id]
                await self.email.mark_read(email.id)

            except Exception as e:
                logger.error(f"Error processing approval reply {email.id} for {pending_id}: {e}")

        return resolved


def get_approval_workflow(settings, db_manager, chat_client, email_client) -> ApprovalWorkflow:
    """
    Get approval workflow instance from settings.

    Returns:
        ApprovalWorkflow instance
    """
    return ApprovalWorkflow(
        db_manager=db_manager,
        chat_client=chat_client,
        email_client=email_client,
        response_mode=settings.response_mode,
        owner_email=settings.business_owner_email,
    )
