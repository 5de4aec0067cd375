"""
Follow-up scheduling

Tracks unanswered call attempts on a conversation and prepares follow-up
email drafts for the owner to send.
"""
import logging
from datetime import timedelta
from typing import Optional, Tuple

from chattie.database import ContactDB, ConversationDB, DatabaseManager
from chattie.email_client import EmailClient
from chattie.models import AlreadyResolvedError, Channel, ConversationStatus, NotFoundError, utc_now

logger = logging.getLogger(__name__)

FOLLOW_UP_TEMPLATES = {
    1: (
        "Opvolging - Uw aanvraag",
        "Beste {name},\n\n"
        "Ik heb geprobeerd u telefonisch te bereiken, maar helaas kon ik u niet te pakken krijgen.\n\n"
        "Heeft u nog interesse in onze diensten? Ik help u graag verder. "
        "U kunt mij bereiken op dit e-mailadres of telefonisch.\n\n"
        "Met vriendelijke groet",
    ),
    2: (
        "Nogmaals: Uw aanvraag",
        "Beste {name},\n\n"
        "Ik heb opnieuw geprobeerd contact met u op te nemen, maar helaas zonder succes.\n\n"
        "Mocht u nog steeds interesse hebben, dan hoor ik het graag. Ik sta voor u klaar.\n\n"
        "Met vriendelijke groet",
    ),
    3: (
        "Laatste bericht: Uw aanvraag",
        "Beste {name},\n\n"
        "Ik heb meerdere keren geprobeerd contact met u op te nemen, helaas zonder succes.\n\n"
        "Ik sluit uw aanvraag voor nu af. Mocht u in de toekomst alsnog interesse hebben, "
        "dan bent u uiteraard van harte welkom om opnieuw contact met ons op te nemen.\n\n"
        "Met vriendelijke groet",
    ),
}


def follow_up_message(follow_up_count: int, contact_name: Optional[str]) -> Tuple[str, str]:
    """
    Pick the follow-up template for an attempt number.

    Args:
        follow_up_count: 1, 2, or 3 and above (closing message)
        contact_name: Name used in the salutation

    Returns:
        Tuple of (subject, body)
    """
    subject, body = FOLLOW_UP_TEMPLATES[min(max(follow_up_count, 1), 3)]
    return subject, body.format(name=contact_name or "klant")


class FollowUpScheduler:
    """Schedules and drafts follow-ups after unanswered call attempts"""

    def __init__(
        self,
        db_manager: DatabaseManager,
        email_client: Optional[EmailClient],
        delay_days: int = 2,
        max_follow_ups: int = 3,
    ):
        self.db = db_manager
        self.email = email_client
        self.delay_days = delay_days
        self.max_follow_ups = max_follow_ups

    async def mark_follow_up(self, conversation_id: str) -> ConversationDB:
        """
        Record an unanswered call attempt.

        Below the maximum the next follow-up is scheduled after the delay.
        Reaching the maximum completes the conversation and drafts the
        closing message right away when the contact has an email address.

        Args:
            conversation_id: Conversation ID

        Returns:
            Updated conversation

        Raises:
            NotFoundError: If the conversation does not exist
            AlreadyResolvedError: If the conversation is completed or archived
        """
        conversation = self.db.get_conversation(conversation_id)
        if not conversation:
            raise NotFoundError(f"Conversation {conversation_id} not found")
        if conversation.status in (ConversationStatus.COMPLETED.value, ConversationStatus.ARCHIVED.value):
            raise AlreadyResolvedError(f"Conversation {conversation_id} is {conversation.status.lower()}")

        now = utc_now()
        count = conversation.follow_up_count + 1

        if count < self.max_follow_ups:
            updated = self.db.update_conversation(
                conversation_id,
                follow_up_count=count,
                last_follow_up_at=now,
                next_follow_up_at=now + timedelta(days=self.delay_days),
                needs_follow_up=True,
            )
            logger.info(f"Follow-up {count}/{self.max_follow_ups} scheduled for conversation {conversation_id}")
            return updated

        updated = self.db.update_conversation(
            conversation_id,
            follow_up_count=count,
            last_follow_up_at=now,
            next_follow_up_at=None,
            needs_follow_up=False,
            status=ConversationStatus.COMPLETED.value,
        )
        logger.info(f"Max follow-ups reached, conversation {conversation_id} completed")

        if conversation.contact and conversation.contact.email:
            try:
                await self._create_draft(updated, conversation.contact)
            except Exception as e:
                logger.error(f"Error creating closing draft for conversation {conversation_id}: {e}")

        return updated

    async def run_due_follow_ups(self) -> int:
        """
        Draft follow-up emails for conversations whose follow-up is due.

        Returns:
            Number of drafts created
        """
        if not self.email:
            logger.debug("No mailbox configured, follow-up drafts disabled")
            return 0

        due = self.db.get_due_follow_ups()
        if due:
            logger.info(f"Found {len(due)} conversation(s) due for follow-up")

        drafted = 0
        for conversation in due:
            contact = conversation.contact
            try:
                if not contact.email:
                    logger.info(f"Skipping follow-up for {contact.name or contact.phone} - no email")
                    continue

                await self._create_draft(conversation, contact)
                drafted += 1

                if conversation.follow_up_count >= self.max_follow_ups:
                    self.db.update_conversation(
                        conversation.id,
                        needs_follow_up=False,
                        next_follow_up_at=None,
                        status=ConversationStatus.COMPLETED.value,
                    )
                else:
                    # Drafted once per attempt; the next attempt reschedules
                    self.db.update_conversation(conversation.id, next_follow_up_at=None)

            except Exception as e:
                logger.error(f"Error creating follow-up draft for conversation {conversation.id}: {e}")

        return drafted

    async def _create_draft(self, conversation: ConversationDB, contact: ContactDB) -> Optional[str]:
        if not self.email:
            logger.warning(f"No mailbox configured, no follow-up draft for conversation {conversation.id}")
            return None

        subject, body = follow_up_message(conversation.follow_up_count, contact.name)
        thread_id = conversation.external_thread_id if conversation.channel == Channel.EMAIL.value else None
        draft_id = await self.email.create_draft(contact.email, subject, body, thread_id=thread_id)
        logger.info(
            f"Created follow-up draft {conversation.follow_up_count}/{self.max_follow_ups} "
            f"for {contact.name or 'klant'} ({contact.email})"
        )
        return draft_id


def get_follow_up_scheduler(settings, db_manager, email_client) -> FollowUpScheduler:
    """
    Get follow-up scheduler instance from settings.

    Returns:
        FollowUpScheduler instance
    """
    return FollowUpScheduler(
        db_manager=db_manager,
        email_client=email_client,
        delay_days=settings.follow_up_delay_days,
        max_follow_ups=settings.max_follow_ups,
    )
