"""
Inbox processing

Triage of new mail in the business mailbox: internal mail is flagged and left
alone, everything else is classified and customer mail is handed to the
conversation orchestrator.
"""
import logging
from typing import Optional

from chattie.ai_responder import AIResponder
from chattie.email_client import APPROVAL_SUBJECT_TAG, EmailClient
from chattie.models import Channel, EmailCategory, EmailMessage
from chattie.orchestrator import ConversationOrchestrator

logger = logging.getLogger(__name__)


class InboxProcessor:
    """Classifies new mailbox messages and routes customer mail"""

    def __init__(
        self,
        email_client: EmailClient,
        ai_responder: AIResponder,
        orchestrator: ConversationOrchestrator,
        owner_email: str,
        max_emails_per_poll: int = 20,
    ):
        self.email = email_client
        self.ai = ai_responder
        self.orchestrator = orchestrator
        self.owner_email = owner_email.lower()
        self.max_emails_per_poll = max_emails_per_poll

    def is_internal(self, email: EmailMessage) -> bool:
        """Mail from the owner or our own notifications"""
        return email.from_address.lower() == self.owner_email or APPROVAL_SUBJECT_TAG in email.subject

    async def process_new_emails(self) -> int:
        """
        Process mailbox messages that have not been triaged yet.

        Returns:
            Number of customer emails handed to the orchestrator
        """
        logger.info("Checking for new customer emails...")
        emails = await self.email.list_unprocessed(limit=self.max_emails_per_poll)

        if not emails:
            logger.debug("No unprocessed emails found")
            return 0

        logger.info(f"Found {len(emails)} unprocessed email(s)")

        handled = 0
        for email in emails:
            try:
                if await self.process_email(email) == EmailCategory.CUSTOMER:
                    handled += 1
            except Exception as e:
                logger.error(f"Error processing email {email.id} from {email.from_address} ({email.subject}): {e}")

        return handled

    async def process_email(self, email: EmailMessage) -> Optional[EmailCategory]:
        """
        Triage a single email.

        Returns:
            Category the email was flagged with
        """
        if self.is_internal(email):
            await self.email.label(email.id, EmailCategory.INTERNAL)
            return EmailCategory.INTERNAL

        logger.info(f"Processing email from {email.from_address}: {email.subject}")

        classification = await self.ai.classify_email(email.from_address, email.subject, email.body)
        logger.info(
            f"Email classified as {classification.category.value} "
            f"({classification.confidence}): {classification.reason}"
        )
        await self.email.label(email.id, classification.category)

        if classification.category != EmailCategory.CUSTOMER:
            # Left unread so the owner still sees it
            logger.info(f"Skipping non-customer email ({classification.category.value}) from {email.from_address}")
            return classification.category

        await self.orchestrator.handle_inbound(
            Channel.EMAIL,
            email.from_address,
            email.body.strip(),
            display_name=email.from_name,
            external_message_id=email.message_id or email.id,
            thread_id=email.thread_id,
            subject=email.subject,
        )
        await self.email.mark_read(email.id)
        return EmailCategory.CUSTOMER
