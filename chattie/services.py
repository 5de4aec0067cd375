"""
Service container

Wires the store, channel clients and workflows together once per process.
"""
import logging
from typing import Optional

from fastapi import Request

from chattie.ai_responder import AIResponder, get_ai_responder
from chattie.approval import ApprovalWorkflow, get_approval_workflow
from chattie.config import Settings
from chattie.database import DatabaseManager, get_database_manager
from chattie.email_client import EmailClient, get_email_client
from chattie.follow_up import FollowUpScheduler, get_follow_up_scheduler
from chattie.inbox import InboxProcessor
from chattie.orchestrator import ConversationOrchestrator, get_orchestrator
from chattie.whatsapp_client import get_chat_client

logger = logging.getLogger(__name__)


class Services:
    """Everything the HTTP handlers and pollers need"""

    def __init__(
        self,
        settings: Settings,
        db_manager: DatabaseManager,
        chat_client,
        email_client: Optional[EmailClient],
        ai_responder: AIResponder,
    ):
        self.settings = settings
        self.db = db_manager
        self.chat = chat_client
        self.email = email_client
        self.ai = ai_responder

        self.approval: ApprovalWorkflow = get_approval_workflow(settings, db_manager, chat_client, email_client)
        self.orchestrator: ConversationOrchestrator = get_orchestrator(
            settings, db_manager, ai_responder, self.approval
        )
        self.follow_up: FollowUpScheduler = get_follow_up_scheduler(settings, db_manager, email_client)
        self.inbox: Optional[InboxProcessor] = None
        if email_client:
            self.inbox = InboxProcessor(
                email_client=email_client,
                ai_responder=ai_responder,
                orchestrator=self.orchestrator,
                owner_email=settings.business_owner_email,
            )

    async def check_email(self) -> int:
        """
        One email poll: triage new mail, then process owner approval replies.

        Returns:
            Number of pending responses resolved from email
        """
        if self.inbox:
            await self.inbox.process_new_emails()
        return await self.approval.process_email_replies()


def build_services(settings: Settings, db_manager: Optional[DatabaseManager] = None) -> Services:
    """
    Build the service container from settings.

    Returns:
        Services instance
    """
    db_manager = db_manager or get_database_manager(settings.sqlalchemy_url)

    email_client = None
    if settings.email_configured:
        email_client = get_email_client(settings)
    else:
        logger.warning("EMAIL_ADDRESS/EMAIL_PASSWORD not set - email channel and approval emails disabled")

    return Services(
        settings=settings,
        db_manager=db_manager,
        chat_client=get_chat_client(settings),
        email_client=email_client,
        ai_responder=get_ai_responder(settings),
    )


def get_services(request: Request) -> Services:
    """FastAPI dependency returning the process's service container"""
    return request.app.state.services
