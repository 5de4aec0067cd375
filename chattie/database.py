"""
Database manager for the Chattie service

Persists contacts, conversations, messages, pending responses and the
business configuration.
"""
import logging
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    create_engine,
    text,
)
from sqlalchemy.orm import Session, declarative_base, joinedload, relationship, sessionmaker

from chattie.models import (
    Channel,
    CollectedInfo,
    ConversationStatus,
    MessageDirection,
    NotFoundError,
    PendingStatus,
    utc_now,
)

logger = logging.getLogger(__name__)

Base = declarative_base()

DEFAULT_COLLECT_FIELDS = ["name", "email", "phone", "gardenSize", "photos"]
# Fields contacts are looked up by
IDENTITY_FIELDS = ("phone", "email")
OPEN_STATUSES = (ConversationStatus.ACTIVE.value, ConversationStatus.PAUSED.value)


def new_id() -> str:
    return str(uuid.uuid4())


class ContactDB(Base):
    """SQLAlchemy model for contacts table"""
    __tablename__ = 'contacts'

    id = Column(String(36), primary_key=True, default=new_id)
    phone = Column(String(32), unique=True, nullable=True)
    email = Column(String(255), index=True)
    name = Column(String(255))
    garden_size = Column(String(255))
    garden_photos = Column(JSON, default=list)
    custom_fields = Column(JSON, default=dict)

    created_at = Column(DateTime, default=utc_now)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)

    conversations = relationship(
        'ConversationDB',
        back_populates='contact',
        cascade='all, delete-orphan',
    )


class ConversationDB(Base):
    """SQLAlchemy model for conversations table"""
    __tablename__ = 'conversations'

    id = Column(String(36), primary_key=True, default=new_id)
    contact_id = Column(String(36), ForeignKey('contacts.id'), nullable=False, index=True)
    channel = Column(String(10), nullable=False)
    status = Column(String(20), nullable=False, default=ConversationStatus.ACTIVE.value)

    follow_up_count = Column(Integer, nullable=False, default=0)
    last_follow_up_at = Column(DateTime)
    next_follow_up_at = Column(DateTime)
    needs_follow_up = Column(Boolean, nullable=False, default=False)

    external_thread_id = Column(String(255))
    subject = Column(String(500))

    created_at = Column(DateTime, default=utc_now)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)

    contact = relationship('ContactDB', back_populates='conversations')
    messages = relationship(
        'MessageDB',
        back_populates='conversation',
        cascade='all, delete-orphan',
        order_by='MessageDB.id',
    )
    pending_responses = relationship(
        'PendingResponseDB',
        back_populates='conversation',
        cascade='all, delete-orphan',
        order_by='PendingResponseDB.created_at.desc()',
    )


class MessageDB(Base):
    """SQLAlchemy model for messages table"""
    __tablename__ = 'messages'

    id = Column(Integer, primary_key=True, autoincrement=True)
    conversation_id = Column(String(36), ForeignKey('conversations.id'), nullable=False, index=True)
    contact_id = Column(String(36), ForeignKey('contacts.id'), nullable=False)
    direction = Column(String(10), nullable=False)
    content = Column(Text, nullable=False)
    external_id = Column(String(255))
    created_at = Column(DateTime, default=utc_now)

    conversation = relationship('ConversationDB', back_populates='messages')


class PendingResponseDB(Base):
    """SQLAlchemy model for pending_responses table"""
    __tablename__ = 'pending_responses'

    id = Column(String(36), primary_key=True, default=new_id)
    conversation_id = Column(String(36), ForeignKey('conversations.id'), nullable=False, index=True)
    original_message = Column(Text, nullable=False)
    suggested_response = Column(Text, nullable=False)
    status = Column(String(20), nullable=False, default=PendingStatus.PENDING.value, index=True)
    approval_email_id = Column(String(255))
    created_at = Column(DateTime, default=utc_now)
    responded_at = Column(DateTime)

    conversation = relationship('ConversationDB', back_populates='pending_responses')


class BusinessConfigDB(Base):
    """SQLAlchemy model for the business_config singleton"""
    __tablename__ = 'business_config'

    id = Column(String(36), primary_key=True, default=new_id)
    business_name = Column(String(255), nullable=False)
    business_description = Column(Text)
    website_url = Column(String(500))
    owner_name = Column(String(255))
    owner_email = Column(String(255))
    owner_phone = Column(String(32))
    custom_instructions = Column(Text)
    tone = Column(String(20), default='friendly')
    language = Column(String(5), nullable=False, default='nl')
    collect_fields = Column(JSON, default=lambda: list(DEFAULT_COLLECT_FIELDS))
    greeting_message = Column(Text)
    closing_message = Column(Text)
    scraped_content = Column(JSON)
    scraped_at = Column(DateTime)

    created_at = Column(DateTime, default=utc_now)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)


class DatabaseManager:
    """Manage database operations for contacts, conversations and approvals"""

    def __init__(self, database_url: str):
        """
        Initialize database manager.

        Args:
            database_url: SQLAlchemy connection string (PostgreSQL or SQLite)
        """
        if database_url.startswith("sqlite"):
            self.engine = create_engine(
                database_url,
                connect_args={"check_same_thread": False},
            )
        else:
            self.engine = create_engine(database_url, pool_size=10, max_overflow=20, pool_pre_ping=True)
        self.SessionLocal = sessionmaker(bind=self.engine, expire_on_commit=False)

    def init_tables(self):
        """Create tables that do not exist yet"""
        Base.metadata.create_all(self.engine)

    def check_connection(self) -> bool:
        """Run a trivial query against the database"""
        with self.engine.connect() as connection:
            connection.execute(text("SELECT 1"))
        return True

    def close(self):
        self.engine.dispose()

    def get_session(self) -> Session:
        """Get a new database session"""
        return self.SessionLocal()

    # ------------------------------------------------------------------
    # Contacts
    # ------------------------------------------------------------------

    def find_or_create_contact(
        self,
        phone: Optional[str] = None,
        email: Optional[str] = None,
        name: Optional[str] = None,
    ) -> ContactDB:
        """
        Find a contact by phone (or email when no phone is given), creating it if absent.

        A supplied display name is stored only when the contact has none yet.

        Args:
            phone: Normalized phone number
            email: Email address
            name: Display name reported by the channel

        Returns:
            The existing or newly created contact
        """
        if not phone and not email:
            raise ValueError("A phone number or email address is required")

        with self.get_session() as session:
            query = session.query(ContactDB)
            if phone:
                contact = query.filter_by(phone=phone).first()
            else:
                contact = query.filter(ContactDB.email == email.lower()).first()

            if contact:
                if name and not contact.name:
                    contact.name = name
                    session.commit()
                return contact

            contact = ContactDB(
                phone=phone,
                email=email.lower() if email else None,
                name=name,
                garden_photos=[],
                custom_fields={},
            )
            session.add(contact)
            session.commit()
            session.refresh(contact)
            return contact

    def get_contact(self, contact_id: str) -> Optional[ContactDB]:
        with self.get_session() as session:
            return session.get(ContactDB, contact_id)

    def update_contact_info(self, contact_id: str, info: CollectedInfo) -> Optional[ContactDB]:
        """
        Merge collected fields into a contact.

        Only the supplied fields are touched; extra fields are merged into the
        contact's custom field map. Phone and email only fill an empty field
        and are skipped when another contact already has the value.

        Args:
            contact_id: Contact ID
            info: Fields collected by the AI

        Returns:
            Updated contact or None if not found
        """
        with self.get_session() as session:
            contact = session.get(ContactDB, contact_id)
            if not contact:
                return None

            for key, value in info.updates().items():
                if key == "email":
                    value = value.lower()
                if key in IDENTITY_FIELDS:
                    current = getattr(contact, key)
                    if current:
                        if current != value:
                            logger.info(f"Keeping {key} of contact {contact_id}, ignoring collected {value}")
                        continue
                    owner = session.query(ContactDB)\
                        .filter(getattr(ContactDB, key) == value, ContactDB.id != contact_id)\
                        .first()
                    if owner:
                        logger.warning(f"Not setting {key} {value} on contact {contact_id}: used by contact {owner.id}")
                        continue
                setattr(contact, key, value)

            extra = {k: v for k, v in info.extra.items() if v}
            if extra:
                contact.custom_fields = {**(contact.custom_fields or {}), **extra}

            session.commit()
            session.refresh(contact)
            return contact

    def add_contact_photos(self, contact_id: str, urls: List[str]) -> Optional[ContactDB]:
        """Append media references to the contact's photo list"""
        with self.get_session() as session:
            contact = session.get(ContactDB, contact_id)
            if not contact:
                return None
            contact.garden_photos = list(contact.garden_photos or []) + list(urls)
            session.commit()
            session.refresh(contact)
            return contact

    def list_contacts(self) -> List[ContactDB]:
        with self.get_session() as session:
            return session.query(ContactDB)\
                .order_by(ContactDB.created_at.desc())\
                .all()

    def delete_contact(self, contact_id: str):
        """
        Reset a contact, removing its conversations, messages and pending responses.

        Raises:
            NotFoundError: If the contact does not exist
        """
        with self.get_session() as session:
            contact = session.get(ContactDB, contact_id)
            if not contact:
                raise NotFoundError(f"Contact {contact_id} not found")
            session.delete(contact)
            session.commit()

    # ------------------------------------------------------------------
    # Conversations
    # ------------------------------------------------------------------

    def get_or_create_conversation(self, contact_id: str, channel: Channel) -> ConversationDB:
        """
        Get the open conversation for a contact and channel, or start a new one.

        ACTIVE and PAUSED conversations count as open. Completed conversations
        are never reopened; a new ACTIVE conversation is created instead.

        Args:
            contact_id: Contact ID
            channel: Conversation channel

        Returns:
            Open conversation
        """
        with self.get_session() as session:
            existing = session.query(ConversationDB)\
                .filter(
                    ConversationDB.contact_id == contact_id,
                    ConversationDB.channel == channel.value,
                    ConversationDB.status.in_(OPEN_STATUSES),
                )\
                .order_by(ConversationDB.created_at.desc())\
                .first()

            if existing:
                return existing

            conversation = ConversationDB(
                contact_id=contact_id,
                channel=channel.value,
                status=ConversationStatus.ACTIVE.value,
            )
            session.add(conversation)
            session.commit()
            session.refresh(conversation)
            return conversation

    def get_conversation(self, conversation_id: str) -> Optional[ConversationDB]:
        """Get a conversation with its contact loaded"""
        with self.get_session() as session:
            return session.query(ConversationDB)\
                .options(joinedload(ConversationDB.contact))\
                .filter_by(id=conversation_id)\
                .first()

    def get_conversation_detail(self, conversation_id: str) -> Optional[ConversationDB]:
        """Get a conversation with contact, messages and pending responses loaded"""
        with self.get_session() as session:
            return session.query(ConversationDB)\
                .options(
                    joinedload(ConversationDB.contact),
                    joinedload(ConversationDB.messages),
                    joinedload(ConversationDB.pending_responses),
                )\
                .filter_by(id=conversation_id)\
                .first()

    def list_conversations(
        self,
        status: Optional[ConversationStatus] = None,
        channel: Optional[Channel] = None,
    ) -> List[ConversationDB]:
        with self.get_session() as session:
            query = session.query(ConversationDB).options(joinedload(ConversationDB.contact))
            if status:
                query = query.filter(ConversationDB.status == status.value)
            if channel:
                query = query.filter(ConversationDB.channel == channel.value)
            return query.order_by(ConversationDB.updated_at.desc()).all()

    def update_conversation(self, conversation_id: str, **fields: Any) -> Optional[ConversationDB]:
        """
        Update conversation columns.

        Args:
            conversation_id: Conversation ID
            **fields: Column values to set

        Returns:
            Updated conversation or None if not found
        """
        with self.get_session() as session:
            conversation = session.get(ConversationDB, conversation_id)
            if not conversation:
                return None
            for key, value in fields.items():
                setattr(conversation, key, value)
            session.commit()
            session.refresh(conversation)
            return conversation

    def transition_conversation(
        self,
        conversation_id: str,
        from_status: ConversationStatus,
        to_status: ConversationStatus,
    ) -> bool:
        """
        Atomically move a conversation between statuses.

        Returns:
            True if the conversation was in from_status and has been moved
        """
        with self.get_session() as session:
            updated = session.query(ConversationDB)\
                .filter(
                    ConversationDB.id == conversation_id,
                    ConversationDB.status == from_status.value,
                )\
                .update(
                    {"status": to_status.value, "updated_at": utc_now()},
                    synchronize_session=False,
                )
            session.commit()
            return updated == 1

    def get_due_follow_ups(self, now: Optional[datetime] = None) -> List[ConversationDB]:
        """Conversations flagged for follow-up whose follow-up time has passed"""
        now = now or utc_now()
        with self.get_session() as session:
            return session.query(ConversationDB)\
                .options(joinedload(ConversationDB.contact))\
                .filter(
                    ConversationDB.needs_follow_up.is_(True),
                    ConversationDB.next_follow_up_at <= now,
                )\
                .all()

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    def save_message(
        self,
        conversation_id: str,
        contact_id: str,
        direction: MessageDirection,
        content: str,
        external_id: Optional[str] = None,
    ) -> MessageDB:
        """
        Store a message in a conversation.

        Args:
            conversation_id: Conversation ID
            contact_id: Contact ID
            direction: INBOUND or OUTBOUND
            content: Message text
            external_id: Message identifier on the originating channel

        Returns:
            Created message
        """
        with self.get_session() as session:
            message = MessageDB(
                conversation_id=conversation_id,
                contact_id=contact_id,
                direction=direction.value,
                content=content,
                external_id=external_id,
            )
            session.add(message)
            # Keeps the conversation list ordered by latest activity
            session.query(ConversationDB)\
                .filter_by(id=conversation_id)\
                .update({"updated_at": utc_now()}, synchronize_session=False)
            session.commit()
            session.refresh(message)
            return message

    def get_recent_messages(
        self,
        conversation_id: str,
        limit: int = 20,
        before_id: Optional[int] = None,
    ) -> List[MessageDB]:
        """
        Get the trailing window of a conversation, oldest first.

        Args:
            conversation_id: Conversation ID
            limit: Number of most recent messages
            before_id: Only consider messages stored before this message

        Returns:
            List of messages in chronological order
        """
        with self.get_session() as session:
            query = session.query(MessageDB).filter(MessageDB.conversation_id == conversation_id)
            if before_id is not None:
                query = query.filter(MessageDB.id < before_id)
            recent = query.order_by(MessageDB.id.desc()).limit(limit).all()
            return list(reversed(recent))

    def count_messages(self, conversation_id: str, direction: Optional[MessageDirection] = None) -> int:
        with self.get_session() as session:
            query = session.query(MessageDB).filter(MessageDB.conversation_id == conversation_id)
            if direction:
                query = query.filter(MessageDB.direction == direction.value)
            return query.count()

    # ------------------------------------------------------------------
    # Pending responses
    # ------------------------------------------------------------------

    def create_pending_response(
        self,
        conversation_id: str,
        original_message: str,
        suggested_response: str,
    ) -> PendingResponseDB:
        with self.get_session() as session:
            pending = PendingResponseDB(
                conversation_id=conversation_id,
                original_message=original_message,
                suggested_response=suggested_response,
                status=PendingStatus.PENDING.value,
            )
            session.add(pending)
            session.commit()
            session.refresh(pending)
            return pending

    def set_approval_email(self, pending_id: str, approval_email_id: str):
        """Record the notification email sent for a pending response"""
        with self.get_session() as session:
            session.query(PendingResponseDB)\
                .filter_by(id=pending_id)\
                .update({"approval_email_id": approval_email_id}, synchronize_session=False)
            session.commit()

    def get_pending_response(self, pending_id: str) -> Optional[PendingResponseDB]:
        """Get a pending response with its conversation and contact loaded"""
        with self.get_session() as session:
            return session.query(PendingResponseDB)\
                .options(joinedload(PendingResponseDB.conversation).joinedload(ConversationDB.contact))\
                .filter_by(id=pending_id)\
                .first()

    def list_pending_responses(self, awaiting_email_only: bool = False) -> List[PendingResponseDB]:
        """
        Get pending responses still awaiting a decision, newest first.

        Args:
            awaiting_email_only: Only those for which an approval email was sent
        """
        with self.get_session() as session:
            query = session.query(PendingResponseDB)\
                .options(joinedload(PendingResponseDB.conversation).joinedload(ConversationDB.contact))\
                .filter(PendingResponseDB.status == PendingStatus.PENDING.value)
            if awaiting_email_only:
                query = query.filter(PendingResponseDB.approval_email_id.isnot(None))
            return query.order_by(PendingResponseDB.created_at.desc()).all()

    def resolve_pending_response(self, pending_id: str, status: PendingStatus) -> bool:
        """
        Move a pending response to a terminal status.

        The update only applies while the row is still PENDING, so a response
        is resolved at most once no matter how many triggers race for it.

        Args:
            pending_id: Pending response ID
            status: APPROVED, MODIFIED or REJECTED

        Returns:
            True if this call resolved the response
        """
        if status == PendingStatus.PENDING:
            raise ValueError("Cannot resolve a pending response to PENDING")

        with self.get_session() as session:
            updated = session.query(PendingResponseDB)\
                .filter(
                    PendingResponseDB.id == pending_id,
                    PendingResponseDB.status == PendingStatus.PENDING.value,
                )\
                .update(
                    {"status": status.value, "responded_at": utc_now()},
                    synchronize_session=False,
                )
            session.commit()
            return updated == 1

    def reopen_pending_response(self, pending_id: str, status: PendingStatus) -> bool:
        """
        Put a response claimed for delivery back to PENDING.

        Only applies while the row still has the status it was claimed with.

        Returns:
            True if the response is pending again
        """
        with self.get_session() as session:
            updated = session.query(PendingResponseDB)\
                .filter(
                    PendingResponseDB.id == pending_id,
                    PendingResponseDB.status == status.value,
                )\
                .update(
                    {"status": PendingStatus.PENDING.value, "responded_at": None},
                    synchronize_session=False,
                )
            session.commit()
            return updated == 1

    # ------------------------------------------------------------------
    # Business configuration
    # ------------------------------------------------------------------

    def get_business_config(self) -> BusinessConfigDB:
        """Get the business configuration, creating the default one if needed"""
        with self.get_session() as session:
            config = session.query(BusinessConfigDB).first()
            if config:
                return config

            config = BusinessConfigDB(
                business_name="Mijn Bedrijf",
                owner_email="owner@example.com",
                custom_instructions="",
                collect_fields=list(DEFAULT_COLLECT_FIELDS),
            )
            session.add(config)
            session.commit()
            session.refresh(config)
            return config

    def update_business_config(self, updates: Dict[str, Any]) -> BusinessConfigDB:
        config_id = self.get_business_config().id
        with self.get_session() as session:
            config = session.get(BusinessConfigDB, config_id)
            for key, value in updates.items():
                setattr(config, key, value)
            session.commit()
            session.refresh(config)
            return config

    def set_scraped_content(self, content: Dict[str, Any]) -> BusinessConfigDB:
        updates: Dict[str, Any] = {"scraped_content": content, "scraped_at": utc_now()}
        if content.get("description"):
            updates["business_description"] = content["description"]
        return self.update_business_config(updates)

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    def get_statistics(self) -> dict:
        """
        Get dashboard statistics.

        Returns:
            Dictionary with contact, conversation, pending and message counts
        """
        with self.get_session() as session:
            today_start = utc_now().replace(hour=0, minute=0, second=0, microsecond=0)
            return {
                'total_contacts': session.query(ContactDB).count(),
                'total_conversations': session.query(ConversationDB).count(),
                'pending_responses': session.query(PendingResponseDB)
                    .filter_by(status=PendingStatus.PENDING.value)
                    .count(),
                'today_messages': session.query(MessageDB)
                    .filter(MessageDB.created_at >= today_start)
                    .count(),
            }


def get_database_manager(database_url: str) -> DatabaseManager:
    """
    Get database manager instance.

    Returns:
        DatabaseManager instance
    """
    return DatabaseManager(database_url)
