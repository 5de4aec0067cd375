"""
Pydantic models and domain types for the Chattie service
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator


def utc_now() -> datetime:
    """Current UTC time as a naive datetime, the form stored in the database"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# Enumerations
class Channel(str, Enum):
    """Message transport a conversation runs over"""
    CHAT = "CHAT"
    EMAIL = "EMAIL"


class ConversationStatus(str, Enum):
    """Lifecycle of a conversation"""
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    COMPLETED = "COMPLETED"
    ARCHIVED = "ARCHIVED"


class MessageDirection(str, Enum):
    """Direction of a stored message"""
    INBOUND = "INBOUND"
    OUTBOUND = "OUTBOUND"


class PendingStatus(str, Enum):
    """Status of a suggested reply awaiting the owner"""
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    MODIFIED = "MODIFIED"
    REJECTED = "REJECTED"


class ResponseMode(str, Enum):
    """How AI suggestions are delivered"""
    AUTO = "auto"
    APPROVAL = "approval"


class EmailCategory(str, Enum):
    """Classification of an inbound mailbox message"""
    CUSTOMER = "CUSTOMER"
    SUPPLIER = "SUPPLIER"
    NEWSLETTER = "NEWSLETTER"
    SPAM = "SPAM"
    OTHER = "OTHER"
    INTERNAL = "INTERNAL"


# Exceptions
class ChattieError(Exception):
    """Base error for the Chattie service"""


class NotFoundError(ChattieError):
    """Requested conversation, contact or pending response does not exist"""


class AlreadyResolvedError(ChattieError):
    """Pending response or conversation is no longer in the required state"""


class DeliveryError(ChattieError):
    """A channel adapter failed to deliver a message"""


# AI responder models
class HistoryEntry(BaseModel):
    """One message of the transcript handed to the AI"""
    role: Literal["customer", "assistant"]
    content: str


class ConversationContext(BaseModel):
    """What the AI gets to know about the customer and the conversation"""
    contact_phone: Optional[str] = None
    contact_email: Optional[str] = None
    contact_name: Optional[str] = None
    garden_size: Optional[str] = None
    has_photos: bool = False
    custom_fields: Dict[str, str] = Field(default_factory=dict)
    message_history: List[HistoryEntry] = Field(default_factory=list)


class CollectedInfo(BaseModel):
    """Contact fields extracted by the AI from the latest customer message"""
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    garden_size: Optional[str] = Field(default=None, alias="gardenSize")
    extra: Dict[str, str] = Field(default_factory=dict)

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @field_validator("name", "email", "phone", "garden_size", mode="before")
    @classmethod
    def blank_to_none(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        value = str(value).strip()
        return value or None

    def updates(self) -> Dict[str, str]:
        """Only the fields that were actually supplied"""
        fields = {
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "garden_size": self.garden_size,
        }
        return {key: value for key, value in fields.items() if value}

    def is_empty(self) -> bool:
        return not self.updates() and not any(v for v in self.extra.values())


class AIResponse(BaseModel):
    """Structured reply suggestion from the AI responder"""
    message: str
    collected_info: Optional[CollectedInfo] = Field(default=None, alias="collectedInfo")
    conversation_complete: bool = Field(default=False, alias="conversationComplete")

    model_config = ConfigDict(populate_by_name=True)


class EmailClassification(BaseModel):
    """Triage result for an inbound email"""
    category: EmailCategory
    confidence: float = 0.0
    reason: str = ""


# Channel models
class EmailMessage(BaseModel):
    """A message read from the business mailbox"""
    id: str
    message_id: str = ""
    thread_id: Optional[str] = None
    from_address: EmailStr
    from_name: Optional[str] = None
    to: str = ""
    subject: str = ""
    body: str = ""
    date: Optional[datetime] = None


class TwilioWhatsAppMessage(BaseModel):
    """Form fields posted by the Twilio WhatsApp webhook"""
    MessageSid: str
    AccountSid: str = ""
    From: str
    To: str = ""
    Body: str = ""
    NumMedia: int = 0
    MediaUrl0: Optional[str] = None
    MediaContentType0: Optional[str] = None
    ProfileName: Optional[str] = None

    model_config = ConfigDict(extra="ignore")


class UnipileAttendee(BaseModel):
    attendee_id: str = ""
    attendee_name: Optional[str] = None
    attendee_provider_id: str


class UnipileAttachment(BaseModel):
    type: str = ""
    url: Optional[str] = None


class UnipileAccountInfo(BaseModel):
    user_id: Optional[str] = None


class UnipileWebhook(BaseModel):
    """JSON webhook payload posted by Unipile"""
    account_id: str = ""
    account_type: str = ""
    event: str
    chat_id: Optional[str] = None
    message_id: Optional[str] = None
    message: Optional[str] = None
    sender: Optional[UnipileAttendee] = None
    attendees: List[UnipileAttendee] = Field(default_factory=list)
    attachments: List[UnipileAttachment] = Field(default_factory=list)
    account_info: Optional[UnipileAccountInfo] = None

    model_config = ConfigDict(extra="ignore")


# Orchestration results
class InboundResult(BaseModel):
    """Outcome of handling one inbound message"""
    contact_id: str
    conversation_id: str
    message_id: int
    outcome: Literal["paused", "sent", "pending", "no_reply"]
    pending_id: Optional[str] = None


class ParsedApprovalReply(BaseModel):
    """Owner's email reply to an approval request"""
    command_type: Literal["approve", "modify", "ignore"]
    reply_text: str = ""
    raw_message: str


# Admin API models
class ContactResponse(BaseModel):
    id: str
    phone: Optional[str]
    email: Optional[str]
    name: Optional[str]
    garden_size: Optional[str]
    garden_photos: List[str] = Field(default_factory=list)
    custom_fields: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @field_validator("garden_photos", "custom_fields", mode="before")
    @classmethod
    def none_to_empty(cls, value: Any, info) -> Any:
        if value is None:
            return [] if info.field_name == "garden_photos" else {}
        return value


class MessageResponse(BaseModel):
    id: int
    direction: MessageDirection
    content: str
    external_id: Optional[str]
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PendingResponseOut(BaseModel):
    id: str
    conversation_id: str
    original_message: str
    suggested_response: str
    status: PendingStatus
    approval_email_id: Optional[str]
    created_at: datetime
    responded_at: Optional[datetime]

    model_config = ConfigDict(from_attributes=True)


class ConversationSummary(BaseModel):
    id: str
    contact_id: str
    channel: Channel
    status: ConversationStatus
    follow_up_count: int
    needs_follow_up: bool
    last_follow_up_at: Optional[datetime]
    next_follow_up_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime
    contact: Optional[ContactResponse] = None

    model_config = ConfigDict(from_attributes=True)


class ConversationDetail(ConversationSummary):
    messages: List[MessageResponse] = Field(default_factory=list)
    pending_responses: List[PendingResponseOut] = Field(default_factory=list)


class PendingWithContext(PendingResponseOut):
    channel: Channel
    contact: ContactResponse


class BusinessConfigResponse(BaseModel):
    id: str
    business_name: str
    business_description: Optional[str]
    website_url: Optional[str]
    owner_name: Optional[str]
    owner_email: Optional[str]
    owner_phone: Optional[str]
    custom_instructions: Optional[str]
    tone: Optional[str]
    language: str
    collect_fields: List[str]
    greeting_message: Optional[str]
    closing_message: Optional[str]
    scraped_content: Optional[Dict[str, Any]]
    scraped_at: Optional[datetime]

    model_config = ConfigDict(from_attributes=True)


class BusinessConfigUpdate(BaseModel):
    """Partial update of the business configuration"""
    business_name: Optional[str] = Field(default=None, min_length=1, alias="businessName")
    business_description: Optional[str] = Field(default=None, alias="businessDescription")
    website_url: Optional[str] = Field(default=None, alias="websiteUrl")
    owner_name: Optional[str] = Field(default=None, alias="ownerName")
    owner_email: Optional[EmailStr] = Field(default=None, alias="ownerEmail")
    owner_phone: Optional[str] = Field(default=None, alias="ownerPhone")
    custom_instructions: Optional[str] = Field(default=None, alias="customInstructions")
    tone: Optional[Literal["friendly", "professional", "casual", "formal"]] = None
    language: Optional[Literal["nl", "en"]] = None
    collect_fields: Optional[List[str]] = Field(default=None, alias="collectFields")
    greeting_message: Optional[str] = Field(default=None, alias="greetingMessage")
    closing_message: Optional[str] = Field(default=None, alias="closingMessage")

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    @field_validator("website_url")
    @classmethod
    def validate_url(cls, value: Optional[str]) -> Optional[str]:
        if value and not value.startswith(("http://", "https://")):
            raise ValueError("websiteUrl must be an http(s) URL")
        return value


class ScrapedContentUpdate(BaseModel):
    """Operator edits of the cached website knowledge"""
    content: Dict[str, Any]


class ApproveRequest(BaseModel):
    modified_message: Optional[str] = Field(default=None, alias="modifiedMessage")

    model_config = ConfigDict(populate_by_name=True)


class SendMessageRequest(BaseModel):
    phone: str = Field(..., min_length=5)
    message: str = Field(..., min_length=1, max_length=4096)


class StatsResponse(BaseModel):
    total_contacts: int
    total_conversations: int
    pending_responses: int
    today_messages: int


class HealthCheckResponse(BaseModel):
    status: str
    mode: ResponseMode
    timestamp: datetime
