"""
WhatsApp channel clients

Delivers outbound chat messages through Twilio or Unipile and parses the
identities those providers put in their webhooks.
"""
import asyncio
import logging
import re
from typing import Dict, Optional

import httpx
from twilio.base.exceptions import TwilioException
from twilio.request_validator import RequestValidator
from twilio.rest import Client

from chattie.models import DeliveryError, UnipileWebhook

logger = logging.getLogger(__name__)

WHATSAPP_PREFIX = "whatsapp:"
PROVIDER_ID_PATTERN = re.compile(r"^(\d+)@")


def parse_twilio_phone(twilio_from: str) -> str:
    """Strip the whatsapp: prefix from a Twilio address"""
    return twilio_from.replace(WHATSAPP_PREFIX, "").strip()


def extract_phone_from_provider_id(provider_id: str) -> str:
    """
    Extract a phone number from a WhatsApp provider ID.

    Args:
        provider_id: e.g. "31612345678@s.whatsapp.net"

    Returns:
        Phone number with + prefix, or the ID unchanged when it holds none
    """
    match = PROVIDER_ID_PATTERN.match(provider_id)
    if match:
        return f"+{match.group(1)}"
    return provider_id


def is_own_message(payload: UnipileWebhook) -> bool:
    """Whether the webhook reports a message sent by the connected account"""
    if not payload.account_info or not payload.account_info.user_id or not payload.sender:
        return False
    return payload.account_info.user_id == payload.sender.attendee_provider_id


class TwilioWhatsAppClient:
    """WhatsApp client backed by the Twilio Messaging API"""

    def __init__(self, account_sid: str, auth_token: str, from_number: str, client: Optional[Client] = None):
        """
        Initialize Twilio client.

        Args:
            account_sid: Twilio account SID
            auth_token: Twilio auth token
            from_number: Sending WhatsApp number (with or without whatsapp: prefix)
            client: Preconfigured Twilio REST client
        """
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_number = from_number if from_number.startswith(WHATSAPP_PREFIX) else f"{WHATSAPP_PREFIX}{from_number}"
        self._client = client

    @property
    def client(self) -> Client:
        # Created on first use so the service starts without Twilio credentials
        if self._client is None:
            self._client = Client(self.account_sid, self.auth_token)
        return self._client

    async def send(self, identity: str, text: str) -> str:
        """
        Send a WhatsApp message to a phone number.

        Args:
            identity: Recipient phone number
            text: Message text

        Returns:
            Twilio message SID

        Raises:
            DeliveryError: If Twilio rejects the message
        """
        to_number = identity if identity.startswith(WHATSAPP_PREFIX) else f"{WHATSAPP_PREFIX}{identity}"
        try:
            message = await asyncio.to_thread(
                self.client.messages.create,
                body=text,
                from_=self.from_number,
                to=to_number,
            )
        except TwilioException as e:
            logger.error(f"Twilio error sending WhatsApp message to {identity}: {e}")
            raise DeliveryError(f"Twilio send failed: {e}") from e

        logger.info(f"Sent WhatsApp message to {identity}, SID: {message.sid}")
        return message.sid

    async def send_to_thread(self, thread_id: str, text: str) -> str:
        # Twilio has no chat handles; the thread is the recipient number
        return await self.send(thread_id, text)

    def validate_signature(self, signature: str, url: str, params: Dict[str, str]) -> bool:
        """Validate the X-Twilio-Signature header of a webhook request"""
        return RequestValidator(self.auth_token).validate(url, params, signature)


class UnipileClient:
    """WhatsApp client backed by the Unipile messaging API"""

    def __init__(self, dsn: str, api_key: str, account_id: str, timeout: int = 30):
        """
        Initialize Unipile client.

        Args:
            dsn: Unipile API host, may include a port (e.g. "api3.unipile.com:13311")
            api_key: Unipile API key
            account_id: Connected WhatsApp account ID
            timeout: Request timeout in seconds
        """
        self.base_url = f"https://{dsn}/api/v1"
        self.api_key = api_key
        self.account_id = account_id
        self.timeout = timeout

    @property
    def headers(self) -> Dict[str, str]:
        return {
            "X-API-KEY": self.api_key,
            "Accept": "application/json",
        }

    async def _post(self, path: str, payload: dict) -> dict:
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(f"{self.base_url}{path}", json=payload, headers=self.headers)
                response.raise_for_status()
                return response.json()
        except httpx.HTTPStatusError as e:
            logger.error(f"Unipile API error {e.response.status_code}: {e.response.text}")
            raise DeliveryError(f"Unipile send failed: {e.response.status_code}") from e
        except httpx.HTTPError as e:
            logger.error(f"HTTP error calling Unipile: {e}")
            raise DeliveryError(f"Unipile send failed: {e}") from e

    async def send(self, identity: str, text: str) -> str:
        """
        Start (or continue) a chat with a phone number.

        Args:
            identity: Phone number in international format
            text: Message text

        Returns:
            Unipile message ID (chat ID when none is returned)
        """
        digits = re.sub(r"\D", "", identity)
        data = await self._post(
            "/chats",
            {
                "account_id": self.account_id,
                "text": text,
                "attendees_ids": [f"{digits}@s.whatsapp.net"],
            },
        )
        logger.info(f"Sent WhatsApp message via Unipile to {identity}, chat_id: {data.get('chat_id')}")
        return data.get("message_id") or data.get("chat_id") or ""

    async def send_to_thread(self, thread_id: str, text: str) -> str:
        """Send a message into an existing Unipile chat"""
        data = await self._post(f"/chats/{thread_id}/messages", {"text": text})
        logger.info(f"Sent WhatsApp message to Unipile chat {thread_id}")
        return data.get("message_id") or thread_id


def get_chat_client(settings):
    """
    Get the WhatsApp client for the configured provider.

    Unipile is used when its API key is set, Twilio otherwise.
    """
    if settings.use_unipile:
        return UnipileClient(
            dsn=settings.unipile_dsn,
            api_key=settings.unipile_api_key,
            account_id=settings.unipile_account_id,
        )
    return TwilioWhatsAppClient(
        account_sid=settings.twilio_account_sid,
        auth_token=settings.twilio_auth_token,
        from_number=settings.twilio_whatsapp_number,
    )
