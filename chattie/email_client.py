"""
Email channel client

Reads the business mailbox over IMAP and sends mail over SMTP.
Blocking protocol calls run in a worker thread.
"""
import asyncio
import email
import imaplib
import logging
import re
import smtplib
import time
from datetime import timedelta
from email.header import decode_header
from email.message import EmailMessage as MIMEEmail
from email.utils import make_msgid, parseaddr, parsedate_to_datetime
from typing import List, Optional, Tuple

from chattie.models import Channel, EmailCategory, EmailMessage, utc_now
from chattie.reply_parser import ApprovalReplyParser

logger = logging.getLogger(__name__)

PROCESSED_FLAG = "ChattieProcessed"
LABEL_PREFIX = "Chattie_"
APPROVAL_SUBJECT_TAG = "[Chattie]"
SECTION_RULE = "═" * 39


class EmailClient:
    """Client for the business mailbox (IMAP for reading, SMTP for sending)"""

    def __init__(
        self,
        imap_server: str,
        smtp_server: str,
        email_address: str,
        password: str,
        imap_port: int = 993,
        smtp_port: int = 465,
        drafts_mailbox: str = "[Gmail]/Drafts",
        lookback_days: int = 7,
    ):
        self.imap_server = imap_server
        self.imap_port = imap_port
        self.smtp_server = smtp_server
        self.smtp_port = smtp_port
        self.email_address = email_address
        self.password = password
        self.drafts_mailbox = drafts_mailbox
        self.lookback_days = lookback_days

    # ------------------------------------------------------------------
    # Public async API
    # ------------------------------------------------------------------

    async def list_unprocessed(self, limit: int = 20) -> List[EmailMessage]:
        """
        Get recent inbox messages that have not been triaged yet.

        Triage state is kept as an IMAP keyword, so messages the owner already
        opened are still picked up.
        """
        since = (utc_now() - timedelta(days=self.lookback_days)).strftime("%d-%b-%Y")
        return await asyncio.to_thread(
            self._search_and_fetch, f"UNKEYWORD {PROCESSED_FLAG} SINCE {since}", limit
        )

    async def list_unread(self, limit: int = 20) -> List[EmailMessage]:
        """Get unread inbox messages"""
        return await asyncio.to_thread(self._search_and_fetch, "UNSEEN", limit)

    async def get(self, uid: str) -> Optional[EmailMessage]:
        return await asyncio.to_thread(self._fetch_one, uid)

    async def mark_read(self, uid: str):
        await asyncio.to_thread(self._store_flags, uid, "(\\Seen)")
        logger.debug(f"Marked email {uid} as read")

    async def label(self, uid: str, category: EmailCategory):
        """Flag a message as triaged with its classification"""
        await asyncio.to_thread(
            self._store_flags, uid, f"({PROCESSED_FLAG} {LABEL_PREFIX}{category.value})"
        )
        logger.debug(f"Labeled email {uid} as {category.value}")

    async def create_draft(
        self,
        to: str,
        subject: str,
        body: str,
        thread_id: Optional[str] = None,
    ) -> str:
        """
        Store a draft in the drafts mailbox.

        Returns:
            Message-ID of the draft
        """
        message = self._build_message(to, subject, body, thread_id)
        await asyncio.to_thread(self._append_draft, message)
        logger.info(f"Created draft to {to}: {subject}")
        return message["Message-ID"]

    async def send(
        self,
        to: str,
        subject: str,
        body: str,
        thread_id: Optional[str] = None,
    ) -> str:
        """
        Send an email over SMTP.

        Args:
            to: Recipient address
            subject: Subject line
            body: Plain-text body
            thread_id: Message-ID of the mail being replied to

        Returns:
            Message-ID of the sent email
        """
        message = self._build_message(to, subject, body, thread_id)
        await asyncio.to_thread(self._smtp_send, message)
        logger.info(f"Sent email to {to}: {subject}")
        return message["Message-ID"]

    # ------------------------------------------------------------------
    # IMAP / SMTP plumbing
    # ------------------------------------------------------------------

    def _connect(self) -> imaplib.IMAP4_SSL:
        connection = imaplib.IMAP4_SSL(self.imap_server, self.imap_port)
        connection.login(self.email_address, self.password)
        return connection

    def _disconnect(self, connection: imaplib.IMAP4_SSL):
        try:
            connection.logout()
        except Exception as e:
            logger.warning(f"Error during IMAP disconnect: {e}")

    def _search_and_fetch(self, criteria: str, limit: int) -> List[EmailMessage]:
        connection = self._connect()
        try:
            connection.select("INBOX")
            status, data = connection.uid("SEARCH", None, criteria)
            if status != "OK":
                logger.error(f"IMAP search failed: {criteria}")
                return []

            uids = data[0].split() if data and data[0] else []
            uids = uids[-limit:]

            emails = []
            for uid in uids:
                try:
                    parsed = self._fetch_uid(connection, uid.decode())
                    if parsed:
                        emails.append(parsed)
                except Exception as e:
                    logger.error(f"Error fetching email {uid!r}: {e}")
            return emails
        finally:
            self._disconnect(connection)

    def _fetch_one(self, uid: str) -> Optional[EmailMessage]:
        connection = self._connect()
        try:
            connection.select("INBOX")
            return self._fetch_uid(connection, uid)
        finally:
            self._disconnect(connection)

    def _fetch_uid(self, connection: imaplib.IMAP4_SSL, uid: str) -> Optional[EmailMessage]:
        # BODY.PEEK leaves the \Seen flag untouched
        status, data = connection.uid("FETCH", uid, "(BODY.PEEK[])")
        if status != "OK" or not data or not isinstance(data[0], tuple):
            logger.error(f"Failed to fetch email {uid}")
            return None
        return parse_email(uid, email.message_from_bytes(data[0][1]))

    def _store_flags(self, uid: str, flags: str):
        connection = self._connect()
        try:
            connection.select("INBOX")
            status, _ = connection.uid("STORE", uid, "+FLAGS", flags)
            if status != "OK":
                raise RuntimeError(f"Failed to set flags {flags} on email {uid}")
        finally:
            self._disconnect(connection)

    def _append_draft(self, message: MIMEEmail):
        connection = self._connect()
        try:
            mailbox = self.drafts_mailbox
            if " " in mailbox and not mailbox.startswith('"'):
                mailbox = f'"{mailbox}"'
            status, _ = connection.append(
                mailbox,
                "(\\Draft)",
                imaplib.Time2Internaldate(time.time()),
                message.as_bytes(),
            )
            if status != "OK":
                raise RuntimeError(f"Failed to store draft in {self.drafts_mailbox}")
        finally:
            self._disconnect(connection)

    def _smtp_send(self, message: MIMEEmail):
        with smtplib.SMTP_SSL(self.smtp_server, self.smtp_port) as smtp:
            smtp.login(self.email_address, self.password)
            smtp.send_message(message)

    def _build_message(
        self,
        to: str,
        subject: str,
        body: str,
        thread_id: Optional[str] = None,
    ) -> MIMEEmail:
        message = MIMEEmail()
        message["From"] = self.email_address
        message["To"] = to
        message["Subject"] = subject
        domain = self.email_address.split("@")[-1] if "@" in self.email_address else None
        message["Message-ID"] = make_msgid(domain=domain)
        if thread_id:
            message["In-Reply-To"] = thread_id
            message["References"] = thread_id
        message.set_content(body)
        return message


def _decode_header(value: str) -> str:
    parts = []
    for text, charset in decode_header(value or ""):
        if isinstance(text, bytes):
            parts.append(text.decode(charset or "utf-8", errors="replace"))
        else:
            parts.append(text)
    return "".join(parts)


def _extract_body(message: email.message.Message) -> str:
    html = None
    parts = message.walk() if message.is_multipart() else [message]
    for part in parts:
        if part.get_content_disposition() == "attachment":
            continue
        content_type = part.get_content_type()
        if content_type not in ("text/plain", "text/html"):
            continue
        payload = part.get_payload(decode=True)
        if payload is None:
            continue
        text = payload.decode(part.get_content_charset() or "utf-8", errors="replace")
        if content_type == "text/plain":
            return text
        html = html or text

    if html:
        text = re.sub(r"<br\s*/?>|</p>", "\n", html, flags=re.IGNORECASE)
        return re.sub(r"<[^>]+>", "", text)
    return ""


def parse_email(uid: str, message: email.message.Message) -> EmailMessage:
    """Parse an email.message.Message into our EmailMessage model"""
    from_name, from_address = parseaddr(_decode_header(message.get("From", "")))
    message_id = (message.get("Message-ID") or "").strip()

    references = (message.get("References") or "").split()
    thread_id = references[0] if references else (message.get("In-Reply-To") or "").strip() or message_id

    received_at = None
    if message.get("Date"):
        try:
            received_at = parsedate_to_datetime(message["Date"])
        except (TypeError, ValueError):
            logger.debug(f"Unparseable Date header on email {uid}")

    return EmailMessage(
        id=uid,
        message_id=message_id,
        thread_id=thread_id or None,
        from_address=from_address.lower(),
        from_name=from_name or None,
        to=message.get("To", ""),
        subject=_decode_header(message.get("Subject", "")),
        body=_extract_body(message),
        date=received_at,
    )


def format_approval_email(
    original_from: str,
    original_message: str,
    suggested_response: str,
    channel: Channel,
    pending_id: str,
) -> Tuple[str, str]:
    """
    Format the approval request sent to the business owner.

    The reference line must survive verbatim: owner replies are matched on it.

    Args:
        original_from: Customer phone number or email address
        original_message: Customer message text
        suggested_response: AI-suggested reply
        channel: Channel the customer wrote on
        pending_id: Pending response ID

    Returns:
        Tuple of (subject, body)
    """
    channel_name = "WhatsApp" if channel == Channel.CHAT else "e-mail"
    subject = f"{APPROVAL_SUBJECT_TAG} Nieuw {channel_name} bericht - Goedkeuring gevraagd"

    body = f"""Je hebt een nieuw {channel_name} bericht ontvangen.

{SECTION_RULE}
BERICHT VAN KLANT
{SECTION_RULE}
Van: {original_from}

{original_message}

{SECTION_RULE}
VOORGESTELD ANTWOORD
{SECTION_RULE}
{suggested_response}

{SECTION_RULE}
WAT WIL JE DOEN?
{SECTION_RULE}
{ApprovalReplyParser.get_help_text()}

─────────────────────────────────────
Ref: {pending_id}
"""
    return subject, body


def get_email_client(settings) -> EmailClient:
    """
    Get email client instance from settings.

    Returns:
        EmailClient instance
    """
    return EmailClient(
        imap_server=settings.imap_server,
        imap_port=settings.imap_port,
        smtp_server=settings.smtp_server,
        smtp_port=settings.smtp_port,
        email_address=settings.email_address,
        password=settings.email_password,
        drafts_mailbox=settings.drafts_mailbox,
    )
