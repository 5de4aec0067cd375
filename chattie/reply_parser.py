"""
Approval Reply Parser

Parses the business owner's email replies to approval requests.
"""
import re
from typing import Optional

from chattie.models import ParsedApprovalReply


class ApprovalReplyParser:
    """Parse owner replies to approval request emails"""

    # Everything from the first of these onward is quoted mail
    QUOTE_MARKERS = [
        '\n\nOp ',      # Dutch: "Op [datum] schreef..."
        '\n\nOn ',      # English: "On [date] wrote..."
        '\n\n---',
        '\n\n___',
        '═══',          # Section rule of our own approval email
        '\n\nVan:',
        '\n\nFrom:',
        '\n>',
    ]

    APPROVE_WORDS = {
        'ok',
        'send',
        'yes',
        'ja',
        'verstuur',
        'goedgekeurd',
    }

    REFERENCE_PATTERN = re.compile(r'Ref:\s*([0-9a-fA-F-]{36})')

    def extract_reply_content(self, body: str) -> str:
        """
        Extract the owner-written part of a reply.

        Args:
            body: Full plain-text email body

        Returns:
            Text before the first quote marker, trimmed
        """
        body = body.replace('\r\n', '\n')
        cut = len(body)
        for marker in self.QUOTE_MARKERS:
            index = body.find(marker)
            if index != -1 and index < cut:
                cut = index
        return body[:cut].strip()

    def find_reference(self, body: str) -> Optional[str]:
        """
        Find the pending response reference in an email body.

        Returns:
            Pending response ID or None
        """
        match = self.REFERENCE_PATTERN.search(body)
        return match.group(1).lower() if match else None

    def parse(self, body: str) -> ParsedApprovalReply:
        """
        Parse an owner reply and decide what to do with the suggestion.

        Args:
            body: Full plain-text email body

        Returns:
            ParsedApprovalReply: approve (send suggestion), modify (send the
            owner's text) or ignore (nothing written)
        """
        reply = self.extract_reply_content(body)
        normalized = reply.lower().strip()

        if normalized in self.APPROVE_WORDS:
            return ParsedApprovalReply(command_type='approve', reply_text='', raw_message=body)

        if reply:
            return ParsedApprovalReply(command_type='modify', reply_text=reply, raw_message=body)

        return ParsedApprovalReply(command_type='ignore', reply_text='', raw_message=body)

    @staticmethod
    def get_help_text() -> str:
        """
        Get the reply conventions shown in approval emails.

        Returns:
            Help text string
        """
        return (
            '• Goedkeuren: Antwoord op deze e-mail met alleen "OK" of "Verstuur"\n'
            '• Aanpassen: Antwoord met je aangepaste tekst\n'
            '• Negeren: Doe niets, bericht wordt niet verstuurd'
        )
