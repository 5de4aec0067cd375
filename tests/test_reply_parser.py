"""
Tests for the approval reply parser
"""
import pytest

from chattie.email_client import format_approval_email
from chattie.models import Channel
from chattie.reply_parser import ApprovalReplyParser

PENDING_ID = "3f2c9a1e-8b7d-4c6e-9f01-23456789abcd"


@pytest.fixture
def parser():
    """Create reply parser instance"""
    return ApprovalReplyParser()


class TestApproveReplies:
    """Test approve word detection"""

    def test_approve_with_ok(self, parser):
        result = parser.parse("ok")
        assert result.command_type == "approve"
        assert result.reply_text == ""

    def test_approve_with_verstuur(self, parser):
        assert parser.parse("Verstuur").command_type == "approve"

    def test_approve_with_goedgekeurd(self, parser):
        assert parser.parse("goedgekeurd").command_type == "approve"

    def test_approve_case_and_whitespace_insensitive(self, parser):
        assert parser.parse("  OK \n").command_type == "approve"
        assert parser.parse("JA").command_type == "approve"
        assert parser.parse("Yes").command_type == "approve"
        assert parser.parse("send").command_type == "approve"

    def test_approve_above_quoted_request(self, parser):
        body = "ok\n\nOp 3 jan. 2025 om 10:12 schreef Chattie:\n> Ref: " + PENDING_ID
        assert parser.parse(body).command_type == "approve"


class TestModifyReplies:
    """Test free-text modifications"""

    def test_modify_returns_text(self, parser):
        result = parser.parse("Hallo! Vertel me meer over je tuin.")
        assert result.command_type == "modify"
        assert result.reply_text == "Hallo! Vertel me meer over je tuin."

    def test_approve_word_inside_sentence_is_modify(self, parser):
        result = parser.parse("ok, maar zeg erbij dat we dinsdag komen")
        assert result.command_type == "modify"

    def test_modify_strips_quoted_mail(self, parser):
        body = "Stuur maar: we komen volgende week langs.\n\nOn Mon, Jan 6, 2025 Chattie wrote:\n> stuff"
        result = parser.parse(body)
        assert result.command_type == "modify"
        assert result.reply_text == "Stuur maar: we komen volgende week langs."


class TestIgnoreReplies:
    """Test empty replies"""

    def test_empty_body_is_ignore(self, parser):
        assert parser.parse("").command_type == "ignore"

    def test_whitespace_only_is_ignore(self, parser):
        assert parser.parse("  \n  ").command_type == "ignore"

    def test_reply_starting_with_quote_header_is_ignore(self, parser):
        body = "\n\nOp 3 jan. 2025 schreef Chattie:\n> Ref: " + PENDING_ID
        assert parser.parse(body).command_type == "ignore"

    def test_only_quoted_mail_is_ignore(self, parser):
        result = parser.parse(" \n> Ref: " + PENDING_ID)
        assert result.command_type == "ignore"
        assert result.reply_text == ""


class TestExtractReplyContent:
    """Test quote marker truncation"""

    def test_dutch_quote_header(self, parser):
        body = "Ja, verstuur maar.\n\nOp 3 jan schreef Klant: ..."
        assert parser.extract_reply_content(body) == "Ja, verstuur maar."

    def test_earliest_marker_wins(self, parser):
        body = "Prima\n\n---\nFrom: iemand\n\nOn Monday someone wrote"
        assert parser.extract_reply_content(body) == "Prima"

    def test_crlf_line_endings(self, parser):
        body = "Akkoord\r\n\r\nFrom: Chattie\r\n"
        assert parser.extract_reply_content(body) == "Akkoord"

    def test_quoted_lines(self, parser):
        assert parser.extract_reply_content("Top\n> quoted") == "Top"

    def test_own_section_rule(self, parser):
        _, body = format_approval_email("+31612345678", "Hoi", "Hallo!", Channel.CHAT, PENDING_ID)
        assert parser.extract_reply_content("Goed zo\n" + body).startswith("Goed zo")
        assert "═" not in parser.extract_reply_content("Goed zo\n" + body)

    def test_no_marker(self, parser):
        assert parser.extract_reply_content("  Alleen tekst  ") == "Alleen tekst"


class TestReference:
    """Test Ref token lookup"""

    def test_find_reference(self, parser):
        body = "ok\n\n> Ref: " + PENDING_ID.upper()
        assert parser.find_reference(body) == PENDING_ID

    def test_find_reference_missing(self, parser):
        assert parser.find_reference("ok") is None

    def test_approval_email_carries_reference(self, parser):
        subject, body = format_approval_email("+31612345678", "Hoi", "Hallo!", Channel.CHAT, PENDING_ID)
        assert parser.find_reference(body) == PENDING_ID
        assert subject.startswith("[Chattie]")
        assert "WhatsApp" in subject


class TestHelpText:
    """Test help text generation"""

    def test_get_help_text(self, parser):
        help_text = parser.get_help_text()
        assert "OK" in help_text
        assert "Aanpassen" in help_text
        assert "Negeren" in help_text
