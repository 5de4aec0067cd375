"""
Tests for the contact/conversation store
"""
from datetime import datetime, timedelta, timezone

import pytest

from chattie.database import MessageDB
from chattie.models import (
    Channel,
    CollectedInfo,
    ConversationStatus,
    MessageDirection,
    NotFoundError,
    PendingStatus,
    utc_now,
)


class TestContacts:
    """Test contact lookup and updates"""

    def test_find_or_create_is_idempotent(self, db):
        first = db.find_or_create_contact(phone="+31612345678")
        second = db.find_or_create_contact(phone="+31612345678")
        assert first.id == second.id
        assert len(db.list_contacts()) == 1

    def test_display_name_only_set_when_missing(self, db):
        contact = db.find_or_create_contact(phone="+31612345678", name="Jan")
        db.find_or_create_contact(phone="+31612345678", name="Piet")
        assert db.get_contact(contact.id).name == "Jan"

    def test_display_name_filled_in_later(self, db):
        contact = db.find_or_create_contact(phone="+31612345678")
        db.find_or_create_contact(phone="+31612345678", name="Jan")
        assert db.get_contact(contact.id).name == "Jan"

    def test_email_lookup_is_case_insensitive(self, db):
        first = db.find_or_create_contact(email="Klant@Example.com")
        second = db.find_or_create_contact(email="klant@example.com")
        assert first.id == second.id
        assert first.email == "klant@example.com"

    def test_timestamps_are_naive_utc(self, db):
        contact = db.find_or_create_contact(phone="+31612345678")
        now = datetime.now(timezone.utc).replace(tzinfo=None)

        assert contact.created_at.tzinfo is None
        assert abs(contact.created_at - now) < timedelta(minutes=1)

    def test_identity_required(self, db):
        with pytest.raises(ValueError):
            db.find_or_create_contact()

    def test_update_contact_info_merges(self, db):
        contact = db.find_or_create_contact(phone="+31612345678", name="Jan")
        updated = db.update_contact_info(
            contact.id,
            CollectedInfo(email="Jan@Example.com", gardenSize="10x12m", extra={"budget": "5000"}),
        )
        assert updated.name == "Jan"
        assert updated.email == "jan@example.com"
        assert updated.garden_size == "10x12m"
        assert updated.custom_fields == {"budget": "5000"}

        updated = db.update_contact_info(contact.id, CollectedInfo(extra={"timeline": "voorjaar"}))
        assert updated.custom_fields == {"budget": "5000", "timeline": "voorjaar"}
        assert updated.garden_size == "10x12m"

    def test_collected_phone_keeps_existing_phone(self, db):
        contact = db.find_or_create_contact(phone="+31612345678")

        updated = db.update_contact_info(contact.id, CollectedInfo(phone="06-99887766", name="Jan"))

        assert updated.phone == "+31612345678"
        assert updated.name == "Jan"
        assert db.find_or_create_contact(phone="+31612345678").id == contact.id

    def test_collected_email_keeps_existing_email(self, db):
        contact = db.find_or_create_contact(email="klant@example.com")

        updated = db.update_contact_info(contact.id, CollectedInfo(email="ander@example.com"))

        assert updated.email == "klant@example.com"

    def test_collected_phone_fills_empty_phone(self, db):
        contact = db.find_or_create_contact(email="klant@example.com")

        updated = db.update_contact_info(contact.id, CollectedInfo(phone="+31687654321"))

        assert updated.phone == "+31687654321"

    def test_collected_phone_of_other_contact_is_skipped(self, db):
        other = db.find_or_create_contact(phone="+31687654321")
        contact = db.find_or_create_contact(email="klant@example.com")

        updated = db.update_contact_info(contact.id, CollectedInfo(phone="+31687654321", gardenSize="20m2"))

        assert updated.phone is None
        assert updated.garden_size == "20m2"
        assert db.get_contact(other.id).phone == "+31687654321"

    def test_update_unknown_contact(self, db):
        assert db.update_contact_info("missing", CollectedInfo(name="Jan")) is None

    def test_add_contact_photos(self, db):
        contact = db.find_or_create_contact(phone="+31612345678")
        db.add_contact_photos(contact.id, ["https://media/1.jpg"])
        updated = db.add_contact_photos(contact.id, ["https://media/2.jpg"])
        assert updated.garden_photos == ["https://media/1.jpg", "https://media/2.jpg"]

    def test_delete_contact_cascades(self, db):
        contact = db.find_or_create_contact(phone="+31612345678")
        conversation = db.get_or_create_conversation(contact.id, Channel.CHAT)
        db.save_message(conversation.id, contact.id, MessageDirection.INBOUND, "Hoi")
        pending = db.create_pending_response(conversation.id, "Hoi", "Hallo!")

        db.delete_contact(contact.id)

        assert db.get_contact(contact.id) is None
        assert db.get_conversation(conversation.id) is None
        assert db.get_pending_response(pending.id) is None
        with db.get_session() as session:
            assert session.query(MessageDB).count() == 0

    def test_delete_unknown_contact(self, db):
        with pytest.raises(NotFoundError):
            db.delete_contact("missing")


class TestConversations:
    """Test conversation lookup-or-create and transitions"""

    def test_one_open_conversation_per_channel(self, db):
        contact = db.find_or_create_contact(phone="+31612345678")
        first = db.get_or_create_conversation(contact.id, Channel.CHAT)
        second = db.get_or_create_conversation(contact.id, Channel.CHAT)
        assert first.id == second.id
        assert first.status == ConversationStatus.ACTIVE.value

    def test_channels_are_separate(self, db):
        contact = db.find_or_create_contact(phone="+31612345678")
        chat = db.get_or_create_conversation(contact.id, Channel.CHAT)
        email = db.get_or_create_conversation(contact.id, Channel.EMAIL)
        assert chat.id != email.id

    def test_paused_conversation_is_reused(self, db):
        contact = db.find_or_create_contact(phone="+31612345678")
        conversation = db.get_or_create_conversation(contact.id, Channel.CHAT)
        db.transition_conversation(conversation.id, ConversationStatus.ACTIVE, ConversationStatus.PAUSED)

        found = db.get_or_create_conversation(contact.id, Channel.CHAT)
        assert found.id == conversation.id
        assert found.status == ConversationStatus.PAUSED.value

    def test_completed_conversation_is_not_reopened(self, db):
        contact = db.find_or_create_contact(phone="+31612345678")
        conversation = db.get_or_create_conversation(contact.id, Channel.CHAT)
        db.update_conversation(conversation.id, status=ConversationStatus.COMPLETED.value)

        fresh = db.get_or_create_conversation(contact.id, Channel.CHAT)
        assert fresh.id != conversation.id
        assert fresh.status == ConversationStatus.ACTIVE.value
        assert db.get_conversation(conversation.id).status == ConversationStatus.COMPLETED.value

    def test_transition_requires_from_status(self, db):
        contact = db.find_or_create_contact(phone="+31612345678")
        conversation = db.get_or_create_conversation(contact.id, Channel.CHAT)

        assert db.transition_conversation(conversation.id, ConversationStatus.PAUSED, ConversationStatus.ACTIVE) is False
        assert db.transition_conversation(conversation.id, ConversationStatus.ACTIVE, ConversationStatus.PAUSED) is True
        assert db.transition_conversation(conversation.id, ConversationStatus.ACTIVE, ConversationStatus.PAUSED) is False

    def test_list_conversations_filters(self, db):
        contact = db.find_or_create_contact(phone="+31612345678")
        chat = db.get_or_create_conversation(contact.id, Channel.CHAT)
        email = db.get_or_create_conversation(contact.id, Channel.EMAIL)
        db.transition_conversation(email.id, ConversationStatus.ACTIVE, ConversationStatus.PAUSED)

        assert [c.id for c in db.list_conversations(channel=Channel.CHAT)] == [chat.id]
        assert [c.id for c in db.list_conversations(status=ConversationStatus.PAUSED)] == [email.id]
        assert len(db.list_conversations()) == 2

    def test_get_due_follow_ups(self, db):
        contact = db.find_or_create_contact(email="klant@example.com")
        due = db.get_or_create_conversation(contact.id, Channel.EMAIL)
        later = db.get_or_create_conversation(
            db.find_or_create_contact(email="later@example.com").id, Channel.EMAIL
        )
        now = utc_now()
        db.update_conversation(due.id, needs_follow_up=True, next_follow_up_at=now - timedelta(minutes=1))
        db.update_conversation(later.id, needs_follow_up=True, next_follow_up_at=now + timedelta(days=1))

        result = db.get_due_follow_ups(now)
        assert [c.id for c in result] == [due.id]
        assert result[0].contact.email == "klant@example.com"


class TestMessages:
    """Test message storage and the context window"""

    def _conversation(self, db):
        contact = db.find_or_create_contact(phone="+31612345678")
        return contact, db.get_or_create_conversation(contact.id, Channel.CHAT)

    def test_recent_messages_oldest_first(self, db):
        contact, conversation = self._conversation(db)
        for i in range(5):
            db.save_message(conversation.id, contact.id, MessageDirection.INBOUND, f"bericht {i}")

        recent = db.get_recent_messages(conversation.id, limit=3)
        assert [m.content for m in recent] == ["bericht 2", "bericht 3", "bericht 4"]

    def test_recent_messages_before_id(self, db):
        contact, conversation = self._conversation(db)
        first = db.save_message(conversation.id, contact.id, MessageDirection.INBOUND, "eerste")
        db.save_message(conversation.id, contact.id, MessageDirection.OUTBOUND, "antwoord")
        latest = db.save_message(conversation.id, contact.id, MessageDirection.INBOUND, "tweede")

        history = db.get_recent_messages(conversation.id, before_id=latest.id)
        assert [m.content for m in history] == ["eerste", "antwoord"]
        assert history[0].id == first.id

    def test_count_messages_by_direction(self, db):
        contact, conversation = self._conversation(db)
        db.save_message(conversation.id, contact.id, MessageDirection.INBOUND, "Hoi")
        db.save_message(conversation.id, contact.id, MessageDirection.OUTBOUND, "Hallo", external_id="SM-1")

        assert db.count_messages(conversation.id) == 2
        assert db.count_messages(conversation.id, MessageDirection.OUTBOUND) == 1


class TestPendingResponses:
    """Test pending response transitions"""

    def _pending(self, db):
        contact = db.find_or_create_contact(phone="+31612345678")
        conversation = db.get_or_create_conversation(contact.id, Channel.CHAT)
        return db.create_pending_response(conversation.id, "Hoi", "Hallo!")

    def test_created_pending(self, db):
        pending = self._pending(db)
        loaded = db.get_pending_response(pending.id)
        assert loaded.status == PendingStatus.PENDING.value
        assert loaded.conversation.contact.phone == "+31612345678"

    def test_resolve_only_once(self, db):
        pending = self._pending(db)
        assert db.resolve_pending_response(pending.id, PendingStatus.APPROVED) is True
        assert db.resolve_pending_response(pending.id, PendingStatus.REJECTED) is False

        loaded = db.get_pending_response(pending.id)
        assert loaded.status == PendingStatus.APPROVED.value
        assert loaded.responded_at is not None

    def test_resolve_to_pending_rejected(self, db):
        pending = self._pending(db)
        with pytest.raises(ValueError):
            db.resolve_pending_response(pending.id, PendingStatus.PENDING)

    def test_list_awaiting_email_only(self, db):
        with_email = self._pending(db)
        without_email = db.create_pending_response(with_email.conversation_id, "Nog iets", "Zeker!")
        db.set_approval_email(with_email.id, "<approval@tuinbedrijf.nl>")

        assert {p.id for p in db.list_pending_responses()} == {with_email.id, without_email.id}
        assert [p.id for p in db.list_pending_responses(awaiting_email_only=True)] == [with_email.id]

    def test_resolved_not_listed(self, db):
        pending = self._pending(db)
        db.resolve_pending_response(pending.id, PendingStatus.REJECTED)
        assert db.list_pending_responses() == []


class TestBusinessConfig:
    """Test business configuration singleton"""

    def test_default_config(self, db):
        config = db.get_business_config()
        assert config.business_name == "Mijn Bedrijf"
        assert config.language == "nl"
        assert config.tone == "friendly"
        assert config.collect_fields == ["name", "email", "phone", "gardenSize", "photos"]
        assert db.get_business_config().id == config.id

    def test_update_config(self, db):
        db.update_business_config({"business_name": "Groen & Co", "tone": "formal"})
        config = db.get_business_config()
        assert config.business_name == "Groen & Co"
        assert config.tone == "formal"

    def test_scraped_content_sets_description(self, db):
        config = db.set_scraped_content({"description": "Hoveniers uit Utrecht", "services": ["Tuinontwerp"]})
        assert config.scraped_content["services"] == ["Tuinontwerp"]
        assert config.business_description == "Hoveniers uit Utrecht"
        assert config.scraped_at is not None


class TestStatistics:
    """Test dashboard statistics"""

    def test_statistics(self, db):
        contact = db.find_or_create_contact(phone="+31612345678")
        conversation = db.get_or_create_conversation(contact.id, Channel.CHAT)
        db.save_message(conversation.id, contact.id, MessageDirection.INBOUND, "Hoi")
        db.create_pending_response(conversation.id, "Hoi", "Hallo!")

        stats = db.get_statistics()
        assert stats == {
            "total_contacts": 1,
            "total_conversations": 1,
            "pending_responses": 1,
            "today_messages": 1,
        }
