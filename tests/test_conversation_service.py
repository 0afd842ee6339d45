from unittest.mock import patch

import pytest

from support_chat.errors import ConversationNotFoundError, InvalidInputError, PermissionDeniedError
from support_chat.models import Conversation, Message
from support_chat.schemas.message import TextContent
from support_chat.services import conversation_store
from support_chat.services.conversation_service import (
    get_conversation_for,
    get_or_create_conversation,
    list_conversations_for,
    set_priority,
    set_status,
    start_conversation_for_customer,
)
from support_chat.services.message_service import list_messages, send_message
from support_chat.services.state_machine import InvalidTransitionError


def system_messages(db, conversation_id):
    return [m for m in list_messages(db, conversation_id) if m.sender_role == "system"]


class TestGetOrCreateConversation:
    def test_creates_waiting_conversation_with_welcome(self, db, customer):
        conversation = get_or_create_conversation(db, customer)
        db.commit()

        assert conversation.status == "waiting"
        assert conversation.customer_id == "c1"
        assert conversation.customer_email == "a@x.com"
        assert conversation.unread_count_for_customer == 1
        assert conversation.unread_count_for_staff == 0

        messages = list_messages(db, conversation.id)
        assert len(messages) == 1
        assert messages[0].kind == "system"
        assert "Ana" in messages[0].body
        assert conversation.last_message == messages[0].body

    def test_returns_existing_open_conversation(self, db, customer):
        first = get_or_create_conversation(db, customer)
        db.commit()
        second = get_or_create_conversation(db, customer)
        db.commit()

        assert second.id == first.id
        assert db.query(Conversation).count() == 1
        assert db.query(Message).count() == 1

    def test_order_id_sets_category(self, db, customer):
        conversation = get_or_create_conversation(db, customer, order_id="ord-42")
        db.commit()

        assert conversation.category == "order"
        assert conversation.order_id == "ord-42"

    def test_closed_conversation_is_not_reused(self, db, customer, staff):
        first = get_or_create_conversation(db, customer)
        set_status(db, first.id, "closed", staff=staff)
        db.commit()

        second = get_or_create_conversation(db, customer)
        db.commit()

        assert second.id != first.id
        assert second.status == "waiting"

    def test_staff_cannot_use_customer_entry_point(self, db, staff):
        with pytest.raises(PermissionDeniedError):
            get_or_create_conversation(db, staff)

    def test_staff_can_start_conversation_for_customer(self, db, customer, staff):
        conversation = start_conversation_for_customer(db, staff, customer)
        db.commit()

        assert conversation.customer_id == customer.id
        assert conversation.staff_id == staff.id
        assert conversation.status == "waiting"

    def test_concurrent_create_reuses_winner(self, session_factory, customer):
        winner_session = session_factory()
        loser_session = session_factory()
        winner = get_or_create_conversation(winner_session, customer)
        winner_session.commit()

        real_find = conversation_store.find_open_for_customer
        calls = []

        def stale_then_real(db, customer_id, exclude_id=None):
            calls.append(customer_id)
            if len(calls) == 1:
                return None
            return real_find(db, customer_id, exclude_id)

        with patch.object(conversation_store, "find_open_for_customer", side_effect=stale_then_real):
            result = get_or_create_conversation(loser_session, customer)
        loser_session.commit()

        assert result.id == winner.id
        assert len(calls) == 2
        assert loser_session.query(Conversation).filter(Conversation.customer_id == customer.id).count() == 1

        winner_session.close()
        loser_session.close()


class TestSetStatus:
    def test_close_appends_exactly_one_system_message(self, db, customer, staff):
        conversation = get_or_create_conversation(db, customer)
        db.commit()

        set_status(db, conversation.id, "closed", staff=staff)
        db.commit()

        reread = conversation_store.require_conversation(db, conversation.id)
        assert reread.status == "closed"
        assert len(system_messages(db, conversation.id)) == 2  # welcome + closing
        assert reread.unread_count_for_customer == 2

    def test_closing_twice_does_not_repeat_notice(self, db, customer, staff):
        conversation = get_or_create_conversation(db, customer)
        set_status(db, conversation.id, "closed", staff=staff)
        db.commit()
        before = conversation.updated_at

        set_status(db, conversation.id, "closed", staff=staff)
        db.commit()

        assert len(system_messages(db, conversation.id)) == 2
        assert conversation.updated_at >= before

    def test_records_staff_on_transition(self, db, customer, staff):
        conversation = get_or_create_conversation(db, customer)
        set_status(db, conversation.id, "active", staff=staff)
        db.commit()

        assert conversation.staff_id == staff.id
        assert conversation.staff_name == staff.name

    def test_rejects_active_to_waiting(self, db, customer, staff):
        conversation = get_or_create_conversation(db, customer)
        set_status(db, conversation.id, "active", staff=staff)
        db.commit()

        with pytest.raises(InvalidTransitionError):
            set_status(db, conversation.id, "waiting", staff=staff)

    def test_rejects_unknown_status(self, db, customer, staff):
        conversation = get_or_create_conversation(db, customer)
        db.commit()

        with pytest.raises(InvalidInputError):
            set_status(db, conversation.id, "archived", staff=staff)

    def test_customer_cannot_change_status(self, db, customer):
        conversation = get_or_create_conversation(db, customer)
        db.commit()

        with pytest.raises(PermissionDeniedError):
            set_status(db, conversation.id, "closed", staff=customer)

    def test_unknown_conversation(self, db, staff):
        with pytest.raises(ConversationNotFoundError):
            set_status(db, "00000000-0000-0000-0000-000000000000", "closed", staff=staff)

    def test_malformed_id_is_not_found(self, db, staff):
        with pytest.raises(ConversationNotFoundError):
            set_status(db, "not-a-uuid", "closed", staff=staff)

    def test_reopen_carries_counters_forward(self, db, customer, staff):
        conversation = get_or_create_conversation(db, customer)
        send_message(db, conversation.id, customer, TextContent(body="Where is my order?"))
        set_status(db, conversation.id, "closed", staff=staff)
        db.commit()
        counters = (conversation.unread_count_for_customer, conversation.unread_count_for_staff)

        set_status(db, conversation.id, "active", staff=staff)
        db.commit()

        assert conversation.status == "active"
        assert (conversation.unread_count_for_customer, conversation.unread_count_for_staff) == counters

    def test_reopen_blocked_while_customer_has_another_open(self, db, customer, staff):
        first = get_or_create_conversation(db, customer)
        set_status(db, first.id, "closed", staff=staff)
        db.commit()
        get_or_create_conversation(db, customer)
        db.commit()

        with pytest.raises(InvalidTransitionError):
            set_status(db, first.id, "waiting", staff=staff)


class TestSetPriority:
    def test_sets_priority_without_messages(self, db, customer, staff):
        conversation = get_or_create_conversation(db, customer)
        db.commit()

        set_priority(db, conversation.id, "high", staff=staff)
        db.commit()

        assert conversation.priority == "high"
        assert conversation.status == "waiting"
        assert len(list_messages(db, conversation.id)) == 1

    def test_rejects_unknown_priority(self, db, customer, staff):
        conversation = get_or_create_conversation(db, customer)
        db.commit()

        with pytest.raises(InvalidInputError):
            set_priority(db, conversation.id, "urgent", staff=staff)


class TestConversationAccess:
    def test_customer_cannot_read_foreign_conversation(self, db, customer, other_customer):
        conversation = get_or_create_conversation(db, customer)
        db.commit()

        with pytest.raises(PermissionDeniedError):
            get_conversation_for(db, conversation.id, other_customer)

    def test_customer_lists_only_own(self, db, customer, other_customer):
        get_or_create_conversation(db, customer)
        get_or_create_conversation(db, other_customer)
        db.commit()

        conversations = list_conversations_for(db, customer)
        assert [c.customer_id for c in conversations] == ["c1"]

    def test_staff_inbox_sorted_by_recent_activity(self, db, customer, other_customer, staff):
        older = get_or_create_conversation(db, customer)
        newer = get_or_create_conversation(db, other_customer)
        db.commit()
        send_message(db, older.id, customer, TextContent(body="ping"))
        db.commit()

        conversations = list_conversations_for(db, staff)
        assert [c.id for c in conversations] == [older.id, newer.id]

    def test_staff_inbox_search_and_filters(self, db, customer, other_customer, staff):
        ana = get_or_create_conversation(db, customer)
        ben = get_or_create_conversation(db, other_customer)
        set_priority(db, ben.id, "high", staff=staff)
        db.commit()

        assert [c.id for c in list_conversations_for(db, staff, term="ANA")] == [ana.id]
        assert [c.id for c in list_conversations_for(db, staff, term="b@x")] == [ben.id]
        assert [c.id for c in list_conversations_for(db, staff, priority="high")] == [ben.id]
        assert list_conversations_for(db, staff, status="closed") == []

    def test_stats(self, db, customer, other_customer, staff):
        ana = get_or_create_conversation(db, customer)
        get_or_create_conversation(db, other_customer)
        send_message(db, ana.id, customer, TextContent(body="help"))
        db.commit()

        stats = conversation_store.get_conversation_stats(db)
        assert stats["total"] == 2
        assert stats["waiting"] == 1
        assert stats["active"] == 1
        assert stats["closed"] == 0
        assert stats["awaiting_staff_reply"] == 1
