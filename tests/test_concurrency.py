"""Interleaved writers on separate sessions."""

from support_chat.schemas.message import TextContent
from support_chat.services import conversation_store
from support_chat.services.conversation_service import get_or_create_conversation, set_status
from support_chat.services.message_service import send_message
from support_chat.services.read_receipt_service import mark_all_read


def fresh_conversation(session_factory, conversation_id):
    db = session_factory()
    try:
        return conversation_store.require_conversation(db, conversation_id)
    finally:
        db.close()


class TestConcurrentStatusChanges:
    def test_last_status_write_wins(self, session_factory, customer, staff, other_staff):
        setup = session_factory()
        conversation = get_or_create_conversation(setup, customer)
        setup.commit()
        setup.close()

        first = session_factory()
        second = session_factory()
        # both staff members opened the conversation while it was waiting
        conversation_store.require_conversation(first, conversation.id)
        conversation_store.require_conversation(second, conversation.id)

        set_status(first, conversation.id, "closed", staff=staff)
        first.commit()
        set_status(second, conversation.id, "active", staff=other_staff)
        second.commit()
        first.close()
        second.close()

        final = fresh_conversation(session_factory, conversation.id)
        assert final.status == "active"
        assert final.staff_id == other_staff.id


class TestConcurrentCounterWrites:
    def test_increments_from_both_sides_are_not_lost(self, session_factory, customer, staff):
        setup = session_factory()
        conversation = get_or_create_conversation(setup, customer)
        setup.commit()
        setup.close()

        customer_session = session_factory()
        staff_session = session_factory()
        # both writers hold a stale in-memory copy of the counters
        conversation_store.require_conversation(customer_session, conversation.id)
        conversation_store.require_conversation(staff_session, conversation.id)

        for i in range(3):
            send_message(customer_session, conversation.id, customer, TextContent(body=f"c{i}"))
            customer_session.commit()
            send_message(staff_session, conversation.id, staff, TextContent(body=f"s{i}"))
            staff_session.commit()
        customer_session.close()
        staff_session.close()

        final = fresh_conversation(session_factory, conversation.id)
        assert final.unread_count_for_staff == 3
        assert final.unread_count_for_customer == 4  # welcome + 3 staff

    def test_reader_and_sender_counters_stay_disjoint(self, session_factory, customer, staff):
        setup = session_factory()
        conversation = get_or_create_conversation(setup, customer)
        send_message(setup, conversation.id, customer, TextContent(body="hello"))
        setup.commit()
        setup.close()

        reader = session_factory()
        sender = session_factory()
        conversation_store.require_conversation(reader, conversation.id)
        conversation_store.require_conversation(sender, conversation.id)

        send_message(sender, conversation.id, staff, TextContent(body="on it"))
        sender.commit()
        mark_all_read(reader, conversation.id, staff)
        reader.commit()
        reader.close()
        sender.close()

        final = fresh_conversation(session_factory, conversation.id)
        assert final.unread_count_for_staff == 0
        assert final.unread_count_for_customer == 2
