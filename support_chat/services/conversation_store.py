"""
Conversation store: lookups, list queries and counter writes.

List queries carry no ORDER BY; every list is sorted after fetch by
``sort_by_recent_activity``.
"""

from datetime import datetime, timezone
from typing import Iterable, Optional
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from support_chat.database import translate_store_errors
from support_chat.errors import ConversationNotFoundError
from support_chat.models import Conversation, Message
from support_chat.services.roles import Priority, ReaderRole, counted_sender_roles, unread_counter_field
from support_chat.services.state_machine import OPEN_STATUSES, ConversationStatus, is_open


def coerce_conversation_id(conversation_id) -> UUID:
    if isinstance(conversation_id, UUID):
        return conversation_id
    try:
        return UUID(str(conversation_id))
    except ValueError:
        raise ConversationNotFoundError(conversation_id) from None


def get_conversation(db: Session, conversation_id) -> Optional[Conversation]:
    conversation_id = coerce_conversation_id(conversation_id)
    with translate_store_errors():
        return db.query(Conversation).filter(Conversation.id == conversation_id).first()


def require_conversation(db: Session, conversation_id) -> Conversation:
    """Load a conversation or raise ConversationNotFoundError."""
    conversation = get_conversation(db, conversation_id)
    if conversation is None:
        raise ConversationNotFoundError(conversation_id)
    return conversation


def find_open_for_customer(db: Session, customer_id: str, exclude_id: UUID = None) -> Optional[Conversation]:
    """Return the customer's waiting/active conversation, if any."""
    query = db.query(Conversation).filter(
        Conversation.customer_id == customer_id,
        Conversation.status.in_([status.value for status in OPEN_STATUSES]),
    )
    if exclude_id is not None:
        query = query.filter(Conversation.id != exclude_id)
    with translate_store_errors():
        candidates = query.all()
    if not candidates:
        return None
    return sort_by_recent_activity(candidates)[0]


def sort_by_recent_activity(conversations: Iterable[Conversation]) -> list[Conversation]:
    """Most recently updated first."""
    return sorted(
        conversations,
        key=lambda conversation: (conversation.updated_at or conversation.created_at, str(conversation.id)),
        reverse=True,
    )


def list_for_customer(db: Session, customer_id: str) -> list[Conversation]:
    with translate_store_errors():
        rows = db.query(Conversation).filter(Conversation.customer_id == customer_id).all()
    return sort_by_recent_activity(rows)


def list_all(db: Session) -> list[Conversation]:
    with translate_store_errors():
        rows = db.query(Conversation).all()
    return sort_by_recent_activity(rows)


def search_conversations(
    conversations: Iterable[Conversation],
    term: Optional[str] = None,
    status: Optional[ConversationStatus] = None,
    priority: Optional[Priority] = None,
) -> list[Conversation]:
    """Staff inbox filter: free text over name, email and last message."""
    needle = (term or "").strip().casefold()
    matches = []
    for conversation in conversations:
        if status is not None and conversation.status != ConversationStatus(status).value:
            continue
        if priority is not None and conversation.priority != Priority(priority).value:
            continue
        if needle:
            haystack = [conversation.customer_name, conversation.customer_email, conversation.last_message]
            if not any(needle in (value or "").casefold() for value in haystack):
                continue
        matches.append(conversation)
    return matches


def get_conversation_stats(db: Session) -> dict:
    """Counts for the staff dashboard."""
    conversations = list_all(db)
    by_status = {status.value: 0 for status in ConversationStatus}
    for conversation in conversations:
        by_status[conversation.status] = by_status.get(conversation.status, 0) + 1

    return {
        "total": len(conversations),
        "waiting": by_status[ConversationStatus.WAITING.value],
        "active": by_status[ConversationStatus.ACTIVE.value],
        "closed": by_status[ConversationStatus.CLOSED.value],
        "high_priority": sum(1 for c in conversations if c.priority == Priority.HIGH.value),
        "awaiting_staff_reply": sum(
            1
            for c in conversations
            if c.unread_count_for_staff > 0 and is_open(ConversationStatus(c.status))
        ),
        "checked_at": datetime.now(timezone.utc).isoformat(),
    }


def touch(conversation: Conversation, now: datetime = None) -> datetime:
    """Advance updated_at without ever moving it backwards."""
    now = now or datetime.now(timezone.utc)
    if conversation.updated_at is not None and conversation.updated_at > now:
        now = conversation.updated_at
    conversation.updated_at = now
    return now


def increment_unread(db: Session, conversation: Conversation, reader_role: ReaderRole) -> None:
    """Add one to the reader's counter as a SQL-side increment."""
    field = unread_counter_field(reader_role)
    column = getattr(Conversation, field)
    with translate_store_errors():
        db.execute(
            update(Conversation)
            .where(Conversation.id == conversation.id)
            .values({field: column + 1})
            .execution_options(synchronize_session="fetch")
        )


def recount_unread(db: Session, conversation: Conversation, reader_role: ReaderRole) -> None:
    """Set the reader's counter to the unread count in the message log, in one statement."""
    field = unread_counter_field(reader_role)
    senders = [role.value for role in counted_sender_roles(reader_role)]
    unread = (
        select(func.count(Message.id))
        .where(
            Message.conversation_id == Conversation.id,
            Message.sender_role.in_(senders),
            Message.read.is_(False),
        )
        .scalar_subquery()
    )
    with translate_store_errors():
        db.execute(
            update(Conversation)
            .where(Conversation.id == conversation.id)
            .values({field: unread})
            .execution_options(synchronize_session="fetch")
        )


def set_unread(conversation: Conversation, reader_role: ReaderRole, value: int) -> None:
    setattr(conversation, unread_counter_field(reader_role), max(int(value), 0))
