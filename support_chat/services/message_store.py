"""
Message store: the append-only log of chat messages.

Rows are never edited after insert except for the ``read`` flag. Reads come
back unordered from the database; ``sort_chronologically`` is the required
step that turns them into display order.
"""

from datetime import datetime, timedelta, timezone
from typing import Iterable
from uuid import UUID

from sqlalchemy.orm import Session

from support_chat.database import translate_store_errors
from support_chat.models import Conversation, Message
from support_chat.schemas.message import ImageContent, MessageContent, SystemContent, TextContent
from support_chat.services.roles import Actor, MessageKind, ReaderRole, counted_sender_roles

SENT_AT_RESOLUTION = timedelta(microseconds=1)


def sort_chronologically(messages: Iterable[Message]) -> list[Message]:
    """Oldest first; ties on sent_at are broken by id so the order is total."""
    return sorted(messages, key=lambda message: (message.sent_at, str(message.id)))


def next_sent_at(conversation: Conversation, now: datetime = None) -> datetime:
    """Server timestamp for the next message, strictly after the previous one."""
    now = now or datetime.now(timezone.utc)
    previous = conversation.last_message_time
    if previous is not None and now <= previous:
        return previous + SENT_AT_RESOLUTION
    return now


def content_columns(content: MessageContent) -> dict:
    """Map the tagged content union onto message columns."""
    if isinstance(content, TextContent):
        return {"kind": MessageKind.TEXT.value, "body": content.body, "attachment_url": None}
    if isinstance(content, ImageContent):
        return {"kind": MessageKind.IMAGE.value, "body": content.body, "attachment_url": content.attachment_url}
    if isinstance(content, SystemContent):
        return {"kind": MessageKind.SYSTEM.value, "body": content.body, "attachment_url": None}
    raise TypeError(f"Unsupported message content: {type(content).__name__}")


def append_message(
    db: Session,
    conversation: Conversation,
    sender: Actor,
    content: MessageContent,
    sent_at: datetime,
) -> Message:
    message = Message(
        conversation_id=conversation.id,
        sender_id=sender.id,
        sender_name=sender.name,
        sender_role=sender.role.value,
        sent_at=sent_at,
        read=False,
        **content_columns(content),
    )
    db.add(message)
    with translate_store_errors():
        db.flush()
    return message


def list_for_conversation(db: Session, conversation_id: UUID) -> list[Message]:
    with translate_store_errors():
        rows = db.query(Message).filter(Message.conversation_id == conversation_id).all()
    return sort_chronologically(rows)


def _unread_for_reader(db: Session, conversation_id: UUID, reader_role: ReaderRole):
    senders = [role.value for role in counted_sender_roles(reader_role)]
    return db.query(Message).filter(
        Message.conversation_id == conversation_id,
        Message.sender_role.in_(senders),
        Message.read.is_(False),
    )


def count_unread(db: Session, conversation_id: UUID, reader_role: ReaderRole) -> int:
    """Unread messages that belong in the reader's counter, straight from the log."""
    with translate_store_errors():
        return _unread_for_reader(db, conversation_id, reader_role).count()


def mark_read(db: Session, conversation_id: UUID, message_ids: Iterable[UUID], reader_role: ReaderRole) -> list[UUID]:
    """Flip read on the listed messages the reader is entitled to read. Returns flipped ids."""
    wanted = set()
    for message_id in message_ids:
        try:
            wanted.add(UUID(str(message_id)))
        except ValueError:
            continue
    if not wanted:
        return []

    with translate_store_errors():
        rows = _unread_for_reader(db, conversation_id, reader_role).filter(Message.id.in_(wanted)).all()
        for message in rows:
            message.read = True
        db.flush()

    return [message.id for message in sort_chronologically(rows)]
