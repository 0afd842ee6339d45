from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from support_chat.config import settings
from support_chat.errors import EmptyBodyError, InvalidInputError, PermissionDeniedError
from support_chat.logging_config import get_logger
from support_chat.models import Conversation, Message
from support_chat.schemas.message import ImageContent, MessageContent, SystemContent, TextContent
from support_chat.services import conversation_store, message_store
from support_chat.services.change_feed import conversation_topic, record_change
from support_chat.services.permissions import ensure_participant
from support_chat.services.roles import Actor, SenderRole, recipient_role, system_actor
from support_chat.services.state_machine import (
    ConversationStatus,
    InvalidTransitionError,
    activate,
    reopen,
)

logger = get_logger("message_service")


def validate_content(sender: Actor, content: MessageContent) -> None:
    """Body rules per content kind. System content is synthesized and only the system may post it."""
    if isinstance(content, SystemContent):
        if sender.role != SenderRole.SYSTEM:
            raise PermissionDeniedError("Only the system can post system messages")
        if not content.body.strip():
            raise EmptyBodyError(content.kind)
    elif isinstance(content, (TextContent, ImageContent)):
        if sender.role == SenderRole.SYSTEM:
            raise InvalidInputError("System messages must use system content")
        if not content.body.strip():
            raise EmptyBodyError(content.kind)
    else:
        raise InvalidInputError(f"Unsupported message content: {type(content).__name__}")


def _status_after_send(db: Session, conversation: Conversation, sender: Actor) -> ConversationStatus:
    """
    Status the conversation ends up in once this sender's message lands.

    - system messages never move the status (the closing notice is appended after closing)
    - waiting -> active on any human message
    - closed -> active on any human message, unless the customer already has another open thread
    """
    current = ConversationStatus(conversation.status)
    if sender.role == SenderRole.SYSTEM:
        return current
    if current == ConversationStatus.WAITING:
        return activate(current)
    if current == ConversationStatus.CLOSED:
        other = conversation_store.find_open_for_customer(db, conversation.customer_id, exclude_id=conversation.id)
        if other is not None:
            raise InvalidTransitionError(
                current, ConversationStatus.ACTIVE, f"customer already has open conversation {other.id}"
            )
        return reopen(current)
    return current


def send_message(db: Session, conversation_id, sender: Actor, content: MessageContent) -> Message:
    """
    Append a message and update the owning conversation in the same unit of work.

    Denormalized last-message fields and the recipient's unread counter are
    updated here and nowhere else. The caller commits.
    """
    validate_content(sender, content)
    conversation = conversation_store.require_conversation(db, conversation_id)
    ensure_participant(sender, conversation)

    old_status = conversation.status
    new_status = _status_after_send(db, conversation, sender)

    sent_at = message_store.next_sent_at(conversation, datetime.now(timezone.utc))
    message = message_store.append_message(db, conversation, sender, content, sent_at)

    conversation.last_message = message.body
    conversation.last_message_time = sent_at
    conversation.status = new_status.value
    conversation_store.touch(conversation, sent_at)
    try:
        db.flush()
    except IntegrityError as e:
        raise InvalidTransitionError(
            ConversationStatus(old_status), new_status, "customer already has an open conversation"
        ) from e

    reader = recipient_role(sender.role)
    conversation_store.increment_unread(db, conversation, reader)
    record_change(db, "message_created", conversation.id, conversation.customer_id, conversation_topic(conversation.id))

    logger.info(
        "Message sent",
        extra={
            "context": {
                "conversation_id": str(conversation.id),
                "message_id": str(message.id),
                "sender_role": sender.role.value,
                "kind": message.kind,
                "status": f"{old_status}->{new_status.value}",
                "unread_for": reader.value,
            }
        },
    )
    return message


def send_system_message(db: Session, conversation_id, body: str) -> Message:
    """Synthesized notice from the support team (welcome, closing)."""
    return send_message(db, conversation_id, system_actor(settings.support_team_name), SystemContent(body=body))


def list_messages(db: Session, conversation_id, actor: Optional[Actor] = None) -> list[Message]:
    """Read path: every message of the conversation, oldest first."""
    conversation = conversation_store.require_conversation(db, conversation_id)
    if actor is not None:
        ensure_participant(actor, conversation)
    return message_store.list_for_conversation(db, conversation.id)


def unread_messages_for(messages: list[Message], reader: Actor) -> list[UUID]:
    """Ids in a fetched message list that the reader still has to see."""
    reader_role = reader.reader_role
    if reader_role is None:
        return []
    return [
        message.id
        for message in messages
        if not message.read and recipient_role(SenderRole(message.sender_role)) == reader_role
    ]
