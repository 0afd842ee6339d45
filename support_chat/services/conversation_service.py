from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from support_chat.config import settings
from support_chat.errors import InvalidInputError, PermissionDeniedError
from support_chat.logging_config import get_logger
from support_chat.models import Conversation
from support_chat.services import conversation_store
from support_chat.services.change_feed import record_change
from support_chat.services.message_service import send_system_message
from support_chat.services.permissions import ensure_participant, ensure_staff
from support_chat.services.roles import Actor, Category, Priority, SenderRole
from support_chat.services.state_machine import ConversationStatus, InvalidTransitionError, is_reopen, transition

logger = get_logger("conversation_service")


def welcome_text(customer_name: str) -> str:
    return settings.welcome_message_template.format(name=customer_name)


def _parse_status(value) -> ConversationStatus:
    try:
        return ConversationStatus(value)
    except ValueError:
        raise InvalidInputError(f"Unknown status '{value}'") from None


def _parse_priority(value) -> Priority:
    try:
        return Priority(value)
    except ValueError:
        raise InvalidInputError(f"Unknown priority '{value}'") from None


def _create_conversation(
    db: Session, customer: Actor, order_id: Optional[str] = None, staff: Optional[Actor] = None
) -> Conversation:
    now = datetime.now(timezone.utc)
    conversation = Conversation(
        customer_id=customer.id,
        customer_name=customer.name,
        customer_email=customer.email or "",
        status=ConversationStatus.WAITING.value,
        priority=Priority.MEDIUM.value,
        category=(Category.ORDER if order_id else Category.GENERAL).value,
        order_id=order_id,
        staff_id=staff.id if staff else None,
        staff_name=staff.name if staff else None,
        unread_count_for_customer=0,
        unread_count_for_staff=0,
        created_at=now,
        updated_at=now,
    )
    db.add(conversation)
    db.flush()

    record_change(db, "conversation_created", conversation.id, conversation.customer_id)
    send_system_message(db, conversation.id, welcome_text(customer.name))

    logger.info(
        "Conversation created",
        extra={
            "context": {
                "conversation_id": str(conversation.id),
                "customer_id": customer.id,
                "category": conversation.category,
                "initiated_by": staff.id if staff else customer.id,
            }
        },
    )
    return conversation


def _open_or_create(db: Session, customer: Actor, order_id: Optional[str], staff: Optional[Actor]) -> Conversation:
    conversation = conversation_store.find_open_for_customer(db, customer.id)
    if conversation:
        return conversation

    try:
        return _create_conversation(db, customer, order_id, staff)
    except IntegrityError:
        # Lost the race against a concurrent create for the same customer.
        db.rollback()
        conversation = conversation_store.find_open_for_customer(db, customer.id)
        if conversation is None:
            raise
        logger.warning(
            "Concurrent conversation create, reusing winner",
            extra={"context": {"conversation_id": str(conversation.id), "customer_id": customer.id}},
        )
        return conversation


def get_or_create_conversation(db: Session, customer: Actor, order_id: Optional[str] = None) -> Conversation:
    """Find the customer's open conversation or create one with a welcome message."""
    if customer.role != SenderRole.CUSTOMER:
        raise PermissionDeniedError("Only customers open their own conversations")
    return _open_or_create(db, customer, order_id, staff=None)


def start_conversation_for_customer(
    db: Session, staff: Actor, customer: Actor, order_id: Optional[str] = None
) -> Conversation:
    """Staff-initiated variant of get_or_create_conversation."""
    ensure_staff(staff, "start conversations for customers")
    return _open_or_create(db, customer, order_id, staff=staff)


def set_status(db: Session, conversation_id, new_status, staff: Optional[Actor] = None) -> Conversation:
    """
    Move a conversation through waiting/active/closed.

    Setting the current status again only advances updated_at. Closing appends
    one system notice. Reopening keeps the unread counters as they were.
    """
    new_status = _parse_status(new_status)
    if staff is not None:
        ensure_staff(staff, "change conversation status")

    conversation = conversation_store.require_conversation(db, conversation_id)
    current = ConversationStatus(conversation.status)
    transition(current, new_status)

    if is_reopen(current, new_status):
        other = conversation_store.find_open_for_customer(db, conversation.customer_id, exclude_id=conversation.id)
        if other is not None:
            raise InvalidTransitionError(current, new_status, f"customer already has open conversation {other.id}")

    conversation.status = new_status.value
    if staff is not None:
        conversation.staff_id = staff.id
        conversation.staff_name = staff.name
    conversation_store.touch(conversation)
    try:
        db.flush()
    except IntegrityError as e:
        raise InvalidTransitionError(current, new_status, "customer already has an open conversation") from e

    record_change(db, "conversation_updated", conversation.id, conversation.customer_id)

    if new_status == ConversationStatus.CLOSED and current != ConversationStatus.CLOSED:
        send_system_message(db, conversation.id, settings.closing_message)

    logger.info(
        "Conversation status set",
        extra={
            "context": {
                "conversation_id": str(conversation.id),
                "from": current.value,
                "to": new_status.value,
                "staff_id": staff.id if staff else None,
            }
        },
    )
    return conversation


def set_priority(db: Session, conversation_id, priority, staff: Optional[Actor] = None) -> Conversation:
    """Change priority; independent of status and never adds messages."""
    priority = _parse_priority(priority)
    if staff is not None:
        ensure_staff(staff, "change conversation priority")

    conversation = conversation_store.require_conversation(db, conversation_id)
    conversation.priority = priority.value
    conversation_store.touch(conversation)
    db.flush()

    record_change(db, "conversation_updated", conversation.id, conversation.customer_id)
    logger.info(
        "Conversation priority set",
        extra={"context": {"conversation_id": str(conversation.id), "priority": priority.value}},
    )
    return conversation


def get_conversation_for(db: Session, conversation_id, actor: Actor) -> Conversation:
    conversation = conversation_store.require_conversation(db, conversation_id)
    ensure_participant(actor, conversation)
    return conversation


def list_conversations_for(
    db: Session,
    actor: Actor,
    term: Optional[str] = None,
    status: Optional[str] = None,
    priority: Optional[str] = None,
) -> list[Conversation]:
    """Customer: own conversations. Staff: the whole inbox, optionally filtered."""
    if actor.role == SenderRole.CUSTOMER:
        conversations = conversation_store.list_for_customer(db, actor.id)
    else:
        ensure_staff(actor, "browse the inbox")
        conversations = conversation_store.list_all(db)

    return conversation_store.search_conversations(
        conversations,
        term=term,
        status=_parse_status(status) if status else None,
        priority=_parse_priority(priority) if priority else None,
    )
