"""
Notification aggregator and read-side subscriptions.

Everything here is read-only. A subscription re-reads the store on every
relevant change and hands the consumer a ``Result``: ``ok`` with the fresh
value, or a degraded result carrying an empty value plus the error, so "no
conversations yet" and "store unreachable" stay distinguishable.
"""

from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Callable, Iterable, Optional, TypeVar

from sqlalchemy.orm import Session

from support_chat.config import settings
from support_chat.database import SessionLocal
from support_chat.errors import ChatError, InvalidInputError, SubscriptionTimeoutError
from support_chat.logging_config import get_logger
from support_chat.models import Conversation, Message
from support_chat.services import conversation_store, message_store
from support_chat.services.change_feed import (
    ALL_CONVERSATIONS_TOPIC,
    ChangeEvent,
    ChangeFeed,
    Subscription,
    change_feed,
    conversation_topic,
    customer_topic,
)
from support_chat.services.result import Result
from support_chat.services.roles import ReaderRole
from support_chat.services.state_machine import ConversationStatus, is_open

logger = get_logger("notification_service")

T = TypeVar("T")

Loader = Callable[[Session], T]

_setup_executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="subscription-setup")


def count_unread_conversations(conversations: Iterable[Conversation], role, identity: Optional[str] = None) -> int:
    """
    Badge count: open conversations with something unread for this role.

    Customers only see their own conversations; staff see all of them.
    """
    role = ReaderRole(role)
    count = 0
    for conversation in conversations:
        if not is_open(ConversationStatus(conversation.status)):
            continue
        if role == ReaderRole.CUSTOMER:
            if conversation.customer_id != identity:
                continue
            if (conversation.unread_count_for_customer or 0) > 0:
                count += 1
        elif (conversation.unread_count_for_staff or 0) > 0:
            count += 1
    return count


def _parse_role(role) -> ReaderRole:
    try:
        return ReaderRole(role)
    except ValueError:
        raise InvalidInputError(f"Unknown role '{role}'") from None


def _conversations_topic(role: ReaderRole, identity: Optional[str]) -> str:
    if role == ReaderRole.CUSTOMER:
        if not identity:
            raise InvalidInputError("Customer subscriptions need a customer id")
        return customer_topic(identity)
    return ALL_CONVERSATIONS_TOPIC


def _conversations_loader(role: ReaderRole, identity: Optional[str]) -> Loader[list[Conversation]]:
    if role == ReaderRole.CUSTOMER:
        return lambda db: conversation_store.list_for_customer(db, identity)
    return conversation_store.list_all


def _unread_count_loader(role: ReaderRole, identity: Optional[str]) -> Loader[int]:
    load_conversations = _conversations_loader(role, identity)
    return lambda db: count_unread_conversations(load_conversations(db), role, identity)


def _messages_loader(conversation_id) -> Loader[list[Message]]:
    def load(db: Session) -> list[Message]:
        conversation = conversation_store.require_conversation(db, conversation_id)
        return message_store.list_for_conversation(db, conversation.id)

    return load


def load_snapshot(
    loader: Loader[T], empty: T, session_factory: Callable[[], Session] = SessionLocal
) -> Result[T]:
    """Run a read in its own session, degrading store errors to an empty value."""
    db = session_factory()
    try:
        return Result.success(loader(db))
    except ChatError as e:
        logger.warning("Snapshot read failed", extra={"context": {"error": e.message, "code": e.code}})
        return Result.degraded(empty, e.message, e.code)
    finally:
        db.close()


def load_unread_count(db: Session, role, identity: Optional[str] = None) -> Result[int]:
    role = _parse_role(role)
    _conversations_topic(role, identity)
    try:
        return Result.success(_unread_count_loader(role, identity)(db))
    except ChatError as e:
        return Result.degraded(0, e.message, e.code)


def _subscribe(
    topic: str,
    loader: Loader[T],
    empty: T,
    callback: Callable[[Result[T]], None],
    session_factory: Callable[[], Session],
    feed: ChangeFeed,
    emit_initial: bool = True,
) -> Subscription:
    def refresh(change: ChangeEvent) -> None:
        callback(load_snapshot(loader, empty, session_factory))

    subscription = feed.subscribe(topic, refresh)
    if emit_initial:
        initial = ChangeEvent(kind="snapshot", conversation_id="", customer_id=None, topics=(topic,))
        feed.dispatch(subscription.deliver, initial)
    return subscription


def subscribe_unread_count(
    role,
    identity: Optional[str],
    callback: Callable[[Result[int]], None],
    session_factory: Callable[[], Session] = SessionLocal,
    feed: ChangeFeed = None,
) -> Subscription:
    """Push the badge count now and after every change to the role's conversation set."""
    role = _parse_role(role)
    topic = _conversations_topic(role, identity)
    return _subscribe(topic, _unread_count_loader(role, identity), 0, callback, session_factory, feed or change_feed)


def subscribe_conversations(
    role,
    identity: Optional[str],
    callback: Callable[[Result[list[Conversation]]], None],
    session_factory: Callable[[], Session] = SessionLocal,
    feed: ChangeFeed = None,
) -> Subscription:
    """Staff inbox or a customer's own list, most recently updated first."""
    role = _parse_role(role)
    topic = _conversations_topic(role, identity)
    return _subscribe(topic, _conversations_loader(role, identity), [], callback, session_factory, feed or change_feed)


def subscribe_messages(
    conversation_id,
    callback: Callable[[Result[list[Message]]], None],
    session_factory: Callable[[], Session] = SessionLocal,
    feed: ChangeFeed = None,
) -> Subscription:
    """Messages of one conversation, always delivered in chronological order."""
    conversation_id = conversation_store.coerce_conversation_id(conversation_id)
    return _subscribe(
        conversation_topic(conversation_id),
        _messages_loader(conversation_id),
        [],
        callback,
        session_factory,
        feed or change_feed,
    )


def open_unread_count_subscription(
    role,
    identity: Optional[str],
    callback: Callable[[Result[int]], None],
    timeout: float = None,
    session_factory: Callable[[], Session] = SessionLocal,
    feed: ChangeFeed = None,
) -> tuple[Subscription, Result[int]]:
    """
    Subscribe with a bounded initial read.

    Returns the live subscription and the initial count. The subscription is
    registered before the initial read starts, so a change committed while
    the read runs still produces a push. Raises SubscriptionTimeoutError if
    the initial read does not finish within ``timeout``; an unreachable store
    instead yields a degraded initial result.
    """
    role = _parse_role(role)
    topic = _conversations_topic(role, identity)
    timeout = settings.subscription_setup_timeout_seconds if timeout is None else timeout
    loader = _unread_count_loader(role, identity)

    subscription = _subscribe(topic, loader, 0, callback, session_factory, feed or change_feed, emit_initial=False)
    future = _setup_executor.submit(load_snapshot, loader, 0, session_factory)
    try:
        initial = future.result(timeout=timeout)
    except FutureTimeoutError:
        future.cancel()
        subscription.cancel()
        logger.error(
            "Subscription setup timed out",
            extra={"context": {"role": role.value, "timeout_seconds": timeout}},
        )
        raise SubscriptionTimeoutError(timeout) from None

    return subscription, initial
