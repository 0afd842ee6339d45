from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from datetime import datetime, timezone
from typing import Callable

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from support_chat.config import settings
from support_chat.database import SessionLocal, translate_store_errors
from support_chat.errors import ConnectivityError
from support_chat.logging_config import get_logger
from support_chat.services import conversation_store, message_store
from support_chat.services.change_feed import conversation_topic, record_change
from support_chat.services.result import Result
from support_chat.services.roles import ReaderRole, unread_counter_field

logger = get_logger("health_service")

_probe_executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="store-probe")


def _ping(session_factory: Callable[[], Session]) -> None:
    db = session_factory()
    try:
        with translate_store_errors():
            db.execute(text("SELECT 1"))
    finally:
        db.close()


def probe_store(session_factory: Callable[[], Session] = SessionLocal, timeout: float = None) -> Result[bool]:
    """Cheap connectivity self-test to run before opening subscriptions."""
    timeout = settings.store_probe_timeout_seconds if timeout is None else timeout
    future = _probe_executor.submit(_ping, session_factory)
    try:
        future.result(timeout=timeout)
    except FutureTimeoutError:
        logger.warning("Store probe timed out", extra={"context": {"timeout_seconds": timeout}})
        return Result.failure(f"Store did not answer within {timeout:g}s", ConnectivityError.code)
    except (ConnectivityError, SQLAlchemyError) as e:
        logger.warning("Store probe failed", extra={"context": {"error": str(e)}})
        return Result.failure(str(e), ConnectivityError.code)
    return Result.success(True)


def get_chat_health(db: Session) -> dict:
    """Conversation counts by status plus unread backlog."""
    stats = conversation_store.get_conversation_stats(db)
    return {
        "conversations": {
            "waiting": stats["waiting"],
            "active": stats["active"],
            "closed": stats["closed"],
        },
        "awaiting_staff_reply": stats["awaiting_staff_reply"],
        "checked_at": stats["checked_at"],
    }


def check_and_heal_counters(db: Session) -> dict:
    """
    Bring denormalized conversation fields back in line with the message log.

    Checks each unread counter against the unread messages that count toward
    it, and last_message/last_message_time against the newest message. Every
    repaired conversation is touched and announced to live subscribers.
    """
    healed = []

    for conversation in conversation_store.list_all(db):
        issues_before = len(healed)
        for role in ReaderRole:
            field = unread_counter_field(role)
            stored = getattr(conversation, field)
            actual = message_store.count_unread(db, conversation.id, role)
            if stored != actual:
                conversation_store.set_unread(conversation, role, actual)
                healed.append(
                    {
                        "conversation_id": str(conversation.id),
                        "issue": f"{field}_drift",
                        "action": f"recounted ({stored} -> {actual})",
                    }
                )
                logger.warning(f"Healed conversation {conversation.id}: {field} {stored} -> {actual}")

        messages = message_store.list_for_conversation(db, conversation.id)
        if messages:
            newest = messages[-1]
            if conversation.last_message != newest.body or conversation.last_message_time != newest.sent_at:
                conversation.last_message = newest.body
                conversation.last_message_time = newest.sent_at
                healed.append(
                    {
                        "conversation_id": str(conversation.id),
                        "issue": "stale_last_message",
                        "action": f"set_from_message {newest.id}",
                    }
                )
                logger.warning(f"Healed conversation {conversation.id}: last message out of date")

        if len(healed) > issues_before:
            conversation_store.touch(conversation)
            record_change(
                db, "conversation_updated", conversation.id, conversation.customer_id, conversation_topic(conversation.id)
            )

    db.commit()

    return {
        "healed_count": len(healed),
        "details": healed,
        "checked_at": datetime.now(timezone.utc).isoformat(),
    }

