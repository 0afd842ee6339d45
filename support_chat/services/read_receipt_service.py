"""
Read receipts and unread counters.

``mark_read`` is the write: flip the read flag on a batch of messages and bring
the reader's counter back in line with the log. ``ReadReceiptScheduler`` is
the per-view throttle in front of it: passive UI signals (scroll, focus) only
produce a write once the view has been visible for ``view_delay`` seconds,
and at most once per ``min_interval`` seconds per conversation. Explicit
reader actions go through ``mark_now`` and skip both limits.
"""

import threading
import time
from dataclasses import dataclass
from typing import Callable, Iterable, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from support_chat.config import settings
from support_chat.database import SessionLocal
from support_chat.errors import ChatError, InvalidInputError
from support_chat.logging_config import ConversationLoggerAdapter, get_logger
from support_chat.services import conversation_store, message_store
from support_chat.services.change_feed import conversation_topic, record_change
from support_chat.services.message_service import list_messages, unread_messages_for
from support_chat.services.permissions import ensure_participant, ensure_reader_role
from support_chat.services.roles import Actor, ReaderRole, unread_counter_field

logger = get_logger("read_receipt_service")


@dataclass
class MarkReadResult:
    conversation_id: UUID
    reader_role: ReaderRole
    marked_message_ids: list[UUID]
    unread_count: int


def _parse_reader_role(value) -> ReaderRole:
    try:
        return ReaderRole(value)
    except ValueError:
        raise InvalidInputError(f"Unknown reader role '{value}'") from None


def mark_read(
    db: Session,
    conversation_id,
    message_ids: Iterable,
    reader_role,
    actor: Optional[Actor] = None,
) -> MarkReadResult:
    """
    Mark a batch of messages read for one role.

    Only messages that count toward the reader's counter are flipped; anything
    else in the batch (own messages, other conversations, unknown ids) is
    ignored. Calling it again with the same batch writes nothing.
    """
    reader_role = _parse_reader_role(reader_role)
    conversation = conversation_store.require_conversation(db, conversation_id)
    if actor is not None:
        ensure_participant(actor, conversation)
        ensure_reader_role(actor, reader_role)

    flipped = message_store.mark_read(db, conversation.id, message_ids, reader_role)
    field = unread_counter_field(reader_role)
    remaining = message_store.count_unread(db, conversation.id, reader_role)

    if flipped or getattr(conversation, field) != remaining:
        conversation_store.touch(conversation)
        db.flush()
        conversation_store.recount_unread(db, conversation, reader_role)
        record_change(
            db, "messages_read", conversation.id, conversation.customer_id, conversation_topic(conversation.id)
        )
        logger.info(
            "Messages marked read",
            extra={
                "context": {
                    "conversation_id": str(conversation.id),
                    "reader_role": reader_role.value,
                    "marked": len(flipped),
                    "unread_count": remaining,
                }
            },
        )

    return MarkReadResult(
        conversation_id=conversation.id,
        reader_role=reader_role,
        marked_message_ids=flipped,
        unread_count=remaining,
    )


def mark_all_read(db: Session, conversation_id, reader: Actor) -> MarkReadResult:
    """Mark everything the reader has not seen yet in this conversation."""
    messages = list_messages(db, conversation_id, actor=reader)
    return mark_read(db, conversation_id, unread_messages_for(messages, reader), reader.reader_role, actor=reader)


class WriteThrottle:
    """Last passive mark-read write per conversation and reader role, shared by every open view."""

    def __init__(self):
        self._lock = threading.Lock()
        self._last_writes: dict[tuple[str, str], float] = {}

    def last_write(self, conversation_id, reader_role: ReaderRole) -> Optional[float]:
        with self._lock:
            return self._last_writes.get((str(conversation_id), reader_role.value))

    def record(self, conversation_id, reader_role: ReaderRole, at: float) -> None:
        with self._lock:
            self._last_writes[(str(conversation_id), reader_role.value)] = at


write_throttle = WriteThrottle()


class ReadReceiptScheduler:
    """
    Mark-read throttle owned by one open conversation view.

    The view calls ``on_visible`` when it opens, ``on_signal`` on scroll/focus
    and ``close`` on teardown. ``close`` cancels any pending timer, and a
    write already under way is rolled back if the view closes before it
    commits, so no counter reset lands after the view is gone. The minimum
    interval between passive writes is tracked per conversation and reader
    role in a ``WriteThrottle`` shared by all views.
    """

    def __init__(
        self,
        conversation_id,
        reader: Actor,
        session_factory: Callable[[], Session] = SessionLocal,
        view_delay: float = None,
        min_interval: float = None,
        clock: Callable[[], float] = time.monotonic,
        timer_factory: Callable[..., threading.Timer] = threading.Timer,
        throttle: WriteThrottle = None,
    ):
        if reader.reader_role is None:
            raise InvalidInputError("The system never reads messages")
        self.conversation_id = conversation_id
        self.reader = reader
        self._session_factory = session_factory
        self._view_delay = settings.read_receipt_view_delay_seconds if view_delay is None else view_delay
        self._min_interval = settings.read_receipt_min_interval_seconds if min_interval is None else min_interval
        self._clock = clock
        self._timer_factory = timer_factory
        self._throttle = throttle or write_throttle

        self._lock = threading.Lock()
        self._timer = None
        self._generation = 0
        self._visible_since: Optional[float] = None
        self._closed = False
        self.log = ConversationLoggerAdapter(logger, conversation_id, reader_role=reader.reader_role.value)

    @property
    def pending(self) -> bool:
        return self._timer is not None

    @property
    def closed(self) -> bool:
        return self._closed

    def on_visible(self) -> None:
        with self._lock:
            if self._closed:
                return
            if self._visible_since is None:
                self._visible_since = self._clock()
            self._arm_locked()

    def on_hidden(self) -> None:
        with self._lock:
            self._visible_since = None
            self._cancel_locked()

    def on_signal(self) -> None:
        """Passive UI signal; coalesced into at most one pending write."""
        with self._lock:
            if self._closed or self._visible_since is None:
                return
            self._arm_locked()

    def mark_now(self) -> Optional[MarkReadResult]:
        """Explicit reader action: cancel any pending write and write immediately."""
        with self._lock:
            if self._closed:
                return None
            self._cancel_locked()
        return self._write()

    def close(self) -> None:
        with self._lock:
            self._closed = True
            self._visible_since = None
            self._cancel_locked()
        self.log.debug("Read receipt scheduler closed")

    def __enter__(self) -> "ReadReceiptScheduler":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _due_in_locked(self) -> float:
        now = self._clock()
        due = self._visible_since + self._view_delay
        last_write = self._throttle.last_write(self.conversation_id, self.reader.reader_role)
        if last_write is not None:
            due = max(due, last_write + self._min_interval)
        return max(due - now, 0.0)

    def _arm_locked(self) -> None:
        if self._timer is not None:
            return
        self._generation += 1
        timer = self._timer_factory(self._due_in_locked(), self._fire, args=(self._generation,))
        timer.daemon = True
        self._timer = timer
        timer.start()

    def _cancel_locked(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
            self._generation += 1

    def _fire(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation:
                return
            self._timer = None
            if self._closed or self._visible_since is None:
                return
        self._write(from_timer=True)

    def _write(self, from_timer: bool = False) -> Optional[MarkReadResult]:
        db = self._session_factory()
        try:
            messages = list_messages(db, self.conversation_id, actor=self.reader)
            unread_ids = unread_messages_for(messages, self.reader)
            if not unread_ids:
                return None
            result = mark_read(db, self.conversation_id, unread_ids, self.reader.reader_role, actor=self.reader)
            with self._lock:
                if self._closed or (from_timer and self._visible_since is None):
                    db.rollback()
                    self.log.debug("View went away before the write committed, discarding it")
                    return None
                db.commit()
                self._throttle.record(self.conversation_id, self.reader.reader_role, self._clock())
            return result
        except ChatError as e:
            db.rollback()
            if not from_timer:
                raise
            self.log.warning("Mark read failed", context={"error": e.message, "code": e.code})
            return None
        finally:
            db.close()
