"""
Change feed for push-based subscriptions, carried over ``broadcaster``.

Stores record change events on the SQLAlchemy session while they write; the
events are published only after the session commits, and a rollback discards
them. Each topic is a broadcast channel. The ``Broadcast`` instance lives on
its own event loop thread, and subscriber callbacks run on a single delivery
thread, one at a time, so a writer's own subscriptions never fire
synchronously inside the write call and a slow callback never stalls fan-out.

Topics:
- "conversations": every conversation change (staff inbox, staff badge)
- "customer:{customer_id}": changes to one customer's conversations
- "conversation:{conversation_id}": message log changes of one conversation
"""

from __future__ import annotations

import asyncio
import itertools
import json
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional

from broadcaster import Broadcast
from sqlalchemy import event
from sqlalchemy.orm import Session

from support_chat.config import settings
from support_chat.logging_config import get_logger

logger = get_logger("change_feed")

ALL_CONVERSATIONS_TOPIC = "conversations"
PENDING_CHANGES_KEY = "pending_changes"
FEED_KEY = "change_feed"
DRAIN_MARKER = "drain"


def customer_topic(customer_id: str) -> str:
    return f"customer:{customer_id}"


def conversation_topic(conversation_id) -> str:
    return f"conversation:{conversation_id}"


@dataclass(frozen=True)
class ChangeEvent:
    kind: str  # conversation_created, conversation_updated, message_created, messages_read, snapshot
    conversation_id: str
    customer_id: Optional[str]
    topics: tuple[str, ...]
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_message(self) -> str:
        return json.dumps(
            {
                "kind": self.kind,
                "conversation_id": self.conversation_id,
                "customer_id": self.customer_id,
                "topics": list(self.topics),
                "occurred_at": self.occurred_at.isoformat(),
            }
        )

    @classmethod
    def from_payload(cls, payload: dict) -> "ChangeEvent":
        return cls(
            kind=payload["kind"],
            conversation_id=payload["conversation_id"],
            customer_id=payload.get("customer_id"),
            topics=tuple(payload.get("topics", ())),
            occurred_at=datetime.fromisoformat(payload["occurred_at"]),
        )


class Subscription:
    """Handle for one callback registration. Cancel it when the consumer stops caring."""

    def __init__(self, feed: "ChangeFeed", topic: str, callback: Callable[[ChangeEvent], None]):
        self.topic = topic
        self._feed = feed
        self._callback = callback
        self._active = True
        self._lock = threading.Lock()
        self._on_cancel: list[Callable[[], None]] = []
        self._pump: Optional[asyncio.Task] = None
        self._listening = False
        self._drains: dict[int, Future] = {}

    @property
    def active(self) -> bool:
        return self._active

    def add_cancel_hook(self, hook: Callable[[], None]) -> None:
        self._on_cancel.append(hook)

    def cancel(self) -> None:
        with self._lock:
            if not self._active:
                return
            self._active = False
            drains = list(self._drains.values())
            self._drains.clear()
        self._feed._remove(self)
        for waiter in drains:
            if not waiter.done():
                waiter.set_result(None)
        for hook in self._on_cancel:
            hook()

    def deliver(self, change: ChangeEvent) -> None:
        if not self._active:
            return
        try:
            self._callback(change)
        except Exception:
            logger.exception(
                "Subscriber callback failed",
                extra={"context": {"topic": self.topic, "kind": change.kind}},
            )

    def _expect_drain(self, token: int) -> Future:
        waiter = Future()
        with self._lock:
            if not self._active:
                waiter.set_result(None)
            else:
                self._drains[token] = waiter
        return waiter

    def _acknowledge_drain(self, token: int) -> None:
        with self._lock:
            waiter = self._drains.pop(token, None)
        if waiter is not None and not waiter.done():
            waiter.set_result(None)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.cancel()


class ChangeFeed:
    """
    Topic fan-out over a ``Broadcast`` connection.

    ``url`` picks the broadcaster backend: ``memory://`` keeps everything in
    process, ``redis://...`` shares changes between API workers.
    """

    def __init__(self, url: str = None, executor: Optional[ThreadPoolExecutor] = None):
        self.url = url or settings.change_feed_url
        self._executor = executor or ThreadPoolExecutor(max_workers=1, thread_name_prefix="change-feed")
        self._lock = threading.Lock()
        self._subscriptions: dict[str, list[Subscription]] = {}
        self._broadcast: Optional[Broadcast] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._closed = False
        self._drain_tokens = itertools.count(1)

    def connect(self) -> asyncio.AbstractEventLoop:
        """Start the broadcast loop thread and connect; later calls are no-ops."""
        with self._lock:
            if self._closed:
                raise RuntimeError("Change feed is shut down")
            if self._loop is not None:
                return self._loop
            loop = asyncio.new_event_loop()
            thread = threading.Thread(target=loop.run_forever, name="change-feed-loop", daemon=True)
            thread.start()
            broadcast = Broadcast(self.url)
            asyncio.run_coroutine_threadsafe(broadcast.connect(), loop).result(
                timeout=settings.subscription_setup_timeout_seconds
            )
            self._broadcast, self._loop, self._thread = broadcast, loop, thread
        logger.info("Change feed connected", extra={"context": {"url": self.url}})
        return loop

    def subscribe(self, topic: str, callback: Callable[[ChangeEvent], None]) -> Subscription:
        """Register a callback; changes published after this returns reach it."""
        loop = self.connect()
        subscription = Subscription(self, topic, callback)
        ready: Future = Future()
        with self._lock:
            self._subscriptions.setdefault(topic, []).append(subscription)
        asyncio.run_coroutine_threadsafe(self._start_pump(subscription, ready), loop)
        try:
            ready.result(timeout=settings.subscription_setup_timeout_seconds)
        except FutureTimeoutError:
            subscription.cancel()
            raise
        logger.debug("Subscribed", extra={"context": {"topic": topic}})
        return subscription

    async def _start_pump(self, subscription: Subscription, ready: Future) -> None:
        subscription._pump = asyncio.current_task()
        if not subscription.active:
            ready.set_result(None)
            return
        try:
            async with self._broadcast.subscribe(channel=subscription.topic) as subscriber:
                subscription._listening = True
                ready.set_result(None)
                async for message in subscriber:
                    await self._handle(subscription, message.message)
        except asyncio.CancelledError:
            pass
        finally:
            if not ready.done():
                ready.set_result(None)

    async def _handle(self, subscription: Subscription, raw: str) -> None:
        try:
            payload = json.loads(raw)
            if DRAIN_MARKER in payload:
                subscription._acknowledge_drain(payload[DRAIN_MARKER])
                return
            change = ChangeEvent.from_payload(payload)
        except (ValueError, KeyError, TypeError):
            logger.exception("Unreadable change message", extra={"context": {"topic": subscription.topic}})
            return
        await asyncio.get_running_loop().run_in_executor(self._executor, subscription.deliver, change)

    def _remove(self, subscription: Subscription) -> None:
        with self._lock:
            subscribers = self._subscriptions.get(subscription.topic, [])
            if subscription in subscribers:
                subscribers.remove(subscription)
            if not subscribers:
                self._subscriptions.pop(subscription.topic, None)
            loop = self._loop
        # a pump that has not started yet sees the inactive handle and exits on its own
        pump = subscription._pump
        if pump is not None and loop is not None and not loop.is_closed():
            loop.call_soon_threadsafe(pump.cancel)

    def subscriber_count(self, topic: Optional[str] = None) -> int:
        with self._lock:
            if topic is not None:
                return len(self._subscriptions.get(topic, []))
            return sum(len(subs) for subs in self._subscriptions.values())

    def publish(self, change: ChangeEvent) -> None:
        """Fan a change out to its topics without waiting for delivery."""
        try:
            loop = self.connect()
        except RuntimeError:
            logger.warning("Change feed is shut down, dropping change", extra={"context": {"kind": change.kind}})
            return
        channels = list(dict.fromkeys(change.topics))
        asyncio.run_coroutine_threadsafe(self._publish(channels, change.to_message()), loop)

    async def _publish(self, channels: list[str], message: str) -> None:
        for channel in channels:
            await self._broadcast.publish(channel=channel, message=message)

    def dispatch(self, fn: Callable, *args) -> None:
        """Run fn on the delivery thread, after everything queued there before it."""
        try:
            self._executor.submit(fn, *args)
        except RuntimeError:
            logger.warning("Change feed is shut down, dropping delivery")

    def drain(self, timeout: Optional[float] = None) -> None:
        """Block until every change published and every delivery queued so far has run."""
        with self._lock:
            loop = self._loop
            subscriptions = [sub for subs in self._subscriptions.values() for sub in subs if sub._listening]
        if loop is not None and subscriptions:
            token = next(self._drain_tokens)
            waiters = [subscription._expect_drain(token) for subscription in subscriptions]
            channels = list(dict.fromkeys(subscription.topic for subscription in subscriptions))
            marker = json.dumps({DRAIN_MARKER: token})
            asyncio.run_coroutine_threadsafe(self._publish(channels, marker), loop)
            for waiter in waiters:
                waiter.result(timeout=timeout)
        self._executor.submit(lambda: None).result(timeout=timeout)

    def shutdown(self) -> None:
        with self._lock:
            subscriptions = [sub for subs in self._subscriptions.values() for sub in subs]
        for subscription in subscriptions:
            subscription.cancel()
        with self._lock:
            self._closed = True
            broadcast, loop, thread = self._broadcast, self._loop, self._thread
        if loop is not None:
            try:
                asyncio.run_coroutine_threadsafe(broadcast.disconnect(), loop).result(timeout=5)
            except Exception:
                logger.exception("Change feed disconnect failed")
            loop.call_soon_threadsafe(loop.stop)
            thread.join(timeout=5)
            loop.close()
        self._executor.shutdown(wait=True)


change_feed = ChangeFeed()


def bind_feed(db: Session, feed: ChangeFeed) -> None:
    """Route this session's committed changes to a specific feed."""
    db.info[FEED_KEY] = feed


def feed_for(db: Session) -> ChangeFeed:
    return db.info.get(FEED_KEY, change_feed)


def record_change(db: Session, kind: str, conversation_id, customer_id: Optional[str], *extra_topics: str) -> None:
    topics = [ALL_CONVERSATIONS_TOPIC]
    if customer_id:
        topics.append(customer_topic(customer_id))
    topics.extend(extra_topics)
    change = ChangeEvent(
        kind=kind,
        conversation_id=str(conversation_id),
        customer_id=customer_id,
        topics=tuple(topics),
    )
    db.info.setdefault(PENDING_CHANGES_KEY, []).append(change)


@event.listens_for(Session, "after_commit")
def _publish_committed_changes(session: Session) -> None:
    changes = session.info.pop(PENDING_CHANGES_KEY, [])
    if not changes:
        return
    feed = feed_for(session)
    for change in changes:
        feed.publish(change)


@event.listens_for(Session, "after_rollback")
def _discard_rolled_back_changes(session: Session) -> None:
    session.info.pop(PENDING_CHANGES_KEY, None)
