import asyncio
import json
from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from sse_starlette.sse import EventSourceResponse

from support_chat.config import settings
from support_chat.database import get_db
from support_chat.dependencies import get_current_actor
from support_chat.logging_config import get_logger
from support_chat.schemas.conversation import UnreadCountResponse
from support_chat.services.notification_service import load_unread_count, open_unread_count_subscription
from support_chat.services.result import Result
from support_chat.services.roles import Actor

router = APIRouter(prefix="/notifications", tags=["notifications"])

logger = get_logger("notifications")


def _count_payload(result: Result[int]) -> UnreadCountResponse:
    return UnreadCountResponse(
        count=result.value or 0,
        ok=result.ok,
        error=result.error,
        error_code=result.error_code,
    )


@router.get("/unread-count", response_model=UnreadCountResponse)
def unread_count(actor: Actor = Depends(get_current_actor), db: Session = Depends(get_db)):
    """Badge count: open conversations with unread messages for the caller."""
    return _count_payload(load_unread_count(db, actor.reader_role, actor.id))


@router.get("/unread-count/stream")
async def stream_unread_count(actor: Actor = Depends(get_current_actor)):
    """
    SSE stream of the caller's badge count.

    Sends the current count first, then a new ``unread_count`` event whenever
    it changes, with a ``heartbeat`` event while nothing happens.
    """
    loop = asyncio.get_running_loop()
    updates: asyncio.Queue = asyncio.Queue()

    def push(result: Result[int]) -> None:
        loop.call_soon_threadsafe(updates.put_nowait, result)

    # Setup blocks on the store; a SubscriptionTimeoutError here becomes a 504.
    subscription, initial = await asyncio.to_thread(
        open_unread_count_subscription, actor.reader_role, actor.id, push
    )
    logger.info(
        "Unread count stream opened",
        extra={"context": {"actor_id": actor.id, "role": actor.role.value, "initial_ok": initial.ok}},
    )

    async def event_generator():
        last_sent = None
        result = initial
        try:
            while True:
                payload = _count_payload(result)
                if payload != last_sent:
                    last_sent = payload
                    yield {"event": "unread_count", "data": payload.model_dump_json()}
                try:
                    result = await asyncio.wait_for(updates.get(), timeout=settings.sse_heartbeat_seconds)
                except asyncio.TimeoutError:
                    yield {
                        "event": "heartbeat",
                        "data": json.dumps({"timestamp": datetime.now(timezone.utc).isoformat()}),
                    }
        finally:
            subscription.cancel()
            logger.info("Unread count stream closed", extra={"context": {"actor_id": actor.id}})

    return EventSourceResponse(
        event_generator(),
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
