from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from support_chat.database import get_db
from support_chat.dependencies import get_current_actor
from support_chat.schemas.conversation import (
    ConversationResponse,
    ConversationStatsResponse,
    CreateConversationRequest,
    PriorityUpdateRequest,
    StatusUpdateRequest,
)
from support_chat.services import conversation_store
from support_chat.services.conversation_service import (
    get_conversation_for,
    get_or_create_conversation,
    list_conversations_for,
    set_priority,
    set_status,
)
from support_chat.services.permissions import ensure_staff
from support_chat.services.roles import Actor

router = APIRouter(prefix="/conversations", tags=["conversations"])


@router.post("", response_model=ConversationResponse)
def open_conversation(
    request: CreateConversationRequest,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    """Return the caller's open conversation, creating it if needed."""
    conversation = get_or_create_conversation(db, actor, order_id=request.order_id)
    db.commit()
    return conversation


@router.get("", response_model=list[ConversationResponse])
def list_conversations(
    q: Optional[str] = None,
    status: Optional[str] = None,
    priority: Optional[str] = None,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    return list_conversations_for(db, actor, term=q, status=status, priority=priority)


@router.get("/stats", response_model=ConversationStatsResponse)
def conversation_stats(actor: Actor = Depends(get_current_actor), db: Session = Depends(get_db)):
    ensure_staff(actor, "view conversation statistics")
    return conversation_store.get_conversation_stats(db)


@router.get("/{conversation_id}", response_model=ConversationResponse)
def get_conversation(conversation_id: str, actor: Actor = Depends(get_current_actor), db: Session = Depends(get_db)):
    return get_conversation_for(db, conversation_id, actor)


@router.patch("/{conversation_id}/status", response_model=ConversationResponse)
def update_status(
    conversation_id: str,
    request: StatusUpdateRequest,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    conversation = set_status(db, conversation_id, request.status, staff=actor)
    db.commit()
    return conversation


@router.patch("/{conversation_id}/priority", response_model=ConversationResponse)
def update_priority(
    conversation_id: str,
    request: PriorityUpdateRequest,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    conversation = set_priority(db, conversation_id, request.priority, staff=actor)
    db.commit()
    return conversation
