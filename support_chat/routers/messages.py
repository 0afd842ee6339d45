from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from support_chat.database import get_db
from support_chat.dependencies import get_current_actor
from support_chat.schemas.message import MarkReadRequest, MarkReadResponse, MessageResponse, SendMessageRequest
from support_chat.services.message_service import list_messages, send_message
from support_chat.services.read_receipt_service import mark_all_read, mark_read
from support_chat.services.roles import Actor

router = APIRouter(prefix="/conversations", tags=["messages"])


@router.get("/{conversation_id}/messages", response_model=list[MessageResponse])
def get_messages(conversation_id: str, actor: Actor = Depends(get_current_actor), db: Session = Depends(get_db)):
    """Messages oldest first."""
    return list_messages(db, conversation_id, actor=actor)


@router.post("/{conversation_id}/messages", response_model=MessageResponse)
def post_message(
    conversation_id: str,
    request: SendMessageRequest,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    message = send_message(db, conversation_id, actor, request.content)
    db.commit()
    return message


@router.post("/{conversation_id}/read", response_model=MarkReadResponse)
def read_messages(
    conversation_id: str,
    request: MarkReadRequest,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    """
    Explicit mark-read. An empty ``message_ids`` list marks everything the
    caller has not read yet.
    """
    if request.message_ids:
        reader_role = request.reader_role or actor.reader_role
        result = mark_read(db, conversation_id, request.message_ids, reader_role, actor=actor)
    else:
        result = mark_all_read(db, conversation_id, actor)
    db.commit()
    return MarkReadResponse(
        conversation_id=result.conversation_id,
        reader_role=result.reader_role.value,
        marked_message_ids=result.marked_message_ids,
        unread_count=result.unread_count,
    )
