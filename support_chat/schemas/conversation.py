from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from support_chat.services.roles import Priority
from support_chat.services.state_machine import ConversationStatus


class CreateConversationRequest(BaseModel):
    order_id: Optional[str] = None


class StatusUpdateRequest(BaseModel):
    status: ConversationStatus


class PriorityUpdateRequest(BaseModel):
    priority: Priority


class ConversationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    customer_id: str
    customer_name: str
    customer_email: str
    status: str
    priority: str
    category: str
    order_id: Optional[str] = None
    staff_id: Optional[str] = None
    staff_name: Optional[str] = None
    last_message: Optional[str] = None
    last_message_time: Optional[datetime] = None
    unread_count_for_customer: int
    unread_count_for_staff: int
    created_at: datetime
    updated_at: datetime


class ConversationStatsResponse(BaseModel):
    total: int
    waiting: int
    active: int
    closed: int
    high_priority: int
    awaiting_staff_reply: int
    checked_at: datetime


class UnreadCountResponse(BaseModel):
    count: int
    ok: bool = True
    error: Optional[str] = None
    error_code: Optional[str] = None
