from datetime import datetime
from typing import Annotated, Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from support_chat.services.roles import ReaderRole


class TextContent(BaseModel):
    kind: Literal["text"] = "text"
    body: str


class ImageContent(BaseModel):
    kind: Literal["image"] = "image"
    body: str
    attachment_url: str

    @field_validator("attachment_url")
    @classmethod
    def attachment_url_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("attachment_url must not be blank")
        return value


class SystemContent(BaseModel):
    kind: Literal["system"] = "system"
    body: str


MessageContent = Annotated[Union[TextContent, ImageContent, SystemContent], Field(discriminator="kind")]


class SendMessageRequest(BaseModel):
    content: MessageContent


class MessageResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    conversation_id: UUID
    sender_id: str
    sender_name: str
    sender_role: str
    body: str
    kind: str
    attachment_url: Optional[str] = None
    sent_at: datetime
    read: bool


class MarkReadRequest(BaseModel):
    message_ids: list[UUID]
    reader_role: Optional[ReaderRole] = None


class MarkReadResponse(BaseModel):
    conversation_id: UUID
    reader_role: str
    marked_message_ids: list[UUID]
    unread_count: int
