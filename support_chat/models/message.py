import uuid

from sqlalchemy import Boolean, CheckConstraint, Column, ForeignKey, Index, Text, Uuid
from sqlalchemy.orm import relationship

from support_chat.database import Base
from support_chat.models.types import UTCDateTime


class Message(Base):
    __tablename__ = "messages"
    __table_args__ = (
        Index("ix_messages_conversation_id", "conversation_id"),
        CheckConstraint(
            "(kind = 'image') = (attachment_url IS NOT NULL)",
            name="ck_messages_attachment_only_for_images",
        ),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    conversation_id = Column(Uuid, ForeignKey("conversations.id"), nullable=False)
    sender_id = Column(Text, nullable=False)
    sender_name = Column(Text, nullable=False)
    sender_role = Column(Text, nullable=False)  # customer, staff, system
    body = Column(Text, nullable=False)
    kind = Column(Text, nullable=False, default="text")  # text, image, system
    attachment_url = Column(Text)
    sent_at = Column(UTCDateTime, nullable=False)
    read = Column(Boolean, nullable=False, default=False)

    conversation = relationship("Conversation", back_populates="messages")
