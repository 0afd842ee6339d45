import uuid

from sqlalchemy import CheckConstraint, Column, Index, Integer, Text, Uuid, text
from sqlalchemy.orm import relationship

from support_chat.database import Base
from support_chat.models.types import UTCDateTime

OPEN_STATUS_PREDICATE = text("status IN ('waiting', 'active')")


class Conversation(Base):
    __tablename__ = "conversations"
    __table_args__ = (
        # one open conversation per customer
        Index(
            "uq_conversations_open_customer",
            "customer_id",
            unique=True,
            postgresql_where=OPEN_STATUS_PREDICATE,
            sqlite_where=OPEN_STATUS_PREDICATE,
        ),
        Index("ix_conversations_customer_id", "customer_id"),
        CheckConstraint("unread_count_for_customer >= 0", name="ck_conversations_unread_customer"),
        CheckConstraint("unread_count_for_staff >= 0", name="ck_conversations_unread_staff"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    customer_id = Column(Text, nullable=False)
    customer_name = Column(Text, nullable=False)
    customer_email = Column(Text, nullable=False, default="")
    status = Column(Text, nullable=False, default="waiting")  # waiting, active, closed
    priority = Column(Text, nullable=False, default="medium")  # low, medium, high
    category = Column(Text, nullable=False, default="general")  # general, order, complaint, support
    order_id = Column(Text)
    staff_id = Column(Text)
    staff_name = Column(Text)
    last_message = Column(Text)
    last_message_time = Column(UTCDateTime)
    unread_count_for_customer = Column(Integer, nullable=False, default=0)
    unread_count_for_staff = Column(Integer, nullable=False, default=0)
    created_at = Column(UTCDateTime, nullable=False)
    updated_at = Column(UTCDateTime, nullable=False)

    messages = relationship("Message", back_populates="conversation")
