"""Roles, classification enums and the unread-counter routing rule."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class SenderRole(str, Enum):
    CUSTOMER = "customer"
    STAFF = "staff"
    SYSTEM = "system"


class ReaderRole(str, Enum):
    CUSTOMER = "customer"
    STAFF = "staff"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Category(str, Enum):
    GENERAL = "general"
    ORDER = "order"
    COMPLAINT = "complaint"
    SUPPORT = "support"


class MessageKind(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    SYSTEM = "system"


# sender role -> role whose unread counter grows
RECIPIENT_ROLE = {
    SenderRole.CUSTOMER: ReaderRole.STAFF,
    SenderRole.STAFF: ReaderRole.CUSTOMER,
    SenderRole.SYSTEM: ReaderRole.CUSTOMER,
}

UNREAD_COUNTER_FIELD = {
    ReaderRole.CUSTOMER: "unread_count_for_customer",
    ReaderRole.STAFF: "unread_count_for_staff",
}


def recipient_role(sender_role: SenderRole) -> ReaderRole:
    return RECIPIENT_ROLE[SenderRole(sender_role)]


def counted_sender_roles(reader_role: ReaderRole) -> list[SenderRole]:
    """Sender roles whose unread messages show up in the reader's counter."""
    reader_role = ReaderRole(reader_role)
    return [sender for sender, reader in RECIPIENT_ROLE.items() if reader == reader_role]


def unread_counter_field(reader_role: ReaderRole) -> str:
    return UNREAD_COUNTER_FIELD[ReaderRole(reader_role)]


@dataclass(frozen=True)
class Actor:
    """Verified identity handed over by the identity provider."""

    id: str
    name: str
    role: SenderRole
    email: str = ""

    @property
    def is_staff(self) -> bool:
        return self.role == SenderRole.STAFF

    @property
    def is_customer(self) -> bool:
        return self.role == SenderRole.CUSTOMER

    @property
    def reader_role(self) -> Optional[ReaderRole]:
        if self.role == SenderRole.SYSTEM:
            return None
        return ReaderRole(self.role.value)


def system_actor(name: str) -> Actor:
    return Actor(id="system", name=name, role=SenderRole.SYSTEM)
