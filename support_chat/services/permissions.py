"""Role checks. The identity provider authenticates; these only reject what a role may not do."""

from support_chat.errors import PermissionDeniedError
from support_chat.models import Conversation
from support_chat.services.roles import Actor, ReaderRole, SenderRole


def ensure_staff(actor: Actor, action: str) -> None:
    if actor is None or actor.role != SenderRole.STAFF:
        raise PermissionDeniedError(f"Only staff can {action}")


def ensure_participant(actor: Actor, conversation: Conversation) -> None:
    """Customers may only touch their own conversations; staff and system may touch any."""
    if actor is None:
        raise PermissionDeniedError("Missing actor")
    if actor.role == SenderRole.CUSTOMER and actor.id != conversation.customer_id:
        raise PermissionDeniedError(f"Conversation {conversation.id} belongs to another customer")


def ensure_reader_role(actor: Actor, reader_role: ReaderRole) -> None:
    """An actor can only mark messages read on behalf of its own role."""
    if actor.reader_role != ReaderRole(reader_role):
        raise PermissionDeniedError(f"{actor.role.value} cannot read as {ReaderRole(reader_role).value}")
