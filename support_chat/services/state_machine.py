from enum import Enum

from support_chat.errors import InvalidInputError


class ConversationStatus(str, Enum):
    WAITING = "waiting"
    ACTIVE = "active"
    CLOSED = "closed"


OPEN_STATUSES = (ConversationStatus.WAITING, ConversationStatus.ACTIVE)

VALID_TRANSITIONS = {
    ConversationStatus.WAITING: [ConversationStatus.ACTIVE, ConversationStatus.CLOSED],
    ConversationStatus.ACTIVE: [ConversationStatus.CLOSED],
    ConversationStatus.CLOSED: [ConversationStatus.WAITING, ConversationStatus.ACTIVE],
}


class InvalidTransitionError(InvalidInputError):
    code = "invalid_transition"

    def __init__(self, from_status: ConversationStatus, to_status: ConversationStatus, reason: str = None):
        self.from_status = from_status
        self.to_status = to_status
        message = f"Invalid transition: {from_status.value} -> {to_status.value}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


def can_transition(from_status: ConversationStatus, to_status: ConversationStatus) -> bool:
    """Check if transition is valid. Staying in the same status is always allowed."""
    if from_status == to_status:
        return True
    allowed = VALID_TRANSITIONS.get(from_status, [])
    return to_status in allowed


def transition(from_status: ConversationStatus, to_status: ConversationStatus) -> ConversationStatus:
    """Perform status transition. Raises InvalidTransitionError if not allowed."""
    if not can_transition(from_status, to_status):
        raise InvalidTransitionError(from_status, to_status)
    return to_status


def is_open(status: ConversationStatus) -> bool:
    return status in OPEN_STATUSES


def is_reopen(from_status: ConversationStatus, to_status: ConversationStatus) -> bool:
    return from_status == ConversationStatus.CLOSED and to_status in OPEN_STATUSES


def activate(current_status: ConversationStatus) -> ConversationStatus:
    """Staff picks up the conversation or the first reply arrives."""
    return transition(current_status, ConversationStatus.ACTIVE)


def reopen(current_status: ConversationStatus, to_status: ConversationStatus = ConversationStatus.ACTIVE) -> ConversationStatus:
    """Bring a closed conversation back to waiting or active."""
    if current_status != ConversationStatus.CLOSED:
        raise InvalidTransitionError(current_status, to_status, "only closed conversations can be reopened")
    return transition(current_status, to_status)
