import pytest

from support_chat.errors import InvalidInputError
from support_chat.services.state_machine import (
    ConversationStatus,
    InvalidTransitionError,
    activate,
    can_transition,
    is_open,
    is_reopen,
    reopen,
    transition,
)


class TestValidTransitions:
    def test_waiting_to_active(self):
        result = transition(ConversationStatus.WAITING, ConversationStatus.ACTIVE)
        assert result == ConversationStatus.ACTIVE

    def test_waiting_to_closed(self):
        result = transition(ConversationStatus.WAITING, ConversationStatus.CLOSED)
        assert result == ConversationStatus.CLOSED

    def test_active_to_closed(self):
        result = transition(ConversationStatus.ACTIVE, ConversationStatus.CLOSED)
        assert result == ConversationStatus.CLOSED

    def test_closed_to_waiting(self):
        result = transition(ConversationStatus.CLOSED, ConversationStatus.WAITING)
        assert result == ConversationStatus.WAITING

    def test_closed_to_active(self):
        result = transition(ConversationStatus.CLOSED, ConversationStatus.ACTIVE)
        assert result == ConversationStatus.ACTIVE

    @pytest.mark.parametrize("status", list(ConversationStatus))
    def test_same_status_is_allowed(self, status):
        assert can_transition(status, status) is True
        assert transition(status, status) == status


class TestInvalidTransitions:
    def test_active_to_waiting(self):
        with pytest.raises(InvalidTransitionError):
            transition(ConversationStatus.ACTIVE, ConversationStatus.WAITING)

    def test_invalid_transition_is_invalid_input(self):
        with pytest.raises(InvalidInputError) as exc_info:
            transition(ConversationStatus.ACTIVE, ConversationStatus.WAITING)
        assert exc_info.value.code == "invalid_transition"
        assert exc_info.value.from_status == ConversationStatus.ACTIVE
        assert exc_info.value.to_status == ConversationStatus.WAITING

    def test_reason_is_in_message(self):
        error = InvalidTransitionError(ConversationStatus.CLOSED, ConversationStatus.ACTIVE, "customer busy")
        assert "closed -> active" in str(error)
        assert "customer busy" in str(error)


class TestHelperFunctions:
    def test_activate_from_waiting(self):
        assert activate(ConversationStatus.WAITING) == ConversationStatus.ACTIVE

    def test_activate_from_active_is_noop(self):
        assert activate(ConversationStatus.ACTIVE) == ConversationStatus.ACTIVE

    def test_reopen_defaults_to_active(self):
        assert reopen(ConversationStatus.CLOSED) == ConversationStatus.ACTIVE

    def test_reopen_to_waiting(self):
        assert reopen(ConversationStatus.CLOSED, ConversationStatus.WAITING) == ConversationStatus.WAITING

    def test_reopen_from_open_status_fails(self):
        with pytest.raises(InvalidTransitionError):
            reopen(ConversationStatus.ACTIVE)

    def test_is_open(self):
        assert is_open(ConversationStatus.WAITING)
        assert is_open(ConversationStatus.ACTIVE)
        assert not is_open(ConversationStatus.CLOSED)

    def test_is_reopen(self):
        assert is_reopen(ConversationStatus.CLOSED, ConversationStatus.WAITING)
        assert not is_reopen(ConversationStatus.WAITING, ConversationStatus.ACTIVE)
        assert not is_reopen(ConversationStatus.CLOSED, ConversationStatus.CLOSED)
