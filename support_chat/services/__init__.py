from support_chat.services.conversation_service import (
    get_or_create_conversation,
    set_priority,
    set_status,
    start_conversation_for_customer,
)
from support_chat.services.message_service import (
    list_messages,
    send_message,
    send_system_message,
)
from support_chat.services.read_receipt_service import (
    ReadReceiptScheduler,
    mark_all_read,
    mark_read,
)
from support_chat.services.state_machine import (
    ConversationStatus,
    InvalidTransitionError,
    can_transition,
    transition,
)
