from support_chat.schemas.conversation import (
    ConversationResponse,
    ConversationStatsResponse,
    CreateConversationRequest,
    PriorityUpdateRequest,
    StatusUpdateRequest,
    UnreadCountResponse,
)
from support_chat.schemas.message import (
    MarkReadRequest,
    MarkReadResponse,
    MessageResponse,
    SendMessageRequest,
)

__all__ = [
    "ConversationResponse",
    "ConversationStatsResponse",
    "CreateConversationRequest",
    "PriorityUpdateRequest",
    "StatusUpdateRequest",
    "UnreadCountResponse",
    "MarkReadRequest",
    "MarkReadResponse",
    "MessageResponse",
    "SendMessageRequest",
]
