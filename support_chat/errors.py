"""Error kinds raised by the chat core.

Write paths raise these to the caller; read-side subscription setup converts
them into a degraded ``Result`` instead.
"""


class ChatError(Exception):
    code = "chat_error"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class NotFoundError(ChatError):
    code = "not_found"


class ConversationNotFoundError(NotFoundError):
    code = "conversation_not_found"

    def __init__(self, conversation_id):
        self.conversation_id = conversation_id
        super().__init__(f"Conversation {conversation_id} not found")


class InvalidInputError(ChatError):
    code = "invalid_input"


class EmptyBodyError(InvalidInputError):
    code = "empty_body"

    def __init__(self, kind: str = "text"):
        self.kind = kind
        super().__init__(f"Message body must not be blank for kind '{kind}'")


class PermissionDeniedError(ChatError):
    code = "permission_denied"


class ConnectivityError(ChatError):
    """The store could not be reached."""

    code = "connectivity_error"


class SubscriptionTimeoutError(ChatError):
    """Initial subscription setup did not finish in time.

    Kept apart from ConnectivityError: the store may still be reachable.
    """

    code = "subscription_timeout"

    def __init__(self, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Subscription setup exceeded {timeout_seconds:g}s")
