class ChatError(Exception):

    pass


class StoreUnavailableError(ChatError):
    """Backend unreachable or misconfigured; fatal to the current action."""


class MessageSendError(ChatError):
    """Insert failed for a transient reason; the caller may retry."""


class EmptyMessageError(ChatError, ValueError):

    def __init__(self) -> None:
        super().__init__("Message content cannot be empty")
