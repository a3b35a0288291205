class ChatError(Exception):
    """Base class for chat domain errors."""

    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFound(ChatError):
    status_code = 404


class Forbidden(ChatError):
    status_code = 403


class InactiveConversation(ChatError):
    status_code = 403


class InvalidOperation(ChatError):
    status_code = 400


class AuthError(ChatError):
    status_code = 401


class TransientNetworkError(ChatError):
    """Realtime send/connect failure seen by the client."""

    status_code = 503
