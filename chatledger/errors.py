class LedgerError(Exception):
    """Base error whose message is safe to show to the chat user."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationFailed(LedgerError):
    pass


class AuthorizationDenied(LedgerError):
    pass


class PreconditionFailed(LedgerError):
    pass


class AlreadySettled(PreconditionFailed):
    def __init__(self, message: str = "This group expense has already been settled."):
        super().__init__(message)


class NotFound(LedgerError):
    pass


class MessagingError(Exception):
    """Raised by the messaging client when the platform rejects a call."""

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status
